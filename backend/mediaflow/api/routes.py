from fastapi import APIRouter
from .v1 import generation, workflows

api_router = APIRouter(prefix="/api", tags=["mediaflow"])

api_router.include_router(generation.router, prefix="/v1", tags=["generation"])
api_router.include_router(workflows.router, prefix="/v1", tags=["workflows"])

@api_router.get("/")
def read_root():
    return {"message": "MediaFlow API"}
