"""
Generation API endpoints: the remote operations node executors call.
"""
import asyncio
import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ...agents.image_generation.generator import generate_image as run_image_generation
from ...agents.resize.resizer import TARGET_SIZES, resize_image as run_resize
from ...agents.text_generation.generator import generate_text as run_text_generation
from ...agents.upscale.upscaler import upscale_image as run_upscale
from ...agents.video_generation.generator import generate_video as run_video_generation
from ...llm.gemini import to_genai_image
from ...services.errors import GenerationCancelledError, GenerationTimeoutError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["generation"])

# Seconds between client-disconnect checks while a video is being generated
DISCONNECT_CHECK_INTERVAL = 1.0


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FileRef(BaseModel):
    url: str
    type: str = "image"


class GenerateTextRequest(_CamelModel):
    """Request model for text generation."""
    prompt: str = ""
    files: List[FileRef] = Field(default_factory=list)
    model: Optional[str] = None


class GenerateImageRequest(_CamelModel):
    """Request model for image generation."""
    prompt: str = ""
    images: List[str] = Field(default_factory=list)  # Data URLs for image-to-image
    aspect_ratio: str = "16:9"
    model: Optional[str] = None
    resolution: str = "1K"


class GenerateVideoRequest(_CamelModel):
    """Request model for video generation."""
    prompt: str = ""
    first_frame: Optional[str] = None
    last_frame: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    aspect_ratio: str = "16:9"
    duration: int = 4
    model: Optional[str] = None
    generate_audio: bool = True
    resolution: str = "720p"


class UpscaleImageRequest(_CamelModel):
    image: str = ""
    upscale_factor: str = Field("x2", pattern=r"^x[234]$")


class ResizeImageRequest(_CamelModel):
    image: str = ""
    aspect_ratio: str = ""


def _failure(message: str, error: str, status_code: int = 500) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"error": message, "details": error})


async def _watch_disconnect(http_request: Request, cancel_event: asyncio.Event) -> None:
    """Set ``cancel_event`` once the client has gone away."""
    while not cancel_event.is_set():
        if await http_request.is_disconnected():
            logger.info("Client disconnected, cancelling %s", http_request.url.path)
            cancel_event.set()
            return
        await asyncio.sleep(DISCONNECT_CHECK_INTERVAL)


@router.post("/generate-text")
async def generate_text(request: GenerateTextRequest):
    """Generate text from a prompt plus optional attached files."""
    if not request.prompt:
        raise HTTPException(status_code=400, detail={"error": "Prompt is required"})

    text, error = await run_text_generation(
        prompt=request.prompt,
        files=[f.model_dump() for f in request.files],
        model=request.model,
    )
    if error:
        raise _failure("Failed to generate text", error)
    return {"text": text}


@router.post("/generate-image")
async def generate_image(request: GenerateImageRequest):
    """
    Generate an image.

    - If `images` are provided, they are sent as references (image-to-image)
    - If only `prompt` is provided, performs text-to-image generation
    """
    if not request.prompt:
        raise HTTPException(status_code=400, detail={"error": "Prompt is required"})

    image_url, error = await run_image_generation(
        prompt=request.prompt,
        images=request.images,
        aspect_ratio=request.aspect_ratio,
        model=request.model,
        resolution=request.resolution,
    )
    if error:
        raise _failure("Failed to generate image", error)
    return {"imageUrl": image_url, "prompt": request.prompt}


@router.post("/generate-video")
async def generate_video(request: GenerateVideoRequest, http_request: Request):
    """
    Generate a video clip; blocks until the long-running operation finishes.

    Polling stops early if the client disconnects.
    """
    if not request.prompt:
        raise HTTPException(status_code=400, detail={"error": "Prompt is required"})

    cancel_event = asyncio.Event()
    watcher = asyncio.create_task(_watch_disconnect(http_request, cancel_event))
    try:
        video_url, error = await run_video_generation(
            prompt=request.prompt,
            first_frame=request.first_frame,
            last_frame=request.last_frame,
            images=request.images,
            aspect_ratio=request.aspect_ratio,
            duration=request.duration,
            model=request.model,
            generate_audio=request.generate_audio,
            resolution=request.resolution,
            cancel_event=cancel_event,
        )
    except GenerationTimeoutError as e:
        raise _failure("Video generation timed out", str(e), status_code=504)
    except GenerationCancelledError as e:
        # 499: client closed request
        raise _failure("Video generation cancelled", str(e), status_code=499)
    finally:
        watcher.cancel()

    if error:
        raise _failure("Failed to generate video", error)
    return {"videoUrl": video_url}


@router.post("/upscale-image")
async def upscale_image(request: UpscaleImageRequest):
    """Upscale a data-URL or gs:// image by x2, x3 or x4."""
    if not request.image:
        raise HTTPException(status_code=400, detail={"error": "Image is required"})
    if to_genai_image(request.image) is None:
        raise HTTPException(status_code=400, detail={"error": "Invalid image format"})

    image_url, error = await run_upscale(request.image, request.upscale_factor)
    if error:
        raise _failure("Failed to upscale image", error)
    return {"imageUrl": image_url, "upscaleFactor": request.upscale_factor}


@router.post("/resize-image")
async def resize_image(request: ResizeImageRequest):
    """Cover-resize an image to 1920x1080 (16:9) or 1080x1920 (9:16)."""
    if not request.image:
        raise HTTPException(status_code=400, detail={"error": "Image is required"})
    if not request.aspect_ratio:
        raise HTTPException(status_code=400, detail={"error": "Aspect ratio is required"})
    if request.aspect_ratio not in TARGET_SIZES:
        raise HTTPException(status_code=400, detail={"error": "Invalid aspect ratio"})

    image_url, error = await run_resize(request.image, request.aspect_ratio)
    if error:
        raise _failure("Failed to resize image", error)
    return {"imageUrl": image_url}
