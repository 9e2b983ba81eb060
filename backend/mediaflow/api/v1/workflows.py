"""
Workflow execution API endpoints.

The request carries the editor's full graph (nodes + edges); the response
returns the run summary and the nodes with every result patch applied.
"""
import asyncio
import json
import logging
from typing import Any, Dict, List, Set

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from ...models.graph import Edge, Node
from ...models.node_registry import NODE_REGISTRY
from ...services.dependency_analyzer import find_cycle_nodes, get_execution_levels
from ...services.generation_client import create_generation_client
from ...services.graph_state import GraphState
from ...services.node_executors import is_executable
from ...services.workflow_engine import WorkflowEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workflows", tags=["workflows"])

# Streaming runs in progress; a run outlives its response when the client disconnects
_active_runs: Set[asyncio.Task] = set()


class RunWorkflowRequest(BaseModel):
    nodes: List[Node]
    edges: List[Edge] = Field(default_factory=list)
    # Reject cyclic graphs instead of running them as a forced final level
    strict: bool = False


class ExecuteNodeRequest(BaseModel):
    nodes: List[Node]
    edges: List[Edge] = Field(default_factory=list)
    node_id: str


def _build_state(nodes: List[Node], edges: List[Edge]) -> GraphState:
    try:
        return GraphState(nodes, edges)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


def _check_cycles(state: GraphState) -> None:
    cycle_nodes = find_cycle_nodes([n.id for n in state.nodes], state.edges)
    if cycle_nodes:
        raise HTTPException(
            status_code=422,
            detail={
                "message": "Cycle detected",
                "node_ids": cycle_nodes,
            },
        )


@router.get("/node-types")
async def list_node_types() -> Dict[str, Any]:
    """Node kinds with their input handles, default data and whether they run."""
    return {
        name: {**spec.model_dump(), "executable": is_executable(name)}
        for name, spec in NODE_REGISTRY.items()
    }


@router.post("/run")
async def run_workflow(request: RunWorkflowRequest, http_request: Request):
    """Execute the whole graph and return the summary plus updated nodes."""
    state = _build_state(request.nodes, request.edges)
    if request.strict:
        _check_cycles(state)

    async with create_generation_client(app=http_request.app) as client:
        engine = WorkflowEngine(
            state.nodes,
            state.edges,
            state.update_node_data,
            client=client,
        )
        result = await engine.run()

    return {"result": result.model_dump(), **state.to_editor()}


@router.post("/execute-node")
async def execute_node(request: ExecuteNodeRequest, http_request: Request):
    """Execute one node against the given graph; downstream nodes are not re-run."""
    state = _build_state(request.nodes, request.edges)
    if state.get_node(request.node_id) is None:
        raise HTTPException(status_code=404, detail=f"Node not found: {request.node_id}")

    async with create_generation_client(app=http_request.app) as client:
        engine = WorkflowEngine(
            state.nodes,
            state.edges,
            state.update_node_data,
            client=client,
        )
        result = await engine.execute_node(request.node_id)

    return {
        "result": result.model_dump() if result else None,
        **state.to_editor(),
    }


@router.post("/run/stream")
async def run_workflow_stream(request: RunWorkflowRequest, http_request: Request):
    """
    Execute the graph with Server-Sent Events (SSE) streaming.

    Yields JSON events:
    - {"event": "workflow_start", "levels": [...], "total_nodes": N}
    - {"event": "node_update", "node_id": "...", "data": {...}}
    - {"event": "workflow_complete", "result": {...}}
    - {"event": "workflow_error", "error": "..."}
    """
    state = _build_state(request.nodes, request.edges)
    if request.strict:
        _check_cycles(state)

    app = http_request.app
    # Event queue decouples execution from streaming
    event_queue: asyncio.Queue = asyncio.Queue()
    # Set when the client disconnects; the engine then starts no further levels
    cancel_event = asyncio.Event()

    def on_node_update(node_id: str, patch: Dict[str, Any]) -> None:
        state.update_node_data(node_id, patch)
        event_queue.put_nowait({"event": "node_update", "node_id": node_id, "data": patch})

    async def runner():
        try:
            async with create_generation_client(app=app) as client:
                engine = WorkflowEngine(
                    state.nodes,
                    state.edges,
                    on_node_update,
                    client=client,
                    cancel_event=cancel_event,
                )
                result = await engine.run()
            await event_queue.put({"event": "workflow_complete", "result": result.model_dump()})
        except Exception as e:
            logger.exception("Workflow run failed: %s", e)
            await event_queue.put({
                "event": "workflow_error",
                "error": f"Internal error: {type(e).__name__}: {e}",
            })
        finally:
            # Signal end of events
            await event_queue.put(None)

    async def event_generator():
        plan = get_execution_levels([n.id for n in state.nodes], state.edges)
        start_event = {
            "event": "workflow_start",
            "levels": plan.levels,
            "total_nodes": len(state.nodes),
        }
        yield f"data: {json.dumps(start_event)}\n\n"

        runner_task = asyncio.create_task(runner())
        _active_runs.add(runner_task)
        runner_task.add_done_callback(_active_runs.discard)
        try:
            while True:
                event = await event_queue.get()
                if event is None:  # Sentinel for completion
                    break
                yield f"data: {json.dumps(event, default=str)}\n\n"
        finally:
            if not runner_task.done():
                # The level in flight finishes in the background, then the run stops
                logger.info("Client disconnected, cancelling workflow run")
                cancel_event.set()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )
