"""
Node executors, one async function per executable node kind.

Each executor receives the node, its resolved inputs and a GenerationClient,
makes exactly one remote call, and returns only the data fields it changed.
Resolved inputs win over the node's own stored values.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, get_args

from mediaflow.models.graph import (
    AgentData,
    ImageData,
    Node,
    NodeInputs,
    NodeType,
    ResizeData,
    UpscaleData,
    VideoData,
)
from mediaflow.services.errors import MissingInputError, RemoteCallError
from mediaflow.services.generation_client import GenerationClient

logger = logging.getLogger(__name__)

NodeExecutor = Callable[[Node, NodeInputs, GenerationClient], Awaitable[dict[str, Any]]]

# ---------------------------------------------------------------------------
# Executor registry
# ---------------------------------------------------------------------------

# Maps every node type to its executor; source kinds map to None.
_registry: dict[str, NodeExecutor | None] = {
    "text": None,
    "file": None,
}


def executor(node_type: str):
    """
    Decorator that registers an async executor function for a node type.

    Usage:
        @executor("image")
        async def _exec_image(node, inputs, client) -> dict[str, Any]:
            return {"images": [...]}
    """
    def decorator(fn: NodeExecutor) -> NodeExecutor:
        _registry[node_type] = fn
        return fn
    return decorator


def get_executor(node_type: str) -> NodeExecutor | None:
    return _registry.get(node_type)


def is_executable(node_type: str) -> bool:
    """True for node kinds the engine runs; text, file and unknown kinds are not."""
    return get_executor(node_type) is not None


def _require_field(result: dict[str, Any], key: str, operation: str) -> str:
    value = result.get(key)
    if not isinstance(value, str) or not value:
        raise RemoteCallError(operation, 200, f"Response has no usable '{key}': {result}")
    return value


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


@executor("agent")
async def _exec_agent(node: Node, inputs: NodeInputs, client: GenerationClient) -> dict[str, Any]:
    data: AgentData = node.data
    prompt = inputs.prompt or data.instructions
    if not prompt:
        raise MissingInputError(node.id, "prompt")

    files = [f.model_dump() for f in (inputs.files or [])]
    logger.info(
        "Generating text for node %s (model=%s, files=%d)", node.id, data.model, len(files)
    )

    result = await client.post_json(
        "/generate-text",
        {"prompt": prompt, "files": files, "model": data.model},
        operation="generate text",
    )
    text = result.get("text")
    if text is not None and not isinstance(text, str):
        raise RemoteCallError("generate text", 200, f"Response has no usable 'text': {result}")
    # Empty text is a valid answer
    return {"output": text or ""}


@executor("image")
async def _exec_image(node: Node, inputs: NodeInputs, client: GenerationClient) -> dict[str, Any]:
    data: ImageData = node.data
    prompt = inputs.prompt or data.prompt
    if not prompt:
        raise MissingInputError(node.id, "prompt")

    images = inputs.images or []
    logger.info(
        "Generating image for node %s (model=%s, reference images=%d)",
        node.id,
        data.model,
        len(images),
    )

    result = await client.post_json(
        "/generate-image",
        {
            "prompt": prompt,
            "images": images,
            "aspectRatio": data.aspect_ratio,
            "model": data.model,
            "resolution": data.resolution,
        },
        operation="generate image",
    )
    # Always exactly one image; replaces whatever the node showed before
    return {"images": [_require_field(result, "imageUrl", "generate image")]}


@executor("video")
async def _exec_video(node: Node, inputs: NodeInputs, client: GenerationClient) -> dict[str, Any]:
    data: VideoData = node.data
    prompt = inputs.prompt or data.prompt
    if not prompt:
        raise MissingInputError(node.id, "prompt")

    logger.info(
        "Generating video for node %s (model=%s, first frame=%s, last frame=%s)",
        node.id,
        data.model,
        bool(inputs.first_frame),
        bool(inputs.last_frame),
    )

    result = await client.post_json(
        "/generate-video",
        {
            "prompt": prompt,
            "firstFrame": inputs.first_frame,
            "lastFrame": inputs.last_frame,
            "images": inputs.images or [],
            "aspectRatio": data.aspect_ratio,
            "duration": data.duration,
            "model": data.model,
            "generateAudio": data.generate_audio,
            "resolution": data.resolution,
        },
        operation="generate video",
    )
    # Frames are echoed back so the node shows what was actually used
    return {
        "videoUrl": _require_field(result, "videoUrl", "generate video"),
        "firstFrame": inputs.first_frame,
        "lastFrame": inputs.last_frame,
    }


@executor("upscale")
async def _exec_upscale(node: Node, inputs: NodeInputs, client: GenerationClient) -> dict[str, Any]:
    data: UpscaleData = node.data
    image = inputs.image or data.image
    if not image:
        raise MissingInputError(node.id, "image")

    logger.info("Upscaling image for node %s (factor=%s)", node.id, data.upscale_factor)

    result = await client.post_json(
        "/upscale-image",
        {"image": image, "upscaleFactor": data.upscale_factor},
        operation="upscale image",
    )
    return {"image": _require_field(result, "imageUrl", "upscale image")}


@executor("resize")
async def _exec_resize(node: Node, inputs: NodeInputs, client: GenerationClient) -> dict[str, Any]:
    data: ResizeData = node.data
    if not inputs.image:
        raise MissingInputError(node.id, "image")

    logger.info("Resizing image for node %s to %s", node.id, data.aspect_ratio)

    result = await client.post_json(
        "/resize-image",
        {"image": inputs.image, "aspectRatio": data.aspect_ratio},
        operation="resize image",
    )
    return {"output": _require_field(result, "imageUrl", "resize image")}


_missing = set(get_args(NodeType)) - set(_registry)
if _missing:
    raise RuntimeError(f"No executor entry for node types: {sorted(_missing)}")
