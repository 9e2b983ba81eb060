"""
Node type registry: what each node kind accepts, produces and starts with.

Maps editor node type strings to their input handles, the data field that
downstream nodes read from them, and the defaults the editor uses when a node
is added to the canvas. Whether a kind runs at all is up to the executor
registry in services/node_executors.py.
"""

from __future__ import annotations

from typing import Any, get_args

from pydantic import BaseModel, Field

from mediaflow.models.graph import (
    FILE_INPUT,
    FIRST_FRAME_INPUT,
    IMAGE_INPUT,
    LAST_FRAME_INPUT,
    PROMPT_INPUT,
    NodeData,
    NodeType,
    parse_node_data,
)


class NodeTypeSpec(BaseModel):
    inputs: list[str] = Field(default_factory=list)
    # Data field consumed by downstream nodes (None for pure sinks)
    output_field: str | None = None
    default_data: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
# Keys match the editor node `type` values.
# Handle IDs come from the editor's Handle definitions.

NODE_REGISTRY: dict[str, NodeTypeSpec] = {
    # ---- Source nodes (never executed) ----
    "text": NodeTypeSpec(
        inputs=[],
        output_field="text",
        default_data={"name": "Text", "text": ""},
    ),
    "file": NodeTypeSpec(
        inputs=[],
        output_field="gcsUri",
        default_data={"name": "File", "fileType": None, "fileUrl": "", "fileName": ""},
    ),

    # ---- Generation nodes ----
    "agent": NodeTypeSpec(
        inputs=[PROMPT_INPUT, FILE_INPUT],
        output_field="output",
        default_data={"name": "Agent", "model": "gemini-2.5-flash", "instructions": ""},
    ),
    "image": NodeTypeSpec(
        # Any handle other than image-input (or none) carries the prompt
        inputs=[PROMPT_INPUT, IMAGE_INPUT],
        output_field="images",
        default_data={
            "name": "Image",
            "prompt": "",
            "images": [],
            "aspectRatio": "16:9",
            "model": "gemini-2.5-flash-image",
            "resolution": "1K",
        },
    ),
    "video": NodeTypeSpec(
        inputs=[PROMPT_INPUT, FIRST_FRAME_INPUT, LAST_FRAME_INPUT, IMAGE_INPUT],
        output_field="videoUrl",
        default_data={
            "name": "Video",
            "prompt": "",
            "images": [],
            "aspectRatio": "16:9",
            "duration": 4,
            "model": "veo-3.1-fast-generate-preview",
            "generateAudio": False,
            "resolution": "720p",
        },
    ),

    # ---- Image post-processing nodes ----
    "upscale": NodeTypeSpec(
        inputs=[IMAGE_INPUT],
        output_field="image",
        default_data={"name": "Upscale", "image": "", "upscaleFactor": "x2"},
    ),
    "resize": NodeTypeSpec(
        inputs=[IMAGE_INPUT],
        output_field="output",
        default_data={"name": "Resize", "aspectRatio": "16:9"},
    ),
}

if set(NODE_REGISTRY) != set(get_args(NodeType)):
    raise RuntimeError("NODE_REGISTRY must describe every node type")


def get_node_spec(node_type: str) -> NodeTypeSpec | None:
    """Look up a node type spec, returning None if unknown."""
    return NODE_REGISTRY.get(node_type)


def default_node_data(node_type: str, **overrides: Any) -> NodeData:
    """Build the data a freshly added node of this kind starts with."""
    spec = get_node_spec(node_type)
    if spec is None:
        raise ValueError(f"Unknown node type '{node_type}'")
    return parse_node_data({**spec.default_data, **overrides, "type": node_type})
