"""
Graph models for the editor's node/edge representation of a workflow.

Node data is a discriminated union keyed on ``type``; one variant per node
kind. Field names are snake_case in Python and camelCase on the wire (the
editor's JSON), so every dump for the editor uses ``by_alias=True``.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    model_validator,
)
from pydantic.alias_generators import to_camel


NodeType = Literal["agent", "text", "image", "video", "file", "upscale", "resize"]

# Semantic target handles (input ports)
PROMPT_INPUT = "prompt-input"
IMAGE_INPUT = "image-input"
FIRST_FRAME_INPUT = "first-frame-input"
LAST_FRAME_INPUT = "last-frame-input"
FILE_INPUT = "file-input"


class _EditorModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )


# ---------------------------------------------------------------------------
# Node data variants
# ---------------------------------------------------------------------------


class BaseNodeData(_EditorModel):
    name: str = ""
    # Transient UI flag; true while the node's remote call is in flight
    executing: bool = False


class AgentData(BaseNodeData):
    type: Literal["agent"] = "agent"
    model: str = "gemini-2.5-flash"
    instructions: str = ""
    output: str | None = None


class TextData(BaseNodeData):
    type: Literal["text"] = "text"
    text: str = ""


class FileData(BaseNodeData):
    type: Literal["file"] = "file"
    file_type: Literal["image", "video"] | None = None
    file_url: str = ""
    file_name: str = ""
    gcs_uri: str | None = None


class ImageData(BaseNodeData):
    type: Literal["image"] = "image"
    prompt: str = ""
    images: list[str] = Field(default_factory=list)
    aspect_ratio: Literal[
        "16:9", "9:16", "1:1", "3:2", "2:3", "4:3", "3:4", "5:4", "4:5", "21:9"
    ] = "16:9"
    model: str = "gemini-2.5-flash-image"
    resolution: Literal["1K", "2K", "4K"] = "1K"


class VideoData(BaseNodeData):
    type: Literal["video"] = "video"
    prompt: str = ""
    images: list[str] = Field(default_factory=list)
    first_frame: str | None = None
    last_frame: str | None = None
    video_url: str | None = None
    aspect_ratio: Literal["16:9", "9:16"] = "16:9"
    duration: Literal[4, 6, 8] = 4
    model: str = "veo-3.1-fast-generate-preview"
    generate_audio: bool = False
    resolution: Literal["720p", "1080p"] = "720p"


class UpscaleData(BaseNodeData):
    type: Literal["upscale"] = "upscale"
    image: str = ""
    upscale_factor: Literal["x2", "x3", "x4"] = "x2"


class ResizeData(BaseNodeData):
    type: Literal["resize"] = "resize"
    aspect_ratio: Literal["16:9", "9:16"] = "16:9"
    output: str | None = None


NodeData = Annotated[
    Union[AgentData, TextData, FileData, ImageData, VideoData, UpscaleData, ResizeData],
    Field(discriminator="type"),
]

_node_data_adapter: TypeAdapter[NodeData] = TypeAdapter(NodeData)


def parse_node_data(raw: dict[str, Any]) -> NodeData:
    """Validate a raw editor dict into the matching node data variant."""
    return _node_data_adapter.validate_python(raw)


def dump_node_data(data: NodeData) -> dict[str, Any]:
    """Serialize node data back to the editor's camelCase dict."""
    return data.model_dump(by_alias=True)


def merge_node_data(data: NodeData, patch: dict[str, Any]) -> NodeData:
    """
    Shallow-merge a patch (editor keys) into node data.

    Fields absent from the patch keep their current values. The result is
    re-validated, so a patch cannot smuggle in a value of the wrong type.
    """
    if not patch:
        return data
    merged = {**dump_node_data(data), **patch}
    return parse_node_data(merged)


# ---------------------------------------------------------------------------
# Nodes and edges
# ---------------------------------------------------------------------------


class Node(BaseModel):
    # position, selected, measured, ... are editor-only and passed through
    model_config = ConfigDict(extra="allow")

    id: str
    type: NodeType
    data: NodeData

    @model_validator(mode="before")
    @classmethod
    def _fill_data_type(cls, values: Any) -> Any:
        if isinstance(values, dict):
            data = values.get("data")
            node_type = values.get("type")
            if isinstance(data, dict) and "type" not in data and node_type:
                values = {**values, "data": {**data, "type": node_type}}
        return values

    @model_validator(mode="after")
    def _check_type_tag(self) -> "Node":
        if self.data.type != self.type:
            raise ValueError(
                f"Node {self.id} has type '{self.type}' but data tagged '{self.data.type}'"
            )
        return self

    def with_data(self, data: NodeData) -> "Node":
        return self.model_copy(update={"data": data})

    def to_editor(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class Edge(_EditorModel):
    id: str | None = None
    source: str
    target: str
    source_handle: str | None = None
    target_handle: str | None = None


class FileInput(BaseModel):
    url: str
    type: str


class NodeInputs(_EditorModel):
    """Runtime inputs gathered for one node from its incoming edges."""

    prompt: str | None = None
    files: list[FileInput] | None = None
    images: list[str] | None = None
    first_frame: str | None = None
    last_frame: str | None = None
    image: str | None = None
