"""
Input resolution: turns a node's incoming edges into typed runtime inputs.

The run-scoped ExecutionGraph holds the graph snapshot taken when execution
started plus the results produced so far in this run. Inputs are always read
from a source's *effective* data (snapshot merged with fresher results), so a
consumer in level k+1 sees what its producers in level k just generated.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable

from mediaflow.models.graph import (
    FILE_INPUT,
    FIRST_FRAME_INPUT,
    IMAGE_INPUT,
    LAST_FRAME_INPUT,
    PROMPT_INPUT,
    AgentData,
    Edge,
    FileData,
    FileInput,
    ImageData,
    Node,
    NodeData,
    NodeInputs,
    ResizeData,
    TextData,
    UpscaleData,
    merge_node_data,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Run-scoped graph view
# ---------------------------------------------------------------------------


class ExecutionGraph:
    """Nodes by id, the edge list, and the results cache of one execution."""

    def __init__(self, nodes: Iterable[Node], edges: Iterable[Edge]):
        self.nodes: dict[str, Node] = {n.id: n for n in nodes}
        self.edges: list[Edge] = list(edges)
        self.results: dict[str, dict[str, Any]] = {}

    def get_node(self, node_id: str) -> Node | None:
        return self.nodes.get(node_id)

    def get_effective_data(self, node_id: str) -> NodeData | None:
        """Node data with this run's result (if any) shallow-merged on top."""
        node = self.nodes.get(node_id)
        if node is None:
            return None
        result = self.results.get(node_id)
        if not result:
            return node.data
        return merge_node_data(node.data, result)

    def record_result(self, node_id: str, patch: dict[str, Any]) -> None:
        self.results[node_id] = {**self.results.get(node_id, {}), **patch}

    def incoming_edges(self, node_id: str) -> list[Edge]:
        return [edge for edge in self.edges if edge.target == node_id]


# ---------------------------------------------------------------------------
# Source extraction rules
# ---------------------------------------------------------------------------


def _prompt_from(source: NodeData | None) -> str | None:
    if isinstance(source, TextData):
        return source.text
    if isinstance(source, AgentData):
        return source.output
    return None


def _single_image_from(source: NodeData | None) -> str | None:
    """Image ref for single-image ports (first frame, last frame, image)."""
    if isinstance(source, ImageData):
        return source.images[0] if source.images else None
    if isinstance(source, FileData):
        if source.file_type == "image" and source.gcs_uri:
            return source.gcs_uri
        return None
    if isinstance(source, UpscaleData):
        return source.image or None
    if isinstance(source, ResizeData):
        return source.output or None
    return None


def _images_from(source: NodeData | None) -> list[str]:
    """Image refs for multi-image ports; an image node contributes all of its images."""
    if isinstance(source, ImageData):
        return list(source.images)
    single = _single_image_from(source)
    return [single] if single else []


def _file_from(source: NodeData | None) -> FileInput | None:
    if isinstance(source, FileData) and source.gcs_uri:
        return FileInput(url=source.gcs_uri, type=source.file_type or "image")
    if isinstance(source, ResizeData) and source.output:
        return FileInput(url=source.output, type="image")
    return None


def _first_edge(edges: list[Edge], handle: str) -> Edge | None:
    return next((edge for edge in edges if edge.target_handle == handle), None)


def _collect_images(edges: list[Edge], graph: ExecutionGraph) -> list[str]:
    images: list[str] = []
    for edge in edges:
        if edge.target_handle == IMAGE_INPUT:
            images.extend(_images_from(graph.get_effective_data(edge.source)))
    return images


def _single_image_on(handle: str, edges: list[Edge], graph: ExecutionGraph) -> str | None:
    edge = _first_edge(edges, handle)
    if edge is None:
        return None
    return _single_image_from(graph.get_effective_data(edge.source))


# ---------------------------------------------------------------------------
# Per-kind resolvers
# ---------------------------------------------------------------------------


def _resolve_agent(edges: list[Edge], graph: ExecutionGraph) -> NodeInputs:
    inputs = NodeInputs(files=[])

    prompt_edge = _first_edge(edges, PROMPT_INPUT)
    if prompt_edge is not None:
        source = graph.get_effective_data(prompt_edge.source)
        # Agents only take their prompt from text nodes
        if isinstance(source, TextData):
            inputs.prompt = source.text

    for edge in edges:
        if edge.target_handle != FILE_INPUT:
            continue
        file_input = _file_from(graph.get_effective_data(edge.source))
        if file_input is not None:
            inputs.files.append(file_input)

    return inputs


def _resolve_image(edges: list[Edge], graph: ExecutionGraph) -> NodeInputs:
    inputs = NodeInputs()

    # The prompt arrives on whatever edge is not an image edge
    prompt_edge = next((edge for edge in edges if edge.target_handle != IMAGE_INPUT), None)
    if prompt_edge is not None:
        inputs.prompt = _prompt_from(graph.get_effective_data(prompt_edge.source))

    inputs.images = _collect_images(edges, graph)
    return inputs


def _resolve_video(edges: list[Edge], graph: ExecutionGraph) -> NodeInputs:
    inputs = NodeInputs()

    prompt_edge = _first_edge(edges, PROMPT_INPUT)
    if prompt_edge is not None:
        inputs.prompt = _prompt_from(graph.get_effective_data(prompt_edge.source))

    inputs.first_frame = _single_image_on(FIRST_FRAME_INPUT, edges, graph)
    inputs.last_frame = _single_image_on(LAST_FRAME_INPUT, edges, graph)
    inputs.images = _collect_images(edges, graph)
    return inputs


def _resolve_single_image(edges: list[Edge], graph: ExecutionGraph) -> NodeInputs:
    edge = _first_edge(edges, IMAGE_INPUT)
    if edge is None:
        logger.debug("No image edge found")
        return NodeInputs()

    source = graph.get_effective_data(edge.source)
    image = _single_image_from(source)
    if image is None and isinstance(source, FileData):
        logger.warning(
            "File node %s is not a usable image (fileType=%s, has gcsUri=%s)",
            edge.source,
            source.file_type,
            bool(source.gcs_uri),
        )
    return NodeInputs(image=image)


def _resolve_nothing(edges: list[Edge], graph: ExecutionGraph) -> NodeInputs:
    return NodeInputs()


_RESOLVERS: dict[str, Callable[[list[Edge], ExecutionGraph], NodeInputs]] = {
    "agent": _resolve_agent,
    "image": _resolve_image,
    "video": _resolve_video,
    "upscale": _resolve_single_image,
    "resize": _resolve_single_image,
    "text": _resolve_nothing,
    "file": _resolve_nothing,
}


def resolve_node_inputs(node: Node, graph: ExecutionGraph) -> NodeInputs:
    """
    Gather a node's inputs from its incoming edges.

    Single-valued ports take the first edge carrying their handle; image-input
    concatenates every matching edge in edge-list order. Reads never mutate
    the graph, so resolving twice against the same state yields equal inputs.
    """
    resolver = _RESOLVERS.get(node.type, _resolve_nothing)
    inputs = resolver(graph.incoming_edges(node.id), graph)
    logger.debug("Resolved inputs for node %s: %s", node.id, inputs)
    return inputs
