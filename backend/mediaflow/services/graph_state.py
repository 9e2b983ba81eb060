"""
In-memory graph state, the caller-owned source of truth the engine reports to.

Patches are last-write-wins per node id and shallow-merged into node data,
matching how the editor applies ``updateNodeData``.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable
from uuid import uuid4

from mediaflow.models.graph import Edge, Node, merge_node_data
from mediaflow.models.node_registry import default_node_data

logger = logging.getLogger(__name__)


class GraphState:
    def __init__(self, nodes: Iterable[Node] = (), edges: Iterable[Edge] = ()):
        self._nodes: dict[str, Node] = {}
        for node in nodes:
            if node.id in self._nodes:
                raise ValueError(f"Duplicate node ID '{node.id}'")
            self._nodes[node.id] = node
        self._edges: list[Edge] = list(edges)

    @classmethod
    def from_editor(cls, nodes: list[dict[str, Any]], edges: list[dict[str, Any]]) -> "GraphState":
        return cls(
            [Node.model_validate(n) for n in nodes],
            [Edge.model_validate(e) for e in edges],
        )

    @property
    def nodes(self) -> list[Node]:
        return list(self._nodes.values())

    @property
    def edges(self) -> list[Edge]:
        return list(self._edges)

    def get_node(self, node_id: str) -> Node | None:
        return self._nodes.get(node_id)

    def add_node(self, node_type: str, *, node_id: str | None = None, **data: Any) -> Node:
        """Add a node of the given kind with the editor's default data."""
        node_id = node_id or f"{node_type}-{uuid4().hex[:12]}"
        if node_id in self._nodes:
            raise ValueError(f"Duplicate node ID '{node_id}'")
        node = Node(id=node_id, type=node_type, data=default_node_data(node_type, **data))
        self._nodes[node_id] = node
        return node

    def connect(
        self,
        source: str,
        target: str,
        *,
        source_handle: str | None = None,
        target_handle: str | None = None,
    ) -> Edge:
        """Add an edge; connecting the same ports twice returns the existing edge."""
        for edge in self._edges:
            if (
                edge.source == source
                and edge.target == target
                and edge.source_handle == source_handle
                and edge.target_handle == target_handle
            ):
                return edge

        edge = Edge(
            id=f"edge-{source}{source_handle or ''}-{target}{target_handle or ''}",
            source=source,
            target=target,
            source_handle=source_handle,
            target_handle=target_handle,
        )
        self._edges.append(edge)
        return edge

    def update_node_data(self, node_id: str, patch: dict[str, Any]) -> None:
        """Shallow-merge a data patch into a node. Unknown ids are ignored."""
        node = self._nodes.get(node_id)
        if node is None:
            logger.warning("Ignoring update for unknown node %s", node_id)
            return
        self._nodes[node_id] = node.with_data(merge_node_data(node.data, patch))

    def remove_node(self, node_id: str) -> None:
        """Remove a node and every edge attached to it."""
        self._nodes.pop(node_id, None)
        self._edges = [
            edge for edge in self._edges
            if edge.source != node_id and edge.target != node_id
        ]

    def to_editor(self) -> dict[str, list[dict[str, Any]]]:
        return {
            "nodes": [node.to_editor() for node in self._nodes.values()],
            "edges": [edge.model_dump(by_alias=True, exclude_none=True) for edge in self._edges],
        }
