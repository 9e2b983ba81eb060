"""
Workflow execution engine.

Takes the editor's nodes and edges, computes dependency levels, and runs the
levels in order. Nodes inside a level execute concurrently; the next level
starts only after every node of the current one settled.

Every state change is reported through ``on_node_update(node_id, patch)``:
``{"executing": True}`` right before a node's remote call, then either the
node's result patch with ``executing: False`` or just ``{"executing": False}``
when it failed. A failing node never stops its siblings or later levels; it
simply records no result, so its consumers resolve empty inputs. An exception
raised by the callback itself counts as a failure of the node it reported on.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Iterable, Literal

from pydantic import BaseModel, Field

from mediaflow.models.graph import Edge, Node, merge_node_data
from mediaflow.services.dependency_analyzer import get_execution_levels
from mediaflow.services.errors import MissingInputError
from mediaflow.services.generation_client import GenerationClient
from mediaflow.services.input_resolver import ExecutionGraph, resolve_node_inputs
from mediaflow.services.node_executors import get_executor

logger = logging.getLogger(__name__)

OnNodeUpdate = Callable[[str, dict[str, Any]], None]

# ---------------------------------------------------------------------------
# Result models
# ---------------------------------------------------------------------------


class NodeExecutionResult(BaseModel):
    node_id: str
    node_type: str | None = None
    status: Literal["completed", "skipped", "error"]
    outputs: dict[str, Any] | None = None
    error: str | None = None
    execution_time_ms: int = 0


class WorkflowRunResult(BaseModel):
    success: bool
    levels: list[list[str]] = Field(default_factory=list)
    forced_nodes: list[str] = Field(default_factory=list)
    node_results: list[NodeExecutionResult] = Field(default_factory=list)
    cancelled: bool = False
    total_execution_time_ms: int = 0


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class WorkflowEngine:
    """
    Executes one workflow graph.

    The engine owns a snapshot of the committed nodes; each ``run`` gets its
    own results cache. The caller owns the real state and learns about
    changes only through ``on_node_update``.
    """

    def __init__(
        self,
        nodes: Iterable[Node],
        edges: Iterable[Edge],
        on_node_update: OnNodeUpdate,
        *,
        client: GenerationClient,
        cancel_event: asyncio.Event | None = None,
    ):
        self._nodes: dict[str, Node] = {n.id: n for n in nodes}
        self._edges: list[Edge] = list(edges)
        self._on_node_update = on_node_update
        self._client = client
        self._cancel_event = cancel_event

    @property
    def nodes(self) -> list[Node]:
        return list(self._nodes.values())

    async def run(self) -> WorkflowRunResult:
        """Execute the whole graph level by level."""
        start_time = time.perf_counter()

        # Levels come from the structure at run start and are never recomputed
        plan = get_execution_levels(self._nodes.keys(), self._edges)
        graph = ExecutionGraph(self._nodes.values(), self._edges)
        logger.info("Starting workflow run: %d nodes in %d levels", len(graph.nodes), len(plan.levels))

        node_results: list[NodeExecutionResult] = []
        cancelled = False

        for index, level in enumerate(plan.levels):
            if self._cancel_event is not None and self._cancel_event.is_set():
                logger.info("Workflow run cancelled before level %d", index)
                cancelled = True
                break

            logger.debug("Executing level %d: %s", index, level)
            level_results = await asyncio.gather(
                *(self._execute(node_id, graph) for node_id in level)
            )
            node_results.extend(r for r in level_results if r is not None)

        total_ms = int((time.perf_counter() - start_time) * 1000)
        success = not cancelled and all(r.status == "completed" for r in node_results)
        logger.info(
            "Workflow run finished in %d ms (success=%s, executed=%d)",
            total_ms,
            success,
            len(node_results),
        )
        return WorkflowRunResult(
            success=success,
            levels=plan.levels,
            forced_nodes=plan.forced,
            node_results=node_results,
            cancelled=cancelled,
            total_execution_time_ms=total_ms,
        )

    async def execute_node(self, node_id: str) -> NodeExecutionResult | None:
        """
        Execute a single node against the committed state.

        Downstream nodes are not re-run. Returns None when the node does not
        exist or is a source kind that is never executed.
        """
        if node_id not in self._nodes:
            logger.warning("Node not found: %s", node_id)
            return None
        graph = ExecutionGraph(self._nodes.values(), self._edges)
        return await self._execute(node_id, graph)

    # -----------------------------------------------------------------------

    def _report(self, node_id: str, patch: dict[str, Any]) -> None:
        self._on_node_update(node_id, patch)

    def _clear_executing(self, node_id: str) -> None:
        """Report ``executing: False`` after a failure; a failing callback is only logged."""
        try:
            self._on_node_update(node_id, {"executing": False})
        except Exception:
            logger.exception("Could not clear executing flag for node %s", node_id)

    async def _execute(self, node_id: str, graph: ExecutionGraph) -> NodeExecutionResult | None:
        node = graph.get_node(node_id)
        if node is None:
            return None

        exec_fn = get_executor(node.type)
        if exec_fn is None:
            # text/file nodes are pure sources
            return None

        node_start = time.perf_counter()

        try:
            self._report(node_id, {"executing": True})
            inputs = resolve_node_inputs(node, graph)
            outputs = await exec_fn(node, inputs, self._client)

            # Raises before anything is recorded if the patch does not fit the node
            merged = merge_node_data(node.data, outputs)
            self._report(node_id, {**outputs, "executing": False})

        except MissingInputError as e:
            elapsed_ms = int((time.perf_counter() - node_start) * 1000)
            logger.warning("Skipping node %s: %s", node_id, e)
            self._clear_executing(node_id)
            return NodeExecutionResult(
                node_id=node_id,
                node_type=node.type,
                status="skipped",
                error=str(e),
                execution_time_ms=elapsed_ms,
            )

        except Exception as e:
            elapsed_ms = int((time.perf_counter() - node_start) * 1000)
            error_msg = f"{type(e).__name__}: {e}"
            logger.exception("Node %s failed: %s", node_id, error_msg)
            self._clear_executing(node_id)
            return NodeExecutionResult(
                node_id=node_id,
                node_type=node.type,
                status="error",
                error=error_msg,
                execution_time_ms=elapsed_ms,
            )

        elapsed_ms = int((time.perf_counter() - node_start) * 1000)

        # Visible to later levels of this run
        graph.record_result(node_id, outputs)
        # Visible to later execute_node calls on this engine
        self._nodes[node_id] = node.with_data(merged)

        logger.info("Node %s completed in %d ms", node_id, elapsed_ms)
        return NodeExecutionResult(
            node_id=node_id,
            node_type=node.type,
            status="completed",
            outputs=outputs,
            execution_time_ms=elapsed_ms,
        )
