"""
Errors raised while executing workflow nodes.

The engine catches all of these per node; none of them aborts a run.
"""

from __future__ import annotations


class WorkflowExecutionError(Exception):
    """Base class for node execution failures."""


class MissingInputError(WorkflowExecutionError):
    """A required input (prompt/image) is empty after resolution."""

    def __init__(self, node_id: str, field: str):
        self.node_id = node_id
        self.field = field
        super().__init__(f"No {field} available for node {node_id}")


class RemoteCallError(WorkflowExecutionError):
    """A remote generation operation answered with a non-OK response."""

    def __init__(self, operation: str, status_code: int | None, body: str):
        self.operation = operation
        self.status_code = status_code
        self.body = body
        status = f" ({status_code})" if status_code is not None else ""
        super().__init__(f"Failed to {operation}{status}: {body}")


class GenerationTimeoutError(RemoteCallError):
    """A long-running generation did not finish within its poll budget."""

    def __init__(self, operation: str, body: str = "Generation timed out", status_code: int | None = None):
        super().__init__(operation, status_code, body)


class GenerationCancelledError(WorkflowExecutionError):
    """A long-running generation was abandoned because its caller cancelled."""

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Cancelled: {operation}")
