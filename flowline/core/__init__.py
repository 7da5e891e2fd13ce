"""Core execution components."""

from flowline.core.graph import (
    WorkflowGraph,
    WorkflowNode,
    Connection,
    Edge,
    ExecutionOrder,
    resolve_execution_order,
)
from flowline.core.state import ExecutionConfig, ExecutionContext, RunMode
from flowline.core.events import ExecutionLog, ExecutionLogger, LogLevel
from flowline.core.executor import (
    ExecutionEngine,
    ExecutionSummary,
    NodeExecutionResult,
    NodeStatus,
    WorkflowExecutionResult,
)

__all__ = [
    "WorkflowGraph",
    "WorkflowNode",
    "Connection",
    "Edge",
    "ExecutionOrder",
    "resolve_execution_order",
    "ExecutionConfig",
    "ExecutionContext",
    "RunMode",
    "ExecutionLog",
    "ExecutionLogger",
    "LogLevel",
    "ExecutionEngine",
    "ExecutionSummary",
    "NodeExecutionResult",
    "NodeStatus",
    "WorkflowExecutionResult",
]
