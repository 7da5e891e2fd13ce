"""
Flowline: dependency-ordered workflow execution with triggers

Runs workflow graphs (nodes plus connections, n8n-style JSON) one node at a
time in dependency order, with per-node retries and timeouts, and starts runs
from schedules or HTTP webhooks.

Example:
    >>> from flowline import WorkflowGraph, WorkflowRunner, ExecutionConfig
    >>>
    >>> graph = WorkflowGraph.from_dict({
    ...     "name": "greet",
    ...     "nodes": [
    ...         {"id": "start", "type": "manualTrigger"},
    ...         {"id": "greet", "type": "set", "parameters": {
    ...             "operations": [{"name": "message", "value": "hello", "type": "set"}],
    ...         }},
    ...     ],
    ...     "connections": {"greet": {"0": [{"node": "start"}]}},
    ... })
    >>> runner = WorkflowRunner(config=ExecutionConfig(max_retries=2))
    >>> result = await runner.run(graph)
    >>> result.results["greet"].data
    [{'mode': 'manual', 'message': 'hello'}]
"""

__version__ = "0.1.0"

# Core components
from flowline.core.graph import WorkflowGraph, WorkflowNode, Connection, Edge, resolve_execution_order
from flowline.core.state import ExecutionConfig, ExecutionContext, RunMode
from flowline.core.events import ExecutionLog, LogLevel
from flowline.core.executor import (
    ExecutionEngine,
    NodeExecutionResult,
    NodeStatus,
    WorkflowExecutionResult,
)

# Nodes
from flowline.nodes.base import Node, BaseNode, NodeInputItem, NodeResult

# Triggers
from flowline.triggers import (
    BaseTrigger,
    TriggerConfig,
    TriggerState,
    TriggerManager,
    ScheduleTrigger,
    WebhookTrigger,
)

# Sinks
from flowline.sinks import ResultSink, MemorySink, SQLiteSink

# Registry and runner
from flowline.utils.registry import NodeRegistry
from flowline.runner import WorkflowRunner

# Errors
from flowline.utils.errors import (
    FlowlineError,
    GraphValidationError,
    CycleDetectedError,
    ParameterValidationError,
    NodeExecutionError,
    EngineStateError,
    InvalidNodeTypeError,
    TriggerLifecycleError,
)

__all__ = [
    "WorkflowGraph",
    "WorkflowNode",
    "Connection",
    "Edge",
    "resolve_execution_order",
    "ExecutionConfig",
    "ExecutionContext",
    "RunMode",
    "ExecutionLog",
    "LogLevel",
    "ExecutionEngine",
    "NodeExecutionResult",
    "NodeStatus",
    "WorkflowExecutionResult",
    "Node",
    "BaseNode",
    "NodeInputItem",
    "NodeResult",
    "BaseTrigger",
    "TriggerConfig",
    "TriggerState",
    "TriggerManager",
    "ScheduleTrigger",
    "WebhookTrigger",
    "ResultSink",
    "MemorySink",
    "SQLiteSink",
    "NodeRegistry",
    "WorkflowRunner",
    "FlowlineError",
    "GraphValidationError",
    "CycleDetectedError",
    "ParameterValidationError",
    "NodeExecutionError",
    "EngineStateError",
    "InvalidNodeTypeError",
    "TriggerLifecycleError",
]
