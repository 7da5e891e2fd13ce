"""Custom error classes for Flowline."""

from typing import Optional


class FlowlineError(Exception):
    """Base exception for all Flowline errors."""

    pass


class GraphValidationError(FlowlineError):
    """Raised when a workflow graph is structurally invalid."""

    pass


class CycleDetectedError(GraphValidationError):
    """Raised when a cycle is found and the run is configured to refuse it."""

    def __init__(self, cyclic_nodes):
        self.cyclic_nodes = list(cyclic_nodes)
        super().__init__(
            f"Circular dependency detected between nodes: {', '.join(self.cyclic_nodes)}"
        )


class ParameterValidationError(FlowlineError):
    """Raised at construction time when a node or trigger is misconfigured."""

    def __init__(self, node_id: str, message: str, parameter: Optional[str] = None):
        self.node_id = node_id
        self.parameter = parameter
        super().__init__(f"Node '{node_id}' has invalid parameters: {message}")


class AttemptTimeoutError(FlowlineError):
    """Raised when a single execution attempt exceeds its timeout."""

    def __init__(self, timeout_ms: int):
        self.timeout_ms = timeout_ms
        super().__init__(f"Execution timeout after {timeout_ms}ms")


class NodeExecutionError(FlowlineError):
    """Raised when node execution fails after all retries."""

    def __init__(self, node_id: str, message: str, original_error: Exception = None):
        self.node_id = node_id
        self.original_error = original_error
        super().__init__(f"Node {node_id} failed: {message}")


class EngineStateError(FlowlineError):
    """Raised when an engine is used outside its single-run lifecycle."""

    pass


class InvalidNodeTypeError(FlowlineError):
    """Raised when an unregistered node or trigger type is requested."""

    pass


class TriggerLifecycleError(FlowlineError):
    """Raised when a trigger fails to start or stop."""

    def __init__(self, trigger_id: str, action: str, message: str):
        self.trigger_id = trigger_id
        self.action = action
        super().__init__(f"Trigger '{trigger_id}' failed to {action}: {message}")


class AuthenticationError(FlowlineError):
    """Raised when an inbound webhook request fails authentication."""

    pass


class ExpressionEvaluationError(FlowlineError):
    """Raised when an expression marker cannot be evaluated."""

    def __init__(self, expression: str, message: str):
        self.expression = expression
        super().__init__(f"Expression '{expression}' evaluation failed: {message}")
