"""Run configuration and the per-invocation execution context."""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional, TYPE_CHECKING
import uuid

from pydantic import BaseModel, Field, field_validator

from flowline.utils import config as env

if TYPE_CHECKING:
    from flowline.core.events import ExecutionLogger
    from flowline.core.graph import WorkflowGraph


LOG_LEVELS = ("debug", "info", "warn", "error")


class RunMode(str, Enum):
    """How a run was originated."""

    MANUAL = "manual"
    TRIGGER = "trigger"
    WEBHOOK = "webhook"


class ExecutionConfig(BaseModel):
    """Settings for one workflow run.

    Attributes:
        timeout_ms: Per-attempt node timeout
        max_retries: Total attempts per node (not extra retries)
        continue_on_failure: Keep running after a node exhausts its attempts
        log_level: Minimum level forwarded to the logging system
        backoff_base_ms: First retry delay; doubles on each further attempt
        backoff_max_ms: Upper bound on the retry delay
        fail_on_cycle: Fail the run instead of falling back to declaration
            order when the graph has a cycle
        credentials: Opaque credentials made available to nodes
        nodes: Opaque per-node settings keyed by node id
    """

    timeout_ms: int = Field(300_000, gt=0)
    max_retries: int = Field(3, ge=1)
    continue_on_failure: bool = False
    log_level: str = "info"
    backoff_base_ms: int = Field(1000, ge=0)
    backoff_max_ms: int = Field(10_000, ge=0)
    fail_on_cycle: bool = False
    credentials: Dict[str, Any] = Field(default_factory=dict)
    nodes: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        value = value.lower()
        if value == "warning":
            value = "warn"
        if value not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        return value

    @classmethod
    def from_env(cls, **overrides: Any) -> "ExecutionConfig":
        """Build a config from FLOWLINE_* environment variables.

        Explicit keyword overrides win over the environment.
        """
        values: Dict[str, Any] = {
            "timeout_ms": env.get_int("FLOWLINE_NODE_TIMEOUT_MS", 300_000),
            "max_retries": env.get_int("FLOWLINE_MAX_RETRIES", 3),
            "continue_on_failure": env.get_bool("FLOWLINE_CONTINUE_ON_FAILURE", False),
            "log_level": env.get_config("FLOWLINE_LOG_LEVEL", "info"),
        }
        values.update(overrides)
        return cls(**values)

    def backoff_delay_ms(self, attempt: int) -> int:
        """Delay after a failed ``attempt`` (1-based): base * 2^(attempt-1), capped."""
        return min(self.backoff_base_ms * (2 ** (attempt - 1)), self.backoff_max_ms)


@dataclass(frozen=True)
class ExecutionContext:
    """Immutable bundle handed to every node invocation.

    Attributes:
        graph: The workflow being executed
        config: Run configuration
        run_id: Identifier of this run
        node_id: Node currently being invoked (None at run level)
        mode: How the run was originated
        trigger_data: Payload of the trigger firing that started the run
        log: Run log that node warnings are recorded in
    """

    graph: "WorkflowGraph"
    config: ExecutionConfig
    run_id: str = field(default_factory=lambda: f"exec_{uuid.uuid4().hex[:12]}")
    node_id: Optional[str] = None
    mode: RunMode = RunMode.MANUAL
    trigger_data: Optional[Dict[str, Any]] = None
    log: Optional["ExecutionLogger"] = field(default=None, repr=False, compare=False)

    def for_node(self, node_id: str) -> "ExecutionContext":
        """Copy of this context addressed to ``node_id``."""
        return replace(self, node_id=node_id)

    def node_settings(self) -> Dict[str, Any]:
        """Per-node settings from the config for the current node."""
        if self.node_id is None:
            return {}
        return self.config.nodes.get(self.node_id, {})

    def warn(self, message: str) -> None:
        """Record a warning for the current node in the run log."""
        if self.log is not None:
            self.log.warn(message, self.node_id)
