"""Dependency-ordered workflow executor.

This module implements the execution engine that runs a workflow graph once:
it resolves an execution order, invokes each node with bounded retries and a
per-attempt timeout, feeds successful outputs to dependents, and returns a
structured report of the run.

Nodes run strictly one after another; there is no intra-run parallelism.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
import asyncio
import logging
import time

from flowline.core.events import ExecutionLog, ExecutionLogger, LogLevel, utc_now
from flowline.core.graph import WorkflowGraph, resolve_execution_order
from flowline.core.state import ExecutionConfig, ExecutionContext, RunMode
from flowline.nodes.base import Node, NodeInputItem, NodeResult
from flowline.utils.errors import (
    AttemptTimeoutError,
    CycleDetectedError,
    EngineStateError,
    NodeExecutionError,
)

logger = logging.getLogger(__name__)


class NodeStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class NodeExecutionResult:
    """Outcome of a node that was attempted.

    Attributes:
        success: Whether the node eventually succeeded
        data: Output data on success
        error: Error message on failure
        execution_time_ms: Wall-clock time across all attempts
        timestamp: ISO-8601 completion time
        outputs: Per-output-index data for multi-output nodes
        attempts: Number of attempts made
    """

    success: bool
    execution_time_ms: int
    timestamp: str
    data: Any = None
    error: Optional[str] = None
    outputs: Optional[List[Any]] = None
    attempts: int = 1

    def output_for(self, index: int) -> Any:
        """Data for a given output index (falls back to ``data``)."""
        if self.outputs is not None and 0 <= index < len(self.outputs):
            return self.outputs[index]
        return self.data

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": self.success,
            "execution_time_ms": self.execution_time_ms,
            "timestamp": self.timestamp,
            "attempts": self.attempts,
        }
        if self.success:
            payload["data"] = self.data
        else:
            payload["error"] = self.error
        if self.outputs is not None:
            payload["outputs"] = self.outputs
        return payload


@dataclass(frozen=True)
class ExecutionSummary:
    run_id: str
    total_time_ms: int
    node_time_ms: int
    nodes_executed: int
    nodes_succeeded: int
    nodes_failed: int
    nodes_skipped: int
    total_logs: int
    error_count: int
    warning_count: int

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


@dataclass(frozen=True)
class WorkflowExecutionResult:
    """Report of one ``ExecutionEngine.execute()`` call.

    Attributes:
        success: False if the run aborted
        run_id: Identifier of the run
        total_time_ms: Wall-clock run time
        results: Node id -> result, for attempted nodes only
        logs: Every log entry of the run, regardless of level
        node_times: Node id -> time spent in that node
        statuses: Node id -> final status
        summary: Aggregated counts
        error: Abort reason when success is False
    """

    success: bool
    run_id: str
    total_time_ms: int
    results: Dict[str, NodeExecutionResult]
    logs: List[ExecutionLog]
    node_times: Dict[str, int]
    statuses: Dict[str, NodeStatus]
    summary: ExecutionSummary
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "run_id": self.run_id,
            "total_time_ms": self.total_time_ms,
            "results": {node_id: result.to_dict() for node_id, result in self.results.items()},
            "logs": [entry.to_dict() for entry in self.logs],
            "node_times": dict(self.node_times),
            "statuses": {node_id: status.value for node_id, status in self.statuses.items()},
            "summary": self.summary.to_dict(),
            "error": self.error,
        }


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


class ExecutionEngine:
    """Single-use executor for one workflow run.

    Usage:
        >>> engine = ExecutionEngine(graph, ExecutionConfig(max_retries=2))
        >>> for node in graph.nodes:
        ...     engine.register_node(node.id, build(node))
        >>> result = await engine.execute()

    Key behaviour:
    - Kahn topological order, declaration order as tie-break
    - One input item per inbound edge, only from successful sources
    - Up to ``max_retries`` attempts, each bounded by ``timeout_ms``
    - Exponential backoff between attempts
    - Abort on first exhausted node unless ``continue_on_failure``
    """

    def __init__(
        self,
        graph: WorkflowGraph,
        config: Optional[ExecutionConfig] = None,
        run_id: Optional[str] = None,
        sink: Optional[Any] = None,
        mode: RunMode = RunMode.MANUAL,
        trigger_data: Optional[Dict[str, Any]] = None,
    ):
        """Initialize engine.

        Args:
            graph: Workflow to execute
            config: Run configuration (defaults apply when omitted)
            run_id: Explicit run id (generated when omitted)
            sink: Optional ResultSink that receives the final result
            mode: How the run was originated
            trigger_data: Payload of the trigger firing behind the run
        """
        self.graph = graph
        self.config = config or ExecutionConfig()
        self.sink = sink
        context_kwargs: Dict[str, Any] = {"mode": mode, "trigger_data": trigger_data}
        if run_id:
            context_kwargs["run_id"] = run_id
        self.context = ExecutionContext(graph=graph, config=self.config, **context_kwargs)
        self.log = ExecutionLogger(self.context.run_id, self.config.log_level)
        self.context = replace(self.context, log=self.log)

        self._node_registry: Dict[str, Node] = {}
        self._node_times: Dict[str, int] = {}
        self._executed = False
        self._start = 0.0

    @property
    def run_id(self) -> str:
        return self.context.run_id

    def register_node(self, node_id: str, node: Node) -> None:
        """Attach the instance that executes ``node_id``."""
        self._node_registry[node_id] = node

    def get_execution_logs(self) -> List[ExecutionLog]:
        return self.log.entries

    async def execute(self) -> WorkflowExecutionResult:
        """Run the workflow once.

        Node failures never escape as exceptions; an aborted run is reported
        as ``success=False`` with whatever results were produced.

        Raises:
            EngineStateError: If this engine has already executed
        """
        if self._executed:
            raise EngineStateError(f"Engine for run {self.run_id} has already executed")
        self._executed = True
        self._start = time.monotonic()

        results: Dict[str, NodeExecutionResult] = {}
        statuses: Dict[str, NodeStatus] = {node.id: NodeStatus.PENDING for node in self.graph.nodes}
        error: Optional[str] = None

        self.log.info(f"Starting workflow execution: {self.graph.name or self.graph.id or self.run_id}")

        try:
            order = self._calculate_execution_order()
            self.log.info(f"Execution order determined: {' -> '.join(order)}")

            for node_id in order:
                node = self.graph.get_node(node_id)
                if node is None:
                    self.log.warn("Node definition not found", node_id)
                    continue

                if node.disabled:
                    self.log.info("Node is disabled, skipping", node_id)
                    statuses[node_id] = NodeStatus.SKIPPED
                    continue

                await self._execute_node(node_id, results, statuses)

            self.log.info(f"Workflow execution completed in {_elapsed_ms(self._start)}ms")
        except Exception as e:
            error = str(e)
            self.log.error(f"Workflow execution failed: {error}")

        result = self._build_result(results, statuses, error)
        await self._persist(result)
        return result

    def _calculate_execution_order(self) -> List[str]:
        resolved = resolve_execution_order(self.graph)
        if resolved.has_cycle:
            if self.config.fail_on_cycle:
                raise CycleDetectedError(resolved.cyclic_nodes)
            self.log.warn(
                "Circular dependency detected, using fallback order",
                data={"cyclic_nodes": resolved.cyclic_nodes},
            )
        return resolved.order

    async def _execute_node(
        self,
        node_id: str,
        results: Dict[str, NodeExecutionResult],
        statuses: Dict[str, NodeStatus],
    ) -> None:
        instance = self._node_registry.get(node_id)
        if instance is None:
            self.log.warn("Node instance not found, skipping", node_id)
            statuses[node_id] = NodeStatus.SKIPPED
            return

        node_start = time.monotonic()
        statuses[node_id] = NodeStatus.RUNNING
        self.log.info("Starting node execution", node_id)

        items = self._gather_input_items(node_id, results)
        self.log.debug("Input data prepared", node_id, {"input_count": len(items)})

        attempts = 0
        try:
            output, attempts = await self._execute_with_retry(instance, items, node_id)
        except Exception as e:
            elapsed = _elapsed_ms(node_start)
            self._node_times[node_id] = elapsed
            statuses[node_id] = NodeStatus.FAILED
            message = str(e) or e.__class__.__name__
            results[node_id] = NodeExecutionResult(
                success=False,
                error=message,
                execution_time_ms=elapsed,
                timestamp=utc_now(),
                attempts=self.config.max_retries,
            )
            self.log.error(f"Node execution failed: {message}", node_id)

            if not self.config.continue_on_failure:
                raise NodeExecutionError(node_id, message, e) from e
            self.log.warn("Continuing execution despite node failure", node_id)
            return

        elapsed = _elapsed_ms(node_start)
        self._node_times[node_id] = elapsed
        if isinstance(output, NodeResult):
            data, outputs = output.output, output.outputs
        else:
            data, outputs = output, None

        results[node_id] = NodeExecutionResult(
            success=True,
            data=data,
            outputs=outputs,
            execution_time_ms=elapsed,
            timestamp=utc_now(),
            attempts=attempts,
        )
        statuses[node_id] = NodeStatus.COMPLETED
        self.log.info(f"Node execution completed in {elapsed}ms", node_id)

    async def _execute_with_retry(
        self,
        instance: Node,
        items: List[NodeInputItem],
        node_id: str,
    ) -> Tuple[Any, int]:
        """Run a node with retries; returns (output, attempts used)."""
        max_retries = self.config.max_retries
        timeout = self.config.timeout_ms / 1000
        context = self.context.for_node(node_id)

        for attempt in range(1, max_retries + 1):
            try:
                self.log.debug(f"Execution attempt {attempt}/{max_retries}", node_id)
                try:
                    output = await asyncio.wait_for(instance.execute(items, context), timeout)
                except asyncio.TimeoutError:
                    raise AttemptTimeoutError(self.config.timeout_ms)
                return output, attempt
            except Exception as e:
                self.log.warn(f"Attempt {attempt} failed: {e}", node_id)
                if attempt == max_retries:
                    raise

                delay = self.config.backoff_delay_ms(attempt)
                self.log.debug(f"Retrying in {delay}ms", node_id)
                await asyncio.sleep(delay / 1000)

        # max_retries >= 1 guarantees a return or raise above
        raise RuntimeError("Execution failed without error")

    def _gather_input_items(
        self,
        node_id: str,
        results: Dict[str, NodeExecutionResult],
    ) -> List[NodeInputItem]:
        """One item per inbound edge whose source succeeded.

        Falls back to a single empty item when nothing is available.
        """
        items: List[NodeInputItem] = []
        for edge in self.graph.inbound(node_id):
            source_result = results.get(edge.source)
            if source_result is None or not source_result.success:
                continue
            items.append(
                NodeInputItem(
                    data=source_result.output_for(edge.output_index),
                    source_node_id=edge.source,
                    source_output_index=edge.output_index,
                )
            )
        return items or [NodeInputItem(data={})]

    def _build_result(
        self,
        results: Dict[str, NodeExecutionResult],
        statuses: Dict[str, NodeStatus],
        error: Optional[str],
    ) -> WorkflowExecutionResult:
        total_time = _elapsed_ms(self._start)
        summary = self._generate_summary(statuses, total_time)
        return WorkflowExecutionResult(
            success=error is None,
            run_id=self.run_id,
            total_time_ms=total_time,
            results=dict(results),
            logs=self.log.entries,
            node_times=dict(self._node_times),
            statuses=dict(statuses),
            summary=summary,
            error=error,
        )

    def _generate_summary(self, statuses: Dict[str, NodeStatus], total_time: int) -> ExecutionSummary:
        counts: Dict[NodeStatus, int] = {}
        for status in statuses.values():
            counts[status] = counts.get(status, 0) + 1

        return ExecutionSummary(
            run_id=self.run_id,
            total_time_ms=total_time,
            node_time_ms=sum(self._node_times.values()),
            nodes_executed=len(self._node_times),
            nodes_succeeded=counts.get(NodeStatus.COMPLETED, 0),
            nodes_failed=counts.get(NodeStatus.FAILED, 0),
            nodes_skipped=counts.get(NodeStatus.SKIPPED, 0),
            total_logs=len(self.log),
            error_count=self.log.count(LogLevel.ERROR),
            warning_count=self.log.count(LogLevel.WARN),
        )

    async def _persist(self, result: WorkflowExecutionResult) -> None:
        if self.sink is None:
            return
        try:
            await self.sink.save_result(result)
        except Exception:
            logger.exception("Failed to persist result of run %s", self.run_id)
