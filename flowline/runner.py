"""Glue between workflow definitions, the engine and triggers.

``WorkflowRunner`` turns a ``WorkflowGraph`` into a ready-to-run engine using
a ``NodeRegistry``, and connects triggers to the graph by handing them a
subscriber that starts one run per firing.
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional
import logging

from flowline.core.executor import ExecutionEngine, WorkflowExecutionResult
from flowline.core.graph import WorkflowGraph
from flowline.core.state import ExecutionConfig, RunMode
from flowline.triggers.base import BaseTrigger, TriggerConfig
from flowline.utils.registry import NodeRegistry

logger = logging.getLogger(__name__)


class WorkflowRunner:
    """Build and run engines for workflow graphs.

    Example:
        >>> runner = WorkflowRunner(sink=SQLiteSink("runs.db"))
        >>> graph = WorkflowGraph.from_json(open("workflow.json").read())
        >>> result = await runner.run(graph)
        >>>
        >>> for trigger in runner.triggers_for(graph):
        ...     await trigger.start(runner.subscriber_for(graph))
    """

    def __init__(
        self,
        registry: Optional[NodeRegistry] = None,
        sink: Optional[Any] = None,
        config: Optional[ExecutionConfig] = None,
    ):
        """Initialize runner.

        Args:
            registry: Node registry (built-in types when omitted)
            sink: Optional ResultSink attached to every engine
            config: Default execution configuration (``ExecutionConfig.from_env()``
                when omitted)
        """
        self.registry = registry or NodeRegistry()
        self.sink = sink
        self.config = config or ExecutionConfig.from_env()

    def build_engine(
        self,
        graph: WorkflowGraph,
        config: Optional[ExecutionConfig] = None,
        run_id: Optional[str] = None,
        mode: RunMode = RunMode.MANUAL,
        trigger_data: Optional[Dict[str, Any]] = None,
    ) -> ExecutionEngine:
        """Create an engine with every enabled node instantiated.

        Raises:
            InvalidNodeTypeError: If a node type is not registered
            ParameterValidationError: If a node has invalid parameters
        """
        engine = ExecutionEngine(
            graph,
            config or self.config,
            run_id=run_id,
            sink=self.sink,
            mode=mode,
            trigger_data=trigger_data,
        )
        for node in graph.nodes:
            if node.disabled:
                continue
            engine.register_node(node.id, self.registry.create_node(node))
        return engine

    async def run(
        self,
        graph: WorkflowGraph,
        trigger_data: Optional[Dict[str, Any]] = None,
        mode: RunMode = RunMode.MANUAL,
        config: Optional[ExecutionConfig] = None,
    ) -> WorkflowExecutionResult:
        """Execute the graph once and return the run report."""
        engine = self.build_engine(graph, config=config, mode=mode, trigger_data=trigger_data)
        result = await engine.execute()
        logger.info(
            "Run %s of workflow %s finished: success=%s in %dms",
            result.run_id, graph.name or graph.id, result.success, result.total_time_ms,
        )
        return result

    def subscriber_for(
        self,
        graph: WorkflowGraph,
        mode: RunMode = RunMode.TRIGGER,
    ) -> Callable[[Dict[str, Any]], Awaitable[WorkflowExecutionResult]]:
        """Return a trigger subscriber that runs ``graph`` once per firing."""

        async def run_workflow(payload: Dict[str, Any]) -> WorkflowExecutionResult:
            run_mode = mode
            if payload.get("trigger_type") == "webhook":
                run_mode = RunMode.WEBHOOK
            return await self.run(graph, trigger_data=payload, mode=run_mode)

        run_workflow.__qualname__ = f"run_workflow[{graph.name or graph.id}]"
        return run_workflow

    def triggers_for(
        self,
        graph: WorkflowGraph,
        config: Optional[TriggerConfig] = None,
    ) -> List[BaseTrigger]:
        """Instantiate a trigger for each enabled entry node with a registered trigger type."""
        trigger_types = {node.type for node in graph.nodes if self.registry.is_trigger_type(node.type)}
        return [self.registry.create_trigger(node, config) for node in graph.trigger_nodes(trigger_types)]
