"""Base node protocol and implementation.

This module defines the Node protocol that the execution engine consumes,
along with a BaseNode class that provides constructor-time parameter
validation, and the per-item transform helper shared by transform nodes.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence, Union, runtime_checkable
from abc import ABC, abstractmethod
import inspect
import logging

from flowline.core.state import ExecutionContext
from flowline.utils.errors import ParameterValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NodeInputItem:
    """One inbound contribution to a node.

    Attributes:
        data: Output of the source node for the connected output index
        source_node_id: Node that produced the data (None for the synthetic item)
        source_output_index: Output index on the source node
    """

    data: Any = field(default_factory=dict)
    source_node_id: Optional[str] = None
    source_output_index: Optional[int] = None


@dataclass
class NodeResult:
    """Optional rich return value of a node.

    Nodes may return plain data; returning NodeResult additionally lets a node
    expose several outputs that downstream connections select by index.

    Attributes:
        output: Primary output (output index 0 unless ``outputs`` is given)
        outputs: Data per output index
        metadata: Additional metadata about execution
    """

    output: Any
    outputs: Optional[List[Any]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class Node(Protocol):
    """Protocol that all nodes must implement.

    Any object with these attributes and an async ``execute`` can be
    registered with the engine.
    """

    id: str
    name: str
    type: str
    parameters: Dict[str, Any]

    async def execute(
        self,
        items: Sequence[NodeInputItem],
        context: ExecutionContext,
    ) -> Union[Any, NodeResult]:
        """Execute node logic.

        Args:
            items: One item per inbound edge, or a single synthetic empty item
            context: Immutable execution context

        Returns:
            Output data or a NodeResult

        Raises:
            Exception: If execution fails
        """
        ...


class BaseNode(ABC):
    """Base implementation with parameter handling.

    Subclasses declare ``type`` and ``required_parameters`` and implement
    ``execute``. Parameters are validated once, when the node is constructed.
    """

    type: str = "base"
    required_parameters: Sequence[str] = ()

    def __init__(self, id: str, parameters: Dict[str, Any] = None, name: str = None):
        """Initialize base node.

        Args:
            id: Unique identifier for this node within its graph
            parameters: Node configuration
            name: Display name (defaults to the id)

        Raises:
            ParameterValidationError: If a required parameter is missing or invalid
        """
        self.id = id
        self.name = name or id
        self.parameters = dict(parameters or {})
        self.validate_parameters()

    def validate_parameters(self) -> None:
        """Check required parameters; subclasses extend with specific rules."""
        for key in self.required_parameters:
            value = self.parameters.get(key)
            if value is None or value == "" or value == []:
                raise ParameterValidationError(
                    self.id, f"'{key}' parameter is required", parameter=key
                )

    def get_parameter(self, key: str, default: Any = None) -> Any:
        value = self.parameters.get(key)
        return default if value is None else value

    @abstractmethod
    async def execute(
        self,
        items: Sequence[NodeInputItem],
        context: ExecutionContext,
    ) -> Union[Any, NodeResult]:
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(id='{self.id}')"


async def map_items(
    items: Sequence[NodeInputItem],
    context: ExecutionContext,
    transform: Callable[[Any], Union[Any, Awaitable[Any]]],
) -> List[Any]:
    """Apply ``transform`` to each item's data, one output per input.

    When the run continues on failure, a failing item yields
    ``{"error": message}`` in its slot; otherwise the error propagates.
    """
    results = []
    for item in items:
        data = item.data if item.data is not None else {}
        try:
            result = transform(data)
            if inspect.isawaitable(result):
                result = await result
            results.append(result)
        except Exception as e:
            if not context.config.continue_on_failure:
                raise
            logger.warning("Item transform failed on node %s: %s", context.node_id, e)
            results.append({"error": str(e)})
    return results


class PassThroughNode(BaseNode):
    """Node that emits the data of its input items unchanged.

    A single input yields that item's data; several inputs yield a list.
    """

    type = "noOp"

    async def execute(
        self,
        items: Sequence[NodeInputItem],
        context: ExecutionContext,
    ) -> Any:
        if len(items) == 1:
            return items[0].data
        return [item.data for item in items]
