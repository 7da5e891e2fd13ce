"""Registry mapping workflow node type tags to implementations.

Each tag resolves to a node class used by the execution engine, and
optionally to a trigger class that produces runs for that entry node.
n8n-style tags (``n8n-nodes-base.httpRequest``) resolve to the same
implementations as their short forms.
"""

from typing import Dict, List, Optional, Type

from flowline.core.graph import WorkflowNode
from flowline.nodes.base import BaseNode
from flowline.triggers.base import BaseTrigger, TriggerConfig
from flowline.utils.errors import InvalidNodeTypeError, ParameterValidationError

TYPE_PREFIX = "n8n-nodes-base."

ALIASES = {
    "cron": "scheduleTrigger",
    "start": "manualTrigger",
}


def normalize_type(type_name: str) -> str:
    """Strip the n8n prefix and resolve legacy aliases."""
    if type_name.startswith(TYPE_PREFIX):
        type_name = type_name[len(TYPE_PREFIX):]
    return ALIASES.get(type_name, type_name)


class NodeRegistry:
    """Registry for node and trigger implementations.

    Example:
        >>> registry = NodeRegistry()
        >>> registry.register_node_type("uppercase", UppercaseNode)
        >>> node = registry.create_node(graph.get_node("upper_1"))
    """

    def __init__(self):
        """Initialize registry with the built-in types."""
        self._node_types: Dict[str, Type[BaseNode]] = {}
        self._trigger_types: Dict[str, Type[BaseTrigger]] = {}

        self._register_builtin_types()

    def _register_builtin_types(self):
        """Register built-in node and trigger types."""
        from flowline.nodes.base import PassThroughNode
        from flowline.nodes.http_request import HttpRequestNode
        from flowline.nodes.set import SetNode
        from flowline.nodes.trigger import TriggerNode
        from flowline.triggers.schedule import ScheduleTrigger
        from flowline.triggers.webhook import WebhookTrigger

        self._node_types["manualTrigger"] = TriggerNode
        self._node_types["scheduleTrigger"] = TriggerNode
        self._node_types["webhook"] = TriggerNode
        self._node_types["set"] = SetNode
        self._node_types["httpRequest"] = HttpRequestNode
        self._node_types["noOp"] = PassThroughNode

        self._trigger_types["scheduleTrigger"] = ScheduleTrigger
        self._trigger_types["webhook"] = WebhookTrigger

    def register_node_type(self, type_name: str, node_class: Type[BaseNode]) -> None:
        """Register a custom node type.

        Args:
            type_name: Type tag as it appears in workflow definitions
            node_class: Class called as ``node_class(id, parameters, name)``
        """
        self._node_types[normalize_type(type_name)] = node_class

    def register_trigger_type(self, type_name: str, trigger_class: Type[BaseTrigger]) -> None:
        """Register a trigger implementation for an entry node type.

        Args:
            type_name: Type tag of the entry node
            trigger_class: Class called as ``trigger_class(id, parameters, name, config)``
        """
        self._trigger_types[normalize_type(type_name)] = trigger_class

    def get_node_type(self, type_name: str) -> Type[BaseNode]:
        """Get a node class by type tag.

        Raises:
            InvalidNodeTypeError: If type not found
        """
        key = normalize_type(type_name)
        if key not in self._node_types:
            raise InvalidNodeTypeError(
                f"Node type '{type_name}' not registered. "
                f"Available types: {', '.join(self._node_types.keys())}"
            )
        return self._node_types[key]

    def get_trigger_type(self, type_name: str) -> Type[BaseTrigger]:
        """Get a trigger class by entry node type tag.

        Raises:
            InvalidNodeTypeError: If no trigger is registered for the type
        """
        key = normalize_type(type_name)
        if key not in self._trigger_types:
            raise InvalidNodeTypeError(
                f"Trigger type '{type_name}' not registered. "
                f"Available types: {', '.join(self._trigger_types.keys())}"
            )
        return self._trigger_types[key]

    def has_node_type(self, type_name: str) -> bool:
        return normalize_type(type_name) in self._node_types

    def is_trigger_type(self, type_name: str) -> bool:
        return normalize_type(type_name) in self._trigger_types

    def list_node_types(self) -> List[str]:
        return list(self._node_types.keys())

    def list_trigger_types(self) -> List[str]:
        return list(self._trigger_types.keys())

    def create_node(self, node: WorkflowNode) -> BaseNode:
        """Instantiate the node implementation for a workflow node.

        Raises:
            InvalidNodeTypeError: If the type is not registered
            ParameterValidationError: If the parameters are invalid
        """
        node_class = self.get_node_type(node.type)
        return node_class(node.id, node.parameters, node.name or None)

    def create_trigger(self, node: WorkflowNode, config: Optional[TriggerConfig] = None) -> BaseTrigger:
        """Instantiate the trigger for an entry node.

        The trigger takes the node's id, so firings can be traced back to it.

        Raises:
            InvalidNodeTypeError: If no trigger is registered for the type
            ParameterValidationError: If the parameters are invalid
        """
        trigger_class = self.get_trigger_type(node.type)
        try:
            return trigger_class(node.id, node.parameters, node.name or None, config)
        except ValueError as e:
            raise ParameterValidationError(node.id, str(e)) from e

    def __repr__(self) -> str:
        return (
            f"NodeRegistry(node_types={len(self._node_types)}, "
            f"trigger_types={len(self._trigger_types)})"
        )
