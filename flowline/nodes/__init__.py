"""Node implementations for workflow execution."""

from flowline.nodes.base import Node, BaseNode, NodeInputItem, NodeResult, PassThroughNode, map_items
from flowline.nodes.trigger import TriggerNode
from flowline.nodes.set import SetNode
from flowline.nodes.http_request import HttpRequestNode

__all__ = [
    "Node",
    "BaseNode",
    "NodeInputItem",
    "NodeResult",
    "PassThroughNode",
    "map_items",
    "TriggerNode",
    "SetNode",
    "HttpRequestNode",
]
