"""Core graph data structures for Flowline.

A workflow is a list of nodes plus a connection map keyed by the *target*
node: ``connections[target][input_port]`` is the list of inbound edges for
that port. Cycles are representable; the resolver degrades gracefully when it
finds one instead of raising.
"""

import json
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from flowline.utils.errors import GraphValidationError

logger = logging.getLogger(__name__)


class WorkflowNode(BaseModel):
    """A node definition as it appears in the workflow graph."""

    id: str
    name: str = ""
    type: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    position: Optional[List[float]] = None
    disabled: bool = False


class Connection(BaseModel):
    """One inbound edge entry: which source node (and output) feeds a port."""

    node: str
    type: str = "main"
    index: int = 0


@dataclass(frozen=True)
class Edge:
    """Flattened directed edge ``source -> target``."""

    source: str
    target: str
    input_port: str = "0"
    output_index: int = 0


class WorkflowGraph(BaseModel):
    """A workflow: nodes plus a target-keyed connection map.

    Attributes:
        nodes: Node definitions in declaration order
        connections: target node id -> input port -> inbound connections
        settings: Opaque workflow-level settings
    """

    id: Optional[str] = None
    name: str = ""
    nodes: List[WorkflowNode] = Field(default_factory=list)
    connections: Dict[str, Dict[str, List[Connection]]] = Field(default_factory=dict)
    settings: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowGraph":
        """Build and validate a graph from its plain-dict shape.

        Raises:
            GraphValidationError: If the shape is malformed or references
                unknown nodes
        """
        try:
            graph = cls.model_validate(data)
        except ValidationError as e:
            raise GraphValidationError(f"Invalid workflow graph: {e}") from e
        graph.validate_structure()
        return graph

    @classmethod
    def from_json(cls, raw: Union[str, bytes]) -> "WorkflowGraph":
        """Parse a JSON document into a validated graph."""
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise GraphValidationError(f"Workflow is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise GraphValidationError("Workflow JSON must be an object")
        return cls.from_dict(data)

    def validate_structure(self) -> None:
        """Check id uniqueness and that every edge endpoint exists.

        Cycles are *not* rejected here.

        Raises:
            GraphValidationError: If validation fails
        """
        seen = set()
        for node in self.nodes:
            if node.id in seen:
                raise GraphValidationError(f"Duplicate node id: {node.id}")
            seen.add(node.id)

        for edge in self.edges():
            if edge.source not in seen:
                raise GraphValidationError(
                    f"Connection references non-existent source node: {edge.source}"
                )
            if edge.target not in seen:
                raise GraphValidationError(
                    f"Connection references non-existent target node: {edge.target}"
                )

    @property
    def node_ids(self) -> List[str]:
        return [node.id for node in self.nodes]

    def has_node(self, node_id: str) -> bool:
        return any(node.id == node_id for node in self.nodes)

    def get_node(self, node_id: str) -> Optional[WorkflowNode]:
        """Get a node definition by id, or None if absent."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def edges(self) -> Iterator[Edge]:
        """Iterate every connection as a flattened Edge."""
        for target, ports in self.connections.items():
            for port, connection_list in ports.items():
                for connection in connection_list:
                    yield Edge(
                        source=connection.node,
                        target=target,
                        input_port=port,
                        output_index=connection.index,
                    )

    def inbound(self, node_id: str) -> List[Edge]:
        """Inbound edges of a node, in port then declaration order."""
        return [edge for edge in self.edges() if edge.target == node_id]

    def trigger_nodes(self, types: Iterable[str]) -> List[WorkflowNode]:
        """Enabled nodes whose type is one of ``types``."""
        wanted = set(types)
        return [node for node in self.nodes if node.type in wanted and not node.disabled]


@dataclass
class ExecutionOrder:
    """Outcome of dependency resolution.

    Attributes:
        order: Node ids in execution order (always every declared node)
        cyclic_nodes: Node ids that could not be ordered because of a cycle;
            empty for a proper topological order
    """

    order: List[str]
    cyclic_nodes: List[str] = field(default_factory=list)

    @property
    def has_cycle(self) -> bool:
        return bool(self.cyclic_nodes)


def resolve_execution_order(graph: WorkflowGraph) -> ExecutionOrder:
    """Compute a topological execution order with Kahn's algorithm.

    Zero in-degree nodes are seeded in declaration order, which makes the
    tie-break between independent nodes deterministic. Edges whose endpoints
    are unknown are ignored.

    When a cycle prevents a full ordering, a warning is logged and the raw
    declaration order is returned instead, with the unresolved nodes listed in
    ``cyclic_nodes``.

    Args:
        graph: Workflow graph to order

    Returns:
        ExecutionOrder covering every declared node
    """
    node_ids = graph.node_ids
    children: Dict[str, List[str]] = {node_id: [] for node_id in node_ids}
    in_degree: Dict[str, int] = {node_id: 0 for node_id in node_ids}

    for edge in graph.edges():
        if edge.source in children and edge.target in in_degree:
            children[edge.source].append(edge.target)
            in_degree[edge.target] += 1

    queue = deque(node_id for node_id in node_ids if in_degree[node_id] == 0)
    result: List[str] = []

    while queue:
        node_id = queue.popleft()
        result.append(node_id)

        for child_id in children[node_id]:
            in_degree[child_id] -= 1
            if in_degree[child_id] == 0:
                queue.append(child_id)

    if len(result) < len(node_ids):
        ordered = set(result)
        cyclic = [node_id for node_id in node_ids if node_id not in ordered]
        logger.warning(
            "Circular dependency detected between %s, using declaration order",
            ", ".join(cyclic),
        )
        return ExecutionOrder(order=list(node_ids), cyclic_nodes=cyclic)

    return ExecutionOrder(order=result)
