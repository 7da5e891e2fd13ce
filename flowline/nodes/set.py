"""Set node: writes or removes values on every input item."""

import copy
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from flowline.core.state import ExecutionContext
from flowline.nodes.base import BaseNode, NodeInputItem, map_items
from flowline.utils.errors import ParameterValidationError
from flowline.utils.expressions import ExpressionResolver
from flowline.utils.paths import set_path, unset_path

logger = logging.getLogger(__name__)

OPERATION_TYPES = ("set", "unset")


class SetNode(BaseNode):
    """Set or unset fields on each input item.

    Parameters:
        operations: List of ``{"name", "value", "type"}`` where type is
            "set" or "unset". Values may contain {{ }} expressions.
        options.dot_notation: Treat names as dot paths (default True)
        options.keep_only_set: Start each output from an empty object instead
            of a copy of the input (default False)

    Example:
        >>> node = SetNode("set_1", {
        ...     "operations": [
        ...         {"name": "user.greeting", "value": "hi {{ $json.name }}", "type": "set"},
        ...     ]
        ... })
    """

    type = "set"
    required_parameters = ("operations",)

    def validate_parameters(self) -> None:
        super().validate_parameters()
        operations = self.parameters["operations"]
        if not isinstance(operations, list):
            raise ParameterValidationError(
                self.id, "'operations' must be a list", parameter="operations"
            )
        for index, operation in enumerate(operations, start=1):
            if not isinstance(operation, dict) or not operation.get("name"):
                raise ParameterValidationError(
                    self.id, f"Operation {index}: name is required", parameter="operations"
                )
            if operation.get("type") not in OPERATION_TYPES:
                raise ParameterValidationError(
                    self.id,
                    f"Operation {index}: type must be 'set' or 'unset'",
                    parameter="operations",
                )

    @property
    def operations(self) -> List[Dict[str, Any]]:
        return self.parameters["operations"]

    def _option(self, key: str, camel_key: str, default: bool) -> bool:
        options = self.get_parameter("options", {})
        if key in options:
            return bool(options[key])
        return bool(options.get(camel_key, default))

    async def execute(
        self,
        items: Sequence[NodeInputItem],
        context: ExecutionContext,
    ) -> List[Any]:
        return await map_items(items, context, lambda data: self.transform(data, context.warn))

    def transform(self, data: Any, on_warning: Optional[Callable[[str], None]] = None) -> Dict[str, Any]:
        """Apply every operation to one item's data.

        Args:
            data: Item data
            on_warning: Receives expression evaluation warnings
        """
        dot_notation = self._option("dot_notation", "dotNotation", True)
        if self._option("keep_only_set", "keepOnlySet", False) or not isinstance(data, dict):
            result: Dict[str, Any] = {}
        else:
            result = copy.deepcopy(data)

        resolver = ExpressionResolver(data=data, parameters=self.parameters, on_warning=on_warning)

        for index, operation in enumerate(self.operations, start=1):
            name = operation["name"]
            try:
                if operation["type"] == "unset":
                    unset_path(result, name, dot_notation)
                    logger.debug("Node %s unset %s", self.id, name)
                    continue
                value = resolver.resolve_value(operation.get("value"))
                set_path(result, name, value, dot_notation)
                logger.debug("Node %s set %s", self.id, name)
            except Exception as e:
                raise ValueError(f"Operation {index} failed: {e}") from e

        return result
