"""Expression resolution for node parameters.

Parameters may embed {{ ... }} markers that are evaluated against the
current input item and the node's own parameters:

- {{ $json }} / {{ $json.path }}            - input item data
- {{ $parameter }} / {{ $parameter.path }}  - the node's parameters
- {{ true }}, {{ false }}, {{ null }}, {{ undefined }}
- {{ 42 }}, {{ -1.5 }}                      - numeric literals
- {{ "text" }}, {{ 'text' }}                - string literals

Anything else evaluates to its own text. A value that consists of exactly one
marker is parsed as JSON after substitution, so it can produce objects and
arrays rather than only strings.
"""

import json
import logging
import re
from typing import Any, Callable, Dict, Optional

from flowline.utils.errors import ExpressionEvaluationError
from flowline.utils.paths import PathTraversalError, get_path

logger = logging.getLogger(__name__)

_NUMBER = re.compile(r"^-?\d+(\.\d+)?$")
_LITERALS = {"true": True, "false": False, "null": None, "undefined": None}


def _to_text(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value)
    return str(value)


class ExpressionResolver:
    """Resolve {{ expression }} markers in parameter values.

    Example:
        >>> resolver = ExpressionResolver(data={"a": {"b": 5}})
        >>> resolver.resolve("value is {{ $json.a.b }}")
        'value is 5'
        >>> resolver.resolve("{{ $json.a }}")
        {'b': 5}
    """

    PATTERN = re.compile(r"\{\{\s*([^}]+?)\s*\}\}")

    def __init__(
        self,
        data: Any = None,
        parameters: Optional[Dict[str, Any]] = None,
        on_warning: Optional[Callable[[str], None]] = None,
    ):
        """Initialize resolver.

        Args:
            data: Root data of the current input item ($json)
            parameters: The node's own parameters ($parameter)
            on_warning: Optional callback receiving evaluation warnings
        """
        self.data = {} if data is None else data
        self.parameters = parameters or {}
        self.on_warning = on_warning

    @classmethod
    def has_expression(cls, value: Any) -> bool:
        return isinstance(value, str) and cls.PATTERN.search(value) is not None

    def resolve(self, value: Any) -> Any:
        """Resolve markers in a single value.

        Non-string values are returned unchanged.
        """
        if not isinstance(value, str) or "{{" not in value:
            return value

        def replacer(match: "re.Match[str]") -> str:
            expression = match.group(1).strip()
            try:
                return _to_text(self.evaluate(expression))
            except ExpressionEvaluationError as e:
                self._warn(str(e))
                return match.group(0)

        resolved = self.PATTERN.sub(replacer, value)

        if self.PATTERN.fullmatch(value):
            try:
                return json.loads(resolved)
            except ValueError:
                return resolved

        return resolved

    def resolve_value(self, value: Any) -> Any:
        """Resolve markers recursively through dicts and lists."""
        if isinstance(value, dict):
            return {key: self.resolve_value(item) for key, item in value.items()}
        if isinstance(value, list):
            return [self.resolve_value(item) for item in value]
        return self.resolve(value)

    def evaluate(self, expression: str) -> Any:
        """Evaluate the inner text of a single marker.

        Raises:
            ExpressionEvaluationError: If a path walks into a scalar value
        """
        if expression.startswith("$json"):
            return self._read(self.data, expression, expression[len("$json"):])

        if expression.startswith("$parameter"):
            return self._read(self.parameters, expression, expression[len("$parameter"):])

        if expression.startswith("$node"):
            self._warn("Node references are not supported; resolving to null")
            return None

        if expression in _LITERALS:
            return _LITERALS[expression]

        if _NUMBER.match(expression):
            return float(expression) if "." in expression else int(expression)

        if len(expression) >= 2 and expression[0] == expression[-1] and expression[0] in "'\"":
            return expression[1:-1]

        return expression

    def _read(self, root: Any, expression: str, remainder: str) -> Any:
        if remainder in ("", "."):
            return root
        if not remainder.startswith("."):
            # e.g. "$jsonish" is not a reference
            return expression
        try:
            return get_path(root, remainder[1:])
        except PathTraversalError as e:
            raise ExpressionEvaluationError(expression, str(e)) from e

    def _warn(self, message: str) -> None:
        logger.warning(message)
        if self.on_warning:
            self.on_warning(message)
