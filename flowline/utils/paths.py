"""Dot-path helpers for reading and writing nested values.

Paths split on "." only; there is no bracket or escape syntax.
"""

from typing import Any, MutableMapping


class PathTraversalError(TypeError):
    """Raised when a path walks into a value that has no children."""

    def __init__(self, path: str, segment: str, value: Any):
        self.path = path
        self.segment = segment
        super().__init__(
            f"Cannot read '{segment}' of {type(value).__name__} while resolving '{path}'"
        )


def get_path(obj: Any, path: str) -> Any:
    """Read a nested value.

    Missing keys resolve to None. Walking into a scalar (e.g. "a.b" where
    "a" is a number) raises PathTraversalError.

    Example:
        >>> get_path({"a": {"b": 5}}, "a.b")
        5
        >>> get_path({"items": [{"x": 1}]}, "items.0.x")
        1
    """
    if not path:
        return obj

    current = obj
    for key in path.split("."):
        if current is None:
            return None
        if isinstance(current, dict):
            current = current.get(key)
        elif isinstance(current, (list, tuple)):
            try:
                current = current[int(key)]
            except (ValueError, IndexError):
                return None
        else:
            raise PathTraversalError(path, key, current)
    return current


def set_path(obj: MutableMapping, path: str, value: Any, dot_notation: bool = True) -> None:
    """Write a nested value, creating intermediate dicts as needed.

    With dot_notation disabled the whole path is used as a single key.
    """
    if not dot_notation or "." not in path:
        obj[path] = value
        return

    keys = path.split(".")
    current = obj
    for key in keys[:-1]:
        if not isinstance(current.get(key), dict):
            current[key] = {}
        current = current[key]
    current[keys[-1]] = value


def unset_path(obj: MutableMapping, path: str, dot_notation: bool = True) -> None:
    """Remove a nested value. Missing paths are ignored."""
    if not dot_notation or "." not in path:
        obj.pop(path, None)
        return

    keys = path.split(".")
    current = obj
    for key in keys[:-1]:
        current = current.get(key)
        if not isinstance(current, dict):
            return
    current.pop(keys[-1], None)
