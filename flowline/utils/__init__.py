"""Utility functions and helpers.

``NodeRegistry`` lives in :mod:`flowline.utils.registry`; it depends on the
core and node packages and is exported from :mod:`flowline` instead.
"""

from flowline.utils.config import load_env, get_config, get_int, get_bool
from flowline.utils.expressions import ExpressionResolver
from flowline.utils.paths import get_path, set_path, unset_path
from flowline.utils.errors import (
    FlowlineError,
    GraphValidationError,
    CycleDetectedError,
    ParameterValidationError,
    AttemptTimeoutError,
    NodeExecutionError,
    EngineStateError,
    InvalidNodeTypeError,
    TriggerLifecycleError,
    AuthenticationError,
    ExpressionEvaluationError,
)

__all__ = [
    "load_env",
    "get_config",
    "get_int",
    "get_bool",
    "ExpressionResolver",
    "get_path",
    "set_path",
    "unset_path",
    "FlowlineError",
    "GraphValidationError",
    "CycleDetectedError",
    "ParameterValidationError",
    "AttemptTimeoutError",
    "NodeExecutionError",
    "EngineStateError",
    "InvalidNodeTypeError",
    "TriggerLifecycleError",
    "AuthenticationError",
    "ExpressionEvaluationError",
]
