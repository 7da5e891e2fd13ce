"""Long-running sources of workflow runs."""

from flowline.triggers.base import (
    BaseTrigger,
    DispatchOutcome,
    TriggerConfig,
    TriggerState,
    TriggerStatus,
)
from flowline.triggers.manager import TriggerManager
from flowline.triggers.schedule import (
    ScheduleTrigger,
    describe_schedule,
    is_valid_schedule_expression,
    validate_schedule_expression,
)
from flowline.triggers.webhook import WebhookListener, WebhookTrigger

__all__ = [
    "BaseTrigger",
    "DispatchOutcome",
    "TriggerConfig",
    "TriggerState",
    "TriggerStatus",
    "TriggerManager",
    "ScheduleTrigger",
    "describe_schedule",
    "is_valid_schedule_expression",
    "validate_schedule_expression",
    "WebhookListener",
    "WebhookTrigger",
]
