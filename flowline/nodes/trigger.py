"""Trigger entry node.

A trigger node marks the entry point of a workflow. When the run was started
by a trigger firing, the node emits that firing's payload; for manual runs it
emits an empty object. The long-running side of a trigger (timers, HTTP
listeners) lives in :mod:`flowline.triggers`, not here.
"""

from typing import Any, Dict, Sequence

from flowline.core.state import ExecutionContext
from flowline.nodes.base import BaseNode, NodeInputItem


class TriggerNode(BaseNode):
    """Entry node that outputs the trigger payload of the current run."""

    type = "manualTrigger"

    async def execute(
        self,
        items: Sequence[NodeInputItem],
        context: ExecutionContext,
    ) -> Dict[str, Any]:
        payload = dict(context.trigger_data or {})
        payload.setdefault("mode", context.mode.value)
        return payload
