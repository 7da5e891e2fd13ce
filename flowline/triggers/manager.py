"""Registry and lifecycle coordinator for a set of triggers."""

from typing import Any, Awaitable, Callable, Dict, List, Optional, Union
import asyncio
import inspect
import logging

from flowline.triggers.base import BaseTrigger, TriggerStatus

logger = logging.getLogger(__name__)

GlobalCallback = Callable[[str, Dict[str, Any]], Union[Any, Awaitable[Any]]]


class TriggerManager:
    """Manage several triggers that share one global callback.

    Example:
        >>> manager = TriggerManager()
        >>> manager.register(ScheduleTrigger("hourly", {"rule": "0 * * * *"}))
        >>> manager.set_global_callback(on_fire)
        >>> await manager.start_all()
    """

    def __init__(self):
        self._triggers: Dict[str, BaseTrigger] = {}
        self._global_callback: Optional[GlobalCallback] = None

    def register(self, trigger: BaseTrigger) -> None:
        self._triggers[trigger.id] = trigger
        logger.info("Registered trigger: %s (%s)", trigger.id, trigger.type)

    async def unregister(self, trigger_id: str) -> bool:
        """Stop and forget a trigger. Returns False if it was unknown."""
        trigger = self._triggers.get(trigger_id)
        if trigger is None:
            return False
        await trigger.stop()
        del self._triggers[trigger_id]
        logger.info("Unregistered trigger: %s", trigger_id)
        return True

    def get_trigger(self, trigger_id: str) -> Optional[BaseTrigger]:
        return self._triggers.get(trigger_id)

    def set_global_callback(self, callback: GlobalCallback) -> None:
        self._global_callback = callback

    def _forwarder(self, trigger_id: str) -> Callable[[Dict[str, Any]], Awaitable[Any]]:
        async def forward(payload: Dict[str, Any]) -> Any:
            if self._global_callback is None:
                return None
            result = self._global_callback(trigger_id, payload)
            if inspect.isawaitable(result):
                result = await result
            return result

        forward.__qualname__ = f"TriggerManager.forward[{trigger_id}]"
        return forward

    async def start_all(self) -> None:
        """Start every trigger; one failing start does not stop the others."""
        logger.info("Starting %d triggers", len(self._triggers))

        async def start_one(trigger: BaseTrigger) -> None:
            try:
                await trigger.start(self._forwarder(trigger.id))
            except Exception as e:
                logger.error("Failed to start trigger %s: %s", trigger.id, e)

        await asyncio.gather(*(start_one(t) for t in self._triggers.values()))

    async def stop_all(self) -> None:
        logger.info("Stopping %d triggers", len(self._triggers))

        async def stop_one(trigger: BaseTrigger) -> None:
            try:
                await trigger.stop()
            except Exception as e:
                logger.error("Failed to stop trigger %s: %s", trigger.id, e)

        await asyncio.gather(*(stop_one(t) for t in self._triggers.values()))

    async def test_all(self) -> Dict[str, Dict[str, Any]]:
        ids = list(self._triggers)
        outcomes = await asyncio.gather(
            *(self._triggers[trigger_id].test() for trigger_id in ids),
            return_exceptions=True,
        )
        results = {}
        for trigger_id, outcome in zip(ids, outcomes):
            if isinstance(outcome, BaseException):
                outcome = {"success": False, "message": str(outcome)}
            results[trigger_id] = outcome
        return results

    def get_all_status(self) -> List[TriggerStatus]:
        return [trigger.get_status() for trigger in self._triggers.values()]

    def __len__(self) -> int:
        return len(self._triggers)
