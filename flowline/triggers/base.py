"""Trigger lifecycle and subscriber fan-out.

A trigger is a long-lived source of workflow runs. It moves through the states
``stopped -> starting -> running`` and back through ``stopping``; a failing
start or stop hook leaves it in ``error``. While running, each firing is
delivered to every subscriber concurrently, with a per-dispatch timeout and
optional linear retry.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union
import asyncio
import inspect
import logging
import uuid

from pydantic import BaseModel, Field

from flowline.core.events import utc_now
from flowline.utils.errors import TriggerLifecycleError

logger = logging.getLogger(__name__)

Subscriber = Callable[[Dict[str, Any]], Union[Any, Awaitable[Any]]]


class TriggerConfig(BaseModel):
    """Delivery settings shared by every trigger type."""

    enabled: bool = True
    retry_on_failure: bool = True
    max_retries: int = Field(default=3, ge=0)
    retry_delay_ms: int = Field(default=1000, ge=0)
    timeout_ms: int = Field(default=30_000, gt=0)


class TriggerState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class TriggerStatus:
    """Point-in-time snapshot returned by ``get_status()``."""

    id: str
    type: str
    status: TriggerState
    trigger_count: int
    error_count: int
    config: TriggerConfig
    last_triggered: Optional[str] = None
    last_error: Optional[str] = None
    subscriber_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "status": self.status.value,
            "trigger_count": self.trigger_count,
            "error_count": self.error_count,
            "last_triggered": self.last_triggered,
            "last_error": self.last_error,
            "subscriber_count": self.subscriber_count,
            "config": self.config.model_dump(),
        }


@dataclass
class DispatchOutcome:
    """Result of delivering one firing to one subscriber."""

    subscriber: str
    success: bool
    attempts: int
    error: Optional[str] = None
    result: Any = field(default=None, repr=False)


def _subscriber_name(subscriber: Subscriber) -> str:
    return getattr(subscriber, "__qualname__", None) or repr(subscriber)


class BaseTrigger(ABC):
    """Base class for triggers.

    Subclasses implement ``_start_trigger``, ``_stop_trigger`` and
    ``_test_trigger`` and call ``fire_trigger`` whenever an event occurs.

    Example:
        >>> trigger = ScheduleTrigger("every_5", {"rule": "*/5 * * * *"})
        >>> await trigger.start(runner.subscriber_for(graph))
        >>> ...
        >>> await trigger.stop()
    """

    type: str = "trigger"
    restart_delay: float = 1.0

    def __init__(
        self,
        id: Optional[str] = None,
        parameters: Dict[str, Any] = None,
        name: str = None,
        config: Optional[TriggerConfig] = None,
    ):
        """Initialize trigger.

        Args:
            id: Trigger identifier (generated when omitted)
            parameters: Type-specific parameters
            name: Display name
            config: Delivery settings (defaults apply when omitted)
        """
        self.id = id or f"trigger_{uuid.uuid4().hex[:12]}"
        self.name = name or self.id
        self.parameters = dict(parameters or {})
        self.config = config or TriggerConfig()

        self.state = TriggerState.STOPPED
        self.trigger_count = 0
        self.error_count = 0
        self.last_error: Optional[str] = None
        self.last_triggered: Optional[str] = None
        self._subscribers: List[Subscriber] = []

        self.validate_parameters()

    def validate_parameters(self) -> None:
        """Validate type-specific parameters; raise ValueError when invalid."""

    def get_parameter(self, key: str, default: Any = None) -> Any:
        value = self.parameters.get(key)
        return default if value is None else value

    @property
    def is_running(self) -> bool:
        return self.state == TriggerState.RUNNING

    @property
    def subscribers(self) -> List[Subscriber]:
        return list(self._subscribers)

    # Lifecycle

    async def start(self, subscriber: Optional[Subscriber] = None) -> None:
        """Start the trigger, optionally registering a subscriber first.

        Raises:
            TriggerLifecycleError: If the start hook fails
        """
        if self.state == TriggerState.RUNNING:
            logger.warning("Trigger %s is already running", self.id)
            return

        self.state = TriggerState.STARTING
        if subscriber is not None:
            self.subscribe(subscriber)

        logger.info("Starting %s trigger %s", self.type, self.id)
        try:
            await self._start_trigger()
        except Exception as e:
            self._record_lifecycle_failure("start", e)
            raise TriggerLifecycleError(self.id, "start", str(e)) from e

        self.state = TriggerState.RUNNING
        logger.info("Trigger %s started", self.id)

    async def stop(self) -> None:
        """Stop the trigger and drop its subscribers.

        Raises:
            TriggerLifecycleError: If the stop hook fails
        """
        if self.state == TriggerState.STOPPED:
            logger.warning("Trigger %s is already stopped", self.id)
            return

        self.state = TriggerState.STOPPING
        logger.info("Stopping %s trigger %s", self.type, self.id)
        try:
            await self._stop_trigger()
        except Exception as e:
            self._record_lifecycle_failure("stop", e)
            raise TriggerLifecycleError(self.id, "stop", str(e)) from e

        self.state = TriggerState.STOPPED
        self._subscribers.clear()
        logger.info("Trigger %s stopped", self.id)

    async def restart(self) -> None:
        """Stop, pause briefly, and start again with every prior subscriber."""
        logger.info("Restarting trigger %s", self.id)
        subscribers = list(self._subscribers)
        await self.stop()
        await asyncio.sleep(self.restart_delay)
        self._subscribers = subscribers
        await self.start()

    async def test(self) -> Dict[str, Any]:
        """Check the trigger configuration without changing state."""
        logger.info("Testing trigger %s", self.id)
        try:
            data = await self._test_trigger()
        except Exception as e:
            logger.error("Trigger %s test failed: %s", self.id, e)
            return {"success": False, "message": str(e)}
        return {"success": True, "message": "Trigger test successful", "data": data}

    def _record_lifecycle_failure(self, action: str, error: Exception) -> None:
        self.state = TriggerState.ERROR
        self.last_error = str(error)
        self.error_count += 1
        logger.error("Failed to %s trigger %s: %s", action, self.id, error)

    # Subscribers

    def subscribe(self, subscriber: Subscriber) -> None:
        if subscriber not in self._subscribers:
            self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> bool:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)
            return True
        return False

    # Status and config

    def get_status(self) -> TriggerStatus:
        return TriggerStatus(
            id=self.id,
            type=self.type,
            status=self.state,
            trigger_count=self.trigger_count,
            error_count=self.error_count,
            config=self.config.model_copy(),
            last_triggered=self.last_triggered,
            last_error=self.last_error,
            subscriber_count=len(self._subscribers),
        )

    def update_config(self, **changes: Any) -> TriggerConfig:
        """Merge ``changes`` into the delivery settings (validated)."""
        merged = {**self.config.model_dump(), **changes}
        self.config = TriggerConfig(**merged)
        logger.info("Trigger %s configuration updated", self.id)
        return self.config

    # Firing

    def trigger_output(self, **extra: Any) -> Dict[str, Any]:
        """Base payload of a firing, extended with type-specific fields."""
        payload = {
            "trigger_id": self.id,
            "trigger_type": self.type,
            "timestamp": utc_now(),
            "trigger_count": self.trigger_count,
        }
        payload.update(extra)
        return payload

    async def fire_trigger(self, payload: Dict[str, Any]) -> List[DispatchOutcome]:
        """Deliver ``payload`` to every subscriber concurrently.

        Does nothing unless the trigger is enabled and running. A failing or
        slow subscriber never prevents delivery to the others.

        Returns:
            One DispatchOutcome per subscriber
        """
        if not self.config.enabled or self.state != TriggerState.RUNNING:
            return []

        self.trigger_count += 1
        self.last_triggered = utc_now()
        logger.info("Trigger %s fired (count: %d)", self.id, self.trigger_count)

        subscribers = list(self._subscribers)
        outcomes = await asyncio.gather(
            *(self._dispatch(subscriber, payload) for subscriber in subscribers),
            return_exceptions=True,
        )

        results = []
        for subscriber, outcome in zip(subscribers, outcomes):
            if isinstance(outcome, BaseException):
                outcome = DispatchOutcome(
                    subscriber=_subscriber_name(subscriber),
                    success=False,
                    attempts=1,
                    error=str(outcome),
                )
            results.append(outcome)
        return results

    async def _dispatch(self, subscriber: Subscriber, payload: Dict[str, Any]) -> DispatchOutcome:
        name = _subscriber_name(subscriber)
        try:
            result = await self._call_with_timeout(subscriber, payload)
            return DispatchOutcome(subscriber=name, success=True, attempts=1, result=result)
        except Exception as e:
            error = self._record_dispatch_failure(e)

        attempts = 1
        if self.config.retry_on_failure:
            for attempt in range(1, self.config.max_retries + 1):
                attempts += 1
                logger.debug(
                    "Retrying subscriber %s of trigger %s (attempt %d/%d)",
                    name, self.id, attempt, self.config.max_retries,
                )
                await asyncio.sleep(self.config.retry_delay_ms * attempt / 1000)
                try:
                    result = await self._call_with_timeout(subscriber, payload)
                    return DispatchOutcome(subscriber=name, success=True, attempts=attempts, result=result)
                except Exception as e:
                    error = str(e) or e.__class__.__name__
            logger.error(
                "Subscriber %s of trigger %s failed after %d retries",
                name, self.id, self.config.max_retries,
            )

        return DispatchOutcome(subscriber=name, success=False, attempts=attempts, error=error)

    def _record_dispatch_failure(self, error: Exception) -> str:
        message = str(error) or error.__class__.__name__
        self.error_count += 1
        self.last_error = message
        logger.error("Trigger %s subscriber failed: %s", self.id, message)
        return message

    async def _call_with_timeout(self, subscriber: Subscriber, payload: Dict[str, Any]) -> Any:
        # sync subscribers run inline and cannot be interrupted
        result = subscriber(payload)
        if inspect.isawaitable(result):
            try:
                return await asyncio.wait_for(result, self.config.timeout_ms / 1000)
            except asyncio.TimeoutError:
                raise TimeoutError(f"Subscriber timeout after {self.config.timeout_ms}ms")
        return result

    # Hooks

    @abstractmethod
    async def _start_trigger(self) -> None:
        pass

    @abstractmethod
    async def _stop_trigger(self) -> None:
        pass

    @abstractmethod
    async def _test_trigger(self) -> Any:
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(id='{self.id}', state='{self.state.value}')"
