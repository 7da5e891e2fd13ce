"""Leveled run logging.

Every entry written during a run is kept in the run's log list so it can be
returned with the execution result. Entries at or above the configured level
are also forwarded to the ``flowline.execution`` logger.
"""

import json
import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger("flowline.execution")


class LogLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"

    @property
    def rank(self) -> int:
        return _RANKS[self]

    def to_logging(self) -> int:
        return _STDLIB_LEVELS[self]


_RANKS = {LogLevel.DEBUG: 0, LogLevel.INFO: 1, LogLevel.WARN: 2, LogLevel.ERROR: 3}
_STDLIB_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class ExecutionLog:
    """One append-only log entry of a run.

    Attributes:
        timestamp: ISO-8601 UTC timestamp
        run_id: Run the entry belongs to
        level: Severity
        message: Human-readable message
        node_id: Node the entry concerns, if any
        data: Optional JSON-encoded detail payload
    """

    timestamp: str
    run_id: str
    level: LogLevel
    message: str
    node_id: Optional[str] = None
    data: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["level"] = self.level.value
        return payload


class ExecutionLogger:
    """Log collector owned by a single run."""

    def __init__(self, run_id: str, level: str = "info"):
        self.run_id = run_id
        self.level = LogLevel(level)
        self._entries: List[ExecutionLog] = []

    def log(
        self,
        level: LogLevel,
        message: str,
        node_id: Optional[str] = None,
        data: Any = None,
    ) -> ExecutionLog:
        entry = ExecutionLog(
            timestamp=utc_now(),
            run_id=self.run_id,
            level=level,
            message=message,
            node_id=node_id,
            data=json.dumps(data, default=str) if data is not None else None,
        )
        self._entries.append(entry)

        if self.should_surface(level):
            prefix = f"[{node_id}]" if node_id else "[WORKFLOW]"
            logger.log(level.to_logging(), "%s %s %s", self.run_id, prefix, message)
            if entry.data and self.level is LogLevel.DEBUG:
                logger.debug("%s %s data: %s", self.run_id, prefix, entry.data)
        return entry

    def debug(self, message: str, node_id: Optional[str] = None, data: Any = None) -> ExecutionLog:
        return self.log(LogLevel.DEBUG, message, node_id, data)

    def info(self, message: str, node_id: Optional[str] = None, data: Any = None) -> ExecutionLog:
        return self.log(LogLevel.INFO, message, node_id, data)

    def warn(self, message: str, node_id: Optional[str] = None, data: Any = None) -> ExecutionLog:
        return self.log(LogLevel.WARN, message, node_id, data)

    def error(self, message: str, node_id: Optional[str] = None, data: Any = None) -> ExecutionLog:
        return self.log(LogLevel.ERROR, message, node_id, data)

    def should_surface(self, level: LogLevel) -> bool:
        return level.rank >= self.level.rank

    @property
    def entries(self) -> List[ExecutionLog]:
        """Copy of all entries, regardless of level."""
        return list(self._entries)

    def count(self, level: LogLevel) -> int:
        return sum(1 for entry in self._entries if entry.level is level)

    def __len__(self) -> int:
        return len(self._entries)
