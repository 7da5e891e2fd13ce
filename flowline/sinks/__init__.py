"""Storage for run reports."""

from flowline.sinks.base import ResultSink
from flowline.sinks.memory import MemorySink
from flowline.sinks.sqlite import SQLiteSink

__all__ = ["ResultSink", "MemorySink", "SQLiteSink"]
