"""Base protocol for result sinks.

A sink receives the final report of every run an engine executes and keeps
it for later inspection. Reports are stored in their ``to_dict()`` form.
"""

from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol, runtime_checkable

if TYPE_CHECKING:
    from flowline.core.executor import WorkflowExecutionResult


@runtime_checkable
class ResultSink(Protocol):
    """Protocol for run result storage."""

    async def save_result(self, result: "WorkflowExecutionResult") -> None:
        """Persist a run report, replacing any report with the same run id.

        Raises:
            Exception: If the save operation fails
        """
        ...

    async def load_result(self, run_id: str) -> Optional[Dict[str, Any]]:
        """Load a run report (without logs), or None if unknown."""
        ...

    async def load_logs(self, run_id: str) -> List[Dict[str, Any]]:
        """Load the log entries of a run in the order they were written."""
        ...

    async def list_runs(self) -> List[str]:
        """List stored run ids, newest first."""
        ...

    async def delete_result(self, run_id: str) -> bool:
        """Delete a run and its logs. Returns False if it was unknown."""
        ...
