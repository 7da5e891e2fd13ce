"""In-memory result sink for tests and short-lived processes."""

from typing import Any, Dict, List, Optional
import copy


class MemorySink:
    """Keep run reports in a dict.

    Reports are lost when the process exits. Stored data is deep-copied on
    the way in and out.
    """

    def __init__(self):
        self._results: Dict[str, Dict[str, Any]] = {}
        self._logs: Dict[str, List[Dict[str, Any]]] = {}

    async def save_result(self, result: Any) -> None:
        payload = result.to_dict()
        logs = payload.pop("logs", [])
        run_id = payload["run_id"]
        # re-insert so that list_runs stays newest first
        self._results.pop(run_id, None)
        self._results[run_id] = copy.deepcopy(payload)
        self._logs[run_id] = copy.deepcopy(logs)

    async def load_result(self, run_id: str) -> Optional[Dict[str, Any]]:
        payload = self._results.get(run_id)
        return copy.deepcopy(payload) if payload is not None else None

    async def load_logs(self, run_id: str) -> List[Dict[str, Any]]:
        return copy.deepcopy(self._logs.get(run_id, []))

    async def list_runs(self) -> List[str]:
        return list(reversed(self._results))

    async def delete_result(self, run_id: str) -> bool:
        self._logs.pop(run_id, None)
        return self._results.pop(run_id, None) is not None

    def clear(self) -> None:
        self._results.clear()
        self._logs.clear()

    def __len__(self) -> int:
        return len(self._results)

    def __repr__(self) -> str:
        return f"MemorySink(runs={len(self._results)})"
