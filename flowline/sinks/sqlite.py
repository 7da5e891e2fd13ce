"""SQLite result sink for persistent run history.

Run reports and their log entries are stored in two tables so that logs can
be queried per run without decoding the whole report.
"""

import aiosqlite
import json
from typing import Any, Dict, List, Optional
from pathlib import Path


class SQLiteSink:
    """SQLite-based result storage.

    The database schema:
    - workflow_executions: run_id TEXT PRIMARY KEY, success, total_time_ms,
      error, result (JSON-encoded report without logs), created_at
    - execution_logs: id, run_id, timestamp, level, node_id, message, data
    """

    def __init__(self, db_path: str = "flowline_runs.db"):
        """Initialize SQLite sink.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._initialized = False

    async def _ensure_initialized(self):
        """Ensure database and tables exist."""
        if self._initialized:
            return

        db_dir = Path(self.db_path).parent
        if db_dir and not db_dir.exists():
            db_dir.mkdir(parents=True, exist_ok=True)

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS workflow_executions (
                    run_id TEXT PRIMARY KEY,
                    success INTEGER NOT NULL,
                    total_time_ms INTEGER NOT NULL,
                    error TEXT,
                    result TEXT NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS execution_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    run_id TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    level TEXT NOT NULL,
                    node_id TEXT,
                    message TEXT NOT NULL,
                    data TEXT
                )
                """
            )
            await db.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_execution_logs_run_id
                ON execution_logs(run_id)
                """
            )
            await db.commit()

        self._initialized = True

    async def save_result(self, result: Any) -> None:
        """Save a run report and its logs.

        Args:
            result: WorkflowExecutionResult to persist
        """
        await self._ensure_initialized()

        payload = result.to_dict()
        logs = payload.pop("logs", [])
        run_id = payload["run_id"]

        async with aiosqlite.connect(self.db_path) as db:
            # REPLACE gives the row a fresh rowid, which orders list_runs
            await db.execute(
                """
                INSERT OR REPLACE INTO workflow_executions
                    (run_id, success, total_time_ms, error, result, created_at)
                VALUES (?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                """,
                (
                    run_id,
                    int(payload["success"]),
                    payload["total_time_ms"],
                    payload.get("error"),
                    json.dumps(payload, default=str),
                ),
            )
            await db.execute("DELETE FROM execution_logs WHERE run_id = ?", (run_id,))
            await db.executemany(
                """
                INSERT INTO execution_logs (run_id, timestamp, level, node_id, message, data)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (run_id, entry["timestamp"], entry["level"], entry.get("node_id"), entry["message"], entry.get("data"))
                    for entry in logs
                ],
            )
            await db.commit()

    async def load_result(self, run_id: str) -> Optional[Dict[str, Any]]:
        """Load a run report.

        Args:
            run_id: Run identifier

        Returns:
            Report dictionary (without logs) or None if not found
        """
        await self._ensure_initialized()

        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                "SELECT result FROM workflow_executions WHERE run_id = ?",
                (run_id,),
            ) as cursor:
                row = await cursor.fetchone()
                if row:
                    return json.loads(row[0])
                return None

    async def load_logs(self, run_id: str) -> List[Dict[str, Any]]:
        await self._ensure_initialized()

        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                """
                SELECT timestamp, run_id, level, message, node_id, data
                FROM execution_logs WHERE run_id = ? ORDER BY id
                """,
                (run_id,),
            ) as cursor:
                rows = await cursor.fetchall()
                return [
                    {
                        "timestamp": row[0],
                        "run_id": row[1],
                        "level": row[2],
                        "message": row[3],
                        "node_id": row[4],
                        "data": row[5],
                    }
                    for row in rows
                ]

    async def list_runs(self) -> List[str]:
        """List stored run ids, newest first."""
        await self._ensure_initialized()

        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                "SELECT run_id FROM workflow_executions ORDER BY rowid DESC"
            ) as cursor:
                rows = await cursor.fetchall()
                return [row[0] for row in rows]

    async def delete_result(self, run_id: str) -> bool:
        """Delete a run report and its logs.

        Returns:
            True if a report was deleted
        """
        await self._ensure_initialized()

        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "DELETE FROM workflow_executions WHERE run_id = ?",
                (run_id,),
            )
            deleted = cursor.rowcount
            await db.execute("DELETE FROM execution_logs WHERE run_id = ?", (run_id,))
            await db.commit()
            return deleted > 0

    async def cleanup_old_runs(self, max_age_days: int = 30) -> int:
        """Delete runs older than the given age.

        Returns:
            Number of runs deleted
        """
        await self._ensure_initialized()

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                DELETE FROM execution_logs WHERE run_id IN (
                    SELECT run_id FROM workflow_executions
                    WHERE created_at < datetime('now', '-' || ? || ' days')
                )
                """,
                (max_age_days,),
            )
            cursor = await db.execute(
                """
                DELETE FROM workflow_executions
                WHERE created_at < datetime('now', '-' || ? || ' days')
                """,
                (max_age_days,),
            )
            deleted = cursor.rowcount
            await db.commit()
            return deleted

    def __repr__(self) -> str:
        return f"SQLiteSink(db_path='{self.db_path}')"
