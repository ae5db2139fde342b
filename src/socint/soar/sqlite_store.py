"""
SQLite persistence for execution records and playbook run statistics.
"""

import asyncio
import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import ExecutionRecord, ExecutionResults, ExecutionStatus, utcnow
from .storage import ExecutionStore, running_average

logger = logging.getLogger(__name__)


class SQLiteExecutionStore(ExecutionStore):
    """
    Persistent storage for execution records using SQLite.

    Run statistics (execution count, average duration, last run) are kept
    per playbook ID in a separate table.

    The async collaborator methods run their SQLite work in a worker thread;
    `list_execution_records` and `get_playbook_stats` are synchronous.
    """

    def __init__(self, db_path: str = "/data/soar.db"):
        """
        Initialize execution store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS executions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    playbook_id INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    started_at TEXT NOT NULL,
                    completed_at TEXT,
                    error TEXT,
                    results TEXT,
                    triggered_by INTEGER,
                    trigger_entity_id INTEGER,
                    trigger_source TEXT,
                    execution_time INTEGER
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS playbook_stats (
                    playbook_id INTEGER PRIMARY KEY,
                    execution_count INTEGER NOT NULL DEFAULT 0,
                    avg_execution_time INTEGER,
                    last_executed TEXT
                )
            """)

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_executions_playbook ON executions(playbook_id)"
            )

            conn.commit()

        logger.info(f"Initialized execution database at {self.db_path}")

    async def create_execution_record(
        self,
        playbook_id: int,
        triggered_by: Optional[int] = None,
        trigger_entity_id: Optional[int] = None,
        trigger_source: Optional[str] = None,
    ) -> ExecutionRecord:
        return await asyncio.to_thread(
            self._create_record, playbook_id, triggered_by, trigger_entity_id, trigger_source
        )

    def _create_record(
        self,
        playbook_id: int,
        triggered_by: Optional[int],
        trigger_entity_id: Optional[int],
        trigger_source: Optional[str],
    ) -> ExecutionRecord:
        started_at = utcnow()
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute(
                """
                INSERT INTO executions (
                    playbook_id, status, started_at, triggered_by,
                    trigger_entity_id, trigger_source
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    playbook_id,
                    ExecutionStatus.RUNNING.value,
                    started_at.isoformat(),
                    triggered_by,
                    trigger_entity_id,
                    trigger_source,
                ),
            )
            conn.commit()
            execution_id = cursor.lastrowid

        logger.debug(f"Created execution record {execution_id} for playbook {playbook_id}")
        return ExecutionRecord(
            id=execution_id,
            playbook_id=playbook_id,
            status=ExecutionStatus.RUNNING,
            started_at=started_at,
            triggered_by=triggered_by,
            trigger_entity_id=trigger_entity_id,
            trigger_source=trigger_source,
        )

    async def update_execution_record(
        self,
        execution_id: int,
        status: ExecutionStatus,
        completed_at: datetime,
        results: ExecutionResults,
        error: Optional[str] = None,
        execution_time: Optional[int] = None,
    ) -> ExecutionRecord:
        return await asyncio.to_thread(
            self._update_record,
            execution_id, status, completed_at, results, error, execution_time,
        )

    def _update_record(
        self,
        execution_id: int,
        status: ExecutionStatus,
        completed_at: datetime,
        results: ExecutionResults,
        error: Optional[str],
        execution_time: Optional[int],
    ) -> ExecutionRecord:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                UPDATE executions
                SET status = ?, completed_at = ?, error = ?, results = ?, execution_time = ?
                WHERE id = ?
                """,
                (
                    ExecutionStatus(status).value,
                    completed_at.isoformat(),
                    error,
                    results.model_dump_json(),
                    execution_time,
                    execution_id,
                ),
            )
            conn.commit()

        logger.debug(f"Finalized execution record {execution_id}: {ExecutionStatus(status).value}")
        record = self._get_record(execution_id)
        if record is None:
            raise KeyError(f"Execution record {execution_id} not found")
        return record

    async def get_execution_record(self, execution_id: int) -> Optional[ExecutionRecord]:
        return await asyncio.to_thread(self._get_record, execution_id)

    def _get_record(self, execution_id: int) -> Optional[ExecutionRecord]:
        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            cursor = conn.execute("SELECT * FROM executions WHERE id = ?", (execution_id,))
            row = cursor.fetchone()

            if not row:
                return None

            return self._row_to_record(dict(row))

    def list_execution_records(
        self, playbook_id: Optional[int] = None, limit: Optional[int] = None
    ) -> List[ExecutionRecord]:
        """
        List execution records, newest first.

        Args:
            playbook_id: Only records of this playbook
            limit: Maximum number of records to return
        """
        query = "SELECT * FROM executions"
        params: List[Any] = []

        if playbook_id is not None:
            query += " WHERE playbook_id = ?"
            params.append(playbook_id)

        query += " ORDER BY id DESC"

        if limit:
            query += " LIMIT ?"
            params.append(limit)

        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            cursor = conn.execute(query, params)
            return [self._row_to_record(dict(row)) for row in cursor.fetchall()]

    async def increment_playbook_run_count(
        self, playbook_id: int, duration_ms: Optional[int] = None
    ) -> None:
        await asyncio.to_thread(self._increment_run_count, playbook_id, duration_ms)

    def _increment_run_count(self, playbook_id: int, duration_ms: Optional[int]) -> None:
        stats = self.get_playbook_stats(playbook_id)
        count = stats["executionCount"]
        avg = running_average(stats["avgExecutionTime"], count, duration_ms)

        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO playbook_stats (
                    playbook_id, execution_count, avg_execution_time, last_executed
                ) VALUES (?, ?, ?, ?)
                """,
                (playbook_id, count + 1, avg, utcnow().isoformat()),
            )
            conn.commit()

    def get_playbook_stats(self, playbook_id: int) -> Dict[str, Any]:
        """
        Run statistics of a playbook.

        Returns:
            {"executionCount", "avgExecutionTime", "lastExecuted"}; zero runs
            if the playbook has never been executed
        """
        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            row = conn.execute(
                "SELECT * FROM playbook_stats WHERE playbook_id = ?", (playbook_id,)
            ).fetchone()

        if not row:
            return {"executionCount": 0, "avgExecutionTime": None, "lastExecuted": None}

        return {
            "executionCount": row["execution_count"],
            "avgExecutionTime": row["avg_execution_time"],
            "lastExecuted": row["last_executed"],
        }

    def _row_to_record(self, row: Dict[str, Any]) -> ExecutionRecord:
        """Convert database row to ExecutionRecord."""
        results = row.get("results")
        return ExecutionRecord(
            id=row["id"],
            playbook_id=row["playbook_id"],
            status=ExecutionStatus(row["status"]),
            started_at=datetime.fromisoformat(row["started_at"]),
            completed_at=(
                datetime.fromisoformat(row["completed_at"]) if row.get("completed_at") else None
            ),
            error=row.get("error"),
            results=ExecutionResults.model_validate(json.loads(results)) if results else None,
            triggered_by=row.get("triggered_by"),
            trigger_entity_id=row.get("trigger_entity_id"),
            trigger_source=row.get("trigger_source"),
            execution_time=row.get("execution_time"),
        )
