"""SQLite history of install and uninstall runs."""

import asyncio
import json
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional

import aiosqlite
from pydantic import BaseModel, Field


class RunKind(str, Enum):
    INSTALL = "install"
    UNINSTALL = "uninstall"


class RunStatus(str, Enum):
    """Status of a provisioning run."""
    STARTED = "started"
    COMPLETED = "completed"
    COMPLETED_WITH_WARNINGS = "completed_with_warnings"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RunRecord(BaseModel):
    """Record of one run."""
    id: Optional[int] = None
    kind: RunKind
    status: RunStatus
    router_id: Optional[str] = None
    phase: Optional[str] = None
    error_message: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)
    backups: List[str] = Field(default_factory=list)
    started_at: datetime
    completed_at: Optional[datetime] = None


class HistoryDatabase:
    """Async SQLite run history."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._connection: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        """Connect to the database and create tables if needed."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._connection = await aiosqlite.connect(self.db_path)
        self._connection.row_factory = aiosqlite.Row

        await self._create_tables()

    async def close(self) -> None:
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def __aenter__(self) -> "HistoryDatabase":
        await self.connect()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def _create_tables(self) -> None:
        async with self._lock:
            await self._connection.execute("""
                CREATE TABLE IF NOT EXISTS runs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    kind TEXT NOT NULL,
                    status TEXT NOT NULL,
                    router_id TEXT,
                    phase TEXT,
                    error_message TEXT,
                    warnings TEXT,
                    backups TEXT,
                    started_at TIMESTAMP NOT NULL,
                    completed_at TIMESTAMP
                )
            """)

            await self._connection.execute("""
                CREATE INDEX IF NOT EXISTS idx_runs_started
                ON runs(started_at)
            """)

            await self._connection.commit()

    async def create_run(self, record: RunRecord) -> int:
        async with self._lock:
            cursor = await self._connection.execute("""
                INSERT INTO runs
                (kind, status, router_id, phase, error_message, warnings, backups,
                 started_at, completed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                record.kind.value,
                record.status.value,
                record.router_id,
                record.phase,
                record.error_message,
                json.dumps(record.warnings),
                json.dumps(record.backups),
                record.started_at.isoformat(),
                record.completed_at.isoformat() if record.completed_at else None,
            ))
            await self._connection.commit()
            return cursor.lastrowid

    async def update_run(self, run_id: int, **kwargs) -> None:
        """Update selected columns of a run."""
        if not kwargs:
            return

        for key, value in list(kwargs.items()):
            if isinstance(value, Enum):
                kwargs[key] = value.value
            elif isinstance(value, datetime):
                kwargs[key] = value.isoformat()
            elif isinstance(value, list):
                kwargs[key] = json.dumps(value)

        set_clause = ", ".join(f"{k} = ?" for k in kwargs.keys())
        values = list(kwargs.values()) + [run_id]

        async with self._lock:
            await self._connection.execute(
                f"UPDATE runs SET {set_clause} WHERE id = ?",
                values
            )
            await self._connection.commit()

    async def get_run(self, run_id: int) -> Optional[RunRecord]:
        async with self._lock:
            cursor = await self._connection.execute(
                "SELECT * FROM runs WHERE id = ?",
                (run_id,)
            )
            row = await cursor.fetchone()
            return self._row_to_record(row) if row else None

    async def get_recent_runs(self, limit: int = 20) -> List[RunRecord]:
        async with self._lock:
            cursor = await self._connection.execute(
                "SELECT * FROM runs ORDER BY started_at DESC, id DESC LIMIT ?",
                (limit,)
            )
            rows = await cursor.fetchall()
            return [self._row_to_record(row) for row in rows]

    def _row_to_record(self, row: aiosqlite.Row) -> RunRecord:
        return RunRecord(
            id=row["id"],
            kind=RunKind(row["kind"]),
            status=RunStatus(row["status"]),
            router_id=row["router_id"],
            phase=row["phase"],
            error_message=row["error_message"],
            warnings=json.loads(row["warnings"] or "[]"),
            backups=json.loads(row["backups"] or "[]"),
            started_at=datetime.fromisoformat(row["started_at"]),
            completed_at=datetime.fromisoformat(row["completed_at"]) if row["completed_at"] else None,
        )
