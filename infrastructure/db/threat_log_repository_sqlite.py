from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List

from domain.errors import StoreUnavailable
from domain.models import ThreatLogEntry
from domain.repositories import ThreatLogRepository


class SqliteThreatLogRepository(ThreatLogRepository):
    """
    SQLite-backed, append-only `threat_log` table.
    """

    def __init__(self, db_path: str, timeout: float = 5.0) -> None:
        self._db_path = db_path
        self._timeout = timeout
        self._ensure_table()

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self._db_path, timeout=self._timeout)
        except sqlite3.OperationalError as exc:
            raise StoreUnavailable(str(exc)) from exc
        try:
            with conn:
                yield conn
        except sqlite3.OperationalError as exc:
            raise StoreUnavailable(str(exc)) from exc
        finally:
            conn.close()

    def _ensure_table(self) -> None:
        with self._connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS threat_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    ip TEXT NOT NULL,
                    reason TEXT NOT NULL,
                    action_taken TEXT,
                    user_agent TEXT,
                    endpoint TEXT,
                    account_id TEXT,
                    metadata TEXT NOT NULL DEFAULT '{}',
                    timestamp TEXT NOT NULL
                )
                """
            )
            cur.execute(
                "CREATE INDEX IF NOT EXISTS ix_threat_log_ip ON threat_log (ip, timestamp)"
            )

    def append(self, entry: ThreatLogEntry) -> None:
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO threat_log
                    (ip, reason, action_taken, user_agent, endpoint,
                     account_id, metadata, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.ip,
                    entry.reason,
                    entry.action_taken,
                    entry.user_agent,
                    entry.endpoint,
                    entry.account_id,
                    json.dumps(entry.metadata),
                    entry.timestamp.isoformat(),
                ),
            )

    def recent(self, limit: int = 50) -> List[ThreatLogEntry]:
        with self._connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT ip, reason, action_taken, user_agent, endpoint,
                       account_id, metadata, timestamp
                FROM threat_log
                ORDER BY id DESC
                LIMIT ?
                """,
                (limit,),
            )
            rows = cur.fetchall()
        return [
            ThreatLogEntry(
                ip=row[0],
                reason=row[1],
                action_taken=row[2],
                user_agent=row[3],
                endpoint=row[4],
                account_id=row[5],
                metadata=json.loads(row[6]),
                timestamp=datetime.fromisoformat(row[7]),
            )
            for row in rows
        ]
