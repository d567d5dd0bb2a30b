from __future__ import annotations

from typing import List

import psycopg2
from psycopg2.extras import Json

from domain.models import ThreatLogEntry
from domain.repositories import ThreatLogRepository


class PostgresThreatLogRepository(ThreatLogRepository):
    """
    Postgres-backed, append-only `threat_log` table.
    """

    def __init__(self, dsn: str, timeout: float = 5.0) -> None:
        self._dsn = dsn
        self._timeout = timeout
        self._ensure_table()

    def _get_connection(self):
        return psycopg2.connect(
            self._dsn,
            connect_timeout=max(1, int(self._timeout)),
            options=f"-c statement_timeout={int(self._timeout * 1000)}",
        )

    def _ensure_table(self) -> None:
        conn = self._get_connection()
        try:
            with conn:
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        CREATE TABLE IF NOT EXISTS threat_log (
                            id BIGSERIAL PRIMARY KEY,
                            ip TEXT NOT NULL,
                            reason TEXT NOT NULL,
                            action_taken TEXT,
                            user_agent TEXT,
                            endpoint TEXT,
                            account_id TEXT,
                            metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
                            timestamp TIMESTAMPTZ NOT NULL
                        )
                        """
                    )
                    cur.execute(
                        "CREATE INDEX IF NOT EXISTS ix_threat_log_ip "
                        "ON threat_log (ip, timestamp DESC)"
                    )
        finally:
            conn.close()

    def append(self, entry: ThreatLogEntry) -> None:
        conn = self._get_connection()
        try:
            with conn:
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        INSERT INTO threat_log
                            (ip, reason, action_taken, user_agent, endpoint,
                             account_id, metadata, timestamp)
                        VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                        """,
                        (
                            entry.ip,
                            entry.reason,
                            entry.action_taken,
                            entry.user_agent,
                            entry.endpoint,
                            entry.account_id,
                            Json(entry.metadata),
                            entry.timestamp,
                        ),
                    )
        finally:
            conn.close()

    def recent(self, limit: int = 50) -> List[ThreatLogEntry]:
        conn = self._get_connection()
        try:
            with conn:
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        SELECT ip, reason, action_taken, user_agent, endpoint,
                               account_id, metadata, timestamp
                        FROM threat_log
                        ORDER BY id DESC
                        LIMIT %s
                        """,
                        (limit,),
                    )
                    rows = cur.fetchall()
        finally:
            conn.close()
        return [
            ThreatLogEntry(
                ip=row[0],
                reason=row[1],
                action_taken=row[2],
                user_agent=row[3],
                endpoint=row[4],
                account_id=row[5],
                metadata=row[6] or {},
                timestamp=row[7],
            )
            for row in rows
        ]
