from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


@dataclass
class Settings:
    discord_token: Optional[str]
    discord_guild_id: Optional[int]
    discord_invite_url: str
    db_backend: str
    db_path: str
    database_url: Optional[str]
    db_timeout: float
    session_secret: str
    session_max_age: int
    bcrypt_rounds: int
    audit_lookup_timeout: float
    default_ban_reason: str
    host: str
    port: int
    log_level: str


def _optional_int(value: Optional[str]) -> Optional[int]:
    if value is None or not value.strip():
        return None
    return int(value)


def load_settings() -> Settings:
    """Read settings from the environment, after loading a `.env` file if present."""

    load_dotenv()
    env = os.environ
    return Settings(
        discord_token=env.get("DISCORD_TOKEN"),
        discord_guild_id=_optional_int(env.get("DISCORD_GUILD_ID")),
        discord_invite_url=env.get("DISCORD_INVITE_URL", "https://discord.gg/MmDs5ees4S"),
        db_backend=env.get("DB_BACKEND", "sqlite").lower(),
        db_path=env.get("DB_PATH", "pulsehub.db"),
        database_url=env.get("DATABASE_URL"),
        db_timeout=float(env.get("DB_TIMEOUT_SECONDS", "5")),
        session_secret=env.get("SESSION_SECRET", "supersecret"),
        session_max_age=int(env.get("SESSION_MAX_AGE", str(60 * 60 * 24))),
        bcrypt_rounds=int(env.get("BCRYPT_ROUNDS", "12")),
        audit_lookup_timeout=float(env.get("AUDIT_LOOKUP_TIMEOUT_SECONDS", "3")),
        default_ban_reason=env.get("DEFAULT_BAN_REASON", "No reason provided"),
        host=env.get("HOST", "0.0.0.0"),
        port=int(env.get("PORT", "3000")),
        log_level=env.get("LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def build_repositories(settings: Settings):
    """Return `(account_repo, threat_log)` for the configured backend."""

    if settings.db_backend == "postgres":
        from infrastructure.db.account_repository_postgres import PostgresAccountRepository
        from infrastructure.db.threat_log_repository_postgres import (
            PostgresThreatLogRepository,
        )

        if not settings.database_url:
            raise RuntimeError("DATABASE_URL must be set when DB_BACKEND=postgres.")
        return (
            PostgresAccountRepository(settings.database_url, settings.db_timeout),
            PostgresThreatLogRepository(settings.database_url, settings.db_timeout),
        )

    from infrastructure.db.account_repository_sqlite import SqliteAccountRepository
    from infrastructure.db.threat_log_repository_sqlite import SqliteThreatLogRepository

    return (
        SqliteAccountRepository(settings.db_path, settings.db_timeout),
        SqliteThreatLogRepository(settings.db_path, settings.db_timeout),
    )
