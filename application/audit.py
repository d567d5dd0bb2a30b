from __future__ import annotations

import logging
from typing import Optional

from domain.models import ThreatLogEntry
from domain.repositories import ThreatLogRepository

logger = logging.getLogger(__name__)


def record_threat(
    threat_log: Optional[ThreatLogRepository],
    entry: ThreatLogEntry,
) -> None:
    """
    Append `entry` to the threat log without ever raising.

    The log is an audit trail; a failed write is reported locally and the
    caller carries on.
    """

    logger.warning(
        "[THREAT] %s -> ip=%s account=%s endpoint=%s",
        entry.reason.upper(),
        entry.ip,
        entry.account_id,
        entry.endpoint,
    )
    if threat_log is None:
        return
    try:
        threat_log.append(entry)
    except Exception:
        logger.exception("Failed to write threat log entry")
