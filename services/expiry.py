"""Timeout sweep for exam sessions that ran out of time."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from exam.flow import ExamFlowService
from exam.ports import SessionStore
from exam.types import as_utc, utcnow

logger = logging.getLogger(__name__)


async def sweep_expired_sessions(
    flow: ExamFlowService,
    store: SessionStore,
    now: Optional[datetime] = None,
) -> int:
    """Expire every session past its deadline and return how many this call closed.

    Sessions already closed by a concurrent answer or another sweep are skipped.
    """

    current = as_utc(now) if now else utcnow()
    expired = await store.list_expired(current)
    closed = 0
    for session in expired:
        if await flow.expire_session(session.id):
            closed += 1
    if closed:
        logger.info("Expired %s exam session(s)", closed)
    return closed


__all__ = ["sweep_expired_sessions"]
