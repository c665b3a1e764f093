"""Inactivity watcher for the active session.

The host environment reports user activity by calling
``SessionStore.touch()``; this module only supplies the periodic check that
expires the session once the inactivity window passes without a touch.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from halochat.config import settings

if TYPE_CHECKING:
    from halochat.session import SessionStore

logger = logging.getLogger(__name__)


async def inactivity_loop(store: SessionStore, interval: float) -> None:
    """Check the session for expiry every *interval* seconds, forever."""
    while True:
        await asyncio.sleep(interval)
        if store.check_expiry():
            logger.info("Session expired after inactivity, now %s", store.current.id)


def start_inactivity_watch(store: SessionStore, interval: float | None = None) -> asyncio.Task:
    """Spawn the inactivity loop as a background task on the running loop.

    Returns the task so the caller can cancel it on shutdown.
    """
    period = interval or settings.activity_check_interval_seconds
    task = asyncio.ensure_future(inactivity_loop(store, period))
    logger.info("Inactivity watch started (interval=%ss)", period)
    return task
