"""
Celery tasks for chat app.

This module defines periodic tasks for:
- Presence sweeping (evict connections that stopped sending heartbeats)

Related files:
    - services.py: PresenceService
    - config/settings.py: CELERY_BEAT_SCHEDULE

Usage:
    from chat.tasks import sweep_stale_presence

    sweep_stale_presence.delay()
"""

import logging

from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    autoretry_for=(ConnectionError,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 3},
)
def sweep_stale_presence(self) -> int:
    """
    Evict stale presence entries.

    A client that crashed without closing its socket stops sending
    heartbeats; once its connection is older than PRESENCE_TTL_SECONDS
    this task removes it and publishes leave for the user.

    Returns:
        Number of users marked offline
    """
    from chat.services import PresenceService

    evicted = PresenceService.sweep_stale()
    if evicted:
        logger.info(f"Marked {len(evicted)} stale users offline")
    return len(evicted)
