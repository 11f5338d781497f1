"""
Tests for chat Celery tasks.
"""

from datetime import timedelta

import pytest
from django.conf import settings
from freezegun import freeze_time

from chat.constants import PRESENCE_CONFIG, Event, Topic
from chat.services import PresenceService
from chat.tasks import sweep_stale_presence


@pytest.mark.django_db
class TestSweepStalePresence:
    def test_returns_number_of_evicted_users(
        self, broadcast_bus, django_capture_on_commit_callbacks
    ):
        with freeze_time("2026-01-01 12:00:00") as frozen:
            PresenceService.connect(1, "a")
            PresenceService.connect(2, "b")
            frozen.tick(timedelta(seconds=PRESENCE_CONFIG.PRESENCE_TTL_SECONDS + 1))

            with django_capture_on_commit_callbacks(execute=True):
                evicted = sweep_stale_presence.delay().get()

            assert evicted == 2
            assert PresenceService.get_online_user_ids() == []

        assert len(broadcast_bus.events(Topic.ONLINE_USERS, Event.LEAVE)) == 2

    def test_nothing_stale(self):
        PresenceService.connect(1, "a")

        assert sweep_stale_presence() == 0
        assert PresenceService.get_online_user_ids() == [1]

    def test_scheduled_in_beat(self):
        entry = settings.CELERY_BEAT_SCHEDULE["sweep-stale-presence"]
        assert entry["task"] == "chat.tasks.sweep_stale_presence"
