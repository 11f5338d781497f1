"""
Tests for cache-backed presence.

Time is controlled with freezegun; the locmem cache reads the same frozen
clock, so expiry behaves as it would in Redis.
"""

from datetime import timedelta

import pytest
from django.utils import timezone
from freezegun import freeze_time

from chat.constants import PRESENCE_CONFIG, Event, Topic
from chat.services import PresenceService

TTL = timedelta(seconds=PRESENCE_CONFIG.PRESENCE_TTL_SECONDS)


@pytest.mark.django_db
class TestConnect:
    def test_first_connection_comes_online(
        self, broadcast_bus, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            result = PresenceService.connect(1, "conn-a")

        assert result.success
        assert result.data is True
        assert PresenceService.get_online_user_ids() == [1]
        joins = broadcast_bus.events(Topic.ONLINE_USERS, Event.JOIN)
        assert [e.payload["user_id"] for e in joins] == [1]
        assert "online_at" in joins[0].payload

    def test_second_tab_does_not_announce_again(
        self, broadcast_bus, django_capture_on_commit_callbacks
    ):
        """
        Opening a second connection keeps the user online without a new join.

        Why it matters: every open tab would otherwise flicker the roster of
        every other user.
        """
        with django_capture_on_commit_callbacks(execute=True):
            PresenceService.connect(1, "conn-a")
            second = PresenceService.connect(1, "conn-b")

        assert second.data is False
        assert len(broadcast_bus.events(Topic.ONLINE_USERS, Event.JOIN)) == 1

    def test_roster_lists_each_user_once(self):
        PresenceService.connect(1, "a")
        PresenceService.connect(2, "b")
        PresenceService.connect(1, "c")

        assert sorted(PresenceService.get_online_user_ids()) == [1, 2]

    def test_cache_failure_degrades_to_failure_result(self, monkeypatch):
        class BrokenCache:
            def get(self, *args, **kwargs):
                raise ConnectionError("cache down")

        monkeypatch.setattr(PresenceService, "_get_cache", staticmethod(lambda: BrokenCache()))

        result = PresenceService.connect(1, "conn-a")

        assert not result.success
        assert result.error_code == "PRESENCE_ERROR"
        assert PresenceService.get_online_user_ids() == []


@pytest.mark.django_db
class TestDisconnect:
    def test_last_connection_goes_offline(
        self, broadcast_bus, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            PresenceService.connect(1, "conn-a")
            PresenceService.connect(1, "conn-b")
            first = PresenceService.disconnect(1, "conn-a")
            assert PresenceService.get_online_user_ids() == [1]
            last = PresenceService.disconnect(1, "conn-b")

        assert first.data is False
        assert last.data is True
        assert PresenceService.get_online_user_ids() == []
        leaves = broadcast_bus.events(Topic.ONLINE_USERS, Event.LEAVE)
        assert [e.payload["user_id"] for e in leaves] == [1]

    def test_other_users_stay_online(self):
        PresenceService.connect(1, "a")
        PresenceService.connect(2, "b")

        PresenceService.disconnect(1, "a")

        assert PresenceService.get_online_user_ids() == [2]


@pytest.mark.django_db
class TestExpiry:
    def test_silent_connection_expires_after_ttl(self):
        with freeze_time("2026-01-01 12:00:00") as frozen:
            PresenceService.connect(1, "conn-a")

            frozen.tick(TTL - timedelta(seconds=1))
            assert PresenceService.get_online_user_ids() == [1]

            frozen.tick(timedelta(seconds=2))
            assert PresenceService.get_online_user_ids() == []

    def test_heartbeat_keeps_user_online(self):
        with freeze_time("2026-01-01 12:00:00") as frozen:
            PresenceService.connect(1, "conn-a")

            for _ in range(4):
                frozen.tick(TTL / 2)
                PresenceService.heartbeat(1, "conn-a")

            assert PresenceService.get_online_user_ids() == [1]

    def test_heartbeat_after_expiry_rejoins(
        self, broadcast_bus, django_capture_on_commit_callbacks
    ):
        with freeze_time("2026-01-01 12:00:00") as frozen:
            with django_capture_on_commit_callbacks(execute=True):
                PresenceService.connect(1, "conn-a")
                frozen.tick(TTL + timedelta(seconds=5))
                result = PresenceService.heartbeat(1, "conn-a")

        assert result.data is True
        assert len(broadcast_bus.events(Topic.ONLINE_USERS, Event.JOIN)) == 2


@pytest.mark.django_db
class TestSweepStale:
    def test_evicts_and_announces_leave(
        self, broadcast_bus, django_capture_on_commit_callbacks
    ):
        """
        A client that vanished without disconnecting is swept and announced.

        Why it matters: without the sweep, a crashed browser keeps its user
        listed as online for everyone who connects later and reads the
        roster from the server.
        """
        with freeze_time("2026-01-01 12:00:00") as frozen:
            with django_capture_on_commit_callbacks(execute=True):
                PresenceService.connect(1, "crashed")
                PresenceService.connect(2, "alive")
                frozen.tick(TTL / 2)
                PresenceService.heartbeat(2, "alive")
                frozen.tick(TTL / 2 + timedelta(seconds=1))

                evicted = PresenceService.sweep_stale()

            assert evicted == [1]
            assert PresenceService.get_online_user_ids() == [2]

        leaves = broadcast_bus.events(Topic.ONLINE_USERS, Event.LEAVE)
        assert [e.payload["user_id"] for e in leaves] == [1]

    def test_nothing_to_sweep(self):
        PresenceService.connect(1, "a")
        assert PresenceService.sweep_stale() == []

    def test_online_at_uses_current_time(
        self, broadcast_bus, django_capture_on_commit_callbacks
    ):
        with freeze_time("2026-03-04 05:06:07"):
            with django_capture_on_commit_callbacks(execute=True):
                PresenceService.connect(7, "a")
            expected = timezone.now().isoformat()

        join = broadcast_bus.events(Topic.ONLINE_USERS, Event.JOIN)[0]
        assert join.payload["online_at"] == expected
