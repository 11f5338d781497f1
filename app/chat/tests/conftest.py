"""
Test configuration and fixtures for chat tests.

This module provides:
- A recording broadcast bus swapped in for the channel layer
- A clean presence cache per test
- User fixtures (alice, bob, carol as members; mallory as outsider)
- Conversation and message fixtures
- API client helpers for authenticated requests

Usage:
    def test_example(group, alice_client, broadcast_bus):
        response = alice_client.get(f'/api/v1/chat/conversations/{group.id}/')
        assert response.status_code == 200
"""

import pytest
from django.core.cache import cache
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from authentication.tests.factories import UserFactory
from chat.broadcast import InMemoryBroadcastBus, set_broadcast_bus
from chat.tests.factories import (
    GroupConversationFactory,
    MessageFactory,
    PrivateConversationFactory,
)


# =============================================================================
# Infrastructure Fixtures
# =============================================================================


@pytest.fixture
def broadcast_bus():
    """
    Route service publishes to an in-memory bus for the test.

    Publishes are scheduled on commit; wrap the call in
    ``django_capture_on_commit_callbacks(execute=True)`` to see them.
    """
    bus = InMemoryBroadcastBus()
    previous = set_broadcast_bus(bus)
    yield bus
    set_broadcast_bus(previous)


@pytest.fixture(autouse=True)
def clear_presence_cache():
    """Presence lives in the cache; start every test with an empty roster."""
    cache.clear()
    yield
    cache.clear()


# =============================================================================
# User Fixtures
# =============================================================================


@pytest.fixture
def alice(db):
    return UserFactory(name="Alice")


@pytest.fixture
def bob(db):
    return UserFactory(name="Bob")


@pytest.fixture
def carol(db):
    return UserFactory(name="Carol")


@pytest.fixture
def mallory(db):
    """A user who is not a participant in any fixture conversation."""
    return UserFactory(name="Mallory")


# =============================================================================
# Conversation Fixtures
# =============================================================================


@pytest.fixture
def group(alice, bob, carol):
    """Group conversation with alice, bob and carol."""
    return GroupConversationFactory(name="Team", members=[alice, bob, carol])


@pytest.fixture
def private(alice, bob):
    """Private conversation between alice and bob."""
    return PrivateConversationFactory(user1=alice, user2=bob)


@pytest.fixture
def message(group, alice):
    """Top-level message from alice in the group."""
    return MessageFactory(conversation=group, sender=alice, body="Hello team")


# =============================================================================
# API Client Fixtures
# =============================================================================


def _client_for(user):
    client = APIClient()
    refresh = RefreshToken.for_user(user)
    client.credentials(HTTP_AUTHORIZATION=f"Bearer {refresh.access_token}")
    return client


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def alice_client(alice):
    return _client_for(alice)


@pytest.fixture
def bob_client(bob):
    return _client_for(bob)


@pytest.fixture
def mallory_client(mallory):
    return _client_for(mallory)
