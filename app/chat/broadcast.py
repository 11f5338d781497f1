"""
Broadcast bus for realtime fan-out.

The bus carries ephemeral events from services to every subscribed client
session. Delivery is best-effort: a failed publish is logged and dropped,
and clients recover by re-fetching their snapshot.

Implementations:
    ChannelLayerBus: Production publisher. One Channels group per topic
        (and per scope for conversation-scoped topics); WebSocket
        consumers join those groups and forward events to clients.
    InMemoryBroadcastBus: In-process publisher and subscriber. Used by the
        client reconciliation layer and by tests to observe publishes.

Group Names:
    chat_messages.<conversation_id>
    thread_updates.<conversation_id>
    message_reactions.<conversation_id>
    thread_<parent_message_id>
    group_updates
    online_users

Usage:
    from chat.broadcast import publish_on_commit

    with transaction.atomic():
        message = Message.objects.create(...)
        publish_on_commit(
            Topic.CHAT_MESSAGES,
            Event.NEW_MESSAGE,
            {"conversation_id": ..., "message": ...},
            scope=message.conversation_id,
        )

Design Decisions:
    - Publishing is deferred to transaction.on_commit so a rolled-back
      write is never announced
    - Payloads are normalized to plain JSON types before they reach the
      channel layer (msgpack cannot encode UUIDs or datetimes)
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import TYPE_CHECKING

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.db import transaction
from rest_framework.utils.encoders import JSONEncoder

from chat.constants import Topic

if TYPE_CHECKING:
    from typing import Any

    from chat.protocols import EventHandler, EventPublisher, Unsubscribe

logger = logging.getLogger(__name__)

# Channels consumer method that receives bus events ("broadcast.event")
CONSUMER_HANDLER_TYPE = "broadcast.event"


def group_name(topic: str, scope: Any = None) -> str:
    """
    Channel-layer group for a topic.

    Conversation-scoped topics require a scope; global and per-thread
    topics ignore it.
    """
    if topic in Topic.CONVERSATION_SCOPED:
        if scope is None:
            raise ValueError(f"Topic '{topic}' requires a conversation scope")
        return f"{topic}.{scope}"
    return topic


def to_wire(payload: dict[str, Any]) -> dict[str, Any]:
    """Normalize a payload (UUIDs, datetimes, serializer dicts) to JSON types."""
    return json.loads(json.dumps(payload, cls=JSONEncoder))


@dataclass(frozen=True)
class BroadcastEvent:
    """One published event, as recorded by InMemoryBroadcastBus."""

    topic: str
    event: str
    payload: dict
    scope: str | None = None


class ChannelLayerBus:
    """
    Publisher backed by the Django Channels layer.

    Safe to call from sync code (services, Celery tasks) and from threads
    started by database_sync_to_async.
    """

    def __init__(self, alias: str = "default"):
        self.alias = alias

    def publish(
        self,
        topic: str,
        event: str,
        payload: dict[str, Any],
        scope: Any = None,
    ) -> None:
        try:
            channel_layer = get_channel_layer(self.alias)
            if channel_layer is None:
                logger.warning(f"No channel layer configured; dropped {topic}/{event}")
                return

            message = {
                "type": CONSUMER_HANDLER_TYPE,
                "topic": topic,
                "scope": str(scope) if scope is not None else None,
                "event": event,
                "payload": to_wire(payload),
            }
            async_to_sync(channel_layer.group_send)(group_name(topic, scope), message)
        except Exception:
            logger.exception(f"Broadcast failed for {topic}/{event} (scope={scope})")


class InMemoryBroadcastBus:
    """
    In-process bus implementing both publish and subscribe.

    Handlers run synchronously inside publish(), in subscription order.
    Every publish is also appended to ``published`` so tests can assert
    on it.

    Usage:
        bus = InMemoryBroadcastBus()
        unsubscribe = bus.subscribe(Topic.GROUP_UPDATES, Event.NEW_GROUP, handler)
        bus.publish(Topic.GROUP_UPDATES, Event.NEW_GROUP, {"conversation": {...}})
        unsubscribe()
    """

    def __init__(self):
        self._handlers: dict[tuple[str, str], list[EventHandler]] = defaultdict(list)
        self.published: list[BroadcastEvent] = []

    def publish(
        self,
        topic: str,
        event: str,
        payload: dict[str, Any],
        scope: Any = None,
    ) -> None:
        wire_payload = to_wire(payload)
        self.published.append(
            BroadcastEvent(
                topic=topic,
                event=event,
                payload=wire_payload,
                scope=str(scope) if scope is not None else None,
            )
        )

        key = (group_name(topic, scope), event)
        for handler in list(self._handlers.get(key, ())):
            try:
                handler(wire_payload)
            except Exception:
                logger.exception(f"Subscriber failed handling {topic}/{event}")

    def subscribe(
        self,
        topic: str,
        event: str,
        handler: EventHandler,
        scope: Any = None,
    ) -> Unsubscribe:
        key = (group_name(topic, scope), event)
        self._handlers[key].append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(key)
            if handlers and handler in handlers:
                handlers.remove(handler)
            if not handlers:
                self._handlers.pop(key, None)

        return unsubscribe

    def subscriber_count(self, topic: str, event: str, scope: Any = None) -> int:
        return len(self._handlers.get((group_name(topic, scope), event), ()))

    def events(self, topic: str | None = None, event: str | None = None) -> list[BroadcastEvent]:
        """Recorded publishes, optionally filtered by topic and event."""
        return [
            e
            for e in self.published
            if (topic is None or e.topic == topic) and (event is None or e.event == event)
        ]


# =============================================================================
# Module-level bus
# =============================================================================

_bus: EventPublisher = ChannelLayerBus()


def get_broadcast_bus() -> EventPublisher:
    """Return the publisher services use."""
    return _bus


def set_broadcast_bus(bus: EventPublisher) -> EventPublisher:
    """
    Replace the publisher services use and return the previous one.

    Used by tests (see the ``broadcast_bus`` fixture) and by deployments
    that run without a channel layer.
    """
    global _bus
    previous = _bus
    _bus = bus
    return previous


def publish(topic: str, event: str, payload: dict[str, Any], scope: Any = None) -> None:
    """Publish immediately through the current bus."""
    get_broadcast_bus().publish(topic, event, payload, scope=scope)


def publish_on_commit(
    topic: str,
    event: str,
    payload: dict[str, Any],
    scope: Any = None,
) -> None:
    """
    Publish once the surrounding transaction commits.

    Outside a transaction the event is published right away. The payload
    is captured now, so later mutations of the objects it was built from
    do not leak into the event.
    """
    wire_payload = to_wire(payload)
    transaction.on_commit(
        lambda: get_broadcast_bus().publish(topic, event, wire_payload, scope=scope)
    )
