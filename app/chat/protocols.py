"""
Protocol definitions for the broadcast bus.

The bus is split in two roles because the server only ever publishes
(fan-out runs through the Channels layer and WebSocket consumers), while
the client reconciliation layer only ever subscribes.

Available Protocols:
    EventPublisher: publish(topic, event, payload, scope)
    EventSubscriber: subscribe(topic, event, handler, scope) -> unsubscribe

Usage:
    from chat.protocols import EventSubscriber

    def watch(bus: EventSubscriber, conversation_id):
        return bus.subscribe(
            Topic.CHAT_MESSAGES, Event.NEW_MESSAGE, print, scope=conversation_id
        )

Note:
    chat.broadcast.ChannelLayerBus satisfies EventPublisher;
    chat.broadcast.InMemoryBroadcastBus satisfies both.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Callable
    from typing import Any

    EventHandler = Callable[[dict[str, Any]], None]
    Unsubscribe = Callable[[], None]


@runtime_checkable
class EventPublisher(Protocol):
    """Fire-and-forget publisher. Must never raise into the caller."""

    def publish(
        self,
        topic: str,
        event: str,
        payload: dict[str, Any],
        scope: Any = None,
    ) -> None:
        """
        Publish an event.

        Args:
            topic: Topic name (chat.constants.Topic)
            event: Event name (chat.constants.Event)
            payload: JSON-serializable event body
            scope: Conversation id for conversation-scoped topics
        """
        ...


@runtime_checkable
class EventSubscriber(Protocol):
    """Subscriber side of the bus."""

    def subscribe(
        self,
        topic: str,
        event: str,
        handler: EventHandler,
        scope: Any = None,
    ) -> Unsubscribe:
        """
        Register a handler for one event on one topic.

        Returns:
            Callable that removes the handler. Calling it twice is harmless.
        """
        ...
