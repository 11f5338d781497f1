"""
WebSocket consumer for the realtime core.

One socket per client session carries every topic the session follows.
The consumer joins Channels groups on the client's behalf and forwards
bus events (chat.broadcast.ChannelLayerBus) to the socket.

Consumers:
    RealtimeConsumer: Session socket at ws/realtime/

Authentication:
    JWTAuthMiddleware resolves the access token (query string or the
    "jwt" subprotocol) into self.scope["user"]. Anonymous sockets are
    closed with code 4001.

Subscriptions:
    group_updates and online_users are joined on connect and kept until
    disconnect. Conversation topics (chat_messages, thread_updates,
    message_reactions) and thread_<parent_id> are joined on request after
    a participant check.

Message Types (from client):
    {"action": "subscribe", "topic": "chat_messages", "scope": "<conversation id>"}
    {"action": "subscribe", "topic": "thread_<message id>"}
    {"action": "unsubscribe", "topic": ..., "scope": ...}
    {"action": "heartbeat"}
    {"action": "message", "conversation_id": "...", "body": "..."}

Message Types (to client):
    {"topic": ..., "scope": ..., "event": ..., "payload": {...}}
    {"topic": "online_users", "event": "sync", "payload": {"user_ids": [...]}}
    {"event": "subscribed" | "unsubscribed", "topic": ..., "scope": ...}
    {"event": "message_sent", "payload": {"success": true, "data": {...}}}
    {"event": "error", "payload": {"error": ..., "error_code": ...}}
"""

from __future__ import annotations

import logging
from uuid import UUID

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer
from django.contrib.auth.models import AnonymousUser

from chat.broadcast import group_name, to_wire
from chat.constants import ErrorCode, Event, Topic
from chat.models import Message, Participant
from chat.serializers import MessageSerializer
from chat.services import MessageService, PresenceService

logger = logging.getLogger(__name__)

GLOBAL_TOPICS = (Topic.GROUP_UPDATES, Topic.ONLINE_USERS)


def _parse_uuid(value) -> UUID | None:
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


class RealtimeConsumer(AsyncJsonWebsocketConsumer):
    """
    Session socket.

    Attributes:
        user: Authenticated user (after connect)
        groups_joined: Channel-layer group names this socket is in
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.user = None
        self.groups_joined: set[str] = set()

    async def connect(self):
        user = self.scope.get("user")
        if not user or isinstance(user, AnonymousUser) or not user.is_authenticated:
            logger.warning("Rejected unauthenticated realtime connection")
            await self.close(code=4001)
            return

        self.user = user
        subprotocols = self.scope.get("subprotocols") or []
        await self.accept(subprotocol="jwt" if "jwt" in subprotocols else None)

        for topic in GLOBAL_TOPICS:
            await self._join(group_name(topic))

        await database_sync_to_async(PresenceService.connect)(user.id, self.channel_name)
        online = await database_sync_to_async(PresenceService.get_online_user_ids)()
        await self.send_json(
            {
                "topic": Topic.ONLINE_USERS,
                "scope": None,
                "event": Event.SYNC,
                "payload": {"user_ids": online},
            }
        )
        logger.info(f"User {user.id} connected to realtime socket")

    async def disconnect(self, close_code):
        for name in list(self.groups_joined):
            await self.channel_layer.group_discard(name, self.channel_name)
        self.groups_joined.clear()

        if self.user is not None:
            await database_sync_to_async(PresenceService.disconnect)(
                self.user.id, self.channel_name
            )
            logger.info(f"User {self.user.id} disconnected (code={close_code})")

    async def receive_json(self, content, **kwargs):
        if not isinstance(content, dict):
            await self._send_error("Frames must be JSON objects", "INVALID_FRAME")
            return

        action = content.get("action")
        if action == "subscribe":
            await self._handle_subscribe(content)
        elif action == "unsubscribe":
            await self._handle_unsubscribe(content)
        elif action == "heartbeat":
            await database_sync_to_async(PresenceService.heartbeat)(
                self.user.id, self.channel_name
            )
        elif action == "message":
            await self._handle_message(content)
        else:
            await self._send_error(f"Unknown action: {action}", "UNKNOWN_ACTION")

    # -------------------------------------------------------------------------
    # Actions
    # -------------------------------------------------------------------------

    async def _handle_subscribe(self, content):
        topic = content.get("topic") or ""
        scope = content.get("scope")

        if topic in GLOBAL_TOPICS:
            # Already joined on connect
            await self._send_ack("subscribed", topic, None)
            return

        if topic in Topic.CONVERSATION_SCOPED:
            conversation_id = _parse_uuid(scope)
            if conversation_id is None:
                await self._send_error(
                    "A conversation id is required for this topic",
                    ErrorCode.CONVERSATION_REQUIRED,
                )
                return
            allowed = await self._is_participant(conversation_id)
            name = group_name(topic, conversation_id)
        elif Topic.is_thread(topic):
            parent_id = _parse_uuid(topic[len(Topic.THREAD_PREFIX):])
            if parent_id is None:
                await self._send_error("Unknown thread", ErrorCode.MESSAGE_NOT_FOUND)
                return
            allowed = await self._can_view_thread(parent_id)
            name = group_name(Topic.thread(parent_id))
        else:
            await self._send_error(f"Unknown topic: {topic}", "UNKNOWN_TOPIC")
            return

        if not allowed:
            logger.warning(f"User {self.user.id} denied subscription to {name}")
            await self._send_error(
                "You are not a participant in this conversation",
                ErrorCode.NOT_PARTICIPANT,
            )
            return

        await self._join(name)
        await self._send_ack("subscribed", topic, scope)

    async def _handle_unsubscribe(self, content):
        topic = content.get("topic") or ""
        scope = content.get("scope")

        if topic in GLOBAL_TOPICS:
            # Global topics live as long as the socket
            await self._send_ack("unsubscribed", topic, None)
            return

        try:
            name = group_name(topic, _parse_uuid(scope) if scope is not None else None)
        except ValueError:
            await self._send_error(
                "A conversation id is required for this topic",
                ErrorCode.CONVERSATION_REQUIRED,
            )
            return

        if name in self.groups_joined:
            await self.channel_layer.group_discard(name, self.channel_name)
            self.groups_joined.discard(name)
        await self._send_ack("unsubscribed", topic, scope)

    async def _handle_message(self, content):
        conversation_id = _parse_uuid(content.get("conversation_id"))
        if conversation_id is None:
            await self._send_error(
                "A conversation id is required", ErrorCode.CONVERSATION_REQUIRED
            )
            return

        result = await self._send_message(conversation_id, content.get("body"))
        if result["success"]:
            await self.send_json({"event": "message_sent", "payload": to_wire(result)})
            return
        logger.info(f"User {self.user.id} message rejected: {result.get('error_code')}")
        await self.send_json({"event": "error", "payload": result})

    # -------------------------------------------------------------------------
    # Channel layer handlers
    # -------------------------------------------------------------------------

    async def broadcast_event(self, event):
        """Forward a bus event (type "broadcast.event") to the client."""
        await self.send_json(
            {
                "topic": event["topic"],
                "scope": event.get("scope"),
                "event": event["event"],
                "payload": event["payload"],
            }
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _join(self, name: str):
        if name in self.groups_joined:
            return
        await self.channel_layer.group_add(name, self.channel_name)
        self.groups_joined.add(name)

    async def _send_ack(self, kind: str, topic: str, scope):
        await self.send_json({"event": kind, "topic": topic, "scope": scope})

    async def _send_error(self, message: str, error_code: str):
        await self.send_json(
            {
                "event": "error",
                "payload": {"success": False, "error": message, "error_code": error_code},
            }
        )

    @database_sync_to_async
    def _is_participant(self, conversation_id) -> bool:
        return Participant.objects.filter(
            conversation_id=conversation_id,
            user=self.user,
        ).exists()

    @database_sync_to_async
    def _can_view_thread(self, parent_id) -> bool:
        conversation_id = (
            Message.objects.filter(pk=parent_id).values_list("conversation_id", flat=True).first()
        )
        if conversation_id is None:
            return False
        return Participant.objects.filter(
            conversation_id=conversation_id,
            user=self.user,
        ).exists()

    @database_sync_to_async
    def _send_message(self, conversation_id, body) -> dict:
        """
        Send a message using MessageService.

        Returns the serialized message or the failure response. The
        broadcast itself reaches this socket through chat_messages if the
        client subscribed to the conversation.
        """
        result = MessageService.send_message(conversation_id, self.user, body)
        if result.success:
            return {"success": True, "data": MessageSerializer(result.data).data}
        return result.to_response()
