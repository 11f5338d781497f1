"""
Client reconciliation layer.

Merges broadcast events into the state a client session holds locally:
the open conversation's messages, an open thread, the conversation list
and the online roster. Everything here works on the wire format produced
by chat.serializers (plain dicts, ids as strings), and nothing touches
the database, so the same classes back Python clients, bots and tests.

Classes:
    ConversationState: Messages of one conversation
    ThreadState: Parent and replies of one open thread
    PresenceRoster: Set of online user ids
    DirectoryState: Conversation list of one viewer
    ChatSession: Session holder wiring the states to a bus subscriber

Merge Rules:
    - new_message: appended only if it is top-level, belongs to this
      conversation and its id is not already present
    - thread_update: reply_count is replaced, never incremented
    - new_reaction: ignored if the same (user_id, emoji) is already on
      the message
    - remove_reaction: drops the (user_id, emoji) entry if present
    - Events for unknown messages are ignored; the next snapshot load
      brings them in

Missed events are never replayed. A client that suspects it missed
something reloads the snapshot (ConversationState.load_snapshot).

Usage:
    bus = InMemoryBroadcastBus()
    session = ChatSession(bus, viewer_id=user.id, load_messages=fetch)
    session.start()
    session.set_active_conversation_id(conversation_id)
    session.conversation.messages
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from chat.constants import Event, MemberAction, Topic

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from typing import Any

    from chat.protocols import EventSubscriber, Unsubscribe

logger = logging.getLogger(__name__)


def _id(value: Any) -> str | None:
    return None if value is None else str(value)


def _same_user(a: Any, b: Any) -> bool:
    return a is not None and b is not None and str(a) == str(b)


def _add_reaction(message: dict[str, Any], reaction: dict[str, Any]) -> bool:
    reactions = message.setdefault("reactions", [])
    for existing in reactions:
        if _same_user(existing.get("user_id"), reaction.get("user_id")) and existing.get(
            "emoji"
        ) == reaction.get("emoji"):
            return False
    reactions.append(reaction)
    return True


def _remove_reaction(message: dict[str, Any], user_id: Any, emoji: str) -> bool:
    reactions = message.get("reactions") or []
    kept = [
        r
        for r in reactions
        if not (_same_user(r.get("user_id"), user_id) and r.get("emoji") == emoji)
    ]
    if len(kept) == len(reactions):
        return False
    message["reactions"] = kept
    return True


def group_by_emoji(reactions: Iterable[dict[str, Any]], viewer_id: Any) -> list[dict[str, Any]]:
    """
    Group reactions for display.

    Returns one entry per emoji, in order of first appearance:
        {"emoji": "👍", "count": 2, "users": [{"id": 1, "name": "Ada"}],
         "reacted_by_me": True}
    """
    groups: dict[str, dict[str, Any]] = {}
    for reaction in reactions:
        emoji = reaction["emoji"]
        group = groups.setdefault(
            emoji,
            {"emoji": emoji, "count": 0, "users": [], "reacted_by_me": False},
        )
        user = reaction.get("user") or {}
        group["count"] += 1
        group["users"].append({"id": reaction.get("user_id"), "name": user.get("name")})
        if _same_user(reaction.get("user_id"), viewer_id):
            group["reacted_by_me"] = True
    return list(groups.values())


def toggle_action(reactions: Iterable[dict[str, Any]], viewer_id: Any, emoji: str) -> str:
    """Return "remove" if the viewer already placed ``emoji``, else "add"."""
    for reaction in reactions:
        if reaction.get("emoji") == emoji and _same_user(reaction.get("user_id"), viewer_id):
            return "remove"
    return "add"


# =============================================================================
# Conversation & Thread State
# =============================================================================


class ConversationState:
    """Messages of one conversation, keyed by id, in arrival order."""

    def __init__(self, conversation_id: Any):
        self.conversation_id = _id(conversation_id)
        self._messages: dict[str, dict[str, Any]] = {}

    def load_snapshot(self, messages: Iterable[dict[str, Any]]) -> None:
        """Replace local state with a freshly fetched message list."""
        self._messages = {}
        for message in messages:
            if message.get("is_thread_reply"):
                continue
            self._messages[_id(message["id"])] = dict(message)

    @property
    def messages(self) -> list[dict[str, Any]]:
        return list(self._messages.values())

    def get(self, message_id: Any) -> dict[str, Any] | None:
        return self._messages.get(_id(message_id))

    def apply(self, event: str, payload: dict[str, Any]) -> bool:
        """Merge one event. Returns True if local state changed."""
        if event == Event.NEW_MESSAGE:
            return self._on_new_message(payload)
        if event == Event.THREAD_UPDATE:
            return self._on_thread_update(payload)
        if event == Event.NEW_REACTION:
            message = self.get(payload.get("message_id"))
            return message is not None and _add_reaction(message, payload["reaction"])
        if event == Event.REMOVE_REACTION:
            message = self.get(payload.get("message_id"))
            return message is not None and _remove_reaction(
                message, payload.get("user_id"), payload.get("emoji")
            )
        return False

    def _on_new_message(self, payload: dict[str, Any]) -> bool:
        message = payload.get("message") or {}
        conversation_id = _id(payload.get("conversation_id") or message.get("conversation_id"))
        if conversation_id != self.conversation_id:
            return False
        if message.get("is_thread_reply"):
            return False
        message_id = _id(message.get("id"))
        if message_id is None or message_id in self._messages:
            return False
        self._messages[message_id] = dict(message)
        return True

    def _on_thread_update(self, payload: dict[str, Any]) -> bool:
        message = self.get(payload.get("message_id"))
        if message is None:
            return False
        reply_count = payload.get("reply_count", 0)
        if message.get("reply_count") == reply_count:
            return False
        message["reply_count"] = reply_count
        return True


class ThreadState:
    """Parent message and replies of one open thread."""

    def __init__(self, parent_id: Any):
        self.parent_id = _id(parent_id)
        self.parent: dict[str, Any] | None = None
        self._replies: dict[str, dict[str, Any]] = {}
        self.reply_count = 0

    def load_snapshot(self, thread: dict[str, Any]) -> None:
        """Load the {"parent", "replies", "reply_count"} shape returned by the thread endpoint."""
        self.parent = dict(thread["parent"]) if thread.get("parent") else None
        self._replies = {_id(r["id"]): dict(r) for r in thread.get("replies", [])}
        self.reply_count = thread.get("reply_count", len(self._replies))

    @property
    def replies(self) -> list[dict[str, Any]]:
        return list(self._replies.values())

    def _find(self, message_id: Any) -> dict[str, Any] | None:
        message_id = _id(message_id)
        if self.parent is not None and _id(self.parent.get("id")) == message_id:
            return self.parent
        return self._replies.get(message_id)

    def apply(self, event: str, payload: dict[str, Any]) -> bool:
        if event == Event.THREAD_MESSAGE:
            if _id(payload.get("parent_id")) != self.parent_id:
                return False
            reply = payload.get("message") or {}
            reply_id = _id(reply.get("id"))
            if reply_id is None or reply_id in self._replies:
                return False
            self._replies[reply_id] = dict(reply)
            self.reply_count = max(self.reply_count, len(self._replies))
            return True
        if event == Event.THREAD_UPDATE:
            if _id(payload.get("message_id")) != self.parent_id:
                return False
            self.reply_count = payload.get("reply_count", self.reply_count)
            if self.parent is not None:
                self.parent["reply_count"] = self.reply_count
            return True
        if event == Event.NEW_REACTION:
            message = self._find(payload.get("message_id"))
            return message is not None and _add_reaction(message, payload["reaction"])
        if event == Event.REMOVE_REACTION:
            message = self._find(payload.get("message_id"))
            return message is not None and _remove_reaction(
                message, payload.get("user_id"), payload.get("emoji")
            )
        return False


# =============================================================================
# Presence & Directory
# =============================================================================


class PresenceRoster:
    """Online user ids, rebuilt on sync and updated on join/leave."""

    def __init__(self):
        self._online: set[str] = set()

    @property
    def online_user_ids(self) -> set[str]:
        return set(self._online)

    def is_online(self, user_id: Any) -> bool:
        return _id(user_id) in self._online

    def apply(self, event: str, payload: dict[str, Any]) -> bool:
        if event == Event.SYNC:
            online = {_id(uid) for uid in payload.get("user_ids", [])}
            changed = online != self._online
            self._online = online
            return changed
        if event == Event.JOIN:
            user_id = _id(payload.get("user_id"))
            if user_id in self._online:
                return False
            self._online.add(user_id)
            return True
        if event == Event.LEAVE:
            user_id = _id(payload.get("user_id"))
            if user_id not in self._online:
                return False
            self._online.discard(user_id)
            return True
        return False


class DirectoryState:
    """
    Conversation list for one viewer, most recently active first.

    Group events are global, so every client sees every new_group and
    member_update; only the ones that involve the viewer change state.
    """

    def __init__(self, viewer_id: Any):
        self.viewer_id = _id(viewer_id)
        self._conversations: dict[str, dict[str, Any]] = {}

    def load_snapshot(self, conversations: Iterable[dict[str, Any]]) -> None:
        self._conversations = {_id(c["id"]): dict(c) for c in conversations}

    @property
    def conversations(self) -> list[dict[str, Any]]:
        return list(self._conversations.values())

    def get(self, conversation_id: Any) -> dict[str, Any] | None:
        return self._conversations.get(_id(conversation_id))

    def _is_member(self, conversation: dict[str, Any]) -> bool:
        return any(
            _id((p.get("user") or {}).get("id")) == self.viewer_id
            for p in conversation.get("participants", [])
        )

    def _put_first(self, conversation: dict[str, Any]) -> None:
        conversation_id = _id(conversation["id"])
        self._conversations.pop(conversation_id, None)
        self._conversations = {conversation_id: conversation, **self._conversations}

    def apply(self, event: str, payload: dict[str, Any]) -> bool:
        if event == Event.NEW_GROUP:
            conversation = payload.get("conversation") or {}
            if not conversation or not self._is_member(conversation):
                return False
            if _id(conversation["id"]) in self._conversations:
                return False
            self._put_first(dict(conversation))
            return True
        if event == Event.MEMBER_UPDATE:
            return self._on_member_update(payload)
        if event == Event.NEW_MESSAGE:
            return self._on_new_message(payload)
        return False

    def _on_member_update(self, payload: dict[str, Any]) -> bool:
        conversation_id = _id(payload.get("conversation_id"))
        user_id = _id(payload.get("user_id"))
        action = payload.get("action")

        if user_id == self.viewer_id:
            if action == MemberAction.REMOVED:
                return self._conversations.pop(conversation_id, None) is not None
            if action == MemberAction.ADDED and conversation_id not in self._conversations:
                conversation = payload.get("conversation")
                if conversation:
                    self._put_first(dict(conversation))
                    return True
            return False

        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            return False
        participants = conversation.setdefault("participants", [])
        present = any(_id((p.get("user") or {}).get("id")) == user_id for p in participants)
        if action == MemberAction.ADDED and not present:
            participants.append(
                {"user": payload.get("user") or {"id": payload.get("user_id")}}
            )
            return True
        if action == MemberAction.REMOVED and present:
            conversation["participants"] = [
                p for p in participants if _id((p.get("user") or {}).get("id")) != user_id
            ]
            return True
        return False

    def _on_new_message(self, payload: dict[str, Any]) -> bool:
        message = payload.get("message") or {}
        if message.get("is_thread_reply"):
            return False
        conversation = self._conversations.get(_id(payload.get("conversation_id")))
        if conversation is None:
            return False
        conversation["latest_message"] = {
            "id": message.get("id"),
            "body": message.get("body"),
            "image": message.get("image"),
            "sender_name": (message.get("sender") or {}).get("name"),
            "created_at": message.get("created_at"),
        }
        conversation["updated_at"] = message.get("created_at")
        if not _same_user(message.get("sender_id"), self.viewer_id):
            conversation["has_unread"] = True
        self._put_first(conversation)
        return True

    def mark_read(self, conversation_id: Any) -> None:
        conversation = self.get(conversation_id)
        if conversation is not None:
            conversation["has_unread"] = False


# =============================================================================
# Session
# =============================================================================


class ChatSession:
    """
    Per-session state holder.

    Owns the active conversation id and the sidebar flag (explicit getters
    and setters, no module-level state), plus the subscriptions that feed
    the reconciliation states.

    Subscriptions:
        Global (start() to stop()): group_updates, online_users
        Per conversation (while active): chat_messages, thread_updates,
            message_reactions scoped to the conversation
        Per thread (while open): thread_<parent_id>

    Args:
        bus: Subscriber side of the broadcast bus
        viewer_id: The signed-in user's id
        load_messages: Optional callable(conversation_id) -> list of message
            dicts, used to load the snapshot when a conversation becomes active
        load_thread: Optional callable(parent_id) -> thread dict
    """

    def __init__(
        self,
        bus: EventSubscriber,
        viewer_id: Any,
        load_messages: Callable[[Any], list[dict[str, Any]]] | None = None,
        load_thread: Callable[[Any], dict[str, Any]] | None = None,
    ):
        self.bus = bus
        self.viewer_id = viewer_id
        self.load_messages = load_messages
        self.load_thread = load_thread

        self.directory = DirectoryState(viewer_id)
        self.presence = PresenceRoster()
        self.conversation: ConversationState | None = None
        self.thread: ThreadState | None = None

        self._active_conversation_id: str | None = None
        self._sidebar_open = True

        self._global_subscriptions: list[Unsubscribe] = []
        self._conversation_subscriptions: list[Unsubscribe] = []
        self._thread_subscriptions: list[Unsubscribe] = []

    # -------------------------------------------------------------------------
    # Session state accessors
    # -------------------------------------------------------------------------

    def get_active_conversation_id(self) -> str | None:
        return self._active_conversation_id

    def set_active_conversation_id(
        self,
        conversation_id: Any,
        snapshot: list[dict[str, Any]] | None = None,
    ) -> None:
        """
        Switch the active conversation.

        Leaving unsubscribes the previous conversation's topics (and any
        open thread) before the new conversation is subscribed. None just
        leaves.
        """
        conversation_id = _id(conversation_id)
        if conversation_id == self._active_conversation_id and snapshot is None:
            return

        self._leave_conversation()
        self._active_conversation_id = conversation_id
        if conversation_id is not None:
            self._enter_conversation(conversation_id, snapshot)

    def is_sidebar_open(self) -> bool:
        return self._sidebar_open

    def set_sidebar_open(self, is_open: bool) -> None:
        self._sidebar_open = bool(is_open)

    def toggle_sidebar(self) -> bool:
        self._sidebar_open = not self._sidebar_open
        return self._sidebar_open

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Subscribe to the global topics. Idempotent."""
        if self._global_subscriptions:
            return
        for event in (Event.NEW_GROUP, Event.MEMBER_UPDATE):
            self._global_subscriptions.append(
                self.bus.subscribe(Topic.GROUP_UPDATES, event, self._directory_handler(event))
            )
        for event in (Event.SYNC, Event.JOIN, Event.LEAVE):
            self._global_subscriptions.append(
                self.bus.subscribe(Topic.ONLINE_USERS, event, self._presence_handler(event))
            )

    def stop(self) -> None:
        """Drop every subscription this session holds."""
        self._leave_conversation()
        self._active_conversation_id = None
        self._unsubscribe_all(self._global_subscriptions)

    def open_thread(self, parent_id: Any, snapshot: dict[str, Any] | None = None) -> ThreadState:
        """Subscribe to a thread of the active conversation."""
        if self._active_conversation_id is None:
            raise RuntimeError("Open a conversation before opening a thread")

        self.close_thread()
        self.thread = ThreadState(parent_id)
        self._thread_subscriptions.append(
            self.bus.subscribe(
                Topic.thread(self.thread.parent_id),
                Event.THREAD_MESSAGE,
                self._thread_handler(Event.THREAD_MESSAGE),
            )
        )
        if snapshot is None and self.load_thread is not None:
            snapshot = self.load_thread(parent_id)
        if snapshot is not None:
            self.thread.load_snapshot(snapshot)
        return self.thread

    def close_thread(self) -> None:
        self._unsubscribe_all(self._thread_subscriptions)
        self.thread = None

    def reload(self) -> None:
        """Re-fetch the active conversation's snapshot after a suspected gap."""
        if self.conversation is not None and self.load_messages is not None:
            self.conversation.load_snapshot(self.load_messages(self.conversation.conversation_id))

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _enter_conversation(
        self,
        conversation_id: str,
        snapshot: list[dict[str, Any]] | None,
    ) -> None:
        self.conversation = ConversationState(conversation_id)

        # Subscribe before loading: anything published after the fetch is
        # caught by the handlers, anything before it is in the snapshot.
        topics = (
            (Topic.CHAT_MESSAGES, (Event.NEW_MESSAGE,)),
            (Topic.THREAD_UPDATES, (Event.THREAD_UPDATE,)),
            (Topic.MESSAGE_REACTIONS, (Event.NEW_REACTION, Event.REMOVE_REACTION)),
        )
        for topic, events in topics:
            for event in events:
                self._conversation_subscriptions.append(
                    self.bus.subscribe(
                        topic,
                        event,
                        self._conversation_handler(event),
                        scope=conversation_id,
                    )
                )

        if snapshot is None and self.load_messages is not None:
            snapshot = self.load_messages(conversation_id)
        if snapshot is not None:
            self.conversation.load_snapshot(snapshot)
        self.directory.mark_read(conversation_id)

    def _leave_conversation(self) -> None:
        self.close_thread()
        self._unsubscribe_all(self._conversation_subscriptions)
        self.conversation = None

    @staticmethod
    def _unsubscribe_all(subscriptions: list[Unsubscribe]) -> None:
        while subscriptions:
            subscriptions.pop()()

    def _conversation_handler(self, event: str) -> Callable[[dict[str, Any]], None]:
        def handle(payload: dict[str, Any]) -> None:
            if self.conversation is not None:
                self.conversation.apply(event, payload)
            if self.thread is not None:
                self.thread.apply(event, payload)
            if event == Event.NEW_MESSAGE:
                self.directory.apply(event, payload)
                self.directory.mark_read(payload.get("conversation_id"))

        return handle

    def _thread_handler(self, event: str) -> Callable[[dict[str, Any]], None]:
        def handle(payload: dict[str, Any]) -> None:
            if self.thread is not None:
                self.thread.apply(event, payload)

        return handle

    def _directory_handler(self, event: str) -> Callable[[dict[str, Any]], None]:
        def handle(payload: dict[str, Any]) -> None:
            changed = self.directory.apply(event, payload)
            # Removed from the group that is open: close it
            if (
                changed
                and event == Event.MEMBER_UPDATE
                and payload.get("action") == MemberAction.REMOVED
                and _same_user(payload.get("user_id"), self.viewer_id)
                and _id(payload.get("conversation_id")) == self._active_conversation_id
            ):
                self.set_active_conversation_id(None)

        return handle

    def _presence_handler(self, event: str) -> Callable[[dict[str, Any]], None]:
        def handle(payload: dict[str, Any]) -> None:
            self.presence.apply(event, payload)

        return handle
