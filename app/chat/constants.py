"""
Constants and configuration for the chat realtime core.

This module centralizes:
- Message, reaction and presence limits
- Broadcast topic and event names shared by the server (chat.broadcast,
  chat.consumers) and the client-side reconciliation layer
- Machine-readable error codes returned in ServiceResult failures

Import example:
    from chat.constants import MESSAGE_CONFIG, Topic, Event, ErrorCode
"""

from typing import Final


# =============================================================================
# Message Configuration
# =============================================================================


class MESSAGE_CONFIG:
    """Configuration for message operations."""

    # Content limits (applied after stripping whitespace)
    MAX_BODY_LENGTH: Final[int] = 10000
    MIN_BODY_LENGTH: Final[int] = 1

    MAX_IMAGE_REFERENCE_LENGTH: Final[int] = 500

    # Group conversations
    MAX_GROUP_NAME_LENGTH: Final[int] = 255


# =============================================================================
# Reaction Configuration
# =============================================================================


class REACTION_CONFIG:
    """Configuration for message reactions."""

    # Max characters for a single emoji (ZWJ sequences run past 10 code points)
    MAX_EMOJI_LENGTH: Final[int] = 32

    # Common quick reactions for UI hints (suggestions only, not restrictions)
    QUICK_REACTIONS: Final[tuple] = ("👍", "❤️", "😂", "😮", "😢", "🎉")


# =============================================================================
# Presence Configuration
# =============================================================================


class PRESENCE_CONFIG:
    """
    Configuration for presence tracking.

    A connection that has not sent a heartbeat for PRESENCE_TTL_SECONDS is
    stale. The sweep task evicts stale connections every
    SWEEP_INTERVAL_SECONDS, so a crashed client shows as offline after at
    most TTL + interval.
    """

    PRESENCE_TTL_SECONDS: Final[int] = 60

    # How often clients should send heartbeat
    HEARTBEAT_INTERVAL_SECONDS: Final[int] = 30

    SWEEP_INTERVAL_SECONDS: Final[int] = 30

    # Cache key prefixes
    KEY_PREFIX_USER_PRESENCE: Final[str] = "presence:user"
    KEY_ROSTER: Final[str] = "presence:roster"


# =============================================================================
# Broadcast Topics & Events
# =============================================================================


class Topic:
    """
    Broadcast topic names.

    Conversation-scoped topics are fanned out per conversation (the scope
    is the conversation id). THREAD_PREFIX topics are per parent message.
    GROUP_UPDATES and ONLINE_USERS are global.
    """

    CHAT_MESSAGES: Final[str] = "chat_messages"
    THREAD_UPDATES: Final[str] = "thread_updates"
    MESSAGE_REACTIONS: Final[str] = "message_reactions"
    GROUP_UPDATES: Final[str] = "group_updates"
    ONLINE_USERS: Final[str] = "online_users"

    THREAD_PREFIX: Final[str] = "thread_"

    CONVERSATION_SCOPED: Final[frozenset] = frozenset(
        {CHAT_MESSAGES, THREAD_UPDATES, MESSAGE_REACTIONS}
    )
    GLOBAL: Final[frozenset] = frozenset({GROUP_UPDATES, ONLINE_USERS})

    @classmethod
    def thread(cls, parent_id) -> str:
        """Per-thread topic name, e.g. ``thread_<parent message id>``."""
        return f"{cls.THREAD_PREFIX}{parent_id}"

    @classmethod
    def is_thread(cls, topic: str) -> bool:
        return topic.startswith(cls.THREAD_PREFIX)


class Event:
    """Event names carried on the topics above."""

    NEW_MESSAGE: Final[str] = "new_message"
    THREAD_MESSAGE: Final[str] = "thread_message"
    THREAD_UPDATE: Final[str] = "thread_update"
    NEW_REACTION: Final[str] = "new_reaction"
    REMOVE_REACTION: Final[str] = "remove_reaction"
    NEW_GROUP: Final[str] = "new_group"
    MEMBER_UPDATE: Final[str] = "member_update"

    # Presence
    SYNC: Final[str] = "sync"
    JOIN: Final[str] = "join"
    LEAVE: Final[str] = "leave"


class MemberAction:
    """Values of ``action`` in member_update payloads."""

    ADDED: Final[str] = "added"
    REMOVED: Final[str] = "removed"


# =============================================================================
# Error Codes
# =============================================================================


class ErrorCode:
    """Machine-readable error codes for chat failures."""

    # Validation
    EMPTY_CONTENT: Final[str] = "EMPTY_CONTENT"
    CONTENT_TOO_LONG: Final[str] = "CONTENT_TOO_LONG"
    CONVERSATION_REQUIRED: Final[str] = "CONVERSATION_REQUIRED"
    CONVERSATION_MISMATCH: Final[str] = "CONVERSATION_MISMATCH"
    NAME_REQUIRED: Final[str] = "NAME_REQUIRED"
    MEMBERS_REQUIRED: Final[str] = "MEMBERS_REQUIRED"
    SAME_USER: Final[str] = "SAME_USER"
    INVALID_EMOJI: Final[str] = "INVALID_EMOJI"

    # Forbidden
    NOT_PARTICIPANT: Final[str] = "NOT_PARTICIPANT"
    NOT_A_GROUP: Final[str] = "NOT_A_GROUP"

    # Not found
    CONVERSATION_NOT_FOUND: Final[str] = "CONVERSATION_NOT_FOUND"
    MESSAGE_NOT_FOUND: Final[str] = "MESSAGE_NOT_FOUND"
    USER_NOT_FOUND: Final[str] = "USER_NOT_FOUND"
    PARTICIPANT_NOT_FOUND: Final[str] = "PARTICIPANT_NOT_FOUND"
    REACTION_NOT_FOUND: Final[str] = "REACTION_NOT_FOUND"

    # Conflict
    ALREADY_MEMBER: Final[str] = "ALREADY_MEMBER"
    DUPLICATE_REACTION: Final[str] = "DUPLICATE_REACTION"
