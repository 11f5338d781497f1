"""
Chat system service layer.

This module provides the business logic of the realtime core: every write
is persisted first and announced on the broadcast bus once its transaction
commits.

Services:
    ConversationService: Directory (private/group conversations, members)
    MessageService: Message pipeline (send, snapshot, read state)
    ThreadService: Single-level thread replies and reply counts
    ReactionService: Emoji reactions on messages
    PresenceService: Cache-backed online roster

Design Principles:
    - Services are stateless (use class methods)
    - Expected failures return ServiceResult built from core.exceptions
    - Database connectivity errors become TransientServiceError
    - Broadcasts go through chat.broadcast.publish_on_commit, so a rolled
      back write is never announced and a failed publish never undoes a write
    - Shared counters (unread flags, reply counts) are recomputed from rows
      instead of incremented

Usage:
    from chat.services import ConversationService, MessageService

    result = ConversationService.get_or_create_private(user, other_user)
    if result.success:
        conversation = result.data

    result = MessageService.send_message(conversation.id, user, "Hello!")
    if not result:
        return Response(result.to_response(), status=result.http_status)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from datetime import timezone as dt_timezone
from typing import TYPE_CHECKING

from django.contrib.auth import get_user_model
from django.db import IntegrityError, InterfaceError, OperationalError
from django.db.models import Count, Exists, OuterRef, Prefetch, Q
from django.utils import timezone

from core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from core.services import BaseService, ServiceResult

from chat.broadcast import publish_on_commit
from chat.constants import (
    MESSAGE_CONFIG,
    PRESENCE_CONFIG,
    REACTION_CONFIG,
    ErrorCode,
    Event,
    MemberAction,
    Topic,
)
from chat.models import (
    Conversation,
    DirectConversationPair,
    Message,
    Participant,
    Reaction,
)
from chat.serializers import (
    ConversationSerializer,
    MessageSerializer,
    ReactionSerializer,
)

if TYPE_CHECKING:
    from typing import Any

    from django.db.models import QuerySet

    from authentication.models import User
    from core.protocols import CacheBackend

logger = logging.getLogger(__name__)


def _not_participant() -> ServiceResult:
    return ServiceResult.from_error(
        PermissionDeniedError(
            "You are not a participant in this conversation",
            error_code=ErrorCode.NOT_PARTICIPANT,
        )
    )


def _is_participant(conversation_id, user_id) -> bool:
    return Participant.objects.filter(
        conversation_id=conversation_id,
        user_id=user_id,
    ).exists()


def _validate_body(body: str | None) -> ServiceResult | None:
    """Return a failure for blank or oversized text, None when it is fine."""
    stripped = body.strip() if body else ""
    if not stripped:
        return ServiceResult.from_error(
            ValidationError("Message content cannot be empty", error_code=ErrorCode.EMPTY_CONTENT)
        )
    if len(stripped) > MESSAGE_CONFIG.MAX_BODY_LENGTH:
        return ServiceResult.from_error(
            ValidationError(
                f"Message content exceeds {MESSAGE_CONFIG.MAX_BODY_LENGTH} characters",
                error_code=ErrorCode.CONTENT_TOO_LONG,
            )
        )
    return None


def _message_queryset() -> QuerySet[Message]:
    """Messages hydrated for serialization: sender, reactions and reply count."""
    return (
        Message.objects.select_related("sender")
        .prefetch_related(
            Prefetch("reactions", queryset=Reaction.objects.select_related("user"))
        )
        .annotate(reply_count=Count("replies", filter=Q(replies__is_thread_reply=True)))
    )


class ConversationService(BaseService):
    """
    Conversation directory.

    Methods:
        get_or_create_private: One private conversation per user pair
        create_group: Named group with the creator and members
        list_conversations: A user's directory, most recent first
        get_conversation: Detail read for a participant
        add_member: Add a user to a group
        remove_member: Remove a user from a group
    """

    @classmethod
    def _directory_queryset(cls, user: User) -> QuerySet[Conversation]:
        latest = (
            Message.objects.filter(is_thread_reply=False)
            .select_related("sender")
            .order_by("-created_at")
        )
        return (
            Conversation.objects.filter(participants__user=user)
            .annotate(
                has_unread=Exists(
                    Participant.objects.filter(
                        conversation=OuterRef("pk"),
                        user=user,
                        has_unread_messages=True,
                    )
                )
            )
            .prefetch_related(
                Prefetch(
                    "participants",
                    queryset=Participant.objects.select_related("user"),
                ),
                # Sliced prefetch (Django 4.2+): one latest message per conversation
                Prefetch("messages", queryset=latest[:1], to_attr="latest_messages"),
            )
            .order_by("-updated_at")
        )

    @classmethod
    def _find_private(cls, lower_id: int, higher_id: int) -> Conversation | None:
        pair = (
            DirectConversationPair.objects.select_related("conversation")
            .filter(user_lower_id=lower_id, user_higher_id=higher_id)
            .first()
        )
        return pair.conversation if pair else None

    @classmethod
    def get_or_create_private(cls, current_user: User, target_user) -> ServiceResult[Conversation]:
        """
        Get or create the private conversation between two users.

        Args:
            current_user: User opening the conversation
            target_user: Other user (instance or primary key)

        Returns:
            ServiceResult with the Conversation (existing or new)

        Error codes:
            SAME_USER: Cannot open a conversation with yourself
            USER_NOT_FOUND: Target user does not exist
        """
        target_id = getattr(target_user, "pk", target_user)
        if target_id == current_user.pk:
            return ServiceResult.from_error(
                ValidationError(
                    "Cannot create a conversation with yourself",
                    error_code=ErrorCode.SAME_USER,
                )
            )

        if not get_user_model().objects.filter(pk=target_id, is_active=True).exists():
            return ServiceResult.from_error(
                NotFoundError("User not found", error_code=ErrorCode.USER_NOT_FOUND)
            )

        lower_id, higher_id = DirectConversationPair.canonical(current_user.pk, target_id)
        existing = cls._find_private(lower_id, higher_id)
        if existing is not None:
            return ServiceResult.success(existing)

        try:
            with cls.atomic():
                conversation = Conversation.objects.create(is_group=False)
                DirectConversationPair.objects.create(
                    conversation=conversation,
                    user_lower_id=lower_id,
                    user_higher_id=higher_id,
                )
                Participant.objects.bulk_create(
                    [
                        Participant(conversation=conversation, user_id=lower_id),
                        Participant(conversation=conversation, user_id=higher_id),
                    ]
                )
        except IntegrityError:
            # The other side created the pair first
            existing = cls._find_private(lower_id, higher_id)
            if existing is None:
                raise
            cls.get_logger().info(
                f"Private conversation race for users {lower_id}/{higher_id}, "
                f"reusing {existing.id}"
            )
            return ServiceResult.success(existing)
        except (OperationalError, InterfaceError) as e:
            return cls.handle_exception(e, "create private conversation")

        cls.get_logger().info(
            f"Created private conversation {conversation.id} "
            f"between users {lower_id} and {higher_id}"
        )
        return ServiceResult.success(conversation)

    @classmethod
    def create_group(
        cls,
        current_user: User,
        name: str,
        member_ids: list[int],
    ) -> ServiceResult[Conversation]:
        """
        Create a group conversation.

        The creator is always a member. Duplicate ids and the creator's own
        id are dropped from ``member_ids``.

        Error codes:
            NAME_REQUIRED: Group name is blank
            MEMBERS_REQUIRED: No member besides the creator
            USER_NOT_FOUND: A member id does not exist
        """
        name = (name or "").strip()
        if not name:
            return ServiceResult.from_error(
                ValidationError("Group name is required", error_code=ErrorCode.NAME_REQUIRED)
            )

        unique_ids = list(dict.fromkeys(uid for uid in member_ids or [] if uid != current_user.pk))
        if not unique_ids:
            return ServiceResult.from_error(
                ValidationError(
                    "A group needs at least one other member",
                    error_code=ErrorCode.MEMBERS_REQUIRED,
                )
            )

        found = set(
            get_user_model()
            .objects.filter(pk__in=unique_ids, is_active=True)
            .values_list("pk", flat=True)
        )
        missing = [uid for uid in unique_ids if uid not in found]
        if missing:
            return ServiceResult.from_error(
                NotFoundError(
                    "One or more users were not found",
                    error_code=ErrorCode.USER_NOT_FOUND,
                    details={"user_ids": missing},
                )
            )

        try:
            with cls.atomic():
                conversation = Conversation.objects.create(name=name, is_group=True)
                Participant.objects.bulk_create(
                    [
                        Participant(conversation=conversation, user_id=uid)
                        for uid in [current_user.pk, *unique_ids]
                    ]
                )
                conversation = cls._directory_queryset(current_user).get(pk=conversation.pk)
                publish_on_commit(
                    Topic.GROUP_UPDATES,
                    Event.NEW_GROUP,
                    {
                        "conversation": ConversationSerializer(
                            conversation, context={"viewer": current_user}
                        ).data
                    },
                )
        except (OperationalError, InterfaceError) as e:
            return cls.handle_exception(e, "create group")

        cls.get_logger().info(
            f"User {current_user.pk} created group {conversation.id} "
            f"with {len(unique_ids) + 1} members"
        )
        return ServiceResult.success(conversation)

    @classmethod
    def list_conversations(cls, user: User) -> ServiceResult[list[Conversation]]:
        """Every conversation the user is in, most recently active first."""
        return ServiceResult.success(list(cls._directory_queryset(user)))

    @classmethod
    def get_conversation(cls, conversation_id, user: User) -> ServiceResult[Conversation]:
        if not Conversation.objects.filter(pk=conversation_id).exists():
            return ServiceResult.from_error(
                NotFoundError("Conversation not found", error_code=ErrorCode.CONVERSATION_NOT_FOUND)
            )
        conversation = cls._directory_queryset(user).filter(pk=conversation_id).first()
        if conversation is None:
            return _not_participant()
        return ServiceResult.success(conversation)

    @classmethod
    def _get_group_for_actor(cls, conversation_id, actor: User) -> ServiceResult[Conversation]:
        """Shared checks for member changes: exists, is a group, actor is a member."""
        conversation = Conversation.objects.filter(pk=conversation_id).first()
        if conversation is None:
            return ServiceResult.from_error(
                NotFoundError("Conversation not found", error_code=ErrorCode.CONVERSATION_NOT_FOUND)
            )
        if not conversation.is_group:
            return ServiceResult.from_error(
                PermissionDeniedError(
                    "Members can only be changed in group conversations",
                    error_code=ErrorCode.NOT_A_GROUP,
                )
            )
        if not _is_participant(conversation.pk, actor.pk):
            return _not_participant()
        return ServiceResult.success(conversation)

    @classmethod
    def _publish_member_update(
        cls,
        conversation: Conversation,
        action: str,
        user_id: int,
        viewer: User,
    ) -> None:
        # Not scoped to the viewer: an actor who just left is no longer a participant
        conversation = Conversation.objects.prefetch_related(
            Prefetch("participants", queryset=Participant.objects.select_related("user"))
        ).get(pk=conversation.pk)
        publish_on_commit(
            Topic.GROUP_UPDATES,
            Event.MEMBER_UPDATE,
            {
                "conversation_id": conversation.id,
                "action": action,
                "user_id": user_id,
                "conversation": ConversationSerializer(
                    conversation, context={"viewer": viewer}
                ).data,
            },
        )

    @classmethod
    def add_member(cls, conversation_id, actor: User, user_id: int) -> ServiceResult[Participant]:
        """
        Add a user to a group conversation.

        Error codes:
            CONVERSATION_NOT_FOUND, NOT_A_GROUP, NOT_PARTICIPANT,
            USER_NOT_FOUND, ALREADY_MEMBER
        """
        result = cls._get_group_for_actor(conversation_id, actor)
        if not result:
            return result
        conversation = result.data

        if not get_user_model().objects.filter(pk=user_id, is_active=True).exists():
            return ServiceResult.from_error(
                NotFoundError("User not found", error_code=ErrorCode.USER_NOT_FOUND)
            )
        if _is_participant(conversation.pk, user_id):
            return ServiceResult.from_error(
                ConflictError("User is already a member", error_code=ErrorCode.ALREADY_MEMBER)
            )

        try:
            with cls.atomic():
                participant = Participant.objects.create(conversation=conversation, user_id=user_id)
                cls._publish_member_update(conversation, MemberAction.ADDED, user_id, actor)
        except IntegrityError:
            return ServiceResult.from_error(
                ConflictError("User is already a member", error_code=ErrorCode.ALREADY_MEMBER)
            )
        except (OperationalError, InterfaceError) as e:
            return cls.handle_exception(e, "add member")

        cls.get_logger().info(
            f"User {actor.pk} added user {user_id} to group {conversation.id}"
        )
        return ServiceResult.success(participant)

    @classmethod
    def remove_member(cls, conversation_id, actor: User, user_id: int) -> ServiceResult[None]:
        """
        Remove a user from a group conversation. Members may remove
        themselves (leave).

        Error codes:
            CONVERSATION_NOT_FOUND, NOT_A_GROUP, NOT_PARTICIPANT,
            PARTICIPANT_NOT_FOUND
        """
        result = cls._get_group_for_actor(conversation_id, actor)
        if not result:
            return result
        conversation = result.data

        try:
            with cls.atomic():
                deleted, _ = Participant.objects.filter(
                    conversation=conversation, user_id=user_id
                ).delete()
                if not deleted:
                    return ServiceResult.from_error(
                        NotFoundError(
                            "User is not a member of this group",
                            error_code=ErrorCode.PARTICIPANT_NOT_FOUND,
                        )
                    )
                cls._publish_member_update(conversation, MemberAction.REMOVED, user_id, actor)
        except (OperationalError, InterfaceError) as e:
            return cls.handle_exception(e, "remove member")

        cls.get_logger().info(
            f"User {actor.pk} removed user {user_id} from group {conversation.id}"
        )
        return ServiceResult.success(None)


class MessageService(BaseService):
    """
    Message pipeline.

    Methods:
        send_message: Validate, authorize, persist, then fan out
        get_messages: Top-level snapshot of a conversation (marks as read)
        mark_as_read: Clear the unread flag only
    """

    @classmethod
    def send_message(
        cls,
        conversation_id,
        sender: User,
        body: str | None,
        image: str | None = None,
    ) -> ServiceResult[Message]:
        """
        Send a top-level message.

        Stages:
            1. Validate: non-blank body within the length limit
            2. Authorize: sender participates in the conversation
            3. Persist (one transaction): the message, the unread flag of
               every other participant and the conversation's updated_at
            4. Fan out after commit: new_message on the conversation's
               chat_messages topic

        Error codes:
            CONVERSATION_REQUIRED, EMPTY_CONTENT, CONTENT_TOO_LONG,
            CONVERSATION_NOT_FOUND, NOT_PARTICIPANT
        """
        validation = cls.validate_required(conversation_id=conversation_id)
        if validation is not None:
            validation.error_code = ErrorCode.CONVERSATION_REQUIRED
            return validation
        invalid = _validate_body(body)
        if invalid is not None:
            return invalid

        if not Conversation.objects.filter(pk=conversation_id).exists():
            return ServiceResult.from_error(
                NotFoundError("Conversation not found", error_code=ErrorCode.CONVERSATION_NOT_FOUND)
            )
        if not _is_participant(conversation_id, sender.pk):
            return _not_participant()

        now = timezone.now()
        try:
            with cls.atomic():
                message = Message.objects.create(
                    conversation_id=conversation_id,
                    sender=sender,
                    body=body.strip(),
                    image=image or "",
                )
                Participant.objects.filter(conversation_id=conversation_id).exclude(
                    user=sender
                ).update(has_unread_messages=True, updated_at=now)
                Conversation.objects.filter(pk=conversation_id).update(updated_at=now)

                message = _message_queryset().get(pk=message.pk)
                publish_on_commit(
                    Topic.CHAT_MESSAGES,
                    Event.NEW_MESSAGE,
                    {
                        "conversation_id": conversation_id,
                        "message": MessageSerializer(message).data,
                    },
                    scope=conversation_id,
                )
        except (OperationalError, InterfaceError) as e:
            return cls.handle_exception(e, "send message")

        cls.get_logger().debug(
            f"User {sender.pk} sent message {message.id} to conversation {conversation_id}"
        )
        return ServiceResult.success(message)

    @classmethod
    def get_messages(cls, conversation_id, user: User) -> ServiceResult[list[Message]]:
        """
        Fetch the conversation snapshot.

        Returns every top-level message, oldest first, with reply counts and
        reactions. Side effects: each message is marked seen by ``user``
        and the user's unread flag is cleared.
        """
        if not Conversation.objects.filter(pk=conversation_id).exists():
            return ServiceResult.from_error(
                NotFoundError("Conversation not found", error_code=ErrorCode.CONVERSATION_NOT_FOUND)
            )
        if not _is_participant(conversation_id, user.pk):
            return _not_participant()

        messages = list(
            _message_queryset()
            .filter(conversation_id=conversation_id, is_thread_reply=False)
            .order_by("created_at", "id")
        )

        try:
            with cls.atomic():
                SeenBy = Message.seen_by.through
                SeenBy.objects.bulk_create(
                    [SeenBy(message_id=m.id, user_id=user.pk) for m in messages],
                    ignore_conflicts=True,
                )
                Participant.objects.filter(
                    conversation_id=conversation_id, user=user
                ).update(has_unread_messages=False)
        except (OperationalError, InterfaceError) as e:
            return cls.handle_exception(e, "mark messages seen")

        return ServiceResult.success(messages)

    @classmethod
    def mark_as_read(cls, conversation_id, user: User) -> ServiceResult[None]:
        """Clear the user's unread flag without fetching messages."""
        updated = Participant.objects.filter(
            conversation_id=conversation_id, user=user
        ).update(has_unread_messages=False)
        if not updated:
            if not Conversation.objects.filter(pk=conversation_id).exists():
                return ServiceResult.from_error(
                    NotFoundError(
                        "Conversation not found", error_code=ErrorCode.CONVERSATION_NOT_FOUND
                    )
                )
            return _not_participant()
        return ServiceResult.success(None)


@dataclass
class ThreadSnapshot:
    """Parent message with its ordered replies."""

    parent: Message
    replies: list[Message] = field(default_factory=list)
    reply_count: int = 0


class ThreadService(BaseService):
    """
    Single-level threads.

    A reply to a reply is attached to the top-level message, so every
    thread is one parent plus a flat list of replies. Replies never touch
    unread flags or the conversation's updated_at.
    """

    @classmethod
    def get_reply_count(cls, parent_id) -> int:
        return Message.objects.filter(parent_id=parent_id, is_thread_reply=True).count()

    @classmethod
    def post_reply(
        cls,
        parent_id,
        body: str | None,
        conversation_id,
        sender: User,
    ) -> ServiceResult[Message]:
        """
        Reply in a thread.

        Publishes thread_message (the reply) on thread_<parent_id> and
        thread_update (recounted reply_count) on the conversation's
        thread_updates topic.

        Error codes:
            MESSAGE_NOT_FOUND, EMPTY_CONTENT, CONTENT_TOO_LONG,
            CONVERSATION_MISMATCH, NOT_PARTICIPANT
        """
        parent = Message.objects.select_related("parent").filter(pk=parent_id).first()
        if parent is None:
            return ServiceResult.from_error(
                NotFoundError("Parent message not found", error_code=ErrorCode.MESSAGE_NOT_FOUND)
            )
        if parent.is_thread_reply:
            parent = parent.parent

        invalid = _validate_body(body)
        if invalid is not None:
            return invalid
        if str(parent.conversation_id) != str(conversation_id):
            return ServiceResult.from_error(
                ValidationError(
                    "Parent message belongs to another conversation",
                    error_code=ErrorCode.CONVERSATION_MISMATCH,
                )
            )
        if not _is_participant(parent.conversation_id, sender.pk):
            return _not_participant()

        try:
            with cls.atomic():
                reply = Message.objects.create(
                    conversation_id=parent.conversation_id,
                    sender=sender,
                    body=body.strip(),
                    parent=parent,
                    is_thread_reply=True,
                )
                reply_count = cls.get_reply_count(parent.pk)
                reply = _message_queryset().get(pk=reply.pk)

                publish_on_commit(
                    Topic.thread(parent.pk),
                    Event.THREAD_MESSAGE,
                    {"parent_id": parent.pk, "message": MessageSerializer(reply).data},
                )
                publish_on_commit(
                    Topic.THREAD_UPDATES,
                    Event.THREAD_UPDATE,
                    {
                        "message_id": parent.pk,
                        "reply_count": reply_count,
                        "conversation_id": parent.conversation_id,
                    },
                    scope=parent.conversation_id,
                )
        except (OperationalError, InterfaceError) as e:
            return cls.handle_exception(e, "post thread reply")

        cls.get_logger().debug(
            f"User {sender.pk} replied {reply.id} in thread {parent.pk} ({reply_count} replies)"
        )
        return ServiceResult.success(reply)

    @classmethod
    def get_thread(cls, parent_id, user: User) -> ServiceResult[ThreadSnapshot]:
        parent = _message_queryset().filter(pk=parent_id).first()
        if parent is None:
            return ServiceResult.from_error(
                NotFoundError("Message not found", error_code=ErrorCode.MESSAGE_NOT_FOUND)
            )
        if parent.is_thread_reply:
            parent = _message_queryset().get(pk=parent.parent_id)
        if not _is_participant(parent.conversation_id, user.pk):
            return _not_participant()

        replies = list(
            _message_queryset()
            .filter(parent_id=parent.pk, is_thread_reply=True)
            .order_by("created_at", "id")
        )
        return ServiceResult.success(
            ThreadSnapshot(parent=parent, replies=replies, reply_count=len(replies))
        )


class ReactionService(BaseService):
    """
    Emoji reactions.

    Each (message, user, emoji) exists at most once. Adding a duplicate is
    a conflict rather than a silent no-op, so two clients racing on the
    same reaction learn which one won.
    """

    @classmethod
    def _validate_emoji(cls, emoji: str | None) -> ServiceResult | None:
        if not emoji or not emoji.strip() or len(emoji) > REACTION_CONFIG.MAX_EMOJI_LENGTH:
            return ServiceResult.from_error(
                ValidationError("Invalid emoji", error_code=ErrorCode.INVALID_EMOJI)
            )
        return None

    @classmethod
    def _get_message_for_user(cls, message_id, user: User) -> ServiceResult[Message]:
        message = Message.objects.filter(pk=message_id).first()
        if message is None:
            return ServiceResult.from_error(
                NotFoundError("Message not found", error_code=ErrorCode.MESSAGE_NOT_FOUND)
            )
        if not _is_participant(message.conversation_id, user.pk):
            return _not_participant()
        return ServiceResult.success(message)

    @classmethod
    def add_reaction(cls, message_id, user: User, emoji: str) -> ServiceResult[Reaction]:
        """
        Add a reaction.

        Error codes:
            INVALID_EMOJI, MESSAGE_NOT_FOUND, NOT_PARTICIPANT, DUPLICATE_REACTION
        """
        invalid = cls._validate_emoji(emoji)
        if invalid is not None:
            return invalid
        result = cls._get_message_for_user(message_id, user)
        if not result:
            return result
        message = result.data

        duplicate = ServiceResult.from_error(
            ConflictError("You already reacted with this emoji", error_code=ErrorCode.DUPLICATE_REACTION)
        )
        if Reaction.objects.filter(message=message, user=user, emoji=emoji).exists():
            return duplicate

        try:
            with cls.atomic():
                reaction = Reaction.objects.create(message=message, user=user, emoji=emoji)
                publish_on_commit(
                    Topic.MESSAGE_REACTIONS,
                    Event.NEW_REACTION,
                    {
                        "message_id": message.pk,
                        "conversation_id": message.conversation_id,
                        "reaction": ReactionSerializer(reaction).data,
                    },
                    scope=message.conversation_id,
                )
        except IntegrityError:
            return duplicate
        except (OperationalError, InterfaceError) as e:
            return cls.handle_exception(e, "add reaction")

        cls.get_logger().debug(f"User {user.pk} reacted {emoji} to message {message.pk}")
        return ServiceResult.success(reaction)

    @classmethod
    def remove_reaction(cls, message_id, user: User, emoji: str) -> ServiceResult[None]:
        """
        Remove the user's own reaction.

        Error codes:
            MESSAGE_NOT_FOUND, REACTION_NOT_FOUND
        """
        message = Message.objects.filter(pk=message_id).first()
        if message is None:
            return ServiceResult.from_error(
                NotFoundError("Message not found", error_code=ErrorCode.MESSAGE_NOT_FOUND)
            )

        try:
            with cls.atomic():
                deleted, _ = Reaction.objects.filter(
                    message=message, user=user, emoji=emoji
                ).delete()
                if not deleted:
                    return ServiceResult.from_error(
                        NotFoundError("Reaction not found", error_code=ErrorCode.REACTION_NOT_FOUND)
                    )
                publish_on_commit(
                    Topic.MESSAGE_REACTIONS,
                    Event.REMOVE_REACTION,
                    {
                        "message_id": message.pk,
                        "conversation_id": message.conversation_id,
                        "user_id": user.pk,
                        "emoji": emoji,
                    },
                    scope=message.conversation_id,
                )
        except (OperationalError, InterfaceError) as e:
            return cls.handle_exception(e, "remove reaction")

        cls.get_logger().debug(f"User {user.pk} removed {emoji} from message {message.pk}")
        return ServiceResult.success(None)

    @classmethod
    def toggle_reaction(cls, message_id, user: User, emoji: str) -> ServiceResult[dict]:
        """
        Remove the reaction if the user already placed it, add it otherwise.

        Returns:
            ServiceResult with {"action": "added"|"removed", "reaction": Reaction|None}
        """
        if Reaction.objects.filter(message_id=message_id, user=user, emoji=emoji).exists():
            result = cls.remove_reaction(message_id, user, emoji)
            if not result:
                return result
            return ServiceResult.success({"action": MemberAction.REMOVED, "reaction": None})

        result = cls.add_reaction(message_id, user, emoji)
        if not result:
            return result
        return ServiceResult.success({"action": MemberAction.ADDED, "reaction": result.data})

    @classmethod
    def get_reactions(cls, message_id, user: User) -> ServiceResult[list[Reaction]]:
        """Reactions on a message with their users, oldest first."""
        result = cls._get_message_for_user(message_id, user)
        if not result:
            return result
        reactions = list(
            Reaction.objects.filter(message_id=message_id)
            .select_related("user")
            .order_by("created_at", "id")
        )
        return ServiceResult.success(reactions)

    @classmethod
    def group_by_emoji(cls, reactions, viewer_id) -> list[dict[str, Any]]:
        """Group Reaction instances (or serialized dicts) for display."""
        from chat.reconciliation import group_by_emoji

        items = [
            r if isinstance(r, dict) else ReactionSerializer(r).data for r in reactions
        ]
        return group_by_emoji(items, viewer_id)


class PresenceService(BaseService):
    """
    Cache-backed presence tracking.

    Storage (Django cache, django-redis in production):
        presence:user:<id>  -> {connection_ref: last_seen_timestamp},
                               expires after PRESENCE_TTL_SECONDS
        presence:roster     -> list of user ids that may be online

    A user is online while at least one connection was refreshed within
    the TTL. Writes are last-writer-wins per key; a heartbeat re-asserts
    roster membership, so a lost roster update heals on the next beat.

    Design Decisions:
        - Never touches the database
        - Cache failures are logged and degrade to "appears offline"
        - join/leave are published only on the first/last connection of
          a user, so multiple tabs do not flicker the roster
    """

    @staticmethod
    def _get_cache() -> CacheBackend:
        """Get Django cache backend."""
        from django.core.cache import cache

        return cache

    @staticmethod
    def _user_key(user_id) -> str:
        return f"{PRESENCE_CONFIG.KEY_PREFIX_USER_PRESENCE}:{user_id}"

    @staticmethod
    def _now() -> float:
        return timezone.now().timestamp()

    @classmethod
    def _live(cls, connections: dict | None, now: float) -> dict[str, float]:
        cutoff = now - PRESENCE_CONFIG.PRESENCE_TTL_SECONDS
        return {ref: ts for ref, ts in (connections or {}).items() if ts >= cutoff}

    @classmethod
    def _get_roster(cls) -> list[int]:
        return list(cls._get_cache().get(PRESENCE_CONFIG.KEY_ROSTER) or [])

    @classmethod
    def _set_roster(cls, user_ids: list[int]) -> None:
        cls._get_cache().set(PRESENCE_CONFIG.KEY_ROSTER, user_ids, timeout=None)

    @classmethod
    def _announce(cls, event: str, user_id, now: float) -> None:
        publish_on_commit(
            Topic.ONLINE_USERS,
            event,
            {
                "user_id": user_id,
                "online_at": datetime.fromtimestamp(now, tz=dt_timezone.utc).isoformat(),
            },
        )

    @classmethod
    def _register(cls, user_id, connection_ref: str) -> bool:
        """Store the connection; return True when the user just came online."""
        cache = cls._get_cache()
        now = cls._now()
        key = cls._user_key(user_id)

        connections = cls._live(cache.get(key), now)
        was_online = bool(connections)
        connections[connection_ref] = now
        cache.set(key, connections, timeout=PRESENCE_CONFIG.PRESENCE_TTL_SECONDS)

        roster = cls._get_roster()
        if user_id not in roster:
            roster.append(user_id)
            cls._set_roster(roster)

        if not was_online:
            cls._announce(Event.JOIN, user_id, now)
        return not was_online

    @classmethod
    def connect(cls, user_id, connection_ref: str) -> ServiceResult[bool]:
        """Register a connection. Data is True when this made the user online."""
        try:
            came_online = cls._register(user_id, connection_ref)
        except Exception as e:
            logger.exception(f"Error registering presence for user {user_id}: {e}")
            return ServiceResult.failure("Failed to set presence", error_code="PRESENCE_ERROR")
        return ServiceResult.success(came_online)

    @classmethod
    def heartbeat(cls, user_id, connection_ref: str) -> ServiceResult[bool]:
        """Refresh a connection. Re-announces join if the user had expired."""
        try:
            came_online = cls._register(user_id, connection_ref)
        except Exception as e:
            logger.exception(f"Error refreshing presence for user {user_id}: {e}")
            return ServiceResult.failure("Failed to refresh presence", error_code="PRESENCE_ERROR")
        return ServiceResult.success(came_online)

    @classmethod
    def disconnect(cls, user_id, connection_ref: str) -> ServiceResult[bool]:
        """Drop a connection. Data is True when the user went offline."""
        try:
            cache = cls._get_cache()
            now = cls._now()
            key = cls._user_key(user_id)

            connections = cls._live(cache.get(key), now)
            connections.pop(connection_ref, None)
            if connections:
                cache.set(key, connections, timeout=PRESENCE_CONFIG.PRESENCE_TTL_SECONDS)
                return ServiceResult.success(False)

            cache.delete(key)
            roster = cls._get_roster()
            if user_id in roster:
                roster.remove(user_id)
                cls._set_roster(roster)
            cls._announce(Event.LEAVE, user_id, now)
        except Exception as e:
            logger.exception(f"Error clearing presence for user {user_id}: {e}")
            return ServiceResult.failure("Failed to clear presence", error_code="PRESENCE_ERROR")
        return ServiceResult.success(True)

    @classmethod
    def get_online_user_ids(cls) -> list[int]:
        """Ids of users with at least one live connection."""
        try:
            cache = cls._get_cache()
            roster = cls._get_roster()
            if not roster:
                return []
            now = cls._now()
            entries = cache.get_many([cls._user_key(uid) for uid in roster])
            return [uid for uid in roster if cls._live(entries.get(cls._user_key(uid)), now)]
        except Exception as e:
            logger.exception(f"Error reading presence roster: {e}")
            return []

    @classmethod
    def sweep_stale(cls) -> list[int]:
        """
        Evict connections older than the TTL.

        Publishes leave for every user left without a live connection and
        returns their ids.
        """
        cache = cls._get_cache()
        now = cls._now()
        evicted = []
        remaining = []

        for user_id in cls._get_roster():
            key = cls._user_key(user_id)
            stored = cache.get(key)
            connections = cls._live(stored, now)
            if connections:
                remaining.append(user_id)
                if len(connections) != len(stored):
                    cache.set(key, connections, timeout=PRESENCE_CONFIG.PRESENCE_TTL_SECONDS)
                continue
            cache.delete(key)
            evicted.append(user_id)
            cls._announce(Event.LEAVE, user_id, now)

        if evicted:
            cls._set_roster(remaining)
            cls.get_logger().info(f"Presence sweep evicted users {evicted}")
        return evicted
