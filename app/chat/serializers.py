"""
Serializers for chat API and broadcast payloads.

The same read serializers shape REST responses and broadcast events, so a
message a client receives over the bus has exactly the fields it would get
from re-fetching the conversation.

Serializer Hierarchy:
    ReactionSerializer: Reaction with its author
    MessageSerializer: Message with sender, reply count and reactions
    MessagePreviewSerializer: Latest message shown in the directory
    ParticipantSerializer: Member with unread flag
    ConversationSerializer: Directory entry / conversation detail
    ThreadSerializer: Parent message plus replies

    PrivateConversationCreateSerializer: Open a private conversation
    GroupCreateSerializer: Create a group
    MemberAddSerializer: Add a group member
    MessageCreateSerializer: Send a message
    ThreadReplyCreateSerializer: Reply in a thread
    ReactionCreateSerializer: Add or toggle a reaction

Design Decisions:
    - Read and write serializers are separate
    - Write serializers only check shapes; business rules (membership,
      duplicates, blank content) live in chat.services so the REST and
      WebSocket paths share them
    - The viewer for per-user fields comes from context["viewer"] or,
      failing that, context["request"].user
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rest_framework import serializers

from authentication.serializers import UserSummarySerializer
from chat.constants import MESSAGE_CONFIG, REACTION_CONFIG
from chat.models import Conversation, Message, Participant, Reaction

if TYPE_CHECKING:
    from authentication.models import User


def _viewer_from_context(context: dict) -> User | None:
    viewer = context.get("viewer")
    if viewer is not None:
        return viewer
    request = context.get("request")
    if request is not None and request.user.is_authenticated:
        return request.user
    return None


# =============================================================================
# Message Serializers
# =============================================================================


class ReactionSerializer(serializers.ModelSerializer):
    """Reaction with the reacting user's summary."""

    message_id = serializers.UUIDField(read_only=True)
    user_id = serializers.IntegerField(read_only=True)
    user = UserSummarySerializer(read_only=True)

    class Meta:
        model = Reaction
        fields = ["id", "emoji", "message_id", "user_id", "user", "created_at"]
        read_only_fields = fields


class MessageSerializer(serializers.ModelSerializer):
    """
    Full message serializer.

    ``reply_count`` reads the annotation services put on the queryset and
    is 0 for freshly created messages.
    """

    conversation_id = serializers.UUIDField(read_only=True)
    sender_id = serializers.IntegerField(read_only=True)
    sender = UserSummarySerializer(read_only=True)
    parent_id = serializers.UUIDField(read_only=True, allow_null=True)
    reply_count = serializers.SerializerMethodField(
        help_text="Number of thread replies (top-level messages only)"
    )
    reactions = ReactionSerializer(many=True, read_only=True)

    class Meta:
        model = Message
        fields = [
            "id",
            "conversation_id",
            "sender_id",
            "sender",
            "body",
            "image",
            "parent_id",
            "is_thread_reply",
            "reply_count",
            "reactions",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_reply_count(self, obj: Message) -> int:
        return getattr(obj, "reply_count", 0) or 0


class MessagePreviewSerializer(serializers.ModelSerializer):
    """Latest top-level message shown in the conversation list."""

    sender_name = serializers.CharField(source="sender.display_name", read_only=True)

    class Meta:
        model = Message
        fields = ["id", "body", "image", "sender_name", "created_at"]
        read_only_fields = fields


class ThreadSerializer(serializers.Serializer):
    """Parent message, its replies in order, and the reply count."""

    parent = MessageSerializer(read_only=True)
    replies = MessageSerializer(many=True, read_only=True)
    reply_count = serializers.IntegerField(read_only=True)


# =============================================================================
# Conversation Serializers
# =============================================================================


class ParticipantSerializer(serializers.ModelSerializer):
    user = UserSummarySerializer(read_only=True)

    class Meta:
        model = Participant
        fields = ["user", "has_unread_messages", "joined_at"]
        read_only_fields = fields


class ConversationSerializer(serializers.ModelSerializer):
    """
    Directory entry and conversation detail.

    Computed fields:
    - display_name: Group name, or the other participant's name
    - has_unread: The viewer's unread flag
    - latest_message: Newest top-level message (thread replies excluded)
    """

    display_name = serializers.SerializerMethodField(
        help_text="Display name for the conversation"
    )
    has_unread = serializers.SerializerMethodField(
        help_text="Whether the current user has unread messages"
    )
    latest_message = serializers.SerializerMethodField(
        help_text="Most recent top-level message preview"
    )
    participants = ParticipantSerializer(many=True, read_only=True)

    class Meta:
        model = Conversation
        fields = [
            "id",
            "name",
            "is_group",
            "display_name",
            "has_unread",
            "latest_message",
            "participants",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_display_name(self, obj: Conversation) -> str:
        viewer = _viewer_from_context(self.context)
        if viewer is None:
            return obj.name
        return obj.display_name_for(viewer)

    def get_has_unread(self, obj: Conversation) -> bool:
        annotated = getattr(obj, "has_unread", None)
        if annotated is not None:
            return bool(annotated)
        viewer = _viewer_from_context(self.context)
        if viewer is None:
            return False
        return any(
            p.user_id == viewer.pk and p.has_unread_messages
            for p in obj.participants.all()
        )

    def get_latest_message(self, obj: Conversation) -> dict | None:
        latest = getattr(obj, "latest_messages", None)
        if latest is None:
            latest = list(
                obj.messages.filter(is_thread_reply=False)
                .select_related("sender")
                .order_by("-created_at")[:1]
            )
        if latest:
            return MessagePreviewSerializer(latest[0]).data
        return None


# =============================================================================
# Write Serializers
# =============================================================================


class PrivateConversationCreateSerializer(serializers.Serializer):
    user_id = serializers.IntegerField(help_text="User to open a conversation with")


class GroupCreateSerializer(serializers.Serializer):
    """
    Create a group. The creator is always added; duplicates and the
    creator's own id are ignored.
    """

    name = serializers.CharField(
        max_length=MESSAGE_CONFIG.MAX_GROUP_NAME_LENGTH,
        allow_blank=True,
        help_text="Group name",
    )
    member_ids = serializers.ListField(
        child=serializers.IntegerField(),
        allow_empty=True,
        help_text="Users to add besides the creator (at least one)",
    )


class MemberAddSerializer(serializers.Serializer):
    user_id = serializers.IntegerField(help_text="User to add to the group")


class MessageCreateSerializer(serializers.Serializer):
    body = serializers.CharField(
        allow_blank=True,
        trim_whitespace=False,
        help_text=f"Message text (max {MESSAGE_CONFIG.MAX_BODY_LENGTH} characters)",
    )
    image = serializers.CharField(
        required=False,
        allow_blank=True,
        max_length=MESSAGE_CONFIG.MAX_IMAGE_REFERENCE_LENGTH,
        help_text="Optional image reference",
    )


class ThreadReplyCreateSerializer(serializers.Serializer):
    body = serializers.CharField(
        allow_blank=True,
        trim_whitespace=False,
        help_text="Reply text",
    )
    conversation_id = serializers.UUIDField(
        help_text="Conversation of the parent message",
    )


class ReactionCreateSerializer(serializers.Serializer):
    emoji = serializers.CharField(
        max_length=REACTION_CONFIG.MAX_EMOJI_LENGTH,
        help_text=f"Emoji (max {REACTION_CONFIG.MAX_EMOJI_LENGTH} characters)",
    )


class PresenceSerializer(serializers.Serializer):
    online_user_ids = serializers.ListField(child=serializers.IntegerField())
