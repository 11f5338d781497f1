"""
Chat system models.

This module is the persistence side of the realtime core. Every write the
services make lands here first; broadcasts only happen after the
transaction that wrote these rows commits.

Models:
    Conversation: Container for messages between participants (private or group)
    DirectConversationPair: Enforces one private conversation per user pair
    Participant: User membership in a conversation, with the unread flag
    Message: A top-level message or a thread reply
    Reaction: An emoji placed on a message by a user

Design Decisions:
    - Private conversations have exactly two participants and never change
      membership; groups add and remove members freely
    - Removing a member deletes the Participant row (no membership history)
    - Threads are single level: a reply always points at a top-level message
    - Reply counts are never stored; they are counted from reply rows
    - The display name of a private conversation is computed per viewer
      instead of being stored on the conversation
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.conf import settings
from django.db import models
from django.db.models import F, Q

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

if TYPE_CHECKING:
    from authentication.models import User


class Conversation(UUIDPrimaryKeyMixin, BaseModel):
    """
    A conversation between two or more users.

    Kinds:
        Private (is_group=False): Exactly 2 participants, unique per user
            pair (see DirectConversationPair), no name.
        Group (is_group=True): Named, creator plus at least one member.

    Fields:
        name: Group name (empty for private conversations)
        is_group: Whether this is a group conversation
        updated_at: Bumped on every new top-level message; the directory
            is ordered by it

    Relationships:
        participants: Participant rows
        messages: Message rows (top-level and replies)
        direct_pair: DirectConversationPair for private conversations
    """

    name = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Name for group conversations (empty for private)",
    )

    is_group = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Whether this is a group conversation",
    )

    class Meta:
        db_table = "chat_conversation"
        ordering = ["-updated_at"]
        indexes = [
            models.Index(fields=["-updated_at"], name="chat_conv_updated_idx"),
        ]

    def __str__(self) -> str:
        if self.is_group:
            return f"Group: {self.name}" if self.name else f"Group({self.pk})"
        return f"Private({self.pk})"

    def display_name_for(self, viewer: User) -> str:
        """
        Name to show this viewer in the conversation list.

        Groups show their own name. Private conversations show the other
        participant's display name. Uses the prefetched participants when
        available.
        """
        if self.is_group:
            return self.name
        for participant in self.participants.all():
            if participant.user_id != viewer.pk:
                return participant.user.display_name
        return ""


class DirectConversationPair(models.Model):
    """
    Enforces uniqueness of private conversations between two users.

    Stores the pair in canonical order (lower user id first). Two users
    opening a conversation with each other at the same moment both try to
    insert the same row; the unique constraint lets exactly one win and
    the other re-reads the winner's conversation.

    Constraints:
        - UniqueConstraint(user_lower, user_higher): One conversation per pair
        - CheckConstraint(user_lower_id < user_higher_id): Canonical order
    """

    conversation = models.OneToOneField(
        Conversation,
        on_delete=models.CASCADE,
        primary_key=True,
        related_name="direct_pair",
        help_text="The private conversation this pair represents",
    )

    user_lower = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="+",
        help_text="User with lower ID in this conversation pair",
    )

    user_higher = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="+",
        help_text="User with higher ID in this conversation pair",
    )

    class Meta:
        db_table = "chat_direct_conversation_pair"
        constraints = [
            models.UniqueConstraint(
                fields=["user_lower", "user_higher"],
                name="unique_direct_conversation_pair",
            ),
            models.CheckConstraint(
                condition=Q(user_lower_id__lt=F("user_higher_id")),
                name="user_lower_less_than_higher",
            ),
        ]

    def __str__(self) -> str:
        return f"DirectPair({self.user_lower_id}, {self.user_higher_id})"

    @staticmethod
    def canonical(user_a_id: int, user_b_id: int) -> tuple[int, int]:
        """Return the pair ordered (lower, higher)."""
        return (user_a_id, user_b_id) if user_a_id < user_b_id else (user_b_id, user_a_id)


class Participant(BaseModel):
    """
    Membership of a user in a conversation.

    Fields:
        conversation: Conversation this membership belongs to
        user: Member
        has_unread_messages: Set for every other member when a top-level
            message is sent; cleared when this member reads the conversation
        joined_at: When the user joined

    Constraints:
        - UniqueConstraint(conversation, user)
    """

    conversation = models.ForeignKey(
        Conversation,
        on_delete=models.CASCADE,
        related_name="participants",
        help_text="Conversation this membership belongs to",
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="conversation_participations",
        help_text="User participating in the conversation",
    )

    has_unread_messages = models.BooleanField(
        default=False,
        help_text="Whether this member has messages they have not fetched yet",
    )

    joined_at = models.DateTimeField(
        auto_now_add=True,
        help_text="When the user joined this conversation",
    )

    class Meta:
        db_table = "chat_participant"
        ordering = ["joined_at"]
        indexes = [
            models.Index(
                fields=["user", "conversation"],
                name="chat_part_user_conv_idx",
            ),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["conversation", "user"],
                name="unique_participation",
            ),
        ]

    def __str__(self) -> str:
        unread = " [unread]" if self.has_unread_messages else ""
        return f"Participant: {self.user_id} in {self.conversation_id}{unread}"


class Message(UUIDPrimaryKeyMixin, BaseModel):
    """
    A message within a conversation.

    Threading:
        Top-level messages have no parent and is_thread_reply=False.
        Replies point at a top-level message and have is_thread_reply=True;
        the database rejects any other combination. Replies never show up
        in the conversation's message list and never mark anyone unread.

    Fields:
        conversation: Conversation this message belongs to
        sender: Author
        body: Text content (nullable for image-only messages)
        image: Optional image reference
        parent: Top-level message this reply belongs to (null if top-level)
        is_thread_reply: True for thread replies
        seen_by: Users who have fetched this message (append-only)

    Note:
        ``reply_count`` is not a column. Services annotate it with a count
        of reply rows when it is needed.
    """

    conversation = models.ForeignKey(
        Conversation,
        on_delete=models.CASCADE,
        related_name="messages",
        help_text="Conversation this message belongs to",
    )

    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="sent_messages",
        help_text="User who sent this message",
    )

    body = models.TextField(
        null=True,
        blank=True,
        help_text="Message text",
    )

    image = models.CharField(
        max_length=500,
        blank=True,
        default="",
        help_text="Optional image reference (URL or storage key)",
    )

    parent = models.ForeignKey(
        "self",
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="replies",
        help_text="Top-level message this reply belongs to (null if top-level)",
    )

    is_thread_reply = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Whether this message is a thread reply",
    )

    seen_by = models.ManyToManyField(
        settings.AUTH_USER_MODEL,
        blank=True,
        related_name="seen_messages",
        help_text="Users who have fetched this message",
    )

    class Meta:
        db_table = "chat_message"
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(
                fields=["conversation", "is_thread_reply", "created_at"],
                name="chat_msg_conv_top_idx",
            ),
            models.Index(
                fields=["parent", "created_at"],
                name="chat_msg_parent_idx",
                condition=Q(parent__isnull=False),
            ),
        ]
        constraints = [
            models.CheckConstraint(
                condition=(
                    Q(is_thread_reply=True, parent__isnull=False)
                    | Q(is_thread_reply=False, parent__isnull=True)
                ),
                name="thread_reply_has_parent",
            ),
        ]

    def __str__(self) -> str:
        body = self.body or ""
        preview = body[:50] + "..." if len(body) > 50 else body
        reply = " [reply]" if self.is_thread_reply else ""
        return f"User {self.sender_id}: {preview}{reply}"


class Reaction(UUIDPrimaryKeyMixin, models.Model):
    """
    An emoji reaction placed on a message by a user.

    The emoji is an opaque string. A user may place several different
    emojis on the same message, but each (message, user, emoji) only once.
    """

    message = models.ForeignKey(
        Message,
        on_delete=models.CASCADE,
        related_name="reactions",
        help_text="Message this reaction is on",
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="message_reactions",
        help_text="User who reacted",
    )

    emoji = models.CharField(
        max_length=32,
        help_text="Emoji character(s)",
    )

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
    )

    class Meta:
        db_table = "chat_reaction"
        ordering = ["created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["message", "user", "emoji"],
                name="unique_reaction_per_user_emoji",
            ),
        ]
        indexes = [
            models.Index(fields=["message", "emoji"], name="chat_reaction_msg_emoji_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.emoji} by {self.user_id} on {self.message_id}"
