"""
Django admin configuration for chat models.

Provides admin interfaces for:
- Conversation management (with members inline)
- Participant viewing
- Message and reaction moderation
"""

from django.contrib import admin

from chat.models import (
    Conversation,
    DirectConversationPair,
    Message,
    Participant,
    Reaction,
)


class ParticipantInline(admin.TabularInline):
    """Inline display of members in conversation admin."""

    model = Participant
    extra = 0
    readonly_fields = ["joined_at", "has_unread_messages"]
    raw_id_fields = ["user"]


@admin.register(Conversation)
class ConversationAdmin(admin.ModelAdmin):
    list_display = ["id", "name", "is_group", "member_count", "created_at", "updated_at"]
    list_filter = ["is_group", "created_at"]
    search_fields = ["name", "id"]
    readonly_fields = ["created_at", "updated_at"]
    inlines = [ParticipantInline]
    ordering = ["-updated_at"]

    @admin.display(description="Members")
    def member_count(self, obj: Conversation) -> int:
        return obj.participants.count()


@admin.register(DirectConversationPair)
class DirectConversationPairAdmin(admin.ModelAdmin):
    list_display = ["conversation", "user_lower", "user_higher"]
    raw_id_fields = ["conversation", "user_lower", "user_higher"]


@admin.register(Participant)
class ParticipantAdmin(admin.ModelAdmin):
    list_display = ["id", "conversation", "user", "has_unread_messages", "joined_at"]
    list_filter = ["has_unread_messages", "joined_at"]
    search_fields = ["user__email", "conversation__name"]
    readonly_fields = ["created_at", "updated_at", "joined_at"]
    raw_id_fields = ["conversation", "user"]
    ordering = ["-joined_at"]


class ReactionInline(admin.TabularInline):
    model = Reaction
    extra = 0
    readonly_fields = ["created_at"]
    raw_id_fields = ["user"]


@admin.register(Message)
class MessageAdmin(admin.ModelAdmin):
    """Admin interface for Message model."""

    list_display = [
        "id",
        "conversation",
        "sender",
        "body_preview",
        "is_thread_reply",
        "created_at",
    ]
    list_filter = ["is_thread_reply", "created_at"]
    search_fields = ["body", "sender__email"]
    readonly_fields = ["created_at", "updated_at"]
    raw_id_fields = ["conversation", "sender", "parent"]
    filter_horizontal = ["seen_by"]
    inlines = [ReactionInline]
    ordering = ["-created_at"]

    @admin.display(description="Body")
    def body_preview(self, obj: Message) -> str:
        body = obj.body or ""
        if len(body) > 50:
            return body[:50] + "..."
        return body


@admin.register(Reaction)
class ReactionAdmin(admin.ModelAdmin):
    list_display = ["emoji", "message", "user", "created_at"]
    search_fields = ["emoji", "user__email"]
    raw_id_fields = ["message", "user"]
    ordering = ["-created_at"]
