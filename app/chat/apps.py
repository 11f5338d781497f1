"""
Chat application configuration.

This app provides the realtime chat core:
- Private and group conversations
- Message pipeline with post-commit fan-out
- Single-level threads and emoji reactions
- Cache-backed presence with a periodic sweep
"""

from django.apps import AppConfig


class ChatConfig(AppConfig):
    """Configuration for the chat application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "chat"
    verbose_name = "Chat"
