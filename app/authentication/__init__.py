"""
Authentication application.

Provides the email-based User model the chat core references, JWT token
endpoints (simplejwt) and the current-user summary.

Key components:
    - User model: Email login, display name and avatar reference
    - UserSummarySerializer: The user shape embedded in chat payloads

Usage:
    from authentication.models import User
    from authentication.serializers import UserSummarySerializer
"""
