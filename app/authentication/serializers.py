"""
Serializers for authentication models.

- UserSummarySerializer: The compact user shape embedded in chat payloads
  (message sender, reaction author, conversation participants)
- CurrentUserSerializer: The authenticated user's own account (read/update)

Related files:
    - views.py: Views that use these serializers
    - chat/serializers.py: Embeds UserSummarySerializer
"""

from rest_framework import serializers

from authentication.models import User


class UserSummarySerializer(serializers.ModelSerializer):
    """
    Id, display name and avatar reference.

    ``name`` falls back to the email local part so clients always have
    something to render.
    """

    name = serializers.CharField(source="display_name", read_only=True)

    class Meta:
        model = User
        fields = ["id", "name", "image"]
        read_only_fields = fields


class CurrentUserSerializer(serializers.ModelSerializer):
    """Serializer for the current user's account. Email is read-only."""

    class Meta:
        model = User
        fields = ["id", "email", "name", "image", "date_joined"]
        read_only_fields = ["id", "email", "date_joined"]

    def validate_name(self, value):
        """Strip surrounding whitespace; blank names fall back to the email."""
        return value.strip()
