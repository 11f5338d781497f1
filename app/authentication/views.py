"""
Views for authentication endpoints.

URL: /api/v1/auth/

- token/, token/refresh/: simplejwt pair issuing and refresh. The access
  token authenticates both the REST API (Authorization header) and the
  realtime WebSocket (``?token=`` query string).
- me/: The current user's account
"""

import logging

from drf_spectacular.utils import extend_schema, extend_schema_view
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from authentication.serializers import CurrentUserSerializer

logger = logging.getLogger(__name__)


@extend_schema_view(
    post=extend_schema(
        summary="Obtain token pair",
        description="Authenticate with email and password to receive JWT tokens.",
        tags=["Auth"],
    )
)
class LoginView(TokenObtainPairView):
    """Email/password login returning access and refresh tokens."""


@extend_schema_view(
    post=extend_schema(
        summary="Refresh access token",
        tags=["Auth"],
    )
)
class RefreshView(TokenRefreshView):
    """Exchange a refresh token for a new access token."""


class CurrentUserView(APIView):
    """
    GET: Retrieve the current user
    PATCH: Update display name or avatar reference
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Get current user",
        tags=["Auth"],
        responses={200: CurrentUserSerializer},
    )
    def get(self, request):
        return Response(CurrentUserSerializer(request.user).data)

    @extend_schema(
        summary="Update current user",
        tags=["Auth"],
        request=CurrentUserSerializer,
        responses={200: CurrentUserSerializer},
    )
    def patch(self, request):
        serializer = CurrentUserSerializer(
            request.user, data=request.data, partial=True
        )
        serializer.is_valid(raise_exception=True)
        user = serializer.save()
        logger.info(f"User {user.id} updated their account")
        return Response(CurrentUserSerializer(user).data)
