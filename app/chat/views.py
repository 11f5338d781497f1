"""
ViewSets for chat API.

This module provides REST API endpoints for the realtime core:
- ConversationViewSet: Directory, private/group creation, members, messages
- MessageViewSet: Threads and reactions of a single message
- PresenceView: Online roster snapshot

URL Structure:
    /api/v1/chat/conversations/                           GET, POST
    /api/v1/chat/conversations/private/                   POST
    /api/v1/chat/conversations/{id}/                      GET
    /api/v1/chat/conversations/{id}/read/                 POST
    /api/v1/chat/conversations/{id}/members/              POST
    /api/v1/chat/conversations/{id}/members/{user_id}/    DELETE
    /api/v1/chat/conversations/{id}/messages/             GET, POST
    /api/v1/chat/messages/{id}/thread/                    GET, POST
    /api/v1/chat/messages/{id}/reactions/                 GET, POST
    /api/v1/chat/messages/{id}/reactions/toggle/          POST
    /api/v1/chat/messages/{id}/reactions/{emoji}/         DELETE
    /api/v1/chat/presence/                                GET

Design Decisions:
    - Views only parse input and shape output; membership and content
      rules live in chat.services and apply to the WebSocket path as well
    - Service failures map to HTTP status through ServiceResult.http_status
    - Broadcasts are published by the services, never by the views
"""

from __future__ import annotations

import logging
from urllib.parse import unquote

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import (
    OpenApiParameter,
    OpenApiResponse,
    extend_schema,
    extend_schema_view,
)
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from chat.serializers import (
    ConversationSerializer,
    GroupCreateSerializer,
    MemberAddSerializer,
    MessageCreateSerializer,
    MessageSerializer,
    ParticipantSerializer,
    PresenceSerializer,
    PrivateConversationCreateSerializer,
    ReactionCreateSerializer,
    ReactionSerializer,
    ThreadReplyCreateSerializer,
    ThreadSerializer,
)
from chat.services import (
    ConversationService,
    MessageService,
    PresenceService,
    ReactionService,
    ThreadService,
)

logger = logging.getLogger(__name__)

UUID_REGEX = r"[0-9a-fA-F-]{36}"


def failure_response(result, request, operation: str) -> Response:
    """Log a service failure and return it with its mapped status code."""
    logger.info(
        f"{operation} failed for user {request.user.pk}: "
        f"{result.error_code} ({result.error})"
    )
    return Response(result.to_response(), status=result.http_status)


@extend_schema_view(
    list=extend_schema(
        operation_id="list_conversations",
        summary="List conversations",
        responses={200: ConversationSerializer(many=True)},
        tags=["Chat - Conversations"],
    ),
    create=extend_schema(
        operation_id="create_group",
        summary="Create group conversation",
        request=GroupCreateSerializer,
        responses={
            201: ConversationSerializer,
            400: OpenApiResponse(description="Blank name or no members"),
            404: OpenApiResponse(description="Unknown member id"),
        },
        tags=["Chat - Conversations"],
    ),
    retrieve=extend_schema(
        operation_id="get_conversation",
        summary="Get conversation",
        responses={200: ConversationSerializer},
        tags=["Chat - Conversations"],
    ),
)
class ConversationViewSet(viewsets.ViewSet):
    """
    ViewSet for conversation operations.

    list:
        The current user's conversations, most recently active first, with
        the latest top-level message and the unread flag.

    create:
        Create a group. The creator is always a member.

    retrieve:
        Conversation detail with participants.
    """

    permission_classes = [IsAuthenticated]
    lookup_value_regex = UUID_REGEX

    def _context(self, request):
        return {"request": request, "viewer": request.user}

    def list(self, request):
        result = ConversationService.list_conversations(request.user)
        serializer = ConversationSerializer(result.data, many=True, context=self._context(request))
        return Response(serializer.data)

    def create(self, request):
        serializer = GroupCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = ConversationService.create_group(
            request.user,
            serializer.validated_data["name"],
            serializer.validated_data["member_ids"],
        )
        if not result:
            return failure_response(result, request, "create_group")

        output = ConversationSerializer(result.data, context=self._context(request))
        return Response(output.data, status=status.HTTP_201_CREATED)

    def retrieve(self, request, pk=None):
        result = ConversationService.get_conversation(pk, request.user)
        if not result:
            return failure_response(result, request, "get_conversation")
        return Response(ConversationSerializer(result.data, context=self._context(request)).data)

    @extend_schema(
        operation_id="get_or_create_private_conversation",
        summary="Open private conversation",
        description=(
            "Return the private conversation with the given user, creating it "
            "on first use. Calling it again returns the same conversation."
        ),
        request=PrivateConversationCreateSerializer,
        responses={
            200: ConversationSerializer,
            400: OpenApiResponse(description="Target is the current user"),
            404: OpenApiResponse(description="User not found"),
        },
        tags=["Chat - Conversations"],
    )
    @action(detail=False, methods=["post"])
    def private(self, request):
        serializer = PrivateConversationCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = ConversationService.get_or_create_private(
            request.user, serializer.validated_data["user_id"]
        )
        if not result:
            return failure_response(result, request, "get_or_create_private")

        conversation = ConversationService.get_conversation(result.data.pk, request.user).data
        return Response(ConversationSerializer(conversation, context=self._context(request)).data)

    @extend_schema(
        operation_id="mark_conversation_read",
        summary="Mark conversation as read",
        request=None,
        responses={200: OpenApiResponse(description="Unread flag cleared")},
        tags=["Chat - Conversations"],
    )
    @action(detail=True, methods=["post"])
    def read(self, request, pk=None):
        result = MessageService.mark_as_read(pk, request.user)
        if not result:
            return failure_response(result, request, "mark_as_read")
        return Response({"status": "read"})

    @extend_schema(
        operation_id="add_group_member",
        summary="Add group member",
        request=MemberAddSerializer,
        responses={
            201: ParticipantSerializer,
            403: OpenApiResponse(description="Not a group, or not a member"),
            409: OpenApiResponse(description="Already a member"),
        },
        tags=["Chat - Members"],
    )
    @action(detail=True, methods=["post"])
    def members(self, request, pk=None):
        serializer = MemberAddSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = ConversationService.add_member(
            pk, request.user, serializer.validated_data["user_id"]
        )
        if not result:
            return failure_response(result, request, "add_member")
        return Response(ParticipantSerializer(result.data).data, status=status.HTTP_201_CREATED)

    @extend_schema(
        operation_id="remove_group_member",
        summary="Remove group member",
        parameters=[
            OpenApiParameter(
                name="user_id",
                type=OpenApiTypes.INT,
                location=OpenApiParameter.PATH,
                description="Member to remove (may be the current user)",
            ),
        ],
        responses={
            204: OpenApiResponse(description="Member removed"),
            403: OpenApiResponse(description="Not a group, or not a member"),
            404: OpenApiResponse(description="User is not a member"),
        },
        tags=["Chat - Members"],
    )
    @action(detail=True, methods=["delete"], url_path=r"members/(?P<user_id>[0-9]+)")
    def remove_member(self, request, pk=None, user_id=None):
        result = ConversationService.remove_member(pk, request.user, int(user_id))
        if not result:
            return failure_response(result, request, "remove_member")
        return Response(status=status.HTTP_204_NO_CONTENT)

    @extend_schema(
        operation_id="conversation_messages",
        summary="List or send messages",
        description=(
            "GET returns every top-level message, oldest first, and marks the "
            "conversation read. POST sends a message and broadcasts it to the "
            "conversation's subscribers."
        ),
        request=MessageCreateSerializer,
        responses={
            200: MessageSerializer(many=True),
            201: MessageSerializer,
            400: OpenApiResponse(description="Empty or oversized content"),
            403: OpenApiResponse(description="Not a participant"),
        },
        tags=["Chat - Messages"],
    )
    @action(detail=True, methods=["get", "post"])
    def messages(self, request, pk=None):
        if request.method == "GET":
            result = MessageService.get_messages(pk, request.user)
            if not result:
                return failure_response(result, request, "get_messages")
            return Response(MessageSerializer(result.data, many=True).data)

        serializer = MessageCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = MessageService.send_message(
            pk,
            request.user,
            serializer.validated_data["body"],
            image=serializer.validated_data.get("image"),
        )
        if not result:
            return failure_response(result, request, "send_message")
        return Response(MessageSerializer(result.data).data, status=status.HTTP_201_CREATED)


class MessageViewSet(viewsets.ViewSet):
    """Thread and reaction endpoints of a single message."""

    permission_classes = [IsAuthenticated]
    lookup_value_regex = UUID_REGEX

    @extend_schema(
        operation_id="message_thread",
        summary="Get thread or reply",
        request=ThreadReplyCreateSerializer,
        responses={
            200: ThreadSerializer,
            201: MessageSerializer,
            400: OpenApiResponse(description="Empty content or conversation mismatch"),
            403: OpenApiResponse(description="Not a participant"),
            404: OpenApiResponse(description="Parent message not found"),
        },
        tags=["Chat - Threads"],
    )
    @action(detail=True, methods=["get", "post"])
    def thread(self, request, pk=None):
        if request.method == "GET":
            result = ThreadService.get_thread(pk, request.user)
            if not result:
                return failure_response(result, request, "get_thread")
            return Response(ThreadSerializer(result.data).data)

        serializer = ThreadReplyCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = ThreadService.post_reply(
            pk,
            serializer.validated_data["body"],
            serializer.validated_data["conversation_id"],
            request.user,
        )
        if not result:
            return failure_response(result, request, "post_reply")
        return Response(MessageSerializer(result.data).data, status=status.HTTP_201_CREATED)

    @extend_schema(
        operation_id="message_reactions",
        summary="List or add reactions",
        request=ReactionCreateSerializer,
        responses={
            200: ReactionSerializer(many=True),
            201: ReactionSerializer,
            400: OpenApiResponse(description="Invalid emoji"),
            403: OpenApiResponse(description="Not a participant"),
            404: OpenApiResponse(description="Message not found"),
            409: OpenApiResponse(description="Reaction already exists"),
        },
        tags=["Chat - Reactions"],
    )
    @action(detail=True, methods=["get", "post"])
    def reactions(self, request, pk=None):
        if request.method == "GET":
            result = ReactionService.get_reactions(pk, request.user)
            if not result:
                return failure_response(result, request, "get_reactions")
            return Response(ReactionSerializer(result.data, many=True).data)

        serializer = ReactionCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = ReactionService.add_reaction(pk, request.user, serializer.validated_data["emoji"])
        if not result:
            return failure_response(result, request, "add_reaction")
        return Response(ReactionSerializer(result.data).data, status=status.HTTP_201_CREATED)

    @extend_schema(
        operation_id="toggle_reaction",
        summary="Toggle reaction on message",
        description=(
            "Remove the emoji if the current user already placed it on the "
            "message, add it otherwise."
        ),
        request=ReactionCreateSerializer,
        responses={
            200: OpenApiResponse(description='{"action": "added"|"removed", "reaction": ...}'),
            403: OpenApiResponse(description="Not a participant"),
            404: OpenApiResponse(description="Message not found"),
        },
        tags=["Chat - Reactions"],
    )
    @action(detail=True, methods=["post"], url_path="reactions/toggle")
    def toggle_reaction(self, request, pk=None):
        serializer = ReactionCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = ReactionService.toggle_reaction(
            pk, request.user, serializer.validated_data["emoji"]
        )
        if not result:
            return failure_response(result, request, "toggle_reaction")

        reaction = result.data["reaction"]
        return Response(
            {
                "action": result.data["action"],
                "reaction": ReactionSerializer(reaction).data if reaction else None,
            }
        )

    @extend_schema(
        operation_id="remove_reaction",
        summary="Remove reaction from message",
        parameters=[
            OpenApiParameter(
                name="emoji",
                type=OpenApiTypes.STR,
                location=OpenApiParameter.PATH,
                description="The emoji to remove (URL-encoded)",
            ),
        ],
        responses={
            204: OpenApiResponse(description="Reaction removed"),
            404: OpenApiResponse(description="Message or reaction not found"),
        },
        tags=["Chat - Reactions"],
    )
    @action(detail=True, methods=["delete"], url_path=r"reactions/(?P<emoji>(?!toggle/)[^/]+)")
    def remove_reaction(self, request, pk=None, emoji=None):
        result = ReactionService.remove_reaction(pk, request.user, unquote(emoji))
        if not result:
            return failure_response(result, request, "remove_reaction")
        return Response(status=status.HTTP_204_NO_CONTENT)


class PresenceView(APIView):
    """
    Online roster snapshot.

    GET /api/v1/chat/presence/
        Ids of users with a live realtime connection. Live updates arrive
        on the online_users topic.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_online_users",
        summary="List online users",
        responses={200: PresenceSerializer},
        tags=["Chat - Presence"],
    )
    def get(self, request):
        user_ids = PresenceService.get_online_user_ids()
        return Response(PresenceSerializer({"online_user_ids": user_ids}).data)
