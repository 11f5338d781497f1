"""
URL configuration for chat API.

URL Structure:
    Conversations:
        /conversations/                          GET, POST
        /conversations/private/                  POST
        /conversations/{id}/                     GET
        /conversations/{id}/read/                POST
        /conversations/{id}/members/             POST
        /conversations/{id}/members/{user_id}/   DELETE
        /conversations/{id}/messages/            GET, POST

    Messages:
        /messages/{id}/thread/                   GET, POST
        /messages/{id}/reactions/                GET, POST
        /messages/{id}/reactions/toggle/         POST
        /messages/{id}/reactions/{emoji}/        DELETE

    Presence:
        /presence/                               GET

All URLs are prefixed with /api/v1/chat/ in the main URL configuration.
"""

from django.urls import include, path
from rest_framework.routers import DefaultRouter

from chat.views import ConversationViewSet, MessageViewSet, PresenceView

router = DefaultRouter()
router.register(r"conversations", ConversationViewSet, basename="conversation")
router.register(r"messages", MessageViewSet, basename="message")

app_name = "chat"

urlpatterns = [
    path("", include(router.urls)),
    path("presence/", PresenceView.as_view(), name="presence"),
]
