"""
URL configuration for the chat service.

URL Structure:
    /                              - ReDoc API documentation
    /admin/                        - Django admin interface
    /health/                       - Health check endpoint (load balancers, Docker)
    /schema/                       - OpenAPI schema (YAML)
    /api/v1/auth/                  - Authentication endpoints
        token/                     - Obtain JWT pair (email + password)
        token/refresh/             - Refresh access token
        me/                        - Current user summary
    /api/v1/chat/                  - Chat endpoints
        conversations/             - Conversation directory / create group
        conversations/private/     - Get or create a private conversation
        conversations/{id}/        - Conversation detail
        conversations/{id}/read/   - Clear the unread flag
        conversations/{id}/members/ - Add a group member
        conversations/{id}/members/{user_id}/ - Remove a group member
        conversations/{id}/messages/ - Message snapshot / send
        messages/{id}/thread/      - Thread read / reply
        messages/{id}/reactions/   - Reaction list / add
        messages/{id}/reactions/toggle/ - Toggle a reaction
        messages/{id}/reactions/{emoji}/ - Remove a reaction
        presence/                  - Online user ids

WebSocket routes live in chat.routing (see config.asgi).
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView

from core.views import health_check

# =============================================================================
# API v1 Routes
# =============================================================================
api_v1_patterns = [
    path("auth/", include("authentication.urls")),
    path("chat/", include("chat.urls")),
]

urlpatterns = [
    # Documentation
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    # Admin
    path("admin/", admin.site.urls),
    # Health check
    path("health/", health_check, name="health_check"),
    # API v1
    path("api/v1/", include(api_v1_patterns)),
]

# =============================================================================
# Admin Site Customization
# =============================================================================
admin.site.site_header = "Chat Admin"
admin.site.site_title = "Chat Admin Portal"
admin.site.index_title = "Conversations, messages and members"
