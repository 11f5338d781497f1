"""
WebSocket URL routing for the chat application.

URL Patterns:
    ws/realtime/ - One multiplexed connection per client session. Topics
        (conversation messages, threads, reactions) are subscribed over
        the socket; group updates and presence are joined automatically.

Authentication:
    JWT access token as query parameter: ?token=<jwt_access_token>
    (see chat.middleware.JWTAuthMiddleware).
"""

from django.urls import path

from chat import consumers

websocket_urlpatterns = [
    path("ws/realtime/", consumers.RealtimeConsumer.as_asgi()),
]
