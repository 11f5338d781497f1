"""
WSGI config for the chat service.

HTTP only. WebSocket traffic needs the ASGI entry point (config.asgi).
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

application = get_wsgi_application()
