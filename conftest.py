"""
Root pytest configuration for the Django project.

Sets the environment the settings module needs before Django is set up:
DJANGO_TESTING switches to SQLite, the local-memory cache, the in-memory
channel layer and eager Celery, so the suite runs without PostgreSQL or
Redis. App-specific fixtures are defined in each app's tests/conftest.py.
"""

import os

import django

# Ensure Django settings are configured before any tests run
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")
os.environ.setdefault("DJANGO_TESTING", "true")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("ENV_FILE", os.devnull)


def pytest_configure():
    """Configure Django settings before tests run."""
    django.setup()
