"""
Sessions App Configuration
"""

from django.apps import AppConfig


class SessionsConfig(AppConfig):
    """Online sessions, usage logs, settlement and reconciliation."""

    default_auto_field = 'django.db.models.BigAutoField'
    name = 'sessions'
    label = 'radius_sessions'  # Avoids clashing with django.contrib.sessions
    verbose_name = 'RADIUS Sessions'
