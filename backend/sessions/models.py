"""
RADIUS Session Models

This module defines the OnlineSession model (one row per currently
connected accounting session) and the UsageLog model (one immutable row
per closed session).
"""

import logging
from django.db import models
from django.utils import timezone

logger = logging.getLogger(__name__)


class OnlineSession(models.Model):
    """
    Model representing an accounting session that is currently online.

    A row exists exactly while the session is online: it is created by
    Acct-Start (or a self-healing Interim-Update) and deleted when the
    session is settled.
    """

    session_id = models.CharField(
        max_length=64,
        unique=True,
        help_text="Unique session identifier (Acct-Session-Id)"
    )
    nas_ip_address = models.GenericIPAddressField(
        db_index=True,
        help_text="IP address of the NAS reporting the session"
    )
    username = models.CharField(
        max_length=64,
        blank=True,
        default='',
        db_index=True,
        help_text="Subscriber name, blank until resolved"
    )
    framed_ip_address = models.GenericIPAddressField(
        null=True,
        blank=True,
        help_text="IP address assigned to the subscriber"
    )
    nas_port_id = models.CharField(
        max_length=64,
        blank=True,
        default='',
        help_text="NAS port the subscriber is attached to"
    )
    mac_address = models.CharField(
        max_length=17,
        blank=True,
        default='',
        help_text="Subscriber MAC address"
    )
    start_time = models.DateTimeField(
        default=timezone.now,
        help_text="When the server first saw the session"
    )
    last_updated = models.DateTimeField(
        default=timezone.now,
        help_text="Last time an accounting packet was applied"
    )
    upstream_bytes = models.BigIntegerField(
        default=0,
        help_text="Running total of bytes sent by the subscriber"
    )
    downstream_bytes = models.BigIntegerField(
        default=0,
        help_text="Running total of bytes received by the subscriber"
    )
    last_authenticator = models.CharField(
        max_length=32,
        blank=True,
        default='',
        help_text="Request Authenticator (hex) of the last applied Interim-Update"
    )

    class Meta:
        db_table = 'radius_online_sessions'
        verbose_name = 'Online Session'
        verbose_name_plural = 'Online Sessions'
        ordering = ['-start_time']
        indexes = [
            models.Index(fields=['nas_ip_address', 'start_time']),
        ]

    def __str__(self):
        return f"{self.username or '?'}@{self.nas_ip_address} ({self.session_id})"

    @property
    def total_bytes(self) -> int:
        return self.upstream_bytes + self.downstream_bytes


class UsageLog(models.Model):
    """
    Model representing the usage history of one closed session.

    Rows are append-only: saving an existing row raises ValueError.
    """

    # Terminate cause codes (RFC 2866)
    TERMINATE_CAUSE_USER_REQUEST = 1
    TERMINATE_CAUSE_LOST_CARRIER = 2
    TERMINATE_CAUSE_LOST_SERVICE = 3
    TERMINATE_CAUSE_IDLE_TIMEOUT = 4
    TERMINATE_CAUSE_SESSION_TIMEOUT = 5
    TERMINATE_CAUSE_ADMIN_RESET = 6
    TERMINATE_CAUSE_ADMIN_REBOOT = 7
    TERMINATE_CAUSE_PORT_ERROR = 8
    TERMINATE_CAUSE_NAS_ERROR = 9
    TERMINATE_CAUSE_NAS_REQUEST = 10
    TERMINATE_CAUSE_NAS_REBOOT = 11
    TERMINATE_CAUSE_PORT_UNNEEDED = 12
    TERMINATE_CAUSE_PORT_PREEMPTED = 13
    TERMINATE_CAUSE_PORT_SUSPENDED = 14
    TERMINATE_CAUSE_SERVICE_UNAVAILABLE = 15
    TERMINATE_CAUSE_CALLBACK = 16
    TERMINATE_CAUSE_USER_ERROR = 17
    TERMINATE_CAUSE_HOST_REQUEST = 18

    acct_session_id = models.CharField(
        max_length=64,
        db_index=True,
        help_text="Acct-Session-Id of the closed session"
    )
    username = models.CharField(
        max_length=64,
        blank=True,
        default='',
        db_index=True,
        help_text="Subscriber name"
    )
    start_time = models.DateTimeField(
        help_text="When the session started"
    )
    stop_time = models.DateTimeField(
        db_index=True,
        help_text="When the session was settled"
    )
    used_duration = models.PositiveIntegerField(
        default=0,
        help_text="Online time in seconds"
    )
    total_upstream = models.BigIntegerField(
        default=0,
        help_text="Bytes sent by the subscriber"
    )
    total_downstream = models.BigIntegerField(
        default=0,
        help_text="Bytes received by the subscriber"
    )
    nas_ip_address = models.GenericIPAddressField(
        help_text="IP address of the NAS"
    )
    framed_ip_address = models.GenericIPAddressField(
        null=True,
        blank=True,
        help_text="IP address assigned to the subscriber"
    )
    mac_address = models.CharField(
        max_length=17,
        blank=True,
        default='',
        help_text="Subscriber MAC address"
    )
    terminate_cause = models.PositiveSmallIntegerField(
        null=True,
        blank=True,
        help_text="Reason for session termination (RFC 2866)"
    )

    class Meta:
        db_table = 'radius_usage_logs'
        verbose_name = 'Usage Log'
        verbose_name_plural = 'Usage Logs'
        ordering = ['-stop_time']
        indexes = [
            models.Index(fields=['username', '-stop_time']),
        ]

    def __str__(self):
        return f"{self.username}@{self.nas_ip_address} ({self.acct_session_id}) {self.used_duration}s"

    def save(self, *args, **kwargs):
        """Refuse to rewrite a usage record once it has been stored."""
        if not self._state.adding:
            raise ValueError("Usage logs are immutable once written")
        super().save(*args, **kwargs)

    @property
    def total_bytes(self) -> int:
        return self.total_upstream + self.total_downstream
