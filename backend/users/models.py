"""
RADIUS Subscriber Model

This module defines the RadiusUser model holding each subscriber's
remaining traffic and online-time quota.
"""

import logging

from django.db import models
from django.db.models import F, Value
from django.db.models.functions import Greatest

logger = logging.getLogger(__name__)


class RadiusUser(models.Model):
    """
    Model representing a RADIUS subscriber and its quota balances.
    """

    username = models.CharField(
        max_length=64,
        unique=True,
        db_index=True,
        help_text="Unique subscriber name (User-Name)"
    )
    available_flow = models.BigIntegerField(
        default=0,
        help_text="Remaining traffic allowance in bytes"
    )
    available_time = models.BigIntegerField(
        default=0,
        help_text="Remaining online time allowance in seconds"
    )
    is_active = models.BooleanField(
        default=True,
        help_text="Whether the subscriber is active"
    )
    notes = models.TextField(
        blank=True,
        default='',
        help_text="Optional notes about the subscriber"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'radius_users'
        verbose_name = 'RADIUS User'
        verbose_name_plural = 'RADIUS Users'
        ordering = ['username']

    def __str__(self):
        return self.username

    def has_quota(self) -> bool:
        """
        Check whether both allowances still have something left.
        """
        return self.available_flow > 0 and self.available_time > 0

    @classmethod
    def debit_quota(cls, username: str, flow: int, seconds: int) -> bool:
        """
        Subtract used traffic and time from a subscriber's balances.

        Runs as a single UPDATE touching only the two quota columns; each
        balance is floored at zero by the database expression so concurrent
        settlements for the same subscriber cannot lose a debit.

        Args:
            username: Subscriber to debit
            flow: Bytes to subtract (negative values are treated as zero)
            seconds: Seconds to subtract (negative values are treated as zero)

        Returns:
            True if a subscriber row was updated, False if none exists
        """
        flow = max(0, flow)
        seconds = max(0, seconds)

        updated = cls.objects.filter(username=username).update(
            available_flow=Greatest(
                F('available_flow') - Value(flow),
                Value(0),
                output_field=models.BigIntegerField()
            ),
            available_time=Greatest(
                F('available_time') - Value(seconds),
                Value(0),
                output_field=models.BigIntegerField()
            ),
        )
        return updated > 0
