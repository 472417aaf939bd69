"""
NAS Client Model

This module defines the NASClient model for storing Network Access Server
(NAS) configurations, including the shared secrets used to verify
accounting packets.
"""

import threading
import time
from django.db import models
from django.core.validators import MinValueValidator, MaxValueValidator


class NASCache:
    """Thread-safe in-memory cache for NAS lookups with a TTL."""

    # Stored for lookups that found nothing, so misses are cached too
    MISSING = object()

    def __init__(self, default_ttl: int = 300):
        self._cache: dict = {}
        self._lock = threading.Lock()
        self._default_ttl = default_ttl

    def get(self, key: str):
        """Get item from cache. Returns None if not found or expired."""
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if time.time() > expires_at:
                del self._cache[key]
                return None
            return value

    def set(self, key: str, value, ttl: int | None = None):
        ttl = ttl if ttl is not None else self._default_ttl
        with self._lock:
            self._cache[key] = (value, time.time() + ttl)

    def clear(self):
        with self._lock:
            self._cache.clear()


# Global NAS cache instance (5 minutes TTL)
_nas_cache = NASCache(default_ttl=300)


class NASClient(models.Model):
    """
    Model representing a Network Access Server (NAS) client.

    Attributes:
        identifier: Unique identifier for the NAS (matches NAS-Identifier)
        ip_address: Source IP address of the NAS
        shared_secret: Shared secret for RADIUS packet authentication
        acct_port: Accounting port the NAS sends to
        is_active: Whether packets from this NAS are accepted
        description: Optional description of the NAS
    """

    identifier = models.CharField(
        max_length=64,
        unique=True,
        db_index=True,
        help_text="Unique identifier for the NAS (matches NAS-Identifier attribute)"
    )
    ip_address = models.GenericIPAddressField(
        db_index=True,
        help_text="IP address of the NAS"
    )
    shared_secret = models.CharField(
        max_length=128,
        help_text="Shared secret for RADIUS packet authentication"
    )
    acct_port = models.PositiveIntegerField(
        default=1813,
        validators=[MinValueValidator(1), MaxValueValidator(65535)],
        help_text="Accounting port"
    )
    is_active = models.BooleanField(
        default=True,
        help_text="Whether the NAS is active"
    )
    description = models.TextField(
        blank=True,
        default='',
        help_text="Optional description of the NAS"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'radius_nas_clients'
        verbose_name = 'NAS Client'
        verbose_name_plural = 'NAS Clients'
        ordering = ['identifier']

    def __str__(self):
        return f"{self.identifier} ({self.ip_address})"

    def get_secret_bytes(self) -> bytes:
        """
        Get the shared secret as bytes for RADIUS operations.
        """
        return self.shared_secret.encode('utf-8')

    @classmethod
    def _cached(cls, cache_key: str, lookup):
        cached = _nas_cache.get(cache_key)
        if cached is not None:
            return None if cached is NASCache.MISSING else cached

        nas = lookup()
        _nas_cache.set(cache_key, nas if nas is not None else NASCache.MISSING)
        return nas

    @classmethod
    def get_by_ip(cls, ip_address: str) -> 'NASClient | None':
        """
        Get an active NAS client by its IP address (with caching).
        """
        return cls._cached(
            f"nas_ip:{ip_address}",
            lambda: cls.objects.filter(ip_address=ip_address, is_active=True).first()
        )

    @classmethod
    def get_best_match(cls, ip_address: str, identifier: str | None = None) -> 'NASClient | None':
        """
        Find the NAS client for a source IP and optional NAS-Identifier (with caching).

        With an identifier only an exact (ip, identifier) match is accepted, so
        a packet naming an unknown NAS behind a shared IP is never verified
        with another NAS's secret.
        """
        def lookup():
            qs = cls.objects.filter(ip_address=ip_address, is_active=True)
            if identifier:
                qs = qs.filter(identifier=identifier)
            return qs.first()

        return cls._cached(f"nas_match:{ip_address}:{identifier or ''}", lookup)

    @classmethod
    def clear_cache(cls):
        """Clear the NAS cache. Call this when NAS configuration changes."""
        _nas_cache.clear()

    def save(self, *args, **kwargs):
        """Override save to invalidate cache when NAS is modified."""
        super().save(*args, **kwargs)
        _nas_cache.clear()

    def delete(self, *args, **kwargs):
        """Override delete to invalidate cache when NAS is removed."""
        result = super().delete(*args, **kwargs)
        _nas_cache.clear()
        return result
