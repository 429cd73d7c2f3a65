"""
Key-value storage with TTL expiry.

The facilitator keeps no state in process; nonce records and discovery
entries live behind :class:`KeyValueStore`. Semantics are last-writer-wins
with no transactions.
"""
from __future__ import annotations

import json
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, List, Optional

from django.utils import timezone

from facilitator.models import KeyValueEntry

DEFAULT_LIST_LIMIT = 1000


class KeyValueStore(ABC):

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None if missing or expired."""

    @abstractmethod
    def put(self, key: str, value: str, expiration_ttl: Optional[int] = None) -> None:
        """Store ``value`` under ``key``, expiring after ``expiration_ttl`` seconds."""

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    @abstractmethod
    def list(self, prefix: str = '', limit: int = DEFAULT_LIST_LIMIT) -> List[str]:
        """Return up to ``limit`` live keys starting with ``prefix``."""

    def get_json(self, key: str) -> Optional[Any]:
        raw = self.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    def put_json(self, key: str, value: Any, expiration_ttl: Optional[int] = None) -> None:
        self.put(key, json.dumps(value), expiration_ttl=expiration_ttl)


class DatabaseKeyValueStore(KeyValueStore):
    """Store backed by the ``KeyValueEntry`` table; expired rows are dropped on read."""

    def get(self, key: str) -> Optional[str]:
        entry = KeyValueEntry.objects.filter(key=key).first()
        if entry is None:
            return None
        if entry.is_expired():
            KeyValueEntry.objects.filter(
                key=key, expires_at__lte=timezone.now()).delete()
            return None
        return entry.value

    def put(self, key: str, value: str, expiration_ttl: Optional[int] = None) -> None:
        expires_at = None
        if expiration_ttl:
            expires_at = timezone.now() + timedelta(seconds=expiration_ttl)
        KeyValueEntry.objects.update_or_create(
            key=key,
            defaults={'value': value, 'expires_at': expires_at},
        )

    def delete(self, key: str) -> None:
        KeyValueEntry.objects.filter(key=key).delete()

    def list(self, prefix: str = '', limit: int = DEFAULT_LIST_LIMIT) -> List[str]:
        now = timezone.now()
        queryset = (
            KeyValueEntry.objects
            .filter(key__startswith=prefix)
            .exclude(expires_at__lte=now)
            .order_by('key')
            .values_list('key', flat=True)
        )
        return list(queryset[:limit])
