"""
Discovery catalog of seller resources, built from observed payments.

Each resource URL seen in a successful verify or settle is recorded along
with the payment requirements it accepts. Writes are debounced per
resource and every write refreshes a seven-day expiry, so sellers with no
traffic age out of the catalog on their own.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone as datetime_timezone
from typing import List, Optional
from urllib.parse import quote

from django.utils import timezone
from django.utils.dateparse import parse_datetime
from loguru import logger

from facilitator.storage import KeyValueStore
from facilitator.types import (
    DiscoveryPagination,
    DiscoveryResource,
    ListDiscoveryResponse,
    PaymentRequirements,
    X402_VERSION,
)

SELLER_KEY_PREFIX = 'seller:'
MAX_ENCODED_RESOURCE_LENGTH = 512
SELLER_TTL_SECONDS = 86400 * 7
DEBOUNCE_WINDOW = timedelta(hours=1)
LIST_SCAN_LIMIT = 1000
DEFAULT_PAGE_LIMIT = 100
MAX_PAGE_LIMIT = 1000

_EPOCH = datetime(1970, 1, 1, tzinfo=datetime_timezone.utc)


def seller_key(resource: str) -> str:
    """Store key for a resource URL: percent-encoded, capped at the key-size limit."""
    encoded = quote(resource, safe="!*'()")
    return f'{SELLER_KEY_PREFIX}{encoded[:MAX_ENCODED_RESOURCE_LENGTH]}'


def format_timestamp(value: datetime) -> str:
    utc_value = value.astimezone(datetime_timezone.utc)
    return utc_value.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def _parse_timestamp(value: str) -> datetime:
    parsed = parse_datetime(value or '')
    if parsed is None:
        return _EPOCH
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed, datetime_timezone.utc)
    return parsed


def _same_terms(accepted: dict, requirements: PaymentRequirements, network: str) -> bool:
    return (
        str(accepted.get('payTo', '')).lower() == requirements.pay_to.lower()
        and str(accepted.get('asset', '')).lower() == requirements.asset.lower()
        and str(accepted.get('network', '')).lower() == network.lower()
    )


def clamp_pagination(limit: Optional[int], offset: Optional[int]):
    if limit is None:
        limit = DEFAULT_PAGE_LIMIT
    if offset is None:
        offset = 0
    return max(0, min(limit, MAX_PAGE_LIMIT)), max(0, offset)


class DiscoveryCatalog:

    def __init__(self, store: KeyValueStore):
        self.store = store

    def register(
        self,
        requirements: PaymentRequirements,
        network: str,
        request_id: str = '-',
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Record ``requirements`` under its resource URL.

        Returns True when the catalog was written. Never raises: store
        errors are logged because this runs detached from the request.
        """
        if not requirements.resource:
            logger.debug('[{}] No resource URL, skipping seller registration', request_id)
            return False

        key = seller_key(requirements.resource)
        now = now or timezone.now()
        accepted = requirements.to_wire()

        try:
            existing = self.store.get_json(key)
            if existing:
                entry = DiscoveryResource.model_validate(existing)
                if now - _parse_timestamp(entry.last_updated) < DEBOUNCE_WINDOW:
                    logger.debug('[{}] Seller recently updated, skipping', request_id)
                    return False

                for index, current in enumerate(entry.accepts):
                    if _same_terms(current, requirements, network):
                        entry.accepts[index] = accepted
                        break
                else:
                    entry.accepts.append(accepted)
                entry.last_updated = format_timestamp(now)
            else:
                entry = DiscoveryResource(
                    resource=requirements.resource,
                    accepts=[accepted],
                    last_updated=format_timestamp(now),
                )

            self.store.put_json(
                key, entry.model_dump(by_alias=True),
                expiration_ttl=SELLER_TTL_SECONDS)
        except Exception:
            logger.exception('[{}] Failed to register seller {}',
                             request_id, requirements.resource)
            return False

        logger.info('[{}] Registered/updated seller: {}', request_id, requirements.resource)
        return True

    def list_resources(
        self,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        request_id: str = '-',
    ) -> ListDiscoveryResponse:
        limit, offset = clamp_pagination(limit, offset)

        resources: List[DiscoveryResource] = []
        for key in self.store.list(prefix=SELLER_KEY_PREFIX, limit=LIST_SCAN_LIMIT):
            try:
                data = self.store.get_json(key)
                if data:
                    resources.append(DiscoveryResource.model_validate(data))
            except Exception as exc:
                logger.warning('[{}] Failed to parse seller data for {}: {}',
                               request_id, key, exc)

        resources.sort(key=lambda item: _parse_timestamp(item.last_updated), reverse=True)

        return ListDiscoveryResponse(
            x402_version=X402_VERSION,
            items=resources[offset:offset + limit],
            pagination=DiscoveryPagination(
                limit=limit, offset=offset, total=len(resources)),
        )
