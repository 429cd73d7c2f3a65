"""
Nonce ledger: replay protection for settlements.

A missing record means the nonce is unused. Settlement writes ``pending``
before submitting, rewrites ``confirmed`` once the transfer is mined, and
deletes the record on any failure so the payer can retry.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from facilitator.storage import KeyValueStore

PENDING_TTL_SECONDS = 86400
CONFIRMED_TTL_SECONDS = 86400 * 7


class NonceStatus(str, Enum):
    PENDING = 'pending'
    CONFIRMED = 'confirmed'


@dataclass
class NonceRecord:
    status: NonceStatus
    request_id: str
    timestamp: int
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None

    def to_json(self) -> dict:
        data = {
            'status': self.status.value,
            'requestId': self.request_id,
            'timestamp': self.timestamp,
        }
        if self.tx_hash is not None:
            data['txHash'] = self.tx_hash
        if self.block_number is not None:
            data['blockNumber'] = self.block_number
        return data

    @classmethod
    def from_json(cls, data: dict) -> 'NonceRecord':
        return cls(
            status=NonceStatus(data['status']),
            request_id=data.get('requestId', ''),
            timestamp=int(data.get('timestamp', 0)),
            tx_hash=data.get('txHash'),
            block_number=data.get('blockNumber'),
        )


def nonce_key(network: str, nonce: str) -> str:
    return f'nonce:{network}:{nonce.lower()}'


def _now_ms() -> int:
    return int(time.time() * 1000)


class NonceLedger:
    def __init__(self, store: KeyValueStore):
        self.store = store

    def get(self, network: str, nonce: str) -> Optional[NonceRecord]:
        data = self.store.get_json(nonce_key(network, nonce))
        if data is None:
            return None
        return NonceRecord.from_json(data)

    def is_used(self, network: str, nonce: str) -> bool:
        return self.store.get(nonce_key(network, nonce)) is not None

    def mark_pending(self, network: str, nonce: str, request_id: str) -> NonceRecord:
        record = NonceRecord(
            status=NonceStatus.PENDING,
            request_id=request_id,
            timestamp=_now_ms(),
        )
        self.store.put_json(
            nonce_key(network, nonce), record.to_json(),
            expiration_ttl=PENDING_TTL_SECONDS)
        return record

    def mark_confirmed(
        self,
        network: str,
        nonce: str,
        request_id: str,
        tx_hash: str,
        block_number: int,
    ) -> NonceRecord:
        record = NonceRecord(
            status=NonceStatus.CONFIRMED,
            request_id=request_id,
            timestamp=_now_ms(),
            tx_hash=tx_hash,
            block_number=block_number,
        )
        self.store.put_json(
            nonce_key(network, nonce), record.to_json(),
            expiration_ttl=CONFIRMED_TTL_SECONDS)
        return record

    def release(self, network: str, nonce: str) -> None:
        """Delete the record, returning the nonce to ``unused``."""
        self.store.delete(nonce_key(network, nonce))
