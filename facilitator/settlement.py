"""
Settlement orchestrator: submits a verified authorization on-chain.

Nonce lifecycle per request::

    unused --mark_pending--> pending --receipt ok--> confirmed
                                |
                                +--revert / exception--> unused (record deleted)

The pending record is the replay guard while the transaction is in flight;
its 24h expiry only matters if the process dies mid-settlement.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from django.conf import settings
from loguru import logger

from facilitator.background import BackgroundTaskRunner
from facilitator.chain import TokenClient
from facilitator.discovery import DiscoveryCatalog
from facilitator.errors import InvalidReason
from facilitator.networks import NetworkRegistry
from facilitator.nonces import NonceLedger
from facilitator.types import PaymentPayload, PaymentRequirements
from facilitator.validation import TokenClientFactory, current_timestamp, validate_authorization


@dataclass
class SettlementResult:
    """Result of payment settlement."""
    success: bool
    network: str = ''
    transaction_hash: str = ''
    payer: str = ''
    error_reason: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class SettlementOrchestrator:

    def __init__(
        self,
        registry: NetworkRegistry,
        ledger: NonceLedger,
        *,
        private_key: str,
        catalog: Optional[DiscoveryCatalog] = None,
        runner: Optional[BackgroundTaskRunner] = None,
        client_factory: Optional[TokenClientFactory] = None,
        gas_limit: int = 250000,
        max_fee_per_gas_wei: int = 0,
        max_priority_fee_per_gas_wei: int = 0,
        tx_timeout_seconds: float = 120,
        poll_latency_seconds: float = 0.25,
    ):
        self.registry = registry
        self.ledger = ledger
        self.private_key = private_key
        self.catalog = catalog
        self.runner = runner
        self.client_factory = client_factory
        self.gas_limit = gas_limit
        self.max_fee_per_gas_wei = max_fee_per_gas_wei
        self.max_priority_fee_per_gas_wei = max_priority_fee_per_gas_wei
        self.tx_timeout_seconds = tx_timeout_seconds
        self.poll_latency_seconds = poll_latency_seconds

    @classmethod
    def from_settings(cls, registry: NetworkRegistry, ledger: NonceLedger, **kwargs) -> 'SettlementOrchestrator':
        options = {
            'private_key': getattr(settings, 'X402_SIGNER_PRIVATE_KEY', ''),
            'gas_limit': getattr(settings, 'X402_GAS_LIMIT', 250000),
            'max_fee_per_gas_wei': getattr(settings, 'X402_MAX_FEE_PER_GAS_WEI', 0),
            'max_priority_fee_per_gas_wei': getattr(
                settings, 'X402_MAX_PRIORITY_FEE_PER_GAS_WEI', 0),
            'tx_timeout_seconds': getattr(settings, 'X402_TX_TIMEOUT_SECONDS', 120),
            'poll_latency_seconds': getattr(settings, 'X402_RPC_POLL_INTERVAL_SECONDS', 0.25),
        }
        options.update(kwargs)
        return cls(registry, ledger, **options)

    def settle(
        self,
        payload: PaymentPayload,
        requirements: PaymentRequirements,
        request_id: str = '-',
        now: Optional[int] = None,
    ) -> SettlementResult:
        """
        Settle one authorization.

        Ledger write failures before submission propagate; everything that
        goes wrong after the pending record is written is reported as a
        failed settlement and the nonce is released.
        """
        network_id = payload.network
        authorization = payload.authorization
        payer = authorization.from_
        nonce = authorization.nonce

        record = self.ledger.get(network_id, nonce)
        if record is not None:
            logger.info('[{}] settlement rejected, nonce {} already {} by request {}',
                        request_id, nonce, record.status.value, record.request_id)
            return self._failure(network_id, payer, InvalidReason.NONCE_ALREADY_USED)

        validation = validate_authorization(
            payload, requirements, self.registry,
            current_timestamp() if now is None else now)
        if not validation.is_valid:
            logger.info('[{}] settlement validation failed: {}',
                        request_id, validation.invalid_reason)
            return self._failure(network_id, payer, validation.invalid_reason)

        self.ledger.mark_pending(network_id, nonce, request_id)

        tx_hash = ''
        try:
            client_factory = self.client_factory or TokenClient.connect
            client = client_factory(validation.details['network'], requirements.asset)
            tx_hash = client.transfer_with_authorization(
                authorization,
                payload.signature,
                private_key=self.private_key,
                gas_limit=self.gas_limit,
                max_fee_per_gas_wei=self.max_fee_per_gas_wei,
                max_priority_fee_per_gas_wei=self.max_priority_fee_per_gas_wei,
            )
            logger.info('[{}] Transaction submitted: {}', request_id, tx_hash)
            receipt = client.wait_for_receipt(
                tx_hash, timeout=self.tx_timeout_seconds,
                poll_latency=self.poll_latency_seconds)
        except Exception as exc:
            logger.error('[{}] Settlement failed (tx {}): {}', request_id, tx_hash or '-', exc)
            self._release(network_id, nonce, request_id)
            return self._failure(network_id, payer, str(exc) or InvalidReason.SETTLEMENT_FAILED)

        if receipt['status'] != 1:
            logger.error('[{}] Settlement transaction reverted on-chain: {}', request_id, tx_hash)
            self._release(network_id, nonce, request_id)
            return self._failure(
                network_id, payer, InvalidReason.INVALID_TRANSACTION_STATE, tx_hash)

        block_number = receipt['blockNumber']
        try:
            self.ledger.mark_confirmed(network_id, nonce, request_id, tx_hash, block_number)
        except Exception:
            # Transfer is mined; the pending record keeps blocking replays until it expires.
            logger.exception('[{}] Failed to confirm nonce {} for tx {}',
                             request_id, nonce, tx_hash)

        if self.catalog is not None and self.runner is not None:
            self.runner.submit(
                self.catalog.register, requirements, network_id, request_id,
                label='register_seller')

        logger.info('[{}] Settlement succeeded for nonce {} tx {} block {}',
                    request_id, nonce, tx_hash, block_number)
        return SettlementResult(
            success=True,
            network=network_id,
            transaction_hash=tx_hash,
            payer=payer,
            details={'block': block_number},
        )

    def _release(self, network_id: str, nonce: str, request_id: str) -> None:
        try:
            self.ledger.release(network_id, nonce)
        except Exception:
            logger.exception('[{}] Failed to release nonce {}; it stays pending until expiry',
                             request_id, nonce)

    @staticmethod
    def _failure(network_id: str, payer: str, reason, tx_hash: str = '') -> SettlementResult:
        return SettlementResult(
            success=False,
            network=network_id,
            transaction_hash=tx_hash,
            payer=payer,
            error_reason=str(reason),
        )
