"""
Verification pipeline for exact-scheme EVM payments.

Checks run in a fixed order and the first failure wins. Steps up to the
signature check are pure; the nonce ledger lookup and the on-chain reads
follow. On-chain reads are best-effort: only a successful read showing a
problem rejects the payment, errors are logged and ignored.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from django.utils import timezone
from loguru import logger

from facilitator.chain import TokenClient
from facilitator.errors import InvalidReason
from facilitator.networks import NetworkConfig, NetworkRegistry
from facilitator.nonces import NonceLedger
from facilitator.signatures import build_domain, build_typed_data, recover_signer
from facilitator.types import EXACT_SCHEME, PaymentPayload, PaymentRequirements

VALID_BEFORE_MARGIN_SECONDS = 6

TokenClientFactory = Callable[..., TokenClient]


@dataclass
class VerificationResult:
    """Result of payment verification."""
    is_valid: bool
    payer: Optional[str] = None
    invalid_reason: Optional[InvalidReason] = None
    details: Optional[Dict[str, Any]] = None


class CheckOutcome(str, Enum):
    OK = 'ok'
    FAIL = 'fail'
    UNKNOWN = 'unknown'


def _invalid(reason: InvalidReason, payer: Optional[str]) -> VerificationResult:
    return VerificationResult(is_valid=False, payer=payer, invalid_reason=reason)


def current_timestamp() -> int:
    return int(timezone.now().timestamp())


def validate_authorization(
    payload: PaymentPayload,
    requirements: PaymentRequirements,
    registry: NetworkRegistry,
    now: int,
) -> VerificationResult:
    """Run the protocol and signature checks that need no I/O."""
    authorization = payload.authorization
    payer = authorization.from_

    if payload.scheme != EXACT_SCHEME or requirements.scheme != EXACT_SCHEME:
        return _invalid(InvalidReason.UNSUPPORTED_SCHEME, payer)

    network = registry.get(payload.network)
    if network is None:
        return _invalid(InvalidReason.INVALID_NETWORK, payer)

    token = network.find_token(requirements.asset)
    if token is None:
        return _invalid(InvalidReason.INVALID_ASSET_ADDRESS, payer)

    if authorization.to.lower() != requirements.pay_to.lower():
        return _invalid(InvalidReason.RECIPIENT_MISMATCH, payer)

    if int(authorization.valid_before) <= now + VALID_BEFORE_MARGIN_SECONDS:
        return _invalid(InvalidReason.VALID_BEFORE, payer)
    if int(authorization.valid_after) > now:
        return _invalid(InvalidReason.VALID_AFTER, payer)

    if int(authorization.value) < requirements.max_amount:
        return _invalid(InvalidReason.VALUE, payer)

    try:
        domain = build_domain(requirements, network, token)
        recovered = recover_signer(
            build_typed_data(domain, authorization), payload.signature)
    except Exception as exc:
        logger.debug('signature recovery failed for {}: {}', payer, exc)
        return _invalid(InvalidReason.SIGNATURE, payer)

    if recovered.lower() != payer.lower():
        return _invalid(InvalidReason.SIGNATURE, payer)

    return VerificationResult(
        is_valid=True,
        payer=payer,
        details={
            'network': network,
            'token': token,
            'nonce': authorization.nonce,
            'amount': int(authorization.value),
        },
    )


def check_balance(client: TokenClient, owner: str, required: int, request_id: str) -> CheckOutcome:
    try:
        balance = client.balance_of(owner)
    except Exception as exc:
        logger.warning('[{}] balance check failed (non-critical): {}', request_id, exc)
        return CheckOutcome.UNKNOWN
    return CheckOutcome.OK if balance >= required else CheckOutcome.FAIL


def check_authorization_unused(
    client: TokenClient,
    authorizer: str,
    nonce: str,
    request_id: str,
) -> CheckOutcome:
    try:
        used = client.authorization_state(authorizer, nonce)
    except Exception as exc:
        logger.warning(
            '[{}] authorization state check failed (non-critical): {}', request_id, exc)
        return CheckOutcome.UNKNOWN
    return CheckOutcome.FAIL if used else CheckOutcome.OK


def verify_payment(
    payload: PaymentPayload,
    requirements: PaymentRequirements,
    *,
    registry: NetworkRegistry,
    ledger: NonceLedger,
    request_id: str = '-',
    now: Optional[int] = None,
    client_factory: Optional[TokenClientFactory] = None,
    rpc_timeout: Optional[float] = None,
) -> VerificationResult:
    """
    Full verification: pure checks, nonce freshness, then best-effort chain reads.

    Ledger errors propagate to the caller; RPC errors never do.
    """
    if now is None:
        now = current_timestamp()

    result = validate_authorization(payload, requirements, registry, now)
    if not result.is_valid:
        return result

    authorization = payload.authorization
    payer = result.payer
    if ledger.is_used(payload.network, authorization.nonce):
        return _invalid(InvalidReason.NONCE_ALREADY_USED, payer)

    network: NetworkConfig = result.details['network']
    client_factory = client_factory or TokenClient.connect
    try:
        client = client_factory(network, requirements.asset, timeout=rpc_timeout)
    except Exception as exc:
        logger.info('[{}] RPC validation skipped: {}', request_id, exc)
        return result

    if check_balance(client, payer, requirements.max_amount, request_id) is CheckOutcome.FAIL:
        return _invalid(InvalidReason.INSUFFICIENT_FUNDS, payer)

    outcome = check_authorization_unused(client, payer, authorization.nonce, request_id)
    if outcome is CheckOutcome.FAIL:
        return _invalid(InvalidReason.AUTHORIZATION_ALREADY_USED, payer)

    return result
