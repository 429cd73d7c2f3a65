from enum import Enum
from typing import Optional


class InvalidReason(str, Enum):
    """Machine-readable reasons returned in ``invalidReason``/``errorReason``."""
    MISSING_PAYLOAD_OR_REQUIREMENTS = 'missing_payload_or_requirements'
    INVALID_PAYLOAD = 'invalid_payload'
    UNSUPPORTED_SCHEME = 'unsupported_scheme'
    INVALID_NETWORK = 'invalid_network'
    INVALID_ASSET_ADDRESS = 'invalid_asset_address'
    RECIPIENT_MISMATCH = 'invalid_exact_evm_payload_recipient_mismatch'
    VALID_BEFORE = 'invalid_exact_evm_payload_authorization_valid_before'
    VALID_AFTER = 'invalid_exact_evm_payload_authorization_valid_after'
    VALUE = 'invalid_exact_evm_payload_authorization_value'
    SIGNATURE = 'invalid_exact_evm_payload_signature'
    NONCE_ALREADY_USED = 'nonce_already_used'
    INSUFFICIENT_FUNDS = 'insufficient_funds'
    AUTHORIZATION_ALREADY_USED = 'authorization_already_used'
    INVALID_TRANSACTION_STATE = 'invalid_transaction_state'
    SETTLEMENT_FAILED = 'settlement_failed'
    INTERNAL_ERROR = 'internal_error'

    def __str__(self) -> str:
        return self.value


class X402FacilitatorError(Exception):
    """Base error for facilitator failures."""


class X402FacilitatorValidationError(X402FacilitatorError):
    """Raised when incoming payload fails validation."""

    def __init__(self, reason: InvalidReason, payer: Optional[str] = None):
        super().__init__(str(reason))
        self.reason = reason
        self.payer = payer
