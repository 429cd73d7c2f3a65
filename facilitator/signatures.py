"""
EIP-712 helpers for ERC-3009 ``TransferWithAuthorization``.
"""
from __future__ import annotations

from enum import Enum
from typing import Tuple

from eth_account import Account
from eth_account.messages import encode_typed_data
from hexbytes import HexBytes
from web3 import Web3

from facilitator.networks import NetworkConfig, TokenConfig
from facilitator.types import EIP3009Authorization, PaymentRequirements

DEFAULT_DOMAIN_VERSION = '2'

EIP712_DOMAIN_TYPE = [
    {'name': 'name', 'type': 'string'},
    {'name': 'version', 'type': 'string'},
    {'name': 'chainId', 'type': 'uint256'},
    {'name': 'verifyingContract', 'type': 'address'},
]

TRANSFER_WITH_AUTHORIZATION_TYPE = [
    {'name': 'from', 'type': 'address'},
    {'name': 'to', 'type': 'address'},
    {'name': 'value', 'type': 'uint256'},
    {'name': 'validAfter', 'type': 'uint256'},
    {'name': 'validBefore', 'type': 'uint256'},
    {'name': 'nonce', 'type': 'bytes32'},
]

COMPACT_SIGNATURE_HEX_LENGTH = 130


class SignatureKind(str, Enum):
    COMPACT_RSV = 'compact-rsv'
    PACKED = 'packed'


def _strip_hex_prefix(value: str) -> str:
    return value[2:] if value[:2].lower() == '0x' else value


def classify_signature(signature: str) -> SignatureKind:
    """65-byte signatures go to the ``(v, r, s)`` overload, anything else is passed as bytes."""
    if len(_strip_hex_prefix(signature)) == COMPACT_SIGNATURE_HEX_LENGTH:
        return SignatureKind.COMPACT_RSV
    return SignatureKind.PACKED


def split_signature(signature: str) -> Tuple[int, bytes, bytes]:
    """Split a 65-byte signature into ``(v, r, s)``."""
    signature_bytes = HexBytes(signature)
    if len(signature_bytes) != 65:
        raise ValueError('Signature must be 65 bytes')
    r = signature_bytes[:32]
    s = signature_bytes[32:64]
    v = signature_bytes[64]
    if v < 27:
        v += 27
    return int(v), bytes(r), bytes(s)


def build_domain(
    requirements: PaymentRequirements,
    network: NetworkConfig,
    token: TokenConfig,
) -> dict:
    """
    Build the EIP-712 domain for a token.

    ``extra.name``/``extra.version`` in the requirements take precedence over
    the registry defaults.
    """
    return {
        'name': requirements.extra_value('name') or token.name,
        'version': (
            requirements.extra_value('version')
            or token.forwarder_version
            or DEFAULT_DOMAIN_VERSION
        ),
        'chainId': network.chain_id,
        'verifyingContract': Web3.to_checksum_address(requirements.asset),
    }


def build_typed_data(domain: dict, authorization: EIP3009Authorization) -> dict:
    return {
        'types': {
            'EIP712Domain': EIP712_DOMAIN_TYPE,
            'TransferWithAuthorization': TRANSFER_WITH_AUTHORIZATION_TYPE,
        },
        'primaryType': 'TransferWithAuthorization',
        'domain': domain,
        'message': {
            'from': Web3.to_checksum_address(authorization.from_),
            'to': Web3.to_checksum_address(authorization.to),
            'value': int(authorization.value),
            'validAfter': int(authorization.valid_after),
            'validBefore': int(authorization.valid_before),
            'nonce': HexBytes(authorization.nonce),
        },
    }


def recover_signer(typed_data: dict, signature: str) -> str:
    """Return the checksum address that produced ``signature``; raises on malformed input."""
    signable = encode_typed_data(full_message=typed_data)
    recovered = Account.recover_message(signable, signature=signature)
    return Web3.to_checksum_address(recovered)
