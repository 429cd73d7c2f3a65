"""
Token contract client for ERC-3009 reads and ``transferWithAuthorization`` writes.
"""
from __future__ import annotations

from typing import Any, Optional

from hexbytes import HexBytes
from loguru import logger
from web3 import HTTPProvider, Web3

from facilitator.errors import X402FacilitatorError
from facilitator.networks import NetworkConfig
from facilitator.signatures import SignatureKind, classify_signature, split_signature
from facilitator.types import EIP3009Authorization

_AUTHORIZATION_INPUTS = [
    {'name': 'from', 'type': 'address'},
    {'name': 'to', 'type': 'address'},
    {'name': 'value', 'type': 'uint256'},
    {'name': 'validAfter', 'type': 'uint256'},
    {'name': 'validBefore', 'type': 'uint256'},
    {'name': 'nonce', 'type': 'bytes32'},
]

ERC3009_ABI = [
    {
        'inputs': _AUTHORIZATION_INPUTS + [
            {'name': 'v', 'type': 'uint8'},
            {'name': 'r', 'type': 'bytes32'},
            {'name': 's', 'type': 'bytes32'},
        ],
        'name': 'transferWithAuthorization',
        'outputs': [{'name': '', 'type': 'bool'}],
        'stateMutability': 'nonpayable',
        'type': 'function',
    },
    {
        'inputs': _AUTHORIZATION_INPUTS + [
            {'name': 'signature', 'type': 'bytes'},
        ],
        'name': 'transferWithAuthorization',
        'outputs': [{'name': '', 'type': 'bool'}],
        'stateMutability': 'nonpayable',
        'type': 'function',
    },
    {
        'inputs': [{'name': 'account', 'type': 'address'}],
        'name': 'balanceOf',
        'outputs': [{'name': '', 'type': 'uint256'}],
        'stateMutability': 'view',
        'type': 'function',
    },
    {
        'inputs': [
            {'name': 'authorizer', 'type': 'address'},
            {'name': 'nonce', 'type': 'bytes32'},
        ],
        'name': 'authorizationState',
        'outputs': [{'name': '', 'type': 'bool'}],
        'stateMutability': 'view',
        'type': 'function',
    },
]

TRANSFER_VRS_SIGNATURE = (
    'transferWithAuthorization(address,address,uint256,uint256,uint256,bytes32,uint8,bytes32,bytes32)'
)
TRANSFER_BYTES_SIGNATURE = (
    'transferWithAuthorization(address,address,uint256,uint256,uint256,bytes32,bytes)'
)


class TokenClient:
    """Thin wrapper over a web3 contract bound to one token on one network."""

    def __init__(self, web3: Web3, asset: str, chain_id: int):
        self.web3 = web3
        self.chain_id = chain_id
        self.contract = web3.eth.contract(
            address=Web3.to_checksum_address(asset),
            abi=ERC3009_ABI,
        )

    @classmethod
    def connect(
        cls,
        network: NetworkConfig,
        asset: str,
        timeout: Optional[float] = None,
    ) -> 'TokenClient':
        """
        Build a client for ``network``.

        With a ``timeout`` the provider makes a single attempt per call, so
        one read against an unresponsive node is bounded by ``timeout``.
        """
        provider_kwargs: dict = {}
        if timeout:
            provider_kwargs['request_kwargs'] = {'timeout': timeout}
            provider_kwargs['exception_retry_configuration'] = None
        web3 = Web3(HTTPProvider(network.rpc_url, **provider_kwargs))
        return cls(web3, asset, network.chain_id)

    def balance_of(self, owner: str) -> int:
        return int(self.contract.functions.balanceOf(
            Web3.to_checksum_address(owner)).call())

    def authorization_state(self, authorizer: str, nonce: str) -> bool:
        return bool(self.contract.functions.authorizationState(
            Web3.to_checksum_address(authorizer), HexBytes(nonce)).call())

    def _transfer_function(self, authorization: EIP3009Authorization, signature: str):
        args = [
            Web3.to_checksum_address(authorization.from_),
            Web3.to_checksum_address(authorization.to),
            int(authorization.value),
            int(authorization.valid_after),
            int(authorization.valid_before),
            HexBytes(authorization.nonce),
        ]
        if classify_signature(signature) is SignatureKind.COMPACT_RSV:
            v, r, s = split_signature(signature)
            function = self.contract.get_function_by_signature(TRANSFER_VRS_SIGNATURE)
            return function(*args, v, r, s)
        function = self.contract.get_function_by_signature(TRANSFER_BYTES_SIGNATURE)
        return function(*args, HexBytes(signature))

    def transfer_with_authorization(
        self,
        authorization: EIP3009Authorization,
        signature: str,
        private_key: str,
        gas_limit: int = 250000,
        max_fee_per_gas_wei: int = 0,
        max_priority_fee_per_gas_wei: int = 0,
    ) -> str:
        """Sign and broadcast the transfer with the facilitator key; returns the tx hash."""
        if not private_key:
            raise X402FacilitatorError('X402_SIGNER_PRIVATE_KEY is not configured.')

        account = self.web3.eth.account.from_key(private_key)
        signer_address = Web3.to_checksum_address(account.address)
        transfer_fn = self._transfer_function(authorization, signature)

        try:
            estimated_gas = transfer_fn.estimate_gas({'from': signer_address})
        except Exception as exc:
            logger.debug(
                'Gas estimation failed, falling back to configured gas limit: {}', exc)
            estimated_gas = gas_limit

        tx_params = {
            'chainId': self.chain_id,
            'from': signer_address,
            'nonce': self.web3.eth.get_transaction_count(signer_address),
            'gas': max(estimated_gas, gas_limit),
        }
        if max_fee_per_gas_wei and max_priority_fee_per_gas_wei:
            tx_params['maxFeePerGas'] = int(max_fee_per_gas_wei)
            tx_params['maxPriorityFeePerGas'] = int(max_priority_fee_per_gas_wei)
        else:
            tx_params['gasPrice'] = self.web3.eth.gas_price

        transaction = transfer_fn.build_transaction(tx_params)
        signed = self.web3.eth.account.sign_transaction(
            transaction, private_key=private_key)

        raw_tx = getattr(signed, 'raw_transaction', None)
        if raw_tx is None:
            raw_tx = getattr(signed, 'rawTransaction', None)
        if raw_tx is None:
            raise X402FacilitatorError(
                'Signer returned unexpected transaction encoding.')

        tx_hash = self.web3.eth.send_raw_transaction(raw_tx)
        return Web3.to_hex(tx_hash)

    def wait_for_receipt(self, tx_hash: str, timeout: float, poll_latency: float = 0.25) -> Any:
        return self.web3.eth.wait_for_transaction_receipt(
            tx_hash, timeout=timeout, poll_latency=poll_latency)
