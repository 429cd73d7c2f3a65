"""Helpers for building signed ERC-3009 payloads in tests."""
import os
import socket
import threading
import time
from typing import Optional

from eth_account import Account
from eth_account.messages import encode_typed_data
from web3 import Web3

from facilitator.networks import DEFAULT_NETWORKS
from facilitator.signatures import build_domain, build_typed_data
from facilitator.types import EIP3009Authorization, PaymentRequirements

NETWORK = 'skale-base-sepolia'
# Axios USD: forwarder domain version '1'
ASSET = '0x61a26022927096f444994dA1e53F0FD9487EAfcf'
RESOURCE = 'https://api.example.com/weather'


class PaymentFactory:
    def __init__(self, payer: Optional[Account] = None, pay_to: Optional[str] = None):
        self.payer = payer or Account.create()
        self.pay_to = pay_to or Account.create().address

    def requirements(self, **overrides) -> dict:
        data = {
            'scheme': 'exact',
            'network': NETWORK,
            'maxAmountRequired': '1000000',
            'resource': RESOURCE,
            'description': 'Weather report',
            'mimeType': 'application/json',
            'payTo': self.pay_to,
            'maxTimeoutSeconds': 60,
            'asset': ASSET,
        }
        data.update(overrides)
        return data

    def authorization(self, now: Optional[int] = None, **overrides) -> dict:
        now = int(time.time()) if now is None else now
        data = {
            'from': self.payer.address,
            'to': self.pay_to,
            'value': '1000000',
            'validAfter': str(now - 60),
            'validBefore': str(now + 600),
            'nonce': Web3.to_hex(os.urandom(32)),
        }
        data.update(overrides)
        return data

    def sign(self, authorization: dict, requirements: dict, account: Optional[Account] = None) -> str:
        reqs = PaymentRequirements.model_validate(requirements)
        network = DEFAULT_NETWORKS[reqs.network]
        token = network.find_token(reqs.asset)
        domain = build_domain(reqs, network, token)
        typed_data = build_typed_data(
            domain, EIP3009Authorization.model_validate(authorization))
        signed = (account or self.payer).sign_message(
            encode_typed_data(full_message=typed_data))
        return Web3.to_hex(signed.signature)

    def payment_payload(self, authorization: dict, signature: str, network: str = NETWORK) -> dict:
        return {
            'x402Version': 1,
            'scheme': 'exact',
            'network': network,
            'payload': {
                'signature': signature,
                'authorization': authorization,
            },
        }

    def request_body(
        self,
        requirements: Optional[dict] = None,
        now: Optional[int] = None,
        **authorization_overrides,
    ) -> dict:
        requirements = requirements or self.requirements()
        authorization = self.authorization(now=now, **authorization_overrides)
        signature = self.sign(authorization, requirements)
        return {
            'x402Version': 1,
            'paymentPayload': self.payment_payload(authorization, signature),
            'paymentRequirements': requirements,
        }


class SilentRPCServer:
    """TCP endpoint that accepts connections and never answers."""

    def __init__(self):
        self._socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._socket.bind(('127.0.0.1', 0))
        self._socket.listen(16)
        self.connections = []
        self._thread = threading.Thread(target=self._accept, daemon=True)
        self._thread.start()

    @property
    def url(self) -> str:
        host, port = self._socket.getsockname()
        return f'http://{host}:{port}'

    def _accept(self) -> None:
        while True:
            try:
                connection, _ = self._socket.accept()
            except OSError:
                return
            self.connections.append(connection)

    def close(self) -> None:
        for connection in self.connections:
            connection.close()
        try:
            self._socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self._socket.close()
