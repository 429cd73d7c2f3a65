"""
Network and token registry for the exact EVM scheme.
"""
from dataclasses import dataclass, field, replace
from functools import lru_cache
from types import MappingProxyType
from typing import Dict, Iterator, Mapping, Optional, Tuple

from django.conf import settings


@dataclass(frozen=True)
class TokenConfig:
    """An accepted ERC-3009 token and its EIP-712 domain defaults."""
    address: str
    name: str
    forwarder: Optional[str] = None
    forwarder_name: Optional[str] = None
    forwarder_version: Optional[str] = None

    def as_dict(self) -> Dict[str, Optional[str]]:
        return {
            'address': self.address,
            'name': self.name,
            'forwarder': self.forwarder,
            'forwarderName': self.forwarder_name,
            'forwarderVersion': self.forwarder_version,
        }


@dataclass(frozen=True)
class NetworkConfig:
    id: str
    chain_id: int
    name: str
    rpc_url: str
    tokens: Tuple[TokenConfig, ...] = field(default_factory=tuple)

    def find_token(self, address: str) -> Optional[TokenConfig]:
        """Return the token configured at ``address`` (case-insensitive)."""
        if not address:
            return None
        address_lower = address.lower()
        for token in self.tokens:
            if token.address.lower() == address_lower:
                return token
        return None

    def as_dict(self) -> dict:
        return {
            'id': self.id,
            'chainId': self.chain_id,
            'name': self.name,
            'tokens': [token.as_dict() for token in self.tokens],
        }


class NetworkRegistry(Mapping):
    """Read-only mapping of network id to :class:`NetworkConfig`."""

    def __init__(self, networks: Mapping[str, NetworkConfig]):
        self._networks = MappingProxyType(dict(networks))

    def __getitem__(self, network: str) -> NetworkConfig:
        return self._networks[network]

    def __iter__(self) -> Iterator[str]:
        return iter(self._networks)

    def __len__(self) -> int:
        return len(self._networks)

    def with_rpc_overrides(self, rpc_urls: Mapping[str, str]) -> 'NetworkRegistry':
        """Return a new registry with RPC endpoints replaced where configured."""
        networks = {
            network_id: replace(config, rpc_url=rpc_urls[network_id])
            if rpc_urls.get(network_id) else config
            for network_id, config in self._networks.items()
        }
        return NetworkRegistry(networks)


def _forwarded_token(address: str, name: str) -> TokenConfig:
    return TokenConfig(
        address=address,
        name=name,
        forwarder=address,
        forwarder_name=name,
        forwarder_version='1',
    )


DEFAULT_NETWORKS = NetworkRegistry({
    'skale-base-sepolia': NetworkConfig(
        id='skale-base-sepolia',
        chain_id=324705682,
        name='SKALE Base Sepolia',
        rpc_url='https://base-sepolia-testnet.skalenodes.com/v1/jubilant-horrible-ancha',
        tokens=(
            _forwarded_token('0x61a26022927096f444994dA1e53F0FD9487EAfcf', 'Axios USD'),
            TokenConfig(
                address='0x2e08028E3C4c2356572E096d8EF835cD5C6030bD',
                name='Bridged USDC (SKALE Bridge)',
            ),
            _forwarded_token('0x3ca0a49f511c2c89c4dcbbf1731120d8919050bf', 'Tether USD'),
            _forwarded_token('0x4512eacd4186b025186e1cf6cc0d89497c530e87', 'Wrapped BTC'),
            _forwarded_token('0xf94056bd7f6965db3757e1b145f200b7346b4fc0', 'Wrapped Ether'),
            _forwarded_token('0xaf2e0ff5b5f51553fdb34ce7f04a6c3201cee57b', 'Skale Token'),
        ),
    ),
})


@lru_cache(maxsize=1)
def get_network_registry() -> NetworkRegistry:
    """Build the process-wide registry once from settings."""
    rpc_urls = getattr(settings, 'X402_RPC_URLS', None) or {}
    return DEFAULT_NETWORKS.with_rpc_overrides(rpc_urls)
