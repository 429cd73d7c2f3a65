from dataclasses import FrozenInstanceError

from django.test import SimpleTestCase, override_settings

from facilitator.networks import DEFAULT_NETWORKS, get_network_registry


class NetworkRegistryTests(SimpleTestCase):
    def tearDown(self) -> None:
        get_network_registry.cache_clear()

    def test_token_lookup_is_case_insensitive(self):
        network = DEFAULT_NETWORKS['skale-base-sepolia']
        token = network.find_token('0x61A26022927096F444994DA1E53F0FD9487EAFCF')
        self.assertIsNotNone(token)
        self.assertEqual(token.name, 'Axios USD')
        self.assertIsNone(network.find_token('0x0000000000000000000000000000000000000000'))
        self.assertIsNone(network.find_token(''))

    def test_unknown_network(self):
        self.assertNotIn('base', DEFAULT_NETWORKS)
        self.assertIsNone(DEFAULT_NETWORKS.get('base'))

    def test_registry_is_read_only(self):
        with self.assertRaises(TypeError):
            DEFAULT_NETWORKS['other'] = DEFAULT_NETWORKS['skale-base-sepolia']
        with self.assertRaises(FrozenInstanceError):
            DEFAULT_NETWORKS['skale-base-sepolia'].chain_id = 1

    @override_settings(X402_RPC_URLS={'skale-base-sepolia': 'http://localhost:8545'})
    def test_rpc_override_from_settings(self):
        get_network_registry.cache_clear()
        registry = get_network_registry()
        self.assertEqual(registry['skale-base-sepolia'].rpc_url, 'http://localhost:8545')
        self.assertNotEqual(DEFAULT_NETWORKS['skale-base-sepolia'].rpc_url, 'http://localhost:8545')
        self.assertIs(get_network_registry(), registry)

    def test_as_dict(self):
        data = DEFAULT_NETWORKS['skale-base-sepolia'].as_dict()
        self.assertEqual(data['chainId'], 324705682)
        self.assertEqual(len(data['tokens']), 6)
        self.assertEqual(data['tokens'][1]['forwarderVersion'], None)
