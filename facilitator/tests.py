import json
from unittest.mock import Mock, patch

from django.test import TestCase, override_settings
from django.urls import reverse

from facilitator.background import BackgroundTaskRunner
from facilitator.chain import TokenClient
from facilitator.discovery import seller_key
from facilitator.storage import DatabaseKeyValueStore
from facilitator.testutils import NETWORK, RESOURCE, PaymentFactory

TX_HASH = '0x' + 'cd' * 32


class FacilitatorViewTests(TestCase):
    def setUp(self) -> None:
        self.factory = PaymentFactory()

        overrides = override_settings(
            X402_SIGNER_PRIVATE_KEY='0x' + '01' * 32,
            X402_TX_TIMEOUT_SECONDS=10,
        )
        overrides.enable()
        self.addCleanup(overrides.disable)

        runner_patch = patch(
            'facilitator.views.get_background_runner',
            return_value=BackgroundTaskRunner(inline=True),
        )
        runner_patch.start()
        self.addCleanup(runner_patch.stop)

        self.client_mock = Mock()
        self.client_mock.balance_of.return_value = 10 ** 12
        self.client_mock.authorization_state.return_value = False
        self.client_mock.transfer_with_authorization.return_value = TX_HASH
        self.client_mock.wait_for_receipt.return_value = {'status': 1, 'blockNumber': 7}
        connect_patch = patch.object(TokenClient, 'connect', return_value=self.client_mock)
        self.connect_mock = connect_patch.start()
        self.addCleanup(connect_patch.stop)

    def _post(self, name: str, body):
        data = body if isinstance(body, str) else json.dumps(body)
        return self.client.post(reverse(f'facilitator:{name}'), data=data,
                                content_type='application/json')

    def test_health(self):
        response = self.client.get('/health')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {'status': 'ok'})

    def test_capabilities(self):
        response = self.client.get(reverse('facilitator:capabilities'))

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data['name'], 'x402 Facilitator')
        self.assertEqual(data['schemes'], ['exact'])
        self.assertEqual(data['networks'][0]['id'], NETWORK)
        self.assertEqual(data['networks'][0]['chainId'], 324705682)
        self.assertEqual(len(data['networks'][0]['tokens']), 6)

    def test_supported(self):
        response = self.client.get(reverse('facilitator:supported'))
        self.assertEqual(response.json(), {
            'kinds': [{'x402Version': 1, 'scheme': 'exact', 'network': NETWORK}],
        })

    def test_request_id_is_echoed(self):
        response = self.client.get('/supported', HTTP_X_REQUEST_ID='req-42')
        self.assertEqual(response['X-Request-ID'], 'req-42')

        generated = self.client.get('/supported')
        self.assertTrue(generated['X-Request-ID'])

    def test_verify_accepts_valid_payment_and_registers_seller(self):
        response = self._post('verify', self.factory.request_body())

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {
            'isValid': True,
            'payer': self.factory.payer.address,
        })
        entry = DatabaseKeyValueStore().get_json(seller_key(RESOURCE))
        self.assertEqual(entry['resource'], RESOURCE)

    def test_verify_does_not_consume_nonce(self):
        body = self.factory.request_body()

        self.assertTrue(self._post('verify', body).json()['isValid'])
        self.assertTrue(self._post('verify', body).json()['isValid'])

    def test_verify_survives_unreachable_rpc(self):
        self.connect_mock.side_effect = ConnectionError('rpc down')

        response = self._post('verify', self.factory.request_body())

        self.assertTrue(response.json()['isValid'])

    def test_verify_reports_insufficient_funds(self):
        self.client_mock.balance_of.return_value = 1

        response = self._post('verify', self.factory.request_body())

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {
            'isValid': False,
            'invalidReason': 'insufficient_funds',
            'payer': self.factory.payer.address,
        })
        self.assertIsNone(DatabaseKeyValueStore().get(seller_key(RESOURCE)))

    def test_verify_missing_fields(self):
        response = self._post('verify', {'x402Version': 1, 'paymentPayload': {}})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {
            'isValid': False,
            'invalidReason': 'missing_payload_or_requirements',
        })

    def test_verify_malformed_payload(self):
        body = self.factory.request_body()
        body['paymentPayload']['payload']['authorization']['value'] = 'lots'

        response = self._post('verify', body)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {
            'isValid': False,
            'invalidReason': 'invalid_payload',
            'payer': self.factory.payer.address,
        })

    def test_verify_malformed_json(self):
        response = self._post('verify', '{not json')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['invalidReason'], 'invalid_payload')

    def test_verify_store_failure_is_internal_error(self):
        with patch('facilitator.views.get_store', side_effect=RuntimeError('db down')):
            response = self._post('verify', self.factory.request_body())

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {'isValid': False, 'invalidReason': 'internal_error'})

    def test_settle_then_replay(self):
        body = self.factory.request_body()

        response = self._post('settle', body)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {
            'success': True,
            'transaction': TX_HASH,
            'network': NETWORK,
            'payer': self.factory.payer.address,
        })
        self.client_mock.wait_for_receipt.assert_called_once_with(
            TX_HASH, timeout=10, poll_latency=0.25)

        replay = self._post('settle', body)
        self.assertEqual(replay.status_code, 200)
        self.assertEqual(replay.json()['errorReason'], 'nonce_already_used')
        self.assertEqual(replay.json()['transaction'], '')

        verify = self._post('verify', body)
        self.assertEqual(verify.json()['invalidReason'], 'nonce_already_used')

    def test_settle_reverted_transaction(self):
        self.client_mock.wait_for_receipt.return_value = {'status': 0, 'blockNumber': 7}

        response = self._post('settle', self.factory.request_body())

        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()['success'])
        self.assertEqual(response.json()['errorReason'], 'invalid_transaction_state')
        self.assertEqual(response.json()['transaction'], TX_HASH)

    def test_settle_missing_fields(self):
        response = self._post('settle', {})
        self.assertEqual(response.json(), {
            'success': False,
            'transaction': '',
            'network': '',
            'payer': '',
            'errorReason': 'missing_payload_or_requirements',
        })

    def test_settle_store_failure_is_internal_error(self):
        with patch('facilitator.views.get_store', side_effect=RuntimeError('db down')):
            response = self._post('settle', self.factory.request_body())

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()['errorReason'], 'internal_error')
        self.assertFalse(response.json()['success'])

    def test_discovery_lists_settled_resources(self):
        self._post('settle', self.factory.request_body())

        response = self.client.get(reverse('facilitator:discovery-resources'),
                                   {'limit': '10', 'offset': 'abc'})

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data['x402Version'], 1)
        self.assertEqual(data['pagination'], {'limit': 10, 'offset': 0, 'total': 1})
        self.assertEqual(data['items'][0]['resource'], RESOURCE)
        self.assertEqual(data['items'][0]['accepts'][0]['payTo'], self.factory.pay_to)

    def test_discovery_store_failure(self):
        with patch('facilitator.views.get_store', side_effect=RuntimeError('db down')):
            response = self.client.get(reverse('facilitator:discovery-resources'))

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {
            'x402Version': 1,
            'items': [],
            'pagination': {'limit': 0, 'offset': 0, 'total': 0},
        })

    def test_list_redirects_to_discovery(self):
        response = self.client.get('/list?limit=5&offset=10')

        self.assertEqual(response.status_code, 302)
        self.assertEqual(response['Location'], '/discovery/resources?limit=5&offset=10')
