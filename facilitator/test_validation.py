import time
from dataclasses import replace
from unittest.mock import Mock

from django.test import SimpleTestCase

from facilitator.errors import InvalidReason
from facilitator.networks import DEFAULT_NETWORKS
from facilitator.testutils import ASSET, NETWORK, PaymentFactory, SilentRPCServer
from facilitator.types import PaymentPayload, PaymentRequirements
from facilitator.validation import (
    CheckOutcome,
    check_authorization_unused,
    check_balance,
    validate_authorization,
    verify_payment,
)

NOW = 1_700_000_000


class ValidateAuthorizationTests(SimpleTestCase):
    def setUp(self) -> None:
        self.factory = PaymentFactory()

    def _models(self, requirements=None, signature=None, payload_overrides=None, **auth_overrides):
        requirements = requirements or self.factory.requirements()
        authorization = self.factory.authorization(now=NOW, **auth_overrides)
        if signature is None:
            signature = self.factory.sign(authorization, requirements)
        payload = self.factory.payment_payload(authorization, signature)
        payload.update(payload_overrides or {})
        return (
            PaymentPayload.model_validate(payload),
            PaymentRequirements.model_validate(requirements),
        )

    def _validate(self, *args, **kwargs):
        payload, requirements = self._models(*args, **kwargs)
        return validate_authorization(payload, requirements, DEFAULT_NETWORKS, NOW)

    def test_valid_authorization(self):
        result = self._validate()

        self.assertTrue(result.is_valid)
        self.assertEqual(result.payer, self.factory.payer.address)
        self.assertIsNone(result.invalid_reason)

    def test_rejects_unsupported_scheme_on_payload(self):
        result = self._validate(payload_overrides={'scheme': 'upto'})
        self.assertEqual(result.invalid_reason, InvalidReason.UNSUPPORTED_SCHEME)
        self.assertEqual(result.payer, self.factory.payer.address)

    def test_rejects_unsupported_scheme_on_requirements(self):
        result = self._validate(requirements=self.factory.requirements(scheme='upto'))
        self.assertEqual(result.invalid_reason, InvalidReason.UNSUPPORTED_SCHEME)

    def test_rejects_unknown_network(self):
        result = self._validate(payload_overrides={'network': 'base-mainnet'})
        self.assertEqual(result.invalid_reason, InvalidReason.INVALID_NETWORK)

    def test_rejects_unknown_asset(self):
        requirements = self.factory.requirements(
            asset='0x0000000000000000000000000000000000000001')
        result = self._validate(requirements=requirements, signature='0x00')
        self.assertEqual(result.invalid_reason, InvalidReason.INVALID_ASSET_ADDRESS)

    def test_asset_match_is_case_insensitive(self):
        requirements = self.factory.requirements(asset=ASSET.lower())
        result = self._validate(requirements=requirements)
        self.assertTrue(result.is_valid)

    def test_rejects_recipient_mismatch_before_timing(self):
        result = self._validate(
            to='0x000000000000000000000000000000000000dEaD',
            validBefore=str(NOW - 100),
        )
        self.assertEqual(result.invalid_reason, InvalidReason.RECIPIENT_MISMATCH)

    def test_valid_before_boundary_is_strict(self):
        result = self._validate(validBefore=str(NOW + 6))
        self.assertEqual(result.invalid_reason, InvalidReason.VALID_BEFORE)

        result = self._validate(validBefore=str(NOW + 7))
        self.assertTrue(result.is_valid)

    def test_rejects_not_yet_valid(self):
        result = self._validate(validAfter=str(NOW + 1))
        self.assertEqual(result.invalid_reason, InvalidReason.VALID_AFTER)

    def test_valid_after_equal_to_now_is_accepted(self):
        result = self._validate(validAfter=str(NOW))
        self.assertTrue(result.is_valid)

    def test_rejects_insufficient_value(self):
        result = self._validate(value='999999')
        self.assertEqual(result.invalid_reason, InvalidReason.VALUE)

    def test_value_comparison_is_exact_above_float_precision(self):
        required = 2 ** 53 + 1
        requirements = self.factory.requirements(maxAmountRequired=str(required))

        result = self._validate(requirements=requirements, value=str(2 ** 53))
        self.assertEqual(result.invalid_reason, InvalidReason.VALUE)

        result = self._validate(requirements=requirements, value=str(required))
        self.assertTrue(result.is_valid)

    def test_rejects_signature_from_other_account(self):
        requirements = self.factory.requirements()
        authorization = self.factory.authorization(now=NOW)
        other = PaymentFactory(pay_to=self.factory.pay_to)
        signature = self.factory.sign(authorization, requirements, account=other.payer)
        payload = PaymentPayload.model_validate(
            self.factory.payment_payload(authorization, signature))

        result = validate_authorization(
            payload, PaymentRequirements.model_validate(requirements), DEFAULT_NETWORKS, NOW)

        self.assertEqual(result.invalid_reason, InvalidReason.SIGNATURE)

    def test_malformed_signature_is_reported_not_raised(self):
        result = self._validate(signature='0xnothex')
        self.assertEqual(result.invalid_reason, InvalidReason.SIGNATURE)

    def test_domain_version_override_changes_outcome(self):
        requirements = self.factory.requirements(extra={'name': 'Axios USD', 'version': '1'})
        authorization = self.factory.authorization(now=NOW)
        signature = self.factory.sign(authorization, requirements)
        payload = PaymentPayload.model_validate(
            self.factory.payment_payload(authorization, signature))

        signed_domain = validate_authorization(
            payload, PaymentRequirements.model_validate(requirements), DEFAULT_NETWORKS, NOW)
        self.assertTrue(signed_domain.is_valid)

        requirements['extra'] = {'name': 'Axios USD', 'version': '2'}
        other_domain = validate_authorization(
            payload, PaymentRequirements.model_validate(requirements), DEFAULT_NETWORKS, NOW)
        self.assertEqual(other_domain.invalid_reason, InvalidReason.SIGNATURE)


class VerifyPaymentTests(SimpleTestCase):
    def setUp(self) -> None:
        self.factory = PaymentFactory()
        body = self.factory.request_body(now=NOW)
        self.payload = PaymentPayload.model_validate(body['paymentPayload'])
        self.requirements = PaymentRequirements.model_validate(body['paymentRequirements'])
        self.ledger = Mock()
        self.ledger.is_used.return_value = False
        self.client = Mock()
        self.client.balance_of.return_value = 5_000_000
        self.client.authorization_state.return_value = False

    def _verify(self, client_factory=None):
        return verify_payment(
            self.payload,
            self.requirements,
            registry=DEFAULT_NETWORKS,
            ledger=self.ledger,
            now=NOW,
            client_factory=client_factory or Mock(return_value=self.client),
            rpc_timeout=5,
        )

    def test_valid_payment(self):
        factory = Mock(return_value=self.client)
        result = self._verify(factory)

        self.assertTrue(result.is_valid)
        factory.assert_called_once_with(
            DEFAULT_NETWORKS['skale-base-sepolia'], self.requirements.asset, timeout=5)

    def test_rejects_used_nonce_before_chain_reads(self):
        self.ledger.is_used.return_value = True
        factory = Mock(return_value=self.client)

        result = self._verify(factory)

        self.assertEqual(result.invalid_reason, InvalidReason.NONCE_ALREADY_USED)
        self.ledger.is_used.assert_called_once_with(
            'skale-base-sepolia', self.payload.authorization.nonce)
        factory.assert_not_called()

    def test_invalid_signature_skips_ledger(self):
        self.payload.payload.signature = '0x' + '11' * 65
        result = self._verify()
        self.assertEqual(result.invalid_reason, InvalidReason.SIGNATURE)
        self.ledger.is_used.assert_not_called()

    def test_confirmed_low_balance_rejects(self):
        self.client.balance_of.return_value = 10
        result = self._verify()
        self.assertEqual(result.invalid_reason, InvalidReason.INSUFFICIENT_FUNDS)

    def test_confirmed_used_authorization_rejects(self):
        self.client.authorization_state.return_value = True
        result = self._verify()
        self.assertEqual(result.invalid_reason, InvalidReason.AUTHORIZATION_ALREADY_USED)

    def test_rpc_errors_do_not_fail_verification(self):
        self.client.balance_of.side_effect = TimeoutError('rpc timeout')
        self.client.authorization_state.side_effect = ConnectionError('unreachable')

        result = self._verify()

        self.assertTrue(result.is_valid)

    def test_client_construction_failure_skips_chain_checks(self):
        result = self._verify(Mock(side_effect=ValueError('bad rpc url')))
        self.assertTrue(result.is_valid)

    def test_ledger_errors_propagate(self):
        self.ledger.is_used.side_effect = RuntimeError('store down')
        with self.assertRaises(RuntimeError):
            self._verify()


class OnChainCheckTests(SimpleTestCase):
    def test_balance_outcomes(self):
        client = Mock()
        client.balance_of.return_value = 100
        self.assertEqual(check_balance(client, '0xabc', 100, 'r'), CheckOutcome.OK)
        self.assertEqual(check_balance(client, '0xabc', 101, 'r'), CheckOutcome.FAIL)
        client.balance_of.side_effect = OSError('down')
        self.assertEqual(check_balance(client, '0xabc', 1, 'r'), CheckOutcome.UNKNOWN)

    def test_authorization_state_outcomes(self):
        client = Mock()
        client.authorization_state.return_value = False
        self.assertEqual(check_authorization_unused(client, '0xabc', '0x01', 'r'), CheckOutcome.OK)
        client.authorization_state.return_value = True
        self.assertEqual(check_authorization_unused(client, '0xabc', '0x01', 'r'), CheckOutcome.FAIL)
        client.authorization_state.side_effect = TimeoutError()
        self.assertEqual(
            check_authorization_unused(client, '0xabc', '0x01', 'r'), CheckOutcome.UNKNOWN)


class UnresponsiveNodeVerificationTests(SimpleTestCase):
    def test_verification_degrades_within_rpc_timeout(self):
        server = SilentRPCServer()
        self.addCleanup(server.close)
        registry = {NETWORK: replace(DEFAULT_NETWORKS[NETWORK], rpc_url=server.url)}
        body = PaymentFactory().request_body()
        ledger = Mock()
        ledger.is_used.return_value = False

        started = time.monotonic()
        result = verify_payment(
            PaymentPayload.model_validate(body['paymentPayload']),
            PaymentRequirements.model_validate(body['paymentRequirements']),
            registry=registry,
            ledger=ledger,
            rpc_timeout=1,
        )
        elapsed = time.monotonic() - started

        self.assertTrue(result.is_valid)
        self.assertLess(elapsed, 4)
        self.assertLessEqual(len(server.connections), 2)
