from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

from django.test import SimpleTestCase, TestCase

from facilitator.discovery import (
    DEBOUNCE_WINDOW,
    SELLER_TTL_SECONDS,
    DiscoveryCatalog,
    clamp_pagination,
    format_timestamp,
    seller_key,
)
from facilitator.storage import DatabaseKeyValueStore
from facilitator.testutils import NETWORK, RESOURCE, PaymentFactory
from facilitator.types import PaymentRequirements

T0 = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


class SellerKeyTests(SimpleTestCase):
    def test_resource_is_percent_encoded(self):
        self.assertEqual(
            seller_key('https://api.example.com/a b?x=1'),
            'seller:https%3A%2F%2Fapi.example.com%2Fa%20b%3Fx%3D1',
        )

    def test_unreserved_characters_survive(self):
        self.assertEqual(seller_key("a-b_c.d~e!f*g'h(i)"), "seller:a-b_c.d~e!f*g'h(i)")

    def test_long_resources_are_truncated(self):
        key = seller_key('https://example.com/' + 'x' * 2000)
        self.assertEqual(len(key), len('seller:') + 512)

    def test_timestamp_format(self):
        self.assertEqual(format_timestamp(T0), '2025-01-01T12:00:00.000Z')


class ClampPaginationTests(SimpleTestCase):
    def test_defaults(self):
        self.assertEqual(clamp_pagination(None, None), (100, 0))

    def test_bounds(self):
        self.assertEqual(clamp_pagination(5000, 10), (1000, 10))
        self.assertEqual(clamp_pagination(-5, -1), (0, 0))


class DiscoveryCatalogTests(TestCase):
    def setUp(self) -> None:
        self.factory = PaymentFactory()
        self.store = Mock(wraps=DatabaseKeyValueStore())
        self.catalog = DiscoveryCatalog(self.store)

    def _requirements(self, **overrides) -> PaymentRequirements:
        return PaymentRequirements.model_validate(self.factory.requirements(**overrides))

    def _entry(self, resource=RESOURCE):
        return self.store.get_json(seller_key(resource))

    def test_first_sighting_creates_entry(self):
        requirements = self._requirements()

        self.assertTrue(self.catalog.register(requirements, NETWORK, now=T0))

        entry = self._entry()
        self.assertEqual(entry['resource'], RESOURCE)
        self.assertEqual(entry['type'], 'http')
        self.assertEqual(entry['x402Version'], 1)
        self.assertEqual(entry['lastUpdated'], '2025-01-01T12:00:00.000Z')
        self.assertEqual(entry['accepts'], [self.factory.requirements()])
        self.store.put_json.assert_called_once_with(
            seller_key(RESOURCE), entry, expiration_ttl=SELLER_TTL_SECONDS)

    def test_writes_within_window_are_debounced(self):
        requirements = self._requirements()
        self.catalog.register(requirements, NETWORK, now=T0)

        for minutes in (1, 30, 59):
            self.assertFalse(self.catalog.register(
                self._requirements(maxAmountRequired='5'), NETWORK,
                now=T0 + timedelta(minutes=minutes)))

        self.assertEqual(self.store.put_json.call_count, 1)
        self.assertEqual(self._entry()['accepts'][0]['maxAmountRequired'], '1000000')

    def test_same_terms_replace_existing_entry(self):
        self.catalog.register(self._requirements(), NETWORK, now=T0)
        later = T0 + DEBOUNCE_WINDOW

        updated = self._requirements(
            maxAmountRequired='2000000', payTo=self.factory.pay_to.lower())
        self.assertTrue(self.catalog.register(updated, NETWORK, now=later))

        entry = self._entry()
        self.assertEqual(len(entry['accepts']), 1)
        self.assertEqual(entry['accepts'][0]['maxAmountRequired'], '2000000')
        self.assertEqual(entry['lastUpdated'], format_timestamp(later))

    def test_new_terms_are_appended(self):
        self.catalog.register(self._requirements(), NETWORK, now=T0)
        other_pay_to = PaymentFactory().pay_to

        self.catalog.register(
            self._requirements(payTo=other_pay_to), NETWORK, now=T0 + timedelta(hours=2))

        accepts = self._entry()['accepts']
        self.assertEqual([item['payTo'] for item in accepts],
                         [self.factory.pay_to, other_pay_to])

    def test_requirements_without_resource_are_skipped(self):
        requirements = self._requirements()
        requirements.resource = None

        self.assertFalse(self.catalog.register(requirements, NETWORK, now=T0))
        self.store.put_json.assert_not_called()

    def test_store_errors_are_swallowed(self):
        self.store.get_json.side_effect = RuntimeError('store down')

        self.assertFalse(self.catalog.register(self._requirements(), NETWORK, now=T0))

    def test_unknown_requirement_fields_round_trip(self):
        requirements = self._requirements(
            outputSchema={'input': {'method': 'GET'}},
            extra={'name': 'Axios USD', 'version': '1'},
            sellerNote='keep me',
        )
        self.catalog.register(requirements, NETWORK, now=T0)

        accepted = self.catalog.list_resources().items[0].accepts[0]

        self.assertEqual(accepted['outputSchema'], {'input': {'method': 'GET'}})
        self.assertEqual(accepted['extra'], {'name': 'Axios USD', 'version': '1'})
        self.assertEqual(accepted['sellerNote'], 'keep me')

    def test_accepts_keep_the_submitted_value_types(self):
        submitted = self.factory.requirements(maxAmountRequired=1000000, maxTimeoutSeconds='60')
        requirements = PaymentRequirements.model_validate(submitted)
        self.catalog.register(requirements, NETWORK, now=T0)

        accepted = self.catalog.list_resources().items[0].accepts[0]

        self.assertEqual(requirements.max_amount_required, '1000000')
        self.assertEqual(accepted, submitted)
        self.assertIsInstance(accepted['maxAmountRequired'], int)
        self.assertIsInstance(accepted['maxTimeoutSeconds'], str)

    def test_list_paginates_newest_first(self):
        for index in range(150):
            self.catalog.register(
                self._requirements(resource=f'https://api.example.com/r/{index:03d}'),
                NETWORK, now=T0 + timedelta(minutes=index))

        page = self.catalog.list_resources(limit=50, offset=100)

        self.assertEqual(page.pagination.total, 150)
        self.assertEqual(page.pagination.limit, 50)
        self.assertEqual(page.pagination.offset, 100)
        self.assertEqual(len(page.items), 50)
        self.assertEqual(page.items[0].resource, 'https://api.example.com/r/049')
        self.assertEqual(page.items[-1].resource, 'https://api.example.com/r/000')

        first = self.catalog.list_resources(limit=5000)
        self.assertEqual(first.pagination.limit, 1000)
        self.assertEqual(first.items[0].resource, 'https://api.example.com/r/149')

    def test_corrupt_entries_are_skipped(self):
        self.catalog.register(self._requirements(), NETWORK, now=T0)
        self.store.put('seller:broken', '{not json')
        self.store.put_json('seller:incomplete', {'accepts': []})
        self.store.put_json('nonce:other', {'status': 'pending'})

        page = self.catalog.list_resources()

        self.assertEqual(page.pagination.total, 1)
        self.assertEqual(page.items[0].resource, RESOURCE)
