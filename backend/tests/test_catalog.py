import unittest
from unittest import mock

from jobcredits.core.errors import GatewayNotConfigured, InvalidSelection
from jobcredits.core.settings import settings
from jobcredits.models.credit_unit import CreditType
from jobcredits.services import catalog


class TestCatalog(unittest.TestCase):
    def test_pack_lookup_normalises_keys(self):
        self.assertEqual(catalog.get_pack("Five-Credits").key, "five_credits")
        self.assertEqual(catalog.get_pack(" pro ").featured_post_credits, 2)

    def test_unknown_pack(self):
        with self.assertRaises(InvalidSelection):
            catalog.get_pack("enterprise")
        with self.assertRaises(InvalidSelection):
            catalog.get_pack(None)

    def test_credit_packs_require_subscription_tiers_do_not(self):
        self.assertTrue(catalog.get_pack("single_credit").requires_subscription)
        self.assertFalse(catalog.get_pack("starter").requires_subscription)

    def test_pack_credit_counts(self):
        counts = catalog.get_pack("pro").credit_counts()
        self.assertEqual(counts[CreditType.JOB_POST], 10)
        self.assertEqual(counts[CreditType.FEATURED_POST], 2)
        self.assertTrue(all(p.expiration_days == 30 for p in catalog.list_packs()))

    def test_add_on_by_slug(self):
        add_on = catalog.get_add_on("feature-and-social-bundle")
        self.assertEqual(add_on.key, "feature_and_social_bundle")
        self.assertTrue(add_on.effect.featured and add_on.effect.social_push)

    def test_upsell_bundle_implies_both(self):
        flags, items = catalog.resolve_upsell_selection(
            social_media_shoutout=False, placement_bump=False, upsell_bundle=True
        )
        self.assertEqual(items, ["upsell_bundle"])
        self.assertTrue(flags["social_media_shoutout"] and flags["placement_bump"])
        self.assertEqual(catalog.upsell_total_cents(items), 5000)

    def test_empty_upsell_selection(self):
        with self.assertRaises(InvalidSelection):
            catalog.resolve_upsell_selection(social_media_shoutout=False, placement_bump=False, upsell_bundle=False)

    def test_gateway_price_id_comes_from_settings(self):
        with mock.patch.object(settings, "stripe_price_ids", {"starter": "price_abc"}):
            self.assertEqual(catalog.gateway_price_id("starter"), "price_abc")
            with self.assertRaises(GatewayNotConfigured):
                catalog.gateway_price_id("pro")

    def test_snapshot_lists_everything(self):
        snap = catalog.catalog_snapshot()
        self.assertEqual({p["key"] for p in snap["packs"]}, set(catalog.CREDIT_PACKS))
        self.assertEqual(len(snap["add_ons"]), 3)
        self.assertEqual(len(snap["upsells"]), 3)


if __name__ == "__main__":
    unittest.main()
