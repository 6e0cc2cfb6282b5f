"""Reward tables, weighted draws and shop catalogs."""

import random
import unittest
from collections import Counter
from decimal import Decimal

from crashxp.errors import ConfigurationError
from crashxp.rewards import (
    BOOST_CATALOG,
    MYSTERY_BOX,
    BoostReward,
    CosmeticReward,
    Rarity,
    XPReward,
    draw_reward,
    lookup_boost,
    lookup_cosmetic,
)
from helpers import FakeRng

# chi-square critical value, df=3, p=0.001
CHI2_CRITICAL = 16.27


class TestDrawReward(unittest.TestCase):

    def test_mystery_box_matches_weights(self):
        rng = random.Random(2024)
        n = 100_000
        counts = Counter(draw_reward(MYSTERY_BOX, rng) for _ in range(n))

        total = sum(r.weight for r in MYSTERY_BOX)
        chi2 = 0.0
        for reward in MYSTERY_BOX:
            expected = n * reward.weight / total
            chi2 += (counts[reward] - expected) ** 2 / expected
        self.assertLess(chi2, CHI2_CRITICAL)

    def test_first_matching_span_wins(self):
        table = (
            XPReward(1, 1, Rarity.COMMON, "a"),
            XPReward(2, 1, Rarity.COMMON, "b"),
        )
        self.assertEqual(draw_reward(table, FakeRng([0.0])).amount, 1)
        self.assertEqual(draw_reward(table, FakeRng([0.49])).amount, 1)
        self.assertEqual(draw_reward(table, FakeRng([0.5])).amount, 2)

    def test_roll_past_total_falls_back_to_first(self):
        self.assertIs(draw_reward(MYSTERY_BOX, FakeRng([1.0])), MYSTERY_BOX[0])

    def test_empty_table(self):
        with self.assertRaises(ConfigurationError):
            draw_reward(())


class TestCatalogs(unittest.TestCase):

    def test_mystery_box_contents(self):
        kinds = Counter(type(r) for r in MYSTERY_BOX)
        self.assertEqual(kinds, {XPReward: 2, CosmeticReward: 1, BoostReward: 1})
        boost = next(r for r in MYSTERY_BOX if isinstance(r, BoostReward))
        self.assertEqual(boost.value, Decimal("1.1"))
        self.assertEqual(boost.duration_seconds, 600)

    def test_lookups(self):
        self.assertIs(lookup_boost("3x_hour"), BOOST_CATALOG["3x_hour"])
        self.assertTrue(lookup_cosmetic("diamond_ring").premium)
        self.assertEqual(lookup_cosmetic("golden_ring").price_xp, 500)
        with self.assertRaises(ConfigurationError):
            lookup_boost("10x_forever")
        with self.assertRaises(ConfigurationError):
            lookup_cosmetic("nope")


if __name__ == "__main__":
    unittest.main()
