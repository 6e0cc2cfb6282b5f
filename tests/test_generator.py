"""Crash point generator: tier boundaries and Monte Carlo frequencies."""

import random
import unittest
from decimal import Decimal

from crashxp.engine import generate_crash_point
from helpers import FakeRng

N = 100_000


class TestCrashPointTiers(unittest.TestCase):

    def test_tier_boundaries(self):
        cases = [
            ((0.0, 0.0), "1.01"),
            ((0.49, 0.999), "1.50"),
            ((0.5, 0.0), "1.50"),
            ((0.8, 0.5), "6.50"),
            ((0.95, 0.0), "10.00"),
            ((0.99, 0.5), "30.00"),
        ]
        for rolls, expected in cases:
            with self.subTest(rolls=rolls):
                self.assertEqual(generate_crash_point(FakeRng(rolls)), Decimal(expected))


class TestCrashPointDistribution(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        rng = random.Random(1234)
        cls.samples = [generate_crash_point(rng) for _ in range(N)]

    def test_values_stay_in_range(self):
        self.assertGreaterEqual(min(self.samples), Decimal("1.01"))
        self.assertLess(max(self.samples), Decimal("50.00"))
        for s in self.samples[:1000]:
            self.assertEqual(s, s.quantize(Decimal("0.01")))

    def test_tier_frequencies(self):
        below_3 = sum(1 for s in self.samples if s < Decimal("3.00")) / N
        high = sum(1 for s in self.samples if s >= Decimal("10.00")) / N
        low = sum(1 for s in self.samples if s <= Decimal("1.50")) / N

        self.assertAlmostEqual(below_3, 0.80, delta=0.01)
        self.assertAlmostEqual(high, 0.05, delta=0.005)
        self.assertTrue(0.49 < low < 0.515, low)


if __name__ == "__main__":
    unittest.main()
