import os
import unittest
from datetime import date, datetime
from decimal import Decimal
from unittest import mock

from crashxp.config import env_flag
from crashxp.errors import InsufficientXPError
from crashxp.models import PlayerEconomyState, Round, RoundStatus
from crashxp.utils import (
    days_between,
    floor_xp,
    format_multiplier,
    format_xp,
    generate_referral_code,
    hours_left_in_day,
    normalize_wager,
    truncate_multiplier,
)


class TestNumbers(unittest.TestCase):

    def test_normalize_wager(self):
        cases = [(55, 50), (10, 10), (9, 10), ("123.9", 120), (None, 10), ("abc", 10),
                 ("inf", 10), ("-inf", 10), ("1e400", 10), ("nan", 10)]
        for raw, expected in cases:
            with self.subTest(raw=raw):
                self.assertEqual(normalize_wager(raw), expected)

    def test_truncation_never_rounds_up(self):
        self.assertEqual(truncate_multiplier(1.999), Decimal("1.99"))
        self.assertEqual(truncate_multiplier("2.005"), Decimal("2.00"))
        self.assertEqual(floor_xp(Decimal("51.999")), 51)

    def test_formatting(self):
        self.assertEqual(format_xp(1250), "1,250 XP")
        self.assertEqual(format_xp("junk"), "0 XP")
        self.assertEqual(format_multiplier(Decimal("2")), "2.00x")
        self.assertEqual(format_multiplier(None), "1.00x")


class TestCalendar(unittest.TestCase):

    def test_days_between(self):
        self.assertEqual(days_between("2026-10-18", date(2026, 10, 19)), 1)
        self.assertIsNone(days_between(None, date(2026, 10, 19)))

    def test_hours_left_in_day(self):
        self.assertEqual(hours_left_in_day(datetime(2026, 10, 19, 21, 59)), 2)
        self.assertEqual(hours_left_in_day(datetime(2026, 10, 19, 0, 0)), 24)


class TestModels(unittest.TestCase):

    def test_referral_code_shape(self):
        code = generate_referral_code(6)
        self.assertEqual(len(code), 6)
        self.assertTrue(code.isalnum())
        self.assertEqual(code, code.upper())

    def test_debit_rejects_overdraft_without_mutation(self):
        player = PlayerEconomyState(player_id="p1", xp=30)
        with self.assertRaises(InsufficientXPError):
            player.debit(40)
        self.assertEqual(player.xp, 30)

    def test_crash_point_hidden_until_settled(self):
        rnd = Round(round_id="r", wager=10, crash_point=Decimal("2.50"), generation=1)
        self.assertIsNone(rnd.to_dict()["crash_point"])
        rnd.status = RoundStatus.CRASHED
        self.assertEqual(rnd.to_dict()["crash_point"], 2.5)



class TestEnvironment(unittest.TestCase):

    def test_env_flag(self):
        cases = [("1", True), ("true", True), ("YES", True), (" on ", True),
                 ("0", False), ("false", False), ("no", False), ("", False)]
        for raw, expected in cases:
            with self.subTest(raw=raw):
                with mock.patch.dict(os.environ, {"CRASHXP_TEST_FLAG": raw}):
                    self.assertIs(env_flag("CRASHXP_TEST_FLAG"), expected)

    def test_env_flag_default(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            self.assertFalse(env_flag("DB_ECHO"))
            self.assertTrue(env_flag("DB_ECHO", default=True))

if __name__ == "__main__":
    unittest.main()
