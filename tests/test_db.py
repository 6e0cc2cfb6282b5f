"""SQLAlchemy stores against a throwaway SQLite file."""

import os
import tempfile
import unittest
from decimal import Decimal

from crashxp.db import SqlLeaderboardStore, SqlPlayerStore, init_db, make_session_factory
from crashxp.errors import ExternalServiceError
from crashxp.models import PlayerEconomyState, PlayerRole


class DatabaseTestCase(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        url = f"sqlite+aiosqlite:///{os.path.join(self.tmpdir.name, 'crashxp-test.db')}"
        self.engine, self.factory = make_session_factory(url)
        await init_db(self.engine)

    async def asyncTearDown(self):
        await self.engine.dispose()
        self.tmpdir.cleanup()


class TestPlayerStore(DatabaseTestCase):

    async def test_round_trip(self):
        store = SqlPlayerStore(self.factory)
        self.assertIsNone(await store.load_player_state("alice"))

        state = PlayerEconomyState(
            player_id="alice",
            display_name="Alice",
            role=PlayerRole.CREATOR,
            xp=2500,
            games_played=4,
            biggest_multiplier=Decimal("7.25"),
            daily_streak=3,
            last_play_date="2026-10-19",
            unlocked_cosmetics={"default", "golden_ring"},
            active_cosmetic="golden_ring",
            xp_boost_multiplier=Decimal("2.0"),
            xp_history=[{"date": "2026-10-19", "xp": 2500}],
            referral_code="QWE123",
        )
        self.assertTrue(await store.save_player_state("alice", state))
        state.xp = 3000
        self.assertTrue(await store.save_player_state("alice", state))
        loaded = await store.load_player_state("alice")

        self.assertEqual(loaded.xp, 3000)
        self.assertIs(loaded.role, PlayerRole.CREATOR)
        self.assertEqual(loaded.games_played, 4)
        self.assertEqual(loaded.biggest_multiplier, Decimal("7.25"))
        self.assertEqual(loaded.daily_streak, 3)
        self.assertEqual(loaded.last_play_date, "2026-10-19")
        self.assertEqual(loaded.unlocked_cosmetics, {"default", "golden_ring"})
        self.assertEqual(loaded.active_cosmetic, "golden_ring")
        self.assertEqual(loaded.xp_history, [{"date": "2026-10-19", "xp": 2500}])
        self.assertEqual(loaded.referral_code, "QWE123")
        # boosts are session-only
        self.assertEqual(loaded.xp_boost_multiplier, Decimal("1.0"))


class TestLeaderboardStore(DatabaseTestCase):

    async def test_upserts_and_orders(self):
        board = SqlLeaderboardStore(self.factory)

        def summary(name, xp, mult, games):
            return {"display_name": name, "xp": xp, "biggest_multiplier": mult, "games_played": games}

        await board.submit_entry("crashxp", "alice", summary("Alice", 1200, 2.5, 3))
        await board.submit_entry("crashxp", "bob", summary("Bob", 1200, 8.0, 9))
        await board.submit_entry("crashxp", "alice", summary("Alice", 900, 2.5, 4))
        await board.submit_entry("other-app", "carol", summary("Carol", 99999, 1.0, 1))
        ranking = await board.fetch_ranking("crashxp")

        self.assertEqual([e.id for e in ranking], ["bob", "alice"])
        self.assertEqual(ranking[1].xp, 900)
        self.assertEqual(ranking[1].games_played, 4)
        self.assertEqual(ranking[0].biggest_multiplier, Decimal("8.00"))


class TestDriverFailures(unittest.IsolatedAsyncioTestCase):

    async def test_failures_are_wrapped(self):
        with tempfile.TemporaryDirectory() as tmp:
            url = f"sqlite+aiosqlite:///{os.path.join(tmp, 'missing-dir', 'nope.db')}"
            engine, factory = make_session_factory(url)
            try:
                with self.assertLogs("crashxp.db", level="ERROR"):
                    with self.assertRaises(ExternalServiceError):
                        await SqlPlayerStore(factory).load_player_state("alice")
                    with self.assertRaises(ExternalServiceError):
                        await SqlLeaderboardStore(factory).fetch_ranking("crashxp")
            finally:
                await engine.dispose()


if __name__ == "__main__":
    unittest.main()
