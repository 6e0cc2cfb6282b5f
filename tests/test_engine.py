"""
Round engine: curve, wagers, settlement, history.

The engine clock is a ManualClock, so the climb only moves when a test
advances it.
"""

import asyncio
import unittest
from decimal import Decimal

from crashxp.engine import RoundEngine, multiplier_at_ms
from crashxp.errors import InsufficientXPError, StateError, WagerError
from crashxp.events import NOTICE, ROUND_SETTLED, EventBus
from crashxp.models import PlayerEconomyState, RoundStatus
from helpers import ManualClock, ms_to_reach


class TestClimbCurve(unittest.TestCase):

    def test_curve_points(self):
        self.assertEqual(multiplier_at_ms(0), Decimal("1.00"))
        self.assertEqual(multiplier_at_ms(-5), Decimal("1.00"))
        self.assertEqual(multiplier_at_ms(1000), Decimal("1.10"))
        self.assertEqual(multiplier_at_ms(3000), Decimal("1.90"))
        self.assertEqual(multiplier_at_ms(10000), Decimal("11.00"))

    def test_curve_is_non_decreasing(self):
        values = [multiplier_at_ms(ms) for ms in range(0, 20000, 7)]
        self.assertEqual(values, sorted(values))

    def test_ms_to_reach_inverts_curve(self):
        self.assertEqual(ms_to_reach(1.0), 0.0)
        self.assertAlmostEqual(ms_to_reach(2.0), 3162.28, places=2)
        self.assertEqual(multiplier_at_ms(ms_to_reach(2.0) + 1), Decimal("2.00"))


class EngineTestCase(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.clock = ManualClock()
        self.bus = EventBus()
        self.crash_point = Decimal("50.00")
        self.player = PlayerEconomyState(player_id="p1", xp=1000)
        self.engine = RoundEngine(
            self.player,
            self.bus,
            clock=self.clock,
            crash_point_fn=lambda: self.crash_point,
        )

    async def asyncTearDown(self):
        self.engine.close()
        self.engine.scheduler.cancel_all()


class TestWagers(EngineTestCase):

    async def test_wager_is_escrowed(self):
        rnd = await self.engine.place_wager(100)
        self.assertEqual(self.player.xp, 900)
        self.assertIs(rnd.status, RoundStatus.RUNNING)
        self.assertEqual(rnd.current_multiplier, Decimal("1.00"))

    async def test_invalid_amounts(self):
        for amount in (0, 5, 15, 10.0, "50", True):
            with self.subTest(amount=amount):
                with self.assertRaises(WagerError):
                    await self.engine.place_wager(amount)
        self.assertEqual(self.player.xp, 1000)
        self.assertIsNone(self.engine.current_round)

    async def test_wager_above_balance(self):
        self.player.xp = 40
        with self.assertRaises(InsufficientXPError):
            await self.engine.place_wager(50)
        self.assertEqual(self.player.xp, 40)

    async def test_one_round_at_a_time(self):
        await self.engine.place_wager(100)
        with self.assertRaises(StateError):
            await self.engine.place_wager(100)
        self.assertEqual(self.player.xp, 900)


class TestSettlement(EngineTestCase):

    async def test_cash_out_at_two_x(self):
        await self.engine.place_wager(100)
        self.clock.advance(3.1623)
        outcome = await self.engine.cash_out()

        self.assertIs(outcome.status, RoundStatus.CASHED_OUT)
        self.assertEqual(outcome.cash_out_multiplier, Decimal("2.00"))
        self.assertEqual(outcome.winnings, 200)
        self.assertEqual(self.player.xp, 1100)
        self.assertEqual(self.player.total_won, 200)
        self.assertEqual(self.player.total_wagered, 100)
        self.assertEqual(self.player.games_played, 1)
        self.assertEqual(self.player.biggest_win, 200)
        self.assertEqual(self.player.biggest_multiplier, Decimal("2.00"))
        self.assertEqual(self.engine.history, [Decimal("2.00")])
        self.assertFalse(self.engine.is_running)

    async def test_crash_keeps_wager(self):
        self.crash_point = Decimal("1.30")
        await self.engine.place_wager(50)
        self.clock.advance(2.0)
        outcome = await self.engine.tick()

        self.assertIs(outcome.status, RoundStatus.CRASHED)
        self.assertEqual(outcome.winnings, 0)
        # clamped to the crash point
        self.assertEqual(outcome.final_multiplier, Decimal("1.30"))
        self.assertEqual(self.engine.current_round.current_multiplier, Decimal("1.30"))
        self.assertEqual(self.player.xp, 950)
        self.assertEqual(self.player.total_wagered, 50)
        self.assertEqual(self.player.games_played, 1)
        self.assertEqual(self.engine.history, [Decimal("1.30")])

    async def test_late_cash_out_settles_as_crash(self):
        self.crash_point = Decimal("1.50")
        await self.engine.place_wager(100)
        self.clock.advance(5.0)
        outcome = await self.engine.cash_out()
        self.assertIs(outcome.status, RoundStatus.CRASHED)
        self.assertEqual(self.player.xp, 900)

    async def test_cash_out_without_running_round(self):
        self.assertIsNone(await self.engine.cash_out())
        await self.engine.place_wager(100)
        self.clock.advance(1.0)
        await self.engine.cash_out()
        self.assertIsNone(await self.engine.cash_out())
        self.assertEqual(self.player.xp, 900 + 110)

    async def test_boost_applies_and_floors(self):
        self.player.xp_boost_multiplier = Decimal("1.1")
        await self.engine.place_wager(30)
        self.clock.advance(2.3453)
        outcome = await self.engine.cash_out()

        self.assertEqual(outcome.cash_out_multiplier, Decimal("1.55"))
        # 30 * 1.55 * 1.1 = 51.15
        self.assertEqual(outcome.winnings, 51)
        self.assertEqual(outcome.boost_multiplier, Decimal("1.1"))
        self.assertEqual(self.player.xp, 1000 - 30 + 51)

    async def test_near_miss(self):
        self.crash_point = Decimal("2.05")
        await self.engine.place_wager(100)
        self.clock.advance(3.1623)
        outcome = await self.engine.cash_out()
        self.assertTrue(outcome.near_miss)

    async def test_stale_tick_is_ignored(self):
        self.crash_point = Decimal("1.20")
        await self.engine.place_wager(10)
        self.clock.advance(0.5)
        await self.engine.cash_out()

        second = await self.engine.place_wager(10)
        self.clock.advance(5.0)
        self.assertIsNone(await self.engine.tick(second.generation - 1))
        self.assertTrue(self.engine.is_running)

        fresh = await self.engine.tick(second.generation)
        self.assertIs(fresh.status, RoundStatus.CRASHED)

    async def test_history_keeps_last_ten(self):
        points = iter(Decimal(f"1.{i:02d}") for i in range(1, 13))
        self.engine._crash_point_fn = lambda: next(points)
        for _ in range(12):
            await self.engine.place_wager(10)
            self.clock.advance(2.0)
            await self.engine.tick()

        history = self.engine.history
        self.assertEqual(len(history), 10)
        self.assertEqual(history[0], Decimal("1.12"))
        self.assertEqual(history[-1], Decimal("1.03"))

    async def test_settlement_published_once(self):
        settled, notices = [], []
        self.bus.subscribe(ROUND_SETTLED, settled.append)
        self.bus.subscribe(NOTICE, notices.append)
        self.crash_point = Decimal("1.30")

        await self.engine.place_wager(50)
        self.clock.advance(2.0)
        await self.engine.tick()
        await self.engine.tick()
        await self.engine.cash_out()

        self.assertEqual(len(settled), 1)
        self.assertTrue(any("CRASHED at 1.30x" in n.message for n in notices))

    async def test_tick_and_cash_out_at_crash_instant_settle_once(self):
        settled = []
        self.bus.subscribe(ROUND_SETTLED, settled.append)
        self.crash_point = Decimal("2.00")
        await self.engine.place_wager(100)
        self.clock.advance(3.1623)

        results = await asyncio.gather(self.engine.tick(), self.engine.cash_out(), self.engine.cash_out())

        self.assertEqual(len(settled), 1)
        self.assertIs(settled[0].status, RoundStatus.CRASHED)
        self.assertEqual(settled[0].winnings, 0)
        self.assertTrue(all(r is None or r is settled[0] for r in results))
        self.assertEqual(self.player.xp, 900)
        self.assertEqual(self.player.total_won, 0)
        self.assertEqual(self.player.games_played, 1)

    async def test_cash_out_ahead_of_tick_is_honoured(self):
        settled = []
        self.bus.subscribe(ROUND_SETTLED, settled.append)
        await self.engine.place_wager(100)
        self.clock.advance(1.0)

        cashed, ticked = await asyncio.gather(self.engine.cash_out(), self.engine.tick())

        self.assertIs(cashed.status, RoundStatus.CASHED_OUT)
        self.assertIsNone(ticked)
        self.assertEqual(len(settled), 1)
        self.assertEqual(self.player.xp, 1010)

    async def test_closed_engine_is_frozen(self):
        await self.engine.place_wager(100)
        self.engine.close()
        self.clock.advance(100)
        self.assertIsNone(await self.engine.tick())
        with self.assertRaises(StateError):
            await self.engine.place_wager(10)
        self.assertEqual(self.player.xp, 900)

    async def test_snapshot(self):
        self.crash_point = Decimal("3.00")
        await self.engine.place_wager(100)
        self.clock.advance(1.0)
        running = await self.engine.snapshot()
        self.clock.advance(10.0)
        settled = await self.engine.snapshot()

        self.assertEqual(running["status"], "RUNNING")
        self.assertIsNone(running["round"]["crash_point"])
        self.assertEqual(running["round"]["multiplier"], 1.1)
        self.assertEqual(running["elapsed_ms"], 1000)

        self.assertEqual(settled["status"], "CRASHED")
        self.assertEqual(settled["round"]["crash_point"], 3.0)
        self.assertEqual(settled["settled"]["status"], "CRASHED")
        self.assertEqual(settled["history"], [3.0])


if __name__ == "__main__":
    unittest.main()
