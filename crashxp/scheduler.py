# scheduler.py
"""
Timers.

- Scheduler / Timer: sub-second asyncio tasks (climb tick, auto-play loop)
  owned per component so the owner can cancel them all on shutdown
- create_job_scheduler and friends: wall-clock jobs (boost and event
  expiry, hourly event roll, daily streak refresh, streak reminder) on
  APScheduler
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Set

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

logger = logging.getLogger("crashxp.scheduler")

Callback = Callable[..., Any]


async def _invoke(callback: Callback, *args: Any) -> Any:
    result = callback(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class Timer:
    """Handle for one scheduled callback."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._task: Optional[asyncio.Task] = None
        self._cancelled = False

    def _bind(self, task: asyncio.Task) -> None:
        self._task = task

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def done(self) -> bool:
        return self._task is None or self._task.done()

    def cancel(self) -> None:
        """
        Stop the timer. Called from inside its own callback the flag is
        enough: the periodic loop exits after the current iteration.
        """
        self._cancelled = True
        if self._task is None or self._task.done():
            return
        if self._task is asyncio.current_task():
            return
        self._task.cancel()

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else ("done" if self.done else "pending")
        return f"<Timer {self.name} {state}>"


class Scheduler:
    def __init__(self, name: str = "scheduler") -> None:
        self.name = name
        self._timers: Set[Timer] = set()

    @property
    def pending(self) -> int:
        return sum(1 for t in self._timers if not t.done)

    def call_later(self, delay: float, callback: Callback, *args: Any,
                   name: Optional[str] = None) -> Timer:
        """Run `callback(*args)` once after `delay` seconds."""
        timer = Timer(name or getattr(callback, "__name__", "callback"))

        async def runner() -> None:
            await asyncio.sleep(delay)
            if timer.cancelled:
                return
            try:
                await _invoke(callback, *args)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"[{self.name}] timer {timer.name} failed")

        return self._spawn(timer, runner())

    def call_every(self, interval: float, callback: Callback, *args: Any,
                   name: Optional[str] = None, immediate: bool = False) -> Timer:
        """
        Run `callback(*args)` every `interval` seconds until cancelled.
        A failing iteration is logged and the loop keeps going.
        """
        timer = Timer(name or getattr(callback, "__name__", "callback"))

        async def runner() -> None:
            if not immediate:
                await asyncio.sleep(interval)
            while not timer.cancelled:
                try:
                    await _invoke(callback, *args)
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.exception(f"[{self.name}] periodic {timer.name} failed")
                if timer.cancelled:
                    break
                await asyncio.sleep(interval)

        return self._spawn(timer, runner())

    def _spawn(self, timer: Timer, coro) -> Timer:
        task = asyncio.get_running_loop().create_task(coro, name=f"{self.name}:{timer.name}")
        timer._bind(task)
        self._timers.add(timer)
        task.add_done_callback(lambda _t: self._timers.discard(timer))
        return timer

    def cancel_all(self) -> None:
        for timer in list(self._timers):
            timer.cancel()
        self._timers.clear()


# =====================================================
# WALL-CLOCK JOBS (APScheduler)
# =====================================================

def create_job_scheduler() -> AsyncIOScheduler:
    """
    Scheduler for minute-to-day scale jobs. Expiries must fire even when
    the loop was busy, so misfires always run (once).
    """
    return AsyncIOScheduler(
        timezone=timezone.utc,
        job_defaults={"misfire_grace_time": None, "coalesce": True, "max_instances": 1},
    )


def run_once_after(jobs: AsyncIOScheduler, job_id: str, seconds: float,
                   callback: Callback, *args: Any) -> None:
    """Add (or replace) a one-shot `date` job `seconds` from now."""
    if not jobs.running:
        jobs.start()
    run_at = datetime.now(timezone.utc) + timedelta(seconds=seconds)
    jobs.add_job(callback, "date", run_date=run_at, args=args, id=job_id, replace_existing=True)


def cancel_job(jobs: AsyncIOScheduler, job_id: str) -> bool:
    """Remove a pending job; False when it already ran or never existed."""
    try:
        jobs.remove_job(job_id)
    except JobLookupError:
        return False
    return True


def shutdown_jobs(jobs: AsyncIOScheduler) -> None:
    # remove_all_jobs is immediate; shutdown itself is queued on the loop
    jobs.remove_all_jobs()
    if jobs.running:
        jobs.shutdown(wait=False)
