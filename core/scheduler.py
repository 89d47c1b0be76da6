"""
Round scheduler.

Drives the round lifecycle on a fixed interval. Each tick:

1. resumes settlements / refunds that were interrupted,
2. auto-declares rounds whose betting window has elapsed,
3. opens a new round when no round is active.

tick() is synchronous and serialized by a non-blocking lock: a tick that
starts while another one is still running is skipped. The async start()/stop()
pair runs tick() in a worker thread so database work never blocks the event
loop.
"""
import asyncio
import logging
import threading
from datetime import datetime
from typing import Callable, Optional

from models import utcnow
from core.round_manager import RoundManager

logger = logging.getLogger(__name__)


class RoundScheduler:
    """Periodic driver for RoundManager.

    Parameters
    ----------
    session_factory:
        Callable returning a new SQLAlchemy Session (one per tick).
    round_manager:
        The RoundManager that owns the lifecycle rules.
    interval_seconds:
        Delay between ticks.
    clock:
        Returns the current naive-UTC time; injectable for tests.
    """

    def __init__(
        self,
        session_factory,
        round_manager: RoundManager,
        interval_seconds: float = 1.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._round_manager = round_manager
        self._interval = interval_seconds
        self._clock = clock
        self._tick_lock = threading.Lock()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def tick(self) -> bool:
        """Run one scheduler pass. Returns False when skipped because a tick is in progress."""
        if not self._tick_lock.acquire(blocking=False):
            logger.debug("Scheduler tick skipped, previous tick still running")
            return False

        try:
            db = self._session_factory()
            try:
                now = self._clock()
                self._run_step("resume settlements", db, self._round_manager.resume_pending_settlements, db)
                self._run_step("expire rounds", db, self._round_manager.expire_rounds, db, now)
                self._run_step("ensure active round", db, self._round_manager.ensure_active_round, db, now)
            finally:
                db.close()
        finally:
            self._tick_lock.release()
        return True

    @staticmethod
    def _run_step(name: str, db, func, *args) -> None:
        # one failing step must not stop the others
        try:
            func(*args)
        except Exception as exc:
            logger.error(f"Scheduler step '{name}' failed: {exc}", exc_info=True)
            db.rollback()

    async def start(self) -> None:
        """Start ticking in the background."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"RoundScheduler: started, tick every {self._interval}s")

    async def stop(self) -> None:
        """Stop ticking and wait for the loop and any in-flight tick to exit."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            # cancelling the task does not stop a tick already running in the worker thread
            await asyncio.to_thread(self._wait_for_tick)
        logger.info("RoundScheduler: stopped")

    def _wait_for_tick(self) -> None:
        with self._tick_lock:
            pass

    async def _run_loop(self) -> None:
        while True:
            try:
                await asyncio.to_thread(self.tick)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning(f"RoundScheduler: tick error: {exc}")
            await asyncio.sleep(self._interval)
