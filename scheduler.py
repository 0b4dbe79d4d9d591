"""Timers and the per-instrument acquisition loop.

The analytics step knows nothing about time passing; this module owns the
clocks. A ``Ticker`` fires a coroutine at a fixed cadence without waiting for
the previous firing to finish, so acquisitions can overlap. The
``InstrumentTracker`` numbers every acquisition and applies a result only if
nothing newer has been applied yet (last applied wins). Failed acquisitions
leave the state untouched and only flip the ``stale`` flag until the next
success.
"""

import asyncio
import time
from dataclasses import replace
from typing import Awaitable, Callable, Optional, Set

import httpx

from config import EngineConfig
from engine import EngineState, EngineViews, Tick, apply_quote, current_views, reset_chain, step
from logging_utils import get_logger
from normalize import SnapshotError
from source import AcquisitionError, DataSource

logger = get_logger(__name__)

ACQUISITION_ERRORS = (AcquisitionError, SnapshotError, httpx.HTTPError)


class ThrottleGuard:
    """Lets at most one caller through per ``interval`` seconds."""

    def __init__(self, interval: float, clock: Callable[[], float] = time.monotonic):
        self.interval = interval
        self._clock = clock
        self._last: Optional[float] = None
        self._before: Optional[float] = None

    def try_acquire(self) -> bool:
        now = self._clock()
        if self._last is not None and now - self._last < self.interval:
            return False
        self._before, self._last = self._last, now
        return True

    def release(self) -> None:
        """Give back the slot taken by the last ``try_acquire``, e.g. after a failed call."""
        self._last = self._before


class Ticker:
    """Run ``callback`` every ``interval`` seconds until stopped."""

    def __init__(self, interval: float, callback: Callable[[], Awaitable[object]], name: str = "ticker"):
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self.interval = interval
        self.callback = callback
        self.name = name
        self._task: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.create_task(self._run(), name=self.name)

    async def _run(self) -> None:
        try:
            while True:
                task = asyncio.create_task(self.callback())
                self._inflight.add(task)
                task.add_done_callback(self._inflight.discard)
                await asyncio.sleep(self.interval)
        except asyncio.CancelledError:
            logger.debug("%s cancelled", self.name)

    async def stop(self) -> None:
        tasks = list(self._inflight)
        if self._task is not None:
            tasks.append(self._task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._task = None
        self._inflight.clear()


class InstrumentTracker:
    """Owns one instrument's engine state and keeps it fed."""

    def __init__(
        self,
        instrument: str,
        source: DataSource,
        cfg: EngineConfig = EngineConfig(),
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.instrument = instrument.upper()
        self.source = source
        self.cfg = cfg
        self._clock = clock
        self.state = EngineState.initial(cfg)
        self.views: EngineViews = current_views(self.state, clock(), cfg)
        self.stale = False
        self.last_error: Optional[str] = None
        self.last_success_at: Optional[float] = None

        self._issued = 0
        self._applied = 0
        self._quote_issued = 0
        self._quote_applied = 0
        self._closed = False
        self._quote_guard = ThrottleGuard(cfg.quote_guard_s, monotonic)
        self._poller = Ticker(cfg.poll_interval_s, self.poll_once, f"{self.instrument}-poll")
        self._quoter = Ticker(cfg.quote_interval_s, self.refresh_quote, f"{self.instrument}-quote")

    @property
    def running(self) -> bool:
        return self._poller.running

    def start(self) -> None:
        logger.info("Tracking %s every %.1fs", self.instrument, self.cfg.poll_interval_s)
        self._closed = False
        self._poller.start()
        self._quoter.start()

    async def stop(self) -> None:
        # results still in flight are dropped by the _closed check
        self._closed = True
        await self._poller.stop()
        await self._quoter.stop()
        await self.source.aclose()
        logger.info("Stopped tracking %s", self.instrument)

    def _fail(self, seq: int, exc: BaseException) -> None:
        if seq > self._applied:
            self.stale = True
            self.last_error = str(exc) or type(exc).__name__
        logger.debug("%s poll %d failed: %s", self.instrument, seq, exc)

    @property
    def expiry(self) -> Optional[str]:
        return self.source.expiry

    def set_expiry(self, expiry: str) -> None:
        """Track another expiry from the next poll on.

        Polls already in flight fetched the old expiry and are discarded;
        chain highlights restart from the first snapshot of the new one.
        """
        logger.info("%s switching expiry %s -> %s", self.instrument, self.source.expiry, expiry)
        self.source.expiry = expiry
        self._applied = self._issued
        self.state = reset_chain(self.state)
        self.views = current_views(self.state, self._clock(), self.cfg)

    async def poll_once(self) -> bool:
        """Acquire chain + PCR and fold them in; returns True when the tick was applied."""
        if self._closed:
            return False
        self._issued += 1
        seq = self._issued

        chain, pcr = await asyncio.gather(self.source.fetch_chain(), self.source.fetch_pcr(), return_exceptions=True)
        for result in (chain, pcr):
            if isinstance(result, ACQUISITION_ERRORS):
                self._fail(seq, result)
                return False
            if isinstance(result, Exception):
                logger.error("%s poll %d failed unexpectedly", self.instrument, seq, exc_info=result)
                self._fail(seq, result)
                return False
            if isinstance(result, BaseException):
                # cancellation and interpreter exits
                raise result

        if self._closed or seq <= self._applied:
            logger.debug("%s discarding poll %d, already applied %d", self.instrument, seq, self._applied)
            return False

        try:
            state, views = step(self.state, Tick(now=self._clock(), chain=chain, pcr=pcr), self.cfg)
        except Exception as exc:
            logger.exception("%s tick %d could not be applied", self.instrument, seq)
            self._fail(seq, exc)
            return False

        self.state, self.views = state, views
        self._applied = seq
        self.stale = False
        self.last_error = None
        self.last_success_at = self._clock()
        return True

    async def refresh_quote(self) -> bool:
        """Throttled live-price refresh for spot and VIX."""
        if self._closed or not self._quote_guard.try_acquire():
            return False
        self._quote_issued += 1
        seq = self._quote_issued
        try:
            underlying, vix = await self.source.fetch_quote()
        except ACQUISITION_ERRORS as exc:
            logger.debug("%s quote refresh failed: %s", self.instrument, exc)
            self._quote_guard.release()
            return False
        except Exception:
            logger.exception("%s quote refresh failed unexpectedly", self.instrument)
            self._quote_guard.release()
            return False
        if self._closed or seq <= self._quote_applied or (underlying is None and vix is None):
            return False

        self.state = apply_quote(self.state, underlying, vix)
        self.views = replace(current_views(self.state, self._clock(), self.cfg), new_top_row=self.views.new_top_row)
        self._quote_applied = seq
        return True
