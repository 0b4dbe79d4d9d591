"""Async tests for the acquisition loop: ordering, staleness, throttling and shutdown."""

import asyncio

import pytest

from config import EngineConfig
from engine import Tick, step
from models import ChainRow, ChainSnapshot, LegQuote, PcrRecord, PcrSnapshot
from scheduler import InstrumentTracker, ThrottleGuard, Ticker
from source import AcquisitionError


class FakeClock:
	def __init__(self, now=1_790_000_000.0):
		self.now = now

	def __call__(self):
		return self.now


class ScriptedSource:
	"""PCR fetches return (or raise) scripted results, each behind its own gate."""

	def __init__(self, results=(), gated=False):
		self.results = list(results)
		self.gates = [asyncio.Event() for _ in self.results]
		if not gated:
			for gate in self.gates:
				gate.set()
		self.calls = 0
		self.quotes = []
		self.closed = False
		self.expiry = None

	async def fetch_chain(self):
		return ChainSnapshot()

	async def fetch_pcr(self):
		idx = self.calls
		self.calls += 1
		await self.gates[idx].wait()
		result = self.results[idx]
		if isinstance(result, Exception):
			raise result
		return result

	async def fetch_quote(self):
		result = self.quotes.pop(0)
		if isinstance(result, Exception):
			raise result
		return result

	async def aclose(self):
		self.closed = True


def table(*ratios):
	return PcrSnapshot(records=tuple(PcrRecord(all_change_pcr=r) for r in ratios))


async def wait_until(predicate):
	for _ in range(200):
		if predicate():
			return
		await asyncio.sleep(0)
	raise AssertionError("condition never became true")


def test_throttle_guard_uses_clock():
	clock = FakeClock(100.0)
	guard = ThrottleGuard(10.0, clock)
	assert guard.try_acquire()
	clock.now = 105.0
	assert not guard.try_acquire()
	clock.now = 110.0
	assert guard.try_acquire()


@pytest.mark.asyncio
async def test_successful_poll_applies_tick():
	source = ScriptedSource([table(1.0, 1.1)])
	tracker = InstrumentTracker("nifty", source, clock=FakeClock())
	assert tracker.instrument == "NIFTY"
	assert await tracker.poll_once()
	assert tracker.state.ticks == 1
	assert len(tracker.views.table) == 2
	assert not tracker.stale
	assert tracker.last_success_at is not None


@pytest.mark.asyncio
async def test_late_result_of_older_poll_is_discarded():
	source = ScriptedSource([table(0.9), table(1.2)], gated=True)
	tracker = InstrumentTracker("NIFTY", source, clock=FakeClock())

	first = asyncio.create_task(tracker.poll_once())
	await wait_until(lambda: source.calls == 1)
	second = asyncio.create_task(tracker.poll_once())
	await wait_until(lambda: source.calls == 2)

	source.gates[1].set()
	assert await second
	source.gates[0].set()
	assert not await first

	assert tracker.state.ticks == 1
	assert tracker.state.history.ratios() == [1.2]


@pytest.mark.asyncio
async def test_failure_keeps_state_and_marks_stale_until_next_success():
	source = ScriptedSource([table(1.0), AcquisitionError("upstream returned 500"), table(1.0, 1.1)])
	tracker = InstrumentTracker("NIFTY", source, clock=FakeClock())

	assert await tracker.poll_once()
	assert not await tracker.poll_once()
	assert tracker.stale
	assert tracker.last_error == "upstream returned 500"
	assert tracker.state.ticks == 1
	assert tracker.state.history.ratios() == [1.0]

	assert await tracker.poll_once()
	assert not tracker.stale
	assert tracker.last_error is None


@pytest.mark.asyncio
async def test_unexpected_source_error_marks_stale_instead_of_raising():
	source = ScriptedSource([table(1.0), RuntimeError("upstream payload blew up"), table(1.0, 1.1)])
	tracker = InstrumentTracker("NIFTY", source, clock=FakeClock())

	assert await tracker.poll_once()
	assert not await tracker.poll_once()
	assert tracker.stale
	assert tracker.last_error == "upstream payload blew up"
	assert tracker.state.history.ratios() == [1.0]

	assert await tracker.poll_once()
	assert not tracker.stale


@pytest.mark.asyncio
async def test_old_failure_does_not_mark_newer_success_stale():
	source = ScriptedSource([AcquisitionError("timeout"), table(1.0)], gated=True)
	tracker = InstrumentTracker("NIFTY", source, clock=FakeClock())

	first = asyncio.create_task(tracker.poll_once())
	await wait_until(lambda: source.calls == 1)
	second = asyncio.create_task(tracker.poll_once())
	await wait_until(lambda: source.calls == 2)

	source.gates[1].set()
	assert await second
	source.gates[0].set()
	assert not await first
	assert not tracker.stale


@pytest.mark.asyncio
async def test_quote_refresh_is_throttled():
	mono = FakeClock(0.0)
	source = ScriptedSource()
	source.quotes = [(22510.0, 13.2), (22520.0, None)]
	tracker = InstrumentTracker("NIFTY", source, EngineConfig(quote_guard_s=10.0), clock=FakeClock(), monotonic=mono)

	assert await tracker.refresh_quote()
	assert tracker.views.underlying == 22510.0
	assert tracker.views.vix == 13.2

	mono.now = 5.0
	assert not await tracker.refresh_quote()

	mono.now = 10.0
	assert await tracker.refresh_quote()
	assert tracker.state.underlying == 22520.0
	assert tracker.state.vix == 13.2


@pytest.mark.asyncio
async def test_quote_failure_is_ignored():
	source = ScriptedSource()
	source.quotes = [AcquisitionError("no quote")]
	tracker = InstrumentTracker("NIFTY", source, clock=FakeClock())
	assert not await tracker.refresh_quote()
	assert not tracker.stale
	assert tracker.state.underlying is None


@pytest.mark.asyncio
async def test_failed_quote_does_not_use_up_throttle_slot():
	mono = FakeClock(0.0)
	source = ScriptedSource()
	source.quotes = [AcquisitionError("no quote"), (22510.0, 13.2), (22520.0, 13.3)]
	tracker = InstrumentTracker("NIFTY", source, EngineConfig(quote_guard_s=10.0), clock=FakeClock(), monotonic=mono)

	assert not await tracker.refresh_quote()
	mono.now = 1.0
	assert await tracker.refresh_quote()
	assert tracker.state.underlying == 22510.0

	# a successful refresh does hold the slot
	mono.now = 2.0
	assert not await tracker.refresh_quote()


def test_throttle_guard_release_restores_previous_slot():
	clock = FakeClock(100.0)
	guard = ThrottleGuard(10.0, clock)
	assert guard.try_acquire()
	clock.now = 112.0
	assert guard.try_acquire()
	guard.release()
	clock.now = 113.0
	assert guard.try_acquire()
	assert not guard.try_acquire()


def chain_rows(call_change):
	return ChainSnapshot(
		rows=tuple(ChainRow(strike=float(s), call=LegQuote(oi_change=call_change)) for s in (22450, 22500, 22550)),
		expiry="2026-10-20",
		expiries=("2026-10-20", "2026-10-27"),
		underlying=22500.0,
	)


@pytest.mark.asyncio
async def test_switching_expiry_resets_chain_and_drops_inflight_polls():
	source = ScriptedSource([table(1.0)], gated=True)
	tracker = InstrumentTracker("NIFTY", source, clock=FakeClock())
	now = FakeClock()()
	state, _ = step(tracker.state, Tick(now, chain=chain_rows(100.0)))
	tracker.state, tracker.views = step(state, Tick(now + 3, chain=chain_rows(130.0)))
	assert tracker.views.highlights

	inflight = asyncio.create_task(tracker.poll_once())
	await wait_until(lambda: source.calls == 1)

	tracker.set_expiry("2026-10-27")
	assert source.expiry == "2026-10-27"
	assert tracker.expiry == "2026-10-27"
	assert tracker.state.chain is None
	assert tracker.state.prev_chain is None
	assert tracker.state.highlights == {}
	assert tracker.views.rows == ()
	# spot survives the switch
	assert tracker.state.underlying == 22500.0

	source.gates[0].set()
	assert not await inflight
	assert tracker.state.history.ratios() == []


@pytest.mark.asyncio
async def test_stop_closes_source_and_ignores_later_polls():
	source = ScriptedSource([table(1.0)] * 50)
	tracker = InstrumentTracker("NIFTY", source, EngineConfig(poll_interval_s=0.01, quote_interval_s=60), clock=FakeClock())
	source.quotes = [(None, None)] * 5
	tracker.start()
	assert tracker.running
	await asyncio.sleep(0.03)
	await tracker.stop()

	assert source.closed
	assert not tracker.running
	ticks = tracker.state.ticks
	assert ticks >= 1
	assert not await tracker.poll_once()
	assert tracker.state.ticks == ticks


@pytest.mark.asyncio
async def test_ticker_does_not_wait_for_slow_callbacks():
	started = []
	release = asyncio.Event()

	async def slow():
		started.append(1)
		await release.wait()

	ticker = Ticker(0.01, slow, "slow")
	ticker.start()
	await asyncio.sleep(0.05)
	# several firings in flight at once
	assert len(started) >= 2
	await ticker.stop()
	assert not ticker.running


def test_ticker_interval_must_be_positive():
	with pytest.raises(ValueError):
		Ticker(0, lambda: None)
