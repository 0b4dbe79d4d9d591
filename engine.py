"""Per-instrument engine state and the tick step function.

``step(state, tick)`` is a fold: it copies the buffers it touches, applies the
new snapshot and returns the next state together with freshly computed views.
The input state is never modified, so a tick that fails half way leaves the
caller holding the last good state.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from types import MappingProxyType
from typing import Mapping, Optional, Tuple
from zoneinfo import ZoneInfo

from config import EngineConfig
from highlights import update_highlights, visible_rows
from history import HistoryBuffer
from indicators import classify_trend, pcr_bias
from journal import SignalJournal, compose_reason
from models import (
    AnalyticsSnapshot,
    ChainSnapshot,
    HighlightState,
    HistoryRecord,
    JournalEntry,
    PcrBias,
    PcrSnapshot,
    StrikeHighlight,
    TrendView,
    VisibleRow,
)
from sampler import WindowSampler
from scoring import MarketInputs, evaluate


@dataclass(frozen=True)
class Tick:
    """One acquisition result; either snapshot may be missing."""
    now: float                      # epoch seconds
    chain: Optional[ChainSnapshot] = None
    pcr: Optional[PcrSnapshot] = None


@dataclass
class EngineState:
    history: HistoryBuffer
    short: WindowSampler
    long: WindowSampler
    journal: SignalJournal
    highlights: HighlightState = field(default_factory=dict)
    chain: Optional[ChainSnapshot] = None
    prev_chain: Optional[ChainSnapshot] = None
    pcr: Optional[PcrSnapshot] = None
    underlying: Optional[float] = None
    vix: Optional[float] = None
    last_top_key: Optional[str] = None
    ticks: int = 0

    @classmethod
    def initial(cls, cfg: EngineConfig = EngineConfig()) -> "EngineState":
        return cls(
            history=HistoryBuffer(cfg.history_capacity),
            short=WindowSampler("3M", cfg.short_window_s, cfg.series_capacity),
            long=WindowSampler("5M", cfg.long_window_s, cfg.series_capacity),
            journal=SignalJournal(cfg.journal_capacity, cfg.timezone),
        )

    def copy(self) -> "EngineState":
        return replace(
            self,
            history=self.history.copy(),
            short=self.short.copy(),
            long=self.long.copy(),
            journal=self.journal.copy(),
            highlights=dict(self.highlights),
        )

    @property
    def latest(self) -> Optional[HistoryRecord]:
        return self.history.tail

    @property
    def step_size(self) -> Optional[float]:
        return self.chain.step if self.chain else None


@dataclass(frozen=True)
class EngineViews:
    """Everything a consumer renders for one instrument, computed for one tick."""
    trend_short: TrendView
    trend_long: TrendView
    analytics: AnalyticsSnapshot
    rows: Tuple[VisibleRow, ...] = ()
    highlights: Mapping[float, StrikeHighlight] = field(default_factory=dict)
    bias: Optional[PcrBias] = None
    journal: Tuple[JournalEntry, ...] = ()
    table: Tuple[HistoryRecord, ...] = ()     # newest first
    new_top_row: bool = False
    chain: Optional[ChainSnapshot] = None
    underlying: Optional[float] = None
    vix: Optional[float] = None


def _local(now: float, cfg: EngineConfig) -> datetime:
    return datetime.fromtimestamp(now, tz=ZoneInfo(cfg.timezone))


def _build_up_strike(state: EngineState) -> Optional[float]:
    if state.pcr is not None and state.pcr.signals is not None:
        return state.pcr.signals.build_up_strike
    return None


def analyze(state: EngineState, now: datetime, cfg: EngineConfig = EngineConfig()) -> Tuple[TrendView, TrendView, AnalyticsSnapshot]:
    """Trend views and analytics for the current state; reads, never writes."""
    strike = _build_up_strike(state)
    short = classify_trend(state.short.values(), state.short.name, cfg.trend.short_momentum, strike, cfg.trend)
    long = classify_trend(state.long.values(), state.long.name, cfg.trend.long_momentum, strike, cfg.trend)

    latest = state.latest.record if state.latest else None
    signals = state.pcr.signals if state.pcr else None
    inputs = MarketInputs(
        short=short,
        long=long,
        ratios=state.history.ratios(cfg.regime.lookback),
        latest_ratio=latest.all_change_pcr if latest else None,
        put_flow=latest.pe_total_oi_change if latest else None,
        call_flow=latest.ce_total_oi_change if latest else None,
        build_up_signal=signals.build_up_signal if signals else None,
        vwap_signal=state.pcr.vwap_signal if state.pcr else None,
        spot=state.underlying,
        step=state.step_size,
    )
    return short, long, evaluate(inputs, now, cfg)


def render(
    state: EngineState,
    short: TrendView,
    long: TrendView,
    analytics: AnalyticsSnapshot,
    cfg: EngineConfig = EngineConfig(),
    new_top_row: bool = False,
) -> EngineViews:
    rows: Tuple[VisibleRow, ...] = ()
    if state.chain is not None:
        window = state.chain.window if state.chain.window is not None else cfg.chain_window
        prev_rows = state.prev_chain.rows if state.prev_chain else ()
        rows = tuple(visible_rows(state.chain.rows, state.underlying, window, state.highlights, prev_rows))

    latest = state.latest.record if state.latest else None
    return EngineViews(
        trend_short=short,
        trend_long=long,
        analytics=analytics,
        rows=rows,
        highlights=MappingProxyType(dict(state.highlights)),
        bias=pcr_bias(latest, state.pcr.signals if state.pcr else None, cfg.trend),
        journal=tuple(state.journal.newest_first()),
        table=tuple(state.history.newest_first()),
        new_top_row=new_top_row,
        chain=state.chain,
        underlying=state.underlying,
        vix=state.vix,
    )


def step(state: EngineState, tick: Tick, cfg: EngineConfig = EngineConfig()) -> Tuple[EngineState, EngineViews]:
    """Fold one tick into the state: (state, tick) -> (state', views)."""
    nxt = state.copy()
    nxt.ticks += 1

    if tick.chain is not None:
        prev_rows = nxt.chain.rows if nxt.chain is not None else ()
        nxt.highlights = update_highlights(nxt.highlights, prev_rows, tick.chain.rows, cfg.oi_change_threshold)
        nxt.prev_chain = nxt.chain
        nxt.chain = tick.chain
        nxt.underlying = tick.chain.underlying if tick.chain.underlying is not None else nxt.underlying
        nxt.vix = tick.chain.vix if tick.chain.vix is not None else nxt.vix

    if tick.pcr is not None:
        nxt.pcr = tick.pcr
        if nxt.history.append(tick.pcr.records, tick.now):
            tail = nxt.history.tail
            nxt.short.observe(tail)
            nxt.long.observe(tail)
        nxt.underlying = tick.pcr.underlying if tick.pcr.underlying is not None else nxt.underlying
        nxt.vix = tick.pcr.vix if tick.pcr.vix is not None else nxt.vix

    top_key = nxt.latest.key if nxt.latest else None
    new_top_row = state.last_top_key is not None and top_key != state.last_top_key
    nxt.last_top_key = top_key

    now = _local(tick.now, cfg)
    short, long, analytics = analyze(nxt, now, cfg)
    latest_ratio = nxt.latest.ratio if nxt.latest else None
    nxt.journal.record(analytics, now, compose_reason(analytics, short, long, latest_ratio))
    return nxt, render(nxt, short, long, analytics, cfg, new_top_row)


def apply_quote(state: EngineState, underlying: Optional[float], vix: Optional[float]) -> EngineState:
    """Merge a live-price refresh; unknown values keep the previous ones."""
    return replace(
        state,
        underlying=underlying if underlying is not None else state.underlying,
        vix=vix if vix is not None else state.vix,
    )


def reset_chain(state: EngineState) -> EngineState:
    """Forget the chain and its highlights, e.g. after switching expiry.

    Strikes of two different expiries are never diffed against each other.
    """
    return replace(state, chain=None, prev_chain=None, highlights={})


def current_views(state: EngineState, now: float, cfg: EngineConfig = EngineConfig()) -> EngineViews:
    """Views for the state as it stands, without folding in new data."""
    short, long, analytics = analyze(state, _local(now, cfg), cfg)
    return render(state, short, long, analytics, cfg)
