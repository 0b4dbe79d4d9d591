"""Composite score, regime and directional call.

The score starts at 50 and each agreeing signal nudges it: window agreement
(+/-22), PCR zone (+/-10), OI-flow imbalance (+/-10), build-up text (+/-8) and
price-vs-VWAP text (+/-8). The sum is scaled by a session multiplier (market
local time) and clamped to 0..100. Directions come from fixed cutoffs.
"""

import math
from dataclasses import dataclass
from datetime import datetime, time
from typing import List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from config import EngineConfig, ScoreConfig, TrendConfig
from highlights import safe_ratio
from indicators import classify_regime
from models import NO_TRADE, AnalyticsSnapshot, Direction, SessionBand, TrendView
from planner import build_checklist, entry_window, plan_strikes, tone_agrees

OPENING_START = time(9, 15)
MID_START = time(10, 0)
LATE_START = time(14, 30)
SESSION_END = time(15, 30)


def session_band(now: datetime, tz: str = "Asia/Kolkata") -> SessionBand:
    """Trading-session band of ``now`` in the market's local time."""
    local = now.astimezone(ZoneInfo(tz)) if now.tzinfo else now.replace(tzinfo=ZoneInfo(tz))
    if local.weekday() >= 5:
        return "outside"
    t = local.time()
    if OPENING_START <= t < MID_START:
        return "opening"
    if MID_START <= t < LATE_START:
        return "mid"
    if LATE_START <= t < SESSION_END:
        return "late"
    return "outside"


def session_multiplier(band: SessionBand, cfg: ScoreConfig = ScoreConfig()) -> float:
    return {
        "opening": cfg.opening_multiplier,
        "mid": cfg.mid_multiplier,
        "late": cfg.late_multiplier,
    }.get(band, cfg.outside_multiplier)


def trends_conflict(short: TrendView, long: TrendView) -> bool:
    return {short.tone, long.tone} == {"bullish", "bearish"}


def trend_bias(short: TrendView, long: TrendView) -> int:
    if short.tone == long.tone == "bullish":
        return 1
    if short.tone == long.tone == "bearish":
        return -1
    return 0


def zone_bias(ratio: Optional[float], cfg: TrendConfig = TrendConfig()) -> int:
    if ratio is None:
        return 0
    if ratio >= cfg.high_zone:
        return 1
    if ratio <= cfg.low_zone:
        return -1
    return 0


def flow_bias(put_flow: Optional[float], call_flow: Optional[float], imbalance: float = 1.15) -> int:
    """+1 / -1 when one leg's OI flow outweighs the other by ``imbalance``.

    Put writing is bullish and call writing bearish; a dominant leg that is
    unwinding (negative flow) points the other way.
    """
    if put_flow is None or call_flow is None:
        return 0
    put_mag, call_mag = abs(put_flow), abs(call_flow)
    if safe_ratio(put_mag, call_mag) >= imbalance:
        return 1 if put_flow > 0 else -1
    if safe_ratio(call_mag, put_mag) >= imbalance:
        return -1 if call_flow > 0 else 1
    return 0


def text_bias(text: Optional[str], positive: str, negative: str) -> int:
    lowered = (text or "").lower()
    if positive in lowered:
        return 1
    if negative in lowered:
        return -1
    return 0


def clamp_score(raw: float) -> int:
    # half-up, so 61.5 scores 62
    return int(min(100, max(0, math.floor(raw + 0.5))))


@dataclass(frozen=True)
class MarketInputs:
    short: TrendView
    long: TrendView
    ratios: Sequence[float] = ()
    latest_ratio: Optional[float] = None
    put_flow: Optional[float] = None
    call_flow: Optional[float] = None
    build_up_signal: Optional[str] = None
    vwap_signal: Optional[str] = None
    spot: Optional[float] = None
    step: Optional[float] = None


def composite_score(inputs: MarketInputs, band: SessionBand, cfg: EngineConfig = EngineConfig()) -> int:
    sc = cfg.score
    raw = sc.base
    raw += sc.trend_weight * trend_bias(inputs.short, inputs.long)
    raw += sc.zone_weight * zone_bias(inputs.latest_ratio, cfg.trend)
    raw += sc.flow_weight * flow_bias(inputs.put_flow, inputs.call_flow, sc.flow_imbalance)
    raw += sc.build_up_weight * text_bias(inputs.build_up_signal, "bullish", "bearish")
    raw += sc.vwap_weight * text_bias(inputs.vwap_signal, "above", "below")
    return clamp_score(raw * session_multiplier(band, sc))


def direction_for(score: int, cfg: ScoreConfig = ScoreConfig()) -> Direction:
    if score >= cfg.bullish_cutoff:
        return "BULLISH"
    if score <= cfg.bearish_cutoff:
        return "BEARISH"
    return NO_TRADE


def exit_warning(direction: Direction, short: TrendView, score: int, cfg: ScoreConfig = ScoreConfig()) -> bool:
    if direction == "BULLISH":
        return short.tone == "bearish" or score < cfg.exit_score
    if direction == "BEARISH":
        return short.tone == "bullish" or score > cfg.exit_score
    return False


def divergence_alerts(
    latest_ratio: Optional[float],
    short: TrendView,
    long: TrendView,
    conflict: bool,
    cfg: TrendConfig = TrendConfig(),
) -> Tuple[str, ...]:
    alerts: List[str] = []
    slope = short.slope
    if latest_ratio is not None and slope is not None:
        if latest_ratio >= cfg.high_zone and slope <= -cfg.short_momentum:
            alerts.append(f"Exhaustion: PCR {latest_ratio:.2f} is high but falling fast ({slope:+.2f})")
        elif latest_ratio <= cfg.low_zone and slope >= cfg.short_momentum:
            alerts.append(f"Reversal watch: PCR {latest_ratio:.2f} is low but rising fast ({slope:+.2f})")
    if conflict:
        alerts.append(f"Window conflict: {short.window} and {long.window} trends disagree")
    return tuple(alerts)


def evaluate(inputs: MarketInputs, now: datetime, cfg: EngineConfig = EngineConfig()) -> AnalyticsSnapshot:
    """Fuse both trend views and the latest market inputs into one analytics snapshot."""
    band = session_band(now, cfg.timezone)
    conflict = trends_conflict(inputs.short, inputs.long)
    regime = classify_regime(inputs.ratios, cfg.regime)
    score = composite_score(inputs, band, cfg)
    direction = direction_for(score, cfg.score)

    entry_ready = (
        direction != NO_TRADE
        and regime != "Volatile/Choppy"
        and tone_agrees(inputs.short, direction)
    )
    confirmed = entry_ready and tone_agrees(inputs.long, direction) and not conflict
    checklist = build_checklist(direction, regime, inputs.short, inputs.long, conflict)

    return AnalyticsSnapshot(
        score=score,
        regime=regime,
        direction=direction,
        entry_ready=entry_ready,
        confirmed=confirmed,
        exit_warning=exit_warning(direction, inputs.short, score, cfg.score),
        conflict=conflict,
        session_band=band,
        checklist=checklist,
        entry_window=entry_window(band, checklist),
        divergence_alerts=divergence_alerts(inputs.latest_ratio, inputs.short, inputs.long, conflict, cfg.trend),
        sell_strike_plan=plan_strikes(direction, inputs.spot, inputs.step, cfg.planner) if confirmed else None,
    )
