"""Entry checklist, entry-window status and the hedge strike plan."""

import math
from typing import Optional

from config import PlannerConfig
from models import NO_TRADE, Checklist, Direction, EntryWindow, Regime, SafetyTier, SessionBand, StrikePlan, TrendView

_TONE_FOR = {"BULLISH": "bullish", "BEARISH": "bearish"}


def tone_agrees(view: TrendView, direction: Direction) -> bool:
    return _TONE_FOR.get(direction) == view.tone


def build_checklist(direction: Direction, regime: Regime, short: TrendView, long: TrendView, conflict: bool) -> Checklist:
    return Checklist(
        direction_set=direction != NO_TRADE,
        regime_tradable=regime != "Volatile/Choppy",
        short_agrees=tone_agrees(short, direction),
        long_agrees=tone_agrees(long, direction),
        no_conflict=not conflict,
    )


def entry_window(band: SessionBand, checklist: Checklist) -> EntryWindow:
    """Combine the session band with checklist completeness into OPEN / CAUTION / AVOID."""
    complete = checklist.complete
    if band == "mid":
        if complete:
            return EntryWindow("OPEN", "Mid-session with full checklist", band)
        missing = ", ".join(label for label, ok in checklist.items() if not ok)
        return EntryWindow("CAUTION", f"Checklist incomplete: {missing}", band)
    if band == "late":
        if complete:
            return EntryWindow("CAUTION", "Late session: keep size small and exits tight", band)
        return EntryWindow("AVOID", "Late session without full checklist", band)
    if band == "opening":
        return EntryWindow("AVOID", "Opening volatility: let the range settle", band)
    return EntryWindow("AVOID", "Outside market hours", band)


def round_to_step(value: float, step: float, up: bool) -> float:
    # small tolerance so 22350.0000001 does not ceil to the next strike
    scaled = value / step
    units = math.ceil(scaled - 1e-9) if up else math.floor(scaled + 1e-9)
    return units * step


def safety_tier(distance_pct: float, cfg: PlannerConfig = PlannerConfig()) -> SafetyTier:
    if distance_pct >= cfg.high_safety_pct:
        return "HIGH"
    if distance_pct >= cfg.medium_safety_pct:
        return "MEDIUM"
    return "LOW"


def plan_strikes(
    direction: Direction,
    spot: Optional[float],
    step: Optional[float],
    cfg: PlannerConfig = PlannerConfig(),
) -> Optional[StrikePlan]:
    """Sell strike ``sell_offset`` points OTM and a hedge ``hedge_offset`` beyond it.

    A bullish view sells a put below spot (strikes rounded down); a bearish
    view sells a call above spot (strikes rounded up).
    """
    if direction == NO_TRADE or spot is None or spot <= 0:
        return None
    step = step if step and step > 0 else cfg.default_step

    if direction == "BULLISH":
        sell = round_to_step(spot - cfg.sell_offset, step, up=False)
        hedge = round_to_step(sell - cfg.hedge_offset, step, up=False)
        option_type = "PE"
    else:
        sell = round_to_step(spot + cfg.sell_offset, step, up=True)
        hedge = round_to_step(sell + cfg.hedge_offset, step, up=True)
        option_type = "CE"

    distance_pct = abs(spot - sell) / spot * 100.0
    return StrikePlan(
        direction=direction,
        option_type=option_type,
        spot=spot,
        sell_strike=sell,
        hedge_strike=hedge,
        distance_pct=round(distance_pct, 2),
        safety=safety_tier(distance_pct, cfg),
    )
