"""Per-strike "what changed" flags and the visible chain slice."""

import math
from typing import Dict, List, Mapping, Optional, Sequence

from models import ChainRow, HighlightState, LegQuote, Mark, StrikeHighlight, Tone, VisibleRow

DEFAULT_THRESHOLD = 0.15
LEGS = ("call", "put")


def safe_ratio(numerator: float, denominator: float) -> float:
    """Division with sentinels: 0/0 -> 0, x/0 -> signed infinity."""
    if denominator == 0:
        if numerator == 0:
            return 0.0
        return math.inf if numerator > 0 else -math.inf
    return numerator / denominator


def diff_ratio(prev: float, cur: float) -> float:
    """Relative change of ``cur`` against ``prev`` measured on ``|prev|``."""
    return safe_ratio(cur - prev, abs(prev))


def mark_for(prev: Optional[float], cur: Optional[float], threshold: float) -> Optional[Mark]:
    if prev is None or cur is None:
        return None
    ratio = diff_ratio(prev, cur)
    if ratio >= threshold:
        return "rising"
    if ratio <= -threshold:
        return "falling"
    return None


def _leg(row: ChainRow, leg: str) -> LegQuote:
    return row.call if leg == "call" else row.put


def detect_marks(
    prev_rows: Sequence[ChainRow],
    rows: Sequence[ChainRow],
    threshold: float = DEFAULT_THRESHOLD,
) -> Dict[str, Dict[float, Mark]]:
    """This tick's marks per leg, for strikes present in both snapshots."""
    prev_by_strike = {row.strike: row for row in prev_rows}
    marks: Dict[str, Dict[float, Mark]] = {leg: {} for leg in LEGS}
    for row in rows:
        prev = prev_by_strike.get(row.strike)
        if prev is None:
            continue
        for leg in LEGS:
            mark = mark_for(_leg(prev, leg).oi_change, _leg(row, leg).oi_change, threshold)
            if mark is not None:
                marks[leg][row.strike] = mark
    return marks


def merge_highlights(previous: Mapping[float, StrikeHighlight], marks: Mapping[str, Mapping[float, Mark]]) -> HighlightState:
    """Replace a leg's flags when it has new marks, otherwise carry the leg forward."""
    legs: Dict[str, Dict[float, Mark]] = {}
    for leg in LEGS:
        fresh = marks.get(leg) or {}
        if fresh:
            legs[leg] = dict(fresh)
        else:
            legs[leg] = {strike: getattr(h, leg) for strike, h in previous.items() if getattr(h, leg) is not None}

    merged: HighlightState = {}
    for strike in sorted(set(legs["call"]) | set(legs["put"])):
        merged[strike] = StrikeHighlight(call=legs["call"].get(strike), put=legs["put"].get(strike))
    return merged


def update_highlights(
    previous: Mapping[float, StrikeHighlight],
    prev_rows: Sequence[ChainRow],
    rows: Sequence[ChainRow],
    threshold: float = DEFAULT_THRESHOLD,
) -> HighlightState:
    if not prev_rows:
        return dict(previous)
    return merge_highlights(previous, detect_marks(prev_rows, rows, threshold))


def atm_strike(rows: Sequence[ChainRow], spot: Optional[float]) -> Optional[float]:
    """Strike nearest to spot; the middle row when spot is unknown."""
    if not rows:
        return None
    if spot is None:
        return rows[len(rows) // 2].strike
    best = rows[0].strike
    for row in rows[1:]:
        if abs(row.strike - spot) < abs(best - spot):
            best = row.strike
    return best


def strike_pcr(row: ChainRow) -> Optional[float]:
    put_total = (row.put.oi or 0.0) + (row.put.oi_change or 0.0)
    call_total = (row.call.oi or 0.0) + (row.call.oi_change or 0.0)
    if call_total == 0:
        return None
    return put_total / call_total


def _pcr_tone(pcr: Optional[float]) -> Tone:
    if pcr is None or pcr == 1:
        return "neutral"
    return "bullish" if pcr > 1 else "bearish"


def visible_rows(
    rows: Sequence[ChainRow],
    spot: Optional[float],
    window: int,
    highlights: Mapping[float, StrikeHighlight],
    prev_rows: Sequence[ChainRow] = (),
) -> List[VisibleRow]:
    """ATM +/- ``window`` strikes, decorated for display."""
    atm = atm_strike(rows, spot)
    index = next((i for i, row in enumerate(rows) if row.strike == atm), -1)
    if index >= 0:
        start, end = max(0, index - window), min(len(rows), index + window + 1)
    else:
        start, end = 0, len(rows)

    prev_by_strike = {row.strike: row for row in prev_rows}
    out: List[VisibleRow] = []
    for row in rows[start:end]:
        prev = prev_by_strike.get(row.strike)
        pcr = strike_pcr(row)
        out.append(VisibleRow(
            strike=row.strike,
            call=row.call,
            put=row.put,
            is_atm=row.strike == atm,
            strike_pcr=pcr,
            pcr_tone=_pcr_tone(pcr),
            highlight=highlights.get(row.strike, StrikeHighlight()),
            prev_call_oi_change=prev.call.oi_change if prev else None,
            prev_put_oi_change=prev.put.oi_change if prev else None,
        ))
    return out
