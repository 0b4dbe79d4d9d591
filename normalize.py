"""Boundary conversion of upstream snapshot payloads into the engine's schema.

Upstream records are loosely shaped: the same field shows up under several
names, numbers arrive as strings (sometimes with Indian compact suffixes such
as ``"12.5 Cr"``), and market/greek fields may or may not be nested. Everything
here degrades to ``None`` ("unknown") instead of raising, so one malformed cell
never costs a tick. Only a payload that is not a mapping at all is rejected.
"""

import math
import re
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from models import (
    ChainRow,
    ChainSnapshot,
    LegQuote,
    PcrRecord,
    PcrSignals,
    PcrSnapshot,
)

CRORE = 1e7
LAKH = 1e5

_COMPACT_RE = re.compile(r"^([+-]?\d+(?:\.\d+)?|[+-]?\.\d+)\s*(cr|crore|crores|l|lakh|lakhs|lac)$", re.IGNORECASE)
_MULTIPLIERS = {"cr": CRORE, "crore": CRORE, "crores": CRORE, "l": LAKH, "lakh": LAKH, "lakhs": LAKH, "lac": LAKH}

LTP_KEYS = ("ltp", "last_price", "last_traded_price")
OI_KEYS = ("oi", "open_interest")
PREV_OI_KEYS = ("prev_oi", "previous_oi")
OI_CHANGE_KEYS = ("oi_change", "change_in_oi", "oi_change_percentage")
VOLUME_KEYS = ("volume", "volume_traded")
IV_KEYS = ("iv", "implied_volatility")


class SnapshotError(ValueError):
    """Payload is not shaped like a snapshot at all."""


def to_number(value: Any) -> Optional[float]:
    """Parse a numeric or numeric-string value; ``None`` when it is not one."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        num = float(value)
        return num if math.isfinite(num) else None
    if not isinstance(value, str):
        return None

    text = value.replace(",", "").strip()
    if not text:
        return None
    match = _COMPACT_RE.match(text)
    if match:
        return float(match.group(1)) * _MULTIPLIERS[match.group(2).lower()]
    try:
        num = float(text)
    except ValueError:
        return None
    return num if math.isfinite(num) else None


def pick_number(obj: Any, keys: Iterable[str]) -> Optional[float]:
    """Return the first candidate field that holds a usable number."""
    if not isinstance(obj, Mapping):
        return None
    for key in keys:
        num = to_number(obj.get(key))
        if num is not None:
            return num
    return None


def pick_text(obj: Any, keys: Iterable[str]) -> Optional[str]:
    if not isinstance(obj, Mapping):
        return None
    for key in keys:
        val = obj.get(key)
        if isinstance(val, str) and val.strip():
            return val.strip()
    return None


def market_fields(leg: Any) -> Mapping:
    if not isinstance(leg, Mapping):
        return {}
    for key in ("market", "market_data"):
        nested = leg.get(key)
        if isinstance(nested, Mapping):
            return nested
    return leg


def greek_fields(leg: Any) -> Mapping:
    if not isinstance(leg, Mapping):
        return {}
    for key in ("greeks", "option_greeks"):
        nested = leg.get(key)
        if isinstance(nested, Mapping):
            return nested
    return leg


def oi_change(market: Mapping) -> Optional[float]:
    """OI change, derived from previous OI when both ends are present."""
    oi = pick_number(market, OI_KEYS)
    prev_oi = pick_number(market, PREV_OI_KEYS)
    if oi is not None and prev_oi is not None:
        return oi - prev_oi
    return pick_number(market, OI_CHANGE_KEYS)


def normalize_leg(leg: Any) -> LegQuote:
    market = market_fields(leg)
    greeks = greek_fields(leg)
    return LegQuote(
        oi=pick_number(market, OI_KEYS),
        oi_change=oi_change(market),
        ltp=pick_number(market, LTP_KEYS),
        volume=pick_number(market, VOLUME_KEYS),
        iv=pick_number(greeks, IV_KEYS),
        delta=pick_number(greeks, ("delta",)),
        theta=pick_number(greeks, ("theta",)),
        gamma=pick_number(greeks, ("gamma",)),
        vega=pick_number(greeks, ("vega",)),
    )


def _require_mapping(raw: Any, what: str) -> Mapping:
    if not isinstance(raw, Mapping):
        raise SnapshotError(f"{what} payload must be an object, got {type(raw).__name__}")
    return raw


def normalize_chain_snapshot(raw: Any) -> ChainSnapshot:
    data = _require_mapping(raw, "option chain")

    rows: List[ChainRow] = []
    seen = set()
    chain = data.get("chain")
    for item in chain if isinstance(chain, list) else []:
        if not isinstance(item, Mapping):
            continue
        strike = to_number(item.get("strike"))
        if strike is None or strike in seen:
            continue
        seen.add(strike)
        rows.append(ChainRow(strike=strike, call=normalize_leg(item.get("call")), put=normalize_leg(item.get("put"))))

    expiries = data.get("expiries")
    window = to_number(data.get("window"))
    return ChainSnapshot(
        rows=tuple(rows),
        expiry=pick_text(data, ("expiry",)),
        expiries=tuple(str(e) for e in expiries) if isinstance(expiries, list) else (),
        underlying=pick_number(data, ("underlying", "spot_price")),
        max_pain=pick_number(data, ("maxPain", "max_pain")),
        vix=pick_number(data, ("vix",)),
        step=pick_number(data, ("step",)),
        window=int(window) if window is not None and window >= 0 else None,
    )


def normalize_pcr_record(raw: Mapping) -> PcrRecord:
    time_val = raw.get("Time")
    return PcrRecord(
        time=str(time_val) if time_val not in (None, "") else None,
        pe_total_oi_change=to_number(raw.get("PE Total OI Change")),
        ce_total_oi_change=to_number(raw.get("CE Total OI Change")),
        pe_oi_change_atm=to_number(raw.get("PE OI Change (±2)")),
        ce_oi_change_atm=to_number(raw.get("CE OI Change (±2)")),
        all_change_pcr=to_number(raw.get("ALL Change OI PCR")),
        current_change_pcr=to_number(raw.get("Current Change OI PCR")),
        current_all_pcr=to_number(raw.get("Current All OI PCR")),
    )


def _normalize_tone(value: Any) -> str:
    tone = str(value or "").strip().lower()
    return tone if tone in ("bullish", "bearish") else "neutral"


def normalize_signals(raw: Any) -> Optional[PcrSignals]:
    if not isinstance(raw, Mapping):
        return None
    return PcrSignals(
        pcr_signal=pick_text(raw, ("pcrSignal",)) or "",
        pcr_tone=_normalize_tone(raw.get("pcrTone")),
        build_up_signal=pick_text(raw, ("buildUpSignal",)) or "",
        build_up_strike=to_number(raw.get("buildUpStrike")),
    )


def normalize_pcr_snapshot(raw: Any) -> PcrSnapshot:
    data = _require_mapping(raw, "pcr")
    records = data.get("records")
    return PcrSnapshot(
        records=tuple(normalize_pcr_record(r) for r in (records if isinstance(records, list) else []) if isinstance(r, Mapping)),
        signals=normalize_signals(data.get("signals")),
        underlying=pick_number(data, ("underlying", "spot_price")),
        vix=pick_number(data, ("vix",)),
        vwap_signal=pick_text(data, ("vwapSignal", "vwap_signal")),
    )


def parse_quote(payload: Any, instrument_key: str, vix_key: str) -> Tuple[Optional[float], Optional[float]]:
    """Pull (underlying, vix) last prices out of a live-quote response.

    Quote maps key instruments either as ``NSE_INDEX|Nifty 50`` or
    ``NSE_INDEX:Nifty 50``; when neither key is present the entry whose
    ``instrument_token`` matches is used.
    """
    data = payload.get("data") if isinstance(payload, Mapping) else None
    if isinstance(data, Mapping) and isinstance(data.get("data"), Mapping):
        data = data["data"]
    if not isinstance(data, Mapping):
        return None, None

    def pick(token: str) -> Optional[float]:
        alt = token.replace("|", ":")
        entry = data.get(token) or data.get(alt)
        if isinstance(entry, Mapping):
            price = to_number(entry.get("last_price"))
            if price is not None:
                return price
        for candidate in data.values():
            if isinstance(candidate, Mapping) and candidate.get("instrument_token") in (token, alt):
                return to_number(candidate.get("last_price"))
        return None

    return pick(instrument_key), pick(vix_key)


def format_compact(value: Optional[float]) -> str:
    """Render a count the way the chain table does: Cr / L above a lakh."""
    if value is None or not math.isfinite(value):
        return "-"
    sign = "-" if value < 0 else ""
    mag = abs(value)
    if mag >= CRORE:
        return f"{sign}{_trim(mag / CRORE)} Cr"
    if mag >= LAKH:
        return f"{sign}{_trim(mag / LAKH)} L"
    return f"{sign}{_indian_group(round(mag))}"


def _trim(num: float) -> str:
    text = f"{num:.2f}"
    return text[:-3] if text.endswith(".00") else text


def _indian_group(num: int) -> str:
    # 1,23,456 style grouping
    digits = str(num)
    if len(digits) <= 3:
        return digits
    head, tail = digits[:-3], digits[-3:]
    groups = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    return ",".join(groups + [tail])
