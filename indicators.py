"""PCR trend, regime and bias classifiers.

These are the rule-based classifiers that turn the downsampled PCR series into
labels a trader reads at a glance. All of them are pure functions over plain
value sequences (oldest to newest), so they can be exercised without any
engine or clock.

Notes on thresholds:
- PCR at or below ``low_zone`` (0.75) is the bearish zone and at or above
  ``high_zone`` (1.25) the bullish zone; in between only the slope matters.
- Comparisons allow a 1e-9 tolerance. Inputs are two-decimal ratios, and
  without it ``0.71 - 0.70`` would fall just short of a 0.01 step.
"""

from typing import List, Optional, Sequence, Tuple

from config import RegimeConfig, TrendConfig
from models import PcrBias, PcrRecord, PcrSignals, Regime, TrendView

_EPS = 1e-9


def _ge(a: float, b: float) -> bool:
    return a >= b - _EPS


def _le(a: float, b: float) -> bool:
    return a <= b + _EPS


def format_trail(values: Sequence[float]) -> str:
    """Render values as ``|0.60| |0.68|`` for the audit trail."""
    if not values:
        return "-"
    return " ".join(f"|{v:.2f}|" for v in values)


def count_steps(values: Sequence[float], step: float = 0.01) -> Tuple[int, int]:
    """Return (up_steps, down_steps): consecutive deltas of at least ``step`` either way."""
    up = down = 0
    for prev, cur in zip(values, values[1:]):
        delta = cur - prev
        if _ge(delta, step):
            up += 1
        elif _le(delta, -step):
            down += 1
    return up, down


def _strike_suffix(strike: Optional[float]) -> str:
    if strike is None:
        return ""
    shown = int(strike) if float(strike).is_integer() else strike
    return f" · Strike {shown}"


def classify_trend(
    values: Sequence[float],
    window: str,
    momentum: float,
    strike: Optional[float] = None,
    cfg: TrendConfig = TrendConfig(),
) -> TrendView:
    """Classify one window's sample series into a tone, label and trail.

    Contract:
    - Input: sample values oldest to newest, the window name (``"3M"``), the
      window's momentum threshold and optionally the build-up strike, which
      only feeds the narrative.
    - Zones are checked in order and the first match wins: low zone, high
      zone, then slope-based mid zone.
    - Fewer than two samples yields a neutral "TREND PENDING" view.
    """
    points: List[float] = [float(v) for v in values]
    suffix = _strike_suffix(strike)

    def view(tone, title, narrative, trail_values, slope=None):
        return TrendView(
            window=window,
            tone=tone,
            label=f"{window} {title}",
            narrative=narrative + suffix,
            trail=format_trail(trail_values),
            latest=points[-1] if points else None,
            slope=slope,
            points=len(points),
        )

    if len(points) < 2:
        return view("neutral", "TREND PENDING", "Need more samples", points)

    latest, oldest = points[-1], points[0]
    slope = latest - oldest
    up_steps, down_steps = count_steps(points, cfg.step)
    near_up = up_steps >= len(points) - 2
    near_down = down_steps >= len(points) - 2

    # most recent occurrence of each extreme
    peak_idx = max(range(len(points)), key=lambda i: (points[i], i))
    trough_idx = min(range(len(points)), key=lambda i: (points[i], -i))
    drop_from_peak = latest - points[peak_idx]
    rise_from_trough = latest - points[trough_idx]

    if _le(latest, cfg.low_zone):
        if _ge(rise_from_trough, cfg.swing):
            return view("bullish", "REVERSAL WATCH", "PCR rising from bearish zone", points[trough_idx:], slope)
        return view("bearish", "BEARISH MARKET", "Bearish build-up", points, slope)

    if _ge(latest, cfg.high_zone):
        if _le(drop_from_peak, -cfg.swing):
            return view("bearish", "BEARISH RISK", "PCR falling from high zone", points[peak_idx:], slope)
        return view("bullish", "BULLISH MARKET", "Bullish build-up", points, slope)

    if abs(slope) < cfg.flat_slope - _EPS:
        return view("neutral", "FLAT PCR", "PCR holding steady", points, slope)
    if _ge(slope, momentum) and near_up:
        return view("bullish", "BULLISH MOMENTUM", "PCR climbing", points, slope)
    if _le(slope, -momentum) and near_down:
        return view("bearish", "BEARISH MOMENTUM", "PCR weakening", points, slope)
    return view("neutral", "SIDEWAYS PCR", "No strong direction", points, slope)


def regime_stats(values: Sequence[float]) -> Tuple[float, float, float]:
    """Return (range, consistency, net_slope) of a ratio series.

    Consistency is the share of steps moving in the dominant direction,
    ``max(up, down) / total_steps``; flat steps count toward the total only.
    """
    if len(values) < 2:
        return 0.0, 0.0, 0.0
    up = down = 0
    for prev, cur in zip(values, values[1:]):
        if cur > prev:
            up += 1
        elif cur < prev:
            down += 1
    total = len(values) - 1
    return max(values) - min(values), max(up, down) / total, values[-1] - values[0]


def classify_regime(values: Sequence[float], cfg: RegimeConfig = RegimeConfig()) -> Regime:
    """Label market motion from the most recent ``cfg.lookback`` ratio points."""
    recent = list(values)[-cfg.lookback:]
    if len(recent) < 2:
        return "Balanced"
    spread, consistency, net = regime_stats(recent)
    if spread < cfg.flat_range - _EPS:
        return "Rangebound"
    if spread > cfg.wide_range + _EPS and consistency < cfg.choppy_consistency:
        return "Volatile/Choppy"
    if _ge(abs(net), cfg.trend_slope) and _ge(consistency, cfg.trend_consistency):
        return "Trending"
    return "Balanced"


def pcr_bias(
    latest: Optional[PcrRecord],
    signals: Optional[PcrSignals],
    cfg: TrendConfig = TrendConfig(),
) -> Optional[PcrBias]:
    """Current-PCR badge: upstream signal text when present, else bias from the all-OI PCR."""
    if signals is not None and (signals.pcr_signal or signals.build_up_signal):
        subtitle = (signals.build_up_signal or "Live signal") + _strike_suffix(signals.build_up_strike)
        return PcrBias(tone=signals.pcr_tone, title=signals.pcr_signal or signals.build_up_signal, subtitle=subtitle)

    value = latest.current_all_pcr if latest is not None else None
    if value is None:
        return None
    if _ge(value, cfg.high_zone):
        return PcrBias(tone="bullish", title="BULLISH BIAS", subtitle=f"Current All OI PCR {value:.2f}")
    if _le(value, cfg.low_zone):
        return PcrBias(tone="bearish", title="BEARISH BIAS", subtitle=f"Current All OI PCR {value:.2f}")
    return PcrBias(tone="neutral", title="NEUTRAL BIAS", subtitle=f"Current All OI PCR {value:.2f}")
