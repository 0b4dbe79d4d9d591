# src/config.py
"""Tuning constants for the PCR signal engine.

Every threshold and weight the classifiers use lives here as a named field so a
deployment can override it without touching the rules themselves. Defaults are
the values the live dashboard has been running with.
"""

import os
from typing import Dict, Literal, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

# Instruments tracked when nothing else is configured
DEFAULT_INSTRUMENTS: Tuple[str, ...] = ("NIFTY",)
INSTRUMENT_KEYS: Dict[str, str] = {
    "NIFTY": "NSE_INDEX|Nifty 50",
    "BANKNIFTY": "NSE_INDEX|Nifty Bank",
    "FINNIFTY": "NSE_INDEX|Nifty Fin Service",
}
VIX_KEY = "NSE_INDEX|India VIX"
ENV_PREFIX = "PCRSIG_"


class TrendConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    low_zone: float = 0.75
    high_zone: float = 1.25
    swing: float = 0.10           # trough->latest rise / peak->latest drop
    flat_slope: float = 0.06
    step: float = 0.01            # minimum delta counted as an up/down step
    short_momentum: float = 0.08
    long_momentum: float = 0.10


class ScoreConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    base: float = 50.0
    trend_weight: float = 22.0
    zone_weight: float = 10.0
    flow_weight: float = 10.0
    flow_imbalance: float = 1.15
    build_up_weight: float = 8.0
    vwap_weight: float = 8.0
    opening_multiplier: float = 1.08
    mid_multiplier: float = 1.00
    late_multiplier: float = 0.92
    outside_multiplier: float = 0.85
    bullish_cutoff: int = 62
    bearish_cutoff: int = 38
    exit_score: int = 50


class RegimeConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    lookback: int = Field(20, ge=2)
    flat_range: float = 0.08
    wide_range: float = 0.22
    choppy_consistency: float = 0.6
    trend_slope: float = 0.12
    trend_consistency: float = 0.7


class PlannerConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    sell_offset: float = 200.0
    hedge_offset: float = 200.0
    default_step: float = 50.0
    high_safety_pct: float = 1.4
    medium_safety_pct: float = 0.9


class EngineConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    instruments: Tuple[str, ...] = DEFAULT_INSTRUMENTS
    source: Literal["stub", "http"] = "stub"
    base_url: str = "http://127.0.0.1:3000"
    expiry: Optional[str] = None        # None follows the upstream default
    timezone: str = "Asia/Kolkata"

    poll_interval_s: float = Field(3.0, gt=0)
    quote_interval_s: float = Field(10.0, gt=0)
    quote_guard_s: float = Field(10.0, ge=0)
    request_timeout_s: float = Field(5.0, gt=0)

    history_capacity: int = Field(10_000, ge=1)
    series_capacity: int = Field(600, ge=2)
    short_window_s: float = Field(180.0, gt=0)
    long_window_s: float = Field(300.0, gt=0)
    journal_capacity: int = Field(14, ge=1)
    chain_window: int = Field(5, ge=0)
    oi_change_threshold: float = Field(0.15, ge=0)

    trend: TrendConfig = TrendConfig()
    score: ScoreConfig = ScoreConfig()
    regime: RegimeConfig = RegimeConfig()
    planner: PlannerConfig = PlannerConfig()

    def instrument_key(self, instrument: str) -> str:
        return INSTRUMENT_KEYS.get(instrument.upper(), instrument)


def parse_threshold_pct(value: Optional[str], fallback_pct: float = 15.0) -> float:
    """Percent string -> ratio; blank, non-numeric or negative input uses the fallback."""
    if not value:
        return fallback_pct / 100.0
    try:
        parsed = float(value)
    except ValueError:
        return fallback_pct / 100.0
    if parsed != parsed or parsed < 0 or parsed == float("inf"):
        return fallback_pct / 100.0
    return parsed / 100.0


def load_config(environ: Optional[Mapping[str, str]] = None) -> EngineConfig:
    """Build the config from defaults plus ``PCRSIG_*`` environment overrides."""
    env = os.environ if environ is None else environ
    updates: dict = {}

    raw_instruments = env.get(ENV_PREFIX + "INSTRUMENTS")
    if raw_instruments:
        names = tuple(s.strip().upper() for s in raw_instruments.split(",") if s.strip())
        if names:
            updates["instruments"] = names
    if env.get(ENV_PREFIX + "SOURCE"):
        updates["source"] = env[ENV_PREFIX + "SOURCE"].strip().lower()
    if env.get(ENV_PREFIX + "BASE_URL"):
        updates["base_url"] = env[ENV_PREFIX + "BASE_URL"].strip().rstrip("/")
    if env.get(ENV_PREFIX + "EXPIRY"):
        updates["expiry"] = env[ENV_PREFIX + "EXPIRY"].strip()
    if env.get(ENV_PREFIX + "POLL_INTERVAL_S"):
        updates["poll_interval_s"] = env[ENV_PREFIX + "POLL_INTERVAL_S"]
    if ENV_PREFIX + "OI_CHANGE_THRESHOLD_PCT" in env:
        updates["oi_change_threshold"] = parse_threshold_pct(env[ENV_PREFIX + "OI_CHANGE_THRESHOLD_PCT"])

    # validate through the model so bad env values fail at start-up
    return EngineConfig.model_validate({**EngineConfig().model_dump(), **updates})
