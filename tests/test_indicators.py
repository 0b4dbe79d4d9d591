("""Tests for indicators module: trend, regime and PCR bias classifiers.

We focus on the zone rules, momentum thresholds per window and the trail
rendering. Using pytest function tests for simplicity.
""")

import pytest

from indicators import classify_regime, classify_trend, count_steps, format_trail, pcr_bias
from models import PcrRecord, PcrSignals


def test_trend_pending_with_single_point():
	view = classify_trend([0.9], "3M", 0.08)
	assert view.tone == "neutral"
	assert view.label == "3M TREND PENDING"
	assert view.trail == "|0.90|"
	assert view.slope is None


def test_trend_pending_with_no_points():
	view = classify_trend([], "5M", 0.10)
	assert view.label == "5M TREND PENDING"
	assert view.trail == "-"
	assert view.latest is None


def test_low_zone_rise_from_trough_is_bullish():
	# latest 0.5, trough 0.3 -> rise of 0.2
	view = classify_trend([0.4, 0.3, 0.5], "3M", 0.08)
	assert view.tone == "bullish"
	assert view.label == "3M REVERSAL WATCH"
	assert view.trail == "|0.30| |0.50|"


def test_low_zone_without_rise_is_bearish():
	view = classify_trend([0.74, 0.70, 0.66], "3M", 0.08)
	assert view.tone == "bearish"
	assert view.label == "3M BEARISH MARKET"
	assert view.trail == "|0.74| |0.70| |0.66|"


def test_high_zone_drop_from_peak_is_bearish():
	# latest 1.5, peak 1.8 -> drop of -0.3
	view = classify_trend([1.4, 1.8, 1.5], "5M", 0.10)
	assert view.tone == "bearish"
	assert view.label == "5M BEARISH RISK"
	assert view.trail == "|1.80| |1.50|"


def test_high_zone_holding_is_bullish():
	view = classify_trend([1.30, 1.35, 1.32], "3M", 0.08)
	assert view.tone == "bullish"
	assert view.label == "3M BULLISH MARKET"


def test_mid_zone_flat_slope_is_neutral():
	view = classify_trend([1.00, 1.02, 1.03], "3M", 0.08)
	assert view.tone == "neutral"
	assert view.label == "3M FLAT PCR"


def test_mid_zone_monotonic_climb_is_bullish_momentum():
	view = classify_trend([0.60, 0.68, 0.74, 0.80], "3M", 0.08)
	assert view.tone == "bullish"
	assert view.label == "3M BULLISH MOMENTUM"
	assert view.slope == pytest.approx(0.20)
	assert view.points == 4


def test_mid_zone_monotonic_fall_is_bearish_momentum():
	view = classify_trend([1.2, 1.1, 1.0, 0.9], "3M", 0.08)
	assert view.tone == "bearish"
	assert view.label == "3M BEARISH MOMENTUM"


def test_mid_zone_whipsaw_is_sideways():
	view = classify_trend([0.90, 1.20, 0.85, 1.20, 0.98], "3M", 0.08)
	assert view.tone == "neutral"
	assert view.label == "3M SIDEWAYS PCR"


def test_long_window_needs_larger_slope():
	values = [0.80, 0.89]
	assert classify_trend(values, "3M", 0.08).tone == "bullish"
	assert classify_trend(values, "5M", 0.10).tone == "neutral"


def test_strike_goes_into_narrative_only():
	view = classify_trend([0.60, 0.68, 0.74, 0.80], "3M", 0.08, strike=22500.0)
	assert view.narrative.endswith("Strike 22500")
	assert "22500" not in view.label


def test_two_decimal_steps_count_despite_float_noise():
	assert count_steps([0.70, 0.71]) == (1, 0)
	assert count_steps([0.71, 0.70]) == (0, 1)
	assert count_steps([0.70, 0.705]) == (0, 0)


def test_format_trail():
	assert format_trail([0.6, 0.678]) == "|0.60| |0.68|"


def test_regime_rangebound():
	assert classify_regime([1.00, 1.02, 1.01, 1.03]) == "Rangebound"


def test_regime_volatile():
	assert classify_regime([1.0, 1.3, 0.95, 1.25, 0.98, 1.2, 1.0]) == "Volatile/Choppy"


def test_regime_trending():
	assert classify_regime([0.80, 0.85, 0.90, 0.95, 1.00]) == "Trending"


def test_regime_balanced():
	assert classify_regime([1.00, 1.05, 1.02, 1.08, 1.04, 1.10]) == "Balanced"


def test_regime_only_looks_at_last_twenty_points():
	# a wide swing far in the past is outside the lookback
	values = [0.3, 2.0] + [1.0, 1.01] * 10
	assert classify_regime(values) == "Rangebound"


def test_regime_insufficient_points():
	assert classify_regime([1.1]) == "Balanced"


def test_bias_prefers_upstream_signal_text():
	signals = PcrSignals(pcr_signal="PUT WRITING", pcr_tone="bullish", build_up_signal="Put build-up", build_up_strike=22400.0)
	bias = pcr_bias(PcrRecord(current_all_pcr=0.5), signals)
	assert bias.tone == "bullish"
	assert bias.title == "PUT WRITING"
	assert bias.subtitle == "Put build-up · Strike 22400"


def test_bias_from_current_all_pcr():
	assert pcr_bias(PcrRecord(current_all_pcr=1.3), None).title == "BULLISH BIAS"
	assert pcr_bias(PcrRecord(current_all_pcr=0.7), None).tone == "bearish"
	assert pcr_bias(PcrRecord(current_all_pcr=1.0), None).tone == "neutral"
	assert pcr_bias(PcrRecord(), None) is None
	assert pcr_bias(None, None) is None
