"""Tests for the per-strike highlight engine and the visible chain slice."""

import math

from highlights import (
	atm_strike,
	detect_marks,
	diff_ratio,
	mark_for,
	merge_highlights,
	safe_ratio,
	strike_pcr,
	update_highlights,
	visible_rows,
)
from models import ChainRow, LegQuote, StrikeHighlight


def row(strike, call_chg=None, put_chg=None, call_oi=None, put_oi=None):
	return ChainRow(
		strike=float(strike),
		call=LegQuote(oi=call_oi, oi_change=call_chg),
		put=LegQuote(oi=put_oi, oi_change=put_chg),
	)


def test_safe_ratio_sentinels():
	assert safe_ratio(0, 0) == 0.0
	assert safe_ratio(5, 0) == math.inf
	assert safe_ratio(-5, 0) == -math.inf
	assert safe_ratio(3, 2) == 1.5


def test_diff_ratio_uses_previous_magnitude():
	assert diff_ratio(100, 120) == 0.2
	assert diff_ratio(-100, -80) == 0.2
	assert diff_ratio(0, 50) == math.inf
	assert diff_ratio(0, -50) == -math.inf
	assert diff_ratio(0, 0) == 0.0


def test_mark_thresholds():
	assert mark_for(100, 115, 0.15) == "rising"
	assert mark_for(100, 114, 0.15) is None
	assert mark_for(100, 85, 0.15) == "falling"
	assert mark_for(0, 10, 0.15) == "rising"
	assert mark_for(0, 0, 0.15) is None
	assert mark_for(None, 10, 0.15) is None


def test_detect_marks_only_for_strikes_in_both_snapshots():
	prev = [row(100, call_chg=100, put_chg=100), row(200, call_chg=100)]
	cur = [row(100, call_chg=150, put_chg=50), row(200, call_chg=101), row(300, call_chg=999)]
	marks = detect_marks(prev, cur, 0.15)
	assert marks["call"] == {100.0: "rising"}
	assert marks["put"] == {100.0: "falling"}


def test_leg_without_new_trigger_is_carried_forward():
	previous = {
		100.0: StrikeHighlight(call="rising"),
		200.0: StrikeHighlight(put="falling"),
	}
	merged = merge_highlights(previous, {"call": {300.0: "falling"}, "put": {}})
	# call leg replaced, put leg untouched
	assert merged == {
		200.0: StrikeHighlight(put="falling"),
		300.0: StrikeHighlight(call="falling"),
	}


def test_no_triggers_anywhere_keeps_everything():
	previous = {100.0: StrikeHighlight(call="rising", put="falling")}
	assert merge_highlights(previous, {"call": {}, "put": {}}) == previous


def test_update_highlights_end_to_end():
	first = [row(100, call_chg=100, put_chg=100), row(200, call_chg=100, put_chg=100)]
	second = [row(100, call_chg=130, put_chg=100), row(200, call_chg=100, put_chg=100)]
	third = [row(100, call_chg=130, put_chg=100), row(200, call_chg=100, put_chg=60)]

	state = update_highlights({}, first, second, 0.15)
	assert state == {100.0: StrikeHighlight(call="rising")}
	state = update_highlights(state, second, third, 0.15)
	assert state == {
		100.0: StrikeHighlight(call="rising"),
		200.0: StrikeHighlight(put="falling"),
	}


def test_first_snapshot_produces_no_highlights():
	assert update_highlights({}, [], [row(100, call_chg=5)], 0.15) == {}


def test_atm_strike():
	rows = [row(s) for s in range(100, 1100, 100)]
	assert atm_strike(rows, 520.0) == 500.0
	assert atm_strike(rows, None) == 600.0
	assert atm_strike([], 500.0) is None


def test_visible_rows_window_around_atm():
	rows = [row(s) for s in range(100, 1100, 100)]
	highlights = {500.0: StrikeHighlight(put="rising")}
	out = visible_rows(rows, 520.0, 2, highlights, prev_rows=[row(500, call_chg=7)])
	assert [r.strike for r in out] == [300.0, 400.0, 500.0, 600.0, 700.0]
	atm = out[2]
	assert atm.is_atm
	assert atm.highlight.put == "rising"
	assert atm.prev_call_oi_change == 7
	assert out[0].highlight == StrikeHighlight()


def test_visible_rows_clamped_at_edges():
	rows = [row(s) for s in range(100, 600, 100)]
	out = visible_rows(rows, 90.0, 2, {})
	assert [r.strike for r in out] == [100.0, 200.0, 300.0]


def test_strike_pcr_and_tone():
	r = row(100, call_chg=0, put_chg=50, call_oi=100, put_oi=150)
	assert strike_pcr(r) == 2.0
	assert visible_rows([r], None, 5, {})[0].pcr_tone == "bullish"
	assert strike_pcr(row(100)) is None
