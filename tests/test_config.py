"""Tests for environment-driven configuration and the simulated source."""

from datetime import date

import pytest
from pydantic import ValidationError

from config import EngineConfig, load_config, parse_threshold_pct
from stream_stub import StubDataSource, weekly_expiries


@pytest.mark.parametrize(
	"raw, expected",
	[
		("20", 0.20),
		("0", 0.0),
		("7.5", 0.075),
		(None, 0.15),
		("", 0.15),
		("abc", 0.15),
		("-5", 0.15),
		("nan", 0.15),
		("inf", 0.15),
	],
)
def test_parse_threshold_pct(raw, expected):
	assert parse_threshold_pct(raw) == pytest.approx(expected)


def test_defaults_without_environment():
	cfg = load_config({})
	assert cfg == EngineConfig()
	assert cfg.instruments == ("NIFTY",)
	assert cfg.oi_change_threshold == 0.15
	assert cfg.expiry is None
	assert cfg.instrument_key("nifty") == "NSE_INDEX|Nifty 50"


def test_environment_overrides():
	cfg = load_config({
		"PCRSIG_INSTRUMENTS": "nifty, banknifty,",
		"PCRSIG_SOURCE": "HTTP",
		"PCRSIG_BASE_URL": "http://upstream:3000/",
		"PCRSIG_POLL_INTERVAL_S": "1.5",
		"PCRSIG_OI_CHANGE_THRESHOLD_PCT": "25",
		"PCRSIG_EXPIRY": " 2026-10-27 ",
	})
	assert cfg.instruments == ("NIFTY", "BANKNIFTY")
	assert cfg.source == "http"
	assert cfg.base_url == "http://upstream:3000"
	assert cfg.poll_interval_s == 1.5
	assert cfg.oi_change_threshold == pytest.approx(0.25)
	assert cfg.expiry == "2026-10-27"


def test_invalid_environment_fails_fast():
	with pytest.raises(ValidationError):
		load_config({"PCRSIG_SOURCE": "carrier-pigeon"})
	with pytest.raises(ValidationError):
		load_config({"PCRSIG_POLL_INTERVAL_S": "-1"})


def test_config_is_frozen():
	with pytest.raises(ValidationError):
		EngineConfig().poll_interval_s = 1.0


@pytest.mark.asyncio
async def test_stub_source_payloads_normalize():
	source = StubDataSource("NIFTY", seed=3)
	chain = await source.fetch_chain()
	pcr = await source.fetch_pcr()
	assert len(chain.rows) == 21
	assert chain.step == 50.0
	assert all(row.call.oi is not None and row.put.oi_change is not None for row in chain.rows)
	assert len(pcr.records) == 1
	assert pcr.records[0].all_change_pcr is not None
	assert await source.fetch_quote() == (round(source.spot, 2), round(source.vix, 2))


def test_weekly_expiries_start_on_next_tuesday():
	# 2026-10-19 is a Monday
	assert weekly_expiries(date(2026, 10, 19), count=3) == ["2026-10-20", "2026-10-27", "2026-11-03"]
	assert weekly_expiries(date(2026, 10, 20), count=1) == ["2026-10-20"]


@pytest.mark.asyncio
async def test_stub_source_serves_selected_expiry():
	source = StubDataSource("NIFTY", seed=3)
	first = await source.fetch_chain()
	assert first.expiry == first.expiries[0]
	assert len(first.expiries) == 4

	source.expiry = first.expiries[2]
	assert (await source.fetch_chain()).expiry == first.expiries[2]
