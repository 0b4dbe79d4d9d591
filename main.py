# src/main.py
import asyncio
from contextlib import asynccontextmanager
from typing import Dict, Optional

from fastapi import FastAPI, HTTPException, WebSocket, status
from starlette.websockets import WebSocketDisconnect

from config import EngineConfig, load_config
from engine import EngineViews
from logging_utils import get_logger
from models import (
    PCR_TIME,
    BiasResponse,
    ChainResponse,
    ChainRowResponse,
    ChecklistItemResponse,
    EntryWindowResponse,
    HistoryRecord,
    JournalEntryResponse,
    JournalResponse,
    LegResponse,
    PcrTableResponse,
    PlanResponse,
    SignalResponse,
    TrendResponse,
)
from normalize import format_compact
from scheduler import InstrumentTracker
from source import HttpDataSource
from stream_stub import StubDataSource

logger = get_logger("pcr_signal_service")

# --- INITIAL SETUP ---
CONFIG: EngineConfig = load_config()
# One tracker per instrument, created on startup
TRACKERS: Dict[str, InstrumentTracker] = {}

def make_source(cfg: EngineConfig, instrument: str):
    if cfg.source == "http":
        return HttpDataSource.from_config(cfg, instrument)
    return StubDataSource(instrument, tz=cfg.timezone, expiry=cfg.expiry)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Start polling every configured instrument when the server starts
    for instrument in CONFIG.instruments:
        tracker = InstrumentTracker(instrument, make_source(CONFIG, instrument), CONFIG)
        TRACKERS[tracker.instrument] = tracker
        tracker.start()
    try:
        yield
    finally:
        # Stop timers and drop in-flight acquisitions
        trackers = list(TRACKERS.values())
        TRACKERS.clear()
        await asyncio.gather(*(t.stop() for t in trackers))


app = FastAPI(title="PCR Signal Service", lifespan=lifespan)


def get_tracker(instrument: str) -> InstrumentTracker:
    tracker = TRACKERS.get(instrument.upper())
    if not tracker:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Instrument {instrument} not tracked.")
    return tracker


# --- view -> response conversion ---

def signal_response(tracker: InstrumentTracker) -> SignalResponse:
    views = tracker.views
    a = views.analytics
    return SignalResponse(
        instrument=tracker.instrument,
        score=a.score,
        regime=a.regime,
        direction=a.direction,
        entry_ready=a.entry_ready,
        confirmed=a.confirmed,
        exit_warning=a.exit_warning,
        conflict=a.conflict,
        divergence_alerts=list(a.divergence_alerts),
        checklist=[ChecklistItemResponse(label=label, ok=ok) for label, ok in a.checklist.items()],
        entry_window=EntryWindowResponse.model_validate(a.entry_window),
        sell_strike_plan=PlanResponse.model_validate(a.sell_strike_plan) if a.sell_strike_plan else None,
        trend_short=TrendResponse.model_validate(views.trend_short),
        trend_long=TrendResponse.model_validate(views.trend_long),
        stale=tracker.stale,
        last_error=tracker.last_error,
    )


def chain_response(instrument: str, views: EngineViews) -> ChainResponse:
    chain = views.chain
    rows = [
        ChainRowResponse(
            strike=row.strike,
            is_atm=row.is_atm,
            strike_pcr=round(row.strike_pcr, 2) if row.strike_pcr is not None else None,
            pcr_tone=row.pcr_tone,
            call=LegResponse.model_validate(row.call),
            put=LegResponse.model_validate(row.put),
            call_highlight=row.highlight.call,
            put_highlight=row.highlight.put,
            prev_call_oi_change=row.prev_call_oi_change,
            prev_put_oi_change=row.prev_put_oi_change,
        )
        for row in views.rows
    ]
    return ChainResponse(
        instrument=instrument,
        expiry=chain.expiry if chain else None,
        expiries=list(chain.expiries) if chain else [],
        underlying=views.underlying,
        max_pain=chain.max_pain if chain else None,
        vix=views.vix,
        step=chain.step if chain else None,
        rows=rows,
    )


def table_row(entry: HistoryRecord) -> Dict[str, Optional[str]]:
    row: Dict[str, Optional[str]] = {PCR_TIME: entry.record.time}
    for header, value in entry.record.as_row().items():
        if header == PCR_TIME:
            continue
        if value is None:
            row[header] = None
        elif "PCR" in header:
            row[header] = f"{value:.2f}"
        else:
            row[header] = format_compact(value)
    return row


def pcr_response(instrument: str, views: EngineViews) -> PcrTableResponse:
    return PcrTableResponse(
        instrument=instrument,
        rows=[table_row(entry) for entry in views.table],
        new_top_row=views.new_top_row,
        bias=BiasResponse.model_validate(views.bias) if views.bias else None,
        trend_short=TrendResponse.model_validate(views.trend_short),
        trend_long=TrendResponse.model_validate(views.trend_long),
    )


# --- 1) GET endpoints ---

@app.get("/signal", response_model=SignalResponse, tags=["Signal"])
async def get_signal(instrument: str = "NIFTY"):
    """Score, regime, directional call, checklist and strike plan for one instrument."""
    return signal_response(get_tracker(instrument))


@app.get("/chain", response_model=ChainResponse, tags=["Chain"])
async def get_chain(instrument: str = "NIFTY"):
    """Visible chain slice around ATM with per-strike highlights."""
    tracker = get_tracker(instrument)
    return chain_response(tracker.instrument, tracker.views)


@app.post("/chain/expiry", response_model=ChainResponse, tags=["Chain"])
async def set_chain_expiry(expiry: str, instrument: str = "NIFTY"):
    """Switch the tracked expiry and return the first chain fetched for it."""
    tracker = get_tracker(instrument)
    known = tracker.views.chain.expiries if tracker.views.chain else ()
    if known and expiry not in known:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown expiry {expiry}.")
    if expiry != tracker.expiry:
        tracker.set_expiry(expiry)
        await tracker.poll_once()
    return chain_response(tracker.instrument, tracker.views)


@app.get("/pcr", response_model=PcrTableResponse, tags=["PCR"])
async def get_pcr(instrument: str = "NIFTY"):
    tracker = get_tracker(instrument)
    return pcr_response(tracker.instrument, tracker.views)


@app.get("/journal", response_model=JournalResponse, tags=["Signal"])
async def get_journal(instrument: str = "NIFTY"):
    tracker = get_tracker(instrument)
    return JournalResponse(
        instrument=tracker.instrument,
        entries=[JournalEntryResponse.model_validate(e) for e in tracker.views.journal],
    )


@app.get("/health", tags=["Service"])
async def health():
    return {
        "status": "ok",
        "instruments": {
            name: {"stale": t.stale, "ticks": t.state.ticks, "last_error": t.last_error}
            for name, t in TRACKERS.items()
        },
    }


# --- 2) WS /ws/signal Endpoint ---

def _ws_payload(tracker: InstrumentTracker) -> dict:
    a = tracker.views.analytics
    return {
        "instrument": tracker.instrument,
        "direction": a.direction,
        "score": a.score,
        "regime": a.regime,
        "confirmed": a.confirmed,
        "stale": tracker.stale,
    }


@app.websocket("/ws/signal/{instrument}")
async def websocket_endpoint(websocket: WebSocket, instrument: str):
    """Stream the directional call; a message goes out whenever direction or score moves."""
    await websocket.accept()
    tracker = TRACKERS.get(instrument.upper())
    if not tracker:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=f"Instrument {instrument} not tracked.")
        return

    try:
        # Send an initial snapshot immediately so clients receive something on connect
        payload = _ws_payload(tracker)
        await websocket.send_json(payload)
        last = [payload["direction"], payload["score"]]
        while True:
            payload = _ws_payload(tracker)
            if [payload["direction"], payload["score"]] != last:
                await websocket.send_json(payload)
                last = [payload["direction"], payload["score"]]
            await asyncio.sleep(0.1)

    except WebSocketDisconnect:
        logger.info("Client disconnected from %s WebSocket.", instrument)
    except Exception as e:
        logger.warning("WebSocket error: %s", e)
    finally:
        # Attempt graceful close if still connected
        try:
            await websocket.close()
        except Exception:
            pass


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="127.0.0.1", port=8001)
