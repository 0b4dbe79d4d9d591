# src/models.py
from dataclasses import dataclass, field
from typing import Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict

Tone = Literal["bullish", "bearish", "neutral"]
Mark = Literal["rising", "falling"]
Direction = Literal["BULLISH", "BEARISH", "NO TRADE"]
Regime = Literal["Trending", "Rangebound", "Volatile/Choppy", "Balanced"]
SessionBand = Literal["opening", "mid", "late", "outside"]
EntryStatus = Literal["OPEN", "CAUTION", "AVOID"]
SafetyTier = Literal["HIGH", "MEDIUM", "LOW"]

NO_TRADE: Direction = "NO TRADE"

# PCR table columns as the upstream service names them
PCR_TIME = "Time"
PCR_HEADERS: Tuple[str, ...] = (
    "Time",
    "PE Total OI Change",
    "CE Total OI Change",
    "PE OI Change (±2)",
    "CE OI Change (±2)",
    "ALL Change OI PCR",
    "Current Change OI PCR",
    "Current All OI PCR",
)
PCR_FIELDS: Tuple[str, ...] = PCR_HEADERS[1:]
PRIMARY_RATIO = "ALL Change OI PCR"


# --- option chain ---

@dataclass(frozen=True)
class LegQuote:
    """One side (call or put) of a chain row. ``None`` means the field was unknown."""
    oi: Optional[float] = None
    oi_change: Optional[float] = None
    ltp: Optional[float] = None
    volume: Optional[float] = None
    iv: Optional[float] = None
    delta: Optional[float] = None
    theta: Optional[float] = None
    gamma: Optional[float] = None
    vega: Optional[float] = None


@dataclass(frozen=True)
class ChainRow:
    strike: float
    call: LegQuote = field(default_factory=LegQuote)
    put: LegQuote = field(default_factory=LegQuote)


@dataclass(frozen=True)
class ChainSnapshot:
    rows: Tuple[ChainRow, ...] = ()
    expiry: Optional[str] = None
    expiries: Tuple[str, ...] = ()
    underlying: Optional[float] = None
    max_pain: Optional[float] = None
    vix: Optional[float] = None
    step: Optional[float] = None
    window: Optional[int] = None


# --- PCR table ---

@dataclass(frozen=True)
class PcrRecord:
    time: Optional[str] = None
    pe_total_oi_change: Optional[float] = None
    ce_total_oi_change: Optional[float] = None
    pe_oi_change_atm: Optional[float] = None
    ce_oi_change_atm: Optional[float] = None
    all_change_pcr: Optional[float] = None
    current_change_pcr: Optional[float] = None
    current_all_pcr: Optional[float] = None

    def tracked_values(self) -> Tuple[Optional[float], ...]:
        # same order as PCR_FIELDS
        return (
            self.pe_total_oi_change,
            self.ce_total_oi_change,
            self.pe_oi_change_atm,
            self.ce_oi_change_atm,
            self.all_change_pcr,
            self.current_change_pcr,
            self.current_all_pcr,
        )

    def content_key(self) -> str:
        """Identity of the row ignoring its timestamp."""
        return "|".join("" if v is None else repr(v) for v in self.tracked_values())

    def as_row(self) -> Dict[str, object]:
        row: Dict[str, object] = {PCR_TIME: self.time}
        row.update(zip(PCR_FIELDS, self.tracked_values()))
        return row


@dataclass(frozen=True)
class PcrSignals:
    pcr_signal: str = ""
    pcr_tone: Tone = "neutral"
    build_up_signal: str = ""
    build_up_strike: Optional[float] = None


@dataclass(frozen=True)
class PcrSnapshot:
    records: Tuple[PcrRecord, ...] = ()
    signals: Optional[PcrSignals] = None
    underlying: Optional[float] = None
    vix: Optional[float] = None
    vwap_signal: Optional[str] = None


@dataclass(frozen=True)
class HistoryRecord:
    key: str
    timestamp: float    # logical arrival time, epoch seconds
    record: PcrRecord

    @property
    def ratio(self) -> Optional[float]:
        return self.record.all_change_pcr


@dataclass(frozen=True)
class SamplePoint:
    timestamp: float
    value: float


# --- derived views ---

@dataclass(frozen=True)
class TrendView:
    window: str
    tone: Tone
    label: str
    narrative: str
    trail: str
    latest: Optional[float] = None
    slope: Optional[float] = None
    points: int = 0


@dataclass(frozen=True)
class PcrBias:
    tone: Tone
    title: str
    subtitle: str


@dataclass(frozen=True)
class StrikeHighlight:
    call: Optional[Mark] = None
    put: Optional[Mark] = None


# strike -> marks; strikes with no mark on either leg are absent
HighlightState = Dict[float, StrikeHighlight]


@dataclass(frozen=True)
class VisibleRow:
    strike: float
    call: LegQuote
    put: LegQuote
    is_atm: bool = False
    strike_pcr: Optional[float] = None
    pcr_tone: Tone = "neutral"
    highlight: StrikeHighlight = field(default_factory=StrikeHighlight)
    prev_call_oi_change: Optional[float] = None
    prev_put_oi_change: Optional[float] = None


@dataclass(frozen=True)
class Checklist:
    direction_set: bool = False
    regime_tradable: bool = False
    short_agrees: bool = False
    long_agrees: bool = False
    no_conflict: bool = False

    @property
    def complete(self) -> bool:
        return all(ok for _, ok in self.items())

    def items(self) -> List[Tuple[str, bool]]:
        return [
            ("Directional call", self.direction_set),
            ("Tradable regime", self.regime_tradable),
            ("Short window agrees", self.short_agrees),
            ("Long window agrees", self.long_agrees),
            ("No window conflict", self.no_conflict),
        ]


@dataclass(frozen=True)
class EntryWindow:
    status: EntryStatus
    reason: str
    band: SessionBand


@dataclass(frozen=True)
class StrikePlan:
    direction: Direction
    option_type: Literal["CE", "PE"]
    spot: float
    sell_strike: float
    hedge_strike: float
    distance_pct: float
    safety: SafetyTier


@dataclass(frozen=True)
class AnalyticsSnapshot:
    score: int
    regime: Regime
    direction: Direction
    entry_ready: bool
    confirmed: bool
    exit_warning: bool
    conflict: bool
    session_band: SessionBand
    checklist: Checklist
    entry_window: EntryWindow
    divergence_alerts: Tuple[str, ...] = ()
    sell_strike_plan: Optional[StrikePlan] = None


@dataclass(frozen=True)
class JournalEntry:
    timestamp: str
    direction: Direction
    score: int
    regime: Regime
    reason: str


# --- response models for the HTTP/WS surface ---

class _ViewModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class TrendResponse(_ViewModel):
    window: str
    tone: Tone
    label: str
    narrative: str
    trail: str
    latest: Optional[float] = None
    slope: Optional[float] = None
    points: int


class BiasResponse(_ViewModel):
    tone: Tone
    title: str
    subtitle: str


class PlanResponse(_ViewModel):
    direction: Direction
    option_type: Literal["CE", "PE"]
    spot: float
    sell_strike: float
    hedge_strike: float
    distance_pct: float
    safety: SafetyTier


class EntryWindowResponse(_ViewModel):
    status: EntryStatus
    reason: str
    band: SessionBand


class ChecklistItemResponse(BaseModel):
    label: str
    ok: bool


class SignalResponse(BaseModel):
    instrument: str
    score: Optional[int] = None
    regime: Optional[Regime] = None
    direction: Direction = NO_TRADE
    entry_ready: bool = False
    confirmed: bool = False
    exit_warning: bool = False
    conflict: bool = False
    divergence_alerts: List[str] = []
    checklist: List[ChecklistItemResponse] = []
    entry_window: Optional[EntryWindowResponse] = None
    sell_strike_plan: Optional[PlanResponse] = None
    trend_short: Optional[TrendResponse] = None
    trend_long: Optional[TrendResponse] = None
    stale: bool = False
    last_error: Optional[str] = None


class LegResponse(_ViewModel):
    oi: Optional[float] = None
    oi_change: Optional[float] = None
    ltp: Optional[float] = None
    volume: Optional[float] = None
    iv: Optional[float] = None
    delta: Optional[float] = None
    theta: Optional[float] = None
    gamma: Optional[float] = None
    vega: Optional[float] = None


class ChainRowResponse(BaseModel):
    strike: float
    is_atm: bool
    strike_pcr: Optional[float] = None
    pcr_tone: Tone
    call: LegResponse
    put: LegResponse
    call_highlight: Optional[Mark] = None
    put_highlight: Optional[Mark] = None
    prev_call_oi_change: Optional[float] = None
    prev_put_oi_change: Optional[float] = None


class ChainResponse(BaseModel):
    instrument: str
    expiry: Optional[str] = None
    expiries: List[str] = []
    underlying: Optional[float] = None
    max_pain: Optional[float] = None
    vix: Optional[float] = None
    step: Optional[float] = None
    rows: List[ChainRowResponse] = []


class PcrTableResponse(BaseModel):
    instrument: str
    headers: List[str] = list(PCR_HEADERS)
    rows: List[Dict[str, Optional[str]]] = []
    new_top_row: bool = False
    bias: Optional[BiasResponse] = None
    trend_short: Optional[TrendResponse] = None
    trend_long: Optional[TrendResponse] = None


class JournalEntryResponse(_ViewModel):
    timestamp: str
    direction: Direction
    score: int
    regime: Regime
    reason: str


class JournalResponse(BaseModel):
    instrument: str
    entries: List[JournalEntryResponse] = []
