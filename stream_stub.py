# stream_stub.py
# Simulated option-chain / PCR source for local runs and tests.
# Usage example:
#   import asyncio
#   from stream_stub import snapshot_stream
#   async def main():
#       async for chain, pcr in snapshot_stream("NIFTY", interval_ms=500):
#           print(pcr.records[-1])
#   asyncio.run(main())

import asyncio
import random
import time
from datetime import date, datetime, timedelta
from typing import AsyncIterator, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from models import ChainSnapshot, PcrSnapshot
from normalize import normalize_chain_snapshot, normalize_pcr_snapshot

BASE_SPOTS: Dict[str, float] = {"NIFTY": 22500.0, "BANKNIFTY": 48000.0, "FINNIFTY": 21500.0}
TABLE_ROWS = 60
EXPIRY_WEEKDAY = 1  # Tuesday


def weekly_expiries(today: date, count: int = 4) -> List[str]:
    """The next ``count`` weekly expiry dates, today included when it is one."""
    first = today + timedelta(days=(EXPIRY_WEEKDAY - today.weekday()) % 7)
    return [(first + timedelta(weeks=i)).isoformat() for i in range(count)]


class StubDataSource:
    """Random-walk snapshots shaped like the upstream JSON payloads.

    Payloads go through the same normalizer as real responses. Roughly one
    poll in three leaves the PCR table unchanged, the way the upstream table
    only grows once per minute.
    """

    def __init__(self, instrument: str = "NIFTY", step: float = 50.0, strikes_each_side: int = 10,
                 seed: Optional[int] = None, tz: str = "Asia/Kolkata", expiry: Optional[str] = None):
        self.instrument = instrument.upper()
        self.step = step
        self.strikes_each_side = strikes_each_side
        self.tz = tz
        self.expiry = expiry
        self.expiries = weekly_expiries(datetime.now(ZoneInfo(tz)).date())
        self._rng = random.Random(seed)
        self.spot = BASE_SPOTS.get(self.instrument, 20000.0)
        self.vix = 13.5
        self.pcr = 1.0
        self._records: List[dict] = []
        self._oi: Dict[Tuple[float, str], float] = {}
        self._prev_oi: Dict[Tuple[float, str], float] = {}

    def _walk(self) -> None:
        self.spot = max(1.0, self.spot * (1.0 + self._rng.uniform(-0.0006, 0.0006)))
        self.vix = max(8.0, self.vix + self._rng.gauss(0.0, 0.05))
        self.pcr = min(2.5, max(0.3, self.pcr + self._rng.gauss(0.0, 0.04)))

    def chain_payload(self) -> dict:
        self._walk()
        atm = round(self.spot / self.step) * self.step
        chain = []
        for i in range(-self.strikes_each_side, self.strikes_each_side + 1):
            strike = atm + i * self.step
            row = {"strike": strike}
            for leg in ("call", "put"):
                key = (strike, leg)
                prev = self._oi.get(key, self._rng.uniform(2e5, 3e6))
                self._prev_oi.setdefault(key, prev)
                oi = max(0.0, prev * (1.0 + self._rng.uniform(-0.03, 0.04)))
                self._oi[key] = oi
                moneyness = (strike - self.spot) / self.spot
                row[leg] = {
                    "market_data": {
                        "oi": round(oi),
                        "prev_oi": round(self._prev_oi[key]),
                        "ltp": round(max(0.05, 120.0 * (1 - abs(moneyness) * 40)), 2),
                        "volume": round(self._rng.uniform(1e4, 5e6)),
                    },
                    "option_greeks": {
                        "iv": round(self.vix + abs(moneyness) * 100, 2),
                        "delta": round(0.5 - moneyness * 10 if leg == "call" else -0.5 - moneyness * 10, 3),
                        "theta": round(-self._rng.uniform(5, 20), 2),
                        "gamma": round(self._rng.uniform(0.0001, 0.002), 5),
                        "vega": round(self._rng.uniform(5, 15), 2),
                    },
                }
            chain.append(row)
        return {
            "expiry": self.expiry if self.expiry in self.expiries else self.expiries[0],
            "expiries": list(self.expiries),
            "underlying": round(self.spot, 2),
            "maxPain": atm,
            "vix": round(self.vix, 2),
            "step": self.step,
            "window": 5,
            "chain": chain,
        }

    def pcr_payload(self) -> dict:
        if not self._records or self._rng.random() > 0.33:
            ce = self._rng.uniform(1e6, 5e6)
            pe = ce * self.pcr
            self._records.append({
                "Time": datetime.now(ZoneInfo(self.tz)).strftime("%H:%M:%S"),
                "PE Total OI Change": round(pe),
                "CE Total OI Change": round(ce),
                "PE OI Change (±2)": round(pe * 0.4),
                "CE OI Change (±2)": round(ce * 0.4),
                "ALL Change OI PCR": round(self.pcr, 2),
                "Current Change OI PCR": round(self.pcr * self._rng.uniform(0.9, 1.1), 2),
                "Current All OI PCR": round(self.pcr * self._rng.uniform(0.95, 1.05), 2),
            })
            del self._records[:-TABLE_ROWS]
        return {"records": list(self._records), "underlying": round(self.spot, 2), "vix": round(self.vix, 2)}

    async def fetch_chain(self) -> ChainSnapshot:
        return normalize_chain_snapshot(self.chain_payload())

    async def fetch_pcr(self) -> PcrSnapshot:
        return normalize_pcr_snapshot(self.pcr_payload())

    async def fetch_quote(self) -> Tuple[Optional[float], Optional[float]]:
        return round(self.spot, 2), round(self.vix, 2)

    async def aclose(self) -> None:
        return None


async def snapshot_stream(instrument: str = "NIFTY", interval_ms: int = 3000,
                          seed: Optional[int] = None) -> AsyncIterator[Tuple[ChainSnapshot, PcrSnapshot]]:
    """Yield (chain, pcr) snapshot pairs at ~interval_ms cadence."""
    source = StubDataSource(instrument, seed=seed)
    while True:
        yield await source.fetch_chain(), await source.fetch_pcr()
        await asyncio.sleep(max(0.0, interval_ms / 1000.0))


if __name__ == "__main__":
    async def _demo():
        async for chain, pcr in snapshot_stream("NIFTY", interval_ms=500):
            print(time.strftime("%H:%M:%S"), chain.underlying, pcr.records[-1].all_change_pcr)
    asyncio.run(_demo())
