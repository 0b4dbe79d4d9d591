"""HTTP client for the upstream option-chain / PCR service."""

from typing import Any, Optional, Protocol, Tuple

import httpx

from config import VIX_KEY, EngineConfig
from logging_utils import get_logger
from models import ChainSnapshot, PcrSnapshot
from normalize import normalize_chain_snapshot, normalize_pcr_snapshot, parse_quote

logger = get_logger(__name__)

CHAIN_PATH = "/api/nifty/option-chain"
PCR_PATH = "/api/nifty/pcr"
QUOTE_PATH = "/api/upstox/ltp"


class AcquisitionError(RuntimeError):
    """Upstream fetch failed (transport error, non-2xx, or non-JSON body)."""


class DataSource(Protocol):
    expiry: Optional[str]

    async def fetch_chain(self) -> ChainSnapshot: ...

    async def fetch_pcr(self) -> PcrSnapshot: ...

    async def fetch_quote(self) -> Tuple[Optional[float], Optional[float]]: ...

    async def aclose(self) -> None: ...


class HttpDataSource:
    """Fetches and normalizes snapshots for one instrument."""

    def __init__(
        self,
        base_url: str,
        instrument_key: str,
        expiry: Optional[str] = None,
        vix_key: str = VIX_KEY,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.instrument_key = instrument_key
        self.expiry = expiry
        self.vix_key = vix_key
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    @classmethod
    def from_config(cls, cfg: EngineConfig, instrument: str) -> "HttpDataSource":
        return cls(cfg.base_url, cfg.instrument_key(instrument), expiry=cfg.expiry, timeout=cfg.request_timeout_s)

    async def _get_json(self, path: str, params: dict) -> Any:
        try:
            resp = await self._client.get(path, params=params, headers={"Cache-Control": "no-store"})
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as exc:
            detail = _error_detail(exc.response)
            raise AcquisitionError(f"{path} returned {exc.response.status_code}: {detail}") from exc
        except httpx.HTTPError as exc:
            raise AcquisitionError(f"{path} request failed: {exc}") from exc
        except ValueError as exc:
            raise AcquisitionError(f"{path} returned a non-JSON body") from exc

    async def fetch_chain(self) -> ChainSnapshot:
        requested = self.expiry
        params = {"instrument_key": self.instrument_key}
        if requested:
            params["expiry_date"] = requested
        snapshot = normalize_chain_snapshot(await self._get_json(CHAIN_PATH, params))
        # follow the expiry the server settled on, unless it was switched meanwhile
        if snapshot.expiry and self.expiry == requested:
            self.expiry = snapshot.expiry
        return snapshot

    async def fetch_pcr(self) -> PcrSnapshot:
        return normalize_pcr_snapshot(await self._get_json(PCR_PATH, {"instrument_key": self.instrument_key}))

    async def fetch_quote(self) -> Tuple[Optional[float], Optional[float]]:
        payload = await self._get_json(QUOTE_PATH, {"keys": f"{self.instrument_key},{self.vix_key}"})
        return parse_quote(payload, self.instrument_key, self.vix_key)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def _error_detail(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return str(body)[:200]
