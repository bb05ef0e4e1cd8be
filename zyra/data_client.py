"""
DeFi market data client on top of the shared TTL cache.

Resources (cache key -> upstream):
  protocols            -> DeFiLlama  /protocols
  token-prices:<ids>   -> CoinGecko  /coins/markets
  yield-opportunities  -> DeFiLlama  yields /pools
  gas-prices           -> Etherscan  gastracker/gasoracle
  chain:<name>         -> DeFiLlama  /v2/chains
  market-summary       -> fan-out over the first three

Notes / Pitfalls:
- Every fetcher is a single GET with an explicit timeout; failures raise FetchError.
- The cache serves an expired entry when a refresh fails, so data can be older than the TTL.
- The gas oracle never fails outward: it falls back to a randomized plausible estimate.
- Filters keep upstream order; nothing is re-sorted locally.
"""

from __future__ import annotations

import asyncio
import logging
import os
import random
import re
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any

import httpx

from zyra.cache import CacheResult, TTLCache
from zyra.errors import FetchError, InvalidInputError, NotFoundError
from zyra.observability import UPSTREAM_REQUESTS
from zyra.schemas import (
    ChainInfo,
    DeFiProtocol,
    GasEstimate,
    MarketSummary,
    TokenQuote,
    YieldOpportunity,
)
from zyra.scoring import (
    DEFAULT_THRESHOLDS,
    RiskThresholds,
    categorize_pool,
    market_trend,
    pool_risk_score,
    protocol_risk_score,
)
from zyra.settings import Settings
from zyra.utils import utc_now_iso
from zyra.validator import validate_pool_record, validate_protocol_record, validate_token_record

# --------------------------------------------------------------------------------------
# Endpoints + filter policy
# --------------------------------------------------------------------------------------
LLAMA_API = os.getenv("ZYRA_LLAMA_API", "https://api.llama.fi")
LLAMA_YIELDS_API = os.getenv("ZYRA_LLAMA_YIELDS_API", "https://yields.llama.fi")
COINGECKO_API = os.getenv("ZYRA_COINGECKO_API", "https://api.coingecko.com/api/v3")
ETHERSCAN_API = os.getenv("ZYRA_ETHERSCAN_API", "https://api.etherscan.io/api")

MIN_PROTOCOL_TVL = 1_000_000
MAX_PROTOCOLS = 50

MIN_POOL_TVL = 100_000
MAX_POOL_APY = 1000  # anything above is a data artifact
MAX_POOLS = 20

MAX_TOKEN_IDS = 50
SUMMARY_TOP_N = 10

# Fallback gas tiers: [low, low + spread)
GAS_FALLBACK_TIERS = {"slow": 10.0, "standard": 15.0, "fast": 20.0}
GAS_FALLBACK_SPREAD = 5.0

_TOKEN_ID_RE = re.compile(r"^[a-z0-9][a-z0-9-]*$")

logger = logging.getLogger(__name__)


# --------------------------------------------------------------------------------------
# Pure helpers (no I/O)
# --------------------------------------------------------------------------------------
def normalize_token_ids(ids: Iterable[str] | str | None) -> tuple[str, ...]:
    """
    Accept a list or a comma-separated string of CoinGecko ids.
    Returns lower-cased ids in caller order, de-duplicated.
    """
    if ids is None:
        raise InvalidInputError("ids must not be empty")
    raw = ids.split(",") if isinstance(ids, str) else list(ids)

    out: list[str] = []
    for item in raw:
        token = str(item).strip().lower()
        if not token:
            continue
        if not _TOKEN_ID_RE.match(token):
            raise InvalidInputError(f"invalid token id: {item!r}", hint="use CoinGecko ids, e.g. 'ethereum'")
        if token not in out:
            out.append(token)

    if not out:
        raise InvalidInputError("ids must not be empty")
    if len(out) > MAX_TOKEN_IDS:
        raise InvalidInputError(f"at most {MAX_TOKEN_IDS} token ids per request (got {len(out)})")
    return tuple(out)


def token_cache_key(ids: Sequence[str]) -> str:
    # sorted so the same set of ids shares one entry regardless of order
    return "token-prices:" + ",".join(sorted(ids))


def normalize_protocols(
    payload: Any,
    *,
    thresholds: RiskThresholds = DEFAULT_THRESHOLDS,
    now: datetime | None = None,
) -> list[DeFiProtocol]:
    if not isinstance(payload, list):
        raise FetchError("protocols", "unexpected protocols payload (expected a list)")

    protocols: list[DeFiProtocol] = []
    for raw in payload:
        rec = validate_protocol_record(raw)
        if rec is None or rec["tvl"] <= MIN_PROTOCOL_TVL:
            continue
        protocols.append(
            DeFiProtocol(
                name=rec["name"],
                total_value_locked=rec["tvl"],
                category=rec["category"],
                chain=rec["chain"],
                risk_score=protocol_risk_score(
                    rec["tvl"], rec["category"], rec["founded"], now=now, thresholds=thresholds
                ),
                url=rec["url"],
            )
        )
        if len(protocols) >= MAX_PROTOCOLS:
            break
    return protocols


def normalize_pools(
    payload: Any, *, thresholds: RiskThresholds = DEFAULT_THRESHOLDS
) -> list[YieldOpportunity]:
    data = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(data, list):
        raise FetchError("yield-opportunities", "unexpected pools payload (missing 'data' list)")

    pools: list[YieldOpportunity] = []
    for raw in data:
        rec = validate_pool_record(raw)
        if rec is None:
            continue
        if not (0 < rec["apy"] < MAX_POOL_APY and rec["tvl"] > MIN_POOL_TVL):
            continue
        pools.append(
            YieldOpportunity(
                protocol=rec["project"],
                asset=rec["symbol"],
                apy=rec["apy"],
                tvl=rec["tvl"],
                risk_score=pool_risk_score(
                    rec["apy"], rec["tvl"], rec["symbol"], thresholds=thresholds
                ),
                category=categorize_pool(rec["symbol"], rec["project"]),
                chain=rec["chain"],
                pool_address=rec["pool"],
                reward_tokens=rec["reward_tokens"],
            )
        )
        if len(pools) >= MAX_POOLS:
            break
    return pools


def normalize_tokens(payload: Any) -> list[TokenQuote]:
    if not isinstance(payload, list):
        raise FetchError("token-prices", "unexpected token payload (expected a list)")
    quotes: list[TokenQuote] = []
    for raw in payload:
        rec = validate_token_record(raw)
        if rec is not None:
            quotes.append(TokenQuote(**rec))
    return quotes


def parse_gas_oracle(payload: Any) -> GasEstimate:
    """Etherscan gas oracle -> GasEstimate. Raises FetchError on an error payload."""
    result = payload.get("result") if isinstance(payload, dict) else None
    if not isinstance(result, dict) or str(payload.get("status", "1")) != "1":
        raise FetchError("gas-prices", f"gas oracle returned no result: {result!r}")

    def tier(field: str, default: float) -> float:
        try:
            return float(result.get(field) or default)
        except (TypeError, ValueError):
            return default

    return GasEstimate(
        slow=tier("SafeGasPrice", GAS_FALLBACK_TIERS["slow"]),
        standard=tier("ProposeGasPrice", GAS_FALLBACK_TIERS["standard"]),
        fast=tier("FastGasPrice", GAS_FALLBACK_TIERS["fast"]),
        timestamp=utc_now_iso(),
        source="oracle",
    )


def fallback_gas_estimate(rng: random.Random | None = None) -> GasEstimate:
    rng = rng or random.Random()
    values = {
        name: low + rng.random() * GAS_FALLBACK_SPREAD for name, low in GAS_FALLBACK_TIERS.items()
    }
    return GasEstimate(**values, timestamp=utc_now_iso(), source="fallback")


def summarize_market(
    protocols: Sequence[DeFiProtocol],
    tokens: Sequence[TokenQuote],
    yields: Sequence[YieldOpportunity],
    *,
    stale: bool = False,
    thresholds: RiskThresholds = DEFAULT_THRESHOLDS,
) -> MarketSummary:
    total_tvl = sum(p.total_value_locked for p in protocols)
    avg_apy = sum(y.apy for y in yields) / len(yields) if yields else 0.0
    return MarketSummary(
        total_tvl=total_tvl,
        protocol_count=len(protocols),
        avg_apy=avg_apy,
        top_protocols=list(protocols[:SUMMARY_TOP_N]),
        top_tokens=list(tokens[:SUMMARY_TOP_N]),
        top_yields=list(yields[:SUMMARY_TOP_N]),
        trend=market_trend((t.change24h_percent for t in tokens), thresholds=thresholds),
        last_update=utc_now_iso(),
        stale=stale,
    )


# --------------------------------------------------------------------------------------
# Service
# --------------------------------------------------------------------------------------
class DeFiDataService:
    """Cached access to protocol, token, yield, gas and chain data."""

    def __init__(
        self,
        cache: TTLCache,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        *,
        thresholds: RiskThresholds = DEFAULT_THRESHOLDS,
        rng: random.Random | None = None,
    ):
        self.cache = cache
        self.settings = settings or Settings()
        self.thresholds = thresholds
        self._client = client
        self._rng = rng or random.Random()

    # ---------- HTTP ----------

    async def _get_json(self, resource: str, url: str, params: dict[str, Any] | None = None) -> Any:
        timeout = self.settings.http_timeout_sec
        headers = {"Accept": "application/json"}
        try:
            if self._client is not None:
                resp = await self._client.get(url, params=params, headers=headers, timeout=timeout)
            else:
                async with httpx.AsyncClient(timeout=timeout) as client:
                    resp = await client.get(url, params=params, headers=headers)
            resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPStatusError as e:
            code = e.response.status_code
            err = FetchError(resource, f"{resource} upstream returned HTTP {code}", status_code=code)
            raise self._failed(err) from e
        except httpx.TimeoutException as e:
            err = FetchError(resource, f"{resource} upstream timed out after {timeout}s", timeout=True)
            raise self._failed(err) from e
        except httpx.RequestError as e:
            raise self._failed(FetchError(resource, f"{resource} upstream unreachable: {e}")) from e
        except ValueError as e:
            raise self._failed(FetchError(resource, f"{resource} upstream sent invalid JSON")) from e

        UPSTREAM_REQUESTS.labels(resource=resource, outcome="ok").inc()
        return payload

    @staticmethod
    def _failed(err: FetchError) -> FetchError:
        UPSTREAM_REQUESTS.labels(resource=err.resource, outcome="error").inc()
        logger.warning("%s", err.message, extra={"resource": err.resource})
        return err

    # ---------- Producers ----------

    async def _produce_protocols(self) -> list[DeFiProtocol]:
        payload = await self._get_json("protocols", f"{LLAMA_API}/protocols")
        return normalize_protocols(payload, thresholds=self.thresholds)

    async def _produce_tokens(self, ids: tuple[str, ...]) -> list[TokenQuote]:
        params = {
            "vs_currency": "usd",
            "ids": ",".join(ids),
            "order": "market_cap_desc",
            "per_page": 100,
            "page": 1,
            "sparkline": "false",
            "price_change_percentage": "24h",
        }
        payload = await self._get_json("token-prices", f"{COINGECKO_API}/coins/markets", params)
        return normalize_tokens(payload)

    async def _produce_yields(self) -> list[YieldOpportunity]:
        payload = await self._get_json("yield-opportunities", f"{LLAMA_YIELDS_API}/pools")
        return normalize_pools(payload, thresholds=self.thresholds)

    async def _produce_gas(self) -> GasEstimate:
        params = {
            "module": "gastracker",
            "action": "gasoracle",
            "apikey": self.settings.etherscan_api_key,
        }
        try:
            payload = await self._get_json("gas-prices", ETHERSCAN_API, params)
            return parse_gas_oracle(payload)
        except FetchError as e:
            logger.warning("gas oracle unavailable, using fallback estimate: %s", e)
            return fallback_gas_estimate(self._rng)

    async def _produce_chain(self, chain: str) -> ChainInfo | None:
        payload = await self._get_json("chains", f"{LLAMA_API}/v2/chains")
        if not isinstance(payload, list):
            raise FetchError("chains", "unexpected chains payload (expected a list)")
        wanted = chain.lower()
        for rec in payload:
            if isinstance(rec, dict) and str(rec.get("name", "")).lower() == wanted:
                return ChainInfo(
                    name=rec["name"],
                    tvl=rec.get("tvl"),
                    token_symbol=rec.get("tokenSymbol"),
                    chain_id=rec.get("chainId"),
                )
        return None

    async def _build_market_summary(self) -> MarketSummary:
        # all three must succeed (fresh or stale) or the summary fails
        protocols, tokens, yields = await asyncio.gather(
            self.lookup_protocols(),
            self.lookup_token_prices(self.settings.default_tokens),
            self.lookup_yield_opportunities(),
        )
        return summarize_market(
            protocols.value,
            tokens.value,
            yields.value,
            stale=any(r.stale for r in (protocols, tokens, yields)),
            thresholds=self.thresholds,
        )

    # ---------- Cache-aware lookups ----------

    async def lookup_protocols(self) -> CacheResult[list[DeFiProtocol]]:
        return await self.cache.lookup("protocols", self._produce_protocols)

    async def lookup_token_prices(
        self, ids: Iterable[str] | str | None = None
    ) -> CacheResult[list[TokenQuote]]:
        norm = normalize_token_ids(self.settings.default_tokens if ids is None else ids)
        return await self.cache.lookup(token_cache_key(norm), lambda: self._produce_tokens(norm))

    async def lookup_yield_opportunities(self) -> CacheResult[list[YieldOpportunity]]:
        return await self.cache.lookup("yield-opportunities", self._produce_yields)

    # ---------- Public API ----------

    async def get_protocols(self) -> list[DeFiProtocol]:
        return (await self.lookup_protocols()).value

    async def get_token_prices(self, ids: Iterable[str] | str | None = None) -> list[TokenQuote]:
        return (await self.lookup_token_prices(ids)).value

    async def get_yield_opportunities(self) -> list[YieldOpportunity]:
        return (await self.lookup_yield_opportunities()).value

    async def get_gas_prices(self) -> GasEstimate:
        return await self.cache.fetch_with_cache("gas-prices", self._produce_gas)

    async def get_chain(self, chain: str) -> ChainInfo:
        name = (chain or "").strip()
        if not name:
            raise InvalidInputError("chain must not be empty")
        info = await self.cache.fetch_with_cache(
            f"chain:{name.lower()}", lambda: self._produce_chain(name)
        )
        if info is None:
            raise NotFoundError(f"unknown chain: {name}")
        return info

    async def get_market_summary(self) -> MarketSummary:
        result = await self.cache.lookup("market-summary", self._build_market_summary)
        if result.stale and not result.value.stale:
            return result.value.model_copy(update={"stale": True})
        return result.value

    def refresh(self) -> None:
        """Force every resource to be refetched on next access."""
        self.cache.clear()
