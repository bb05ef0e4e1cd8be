from __future__ import annotations

import math
from datetime import UTC, datetime
from typing import Any

# Upstream feeds are loosely typed; each validator returns a normalized dict
# or None so a single malformed record never fails a whole listing.


def parse_timestamp(ts: Any) -> datetime | None:
    """Convert epoch seconds, epoch milliseconds or an ISO string into an aware UTC datetime."""
    if ts is None or isinstance(ts, bool):
        return None
    if isinstance(ts, int | float):
        if math.isnan(ts) or ts <= 0:
            return None
        seconds = ts / 1000.0 if ts > 1e11 else float(ts)
        try:
            return datetime.fromtimestamp(seconds, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(ts, str):
        raw = ts.strip()
        if raw.isdigit():
            return parse_timestamp(int(raw))
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=UTC)
        return parsed.astimezone(UTC)
    return None


def _number(val: Any) -> float | None:
    if val is None or isinstance(val, bool):
        return None
    try:
        out = float(val)
    except (TypeError, ValueError):
        return None
    if math.isnan(out) or math.isinf(out):
        return None
    return out


def _text(val: Any) -> str | None:
    if val is None:
        return None
    out = str(val).strip()
    return out or None


def validate_protocol_record(rec: Any) -> dict[str, Any] | None:
    """DeFiLlama /protocols entry -> {name, tvl, category, chain, url, founded}."""
    if not isinstance(rec, dict):
        return None
    name = _text(rec.get("name"))
    tvl = _number(rec.get("tvl"))
    if name is None or tvl is None:
        return None

    chains = rec.get("chains") or []
    chain = _text(chains[0]) if isinstance(chains, list) and chains else None

    return {
        "name": name,
        "tvl": tvl,
        "category": _text(rec.get("category")) or "Unknown",
        "chain": chain or "Multi-chain",
        "url": _text(rec.get("url")),
        # DeFiLlama publishes listedAt (epoch seconds); some mirrors use founded
        "founded": parse_timestamp(rec.get("founded") or rec.get("listedAt")),
    }


def validate_pool_record(rec: Any) -> dict[str, Any] | None:
    """DeFiLlama yields pool -> {project, symbol, apy, tvl, chain, pool, reward_tokens}."""
    if not isinstance(rec, dict):
        return None
    project = _text(rec.get("project"))
    symbol = _text(rec.get("symbol"))
    apy = _number(rec.get("apy"))
    tvl = _number(rec.get("tvlUsd"))
    if project is None or symbol is None or apy is None or tvl is None:
        return None

    rewards = rec.get("rewardTokens") or []
    if not isinstance(rewards, list):
        rewards = []

    return {
        "project": project,
        "symbol": symbol,
        "apy": apy,
        "tvl": tvl,
        "chain": _text(rec.get("chain")) or "Unknown",
        "pool": _text(rec.get("pool")),
        "reward_tokens": [str(r) for r in rewards if r],
    }


def validate_token_record(rec: Any) -> dict[str, Any] | None:
    """CoinGecko /coins/markets entry -> TokenQuote fields (values may be None)."""
    if not isinstance(rec, dict):
        return None
    token_id = _text(rec.get("id"))
    if token_id is None:
        return None
    return {
        "id": token_id,
        "symbol": _text(rec.get("symbol")) or token_id,
        "name": _text(rec.get("name")),
        "price": _number(rec.get("current_price")),
        "market_cap": _number(rec.get("market_cap")),
        "change24h_percent": _number(rec.get("price_change_percentage_24h")),
        "volume24h": _number(rec.get("total_volume")),
        "circulating_supply": _number(rec.get("circulating_supply")),
    }
