# zyra/settings.py
# Purpose: One place for every environment knob the service reads.
# Pitfalls: Read once at startup; changing env vars later has no effect.

from __future__ import annotations

import os
from dataclasses import dataclass, field

DEFAULT_TOKEN_IDS = ("ethereum", "bitcoin", "usd-coin", "chainlink", "uniswap")


def _env(*names: str, default: str | None = None) -> str | None:
    """Return the first non-empty env var among `names`."""
    for name in names:
        val = os.getenv(name)
        if val is not None and val.strip() != "":
            return val.strip()
    return default


def _csv(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def parse_resource_ttls(raw: str | None) -> dict[str, float]:
    """
    Parse "gas-prices=15,protocols=300" into {"gas-prices": 15.0, "protocols": 300.0}.
    Raises ValueError on malformed pairs.
    """
    ttls: dict[str, float] = {}
    for pair in _csv(raw):
        name, sep, seconds = pair.partition("=")
        if not sep or not name.strip():
            raise ValueError(f"invalid resource ttl: {pair!r}")
        value = float(seconds)
        if value <= 0:
            raise ValueError(f"resource ttl must be positive: {pair!r}")
        ttls[name.strip()] = value
    return ttls


@dataclass(frozen=True)
class Settings:
    # market data
    cache_ttl_sec: float = 60.0
    resource_ttls: dict[str, float] = field(default_factory=dict)
    http_timeout_sec: float = 8.0
    default_tokens: tuple[str, ...] = DEFAULT_TOKEN_IDS
    etherscan_api_key: str = "YourApiKeyToken"

    # agent relay
    openai_api_key: str | None = None
    agent_model: str = "gpt-3.5-turbo"
    persona_model: str = "gpt-4o-mini"
    max_tokens: int = 500
    temperature: float = 0.7

    # notifications
    telegram_bot_token: str | None = None
    telegram_chat_ids: tuple[int, ...] = ()
    sms_hourly_limit: int = 10

    # realtime stream
    realtime_interval_sec: float = 3.0

    @classmethod
    def from_env(cls) -> Settings:
        chat_ids = tuple(int(v) for v in _csv(_env("ZYRA_TELEGRAM_CHAT_IDS")))
        tokens = _csv(_env("ZYRA_DEFAULT_TOKENS")) or DEFAULT_TOKEN_IDS
        return cls(
            cache_ttl_sec=float(_env("ZYRA_CACHE_TTL_SEC", default="60")),
            resource_ttls=parse_resource_ttls(_env("ZYRA_RESOURCE_TTLS")),
            http_timeout_sec=float(_env("ZYRA_HTTP_TIMEOUT_SEC", default="8")),
            default_tokens=tokens,
            etherscan_api_key=_env("ETHERSCAN_API_KEY", default="YourApiKeyToken"),
            openai_api_key=_env("OPENAI_API_KEY"),
            agent_model=_env("ZYRA_AGENT_MODEL", "AGENT_MODEL", default="gpt-3.5-turbo"),
            persona_model=_env("ZYRA_PERSONA_MODEL", default="gpt-4o-mini"),
            max_tokens=int(_env("ZYRA_MAX_TOKENS", "MAX_TOKENS_PER_REQUEST", default="500")),
            temperature=float(_env("ZYRA_AGENT_TEMPERATURE", "AGENT_TEMPERATURE", default="0.7")),
            telegram_bot_token=_env("TELEGRAM_BOT_TOKEN"),
            telegram_chat_ids=chat_ids,
            sms_hourly_limit=int(_env("ZYRA_SMS_HOURLY_LIMIT", default="10")),
            realtime_interval_sec=float(_env("ZYRA_REALTIME_INTERVAL_SEC", default="3")),
        )
