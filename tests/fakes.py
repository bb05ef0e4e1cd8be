"""Fake upstream providers, clock and LLM client shared by the tests."""

from __future__ import annotations

from collections import Counter
from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx


PROTOCOLS = [
    {
        "name": "Lido",
        "tvl": 2.5e10,
        "category": "Liquid Staking",
        "chains": ["Ethereum", "Solana"],
        "url": "https://lido.fi",
        "listedAt": 1608422400,
    },
    {"name": "Aave", "tvl": 1.2e10, "category": "Lending", "chains": [], "url": "https://aave.com"},
    {"name": "Tiny", "tvl": 5e5, "category": "Yield", "chains": ["Ethereum"]},
]

POOLS = {
    "status": "success",
    "data": [
        {"project": "aave-v3", "symbol": "USDC", "apy": 4.0, "tvlUsd": 2e8, "chain": "Ethereum", "pool": "p1"},
        {"project": "curve", "symbol": "DAI-USDC", "apy": 8.0, "tvlUsd": 5e7, "chain": "Ethereum", "pool": "p2"},
        {"project": "scam", "symbol": "XYZ", "apy": 5000.0, "tvlUsd": 1e7, "chain": "BSC", "pool": "p3"},
        {"project": "dust", "symbol": "ABC", "apy": 12.0, "tvlUsd": 5e4, "chain": "BSC", "pool": "p4"},
    ],
}

TOKENS = [
    {
        "id": "ethereum",
        "symbol": "eth",
        "name": "Ethereum",
        "current_price": 3000.0,
        "market_cap": 3.6e11,
        "price_change_percentage_24h": 2.5,
        "total_volume": 1.5e10,
        "circulating_supply": 1.2e8,
    },
    {
        "id": "bitcoin",
        "symbol": "btc",
        "name": "Bitcoin",
        "current_price": 60000.0,
        "market_cap": 1.2e12,
        "price_change_percentage_24h": -1.0,
        "total_volume": 3e10,
        "circulating_supply": 1.9e7,
    },
]

GAS = {"status": "1", "message": "OK", "result": {"SafeGasPrice": "12", "ProposeGasPrice": "14", "FastGasPrice": "18"}}

CHAINS = [
    {"name": "Ethereum", "tvl": 5e10, "tokenSymbol": "ETH", "chainId": 1},
    {"name": "Arbitrum", "tvl": 3e9, "tokenSymbol": "ARB", "chainId": 42161},
]


class FakeUpstream:
    """Routes provider URLs to canned payloads; a resource can be switched to fail."""

    def __init__(self):
        self.payloads = {
            "protocols": PROTOCOLS,
            "pools": POOLS,
            "tokens": TOKENS,
            "gas": GAS,
            "chains": CHAINS,
        }
        self.failing: dict[str, int] = {}
        self.calls: Counter[str] = Counter()

    def resource_for(self, request: httpx.Request) -> str:
        host, path = request.url.host, request.url.path
        if host == "yields.llama.fi":
            return "pools"
        if host == "api.coingecko.com":
            return "tokens"
        if host == "api.etherscan.io":
            return "gas"
        if path.endswith("/v2/chains"):
            return "chains"
        return "protocols"

    def __call__(self, request: httpx.Request) -> httpx.Response:
        resource = self.resource_for(request)
        self.calls[resource] += 1
        if resource in self.failing:
            return httpx.Response(self.failing[resource], json={"error": "upstream down"})
        return httpx.Response(200, json=self.payloads[resource])


class FakeClock:
    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def fake_completion(content: str = "Diversify.", total_tokens: int = 42):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(prompt_tokens=30, completion_tokens=total_tokens - 30, total_tokens=total_tokens),
    )


def fake_llm_client(create: AsyncMock | None = None):
    create = create or AsyncMock(return_value=fake_completion())
    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))


