from datetime import UTC, datetime

import pytest

from zyra.validator import (
    parse_timestamp,
    validate_pool_record,
    validate_protocol_record,
    validate_token_record,
)


@pytest.mark.parametrize(
    "raw",
    [1700000000, 1700000000000, "1700000000", "2023-11-14T22:13:20Z", "2023-11-14T22:13:20"],
)
def test_parse_timestamp_formats(raw):
    assert parse_timestamp(raw) == datetime(2023, 11, 14, 22, 13, 20, tzinfo=UTC)


@pytest.mark.parametrize("raw", [None, True, 0, -5, "yesterday", float("nan"), []])
def test_parse_timestamp_rejects_garbage(raw):
    assert parse_timestamp(raw) is None


def test_protocol_record_defaults():
    rec = validate_protocol_record({"name": " Aave ", "tvl": "1.5e9", "chains": []})
    assert rec["name"] == "Aave"
    assert rec["tvl"] == 1.5e9
    assert rec["category"] == "Unknown"
    assert rec["chain"] == "Multi-chain"
    assert rec["founded"] is None


def test_protocol_record_uses_first_chain_and_listed_at():
    rec = validate_protocol_record(
        {"name": "Lido", "tvl": 1e10, "chains": ["Ethereum", "Solana"], "listedAt": 1700000000}
    )
    assert rec["chain"] == "Ethereum"
    assert rec["founded"].year == 2023


@pytest.mark.parametrize(
    "raw", [None, "Lido", {"name": "Lido"}, {"tvl": 1e9}, {"name": "X", "tvl": "lots"}]
)
def test_protocol_record_rejects_incomplete(raw):
    assert validate_protocol_record(raw) is None


def test_pool_record():
    rec = validate_pool_record(
        {
            "project": "curve",
            "symbol": "DAI-USDC",
            "apy": 8,
            "tvlUsd": 5e7,
            "pool": "abc",
            "rewardTokens": ["0xcrv", None],
        }
    )
    assert rec == {
        "project": "curve",
        "symbol": "DAI-USDC",
        "apy": 8.0,
        "tvl": 5e7,
        "chain": "Unknown",
        "pool": "abc",
        "reward_tokens": ["0xcrv"],
    }


def test_pool_record_without_apy_is_dropped():
    assert validate_pool_record({"project": "curve", "symbol": "X", "apy": None, "tvlUsd": 1}) is None


def test_token_record_maps_market_fields_and_keeps_symbol():
    rec = validate_token_record(
        {
            "id": "ethereum",
            "symbol": "eth",
            "current_price": 3000,
            "price_change_percentage_24h": None,
            "total_volume": 1e9,
        }
    )
    assert rec["symbol"] == "eth"
    assert rec["price"] == 3000.0
    assert rec["change24h_percent"] is None
    assert rec["volume24h"] == 1e9
    assert rec["market_cap"] is None
