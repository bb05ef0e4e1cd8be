# zyra/bot_commands.py
# Purpose: Turn inbound Telegram webhook text into a reply.
# Pitfalls: Data commands degrade to an apology; the webhook itself never fails on upstream errors.

from __future__ import annotations

import logging

from zyra.data_client import DeFiDataService
from zyra.errors import ZyraError
from zyra.notifications import TelegramRelay

logger = logging.getLogger(__name__)

HELP_TEXT = (
    "🤖 *ZYRA - Your AI DeFi Assistant*\n\n"
    "*Market:*\n"
    "/market - Live market summary\n"
    "/yields - Top yield opportunities\n"
    "/gas - Current gas prices\n\n"
    "*Notifications:*\n"
    "/subscribe - Enable smart notifications\n"
    "/unsubscribe - Disable notifications\n\n"
    "/help - Show this message"
)

UNKNOWN_TEXT = "🤔 I don't understand that command.\n\nUse /help to see available commands."


def _money(value: float) -> str:
    for unit, size in (("T", 1e12), ("B", 1e9), ("M", 1e6), ("K", 1e3)):
        if abs(value) >= size:
            return f"${value / size:.2f}{unit}"
    return f"${value:,.2f}"


async def _market_reply(data: DeFiDataService) -> str:
    summary = await data.get_market_summary()
    lines = [
        "📈 *Market Insights*",
        "",
        f"🚀 DeFi TVL (top {summary.protocol_count}): {_money(summary.total_tvl)}",
        f"💹 Average APY: {summary.avg_apy:.2f}%",
        f"🧭 Trend: {summary.trend.value}",
    ]
    if summary.top_tokens:
        lines += ["", "💰 Tokens:"]
        for t in summary.top_tokens[:5]:
            change = f"{t.change24h_percent:+.2f}%" if t.change24h_percent is not None else "n/a"
            price = f"${t.price:,.2f}" if t.price is not None else "n/a"
            lines.append(f"  • {t.symbol.upper()}: {price} ({change})")
    if summary.stale:
        lines += ["", "⚠️ Some data is delayed; providers are not responding."]
    return "\n".join(lines)


async def _yields_reply(data: DeFiDataService) -> str:
    pools = await data.get_yield_opportunities()
    if not pools:
        return "No yield opportunities match the filters right now."
    lines = ["💎 *Top Yields*", ""]
    for p in pools[:5]:
        lines.append(
            f"  • {p.protocol} {p.asset} ({p.chain}): {p.apy:.2f}% APY, risk {p.risk_score:.1f}/5"
        )
    return "\n".join(lines)


async def _gas_reply(data: DeFiDataService) -> str:
    gas = await data.get_gas_prices()
    note = " (estimate)" if gas.source == "fallback" else ""
    return (
        f"⛽ *Gas Prices*{note}\n\n"
        f"🐢 Slow: {gas.slow:.1f} gwei\n"
        f"🚗 Standard: {gas.standard:.1f} gwei\n"
        f"🚀 Fast: {gas.fast:.1f} gwei"
    )


async def handle_command(
    text: str | None,
    chat_id: int,
    relay: TelegramRelay,
    data: DeFiDataService,
    first_name: str = "there",
) -> str:
    """Return the reply for one message; subscription commands mutate the relay."""
    command = (text or "").strip().split(maxsplit=1)[0].lower() if text and text.strip() else ""
    # "/market@zyra_bot" in group chats
    command = command.split("@", 1)[0]

    if command == "/start":
        return (
            f"🤖 Welcome to ZYRA, {first_name}!\n\n"
            "Your AI agents are monitoring the markets.\n"
            "Use /subscribe for alerts or /help for all commands."
        )
    if command == "/help":
        return HELP_TEXT
    if command == "/subscribe":
        relay.subscribe(chat_id)
        return (
            "✅ Smart notifications enabled!\n\n"
            "I'll only notify you about:\n"
            "🚨 Critical portfolio changes\n"
            "💎 High-value opportunities\n"
            "⚠️ Risk alerts"
        )
    if command == "/unsubscribe":
        relay.unsubscribe(chat_id)
        return "❌ You've been unsubscribed from updates.\n\nUse /subscribe to start again."

    handlers = {"/market": _market_reply, "/yields": _yields_reply, "/gas": _gas_reply}
    handler = handlers.get(command)
    if handler is None:
        return UNKNOWN_TEXT
    try:
        return await handler(data)
    except ZyraError as e:
        logger.warning("bot command %s failed: %s", command, e)
        return "❌ Unable to fetch market data at this time. Please try again later."
