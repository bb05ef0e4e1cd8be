"""
Notification relays: event formatting, Telegram delivery, simulated SMS.

Independent of the market data layer; callers pass plain values in.
"""

from __future__ import annotations

import asyncio
import logging
import math
import random
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, Literal

from telegram import Bot
from telegram.error import BadRequest, Forbidden, TelegramError

from zyra.errors import DeliveryError, InvalidInputError, NotConfiguredError, RateLimitError
from zyra.schemas import DeliveryReport, Severity
from zyra.settings import Settings
from zyra.utils import mask_tail

logger = logging.getLogger(__name__)

TELEGRAM_MAX_LENGTH = 4096

SEVERITY_EMOJI = {
    Severity.INFO: "ℹ️",
    Severity.SUCCESS: "✅",
    Severity.WARNING: "⚠️",
    Severity.ERROR: "❌",
}


# --------------------------------------------------------------------------------------
# Formatters (pure)
# --------------------------------------------------------------------------------------
def _clock_line(now: datetime | None) -> str:
    now = now or datetime.now(UTC)
    return f"\n🕒 {now.strftime('%H:%M:%S')} UTC"


def with_severity(text: str, severity: Severity) -> str:
    return f"{SEVERITY_EMOJI[severity]} {text}"


def format_portfolio_update(
    total_value: float,
    daily_change: float,
    action: str | None = None,
    asset: str | None = None,
    *,
    now: datetime | None = None,
) -> tuple[str, Severity]:
    up = daily_change >= 0
    lines = [
        "💼 *Portfolio Update*",
        "",
        f"💰 Total Value: ${total_value:,.2f}",
        f"{'📈' if up else '📉'} 24h Change: {'+' if up else ''}{daily_change:.2f}%",
    ]
    if action:
        lines.append(f"⚡ Action: {action}")
    if asset:
        lines.append(f"🎯 Asset: {asset}")
    return "\n".join(lines) + "\n" + _clock_line(now), (Severity.SUCCESS if up else Severity.WARNING)


AgentStatus = Literal["online", "offline", "active"]
_AGENT_STATUS_EMOJI = {"online": "🟢", "offline": "🔴", "active": "🔥"}


def format_agent_update(
    agent_name: str,
    status: AgentStatus,
    details: str | None = None,
    *,
    now: datetime | None = None,
) -> tuple[str, Severity]:
    if status not in _AGENT_STATUS_EMOJI:
        raise InvalidInputError(f"unknown agent status: {status!r}")
    lines = ["🤖 *Agent Update*", "", f"{_AGENT_STATUS_EMOJI[status]} {agent_name}: {status.upper()}"]
    if details:
        lines.append(f"📋 {details}")
    severity = Severity.WARNING if status == "offline" else Severity.INFO
    return "\n".join(lines) + "\n" + _clock_line(now), severity


AlertKind = Literal["opportunity", "risk", "news"]
_ALERT_EMOJI = {"opportunity": "💎", "risk": "⚠️", "news": "📰"}


def format_market_alert(
    kind: AlertKind,
    description: str,
    protocol: str | None = None,
    apy: str | None = None,
    tvl: str | None = None,
    *,
    now: datetime | None = None,
) -> tuple[str, Severity]:
    if kind not in _ALERT_EMOJI:
        raise InvalidInputError(f"unknown alert type: {kind!r}")
    lines = [f"{_ALERT_EMOJI[kind]} *Market {kind.capitalize()}*", ""]
    if protocol:
        lines.append(f"🏦 Protocol: {protocol}")
    if apy:
        lines.append(f"💹 APY: {apy}")
    if tvl:
        lines.append(f"💰 TVL: ${tvl}")
    lines.append(f"📝 {description}")
    severity = Severity.WARNING if kind == "risk" else Severity.INFO
    return "\n".join(lines) + "\n" + _clock_line(now), severity


TxStatus = Literal["pending", "completed", "failed"]
_TX_EMOJI = {"pending": "⏳", "completed": "✅", "failed": "❌"}
_TX_SEVERITY = {"pending": Severity.INFO, "completed": Severity.SUCCESS, "failed": Severity.ERROR}


def format_transaction_update(
    tx_type: str,
    amount: str,
    status: TxStatus,
    gas_optimization: str | None = None,
    *,
    now: datetime | None = None,
) -> tuple[str, Severity]:
    if status not in _TX_EMOJI:
        raise InvalidInputError(f"unknown transaction status: {status!r}")
    lines = [
        "💸 *Transaction Update*",
        "",
        f"{_TX_EMOJI[status]} Status: {status.upper()}",
        f"🔄 Type: {tx_type}",
        f"💰 Amount: {amount}",
    ]
    if gas_optimization:
        lines.append(f"⛽ Gas Saved: {gas_optimization}")
    return "\n".join(lines) + "\n" + _clock_line(now), _TX_SEVERITY[status]


def format_ai_insight(agent: str, insight: str, *, now: datetime | None = None) -> tuple[str, Severity]:
    text = f"🧠 *AI Insight*\n\n🤖 Agent: {agent}\n💡 {insight}\n" + _clock_line(now)
    return text, Severity.INFO


def split_message(text: str, max_length: int = TELEGRAM_MAX_LENGTH) -> list[str]:
    """Split on paragraphs, then lines, then hard-cut, so each chunk fits Telegram's limit."""
    if len(text) <= max_length:
        return [text]

    def pack(parts: list[str], sep: str) -> list[str]:
        chunks: list[str] = []
        current = ""
        for part in parts:
            candidate = f"{current}{sep}{part}" if current else part
            if len(candidate) <= max_length:
                current = candidate
                continue
            if current:
                chunks.append(current)
            current = part
        if current:
            chunks.append(current)
        return chunks

    out: list[str] = []
    for chunk in pack(text.split("\n\n"), "\n\n"):
        if len(chunk) <= max_length:
            out.append(chunk)
            continue
        for line_chunk in pack(chunk.split("\n"), "\n"):
            # a single line longer than the limit
            out.extend(line_chunk[i : i + max_length] for i in range(0, len(line_chunk), max_length))
    return [c for c in out if c.strip()]


# --------------------------------------------------------------------------------------
# Telegram
# --------------------------------------------------------------------------------------
class TelegramRelay:
    """Broadcasts to an in-memory set of subscribed chat ids."""

    def __init__(self, settings: Settings | None = None, bot: Any | None = None):
        self.settings = settings or Settings()
        if bot is None and self.settings.telegram_bot_token:
            bot = Bot(token=self.settings.telegram_bot_token)
        self._bot = bot
        self.subscribers: set[int] = set(self.settings.telegram_chat_ids)

    @property
    def configured(self) -> bool:
        return self._bot is not None

    def require_bot(self) -> Any:
        if self._bot is None:
            raise NotConfiguredError(
                "Telegram bot not configured", hint="set TELEGRAM_BOT_TOKEN to enable notifications"
            )
        return self._bot

    def subscribe(self, chat_id: int) -> bool:
        """Returns False if the chat was already subscribed."""
        if chat_id in self.subscribers:
            return False
        self.subscribers.add(chat_id)
        logger.info("telegram chat %s subscribed (%d total)", chat_id, len(self.subscribers))
        return True

    def unsubscribe(self, chat_id: int) -> bool:
        if chat_id not in self.subscribers:
            return False
        self.subscribers.discard(chat_id)
        logger.info("telegram chat %s unsubscribed (%d total)", chat_id, len(self.subscribers))
        return True

    async def send(self, chat_id: int, text: str, parse_mode: str | None = None) -> None:
        bot = self.require_bot()
        for chunk in split_message(text):
            await bot.send_message(chat_id=chat_id, text=chunk, parse_mode=parse_mode)

    async def broadcast(self, text: str, severity: Severity = Severity.INFO) -> DeliveryReport:
        """
        Send to every subscriber concurrently. A chat that blocked the bot or no
        longer exists (Forbidden / BadRequest) is dropped from the subscriber set.
        """
        self.require_bot()
        message = with_severity(text, severity)
        chat_ids = sorted(self.subscribers)
        results = await asyncio.gather(
            *(self.send(chat_id, message) for chat_id in chat_ids), return_exceptions=True
        )

        report = DeliveryReport()
        for chat_id, result in zip(chat_ids, results):
            if not isinstance(result, BaseException):
                report.sent += 1
                continue
            report.failed += 1
            if isinstance(result, Forbidden | BadRequest):
                self.subscribers.discard(chat_id)
                report.removed.append(chat_id)
                logger.warning("dropping telegram chat %s: %s", chat_id, result)
            elif isinstance(result, TelegramError):
                logger.error("telegram delivery to %s failed: %s", chat_id, result)
            else:
                raise result
        report.subscribers = len(self.subscribers)
        return report

    async def bot_info(self) -> dict[str, Any] | None:
        bot = self.require_bot()
        try:
            me = await bot.get_me()
        except TelegramError as e:
            raise DeliveryError(f"Telegram API error: {e}") from e
        return {"id": me.id, "username": me.username, "firstName": me.first_name}


# --------------------------------------------------------------------------------------
# Smart notifications (per-chat thresholds and cooldown)
# --------------------------------------------------------------------------------------
SmartKind = Literal["portfolio", "gas", "opportunity", "risk", "agent"]
Priority = Literal["low", "medium", "high", "critical"]

DEFAULT_PREFERENCES = ("🚨 Critical alerts only", "💎 New opportunities", "⚠️ Risk warnings")
SIGNIFICANT_AGENT_EVENTS = frozenset({"deployed", "critical_finding"})
_PRIORITY_SEVERITY = {"critical": Severity.ERROR, "high": Severity.WARNING}


@dataclass(frozen=True)
class SmartThresholds:
    portfolio_change: float = 0.05
    critical_change: float = 0.15
    gas_change: float = 0.30
    opportunity_apy: float = 10.0
    cooldown: timedelta = timedelta(hours=1)

    def as_dict(self) -> dict[str, float]:
        return {
            "portfolioChange": self.portfolio_change,
            "criticalChange": self.critical_change,
            "gasPriceChange": self.gas_change,
            "opportunityApy": self.opportunity_apy,
            "cooldownSec": self.cooldown.total_seconds(),
        }


@dataclass
class ChatNotifyState:
    last_portfolio_value: float = 0.0
    last_gas_price: float = 0.0
    last_alert: datetime | None = None
    preferences: list[str] = field(default_factory=lambda: list(DEFAULT_PREFERENCES))
    min_change: float = 0.05


def _number(data: dict[str, Any], key: str) -> float:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, int | float) or math.isnan(value):
        raise InvalidInputError(f"data.{key} must be a number")
    return float(value)


def relative_change(new: float, old: float) -> float:
    """|new - old| / old; any move away from an unset (zero) baseline counts as infinite."""
    if old == 0:
        return 0.0 if new == 0 else math.inf
    return abs(new - old) / abs(old)


def should_notify(
    kind: SmartKind,
    data: dict[str, Any],
    state: ChatNotifyState,
    priority: Priority,
    *,
    now: datetime,
    thresholds: SmartThresholds = SmartThresholds(),
) -> bool:
    """
    Critical always goes out. Otherwise a chat alerted within the cooldown only
    hears about high-priority events, and each kind has its own bar to clear.
    """
    if priority == "critical":
        return True
    in_cooldown = state.last_alert is not None and now - state.last_alert < thresholds.cooldown
    if in_cooldown and priority != "high":
        return False

    if kind == "portfolio":
        bar = thresholds.critical_change if priority == "high" else thresholds.portfolio_change
        return relative_change(_number(data, "newValue"), state.last_portfolio_value) >= bar
    if kind == "gas":
        return relative_change(_number(data, "newPrice"), state.last_gas_price) >= thresholds.gas_change
    if kind == "opportunity":
        apy = data.get("apy")
        high_apy = isinstance(apy, int | float) and apy >= thresholds.opportunity_apy
        return high_apy or data.get("protocol") == "trusted"
    if kind == "risk":
        return True
    if kind == "agent":
        return data.get("event") in SIGNIFICANT_AGENT_EVENTS
    return False


def _change_pct(new: float, old: float) -> str:
    return f"{(new - old) / old * 100:.2f}%" if old else "n/a"


def format_smart_message(
    kind: SmartKind, data: dict[str, Any], state: ChatNotifyState, *, now: datetime | None = None
) -> str:
    if kind == "portfolio":
        value = _number(data, "newValue")
        up = value >= state.last_portfolio_value
        lines = [
            f"{'📈' if up else '📉'} *Portfolio Update*",
            "",
            f"💰 Value: ${value:,.2f}",
            f"📊 Change: {_change_pct(value, state.last_portfolio_value)}",
            "⚡ Trigger: Significant movement detected",
        ]
    elif kind == "gas":
        price = _number(data, "newPrice")
        lines = [
            "⛽ *Gas Price Alert*",
            "",
            f"💸 Current: {price:g} gwei",
            f"📊 Change: {_change_pct(price, state.last_gas_price)}",
            f"💡 {'Good time for transactions!' if price < 20 else 'Consider waiting for lower fees'}",
        ]
    elif kind == "opportunity":
        lines = [
            "💎 *New DeFi Opportunity*",
            "",
            f"🏦 Protocol: {data.get('protocol', 'unknown')}",
            f"💹 APY: {data.get('apy', '?')}%",
            f"💰 TVL: ${data.get('tvl', '?')}",
            f"📋 {data.get('description', '')}",
        ]
    elif kind == "risk":
        lines = [
            "⚠️ *Risk Alert*",
            "",
            f"🚨 Level: {data.get('level', 'unknown')}",
            f"📋 {data.get('description', '')}",
            f"💡 Recommended Action: {data.get('recommendation', 'review positions')}",
        ]
    else:
        lines = ["🤖 *Agent Update*", "", f"{data.get('icon', '🤖')} {data.get('agentName', 'Agent')}"]
        lines.append(f"📋 {data.get('message', data.get('event', ''))}")
        if data.get("analysis"):
            lines.append(f"🧠 Analysis: {data['analysis']}")
    return "\n".join(lines) + "\n" + _clock_line(now)


class SmartNotifier:
    """Decides per chat whether an event is worth a Telegram message, then sends it there."""

    def __init__(
        self,
        telegram: TelegramRelay,
        thresholds: SmartThresholds | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ):
        self.telegram = telegram
        self.thresholds = thresholds or SmartThresholds()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._states: dict[int, ChatNotifyState] = {}

    async def notify(
        self, chat_id: int, kind: SmartKind, data: dict[str, Any], priority: Priority = "medium"
    ) -> dict[str, Any]:
        state = self._states.get(chat_id) or ChatNotifyState()
        now = self._clock()
        if not should_notify(kind, data, state, priority, now=now, thresholds=self.thresholds):
            return {"success": True, "sent": False, "reason": "Below threshold or too frequent"}

        severity = _PRIORITY_SEVERITY.get(priority, Severity.SUCCESS)
        text = with_severity(format_smart_message(kind, data, state, now=now), severity)
        try:
            await self.telegram.send(chat_id, text, parse_mode="Markdown")
        except TelegramError as e:
            logger.error("smart notification to %s failed: %s", chat_id, e)
            raise DeliveryError(f"Telegram API error: {e}") from e

        # state only advances once the message is out
        if kind == "portfolio":
            state.last_portfolio_value = _number(data, "newValue")
        elif kind == "gas":
            state.last_gas_price = _number(data, "newPrice")
        state.last_alert = now
        self._states[chat_id] = state
        return {"success": True, "sent": True, "message": "Notification sent successfully"}

    def preferences(self, chat_id: int) -> dict[str, Any]:
        state = self._states.get(chat_id)
        return {
            "success": True,
            "preferences": state.preferences if state else [],
            "threshold": state.min_change if state else self.thresholds.portfolio_change,
        }

    def stats(self) -> dict[str, Any]:
        return {"success": True, "totalUsers": len(self._states), "thresholds": self.thresholds.as_dict()}


# --------------------------------------------------------------------------------------
# SMS (simulated)
# --------------------------------------------------------------------------------------
_PHONE_RE = re.compile(r"^\+?[\d\s\-()]+$")


@dataclass
class SmsRecord:
    message: str
    timestamp: datetime
    agent_name: str | None = None
    status: Literal["pending", "sent", "delivered", "failed"] = "sent"


@dataclass
class SmsHistory:
    messages: list[SmsRecord] = field(default_factory=list)
    last_sent: datetime | None = None


class SmsRelay:
    """
    Stand-in for a real SMS provider: validates, rate limits, sleeps a little,
    and fails a configurable fraction of sends.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        rng: random.Random | None = None,
        latency: tuple[float, float] = (0.1, 0.3),
        failure_rate: float = 0.05,
        clock: Callable[[], datetime] | None = None,
    ):
        self.settings = settings or Settings()
        self._rng = rng or random.Random()
        self._latency = latency
        self._failure_rate = failure_rate
        self._clock = clock or (lambda: datetime.now(UTC))
        self._history: dict[str, SmsHistory] = {}

    @staticmethod
    def validate_mobile(mobile: str) -> str:
        mobile = (mobile or "").strip()
        if not mobile:
            raise InvalidInputError("mobile number is required")
        if not _PHONE_RE.match(mobile):
            raise InvalidInputError("invalid mobile number format")
        return mobile

    def _recent(self, history: SmsHistory, window: timedelta) -> list[SmsRecord]:
        cutoff = self._clock() - window
        return [m for m in history.messages if m.timestamp > cutoff]

    async def send(self, mobile: str, message: str, agent_name: str | None = None) -> dict[str, Any]:
        mobile = self.validate_mobile(mobile)
        if not message or not message.strip():
            raise InvalidInputError("message is required")

        limit = self.settings.sms_hourly_limit
        history = self._history.get(mobile) or SmsHistory()
        if len(self._recent(history, timedelta(hours=1))) >= limit:
            raise RateLimitError(f"rate limit exceeded: maximum {limit} SMS per hour")

        # claim the slot before yielding so concurrent sends see it
        record = SmsRecord(message=message, timestamp=self._clock(), agent_name=agent_name, status="pending")
        history.messages.append(record)
        self._history[mobile] = history

        low, high = self._latency
        if high > 0:
            await asyncio.sleep(low + self._rng.random() * (high - low))

        if self._rng.random() < self._failure_rate:
            history.messages.remove(record)
            if not history.messages:
                del self._history[mobile]
            logger.warning("simulated SMS delivery to %s failed", mask_tail(mobile))
            raise DeliveryError("failed to send SMS")

        now = self._clock()
        record.status = "sent"
        record.timestamp = now
        history.last_sent = now
        logger.info("SMS sent to %s (%d chars)", mask_tail(mobile), len(message))

        return {
            "success": True,
            "message": "SMS sent successfully",
            "mobile": mask_tail(mobile),
            "timestamp": now.isoformat(),
        }

    def history(self, mobile: str) -> dict[str, Any]:
        mobile = self.validate_mobile(mobile)
        history = self._history.get(mobile)
        messages = history.messages if history else []
        return {
            "success": True,
            "mobile": mask_tail(mobile),
            "messageCount": len(messages),
            "lastSent": history.last_sent.isoformat() if history and history.last_sent else None,
            "recentMessages": [
                {"agentName": m.agent_name, "timestamp": m.timestamp.isoformat(), "status": m.status}
                for m in messages[-5:]
            ],
        }

    def stats(self) -> dict[str, Any]:
        day = timedelta(hours=24)
        return {
            "success": True,
            "stats": {
                "totalNumbers": len(self._history),
                "totalMessages": sum(len(h.messages) for h in self._history.values()),
                "last24h": sum(len(self._recent(h, day)) for h in self._history.values()),
                "serviceStatus": "operational",
            },
        }
