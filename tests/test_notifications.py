import asyncio
import random
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest
from telegram.error import Forbidden, TelegramError

from zyra.errors import DeliveryError, InvalidInputError, NotConfiguredError, RateLimitError
from zyra.notifications import (
    ChatNotifyState,
    SmartNotifier,
    SmsRelay,
    TelegramRelay,
    format_agent_update,
    format_market_alert,
    format_portfolio_update,
    format_transaction_update,
    should_notify,
    split_message,
)
from zyra.schemas import Severity
from zyra.settings import Settings

NOON = datetime(2025, 1, 1, 12, 0, 0, tzinfo=UTC)


class TestFormatters:
    def test_portfolio_loss_is_a_warning(self):
        text, severity = format_portfolio_update(1000, -1.5, now=NOON)
        assert severity is Severity.WARNING
        assert "$1,000.00" in text
        assert "-1.50%" in text
        assert text.endswith("🕒 12:00:00 UTC")

    def test_portfolio_gain_lists_action_and_asset(self):
        text, severity = format_portfolio_update(50.5, 3, "Rebalanced", "AAVE", now=NOON)
        assert severity is Severity.SUCCESS
        assert "+3.00%" in text
        assert "Action: Rebalanced" in text
        assert "Asset: AAVE" in text

    def test_offline_agent_warns(self):
        _, severity = format_agent_update("Risk Manager", "offline", now=NOON)
        assert severity is Severity.WARNING

    def test_unknown_agent_status(self):
        with pytest.raises(InvalidInputError):
            format_agent_update("Risk Manager", "sleeping")

    def test_risk_alert_skips_missing_fields(self):
        text, severity = format_market_alert("risk", "Oracle depeg", now=NOON)
        assert severity is Severity.WARNING
        assert "Market Risk" in text
        assert "Protocol:" not in text

    def test_failed_transaction_is_an_error(self):
        text, severity = format_transaction_update("Swap", "1 ETH", "failed", now=NOON)
        assert severity is Severity.ERROR
        assert "Status: FAILED" in text


class TestSplitMessage:
    def test_short_text_is_untouched(self):
        assert split_message("hello") == ["hello"]

    def test_splits_on_paragraphs(self):
        text = "a" * 3000 + "\n\n" + "b" * 3000
        assert split_message(text) == ["a" * 3000, "b" * 3000]

    def test_hard_cuts_a_single_long_line(self):
        chunks = split_message("x" * 9000)
        assert [len(c) for c in chunks] == [4096, 4096, 808]


class TestTelegramRelay:
    def test_subscribe_is_idempotent(self):
        relay = TelegramRelay(Settings(telegram_chat_ids=(7,)), bot=AsyncMock())
        assert relay.subscribe(7) is False
        assert relay.subscribe(8) is True
        assert relay.unsubscribe(8) is True
        assert relay.unsubscribe(8) is False
        assert relay.subscribers == {7}

    @pytest.mark.asyncio
    async def test_broadcast_drops_blocked_chats(self):
        bot = AsyncMock()

        def deliver(chat_id, text, parse_mode=None):
            if chat_id == 2:
                raise Forbidden("Forbidden: bot was blocked by the user")
            if chat_id == 3:
                raise TelegramError("Timed out")

        bot.send_message.side_effect = deliver
        relay = TelegramRelay(Settings(telegram_chat_ids=(1, 2, 3)), bot=bot)

        report = await relay.broadcast("Vault rebalanced", Severity.SUCCESS)

        assert (report.sent, report.failed, report.removed) == (1, 2, [2])
        assert report.subscribers == 2
        assert relay.subscribers == {1, 3}
        first_text = bot.send_message.await_args_list[0].kwargs["text"]
        assert first_text == "✅ Vault rebalanced"

    @pytest.mark.asyncio
    async def test_long_messages_are_sent_in_chunks(self):
        bot = AsyncMock()
        relay = TelegramRelay(Settings(), bot=bot)
        await relay.send(1, "y" * 5000)
        assert bot.send_message.await_count == 2

    @pytest.mark.asyncio
    async def test_unconfigured_relay(self):
        relay = TelegramRelay(Settings())
        assert relay.configured is False
        with pytest.raises(NotConfiguredError):
            await relay.broadcast("hi")


class TestSmsRelay:
    def make(self, **kwargs):
        kwargs.setdefault("failure_rate", 0)
        return SmsRelay(Settings(sms_hourly_limit=2), rng=random.Random(0), latency=(0, 0), **kwargs)

    @pytest.mark.asyncio
    async def test_send_masks_number(self):
        receipt = await self.make().send("+15551234567", "Gas is low", "Gas Agent")
        assert receipt["success"] is True
        assert receipt["mobile"] == "+1555123****"

    @pytest.mark.asyncio
    async def test_hourly_limit(self):
        now = [NOON]
        sms = self.make(clock=lambda: now[0])
        await sms.send("+15551234567", "one")
        await sms.send("+15551234567", "two")
        with pytest.raises(RateLimitError):
            await sms.send("+15551234567", "three")

        # another number has its own budget
        await sms.send("+447700900123", "hello")

        now[0] = NOON + timedelta(hours=1, seconds=1)
        await sms.send("+15551234567", "three")
        assert sms.history("+15551234567")["messageCount"] == 3
        assert sms.stats()["stats"]["totalMessages"] == 4

    @pytest.mark.asyncio
    @pytest.mark.parametrize("mobile", ["", "call me", "+1 555 abc"])
    async def test_invalid_mobile(self, mobile):
        with pytest.raises(InvalidInputError):
            await self.make().send(mobile, "hi")

    @pytest.mark.asyncio
    async def test_simulated_failure(self):
        sms = self.make(failure_rate=1.0)
        with pytest.raises(DeliveryError):
            await sms.send("+15551234567", "hi")
        assert sms.history("+15551234567")["messageCount"] == 0
        assert sms.stats()["stats"]["totalNumbers"] == 0

    @pytest.mark.asyncio
    async def test_concurrent_sends_share_the_hourly_budget(self):
        sms = SmsRelay(Settings(sms_hourly_limit=2), rng=random.Random(0), latency=(0.01, 0.01), failure_rate=0)

        results = await asyncio.gather(
            *(sms.send("+15551234567", f"alert {i}") for i in range(5)), return_exceptions=True
        )

        assert sum(isinstance(r, dict) for r in results) == 2
        assert sum(isinstance(r, RateLimitError) for r in results) == 3
        assert sms.history("+15551234567")["messageCount"] == 2

    @pytest.mark.asyncio
    async def test_concurrent_first_sends_are_all_recorded(self):
        sms = SmsRelay(Settings(sms_hourly_limit=5), rng=random.Random(0), latency=(0.01, 0.01), failure_rate=0)

        await asyncio.gather(*(sms.send("+15551234567", f"alert {i}") for i in range(3)))

        history = sms.history("+15551234567")
        assert history["messageCount"] == 3
        assert {m["status"] for m in history["recentMessages"]} == {"sent"}
        assert sms.stats()["stats"]["totalMessages"] == 3


class TestShouldNotify:
    def decide(self, kind, data, priority="medium", state=None):
        return should_notify(kind, data, state or ChatNotifyState(), priority, now=NOON)

    def test_critical_ignores_cooldown_and_thresholds(self):
        state = ChatNotifyState(last_portfolio_value=100.0, last_alert=NOON - timedelta(minutes=1))
        assert self.decide("portfolio", {"newValue": 100.0}, "critical", state) is True

    def test_cooldown_blocks_medium_but_not_high(self):
        state = ChatNotifyState(last_portfolio_value=100.0, last_alert=NOON - timedelta(minutes=30))
        assert self.decide("portfolio", {"newValue": 150.0}, "medium", state) is False
        assert self.decide("portfolio", {"newValue": 150.0}, "high", state) is True

    def test_cooldown_expires_after_an_hour(self):
        state = ChatNotifyState(last_portfolio_value=100.0, last_alert=NOON - timedelta(hours=1))
        assert self.decide("portfolio", {"newValue": 106.0}, "low", state) is True

    @pytest.mark.parametrize(
        "new_value,priority,expected",
        [(104.0, "medium", False), (95.0, "medium", True), (110.0, "high", False), (115.0, "high", True)],
    )
    def test_portfolio_thresholds(self, new_value, priority, expected):
        state = ChatNotifyState(last_portfolio_value=100.0)
        assert self.decide("portfolio", {"newValue": new_value}, priority, state) is expected

    def test_first_portfolio_value_always_clears_the_bar(self):
        assert self.decide("portfolio", {"newValue": 1.0}) is True

    @pytest.mark.parametrize("new_price,expected", [(25.0, False), (26.0, True), (13.0, True)])
    def test_gas_threshold(self, new_price, expected):
        state = ChatNotifyState(last_gas_price=20.0)
        assert self.decide("gas", {"newPrice": new_price}, state=state) is expected

    @pytest.mark.parametrize(
        "data,expected",
        [({"apy": 12.5}, True), ({"apy": 9.9}, False), ({"apy": 3, "protocol": "trusted"}, True), ({}, False)],
    )
    def test_opportunity(self, data, expected):
        assert self.decide("opportunity", data) is expected

    def test_risk_always_goes_out(self):
        assert self.decide("risk", {"level": "high"}, "low") is True

    @pytest.mark.parametrize("event,expected", [("deployed", True), ("critical_finding", True), ("heartbeat", False)])
    def test_agent_events(self, event, expected):
        assert self.decide("agent", {"event": event}) is expected

    def test_portfolio_needs_a_numeric_value(self):
        with pytest.raises(InvalidInputError):
            self.decide("portfolio", {"newValue": "lots"})


class TestSmartNotifier:
    def make(self, bot=None):
        now = [NOON]
        notifier = SmartNotifier(TelegramRelay(Settings(), bot=bot or AsyncMock()), clock=lambda: now[0])
        return notifier, now

    @pytest.mark.asyncio
    async def test_sends_to_the_chat_and_records_state(self):
        bot = AsyncMock()
        notifier, _ = self.make(bot)

        out = await notifier.notify(42, "gas", {"newPrice": 15}, "medium")

        assert out["sent"] is True
        kwargs = bot.send_message.await_args.kwargs
        assert kwargs["chat_id"] == 42
        assert kwargs["text"].startswith("✅ ⛽ *Gas Price Alert*")
        assert "Good time for transactions!" in kwargs["text"]
        assert notifier.stats()["totalUsers"] == 1
        assert notifier.preferences(42)["preferences"][0] == "🚨 Critical alerts only"

    @pytest.mark.asyncio
    async def test_second_alert_waits_for_cooldown(self):
        bot = AsyncMock()
        notifier, now = self.make(bot)
        await notifier.notify(42, "risk", {"level": "high", "description": "Depeg"}, "low")

        now[0] = NOON + timedelta(minutes=10)
        skipped = await notifier.notify(42, "gas", {"newPrice": 50}, "medium")
        assert skipped == {"success": True, "sent": False, "reason": "Below threshold or too frequent"}

        now[0] = NOON + timedelta(hours=2)
        assert (await notifier.notify(42, "gas", {"newPrice": 50}, "medium"))["sent"] is True
        assert bot.send_message.await_count == 2

    @pytest.mark.asyncio
    async def test_failed_delivery_leaves_state_untouched(self):
        bot = AsyncMock()
        bot.send_message.side_effect = TelegramError("Timed out")
        notifier, _ = self.make(bot)

        with pytest.raises(DeliveryError):
            await notifier.notify(42, "risk", {"level": "high"}, "critical")
        assert notifier.stats()["totalUsers"] == 0
        assert notifier.preferences(42) == {"success": True, "preferences": [], "threshold": 0.05}
