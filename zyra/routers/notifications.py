# zyra/routers/notifications.py

import logging
from typing import Any, Literal

from fastapi import APIRouter, Body, Depends, Query
from telegram.error import TelegramError

from zyra.bot_commands import handle_command
from zyra.data_client import DeFiDataService
from zyra.notifications import (
    SmartNotifier,
    SmsRelay,
    TelegramRelay,
    format_agent_update,
    format_ai_insight,
    format_market_alert,
    format_portfolio_update,
    format_transaction_update,
)
from zyra.routers.deps import get_data, get_smart, get_sms, get_telegram
from zyra.schemas import DeliveryReport, NotifyRequest, SmartNotifyRequest, SmsReceipt, SmsRequest

router = APIRouter(tags=["notifications"])
logger = logging.getLogger(__name__)

TestKind = Literal["all", "portfolio", "agent", "market", "transaction", "insight"]


def _sample_notifications(kind: str) -> list[tuple[str, tuple]]:
    samples = [
        ("portfolio", format_portfolio_update(87423.50, 2.4, "Rebalanced portfolio", "AAVE")),
        (
            "agent",
            format_agent_update(
                "Market Intelligence Agent",
                "active",
                "Detected new yield opportunity: 18.5% APY on Uniswap v4",
            ),
        ),
        (
            "market",
            format_market_alert(
                "opportunity",
                "High yield opportunity detected with low risk score",
                protocol="Aave v3",
                apy="15.2%",
                tvl="2.1B",
            ),
        ),
        (
            "transaction",
            format_transaction_update(
                "Yield Farming", "$5,000 USDC", "completed", "35% (saved $12.50)"
            ),
        ),
        (
            "insight",
            format_ai_insight(
                "Risk Manager Agent",
                "Portfolio risk reduced by 12% through automatic rebalancing.",
            ),
        ),
    ]
    return [s for s in samples if kind == "all" or s[0] == kind]


# ---------- Telegram ----------


@router.post("/api/telegram/webhook")
async def telegram_webhook(
    update: dict[str, Any] = Body(...),
    telegram: TelegramRelay = Depends(get_telegram),
    data: DeFiDataService = Depends(get_data),
) -> dict[str, Any]:
    """Inbound bot updates; always 200 so Telegram does not redeliver."""
    telegram.require_bot()
    message = update.get("message") or update.get("edited_message")
    if not isinstance(message, dict) or not isinstance(message.get("chat"), dict):
        return {"status": "ignored"}

    chat_id = int(message["chat"]["id"])
    first_name = (message.get("from") or {}).get("first_name") or "there"
    reply = await handle_command(message.get("text"), chat_id, telegram, data, first_name)
    try:
        await telegram.send(chat_id, reply, parse_mode="Markdown")
    except TelegramError as e:
        logger.error("reply to chat %s failed: %s", chat_id, e)
        return {"status": "ok", "delivered": False}
    return {"status": "ok", "delivered": True}


@router.get("/api/telegram/status")
async def telegram_status(telegram: TelegramRelay = Depends(get_telegram)) -> dict[str, Any]:
    if not telegram.configured:
        return {"configured": False, "subscribers": len(telegram.subscribers), "botInfo": None}
    return {
        "configured": True,
        "subscribers": len(telegram.subscribers),
        "botInfo": await telegram.bot_info(),
    }


@router.get("/api/telegram/subscribers")
def telegram_subscribers(telegram: TelegramRelay = Depends(get_telegram)) -> dict[str, Any]:
    return {"subscribers": len(telegram.subscribers), "chatIds": sorted(telegram.subscribers)}


@router.post("/api/telegram/notify", response_model=DeliveryReport)
async def telegram_notify(req: NotifyRequest, telegram: TelegramRelay = Depends(get_telegram)):
    return await telegram.broadcast(req.message, req.type)


@router.post("/api/notifications/test")
async def test_notifications(
    type: TestKind = Query("all"),
    telegram: TelegramRelay = Depends(get_telegram),
) -> dict[str, Any]:
    telegram.require_bot()
    results = []
    for kind, (text, severity) in _sample_notifications(type):
        report = await telegram.broadcast(text, severity)
        results.append({"type": kind, "sent": report.sent, "failed": report.failed})
    count = len(telegram.subscribers)
    return {
        "success": True,
        "results": results,
        "subscriberCount": count,
        "message": (
            "Notifications sent but no subscribers. Send /subscribe to the bot first!"
            if count == 0
            else f"Notifications sent to {count} subscribers"
        ),
    }


@router.post("/api/notifications/smart")
async def smart_notify(req: SmartNotifyRequest, smart: SmartNotifier = Depends(get_smart)) -> dict[str, Any]:
    return await smart.notify(req.chat_id, req.type, req.data, req.priority)


@router.get("/api/notifications/smart")
def smart_info(
    action: Literal["preferences", "stats"] = Query(...),
    chat_id: int = Query(0, alias="chatId"),
    smart: SmartNotifier = Depends(get_smart),
) -> dict[str, Any]:
    if action == "preferences":
        return smart.preferences(chat_id)
    return smart.stats()


# ---------- SMS ----------


@router.post("/api/sms", response_model=SmsReceipt)
async def send_sms(req: SmsRequest, sms: SmsRelay = Depends(get_sms)):
    return await sms.send(req.mobile, req.message, req.agent_name)


@router.get("/api/sms/history")
def sms_history(mobile: str = Query(...), sms: SmsRelay = Depends(get_sms)) -> dict[str, Any]:
    return sms.history(mobile)


@router.get("/api/sms/stats")
def sms_stats(sms: SmsRelay = Depends(get_sms)) -> dict[str, Any]:
    return sms.stats()
