# zyra/routers/deps.py
# Services are built once in create_app() and hung on app.state.

from fastapi import Request

from zyra.data_client import DeFiDataService
from zyra.llm_client import AgentService
from zyra.notifications import SmartNotifier, SmsRelay, TelegramRelay


def get_data(request: Request) -> DeFiDataService:
    return request.app.state.data


def get_agents(request: Request) -> AgentService:
    return request.app.state.agents


def get_telegram(request: Request) -> TelegramRelay:
    return request.app.state.telegram


def get_sms(request: Request) -> SmsRelay:
    return request.app.state.sms


def get_smart(request: Request) -> SmartNotifier:
    return request.app.state.smart
