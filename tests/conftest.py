from __future__ import annotations

import random
from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import pytest
from fastapi.testclient import TestClient

from tests.fakes import FakeClock, FakeUpstream, fake_completion, fake_llm_client
from zyra.cache import TTLCache
from zyra.data_client import DeFiDataService
from zyra.llm_client import AgentService
from zyra.main import create_app
from zyra.notifications import SmsRelay, TelegramRelay
from zyra.settings import Settings


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(default_tokens=("ethereum", "bitcoin"), sms_hourly_limit=2, realtime_interval_sec=0.01)


@pytest.fixture
def data_service(upstream, clock, settings) -> DeFiDataService:
    client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    return DeFiDataService(TTLCache(ttl_sec=60, clock=clock), settings, client, rng=random.Random(7))


@pytest.fixture
def bot() -> AsyncMock:
    bot = AsyncMock()
    bot.get_me.return_value = SimpleNamespace(id=99, username="zyra_bot", first_name="ZYRA")
    return bot


@pytest.fixture
def llm_create() -> AsyncMock:
    return AsyncMock(return_value=fake_completion())


@pytest.fixture
def make_client(settings, data_service, bot, llm_create):
    """TestClient factory; pass configured=False to run without LLM and Telegram credentials."""

    def _make(configured: bool = True) -> TestClient:
        app = create_app(
            settings,
            data=data_service,
            agents=AgentService(settings, fake_llm_client(llm_create) if configured else None),
            telegram=TelegramRelay(settings, bot if configured else None),
            sms=SmsRelay(settings, rng=random.Random(1), latency=(0, 0), failure_rate=0),
        )
        return TestClient(app)

    return _make


@pytest.fixture
def client(make_client) -> TestClient:
    return make_client()
