# zyra/main.py
from __future__ import annotations

from typing import Literal

from fastapi import FastAPI, Request
from pydantic import BaseModel

from zyra.cache import TTLCache
from zyra.data_client import DeFiDataService
from zyra.errors import install_error_handlers
from zyra.llm_client import AgentService
from zyra.logging_conf import setup_logging
from zyra.notifications import SmartNotifier, SmsRelay, TelegramRelay

# --- Observability ---
from zyra.observability import metrics_endpoint, timing_middleware

# --- Routers ---
from zyra.routers.agents import router as agents_router
from zyra.routers.market import router as market_router
from zyra.routers.notifications import router as notifications_router
from zyra.routes_stream import router as stream_router
from zyra.settings import Settings
from zyra.utils import utc_now_iso
from zyra.version import SERVICE_VERSION, version_payload


# --- Schemas for utility endpoints ---
class HealthResponse(BaseModel):
    status: Literal["ok", "degraded"]
    as_of: str
    service: Literal["zyra"] = "zyra"
    llm_configured: bool
    telegram_configured: bool
    cache_entries: int


class VersionResponse(BaseModel):
    service_version: str
    service: str


def create_app(
    settings: Settings | None = None,
    *,
    cache: TTLCache | None = None,
    data: DeFiDataService | None = None,
    agents: AgentService | None = None,
    telegram: TelegramRelay | None = None,
    sms: SmsRelay | None = None,
    smart: SmartNotifier | None = None,
) -> FastAPI:
    """Build the API with one shared instance of each service on app.state."""
    setup_logging()
    settings = settings or Settings.from_env()

    if data is None:
        cache = cache or TTLCache(ttl_sec=settings.cache_ttl_sec, ttls=settings.resource_ttls)
        data = DeFiDataService(cache, settings)

    app = FastAPI(title="ZYRA", version=SERVICE_VERSION)
    app.state.settings = settings
    app.state.data = data
    app.state.agents = agents or AgentService(settings)
    app.state.telegram = telegram or TelegramRelay(settings)
    app.state.sms = sms or SmsRelay(settings)
    app.state.smart = smart or SmartNotifier(app.state.telegram)

    # --- Include routers ---
    app.include_router(market_router)
    app.include_router(agents_router)
    app.include_router(notifications_router)
    app.include_router(stream_router)

    install_error_handlers(app)
    app.middleware("http")(timing_middleware)

    # --- Utility endpoints ---
    @app.get("/health", response_model=HealthResponse)
    def health(request: Request):
        state = request.app.state
        return {
            "status": "ok",
            "as_of": utc_now_iso(),
            "service": "zyra",
            "llm_configured": state.agents.configured,
            "telegram_configured": state.telegram.configured,
            "cache_entries": len(state.data.cache),
        }

    @app.get("/version", response_model=VersionResponse)
    def version():
        p = version_payload()
        return VersionResponse(service_version=p["service_version"], service=p["service"])

    @app.get("/metrics")
    def metrics():
        return metrics_endpoint()

    return app


app = create_app()
