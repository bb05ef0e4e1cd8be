# zyra/routers/market.py

from fastapi import APIRouter, Depends, Query

from zyra.data_client import DeFiDataService
from zyra.routers.deps import get_data
from zyra.schemas import (
    ChainInfo,
    DeFiProtocol,
    GasEstimate,
    MarketSummary,
    RefreshResponse,
    TokenQuote,
    YieldOpportunity,
)
from zyra.utils import utc_now_iso

router = APIRouter(prefix="/api/market", tags=["market"])


@router.get("/summary", response_model=MarketSummary)
async def market_summary(data: DeFiDataService = Depends(get_data)):
    """TVL, average APY, trend and top lists across protocols, tokens and yields."""
    return await data.get_market_summary()


@router.get("/protocols", response_model=list[DeFiProtocol])
async def protocols(data: DeFiDataService = Depends(get_data)):
    return await data.get_protocols()


@router.get("/tokens", response_model=list[TokenQuote])
async def tokens(
    ids: str | None = Query(None, description="Comma-separated CoinGecko ids, e.g. ethereum,bitcoin"),
    data: DeFiDataService = Depends(get_data),
):
    return await data.get_token_prices(ids)


@router.get("/yields", response_model=list[YieldOpportunity])
async def yields(data: DeFiDataService = Depends(get_data)):
    return await data.get_yield_opportunities()


@router.get("/gas", response_model=GasEstimate)
async def gas(data: DeFiDataService = Depends(get_data)):
    return await data.get_gas_prices()


@router.get("/chains/{chain}", response_model=ChainInfo)
async def chain(chain: str, data: DeFiDataService = Depends(get_data)):
    return await data.get_chain(chain)


@router.post("/refresh", response_model=RefreshResponse)
async def refresh(data: DeFiDataService = Depends(get_data)):
    """Drop every cached resource so the next read goes upstream."""
    data.refresh()
    return RefreshResponse(cleared=True, timestamp=utc_now_iso())
