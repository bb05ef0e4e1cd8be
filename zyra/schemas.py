from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Error taxonomy ---
class ErrorCode(str, Enum):
    INVALID_INPUT = "INVALID_INPUT"
    NOT_FOUND = "NOT_FOUND"
    NOT_CONFIGURED = "NOT_CONFIGURED"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"
    UPSTREAM_TIMEOUT = "UPSTREAM_TIMEOUT"
    LLM_ERROR = "LLM_ERROR"
    RATE_LIMIT = "RATE_LIMIT"
    DELIVERY_FAILED = "DELIVERY_FAILED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorDetail(BaseModel):
    code: ErrorCode
    message: str
    hint: str | None = None


class ErrorResponse(BaseModel):
    error: ErrorDetail


# --- Market data ---
class MarketTrend(str, Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


class DeFiProtocol(CamelModel):
    name: str
    total_value_locked: float
    category: str
    chain: str
    risk_score: float = Field(ge=1.0, le=5.0)
    url: str | None = None


class YieldOpportunity(CamelModel):
    protocol: str
    asset: str
    apy: float
    tvl: float
    risk_score: float = Field(ge=1.0, le=5.0)
    category: str
    chain: str
    pool_address: str | None = None
    reward_tokens: list[str] = Field(default_factory=list)


class TokenQuote(CamelModel):
    id: str
    symbol: str
    name: str | None = None
    price: float | None = None
    market_cap: float | None = None
    change24h_percent: float | None = Field(None, alias="change24hPercent")
    volume24h: float | None = Field(None, alias="volume24h")
    circulating_supply: float | None = None


class GasEstimate(CamelModel):
    slow: float
    standard: float
    fast: float
    timestamp: str
    source: Literal["oracle", "fallback"] = "oracle"


class ChainInfo(CamelModel):
    name: str
    tvl: float | None = None
    token_symbol: str | None = None
    chain_id: int | str | None = None


class MarketSummary(CamelModel):
    total_tvl: float = Field(alias="totalTVL")
    protocol_count: int
    avg_apy: float = Field(alias="avgAPY")
    top_protocols: list[DeFiProtocol]
    top_tokens: list[TokenQuote]
    top_yields: list[YieldOpportunity]
    trend: MarketTrend
    last_update: str
    stale: bool = False


class RefreshResponse(CamelModel):
    cleared: bool = True
    timestamp: str


# --- Agent relay ---
class AgentType(str, Enum):
    FINANCIAL = "financial"
    TECHNICAL = "technical"
    CREATIVE = "creative"
    RESEARCH = "research"
    GENERAL = "general"


class Persona(str, Enum):
    MARKET_INTELLIGENCE = "market-intelligence"
    RISK_MANAGER = "risk-manager"
    YIELD_HUNTER = "yield-hunter"
    TRANSACTION_OPTIMIZER = "transaction-optimizer"
    PORTFOLIO_REBALANCER = "portfolio-rebalancer"


class AgentRequest(CamelModel):
    message: str = Field(..., min_length=1, max_length=4000)
    agent_type: AgentType = AgentType.GENERAL
    context: str | None = Field(None, max_length=8000)
    max_tokens: int | None = Field(None, ge=1)


class AgentResponse(CamelModel):
    id: str
    message: str
    agent_type: AgentType
    tokens_used: int = 0
    timestamp: str
    success: bool
    error: str | None = None


class BatchRequest(CamelModel):
    requests: list[AgentRequest] = Field(..., min_length=1, max_length=5)


class BatchResponse(CamelModel):
    responses: list[AgentResponse]
    total_requests: int
    successful_requests: int
    total_tokens_used: int


class AgentMetrics(CamelModel):
    total_requests: int
    successful_requests: int
    failed_requests: int
    total_tokens_used: int
    average_tokens_per_request: float
    average_response_ms: float
    success_rate: float


class ConsultRequest(CamelModel):
    agent: Persona
    query: str = Field(..., min_length=1, max_length=4000)
    context: dict[str, Any] | None = None
    include_market_data: bool = False


class ConsultResponse(CamelModel):
    agent: Persona
    query: str
    response: str
    timestamp: str
    usage: dict[str, int] | None = None


class UserProfile(CamelModel):
    name: str | None = None
    experience: str | None = None
    risk_tolerance: str | None = None
    goals: list[str] = Field(default_factory=list)
    preferred_assets: list[str] = Field(default_factory=list)


class MarketHints(CamelModel):
    """Free-text market context supplied by the caller."""

    eth_trend: str | None = None
    gas_price: str | None = None
    tvl_trend: str | None = None


class AgentActionRequest(CamelModel):
    agent_type: Persona
    action: Literal["analyze", "activate", "status"]
    user_profile: UserProfile = Field(default_factory=UserProfile)
    market_data: MarketHints = Field(default_factory=MarketHints)


# --- Notifications ---
class Severity(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class NotifyRequest(CamelModel):
    message: str = Field(..., min_length=1, max_length=4000)
    type: Severity = Severity.INFO


class DeliveryReport(CamelModel):
    sent: int = 0
    failed: int = 0
    removed: list[int] = Field(default_factory=list)
    subscribers: int = 0


class SmsRequest(CamelModel):
    mobile: str = Field(..., min_length=1, max_length=32)
    message: str = Field(..., min_length=1, max_length=1600)
    agent_name: str | None = None


class SmsReceipt(CamelModel):
    success: bool = True
    message: str = "SMS sent successfully"
    mobile: str
    timestamp: str


class SmartNotifyRequest(CamelModel):
    chat_id: int
    type: Literal["portfolio", "gas", "opportunity", "risk", "agent"]
    data: dict[str, Any] = Field(..., min_length=1)
    priority: Literal["low", "medium", "high", "critical"] = "medium"
