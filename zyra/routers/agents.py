# zyra/routers/agents.py

from typing import Any, Literal

from fastapi import APIRouter, Depends, Query

from zyra.data_client import DeFiDataService
from zyra.llm_client import PERSONA_MAX_TOKENS, AgentService
from zyra.prompts import PERSONA_PROMPTS
from zyra.routers.deps import get_agents, get_data
from zyra.schemas import (
    AgentActionRequest,
    AgentMetrics,
    AgentRequest,
    AgentResponse,
    AgentType,
    BatchRequest,
    BatchResponse,
    ConsultRequest,
    ConsultResponse,
    Persona,
)
from zyra.utils import utc_now_iso

router = APIRouter(tags=["agents"])


@router.get("/api/agents/chat")
def chat_info(agents: AgentService = Depends(get_agents)) -> dict[str, Any]:
    return {
        "message": "Agent Chat API is running",
        "availableAgents": [a.value for a in AgentType],
        "maxTokensPerRequest": agents.settings.max_tokens,
        "configured": agents.configured,
    }


@router.post("/api/agents/chat", response_model=AgentResponse)
async def chat(req: AgentRequest, agents: AgentService = Depends(get_agents)):
    return await agents.process_request(req)


@router.post("/api/agents/batch", response_model=BatchResponse)
async def batch(body: BatchRequest, agents: AgentService = Depends(get_agents)):
    responses = await agents.process_batch(body.requests)
    return BatchResponse(
        responses=responses,
        total_requests=len(responses),
        successful_requests=sum(1 for r in responses if r.success),
        total_tokens_used=sum(r.tokens_used for r in responses),
    )


@router.get("/api/agents/metrics")
def metrics(agents: AgentService = Depends(get_agents)) -> dict[str, Any]:
    payload: AgentMetrics = agents.metrics()
    return {**payload.model_dump(by_alias=True), "timestamp": utc_now_iso(), "status": "healthy"}


@router.get("/api/ai")
def personas(
    agent: Persona | None = Query(None),
    agents: AgentService = Depends(get_agents),
) -> dict[str, Any]:
    if agent is not None:
        return {
            "agent": agent.value,
            "capabilities": PERSONA_PROMPTS[agent],
            "model": agents.settings.persona_model,
            "maxTokens": PERSONA_MAX_TOKENS,
            "available": agents.configured,
        }
    return {"availableAgents": [p.value for p in Persona], "configured": agents.configured}


@router.post("/api/ai", response_model=ConsultResponse)
async def consult(
    req: ConsultRequest,
    agents: AgentService = Depends(get_agents),
    data: DeFiDataService = Depends(get_data),
):
    """Ask a DeFi persona; includeMarketData grounds the prompt on the cached market summary."""
    market = None
    # an unconfigured relay fails in consult() without touching the data providers
    if req.include_market_data and agents.configured:
        market = await data.get_market_summary()
    return await agents.consult(req.agent, req.query, req.context, market)


# ---------- Persona agents with activation state ----------


@router.post("/api/ai-agents")
async def agent_action(req: AgentActionRequest, agents: AgentService = Depends(get_agents)) -> dict[str, Any]:
    if req.action == "analyze":
        return await agents.analyze(req.agent_type, req.user_profile, req.market_data)
    if req.action == "activate":
        return agents.activate(req.agent_type, req.user_profile)
    return agents.agent_status(req.agent_type)


@router.get("/api/ai-agents")
def agent_overview(
    action: Literal["list", "status-all"] = Query("list"),
    agents: AgentService = Depends(get_agents),
) -> dict[str, Any]:
    if action == "status-all":
        return agents.status_all()
    return {"success": True, "agents": agents.list_agents()}
