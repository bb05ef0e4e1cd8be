"""
Chat-completion relay for the agent endpoints.

All "intelligence" lives with the provider; this module only picks a system
prompt, enforces token ceilings, and keeps usage counters.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any

import openai
from openai import AsyncOpenAI

from zyra.errors import LLMError, NotConfiguredError
from zyra.observability import LLM_TOKENS
from zyra.prompts import (
    PERSONA_PROFILES,
    build_analysis_messages,
    build_chat_messages,
    build_persona_messages,
)
from zyra.schemas import (
    AgentMetrics,
    AgentRequest,
    AgentResponse,
    MarketHints,
    MarketSummary,
    Persona,
    UserProfile,
)
from zyra.settings import Settings
from zyra.utils import new_request_id, timer_ms, utc_now_iso

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TOKENS = 300
PERSONA_MAX_TOKENS = 1000
PERSONA_TEMPERATURE = 0.7
ANALYSIS_MAX_TOKENS = 200
ACTIVATION_SCORE = 95.0
BATCH_CONCURRENCY = 3
FALLBACK_REPLY = "Sorry, I encountered an error processing your request."


def _usage(completion: Any) -> dict[str, int]:
    usage = getattr(completion, "usage", None)
    if usage is None:
        return {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}
    prompt = int(getattr(usage, "prompt_tokens", 0) or 0)
    output = int(getattr(usage, "completion_tokens", 0) or 0)
    total = int(getattr(usage, "total_tokens", 0) or (prompt + output))
    return {"prompt_tokens": prompt, "completion_tokens": output, "total_tokens": total}


def _content(completion: Any) -> str:
    try:
        text = completion.choices[0].message.content
    except (AttributeError, IndexError):
        text = None
    return text or "No response generated"


@dataclass
class AgentState:
    active: bool
    last_analysis: str
    performance_score: float
    last_update: str
    recommendations: list[str] = field(default_factory=list)


class AgentService:
    """Relay to an OpenAI-compatible chat API with per-process usage metrics."""

    def __init__(
        self,
        settings: Settings | None = None,
        client: Any | None = None,
        *,
        rng: random.Random | None = None,
    ):
        self.settings = settings or Settings()
        if client is None and self.settings.openai_api_key:
            client = AsyncOpenAI(api_key=self.settings.openai_api_key)
        self._client = client

        self._requests = 0
        self._successes = 0
        self._tokens = 0
        self._elapsed_ms = 0

        self._rng = rng or random.Random()
        self._states: dict[Persona, AgentState] = {}

    @property
    def configured(self) -> bool:
        return self._client is not None

    def _require_client(self) -> Any:
        if self._client is None:
            raise NotConfiguredError(
                "LLM provider not configured", hint="set OPENAI_API_KEY to enable the agents"
            )
        return self._client

    async def _complete(
        self, *, model: str, messages: list[dict[str, str]], max_tokens: int, temperature: float
    ) -> Any:
        client = self._require_client()
        try:
            return await client.chat.completions.create(
                model=model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except openai.OpenAIError as e:
            logger.error("llm_call_failed: model=%s error_type=%s error=%s", model, type(e).__name__, e)
            raise LLMError(f"LLM provider error: {e}") from e

    def _record(self, elapsed_ms: int, tokens: int, success: bool) -> None:
        self._requests += 1
        self._elapsed_ms += elapsed_ms
        if success:
            self._successes += 1
            self._tokens += tokens
            LLM_TOKENS.inc(tokens)

    # ---------- Public API ----------

    async def process_request(self, request: AgentRequest) -> AgentResponse:
        """One chat turn. Raises NotConfiguredError / LLMError."""
        self._require_client()
        max_tokens = min(request.max_tokens or DEFAULT_REQUEST_TOKENS, self.settings.max_tokens)
        messages = build_chat_messages(request.agent_type, request.message, request.context)

        with timer_ms() as elapsed:
            try:
                completion = await self._complete(
                    model=self.settings.agent_model,
                    messages=messages,
                    max_tokens=max_tokens,
                    temperature=self.settings.temperature,
                )
            except LLMError:
                self._record(elapsed(), 0, success=False)
                raise
            usage = _usage(completion)
            self._record(elapsed(), usage["total_tokens"], success=True)

        logger.info(
            "llm_call_completed: model=%s agent=%s total_tokens=%d",
            self.settings.agent_model,
            request.agent_type.value,
            usage["total_tokens"],
        )
        return AgentResponse(
            id=new_request_id(),
            message=_content(completion),
            agent_type=request.agent_type,
            tokens_used=usage["total_tokens"],
            timestamp=utc_now_iso(),
            success=True,
        )

    async def _process_or_report(self, request: AgentRequest) -> AgentResponse:
        try:
            return await self.process_request(request)
        except LLMError as e:
            return AgentResponse(
                id=new_request_id(),
                message=FALLBACK_REPLY,
                agent_type=request.agent_type,
                tokens_used=0,
                timestamp=utc_now_iso(),
                success=False,
                error=e.message,
            )

    async def process_batch(self, requests: list[AgentRequest]) -> list[AgentResponse]:
        """
        Run up to a handful of requests, BATCH_CONCURRENCY at a time.
        Provider failures are reported per item; results keep input order.
        """
        self._require_client()
        results: list[AgentResponse] = []
        for i in range(0, len(requests), BATCH_CONCURRENCY):
            chunk = requests[i : i + BATCH_CONCURRENCY]
            results.extend(await asyncio.gather(*(self._process_or_report(r) for r in chunk)))
        return results

    async def consult(
        self,
        persona: Persona,
        query: str,
        context: dict[str, Any] | None = None,
        market: MarketSummary | None = None,
    ) -> dict[str, Any]:
        """Ask one of the DeFi personas, optionally grounded on a market summary."""
        self._require_client()
        messages = build_persona_messages(persona, query, context, market)
        with timer_ms() as elapsed:
            try:
                completion = await self._complete(
                    model=self.settings.persona_model,
                    messages=messages,
                    max_tokens=PERSONA_MAX_TOKENS,
                    temperature=PERSONA_TEMPERATURE,
                )
            except LLMError:
                self._record(elapsed(), 0, success=False)
                raise
            usage = _usage(completion)
            self._record(elapsed(), usage["total_tokens"], success=True)

        return {
            "agent": persona,
            "query": query,
            "response": _content(completion),
            "timestamp": utc_now_iso(),
            "usage": usage,
        }

    # ---------- Persona agents ----------

    async def analyze(self, persona: Persona, profile: UserProfile, hints: MarketHints) -> dict[str, Any]:
        """
        Profile-driven analysis by one persona. A provider failure is reported in
        the payload with a canned fallback line; the agent state is left as it was.
        """
        self._require_client()
        agent = PERSONA_PROFILES[persona]
        with timer_ms() as elapsed:
            try:
                completion = await self._complete(
                    model=self.settings.agent_model,
                    messages=build_analysis_messages(persona, profile, hints),
                    max_tokens=ANALYSIS_MAX_TOKENS,
                    temperature=PERSONA_TEMPERATURE,
                )
            except LLMError as e:
                self._record(elapsed(), 0, success=False)
                return {
                    "success": False,
                    "error": "AI analysis failed",
                    "detail": e.message,
                    "agent": agent.name,
                    "fallback": (
                        f"{agent.icon} {agent.name}: Currently analyzing market conditions. "
                        "Please try again in a moment."
                    ),
                }
            usage = _usage(completion)
            self._record(elapsed(), usage["total_tokens"], success=True)

        analysis = _content(completion)
        now = utc_now_iso()
        self._states[persona] = AgentState(
            active=True,
            last_analysis=analysis,
            recommendations=[s.strip() for s in analysis.split(".") if s.strip()][:2],
            # simulated until outcomes are tracked
            performance_score=round(85 + self._rng.random() * 10, 1),
            last_update=now,
        )
        return {
            "success": True,
            "agent": agent.name,
            "analysis": analysis,
            "icon": agent.icon,
            "timestamp": now,
        }

    def activate(self, persona: Persona, profile: UserProfile | None = None) -> dict[str, Any]:
        agent = PERSONA_PROFILES[persona]
        user = (profile.name if profile else None) or "user"
        self._states[persona] = AgentState(
            active=True,
            last_analysis=f"{agent.icon} {agent.name} is now active and monitoring for {user}",
            performance_score=ACTIVATION_SCORE,
            last_update=utc_now_iso(),
        )
        logger.info("agent %s activated", persona.value)
        return {
            "success": True,
            "message": f"{agent.icon} {agent.name} activated successfully",
            "agent": agent.name,
            "status": "active",
        }

    def agent_status(self, persona: Persona) -> dict[str, Any]:
        agent = PERSONA_PROFILES[persona]
        state = self._states.get(persona)
        if state is None:
            return {"success": True, "agent": agent.name, "status": "inactive", "icon": agent.icon}
        return {
            "success": True,
            "agent": agent.name,
            "status": "active" if state.active else "inactive",
            "lastAnalysis": state.last_analysis,
            "recommendations": state.recommendations,
            "performanceScore": state.performance_score,
            "lastUpdate": state.last_update,
            "icon": agent.icon,
        }

    def list_agents(self) -> list[dict[str, Any]]:
        return [
            {
                "id": persona.value,
                "name": agent.name,
                "description": agent.description,
                "icon": agent.icon,
                "status": "active" if self._is_active(persona) else "inactive",
            }
            for persona, agent in PERSONA_PROFILES.items()
        ]

    def status_all(self) -> dict[str, Any]:
        agents = []
        for persona, agent in PERSONA_PROFILES.items():
            state = self._states.get(persona)
            agents.append(
                {
                    "id": persona.value,
                    "name": agent.name,
                    "icon": agent.icon,
                    "status": "active" if self._is_active(persona) else "inactive",
                    "performanceScore": state.performance_score if state else 0,
                    "lastUpdate": state.last_update if state else None,
                }
            )
        return {
            "success": True,
            "agents": agents,
            "activeCount": sum(1 for a in agents if a["status"] == "active"),
        }

    def _is_active(self, persona: Persona) -> bool:
        state = self._states.get(persona)
        return state is not None and state.active

    def metrics(self) -> AgentMetrics:
        requests = self._requests
        return AgentMetrics(
            total_requests=requests,
            successful_requests=self._successes,
            failed_requests=requests - self._successes,
            total_tokens_used=self._tokens,
            average_tokens_per_request=self._tokens / requests if requests else 0.0,
            average_response_ms=self._elapsed_ms / requests if requests else 0.0,
            success_rate=self._successes / requests if requests else 0.0,
        )
