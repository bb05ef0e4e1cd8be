# zyra/prompts.py
# Purpose: Canned system prompts and message assembly for chat completions.

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from zyra.schemas import AgentType, MarketHints, MarketSummary, Persona, UserProfile

AGENT_PROMPTS: dict[AgentType, str] = {
    AgentType.FINANCIAL: (
        "You are a financial advisor AI. Provide clear, concise financial advice and insights. "
        "Keep responses under 200 words."
    ),
    AgentType.TECHNICAL: (
        "You are a technical expert AI. Provide clear technical explanations and solutions. "
        "Keep responses under 200 words."
    ),
    AgentType.CREATIVE: (
        "You are a creative assistant AI. Help with creative tasks and brainstorming. "
        "Keep responses under 200 words."
    ),
    AgentType.RESEARCH: (
        "You are a research assistant AI. Provide well-researched, factual information. "
        "Keep responses under 200 words."
    ),
    AgentType.GENERAL: (
        "You are a helpful assistant AI. Provide clear, helpful responses. "
        "Keep responses under 200 words."
    ),
}

PERSONA_PROMPTS: dict[Persona, str] = {
    Persona.MARKET_INTELLIGENCE: """You are a DeFi Market Intelligence Agent. Analyze market trends, provide insights on DeFi protocols, and predict market movements. Focus on:
- Current DeFi market conditions
- Yield farming opportunities
- Risk assessments
- Token analysis
- Protocol updates and news

Always provide actionable insights with confidence levels.""",
    Persona.RISK_MANAGER: """You are a DeFi Risk Management Agent. Your role is to:
- Assess smart contract risks
- Detect potential scams and rugpulls
- Analyze protocol security
- Provide risk scores
- Suggest risk mitigation strategies

Be cautious and thorough in your analysis.""",
    Persona.YIELD_HUNTER: """You are a Yield Hunting Agent specialized in finding the best DeFi opportunities. Focus on:
- High-yield farming opportunities
- Liquidity mining programs
- Staking rewards
- Cross-chain yield opportunities
- APY calculations and comparisons

Provide specific protocols, APYs, and implementation strategies.""",
    Persona.TRANSACTION_OPTIMIZER: """You are a Transaction Optimizer Agent. Optimize transaction costs and timing:
- Monitor gas prices and suggest optimal timing
- Recommend batch transactions when possible
- Consider MEV protection
- Suggest alternative chains for lower costs
- Factor in slippage and liquidity

Quote concrete gas figures where you can.""",
    Persona.PORTFOLIO_REBALANCER: """You are a Portfolio Rebalancer Agent. Maintain optimal portfolio balance:
- Monitor asset allocation against targets
- Weigh rebalancing costs against benefits
- Account for the user's risk tolerance
- Suggest gradual rebalancing strategies
- Factor in market conditions and trends

Prefer small, staged moves over sweeping changes.""",
}


@dataclass(frozen=True)
class PersonaProfile:
    name: str
    description: str
    icon: str


PERSONA_PROFILES: dict[Persona, PersonaProfile] = {
    Persona.MARKET_INTELLIGENCE: PersonaProfile(
        "Market Intelligence Agent", "Analyzes market trends, sentiment, and opportunities", "🧠"
    ),
    Persona.YIELD_HUNTER: PersonaProfile(
        "Yield Hunter Agent", "Finds optimal yield farming and staking opportunities", "💎"
    ),
    Persona.RISK_MANAGER: PersonaProfile(
        "Risk Manager Agent", "Monitors portfolio risks and suggests mitigation strategies", "🛡️"
    ),
    Persona.TRANSACTION_OPTIMIZER: PersonaProfile(
        "Transaction Optimizer Agent", "Optimizes gas usage and transaction timing", "⚡"
    ),
    Persona.PORTFOLIO_REBALANCER: PersonaProfile(
        "Portfolio Rebalancer Agent", "Maintains optimal asset allocation", "🔄"
    ),
}

MARKET_CONTEXT_TOP_N = 5


def build_chat_messages(
    agent_type: AgentType, message: str, context: str | None = None
) -> list[dict[str, str]]:
    content = f"Context: {context}\n\nQuestion: {message}" if context else message
    return [
        {"role": "system", "content": AGENT_PROMPTS[agent_type]},
        {"role": "user", "content": content},
    ]


def market_context(summary: MarketSummary) -> dict[str, Any]:
    """Compact, model-friendly digest of a MarketSummary."""
    return {
        "totalTVL": round(summary.total_tvl, 2),
        "protocolCount": summary.protocol_count,
        "avgAPY": round(summary.avg_apy, 2),
        "trend": summary.trend.value,
        "stale": summary.stale,
        "lastUpdate": summary.last_update,
        "topProtocols": [
            {
                "name": p.name,
                "tvl": round(p.total_value_locked),
                "category": p.category,
                "riskScore": p.risk_score,
            }
            for p in summary.top_protocols[:MARKET_CONTEXT_TOP_N]
        ],
        "topYields": [
            {
                "protocol": y.protocol,
                "asset": y.asset,
                "apy": round(y.apy, 2),
                "chain": y.chain,
                "riskScore": y.risk_score,
            }
            for y in summary.top_yields[:MARKET_CONTEXT_TOP_N]
        ],
        "tokens": [
            {"symbol": t.symbol, "price": t.price, "change24h": t.change24h_percent}
            for t in summary.top_tokens[:MARKET_CONTEXT_TOP_N]
        ],
    }


def build_persona_messages(
    persona: Persona,
    query: str,
    context: dict[str, Any] | None = None,
    market: MarketSummary | None = None,
) -> list[dict[str, str]]:
    messages = [{"role": "system", "content": PERSONA_PROMPTS[persona]}]
    if context:
        messages.append({"role": "system", "content": f"Context: {json.dumps(context, default=str)}"})
    if market is not None:
        messages.append(
            {"role": "system", "content": f"Market data: {json.dumps(market_context(market))}"}
        )
    messages.append({"role": "user", "content": query})
    return messages


def build_analysis_messages(
    persona: Persona, profile: UserProfile, hints: MarketHints
) -> list[dict[str, str]]:
    """Profile-driven analysis prompt; unset fields fall back to neutral defaults."""
    prompt = "\n".join(
        [
            "User Profile:",
            f"- Name: {profile.name or 'User'}",
            f"- Experience: {profile.experience or 'Unknown'}",
            f"- Risk Tolerance: {profile.risk_tolerance or 'Moderate'}",
            f"- Goals: {', '.join(profile.goals) or 'General DeFi'}",
            f"- Preferred Assets: {', '.join(profile.preferred_assets) or 'ETH, BTC'}",
            "",
            "Market Context:",
            f"- Current ETH price trend: {hints.eth_trend or 'Stable'}",
            f"- Gas prices: {hints.gas_price or 'Moderate'}",
            f"- DeFi TVL trend: {hints.tvl_trend or 'Growing'}",
            "",
            "Provide a brief analysis and 1-2 specific recommendations based on the user's profile.",
        ]
    )
    return [
        {"role": "system", "content": PERSONA_PROMPTS[persona]},
        {"role": "user", "content": prompt},
    ]
