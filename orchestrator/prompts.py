"""Prompt construction for specialist and synthesis roles."""

from collections.abc import Sequence

from models.agent_result import AgentResult
from models.session import ContextItem

NO_CONTEXT_PLACEHOLDER = "No context available"


def render_context_block(contexts: Sequence[ContextItem | None]) -> str:
    """
    Number each context item for inclusion in a specialist prompt.

    Missing slots are rendered as a placeholder line rather than skipped, so
    numbering always matches slot position.
    """
    lines = []
    for idx, item in enumerate(contexts, start=1):
        if item is None:
            lines.append(f"[{idx}] {NO_CONTEXT_PLACEHOLDER}")
        else:
            lines.append(f"[{idx}] {item.source.value}: {item.text}")
    return "\n\n".join(lines)


def role_label(role: str) -> str:
    """'fact_checker' -> 'FactChecker'."""
    return "".join(part[:1].upper() + part[1:] for part in role.split("_"))


def render_agent_responses(results: Sequence[AgentResult]) -> str:
    """
    Concatenate specialist results as labeled blocks, in the order given.

    Callers pass results in dispatch order; completion timing never reaches
    this function, so identical inputs always produce identical text.
    """
    return "\n\n".join(
        f"--- {role_label(r.role)} Agent ({r.model_id}) ---\n{r.response}" for r in results
    )


ANALYST_TEMPLATE = """You are a deep analysis specialist. Provide a comprehensive, detailed analysis of the following query based on the provided context. Be thorough and insightful.

Query: {query}

Context:
{context}

Provide your detailed analysis:"""

SUMMARIZER_TEMPLATE = """You are a summarization specialist. Create a clear, concise summary of the key points related to the query. Focus on the most important information.

Query: {query}

Context:
{context}

Provide a concise summary with key points:"""

FACT_CHECKER_TEMPLATE = """You are a fact-checking specialist. Analyze the provided context and verify the accuracy of information related to the query. Identify any claims that need validation.

Query: {query}

Context:
{context}

Provide your fact-checking analysis:"""

CLASSIFIER_TEMPLATE = """You are a classification specialist. Categorize the query and identify key topics, themes, and relevant domains. Provide clear categorization.

Query: {query}

Context:
{context}

Provide your classification and categorization:"""

SYNTHESIZER_TEMPLATE = """You are a synthesis specialist. You have received analyses from multiple AI agents, each with different specializations. Your job is to synthesize their insights into a single, comprehensive, coherent answer.

Original Query: {query}

Agent Responses:
{context}

Synthesize these perspectives into a comprehensive, well-structured answer that:
1. Combines the best insights from each agent
2. Resolves any contradictions
3. Provides a clear, actionable response
4. Maintains accuracy and nuance

Your synthesized response:"""
