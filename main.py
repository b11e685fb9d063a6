#!/usr/bin/env python3
"""
Command-line research run.

    python main.py "What is retrieval-augmented generation?" [--show-agents] [--offline]

Prints the synthesized answer as it streams, then a per-agent summary.
"""

import argparse
import asyncio
import sys

from dotenv import load_dotenv

# Load environment variables first
load_dotenv()

from api.router import ProviderRouter
from api.scripted_client import ScriptedStreamProvider
from config.config import Config
from models.session import ContextItem, ContextSource, Session
from models.stream_events import AgentUpdateEvent, AiChunkEvent, MetadataEvent
from orchestrator.broadcast import BroadcastChannel, Subscription
from orchestrator.errors import SynthesisFailed
from orchestrator.failure_injection import RandomFailureInjector
from orchestrator.pipeline import ResearchPipeline
from orchestrator.role_registry import RoleRegistry
from tools.sources import StaticContextGatherer
from utils.text import truncate_text

OFFLINE_CONTEXTS = [
    ContextItem(
        source=ContextSource.ARXIV,
        title="Retrieval-Augmented Generation for Knowledge-Intensive NLP Tasks",
        text="Combines a parametric seq2seq model with a non-parametric memory accessed by a neural retriever.",
        url="https://arxiv.org/abs/2005.11401",
    ),
    ContextItem(
        source=ContextSource.GITHUB,
        title="langchain-ai/langchain",
        text="Framework for building context-aware reasoning applications, including retrieval pipelines.",
        url="https://github.com/langchain-ai/langchain",
    ),
    ContextItem(
        source=ContextSource.WEBSEARCH,
        title="What is RAG?",
        text="Retrieval-augmented generation grounds model output in documents fetched at query time.",
        url="https://example.org/rag",
    ),
]


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Multi-agent research from the command line")
    parser.add_argument("query", help="Research question")
    parser.add_argument("--user-id", default="cli", help="Caller identity used for throttling")
    parser.add_argument("--show-agents", action="store_true", help="Print agent lifecycle updates")
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Use canned context and a scripted provider instead of network services",
    )
    parser.add_argument(
        "--failure-rate",
        type=float,
        default=0.0,
        help="Inject availability-check failures at this rate (0-1) to watch retries",
    )
    return parser.parse_args(argv)


def build_pipeline(args: argparse.Namespace, channel: BroadcastChannel) -> ResearchPipeline:
    injector = RandomFailureInjector(rate=args.failure_rate) if args.failure_rate > 0 else None
    config = Config()
    if args.offline:
        return ResearchPipeline(
            registry=RoleRegistry.default(),
            provider_router=ProviderRouter.single(ScriptedStreamProvider(delay_s=0.02)),
            gatherer=StaticContextGatherer(OFFLINE_CONTEXTS, top_k=config.TOP_K_CONTEXTS),
            channel=channel,
            settings=config.pipeline_settings(),
            failure_injector=injector,
        )
    return ResearchPipeline.from_config(config, channel=channel, failure_injector=injector)


async def print_events(subscription: Subscription, show_agents: bool) -> None:
    async for message in subscription:
        event = message.event
        if isinstance(event, AiChunkEvent):
            print(event.chunk, end="" if not event.is_complete else "\n", flush=True)
        elif show_agents and isinstance(event, AgentUpdateEvent):
            print(f"  [{event.status}] {event.message}", flush=True)
        elif show_agents and isinstance(event, MetadataEvent):
            print(f"  {event.message}", flush=True)


async def run(args: argparse.Namespace) -> int:
    channel = BroadcastChannel()
    pipeline = build_pipeline(args, channel)
    session = Session(user_id=args.user_id)
    subscription = channel.subscribe(session.session_id)
    printer = asyncio.create_task(print_events(subscription, args.show_agents))

    exit_code = 0
    try:
        result = await pipeline.run(args.query, session)
    except SynthesisFailed as e:
        print(f"\nError: {e}")
        exit_code = 1
        result = None
    finally:
        channel.close_session(session.session_id)
        await printer
        await pipeline.aclose()

    if result is None:
        return exit_code
    if result.status == "no_context":
        print(result.answer)
        return exit_code

    print("\n=== Agents ===")
    for outcome in result.agent_outcomes:
        if outcome.is_success:
            print(f"- {outcome.role} ({outcome.model_id}): {outcome.duration_ms}ms")
        else:
            print(f"- {outcome.role} ({outcome.model_id}): FAILED - {truncate_text(outcome.error.message, 80)}")
    print(f"Contexts used: {result.contexts_used} | Synthesis model: {result.model}")
    return exit_code


def main(argv=None) -> int:
    args = parse_args(argv)
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        print("\nExiting...")
        return 130


if __name__ == "__main__":
    sys.exit(main())
