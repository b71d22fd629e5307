"""Command-line interface for the drift router.

Provides subcommands for routing a message, replaying a message list in
ephemeral mode, listing branches and printing a branch's context.
"""

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Any

from groq import AsyncGroq

from .config import DriftConfig, config_from_env
from .context import ContextAssembler, format_context_for_prompt
from .embeddings import Embedder, HttpEmbedder
from .ephemeral import EphemeralState, process_ephemeral_conversation
from .errors import DriftError, InputValidationError
from .facts import BranchFactExtractor, FactExtractionQueue
from .logging import configure_logger
from .routing import DriftInput, DriftOrchestrator, GroqRouteClassifier, RouteClassifier
from .store import SQLiteDriftStore


def _load_config(args: argparse.Namespace) -> DriftConfig:
    """Load config from disk and env, applying command-line overrides."""
    config = config_from_env()
    if getattr(args, "db", None):
        config.db_path = Path(args.db).expanduser()
    return config


def _open_store(config: DriftConfig) -> SQLiteDriftStore:
    assert config.db_path is not None
    store = SQLiteDriftStore(config.db_path)
    store.init_db()
    return store


def _groq_client() -> AsyncGroq:
    api_key = os.getenv("GROQ_API_KEY")
    if not api_key:
        raise InputValidationError("GROQ_API_KEY is not set")
    return AsyncGroq(api_key=api_key)


def _make_classifier(config: DriftConfig) -> RouteClassifier:
    return GroqRouteClassifier(_groq_client(), model=config.routing_model)


def _make_embedder(config: DriftConfig) -> Embedder | None:
    if not config.embedding_url:
        return None
    return HttpEmbedder(
        config.embedding_url,
        model=config.embedding_model or "",
        api_key=os.getenv("EMBEDDING_API_KEY"),
    )


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


async def _route(args: argparse.Namespace, config: DriftConfig) -> int:
    store = _open_store(config)
    configure_logger(config.log_dir)

    extractor = BranchFactExtractor(_groq_client(), store, model=config.extraction_model)
    queue = FactExtractionQueue(extractor)
    orchestrator = DriftOrchestrator(
        store,
        _make_classifier(config),
        config,
        embedder=_make_embedder(config),
        extraction_queue=queue,
    )

    queue.start()
    try:
        result = await orchestrator.route(
            DriftInput(
                conversation_id=args.conversation_id,
                content=args.message,
                role=args.role,
                current_branch_id=args.branch,
                tenant_id=args.tenant,
                extract_facts=True if args.facts else None,
            )
        )
        # Let branch re-extraction finish before the process exits
        await queue.join()
    finally:
        await queue.stop()
        store.close()

    _print_json(result.to_dict())
    return 0


def cmd_route(args: argparse.Namespace) -> int:
    """Route one message through the persisted pipeline."""
    config = _load_config(args)
    return asyncio.run(_route(args, config))


async def _replay(args: argparse.Namespace, config: DriftConfig) -> int:
    with open(args.messages, "r", encoding="utf-8") as f:
        messages = json.load(f)
    if not isinstance(messages, list):
        print("Error: messages file must contain a JSON list.", file=sys.stderr)
        return 1

    previous = None
    if args.state and Path(args.state).exists():
        with open(args.state, "r", encoding="utf-8") as f:
            previous = EphemeralState.from_dict(json.load(f))

    conversation_id = args.conversation or (
        previous.conversation_id if previous else Path(args.messages).stem
    )
    state = await process_ephemeral_conversation(
        messages,
        conversation_id,
        _make_classifier(config),
        previous_state=previous,
        extract_facts=args.facts or config.extract_facts,
        policy=config.policy(),
    )

    out = args.out or args.state
    if out:
        with open(out, "w", encoding="utf-8") as f:
            json.dump(state.to_dict(), f, indent=2, ensure_ascii=False)

    for message in state.messages:
        content = message.content
        if len(content) > 50:
            content = content[:47] + "..."
        print(f"{message.id:<24} {message.action:<7} {message.branch_topic:<30} {content}")

    print(f"\nBranches: {len(state.branches)}  Tokens: {state.token_usage.total_tokens}")
    return 0


def cmd_replay(args: argparse.Namespace) -> int:
    """Replay a message list in ephemeral mode."""
    config = _load_config(args)
    return asyncio.run(_replay(args, config))


def cmd_branches(args: argparse.Namespace) -> int:
    """List the branches of a conversation."""
    store = _open_store(_load_config(args))
    try:
        branches = store.list_branches(args.tenant, args.conversation_id, oldest_first=True)
        if not branches:
            print("No branches found.")
            return 0

        print(f"\n{'Topic':<40} {'Depth':>5} {'Msgs':>5} {'Facts':>5}  Id")
        print("-" * 96)
        for branch in branches:
            topic = branch.topic
            if len(topic) > 40:
                topic = topic[:37] + "..."
            facts = store.count_active_facts(branch.id)
            print(
                f"{topic:<40} {branch.depth:>5} {branch.message_count:>5} {facts:>5}  {branch.id}"
            )
        print(f"\nTotal: {len(branches)} branch(es)")
        return 0
    finally:
        store.close()


def cmd_context(args: argparse.Namespace) -> int:
    """Print the assembled context of a branch."""
    store = _open_store(_load_config(args))
    try:
        context = ContextAssembler(store).get(
            args.branch_id,
            max_messages=args.max_messages,
            max_ancestor_depth=args.depth,
        )
    finally:
        store.close()

    if args.json:
        _print_json(context.to_dict())
    else:
        print(format_context_for_prompt(context) or "(empty context)")
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the driftline CLI."""
    parser = argparse.ArgumentParser(
        prog="driftline",
        description="Route conversation messages into topic branches",
    )
    parser.add_argument("--db", help="SQLite database path (overrides config)")

    subparsers = parser.add_subparsers(dest="command", help="Sub-command help")

    # route command
    route_parser = subparsers.add_parser("route", help="Route one message")
    route_parser.add_argument("conversation_id", help="Conversation id")
    route_parser.add_argument("message", help="Message content")
    route_parser.add_argument(
        "--role",
        choices=["user", "assistant"],
        default="user",
        help="Message role",
    )
    route_parser.add_argument("--branch", help="Explicit current branch id")
    route_parser.add_argument("--tenant", default="anonymous", help="Tenant id")
    route_parser.add_argument(
        "--facts",
        action="store_true",
        help="Extract facts and branch context while routing",
    )

    # replay command
    replay_parser = subparsers.add_parser(
        "replay", help="Replay a JSON message list without persisting"
    )
    replay_parser.add_argument("messages", help="JSON file with [{role, content}, ...]")
    replay_parser.add_argument("--state", help="State file to resume from")
    replay_parser.add_argument("--out", help="Where to write the new state")
    replay_parser.add_argument("--conversation", help="Conversation id for derived ids")
    replay_parser.add_argument("--facts", action="store_true", help="Extract facts")

    # branches command
    branches_parser = subparsers.add_parser("branches", help="List conversation branches")
    branches_parser.add_argument("conversation_id", help="Conversation id")
    branches_parser.add_argument("--tenant", default="anonymous", help="Tenant id")

    # context command
    context_parser = subparsers.add_parser("context", help="Show a branch's context")
    context_parser.add_argument("branch_id", help="Branch id")
    context_parser.add_argument("--max-messages", type=int, default=50)
    context_parser.add_argument("--depth", type=int, default=5, help="Max ancestor depth")
    context_parser.add_argument("--json", action="store_true", help="Print JSON")

    return parser


def run_cli(argv: list[str] | None = None) -> int:
    """Run the CLI with given arguments.

    Args:
        argv: Command-line arguments. Uses sys.argv[1:] if None.

    Returns:
        Exit code (0 for success, 1 for error).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "route": cmd_route,
        "replay": cmd_replay,
        "branches": cmd_branches,
        "context": cmd_context,
    }

    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 1

    try:
        return handler(args)
    except DriftError as e:
        print(f"Error: {e.public_message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(run_cli())
