"""
Alfred Memory CLI: operator utilities for the local memory store.

Usage:
    alfred-memory add "User prefers dark mode" --tag ui --agent alfred
    alfred-memory search "theme preference" --limit 5
    alfred-memory get <id>
    alfred-memory delete <id>
    alfred-memory prune --older-than-days 90
    alfred-memory stats
    alfred-memory providers

Commands:
    add         Embed and store a memory.
    search      Hybrid (vector + keyword) recall.
    get         Print one memory.
    delete      Delete one memory.
    prune       Delete memories older than a cutoff.
    stats       Store summary.
    providers   Probe every embedding provider in fallback order.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import time
from typing import Any, Awaitable, Callable, List, Optional

from alfred_memory.core.config import AlfredMemoryConfig
from alfred_memory.core.engine import MemoryEngine
from alfred_memory.core.errors import AlfredMemoryError
from alfred_memory.core.types import SearchFilter
from alfred_memory.platform import get_config_dir

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger("Alfred.CLI")


def _load_config(args: argparse.Namespace) -> AlfredMemoryConfig:
    """--config, then config.yaml in the config directory, then the environment."""
    if args.config:
        return AlfredMemoryConfig.from_yaml(args.config)
    default_path = get_config_dir() / "config.yaml"
    if default_path.is_file():
        return AlfredMemoryConfig.from_yaml(str(default_path))
    return AlfredMemoryConfig.from_env()


def _configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def _build_filter(args: argparse.Namespace) -> Optional[SearchFilter]:
    search_filter = SearchFilter(
        agent_id=getattr(args, "agent", None),
        session_id=getattr(args, "session", None),
        tags=getattr(args, "tag", None) or None,
    )
    return None if search_filter.is_empty else search_filter


# ─────────────────────────────────────────────────────────────────────────────
# Commands
# ─────────────────────────────────────────────────────────────────────────────

async def _cmd_add(engine: MemoryEngine, args: argparse.Namespace) -> int:
    metadata = {}
    if args.metadata:
        try:
            metadata = json.loads(args.metadata)
        except json.JSONDecodeError as exc:
            print(f"Error: --metadata is not valid JSON: {exc}", file=sys.stderr)
            return 2
        if not isinstance(metadata, dict):
            print("Error: --metadata must be a JSON object", file=sys.stderr)
            return 2
    memory_id = await engine.insert(
        args.content,
        metadata=metadata,
        tags=args.tag or [],
        agent_id=args.agent,
        session_id=args.session,
    )
    print(memory_id)
    return 0


async def _cmd_search(engine: MemoryEngine, args: argparse.Namespace) -> int:
    results = await engine.search(
        args.query,
        limit=args.limit,
        filter=_build_filter(args),
        vector_weight=args.vector_weight,
        bm25_weight=args.bm25_weight,
    )
    if args.json:
        _print_json([r.model_dump() for r in results])
        return 0
    if not results:
        print("No memories found.")
        return 0
    for rank, result in enumerate(results, start=1):
        print(
            f"{rank:>2}. [{result.score:.4f}] {result.content}\n"
            f"    id={result.id} vector={result.vector_score:.4f} bm25={result.bm25_score:.4f}"
        )
    return 0


async def _cmd_get(engine: MemoryEngine, args: argparse.Namespace) -> int:
    record = await engine.get(args.id)
    if record is None:
        print(f"Error: memory {args.id} not found", file=sys.stderr)
        return 1
    _print_json(record.model_dump(exclude={"embedding"}))
    return 0


async def _cmd_delete(engine: MemoryEngine, args: argparse.Namespace) -> int:
    if not await engine.delete(args.id):
        print(f"Error: memory {args.id} not found", file=sys.stderr)
        return 1
    print(f"Deleted {args.id}")
    return 0


async def _cmd_prune(engine: MemoryEngine, args: argparse.Namespace) -> int:
    cutoff = time.time() - args.older_than_days * 86400
    removed = await engine.prune_older_than(cutoff)
    print(f"Pruned {removed} memories")
    return 0


async def _cmd_stats(engine: MemoryEngine, args: argparse.Namespace) -> int:
    _print_json(await engine.stats())
    return 0


async def _cmd_providers(engine: MemoryEngine, args: argparse.Namespace) -> int:
    statuses = await engine.provider_status()
    if args.json:
        _print_json([s.model_dump() for s in statuses])
        return 0
    for status in statuses:
        state = "available" if status.available else "unavailable"
        where = "remote" if status.remote else "local"
        print(f"{status.name:<10} {state:<12} {status.dimensions:>5} dims  ({where})")
    return 0


_COMMANDS: dict[str, Callable[[MemoryEngine, argparse.Namespace], Awaitable[int]]] = {
    "add": _cmd_add,
    "search": _cmd_search,
    "get": _cmd_get,
    "delete": _cmd_delete,
    "prune": _cmd_prune,
    "stats": _cmd_stats,
    "providers": _cmd_providers,
}


async def _run(args: argparse.Namespace, config: AlfredMemoryConfig) -> int:
    async with MemoryEngine(config) as engine:
        return await _COMMANDS[args.command](engine, args)


# ─────────────────────────────────────────────────────────────────────────────
# Parser
# ─────────────────────────────────────────────────────────────────────────────

def _add_scope_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--agent", default=None, metavar="ID", help="Agent scope.")
    parser.add_argument("--session", default=None, metavar="ID", help="Session scope.")
    parser.add_argument(
        "--tag",
        action="append",
        default=None,
        metavar="TAG",
        help="Tag (repeatable).",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="alfred-memory",
        description="Alfred memory: local hybrid memory store.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Examples:\n"
               "  alfred-memory add \"User prefers dark mode\" --tag ui\n"
               "  alfred-memory search \"theme preference\" --limit 5\n"
               "  alfred-memory providers\n",
    )
    parser.add_argument(
        "--config",
        default=None,
        metavar="PATH",
        help="YAML configuration file (default: ALFRED_* environment variables).",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["debug", "info", "warning", "error"],
        help="Override the configured log level.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    add = subparsers.add_parser("add", help="Embed and store a memory.")
    add.add_argument("content", help="Memory text.")
    add.add_argument("--metadata", default=None, metavar="JSON", help="Metadata as a JSON object.")
    _add_scope_args(add)

    search = subparsers.add_parser("search", help="Hybrid recall.")
    search.add_argument("query", help="Query text.")
    search.add_argument("--limit", type=int, default=None, help="Maximum results.")
    search.add_argument("--vector-weight", type=float, default=None, help="RRF weight of the vector ranking.")
    search.add_argument("--bm25-weight", type=float, default=None, help="RRF weight of the keyword ranking.")
    search.add_argument("--json", action="store_true", default=False, help="Machine-readable output.")
    _add_scope_args(search)

    get = subparsers.add_parser("get", help="Print one memory.")
    get.add_argument("id", help="Memory id.")

    delete = subparsers.add_parser("delete", help="Delete one memory.")
    delete.add_argument("id", help="Memory id.")

    prune = subparsers.add_parser("prune", help="Delete memories older than a cutoff.")
    prune.add_argument(
        "--older-than-days",
        type=float,
        required=True,
        metavar="DAYS",
        help="Age cutoff in days.",
    )

    subparsers.add_parser("stats", help="Store summary.")

    providers = subparsers.add_parser("providers", help="Probe embedding providers.")
    providers.add_argument("--json", action="store_true", default=False, help="Machine-readable output.")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = _load_config(args)
    except (OSError, ValueError) as exc:
        print(f"Error: could not load configuration: {exc}", file=sys.stderr)
        return 2
    _configure_logging(args.log_level or config.log_level)

    try:
        return asyncio.run(_run(args, config))
    except (AlfredMemoryError, ValueError) as exc:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
