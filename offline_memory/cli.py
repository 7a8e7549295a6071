"""
OfflineMemory CLI - command-line access to the memory store and hooks.

Usage:
    python -m offline_memory [--json] [--db-path PATH] <command>

    python -m offline_memory recall "<query>" [--limit N] [--entity-id ID] [--session-id ID]
    python -m offline_memory store "<text>" [--category TAG] [--importance 0.5]
    python -m offline_memory forget (--id ID | --query TEXT)
    python -m offline_memory stats [--top-tags N] [--no-tags]
    python -m offline_memory gc [--retention-days N] [--protect TAG ...] [--limit N] [--apply]
    python -m offline_memory before-turn   < event.json   (prints context to prepend)
    python -m offline_memory after-turn    < event.json   (captures the turn)

Global Options:
    --json              Output as JSON for automation/scripting
    --db-path PATH      Override the database location (sets OFFLINE_MEMORY_DB_PATH)
    --log-level LEVEL   Logging level (default from settings)
"""

import sys
import asyncio
import argparse
import json
from typing import Any, Dict, List, Optional

from .config import Settings
from .exceptions import PartialFailure
from .logging_config import configure_logging
from .plugin import MemoryPlugin


def safe_print(text: str, file=None) -> None:
    """Print text safely, handling Unicode encoding errors on Windows."""
    output = file or sys.stdout
    try:
        print(text, file=output)
    except UnicodeEncodeError:
        encoding = output.encoding or 'utf-8'
        safe_text = text.encode(encoding, errors='replace').decode(encoding, errors='replace')
        print(safe_text, file=output)


def read_event(stream=None) -> Any:
    """Read a JSON hook event from stdin. Empty or invalid input yields {}."""
    raw = (stream or sys.stdin).read()
    if not raw.strip():
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return {}


def tool_params(args: argparse.Namespace) -> Dict[str, Any]:
    """Map parsed CLI arguments onto tool parameters."""
    if args.command == "recall":
        return {
            "query": args.query,
            "limit": args.limit,
            "entity_id": args.entity_id,
            "process_id": args.process_id,
            "session_id": args.session_id,
        }
    if args.command == "store":
        return {
            "text": args.text,
            "category": args.category,
            "importance": args.importance,
            "entity_id": args.entity_id,
            "session_id": args.session_id,
        }
    if args.command == "forget":
        return {"memory_id": args.id, "query": args.query}
    if args.command == "stats":
        return {"include_tags": not args.no_tags, "top_tags": args.top_tags}
    if args.command == "gc":
        return {
            "dry_run": not args.apply,
            "retention_days": args.retention_days,
            "protect_tags": args.protect,
            "limit": args.limit,
        }
    return {}


async def run_command(args: argparse.Namespace, settings: Settings) -> int:
    plugin = MemoryPlugin(settings)
    try:
        if args.command == "before-turn":
            result = await plugin.before_agent_start(read_event())
            context = (result or {}).get("prepend_context")
            if args.json:
                print(json.dumps({"prepend_context": context}))
            elif context:
                safe_print(context)
            return 0

        if args.command == "after-turn":
            report = await plugin.agent_end(read_event())
            if args.json:
                print(json.dumps(report.to_dict() if report else None, default=str))
            elif report:
                print(f"Stored {report.stored} of {report.candidates} candidate(s)")
            if report and report.error:
                return 1
            try:
                if report:
                    report.raise_for_failures()
            except PartialFailure as e:
                safe_print(str(e), file=sys.stderr)
                return 1
            return 0

        result = await plugin.execute_tool(f"memory_{args.command}", tool_params(args))
        if args.json:
            print(json.dumps(result["details"], default=str))
        else:
            for block in result["content"]:
                safe_print(block["text"])
        return 0 if result["details"].get("ok") else 1
    finally:
        await plugin.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="offline-memory", description="OfflineMemory CLI")

    # Global options
    parser.add_argument("--json", action="store_true", help="Output as JSON")
    parser.add_argument("--db-path", help="SQLite database path")
    parser.add_argument("--log-level", default=None, help="Logging level")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    recall_parser = subparsers.add_parser("recall", help="Search memories")
    recall_parser.add_argument("query", help="Search text")
    recall_parser.add_argument("--limit", type=int, default=None, help="Maximum results (1-20)")
    recall_parser.add_argument("--entity-id", default=None, help="Only memories from this entity")
    recall_parser.add_argument("--process-id", default=None, help="Only memories from this process")
    recall_parser.add_argument("--session-id", default=None, help="Only memories from this session")

    store_parser = subparsers.add_parser("store", help="Store a memory")
    store_parser.add_argument("text", help="Memory text")
    store_parser.add_argument("--category", default=None, help="Category, stored as the item tag")
    store_parser.add_argument("--importance", type=float, default=None, help="Importance 0..1")
    store_parser.add_argument("--entity-id", default=None, help="Who said/wrote this")
    store_parser.add_argument("--session-id", default=None, help="Conversation grouping")

    forget_parser = subparsers.add_parser("forget", help="Delete a memory")
    forget_parser.add_argument("--id", default=None, help="Memory id to delete")
    forget_parser.add_argument("--query", default=None, help="Delete the best match for this text")

    stats_parser = subparsers.add_parser("stats", help="Show store statistics")
    stats_parser.add_argument("--top-tags", type=int, default=10, help="Number of tags to list")
    stats_parser.add_argument("--no-tags", action="store_true", help="Skip the tag breakdown")

    gc_parser = subparsers.add_parser("gc", help="Garbage-collect old memories (dry run unless --apply)")
    gc_parser.add_argument("--retention-days", type=int, default=None, help="Override retention horizon")
    gc_parser.add_argument("--protect", nargs="*", default=None, help="Tags that are never deleted")
    gc_parser.add_argument("--limit", type=int, default=None, help="Maximum items per pass")
    gc_parser.add_argument("--apply", action="store_true", help="Actually delete")

    subparsers.add_parser("before-turn", help="Pre-turn hook: read event JSON on stdin, print context")
    subparsers.add_parser("after-turn", help="Post-turn hook: read event JSON on stdin, capture messages")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    overrides = {"db_path": args.db_path} if args.db_path else {}
    settings = Settings(**overrides)
    configure_logging(args.log_level or settings.log_level, structured=settings.log_json)

    return asyncio.run(run_command(args, settings))


if __name__ == "__main__":
    sys.exit(main())
