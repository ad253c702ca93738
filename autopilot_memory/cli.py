"""
Autopilot Memory CLI - inspect and maintain memories from a shell.

Usage:
    python -m autopilot_memory.cli [--json] [--project-path PATH] <command>

    python -m autopilot_memory.cli search "<query>" [--scope all] [--limit 10] [--category CATEGORY]
    python -m autopilot_memory.cli store "<content>" --category CATEGORY --scope user|project [--importance 0.5] [--tags a,b]
    python -m autopilot_memory.cli forget "<query>" --scope user|project [--confirm]
    python -m autopilot_memory.cli stats [--scope all]
    python -m autopilot_memory.cli rebuild [--scope all]

Global Options:
    --json              Output as JSON for automation/scripting
    --project-path PATH Project root anchoring the project scope (default: cwd)
"""

import argparse
import asyncio
import json
import os
import sys
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from .config import settings
from .logging_config import setup_logging
from .memory import MemoryEngine
from .models import CATEGORIES, SCOPE_SELECTORS, SCOPES


def safe_print(text: str, file=None) -> None:
    """Print text safely, handling Unicode encoding errors on Windows."""
    output = file or sys.stdout
    try:
        print(text, file=output)
    except UnicodeEncodeError:
        encoding = output.encoding or 'utf-8'
        safe_text = text.encode(encoding, errors='replace').decode(encoding, errors='replace')
        print(safe_text, file=output)


def _make_engine() -> MemoryEngine:
    return MemoryEngine(settings)


def _split_tags(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [tag.strip() for tag in raw.split(",") if tag.strip()]


async def run_command(args: argparse.Namespace, cwd: str) -> Dict[str, Any]:
    """Run one command against a fresh engine and return a JSON-able result."""
    engine = _make_engine()
    try:
        if args.command == "search":
            results = await engine.search(
                args.query, scope=args.scope, limit=args.limit, category=args.category, cwd=cwd
            )
            return {"results": [r.to_dict() for r in results]}

        if args.command == "store":
            result = await engine.store(
                args.content,
                category=args.category,
                scope=args.scope,
                importance=args.importance,
                tags=_split_tags(args.tags),
                cwd=cwd,
            )
            return asdict(result)

        if args.command == "forget":
            result = await engine.delete(args.query, scope=args.scope, confirm=args.confirm, cwd=cwd)
            return {
                "confirm": args.confirm,
                "matches": [m.to_dict() for m in result.found],
                "deleted": result.deleted,
                "failures": [asdict(f) for f in result.failures],
            }

        if args.command == "stats":
            stats = await engine.stats(scope=args.scope, cwd=cwd)
            return stats.to_dict()

        if args.command == "rebuild":
            result = await engine.rebuild_index(scope=args.scope, cwd=cwd)
            return asdict(result)

        raise ValueError(f"Unknown command: {args.command}")
    finally:
        await engine.close()


def format_result(command: str, result: Dict[str, Any]) -> str:
    """Human-readable rendering of a command result."""
    lines = []
    if command == "search":
        if not result["results"]:
            return "No memories found matching the query."
        for r in result["results"]:
            lines.append(f"[{r['similarity_score']:.3f}] ({r['scope']}/{r['category']}) {r['content'][:80]}")
    elif command == "store":
        if result["duplicate"]:
            return "Not stored: a very similar memory already exists."
        lines.append(f"Stored memory {result['id']}")
        lines.append(f"  File: {result['file']}")
    elif command == "forget":
        for m in result["matches"]:
            lines.append(f"  ({m['scope']}/{m['category']}) {m['content'][:80]}")
        if result["confirm"]:
            lines.append(f"Deleted {result['deleted']} of {len(result['matches'])} matching memories")
            for failure in result["failures"]:
                lines.append(f"  FAILED [{failure['stage']}] {failure['id']}: {failure['error']}")
        else:
            lines.append(f"{len(result['matches'])} matching memories. Re-run with --confirm to delete.")
    elif command == "stats":
        lines.append(f"Total memories: {result['total']}")
        for category, count in sorted(result["by_category"].items()):
            lines.append(f"  {category}: {count}")
        for scope, count in sorted(result["by_scope"].items()):
            lines.append(f"  scope {scope}: {count}")
        if result["most_recent"]:
            lines.append("\nMost recent:")
            for m in result["most_recent"]:
                lines.append(f"  {m['created_at']} ({m['scope']}/{m['category']}) {m['content'][:60]}")
    elif command == "rebuild":
        lines.append(f"Indexed {result['indexed']} memories")
        if result["scopes"]:
            lines.append(f"Scopes: {', '.join(result['scopes'])}")
    return "\n".join(lines)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Autopilot Memory CLI")

    # Global options
    parser.add_argument("--json", action="store_true", help="Output as JSON")
    parser.add_argument("--project-path", help="Project root path")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    search_parser = subparsers.add_parser("search", help="Hybrid search over memories")
    search_parser.add_argument("query", help="Search query text")
    search_parser.add_argument("--scope", choices=SCOPE_SELECTORS, default="all")
    search_parser.add_argument("--limit", type=int, default=settings.default_search_limit)
    search_parser.add_argument("--category", choices=CATEGORIES)

    store_parser = subparsers.add_parser("store", help="Store a new memory")
    store_parser.add_argument("content", help="Memory content")
    store_parser.add_argument("--category", choices=CATEGORIES, required=True)
    store_parser.add_argument("--scope", choices=SCOPES, required=True)
    store_parser.add_argument("--importance", type=float, default=0.5)
    store_parser.add_argument("--tags", help="Comma-separated tags")

    forget_parser = subparsers.add_parser("forget", help="Preview or delete memories matching a query")
    forget_parser.add_argument("query", help="Search query to find memories to delete")
    forget_parser.add_argument("--scope", choices=SCOPES, required=True)
    forget_parser.add_argument("--confirm", action="store_true", help="Actually delete the matches")

    stats_parser = subparsers.add_parser("stats", help="Show memory statistics")
    stats_parser.add_argument("--scope", choices=SCOPE_SELECTORS, default="all")

    rebuild_parser = subparsers.add_parser("rebuild", help="Rebuild the vector index from markdown files")
    rebuild_parser.add_argument("--scope", choices=SCOPE_SELECTORS, default="all")

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    setup_logging(settings.log_level, settings.structured_logging)
    cwd = args.project_path or settings.project_dir or os.getcwd()

    try:
        result = asyncio.run(run_command(args, cwd))
    except Exception as e:
        if args.json:
            print(json.dumps({"error": str(e)}))
        else:
            print(f"ERROR: {args.command} failed: {e}", file=sys.stderr)
        sys.exit(1)

    if args.json:
        print(json.dumps(result, default=str))
    else:
        safe_print(format_result(args.command, result))


if __name__ == "__main__":
    main()
