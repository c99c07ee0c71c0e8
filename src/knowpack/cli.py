"""Command-line entry point for assembling contexts from a knowledge directory."""

from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime
from pathlib import Path
from typing import Sequence

from knowpack.config import Settings, get_settings
from knowpack.errors import BudgetTooSmall, KnowpackError, PackNotFound
from knowpack.models import AssembledContext, Query
from knowpack.services.assembly import ContextAssemblyService
from knowpack.store.markdown import load_directory, read_pack_file


def _parse_now(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid ISO timestamp: {value}") from exc


def _format_output(context: AssembledContext, fmt: str) -> str:
    if fmt == "body":
        return context.body
    if fmt == "metadata":
        return json.dumps(context.to_dict(), indent=2)
    return json.dumps({"body": context.body, "metadata": context.to_dict()}, indent=2)


def run_assemble(args: argparse.Namespace, settings: Settings) -> int:
    store, _ = load_directory(args.root, separator=settings.separator)
    service = ContextAssemblyService.from_settings(store, settings)
    query = Query(
        pack=args.pack,
        topic_hint=args.topic,
        tags=frozenset(args.tag or ()),
        budget_bytes=args.budget or settings.default_budget_bytes,
        now=args.now,
    )
    context = service.assemble(query)
    output = _format_output(context, args.format)
    if args.out:
        args.out.write_text(output, encoding="utf-8")
    else:
        print(output)
    return 0


def run_packs(args: argparse.Namespace, settings: Settings) -> int:
    store, warnings = load_directory(args.root, separator=settings.separator)
    payload = {
        "packs": [
            {"name": summary.name, "document_count": summary.document_count, "topics": list(summary.topics)}
            for summary in store.list_packs()
        ],
        "warnings": [warning.to_dict() for warning in warnings],
    }
    print(json.dumps(payload, indent=2))
    return 0


def run_show(args: argparse.Namespace, settings: Settings) -> int:
    print(read_pack_file(args.root, args.pack, args.path))
    return 0


def parse_args(argv: Sequence[str], settings: Settings) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="knowpack", description="Assemble byte-bounded contexts from knowledge packs.")
    parser.add_argument(
        "--root",
        type=Path,
        default=settings.knowledge_dir,
        help="Knowledge directory holding one sub-directory per pack.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    assemble = subparsers.add_parser("assemble", help="Assemble a context for a query")
    assemble.add_argument("pack", help="Pack to assemble from")
    assemble.add_argument("--topic", default=None, help="Free-text topic hint")
    assemble.add_argument("--tag", action="append", default=None, help="Tag filter (repeatable)")
    assemble.add_argument("--budget", type=int, default=None, help="Byte budget for the assembled body")
    assemble.add_argument("--now", type=_parse_now, default=None, help="Reference time (ISO 8601)")
    assemble.add_argument(
        "--format",
        choices=("json", "body", "metadata"),
        default="json",
        help="Output the JSON envelope, only the body, or only the metadata block",
    )
    assemble.add_argument("--out", type=Path, default=None, help="Optional path to write the output")
    assemble.set_defaults(handler=run_assemble)

    packs = subparsers.add_parser("packs", help="List packs and their topics")
    packs.set_defaults(handler=run_packs)

    show = subparsers.add_parser("show", help="Print a file from a pack (defaults to its INDEX.md)")
    show.add_argument("pack")
    show.add_argument("path", nargs="?", default=None)
    show.set_defaults(handler=run_show)
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    settings = get_settings()
    args = parse_args(sys.argv[1:] if argv is None else argv, settings)
    try:
        return args.handler(args, settings)
    except PackNotFound as exc:
        print(str(exc), file=sys.stderr)
        return 2
    except BudgetTooSmall as exc:
        print(str(exc), file=sys.stderr)
        return 3
    except (KnowpackError, FileNotFoundError) as exc:
        print(str(exc), file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    sys.exit(main())
