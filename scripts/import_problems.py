"""Import a JSON array of problems into a sub-pattern, all or nothing."""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Sequence

import db
from engines import hierarchy
from engines.validation import CatalogError


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "subpattern_id",
        type=str,
        help="Key of the sub-pattern that receives the problems",
    )
    parser.add_argument(
        "--file",
        type=str,
        default="-",
        help="Path to the JSON batch (default: read from stdin)",
    )
    parser.add_argument(
        "--db",
        type=str,
        default=None,
        help="Override DB_PATH for this run",
    )
    return parser


def _read_payload(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    return Path(source).read_text(encoding="utf-8")


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.db:
        db.DB_PATH = args.db
        db._pool = db.SQLiteConnectionPool(args.db, max_connections=2)
    db.init()

    try:
        payload = _read_payload(args.file)
    except OSError as exc:
        print(f"Cannot read {args.file}: {exc}", file=sys.stderr)
        return 1

    try:
        created = hierarchy.import_problems(args.subpattern_id, payload)
    except CatalogError as exc:
        print(f"Import rejected: {exc}", file=sys.stderr)
        return 1

    summary = {
        "subpattern_id": args.subpattern_id,
        "added": len(created),
        "problems": [{"id": p.id, "title": p.title, "order": p.order} for p in created],
    }
    print(json.dumps(summary, indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
