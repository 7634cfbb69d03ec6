#!/usr/bin/env python3
from __future__ import annotations
import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from model_ingest.config import load_config
from model_ingest.envelope import Envelope
from model_ingest.errors import IngestError, UserInputError
from model_ingest.services import build_services


logger = logging.getLogger("ingest_cli")


def _print(env: Envelope, out: Optional[Path] = None) -> None:
    text = json.dumps(env.to_dict(), indent=2, ensure_ascii=False, default=str)
    if out is not None:
        out.write_text(text + "\n", encoding="utf-8")
        logger.info(f"Wrote {out}")
    print(text)


def _read_file(path: str) -> tuple:
    p = Path(path)
    if not p.is_file():
        raise UserInputError(f"No such file: {path}")
    return p.name, p.read_bytes()


def _read_mapping(value: str) -> str:
    # Either inline JSON or a path to a JSON file
    p = Path(value)
    if not value.lstrip().startswith("{") and p.is_file():
        return p.read_text(encoding="utf-8")
    return value


def cmd_check(svc, args) -> Envelope:
    name = Path(args.file).name
    return Envelope.ok(svc.orchestrator.check(name))


def cmd_preview(svc, args) -> Envelope:
    name, content = _read_file(args.file)
    previous = _read_mapping(args.previous_mapping) if args.previous_mapping else None
    result = svc.orchestrator.preview(name, content, gender=args.gender, feedback=args.feedback, previous_mapping=previous)
    return Envelope.ok(result.to_dict())


def cmd_confirm(svc, args) -> Envelope:
    name, content = _read_file(args.file)
    report = svc.orchestrator.confirm(
        name, content, _read_mapping(args.mapping), gender=args.gender, agency_id=args.agency_id or None
    )
    return Envelope.ok(report.to_dict(), message=report.summary)


def cmd_delete(svc, args) -> Envelope:
    if not args.yes:
        raise UserInputError("Refusing to delete without --yes")
    deleted = svc.orchestrator.delete_by_source(args.data_source)
    return Envelope.ok(
        {"deleted": deleted, "data_source": args.data_source},
        message=f"Deleted {deleted} models and related records for data_source {args.data_source}",
    )


def cmd_enrich(svc, args) -> Envelope:
    ids = list(args.model_id or [])
    if args.data_source:
        ids += [i for i in svc.store.model_ids_for_source(args.data_source) if i not in ids]
    if not ids:
        raise UserInputError("Give --model-id or --data-source")
    result = svc.enrichment.sweep(ids)
    return Envelope.ok({**result.counters(), "outcomes": [o.to_dict() for o in result.outcomes]})


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Ingest model CSV exports into the models database.")
    parser.add_argument("--env-file", default="", help="Path to a .env file to load before reading settings")
    parser.add_argument("--db", default="", help="sqlite database path (overrides INGEST_DB_PATH)")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="-v for info, -vv for debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("check", help="Report whether a file was already ingested")
    p.add_argument("file")
    p.set_defaults(func=cmd_check)

    p = sub.add_parser("preview", help="Propose a mapping and show transformed sample rows")
    p.add_argument("file")
    p.add_argument("--gender", default=None, help="Override the gender inferred from the file name")
    p.add_argument("--feedback", default=None, help="Free-text feedback for regenerating a mapping")
    p.add_argument("--previous-mapping", default=None, help="Previous mapping (JSON or path) to revise")
    p.add_argument("--out", default=None, help="Also write the result JSON to this path")
    p.set_defaults(func=cmd_preview)

    p = sub.add_parser("confirm", help="Apply a mapping to every row and persist the records")
    p.add_argument("file")
    p.add_argument("--mapping", required=True, help="Confirmed mapping (JSON or path)")
    p.add_argument("--gender", default=None)
    p.add_argument("--agency-id", default=None)
    p.set_defaults(func=cmd_confirm)

    p = sub.add_parser("delete", help="Delete every record ingested from a source file")
    p.add_argument("data_source")
    p.add_argument("--yes", action="store_true", help="Confirm the deletion")
    p.set_defaults(func=cmd_delete)

    p = sub.add_parser("enrich", help="Run enrichment for models")
    p.add_argument("--model-id", type=int, action="append")
    p.add_argument("--data-source", default=None)
    p.set_defaults(func=cmd_enrich)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    level = logging.WARNING if args.verbose == 0 else logging.INFO if args.verbose == 1 else logging.DEBUG
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(message)s")

    try:
        cfg = load_config(Path(args.env_file) if args.env_file else None)
        if args.db:
            cfg = cfg.with_overrides(db_path=Path(args.db))
        svc = build_services(cfg)
        env = args.func(svc, args)
    except IngestError as e:
        _print(Envelope.from_error(e))
        return 1
    _print(env, Path(args.out) if getattr(args, "out", None) else None)
    return 0


if __name__ == "__main__":
    sys.exit(main())
