"""
cli.py

Command line for schooltrack.

Commands:
    - init-config <out.yaml>
    - report <YYYY-MM> [--json]
    - export <out.json>
    - restore <in.json>
    - backup [--token TOKEN]
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional
import argparse
import json
import logging
import os
import sys

from .config import TEMPLATE_YAML, load_config
from .errors import BackupInProgress, StorageFailure
from .reports import report_to_df
from .service import TransportService
from .snapshot import dumps, loads


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="schooltrack",
        description="School transportation records: reports, export, restore and backup.",
    )
    parser.add_argument(
        "--config",
        "-c",
        dest="config_path",
        default=None,
        help="Path to a YAML/TOML config (defaults to $SCHOOLTRACK_CONFIG)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_init = sub.add_parser("init-config", help="Write a starter config file")
    p_init.add_argument("out_path")

    p_report = sub.add_parser("report", help="Monthly attendance report")
    p_report.add_argument("month", help="Month as YYYY-MM")
    p_report.add_argument("--json", dest="as_json", action="store_true")

    p_export = sub.add_parser("export", help="Write a snapshot document")
    p_export.add_argument("out_path")

    p_restore = sub.add_parser("restore", help="Replace all data with a snapshot document")
    p_restore.add_argument("in_path")

    p_backup = sub.add_parser("backup", help="Local backup, then remote upload if a token is given")
    p_backup.add_argument(
        "--token",
        default=os.environ.get("SCHOOLTRACK_ACCESS_TOKEN"),
        help="Bearer token for the remote upload (defaults to $SCHOOLTRACK_ACCESS_TOKEN)",
    )
    return parser


def _cmd_init(out_path: str) -> int:
    p = Path(out_path)
    if p.exists():
        print(f"Refusing to overwrite existing file: {p}", file=sys.stderr)
        return 2
    p.write_text(TEMPLATE_YAML, encoding="utf-8")
    print(f"Wrote starter config: {p}")
    return 0


def _cmd_report(service: TransportService, month: str, *, as_json: bool) -> int:
    report = service.compute_monthly_report(month)
    df = report_to_df(report)
    if as_json:
        print(df.to_json(orient="records", indent=2, force_ascii=False))
    elif df.empty:
        print(f"No students with a route for {month}.")
    else:
        print(df.to_string(index=False))
    return 0


def _cmd_export(service: TransportService, out_path: str) -> int:
    snapshot = service.export_snapshot()
    Path(out_path).write_text(dumps(snapshot), encoding="utf-8")
    print(json.dumps({"path": out_path, "counts": snapshot.counts()}, indent=2))
    return 0


def _cmd_restore(service: TransportService, in_path: str) -> int:
    snapshot = loads(Path(in_path).read_text(encoding="utf-8"))
    counts = service.restore_snapshot(snapshot)
    print(json.dumps({"restored": counts, "generatedAt": snapshot.generated_at}, indent=2))
    return 0


def _cmd_backup(service: TransportService, token: Optional[str]) -> int:
    result = service.perform_backup(token)
    if result.local_path:
        print(f"Local backup saved: {result.local_path}")
    if result.remote_file_id:
        print(f"Remote backup created with id {result.remote_file_id}")
    for msg in result.messages():
        print(msg, file=sys.stderr)
    return 0 if result.ok else 1


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    if args.command == "init-config":
        return _cmd_init(args.out_path)

    try:
        settings = load_config(args.config_path)
    except (FileNotFoundError, ValueError) as e:
        print(f"Invalid config: {e}", file=sys.stderr)
        return 2
    logging.basicConfig(level=settings.log_level_number)

    try:
        service = TransportService.from_settings(settings)
    except StorageFailure as e:
        print(str(e), file=sys.stderr)
        return 1

    try:
        if args.command == "report":
            return _cmd_report(service, args.month, as_json=args.as_json)
        if args.command == "export":
            return _cmd_export(service, args.out_path)
        if args.command == "restore":
            return _cmd_restore(service, args.in_path)
        if args.command == "backup":
            return _cmd_backup(service, args.token)
    except ValueError as e:
        print(str(e), file=sys.stderr)
        return 2
    except (StorageFailure, BackupInProgress, OSError) as e:
        print(str(e), file=sys.stderr)
        return 1
    finally:
        service.close()
    return 2


if __name__ == "__main__":
    sys.exit(main())
