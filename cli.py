from __future__ import annotations

import argparse
import json
import sys

import requests

from nmroutes import ReconcileError, build_reconciler, db
from nmroutes.api_models import ReportModel


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _sync(dry_run: bool) -> int:
    """Run one local pass. Exit 0 when clean, 1 on per-entry failures, 2 when aborted."""
    db.init_db()
    rec = build_reconciler(dry_run=True if dry_run else None)
    try:
        report = rec.run_once()
    except ReconcileError as e:
        print(f"Route sync aborted: {e}", file=sys.stderr)
        return 2
    _print(ReportModel.from_report(report).model_dump())
    return 1 if report.failures else 0


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Netmaker route sync CLI")
    p.add_argument("--api", default="http://localhost:8000", help="API base URL")
    p.add_argument("--user", default="admin", help="API user for mutating calls")
    p.add_argument("--password", default=None, help="API password (when the server enforces auth)")
    sub = p.add_subparsers(dest="cmd", required=True)

    s_sync = sub.add_parser("sync", help="Run one reconciliation pass locally")
    s_sync.add_argument("--dry-run", action="store_true", help="Log route changes instead of applying them")

    sub.add_parser("status", help="Show last pass and loop state")
    sub.add_parser("routes", help="List routes installed in the policy table")
    sub.add_parser("peers", help="List mesh peers and their subnets")
    sub.add_parser("reconcile", help="Ask the API to run a pass now")

    s_ev = sub.add_parser("events", help="Show events")
    s_ev.add_argument("--limit", type=int, default=20)

    s_runs = sub.add_parser("runs", help="Show recent passes")
    s_runs.add_argument("--limit", type=int, default=20)

    args = p.parse_args(argv)

    if args.cmd == "sync":
        return _sync(args.dry_run)

    base = args.api.rstrip("/")

    if args.cmd in {"status", "routes", "peers"}:
        r = requests.get(f"{base}/{args.cmd}", timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd in {"events", "runs"}:
        r = requests.get(f"{base}/{args.cmd}", params={"limit": args.limit}, timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "reconcile":
        auth = (args.user, args.password) if args.password else None
        r = requests.post(f"{base}/reconcile", auth=auth, timeout=60)
        _print(r.json())
        return 0 if r.ok else 1

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
