"""Command-line trigger for reconciliation sweeps and single snapshot checks.

Intended to be invoked by cron every 15 minutes.
"""

import argparse
import asyncio
import json
import sys

from answer_sync.config import settings
from answer_sync.errors import ReconcileError
from answer_sync.services.logger import configure_logging
from answer_sync.services.reconciler import ReconciliationEngine
from answer_sync.stores.supabase_store import create_store


async def run_sweep() -> int:
    try:
        engine = ReconciliationEngine.from_settings(settings, create_store(settings))
        stats = await engine.sweep()
    except ReconcileError as e:
        print(f"[!] Sweep failed: {e}", file=sys.stderr)
        return 1
    print(json.dumps(stats.as_dict(), indent=2))
    return 0


async def run_check(snapshot_id: str, wait: bool) -> int:
    try:
        engine = ReconciliationEngine.from_settings(settings, create_store(settings))
        check = await engine.check_snapshot(snapshot_id, wait=wait)
    except ReconcileError as e:
        print(f"[!] Check failed: {e}", file=sys.stderr)
        return 1
    output = {
        "success": check.success,
        "execution_id": check.execution.id if check.execution else None,
        "status": check.execution.status if check.execution else None,
    }
    if check.answer is not None:
        output["answer_preview"] = check.answer.answer_text[:200]
        output["urls"] = check.answer.urls
    print(json.dumps(output, indent=2))
    return 0 if check.success else 2


def main():
    parser = argparse.ArgumentParser(description="answer-sync snapshot reconciliation")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("sweep", help="Check and complete outstanding snapshot executions")

    check = sub.add_parser("check", help="Inspect one snapshot without writing")
    check.add_argument("snapshot_id", help="Provider snapshot id")
    check.add_argument("--wait", action="store_true", help="Keep polling until the answer is ready")

    args = parser.parse_args()
    configure_logging()

    if args.command == "sweep":
        code = asyncio.run(run_sweep())
    else:
        code = asyncio.run(run_check(args.snapshot_id, args.wait))
    sys.exit(code)


if __name__ == "__main__":
    main()
