# scripts/run_reconcile.py
from __future__ import annotations

import argparse
import logging
from datetime import datetime, timezone
from typing import Optional, Sequence

from app.purchases.factory import build_dispatcher, build_store
from app.workers.reconcile_worker import sweep
from settings import settings


def _parse_now(value: str | None) -> datetime | None:
    """ISO-8601 in, aware UTC out. A timestamp without an offset is read as UTC."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Run one purchase reconciliation sweep.")
    parser.add_argument("--batch-size", type=int, default=settings.RECONCILE_BATCH_SIZE)
    parser.add_argument("--now", help="ISO-8601 timestamp to evaluate deadlines against, UTC if no offset (default: current time)")
    parser.add_argument("--no-report", action="store_true", help="do not persist the sweep report")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    dispatcher = build_dispatcher()
    try:
        report = sweep(
            build_store(),
            dispatcher,
            now=_parse_now(args.now),
            batch_size=args.batch_size,
            persist=not args.no_report,
        )
    finally:
        dispatcher.shutdown(wait=True)

    print("reconcile_report_id:", report.get("id"))
    print(
        "counts:",
        f"auto_confirmed={report['auto_confirmed']}",
        f"escalated={report['escalated']}",
        f"skipped={report['skipped']}",
        f"conflicts={report['conflicts']}",
        f"errors={report['errors']}",
        f"side_effect_failures={report['side_effect_failures']}",
    )


if __name__ == "__main__":
    main()
