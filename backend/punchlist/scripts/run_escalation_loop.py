from __future__ import annotations

import argparse
import logging
import time
from dataclasses import asdict

from backend.punchlist.config import get_settings
from backend.punchlist.db import session_scope
from backend.punchlist.integrations import get_transport
from backend.punchlist.services import escalation_service


logger = logging.getLogger("punchlist.escalation_loop")


def run_once() -> dict:
    settings = get_settings()
    transport = get_transport(settings)
    with session_scope() as db:
        result = escalation_service.run_escalation_sweep(db, transport, settings=settings)
    return asdict(result)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Send punch list reminders and expire unanswered assignments.")
    parser.add_argument("--once", action="store_true", help="Run a single sweep and exit.")
    parser.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Seconds between sweeps (defaults to ESCALATION_SWEEP_INTERVAL_SECONDS).",
    )
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args(argv)

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s %(message)s")
    interval = args.interval or get_settings().sweep_interval_seconds

    if args.once:
        result = run_once()
        return 1 if result["errors"] else 0

    logger.info("escalation loop started, interval=%ss", interval)
    while True:
        started = time.monotonic()
        try:
            run_once()
        except Exception:
            # Keep the loop alive; the next sweep re-reads everything from the ledger.
            logger.exception("escalation sweep crashed")
        elapsed = time.monotonic() - started
        time.sleep(max(0.0, interval - elapsed))


if __name__ == "__main__":
    raise SystemExit(main())
