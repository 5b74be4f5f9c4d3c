"""Run the escalation sweeper once, or on a fixed interval.

Usage:
    python -m app.jobs.sweep_escalations
    python -m app.jobs.sweep_escalations --loop --interval 30
"""
import argparse
import logging
import time

from app.core.config import settings
from app.core.database import SessionLocal
from app.core.logging import configure_logging
from app.services.escalation_service import sweep_escalations
from app.services.notification_service import close_event_sink

logger = logging.getLogger(__name__)


def run_once() -> dict:
    db = SessionLocal()
    try:
        return sweep_escalations(db)
    finally:
        db.close()


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Escalate overdue triage routing assignments")
    parser.add_argument("--loop", action="store_true", help="Keep sweeping until interrupted")
    parser.add_argument("--interval", type=int, default=settings.SWEEP_INTERVAL_SECONDS, help="Seconds between sweeps")
    args = parser.parse_args(argv)

    configure_logging()

    try:
        while True:
            try:
                result = run_once()
                logger.info(
                    "Sweep finished: %d escalated, %d unresolved, %d exhausted",
                    len(result["escalations"]), len(result["unresolved"]), len(result["exhausted"])
                )
            except Exception:
                if not args.loop:
                    raise
                logger.exception("Sweep failed; retrying in %d s", args.interval)
            if not args.loop:
                break
            time.sleep(args.interval)
    finally:
        close_event_sink()


if __name__ == "__main__":
    main()
