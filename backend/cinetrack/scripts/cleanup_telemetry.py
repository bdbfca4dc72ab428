"""
Delete telemetry rows past their retention window.

Run with:
  PYTHONPATH=backend python -m cinetrack.scripts.cleanup_telemetry [--dry-run]
"""
import argparse
import logging

from cinetrack.core.database import SessionLocal
from cinetrack.services.telemetry import cleanup_expired, table_stats

logging.basicConfig(level=logging.INFO, format='[%(levelname)s] %(message)s')
logger = logging.getLogger(__name__)


def main(argv=None) -> dict:
    parser = argparse.ArgumentParser(description="Remove expired telemetry rows")
    parser.add_argument("--dry-run", action="store_true", help="only count what would be deleted")
    args = parser.parse_args(argv)

    db = SessionLocal()
    try:
        removed = cleanup_expired(db, dry_run=args.dry_run)
        for table, count in removed.items():
            logger.info(f"{table}: {count} {'expired' if args.dry_run else 'deleted'}")
        health = table_stats(db)["cleanup_status"]
        if not health["healthy"]:
            logger.warning(f"Retention still unhealthy: {health['details']}")
        return removed
    finally:
        db.close()


if __name__ == "__main__":
    main()
