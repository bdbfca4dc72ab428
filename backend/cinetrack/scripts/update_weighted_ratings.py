"""
Recompute the stored weighted rating of every rated watchlist row.

Run with:
  PYTHONPATH=backend python -m cinetrack.scripts.update_weighted_ratings
"""
import logging
import time

from sqlalchemy.orm import Session

from cinetrack.core.database import SessionLocal
from cinetrack.models import WatchListItem
from cinetrack.services.weighted_rating import update_weighted_rating

logging.basicConfig(level=logging.INFO, format='[%(levelname)s] %(message)s')
logger = logging.getLogger(__name__)

BATCH_SIZE = 50


def update_all(db: Session, batch_size: int = BATCH_SIZE, pause: float = 0.1) -> dict:
    ids = [row.id for row in db.query(WatchListItem.id).filter(WatchListItem.user_rating.isnot(None)).order_by(WatchListItem.id)]
    logger.info(f"Found {len(ids)} rated rows to update")
    updated = 0
    errors = 0
    for start in range(0, len(ids), batch_size):
        chunk = ids[start:start + batch_size]
        for item in db.query(WatchListItem).filter(WatchListItem.id.in_(chunk)).all():
            try:
                if update_weighted_rating(db, item) is not None:
                    updated += 1
            except Exception as e:
                errors += 1
                logger.error(f"Failed to update row {item.id}: {e}")
        db.commit()
        logger.info(f"Batch {start // batch_size + 1}: {updated} updated so far")
        if pause and start + batch_size < len(ids):
            time.sleep(pause)
    return {"total": len(ids), "updated": updated, "errors": errors}


if __name__ == "__main__":
    db = SessionLocal()
    try:
        result = update_all(db)
        logger.info(f"Done: {result}")
    except Exception as e:
        logger.error(f"Weighted rating update failed: {e}")
        db.rollback()
        raise
    finally:
        db.close()
