import logging
from typing import List

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cinetrack.models import Blacklist

logger = logging.getLogger(__name__)


def is_blacklisted(db: Session, user_id: int, tmdb_id: int, media_type: str) -> bool:
    return db.query(Blacklist.id).filter(
        Blacklist.user_id == user_id,
        Blacklist.tmdb_id == tmdb_id,
        Blacklist.media_type == media_type,
    ).first() is not None


def add_to_blacklist(db: Session, user_id: int, tmdb_id: int, media_type: str) -> bool:
    """Hide a title. Returns False when it was already hidden."""
    if is_blacklisted(db, user_id, tmdb_id, media_type):
        return False
    db.add(Blacklist(user_id=user_id, tmdb_id=tmdb_id, media_type=media_type))
    try:
        db.commit()
    except IntegrityError:
        # concurrent insert of the same key
        db.rollback()
        return False
    logger.info(f"User {user_id} hid {media_type}/{tmdb_id}")
    return True


def remove_from_blacklist(db: Session, user_id: int, tmdb_id: int, media_type: str) -> bool:
    deleted = db.query(Blacklist).filter(
        Blacklist.user_id == user_id,
        Blacklist.tmdb_id == tmdb_id,
        Blacklist.media_type == media_type,
    ).delete(synchronize_session=False)
    db.commit()
    return deleted > 0


def list_blacklist(db: Session, user_id: int) -> List[Blacklist]:
    return db.query(Blacklist).filter(Blacklist.user_id == user_id).order_by(Blacklist.created_at.desc()).all()
