"""
watchlist.py

Watchlist status reconciliation: upsert keyed by (user, tmdb_id, media_type),
rating-only edits, rewatches, removal and the batch status lookup used by
title grids. Rating changes are appended to RatingHistory so the weighted
rating can be recomputed later.
"""
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from cinetrack.models import (
    Blacklist,
    RatingHistory,
    RewatchLog,
    STATUS_REWATCHED,
    WATCH_STATUSES,
    WatchListItem,
)
from cinetrack.utils.timezone import format_iso_utc, utc_now

logger = logging.getLogger(__name__)


class ItemNotFound(Exception):
    """The title is not tracked by this user."""


class InvalidStatus(ValueError):
    pass


def media_key(tmdb_id: int, media_type: str) -> str:
    return f"{tmdb_id}-{media_type}"


def _dialect_insert(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise RuntimeError(f"Native upsert not supported for dialect {dialect}")
    return insert


def _normalize_rating(value) -> Optional[float]:
    # 0 and empty values mean "not rated"
    if value is None or value == "" or value == 0:
        return None
    return float(value)


def get_item(db: Session, user_id: int, tmdb_id: int, media_type: str) -> Optional[WatchListItem]:
    return db.query(WatchListItem).filter(
        WatchListItem.user_id == user_id,
        WatchListItem.tmdb_id == tmdb_id,
        WatchListItem.media_type == media_type,
    ).first()


def serialize_status(item: Optional[WatchListItem]) -> Dict:
    if item is None:
        return {"status": None, "user_rating": None, "watched_date": None, "watch_count": 0}
    return {
        "status": item.status,
        "user_rating": item.user_rating,
        "watched_date": format_iso_utc(item.watched_date),
        "watch_count": item.watch_count or 0,
    }


def get_status(db: Session, user_id: int, tmdb_id: int, media_type: str) -> Dict:
    return serialize_status(get_item(db, user_id, tmdb_id, media_type))


def _log_rating(db: Session, user_id: int, tmdb_id: int, media_type: str, rating: float, action_type: str) -> None:
    db.add(RatingHistory(
        user_id=user_id,
        tmdb_id=tmdb_id,
        media_type=media_type,
        rating=rating,
        action_type=action_type,
    ))


def remove_item(db: Session, user_id: int, tmdb_id: int, media_type: str, commit: bool = True) -> bool:
    """Delete the row and release its tags. Returns False when nothing was tracked."""
    item = get_item(db, user_id, tmdb_id, media_type)
    if item is None:
        return False
    for tag in list(item.tags):
        tag.usage_count = (tag.usage_count or 0) - 1
        if tag.usage_count <= 0:
            db.delete(tag)
    db.delete(item)
    if commit:
        db.commit()
    logger.info(f"Removed {media_type}/{tmdb_id} from watchlist of user {user_id}")
    return True


def upsert_status(
    db: Session,
    user_id: int,
    tmdb_id: int,
    media_type: str,
    status: Optional[str],
    title: str = "",
    vote_average: Optional[float] = None,
    user_rating=None,
    watched_date: Optional[datetime] = None,
    is_rewatch: bool = False,
    commit: bool = True,
) -> Optional[WatchListItem]:
    """Set the status of a title for a user.

    ``status=None`` removes the row. Otherwise a single
    ``INSERT ... ON CONFLICT DO UPDATE`` writes it, so concurrent calls for the
    same key converge on one row through the unique constraint.
    """
    if status is None:
        remove_item(db, user_id, tmdb_id, media_type, commit=commit)
        return None
    if status not in WATCH_STATUSES:
        raise InvalidStatus(f"Invalid status: {status}")

    existing = get_item(db, user_id, tmdb_id, media_type)
    previous_watch_count = existing.watch_count if existing is not None else 0
    previous_rating = existing.user_rating if existing is not None else None
    new_rating = _normalize_rating(user_rating)
    rating_changed = existing is not None and new_rating is not None and previous_rating != new_rating

    if is_rewatch:
        watch_count = previous_watch_count + 1 if existing is not None else 1
    else:
        watch_count = previous_watch_count

    now = utc_now()
    values = {
        "user_id": user_id,
        "tmdb_id": tmdb_id,
        "media_type": media_type,
        "title": title or (existing.title if existing is not None else ""),
        "vote_average": vote_average if vote_average is not None else (existing.vote_average if existing is not None else None),
        "status": status,
        "user_rating": new_rating,
        "watched_date": watched_date,
        "watch_count": watch_count,
        "added_at": now,
        "updated_at": now,
    }
    insert = _dialect_insert(db)
    stmt = insert(WatchListItem).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id", "tmdb_id", "media_type"],
        set_={
            "status": stmt.excluded.status,
            "title": stmt.excluded.title,
            "vote_average": stmt.excluded.vote_average,
            "user_rating": stmt.excluded.user_rating,
            "watched_date": stmt.excluded.watched_date,
            "watch_count": stmt.excluded.watch_count,
            "updated_at": stmt.excluded.updated_at,
        },
    )
    db.execute(stmt)

    if is_rewatch:
        db.add(RewatchLog(
            user_id=user_id,
            tmdb_id=tmdb_id,
            media_type=media_type,
            rating_before=previous_rating,
            rating_after=new_rating,
            previous_watch_count=previous_watch_count,
        ))

    if rating_changed:
        _log_rating(db, user_id, tmdb_id, media_type, new_rating, "rewatch" if is_rewatch else "rating_change")
    elif existing is None and new_rating is not None:
        _log_rating(db, user_id, tmdb_id, media_type, new_rating, "initial")

    if existing is not None:
        db.expire(existing)
    if commit:
        db.commit()
    else:
        db.flush()
    return get_item(db, user_id, tmdb_id, media_type)


def record_rewatch(db: Session, user_id: int, tmdb_id: int, media_type: str, title: str,
                   vote_average: Optional[float] = None, user_rating=None,
                   watched_date: Optional[datetime] = None) -> WatchListItem:
    return upsert_status(
        db, user_id, tmdb_id, media_type, STATUS_REWATCHED,
        title=title, vote_average=vote_average, user_rating=user_rating,
        watched_date=watched_date, is_rewatch=True,
    )


def update_rating(db: Session, user_id: int, tmdb_id: int, media_type: str, user_rating,
                  title: Optional[str] = None, vote_average: Optional[float] = None) -> WatchListItem:
    """Change only the rating of an already tracked title."""
    item = get_item(db, user_id, tmdb_id, media_type)
    if item is None:
        raise ItemNotFound(f"{media_type}/{tmdb_id} not in watchlist")

    new_rating = _normalize_rating(user_rating)
    if new_rating is not None and item.user_rating != new_rating:
        _log_rating(db, user_id, tmdb_id, media_type, new_rating, "rating_change")

    item.user_rating = new_rating
    if title:
        item.title = title
    if vote_average is not None:
        item.vote_average = vote_average
    db.commit()
    db.refresh(item)
    return item


def get_note(db: Session, user_id: int, tmdb_id: int, media_type: str) -> str:
    item = get_item(db, user_id, tmdb_id, media_type)
    return (item.note or "") if item is not None else ""


def update_note(db: Session, user_id: int, tmdb_id: int, media_type: str, note: Optional[str]) -> None:
    item = get_item(db, user_id, tmdb_id, media_type)
    if item is None:
        raise ItemNotFound(f"{media_type}/{tmdb_id} not in watchlist")
    item.note = note or None
    db.commit()


def _unique_pairs(pairs: Iterable[Tuple[int, str]]) -> List[Tuple[int, str]]:
    seen = {}
    for tmdb_id, media_type in pairs:
        seen.setdefault(media_key(tmdb_id, media_type), (int(tmdb_id), media_type))
    return list(seen.values())


def community_ratings(db: Session, pairs: Iterable[Tuple[int, str]]) -> Dict[str, Dict]:
    """Average of all users' positive ratings per title, rounded to 1 decimal."""
    pairs = _unique_pairs(pairs)
    if not pairs:
        return {}
    wanted = {media_key(t, m) for t, m in pairs}
    rows = db.query(
        WatchListItem.tmdb_id,
        WatchListItem.media_type,
        func.avg(WatchListItem.user_rating),
        func.count(WatchListItem.user_rating),
    ).filter(
        WatchListItem.tmdb_id.in_({t for t, _ in pairs}),
        WatchListItem.user_rating.isnot(None),
        WatchListItem.user_rating > 0,
    ).group_by(WatchListItem.tmdb_id, WatchListItem.media_type).all()

    ratings = {}
    for tmdb_id, media_type, avg, count in rows:
        key = media_key(tmdb_id, media_type)
        if key in wanted and count:
            ratings[key] = {"average_rating": round(float(avg), 1), "rating_count": int(count)}
    return ratings


def batch_lookup(db: Session, user_id: Optional[int], pairs: List[Tuple[int, str]]) -> Dict[str, Dict]:
    """Per-title status, rating, blacklist flag and community rating.

    One entry per distinct ``"{tmdb_id}-{media_type}"`` key; three IN-clause
    queries regardless of the number of pairs.
    """
    result = {}
    for tmdb_id, media_type in pairs:
        result[media_key(tmdb_id, media_type)] = {
            "status": None,
            "user_rating": None,
            "watched_date": None,
            "watch_count": 0,
            "is_blacklisted": False,
            "average_rating": None,
            "rating_count": 0,
        }
    tmdb_ids = {int(t) for t, _ in pairs}

    if user_id is not None:
        items = db.query(WatchListItem).filter(
            WatchListItem.user_id == user_id,
            WatchListItem.tmdb_id.in_(tmdb_ids),
        ).all()
        for item in items:
            entry = result.get(media_key(item.tmdb_id, item.media_type))
            if entry is not None:
                entry.update(serialize_status(item))

        hidden = db.query(Blacklist.tmdb_id, Blacklist.media_type).filter(
            Blacklist.user_id == user_id,
            Blacklist.tmdb_id.in_(tmdb_ids),
        ).all()
        for tmdb_id, media_type in hidden:
            entry = result.get(media_key(tmdb_id, media_type))
            if entry is not None:
                entry["is_blacklisted"] = True

    for key, rating in community_ratings(db, pairs).items():
        result[key].update(rating)
    return result
