"""
my_movies.py

Paginated listing of a user's tracked titles with status, tag and rating
filters. Hidden (blacklisted) titles are left out unless asked for, in which
case only hidden titles are listed.
"""
from typing import Any, Dict, Optional, Sequence

from sqlalchemy import and_, exists, func
from sqlalchemy.orm import Session

from cinetrack.models import Blacklist, WatchListItem, watchlist_tags
from cinetrack.services.stats import expand_statuses, serialize_item
from cinetrack.utils.timezone import format_iso_utc

SORT_FIELDS = ("rating", "date", "title")


def _hidden_clause(user_id: int):
    return exists().where(and_(
        Blacklist.user_id == user_id,
        Blacklist.tmdb_id == WatchListItem.tmdb_id,
        Blacklist.media_type == WatchListItem.media_type,
    ))


def _sort_column(sort_by: str):
    if sort_by == "title":
        return func.lower(WatchListItem.title)
    if sort_by == "date":
        return WatchListItem.added_at
    return func.coalesce(WatchListItem.weighted_rating, WatchListItem.user_rating)


def list_my_movies(
    db: Session,
    user_id: int,
    statuses: Optional[Sequence[str]] = None,
    tag_ids: Optional[Sequence[int]] = None,
    min_rating: Optional[float] = None,
    max_rating: Optional[float] = None,
    sort_by: str = "rating",
    sort_order: str = "desc",
    include_hidden: bool = False,
    page: int = 1,
    limit: int = 20,
) -> Dict[str, Any]:
    if include_hidden:
        return _list_hidden(db, user_id, page, limit)

    query = db.query(WatchListItem).filter(
        WatchListItem.user_id == user_id,
        ~_hidden_clause(user_id),
    )
    wanted = expand_statuses(statuses)
    if wanted:
        query = query.filter(WatchListItem.status.in_(wanted))
    if tag_ids:
        query = query.filter(WatchListItem.id.in_(
            db.query(watchlist_tags.c.watchlist_id).filter(watchlist_tags.c.tag_id.in_(list(tag_ids)))
        ))
    effective = func.coalesce(WatchListItem.weighted_rating, WatchListItem.user_rating)
    if min_rating is not None and min_rating > 0:
        query = query.filter(effective >= min_rating)
    if max_rating is not None and max_rating < 10:
        query = query.filter(effective <= max_rating)

    column = _sort_column(sort_by if sort_by in SORT_FIELDS else "rating")
    ordering = column.asc() if sort_order == "asc" else column.desc()
    if sort_by not in ("title", "date"):
        # unrated titles go last either way
        ordering = ordering.nulls_last()

    total = query.count()
    offset = (max(1, page) - 1) * limit
    items = query.order_by(ordering, WatchListItem.id.desc()).offset(offset).limit(limit).all()
    return {
        "movies": [serialize_item(item, {"is_blacklisted": False}) for item in items],
        "total_count": total,
        "has_more": offset + len(items) < total,
    }


def _list_hidden(db: Session, user_id: int, page: int, limit: int) -> Dict[str, Any]:
    query = db.query(Blacklist).filter(Blacklist.user_id == user_id)
    total = query.count()
    offset = (max(1, page) - 1) * limit
    rows = query.order_by(Blacklist.created_at.desc(), Blacklist.id.desc()).offset(offset).limit(limit).all()
    movies = [{
        "tmdb_id": row.tmdb_id,
        "media_type": row.media_type,
        "added_at": format_iso_utc(row.created_at),
        "user_rating": None,
        "is_blacklisted": True,
    } for row in rows]
    return {"movies": movies, "total_count": total, "has_more": offset + len(rows) < total}
