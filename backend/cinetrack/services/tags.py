"""
tags.py

User-scoped tags on watchlist items. Names are stored normalised (trimmed,
lower-case) and each tag keeps a usage counter; a tag whose counter drops
to zero is deleted.
"""
import logging
from typing import Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from cinetrack.models import Tag, WatchListItem, watchlist_tags
from cinetrack.services.watchlist import ItemNotFound, get_item

logger = logging.getLogger(__name__)

MAX_TAGS_PER_ITEM = 5
MAX_TAG_LENGTH = 50


class TagLimitExceeded(Exception):
    def __init__(self, current: int, adding: int):
        super().__init__(
            f"At most {MAX_TAGS_PER_ITEM} tags per title. Current: {current}, adding: {adding}"
        )
        self.current = current
        self.adding = adding


def normalize_tag_name(name: str) -> str:
    return (name or "").strip().lower()[:MAX_TAG_LENGTH]


def serialize_tag(tag: Tag) -> Dict:
    return {"id": tag.id, "name": tag.name, "usage_count": tag.usage_count}


def list_user_tags(db: Session, user_id: int) -> List[Tag]:
    return db.query(Tag).filter(Tag.user_id == user_id).order_by(
        Tag.usage_count.desc(), Tag.name.asc()
    ).all()


def item_tags(db: Session, user_id: int, tmdb_id: int, media_type: str) -> List[Tag]:
    item = get_item(db, user_id, tmdb_id, media_type)
    if item is None:
        return []
    return sorted(item.tags, key=lambda t: t.name)


def search_tags(db: Session, user_id: int, query: str, limit: int = 10) -> List[Tag]:
    prefix = normalize_tag_name(query)
    # escape LIKE wildcards typed by the user
    prefix = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return db.query(Tag).filter(
        Tag.user_id == user_id,
        Tag.name.like(f"{prefix}%", escape="\\"),
    ).order_by(Tag.usage_count.desc(), Tag.name.asc()).limit(limit).all()


def add_tags(db: Session, user_id: int, tmdb_id: int, media_type: str, names: Sequence[str]) -> List[Tag]:
    """Attach tags (created on demand) to a tracked title in one transaction."""
    normalized = []
    for name in names:
        n = normalize_tag_name(name)
        if n and n not in normalized:
            normalized.append(n)
    if not normalized:
        return []

    item = get_item(db, user_id, tmdb_id, media_type)
    if item is None:
        raise ItemNotFound(f"{media_type}/{tmdb_id} not in watchlist")

    attached = {t.name for t in item.tags}
    new_names = [n for n in normalized if n not in attached]
    if len(attached) + len(new_names) > MAX_TAGS_PER_ITEM:
        raise TagLimitExceeded(len(attached), len(new_names))

    try:
        added = []
        for name in new_names:
            tag = db.query(Tag).filter(Tag.user_id == user_id, Tag.name == name).first()
            if tag is None:
                tag = Tag(user_id=user_id, name=name, usage_count=0)
                db.add(tag)
            tag.usage_count = (tag.usage_count or 0) + 1
            item.tags.append(tag)
            added.append(tag)
        db.commit()
    except Exception:
        db.rollback()
        raise
    for tag in added:
        db.refresh(tag)
    logger.info(f"Added {len(added)} tags to {media_type}/{tmdb_id} for user {user_id}")
    return added


def remove_tags(db: Session, user_id: int, tmdb_id: int, media_type: str, tag_ids: Sequence[int]) -> int:
    """Detach tags from a title; returns how many were detached."""
    if not tag_ids:
        return 0
    item = get_item(db, user_id, tmdb_id, media_type)
    if item is None:
        raise ItemNotFound(f"{media_type}/{tmdb_id} not in watchlist")

    wanted = {int(t) for t in tag_ids}
    removed = 0
    try:
        for tag in [t for t in item.tags if t.id in wanted]:
            item.tags.remove(tag)
            tag.usage_count = (tag.usage_count or 0) - 1
            removed += 1
        db.flush()
        db.query(Tag).filter(Tag.user_id == user_id, Tag.usage_count <= 0).delete(synchronize_session=False)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return removed


def items_by_tags(db: Session, user_id: int, tag_ids: Sequence[int], status: Optional[str] = None) -> List[WatchListItem]:
    """Items carrying at least one of ``tag_ids``."""
    if not tag_ids:
        return []
    query = db.query(WatchListItem).join(
        watchlist_tags, watchlist_tags.c.watchlist_id == WatchListItem.id,
    ).filter(
        WatchListItem.user_id == user_id,
        watchlist_tags.c.tag_id.in_([int(t) for t in tag_ids]),
    )
    if status:
        query = query.filter(WatchListItem.status == status)
    return query.distinct().order_by(WatchListItem.added_at.desc()).all()
