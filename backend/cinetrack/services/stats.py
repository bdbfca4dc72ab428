"""
stats.py

Per-user aggregate statistics: status counts, content-type breakdown,
genres, favourite actors, collection progress, tag usage and the drill-down
listings behind them.

Counts come straight from the database. Anything that needs TMDB data is
fetched through the bounded batch runner; a failed lookup degrades that one
title (stored media_type, no genres) instead of failing the aggregation.
"""
import logging
import math
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session

from cinetrack.core.config import settings
from cinetrack.models import (
    Blacklist,
    SEEN_STATUSES,
    STATUS_DROPPED,
    STATUS_WANT,
    Tag,
    WatchListItem,
    watchlist_tags,
)
from cinetrack.services import tmdb_client
from cinetrack.services.media_classifier import (
    classify,
    genre_ids,
    genre_name,
    is_animation,
    type_breakdown,
)
from cinetrack.utils.batching import run_in_batches
from cinetrack.utils.timezone import format_iso_utc

logger = logging.getLogger(__name__)

GENRE_BATCH_SIZE = 3
ACTORS_PER_TITLE = 5


def expand_statuses(statuses: Optional[Sequence[str]]) -> Optional[List[str]]:
    """Status filter; asking for watched or rewatched means both."""
    if not statuses:
        return None
    wanted = {s.strip().lower() for s in statuses if s and s.strip()}
    if wanted & set(SEEN_STATUSES):
        wanted |= set(SEEN_STATUSES)
    return sorted(wanted) or None


def _rating_of(item: WatchListItem) -> Optional[float]:
    return item.effective_rating


def _avg(values: List[float]) -> Optional[float]:
    if not values:
        return None
    return round(sum(values) / len(values), 1)


async def _details_for(items: Sequence[WatchListItem], batch_size: int) -> List[Optional[Dict]]:
    async def _fetch(item):
        return await tmdb_client.fetch_media_details(item.tmdb_id, item.media_type)

    return await run_in_batches(items, _fetch, batch_size=batch_size, pause=settings.stats_batch_pause)


def status_counts(db: Session, user_id: int) -> Dict[str, int]:
    rows = db.query(WatchListItem.status, func.count(WatchListItem.id)).filter(
        WatchListItem.user_id == user_id,
    ).group_by(WatchListItem.status).all()
    by_status = {status: count for status, count in rows}
    watched = sum(by_status.get(s, 0) for s in SEEN_STATUSES)
    want = by_status.get(STATUS_WANT, 0)
    dropped = by_status.get(STATUS_DROPPED, 0)
    hidden = db.query(func.count(Blacklist.id)).filter(Blacklist.user_id == user_id).scalar() or 0
    return {
        "watched": watched,
        "want_to_watch": want,
        "dropped": dropped,
        "hidden": hidden,
        "total_for_percentage": watched + want + dropped,
    }


def average_rating(db: Session, user_id: int) -> Dict[str, Any]:
    """Mean effective rating (weighted if present, else user rating)."""
    effective = func.coalesce(WatchListItem.weighted_rating, WatchListItem.user_rating)
    avg, count = db.query(func.avg(effective), func.count(effective)).filter(
        WatchListItem.user_id == user_id,
        effective.isnot(None),
    ).one()
    return {
        "average_rating": round(float(avg), 1) if avg is not None else None,
        "rated_count": int(count or 0),
    }


async def profile_stats(db: Session, user_id: int) -> Dict[str, Any]:
    totals = status_counts(db, user_id)
    items = db.query(WatchListItem).filter(WatchListItem.user_id == user_id).all()
    details = await _details_for(items, settings.stats_batch_size)
    breakdown = type_breakdown(zip(details, [i.media_type for i in items]))
    rating = average_rating(db, user_id)
    return {
        "total": totals,
        "type_breakdown": breakdown,
        "average_rating": rating["average_rating"],
        "rated_count": rating["rated_count"],
    }


async def genre_stats(db: Session, user_id: int, statuses: Optional[Sequence[str]] = None, limit: int = 50) -> List[Dict]:
    query = db.query(WatchListItem).filter(WatchListItem.user_id == user_id)
    wanted = expand_statuses(statuses)
    if wanted:
        query = query.filter(WatchListItem.status.in_(wanted))
    items = query.order_by(WatchListItem.added_at.desc()).limit(limit).all()
    if not items:
        return []

    details = await _details_for(items, GENRE_BATCH_SIZE)
    counts: Dict[int, int] = {}
    names: Dict[int, str] = {}
    for data in details:
        if not data:
            continue
        for genre in data.get("genres") or []:
            gid = genre.get("id")
            if gid is None:
                continue
            counts[gid] = counts.get(gid, 0) + 1
            names[gid] = genre.get("name")

    genres = [{"id": gid, "name": genre_name(gid, names.get(gid)), "count": count} for gid, count in counts.items()]
    genres.sort(key=lambda g: -g["count"])
    return genres


def _rating_sort_key(entry: Dict):
    avg = entry.get("average_rating")
    # rated entries first, highest rating first
    return (avg is None, -(avg or 0), -entry.get("progress_percent", 0), entry.get("name") or "")


async def actor_stats(db: Session, user_id: int, limit: int = 24, offset: int = 0) -> Dict[str, Any]:
    """Actors from the top billed cast of watched live-action titles."""
    items = db.query(WatchListItem).filter(
        WatchListItem.user_id == user_id,
        WatchListItem.status.in_(SEEN_STATUSES),
    ).all()
    if not items:
        return {"actors": [], "total": 0, "has_more": False}

    async def _credits(item):
        details = await tmdb_client.fetch_media_details(item.tmdb_id, item.media_type)
        if details and is_animation(details):
            return None
        return await tmdb_client.fetch_credits(item.tmdb_id, item.media_type)

    credits_list = await run_in_batches(items, _credits, batch_size=settings.stats_batch_size,
                                        pause=settings.stats_batch_pause)

    actors: Dict[int, Dict] = {}
    for item, credits in zip(items, credits_list):
        if not credits:
            continue
        for cast in (credits.get("cast") or [])[:ACTORS_PER_TITLE]:
            entry = actors.setdefault(cast["id"], {
                "id": cast["id"],
                "name": cast.get("name"),
                "profile_path": cast.get("profile_path"),
                "watched": set(),
                "ratings": [],
            })
            entry["watched"].add(f"{item.media_type}-{item.tmdb_id}")
            rating = _rating_of(item)
            if rating is not None:
                entry["ratings"].append(rating)

    ranked = sorted(actors.values(), key=lambda a: -len(a["watched"]))
    candidates = ranked[:offset + limit]

    async def _filmography(actor):
        credits = await tmdb_client.fetch_person_credits(actor["id"])
        if not credits:
            return 0
        return len([c for c in credits.get("cast") or [] if not is_animation(c)])

    totals = await run_in_batches(candidates, _filmography, batch_size=settings.stats_batch_size,
                                  pause=settings.stats_batch_pause)

    result = []
    for actor, total in zip(candidates, totals):
        watched = len(actor["watched"])
        total = total or 0
        result.append({
            "id": actor["id"],
            "name": actor["name"],
            "profile_path": actor["profile_path"],
            "watched_movies": watched,
            "total_movies": total,
            "progress_percent": round(watched / total * 100) if total else 0,
            "average_rating": _avg(actor["ratings"]),
        })
    result.sort(key=_rating_sort_key)
    page = result[offset:offset + limit]
    return {"actors": page, "total": len(actors), "has_more": offset + limit < len(actors)}


def collection_score(average: Optional[float], watched: int, progress: int) -> float:
    score = (average or 0) + math.log10(max(1, watched)) * 0.05 + (progress / 100) * 0.15
    return max(0.0, min(10.0, score))


async def collection_stats(db: Session, user_id: int, limit: int = 24, offset: int = 0) -> Dict[str, Any]:
    items = db.query(WatchListItem).filter(
        WatchListItem.user_id == user_id,
        WatchListItem.status.in_(SEEN_STATUSES),
        WatchListItem.media_type == "movie",
    ).all()
    if not items:
        return {"collections": [], "total": 0, "has_more": False}

    details = await _details_for(items, settings.stats_batch_size)
    collections: Dict[int, Dict] = {}
    for item, data in zip(items, details):
        belongs = (data or {}).get("belongs_to_collection")
        if not belongs:
            continue
        entry = collections.setdefault(belongs["id"], {
            "id": belongs["id"],
            "name": belongs.get("name") or "",
            "poster_path": belongs.get("poster_path"),
            "watched": set(),
            "ratings": [],
        })
        entry["watched"].add(item.tmdb_id)
        rating = _rating_of(item)
        if rating is not None:
            entry["ratings"].append(rating)

    entries = list(collections.values())
    parts = await run_in_batches(entries, lambda c: tmdb_client.fetch_collection(c["id"]),
                                 batch_size=settings.stats_batch_size, pause=settings.stats_batch_pause)

    result = []
    for entry, collection in zip(entries, parts):
        total = len((collection or {}).get("parts") or [])
        watched = len(entry["watched"])
        progress = round(watched / total * 100) if total else 0
        average = _avg(entry["ratings"])
        result.append({
            "id": entry["id"],
            "name": entry["name"],
            "poster_path": entry["poster_path"],
            "total_movies": total,
            "watched_movies": watched,
            "progress_percent": progress,
            "average_rating": average,
            "score": round(collection_score(average, watched, progress), 3),
        })
    result.sort(key=lambda c: (-c["score"],) + _rating_sort_key(c))
    return {
        "collections": result[offset:offset + limit],
        "total": len(result),
        "has_more": offset + limit < len(result),
    }


def tag_usage(db: Session, user_id: int, statuses: Optional[Sequence[str]] = None, limit: int = 10) -> List[Dict]:
    """Tags with the number of (optionally status-filtered) items carrying them."""
    count = func.count(WatchListItem.id)
    query = db.query(Tag.id, Tag.name, count).join(
        watchlist_tags, watchlist_tags.c.tag_id == Tag.id,
    ).join(
        WatchListItem, WatchListItem.id == watchlist_tags.c.watchlist_id,
    ).filter(Tag.user_id == user_id)
    wanted = expand_statuses(statuses)
    if wanted:
        query = query.filter(WatchListItem.status.in_(wanted))
    rows = query.group_by(Tag.id, Tag.name).order_by(count.desc(), Tag.name.asc()).limit(limit).all()
    return [{"id": tag_id, "name": name, "count": n} for tag_id, name, n in rows if n > 0]


def serialize_item(item: WatchListItem, extra: Optional[Dict] = None) -> Dict[str, Any]:
    data = {
        "id": item.id,
        "tmdb_id": item.tmdb_id,
        "media_type": item.media_type,
        "title": item.title,
        "vote_average": item.vote_average,
        "status": item.status,
        "user_rating": item.user_rating,
        "weighted_rating": item.weighted_rating,
        "effective_rating": item.effective_rating,
        "watched_date": format_iso_utc(item.watched_date),
        "watch_count": item.watch_count or 0,
        "added_at": format_iso_utc(item.added_at),
        "tags": sorted(t.name for t in item.tags),
    }
    if extra:
        data.update(extra)
    return data


async def movies_by_genre(db: Session, user_id: int, genre_id: int, limit: int = 20, offset: int = 0,
                          statuses: Optional[Sequence[str]] = None) -> Dict[str, Any]:
    wanted = expand_statuses(statuses) or list(SEEN_STATUSES)
    items = db.query(WatchListItem).filter(
        WatchListItem.user_id == user_id,
        WatchListItem.status.in_(wanted),
    ).order_by(WatchListItem.added_at.desc()).all()

    details = await _details_for(items, settings.stats_batch_size)
    matched = [
        serialize_item(item, {"content_type": classify(data, item.media_type)})
        for item, data in zip(items, details)
        if genre_id in genre_ids(data)
    ]
    return {
        "movies": matched[offset:offset + limit],
        "total": len(matched),
        "has_more": offset + limit < len(matched),
    }


def movies_by_tag(db: Session, user_id: int, tag_id: int, limit: int = 20, offset: int = 0) -> Optional[Dict[str, Any]]:
    tag = db.query(Tag).filter(Tag.id == tag_id, Tag.user_id == user_id).first()
    if tag is None:
        return None
    query = db.query(WatchListItem).join(
        watchlist_tags, watchlist_tags.c.watchlist_id == WatchListItem.id,
    ).filter(
        WatchListItem.user_id == user_id,
        watchlist_tags.c.tag_id == tag_id,
    )
    total = query.count()
    items = query.order_by(WatchListItem.added_at.desc()).offset(offset).limit(limit).all()
    return {
        "tag": {"id": tag.id, "name": tag.name},
        "movies": [serialize_item(i) for i in items],
        "total": total,
        "has_more": offset + limit < total,
    }
