"""
recommendations.py

Random pick from the user's own lists ("what should I watch tonight"),
with a cooldown on recently shown titles, and the feedback loop that records
what the user did with a recommendation.
"""
import logging
import random
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from cinetrack.core.config import settings
from cinetrack.models import (
    RecommendationLog,
    STATUS_DROPPED,
    STATUS_REWATCHED,
    STATUS_WANT,
    STATUS_WATCHED,
    SEEN_STATUSES,
    User,
    WatchListItem,
)
from cinetrack.services import tmdb_client
from cinetrack.services.media_classifier import classify, genre_ids
from cinetrack.services.watchlist import upsert_status
from cinetrack.utils.batching import run_in_batches
from cinetrack.utils.timezone import days_ago, format_iso_utc, should_filter_adult, utc_now

logger = logging.getLogger(__name__)

ALGORITHM = "random_v1"
COOLDOWN_DAYS = 7
CONTENT_TYPES = ("movie", "tv", "anime")
LIST_TYPES = ("want", "watched", "dropped")
ACTIONS = ("skipped", "opened", "watched", "added_to_list")
# action -> watchlist status it implies
ACTION_STATUS = {"watched": STATUS_WATCHED, "added_to_list": STATUS_WANT}


class RecommendationNotFound(Exception):
    pass


class InvalidAction(ValueError):
    pass


def _statuses_for(lists: Sequence[str]) -> List[str]:
    statuses = []
    if "want" in lists:
        statuses.append(STATUS_WANT)
    if "watched" in lists:
        statuses.extend(SEEN_STATUSES)
    if "dropped" in lists:
        statuses.append(STATUS_DROPPED)
    return statuses


def _release_year(details: Optional[Dict]) -> Optional[int]:
    raw = (details or {}).get("release_date") or (details or {}).get("first_air_date") or ""
    try:
        return int(raw.split("-")[0])
    except ValueError:
        return None


def _matches_type(kind: str, types: Sequence[str]) -> bool:
    if kind == "anime":
        return "anime" in types
    # cartoons are listed with their underlying media type
    if kind == "cartoon":
        return True
    return kind in types


async def pick_random(
    db: Session,
    user: User,
    types: Optional[Sequence[str]] = None,
    lists: Optional[Sequence[str]] = None,
    min_rating: Optional[float] = None,
    year_from: Optional[int] = None,
    year_to: Optional[int] = None,
    genres: Optional[Sequence[int]] = None,
) -> Dict[str, Any]:
    types = [t for t in (types or []) if t in CONTENT_TYPES] or list(CONTENT_TYPES)
    lists = [l for l in (lists or []) if l in LIST_TYPES] or ["want"]
    statuses = _statuses_for(lists)

    items = db.query(WatchListItem).filter(
        WatchListItem.user_id == user.id,
        WatchListItem.status.in_(statuses),
    ).all()
    metrics = {"initial_count": len(items)}
    if not items:
        return {"success": False, "message": "Selected lists are empty", "movie": None}

    details = await run_in_batches(
        items,
        lambda i: tmdb_client.fetch_media_details(i.tmdb_id, i.media_type),
        batch_size=5,
        pause=settings.stats_batch_pause,
    )
    filter_adult = should_filter_adult(user.birth_date)

    pool = []
    for item, data in zip(items, details):
        if filter_adult and (data or {}).get("adult"):
            continue
        if _matches_type(classify(data, item.media_type), types):
            pool.append((item, data))
    metrics["after_type_filter"] = len(pool)

    recent = db.query(RecommendationLog.tmdb_id, RecommendationLog.media_type).filter(
        RecommendationLog.user_id == user.id,
        RecommendationLog.shown_at >= days_ago(COOLDOWN_DAYS),
    ).all()
    shown = {(t, m) for t, m in recent}
    pool = [(i, d) for i, d in pool if (i.tmdb_id, i.media_type) not in shown]
    metrics["after_cooldown"] = len(pool)

    if min_rating:
        pool = [(i, d) for i, d in pool if (i.vote_average or (d or {}).get("vote_average") or 0) >= min_rating]
    if year_from or year_to:
        def _in_range(data):
            year = _release_year(data)
            if year is None:
                return True
            return (not year_from or year >= year_from) and (not year_to or year <= year_to)
        pool = [(i, d) for i, d in pool if _in_range(d)]
    if genres:
        wanted = set(genres)
        pool = [(i, d) for i, d in pool if wanted & set(genre_ids(d))]
    metrics["after_additional_filters"] = len(pool)

    if not pool:
        return {"success": False, "message": "No recommendations match the selected filters", "movie": None}

    position = random.randrange(len(pool))
    selected, data = pool[position]
    now = utc_now()
    log = RecommendationLog(
        user_id=user.id,
        tmdb_id=selected.tmdb_id,
        media_type=selected.media_type,
        algorithm=ALGORITHM,
        action="shown",
        context={
            "source": "recommendations_page",
            "position": position,
            "candidates_count": len(pool),
            "user_status": selected.status,
            "hour_of_day": now.hour,
            "day_of_week": now.weekday(),
        },
        filters_snapshot={
            "types": types,
            "lists": lists,
            "min_rating": min_rating,
            "year_from": year_from,
            "year_to": year_to,
            "genres": list(genres or []),
        },
        candidate_pool_metrics=metrics,
    )
    db.add(log)
    selected.recommendation_count = (selected.recommendation_count or 0) + 1
    selected.last_recommended_at = now
    db.commit()
    db.refresh(log)

    return {
        "success": True,
        "log_id": log.id,
        "movie": {
            "id": selected.tmdb_id,
            "media_type": selected.media_type,
            "display_type": classify(data, selected.media_type),
            "title": selected.title or (data or {}).get("title") or (data or {}).get("name"),
            "poster_path": (data or {}).get("poster_path"),
            "overview": (data or {}).get("overview"),
            "vote_average": selected.vote_average if selected.vote_average is not None else (data or {}).get("vote_average"),
            "user_rating": selected.user_rating,
            "user_status": selected.status,
            "recommendation_count": selected.recommendation_count,
        },
    }


def get_log(db: Session, user_id: int, log_id: int) -> RecommendationLog:
    log = db.query(RecommendationLog).filter(
        RecommendationLog.id == log_id,
        RecommendationLog.user_id == user_id,
    ).first()
    if log is None:
        raise RecommendationNotFound(f"Recommendation {log_id} not found")
    return log


def serialize_log(log: RecommendationLog) -> Dict:
    return {
        "id": log.id,
        "tmdb_id": log.tmdb_id,
        "media_type": log.media_type,
        "algorithm": log.algorithm,
        "score": log.score,
        "action": log.action,
        "shown_at": format_iso_utc(log.shown_at),
        "context": log.context,
    }


def record_action(db: Session, user_id: int, log_id: int, action: str,
                  additional_data: Optional[Dict] = None) -> RecommendationLog:
    """Store the user's reaction and, where it implies one, the watchlist status.

    Both writes share one transaction.
    """
    if action not in ACTIONS:
        raise InvalidAction(f"Invalid action: {action}")
    log = get_log(db, user_id, log_id)
    try:
        context = dict(log.context or {})
        context["action_taken_at"] = utc_now().isoformat()
        context["additional_data"] = additional_data
        log.action = action
        log.context = context
        status = ACTION_STATUS.get(action)
        if status is not None:
            existing = db.query(WatchListItem).filter(
                WatchListItem.user_id == user_id,
                WatchListItem.tmdb_id == log.tmdb_id,
                WatchListItem.media_type == log.media_type,
            ).first()
            if status == STATUS_WATCHED and existing is not None and existing.status == STATUS_REWATCHED:
                status = STATUS_REWATCHED
            upsert_status(
                db, user_id, log.tmdb_id, log.media_type, status,
                title=existing.title if existing is not None else "",
                vote_average=existing.vote_average if existing is not None else None,
                user_rating=existing.user_rating if existing is not None else None,
                watched_date=utc_now() if status in (STATUS_WATCHED, STATUS_REWATCHED) else (existing.watched_date if existing is not None else None),
                commit=False,
            )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(log)
    logger.info(f"Recommendation {log_id} -> {action} (user {user_id})")
    return log
