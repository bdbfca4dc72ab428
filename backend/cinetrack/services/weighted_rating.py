"""
weighted_rating.py

Weighted user rating computed from a title's rating history. Early ratings
and explicit changes weigh more than later rewatches.
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from cinetrack.models import RatingHistory, WatchListItem

logger = logging.getLogger(__name__)


def weight_for(index: int, action_type: str) -> float:
    """Weight of the ``index``-th history entry (0-based, oldest first)."""
    if action_type == "initial":
        return 1.0
    if action_type == "rating_change":
        return 0.9
    if action_type == "rewatch":
        return max(0.3, 1.0 - index * 0.2)
    return 0.5


def effective_rating(weighted_rating: Optional[float], user_rating: Optional[float]) -> Optional[float]:
    return weighted_rating if weighted_rating is not None else user_rating


def calculate_weighted_rating(db: Session, user_id: int, tmdb_id: int, media_type: str) -> Dict[str, Any]:
    item = db.query(WatchListItem).filter(
        WatchListItem.user_id == user_id,
        WatchListItem.tmdb_id == tmdb_id,
        WatchListItem.media_type == media_type,
    ).first()

    if item is None or not item.user_rating:
        return {
            "weighted_rating": None,
            "total_reviews": 0,
            "details": {"error": "No rating found", "has_record": item is not None},
        }

    history = db.query(RatingHistory).filter(
        RatingHistory.user_id == user_id,
        RatingHistory.tmdb_id == tmdb_id,
        RatingHistory.media_type == media_type,
    ).order_by(RatingHistory.created_at.asc(), RatingHistory.id.asc()).all()

    if not history:
        return {
            "weighted_rating": item.user_rating,
            "total_reviews": 1,
            "details": {"method": "no_history", "final_rating": item.user_rating},
        }

    weighted_sum = 0.0
    total_weight = 0.0
    steps = []
    for index, entry in enumerate(history):
        weight = weight_for(index, entry.action_type)
        weighted_sum += entry.rating * weight
        total_weight += weight
        steps.append({
            "index": index,
            "rating": entry.rating,
            "action_type": entry.action_type,
            "weight": weight,
        })

    weighted = round(weighted_sum / total_weight, 1)
    return {
        "weighted_rating": weighted,
        "total_reviews": len(history),
        "details": {
            "method": "weighted_average",
            "weighted_sum": weighted_sum,
            "total_weight": total_weight,
            "steps": steps,
        },
    }


def update_weighted_rating(db: Session, item: WatchListItem) -> Optional[float]:
    """Recompute and store ``item.weighted_rating``; caller commits."""
    result = calculate_weighted_rating(db, item.user_id, item.tmdb_id, item.media_type)
    item.weighted_rating = result["weighted_rating"]
    return item.weighted_rating
