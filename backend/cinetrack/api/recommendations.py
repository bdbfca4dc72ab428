"""
recommendations.py

Random recommendation from the user's lists, the action feedback loop and
the telemetry sinks (events, intent signals, filter sessions, predictions).
"""
from fastapi import APIRouter, Body, Depends, Header, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session
from typing import Any, Dict, List, Optional
import hmac
import logging

from ..core.config import settings
from ..core.database import get_db
from ..core.security import get_current_user
from ..models import User
from ..schemas import MediaType
from ..services import recommendations as rec_service
from ..services import telemetry
from ..services.cache import invalidate_user_cache
from ..services.rate_limit import rate_limited

router = APIRouter(dependencies=[Depends(rate_limited("recommendations"))])
logger = logging.getLogger(__name__)


class ActionRequest(BaseModel):
    action: str
    additional_data: Optional[Dict[str, Any]] = None


class Prediction(BaseModel):
    tmdb_id: int = Field(..., gt=0)
    media_type: MediaType
    predicted_score: Optional[float] = None
    model_version: Optional[str] = None
    features: Optional[Dict[str, Any]] = None


class PredictionBatch(BaseModel):
    predictions: List[Prediction] = Field(..., min_length=1, max_length=500)


def _split(value: Optional[str]):
    return [v.strip() for v in value.split(",") if v.strip()] if value else None


def _batch(payload: Dict, key: str) -> Optional[List[Dict]]:
    """Batch bodies carry a list under ``key``; anything else is a single entry."""
    items = payload.get(key)
    if items is None:
        return None
    if not isinstance(items, list) or not all(isinstance(i, dict) for i in items):
        raise HTTPException(status_code=400, detail=f"'{key}' must be a list of objects")
    return items


@router.get("/random")
async def random_recommendation(
    types: Optional[str] = Query(None, description="movie,tv,anime"),
    lists: Optional[str] = Query(None, description="want,watched,dropped"),
    min_rating: Optional[float] = Query(None, ge=0, le=10),
    year_from: Optional[int] = Query(None),
    year_to: Optional[int] = Query(None),
    genres: Optional[str] = Query(None),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        genre_list = [int(g) for g in _split(genres) or []]
    except ValueError:
        raise HTTPException(status_code=400, detail="genres must be integer ids")
    try:
        return await rec_service.pick_random(
            db, user,
            types=_split(types), lists=_split(lists),
            min_rating=min_rating, year_from=year_from, year_to=year_to,
            genres=genre_list,
        )
    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"Random recommendation failed for user {user.id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to get recommendation")


@router.post("/{log_id}/action")
async def recommendation_action(
    log_id: int,
    payload: ActionRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        log = rec_service.record_action(db, user.id, log_id, payload.action, payload.additional_data)
    except rec_service.InvalidAction as e:
        raise HTTPException(status_code=400, detail=str(e))
    except rec_service.RecommendationNotFound:
        raise HTTPException(status_code=404, detail="Recommendation not found")
    except Exception as e:
        logger.error(f"Recording action for recommendation {log_id} failed: {e}")
        raise HTTPException(status_code=500, detail="Failed to record action")
    if payload.action in rec_service.ACTION_STATUS:
        await invalidate_user_cache(user.id)
    return {"success": True, "recommendation": rec_service.serialize_log(log)}


@router.get("/{log_id}/action")
async def recommendation_details(log_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    try:
        return rec_service.serialize_log(rec_service.get_log(db, user.id, log_id))
    except rec_service.RecommendationNotFound:
        raise HTTPException(status_code=404, detail="Recommendation not found")


@router.post("/events")
async def track_events(
    payload: Dict[str, Any] = Body(...),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    batch = _batch(payload, "events")
    try:
        if batch is not None:
            return {"success": True, **telemetry.record_events(db, user.id, batch)}
        event = telemetry.record_event(db, user.id, payload)
        return {"success": True, "event_id": event.id}
    except telemetry.TelemetryValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Event tracking failed for user {user.id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to track event")


@router.post("/signals")
async def track_signals(
    payload: Dict[str, Any] = Body(...),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    batch = _batch(payload, "signals")
    try:
        if batch is not None:
            return {"success": True, **telemetry.record_signals(db, user.id, batch)}
        signal = telemetry.record_signal(db, user.id, payload)
        return {"success": True, "signal_id": signal.id}
    except telemetry.TelemetryValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Signal tracking failed for user {user.id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to track signal")


@router.post("/filter-sessions", status_code=201)
async def create_filter_session(
    payload: Dict[str, Any] = Body(...),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        fs = telemetry.create_filter_session(db, user.id, payload)
        return {"success": True, "filter_session": telemetry.serialize_filter_session(fs)}
    except telemetry.TelemetryValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Filter session tracking failed for user {user.id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to track filter session")


@router.get("/filter-sessions")
async def list_filter_sessions(
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    sessions = telemetry.list_filter_sessions(db, user.id, limit)
    return {"filter_sessions": [telemetry.serialize_filter_session(s) for s in sessions]}


@router.post("/predictions")
async def store_predictions(
    payload: PredictionBatch,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        stored = telemetry.record_predictions(db, user.id, [p.model_dump() for p in payload.predictions])
        return {"success": True, "stored": stored}
    except Exception as e:
        db.rollback()
        logger.error(f"Storing predictions failed for user {user.id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to store predictions")


@router.get("/stats")
async def telemetry_stats(
    admin_secret: Optional[str] = Header(None, alias="X-Admin-Secret"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Row counts and retention health of the telemetry tables.

    Totals span all users, so production requires the admin secret.
    """
    if settings.is_production and not hmac.compare_digest(admin_secret or "", settings.cache_clear_secret):
        raise HTTPException(status_code=403, detail="Forbidden")
    try:
        return telemetry.table_stats(db)
    except Exception as e:
        logger.error(f"Telemetry stats failed: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch telemetry stats")
