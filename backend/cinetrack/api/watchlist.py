"""
watchlist.py

Status of a single title for the current user: read, set (upsert), rate,
rewatch and remove. Every write drops the user's cached statistics.
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import Optional
import logging

from ..core.database import get_db
from ..core.security import get_current_user, get_optional_user
from ..models import User
from ..schemas import MediaRef, MediaType, NoteUpdate, WatchlistUpdate
from ..services import watchlist as watchlist_service
from ..services.cache import invalidate_user_cache
from ..services.rate_limit import rate_limited

router = APIRouter(dependencies=[Depends(rate_limited("watchlist"))])
logger = logging.getLogger(__name__)


@router.get("")
async def get_watchlist_status(
    tmdb_id: int = Query(..., gt=0),
    media_type: MediaType = Query(...),
    user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    """Status, rating and watch count of one title; anonymous callers get "not tracked"."""
    if user is None:
        return watchlist_service.serialize_status(None)
    try:
        return watchlist_service.get_status(db, user.id, tmdb_id, media_type)
    except Exception as e:
        logger.error(f"Error reading watchlist status: {e}")
        raise HTTPException(status_code=500, detail="Internal Server Error")


@router.post("")
async def set_watchlist_status(
    payload: WatchlistUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        if payload.is_rating_only:
            item = watchlist_service.update_rating(
                db, user.id, payload.tmdb_id, payload.media_type, payload.user_rating,
                title=payload.title or None, vote_average=payload.vote_average,
            )
        elif payload.is_rewatch:
            if not payload.title:
                raise HTTPException(status_code=400, detail="Missing required fields")
            item = watchlist_service.record_rewatch(
                db, user.id, payload.tmdb_id, payload.media_type, payload.title,
                vote_average=payload.vote_average, user_rating=payload.user_rating,
                watched_date=payload.watched_date,
            )
        else:
            if payload.status is not None and not payload.title:
                raise HTTPException(status_code=400, detail="Missing required fields")
            item = watchlist_service.upsert_status(
                db, user.id, payload.tmdb_id, payload.media_type, payload.status,
                title=payload.title, vote_average=payload.vote_average,
                user_rating=payload.user_rating, watched_date=payload.watched_date,
            )
        await invalidate_user_cache(user.id)
        return {"success": True, "record": watchlist_service.serialize_status(item)}
    except HTTPException:
        raise
    except watchlist_service.ItemNotFound:
        raise HTTPException(status_code=404, detail="Movie not found in watchlist")
    except Exception as e:
        db.rollback()
        logger.error(f"Error updating watchlist: {e}")
        raise HTTPException(status_code=500, detail="Internal Server Error")


@router.delete("")
async def remove_from_watchlist(
    payload: MediaRef,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        removed = watchlist_service.remove_item(db, user.id, payload.tmdb_id, payload.media_type)
        await invalidate_user_cache(user.id)
        return {"success": True, "removed": removed}
    except Exception as e:
        db.rollback()
        logger.error(f"Error removing from watchlist: {e}")
        raise HTTPException(status_code=500, detail="Internal Server Error")


@router.get("/note")
async def get_note(
    tmdb_id: int = Query(..., gt=0),
    media_type: MediaType = Query(...),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return {"note": watchlist_service.get_note(db, user.id, tmdb_id, media_type)}


@router.put("/note")
async def update_note(
    payload: NoteUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        watchlist_service.update_note(db, user.id, payload.tmdb_id, payload.media_type, payload.note)
        return {"success": True}
    except watchlist_service.ItemNotFound:
        raise HTTPException(status_code=404, detail="Movie not found in watchlist")
