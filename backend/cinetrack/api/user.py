"""
user.py

Profile and per-user statistics endpoints. Aggregations that hit TMDB are
cached per user and dropped whenever the user's lists change.
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session
from typing import Optional
import datetime
import logging

from ..core.database import get_db
from ..core.security import get_current_user
from ..models import User
from ..services import stats as stats_service
from ..services.accounts import AccountError, delete_account, serialize_user, update_profile
from ..services.cache import invalidate_user_cache, with_cache
from ..services.my_movies import list_my_movies
from ..services.rate_limit import rate_limited

router = APIRouter(dependencies=[Depends(rate_limited("user"))])
logger = logging.getLogger(__name__)

STATS_TTL = 300


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    birth_date: Optional[datetime.date] = None


def _split(value: Optional[str]):
    return [v.strip() for v in value.split(",") if v.strip()] if value else None


@router.get("/profile")
async def get_profile(user: User = Depends(get_current_user)):
    return serialize_user(user)


@router.patch("/profile")
async def patch_profile(payload: ProfileUpdate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    try:
        return serialize_user(update_profile(db, user, name=payload.name, birth_date=payload.birth_date))
    except AccountError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete("/account")
async def remove_account(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    user_id = user.id
    try:
        delete_account(db, user_id)
    except Exception as e:
        logger.error(f"Account deletion failed for {user_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to delete account")
    await invalidate_user_cache(user_id)
    return {"success": True}


@router.get("/stats")
async def user_stats(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    try:
        return await with_cache(f"user:{user.id}:stats", lambda: stats_service.profile_stats(db, user.id), STATS_TTL)
    except Exception as e:
        logger.error(f"Error fetching user stats: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch stats")


@router.get("/genres")
async def user_genres(
    statuses: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    status_list = _split(statuses)
    key = f"user:{user.id}:genres:{','.join(stats_service.expand_statuses(status_list) or [])}:{limit}"
    try:
        genres = await with_cache(key, lambda: stats_service.genre_stats(db, user.id, status_list, limit), STATS_TTL)
        return {"genres": genres}
    except Exception as e:
        logger.error(f"Error fetching user genres: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch genres")


@router.get("/tag-usage")
async def user_tag_usage(
    statuses: Optional[str] = Query(None),
    limit: int = Query(10, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return {"tags": stats_service.tag_usage(db, user.id, _split(statuses), limit)}


@router.get("/actors")
async def user_actors(
    limit: int = Query(24, ge=1, le=50),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    key = f"user:{user.id}:actors:{limit}:{offset}"
    try:
        return await with_cache(key, lambda: stats_service.actor_stats(db, user.id, limit, offset), STATS_TTL)
    except Exception as e:
        logger.error(f"Error fetching actor achievements: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch actors")


@router.get("/collections")
async def user_collections(
    limit: int = Query(24, ge=1, le=50),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    key = f"user:{user.id}:collections:{limit}:{offset}"
    try:
        return await with_cache(key, lambda: stats_service.collection_stats(db, user.id, limit, offset), STATS_TTL)
    except Exception as e:
        logger.error(f"Error fetching collection achievements: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch collections")


@router.get("/movies-by-genre")
async def movies_by_genre(
    genre_id: int = Query(...),
    statuses: Optional[str] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        return await stats_service.movies_by_genre(db, user.id, genre_id, limit, offset, _split(statuses))
    except Exception as e:
        logger.error(f"Error fetching movies by genre {genre_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch movies")


@router.get("/movies-by-tag")
async def movies_by_tag(
    tag_id: int = Query(...),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    result = stats_service.movies_by_tag(db, user.id, tag_id, limit, offset)
    if result is None:
        raise HTTPException(status_code=404, detail="Tag not found")
    return result


@router.get("/my-movies")
async def my_movies(
    statuses: Optional[str] = Query(None),
    tags: Optional[str] = Query(None),
    min_rating: Optional[float] = Query(None, ge=0, le=10),
    max_rating: Optional[float] = Query(None, ge=0, le=10),
    sort_by: str = Query("rating"),
    sort_order: str = Query("desc"),
    include_hidden: bool = Query(False),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        tag_ids = [int(t) for t in _split(tags) or []]
    except ValueError:
        raise HTTPException(status_code=400, detail="tags must be integer ids")
    return list_my_movies(
        db, user.id,
        statuses=_split(statuses), tag_ids=tag_ids,
        min_rating=min_rating, max_rating=max_rating,
        sort_by=sort_by, sort_order=sort_order,
        include_hidden=include_hidden, page=page, limit=limit,
    )
