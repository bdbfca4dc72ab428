"""
movies.py

Per-title lookups used by result grids and detail pages: batch status,
community rating, the weighted rating of the caller, and the TMDB title,
collection and person pages annotated with the caller's statuses.
"""
from fastapi import APIRouter, Depends, HTTPException, Path, Query
from sqlalchemy.orm import Session
from typing import Optional
import logging

from ..core.database import get_db
from ..core.security import get_current_user, get_optional_user
from ..models import User
from ..schemas import BatchLookupRequest, MediaType
from ..services import titles
from ..services import watchlist as watchlist_service
from ..services.cache import with_cache
from ..services.rate_limit import rate_limited
from ..services.tmdb_client import TMDBError
from ..services.weighted_rating import calculate_weighted_rating

router = APIRouter()
logger = logging.getLogger(__name__)

WEIGHTED_RATING_TTL = 3600


@router.post("/movies/batch", dependencies=[Depends(rate_limited("watchlist"))])
async def batch_status(
    payload: BatchLookupRequest,
    user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    """Status/rating/blacklist/community rating for many titles at once."""
    if not payload.movies:
        raise HTTPException(status_code=400, detail="Invalid movies array")
    try:
        pairs = [(m.tmdb_id, m.media_type) for m in payload.movies]
        return watchlist_service.batch_lookup(db, user.id if user else None, pairs)
    except Exception as e:
        logger.error(f"Movies batch error: {e}")
        raise HTTPException(status_code=500, detail="Internal Server Error")


@router.get("/ratings/community", dependencies=[Depends(rate_limited("ratings"))])
async def community_rating(
    tmdb_id: int = Query(..., gt=0),
    media_type: MediaType = Query(...),
    user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    key = watchlist_service.media_key(tmdb_id, media_type)
    rating = watchlist_service.community_ratings(db, [(tmdb_id, media_type)]).get(key, {})
    own = None
    if user is not None:
        item = watchlist_service.get_item(db, user.id, tmdb_id, media_type)
        own = item.user_rating if item is not None else None
    return {
        "average_rating": rating.get("average_rating"),
        "rating_count": rating.get("rating_count", 0),
        "user_rating": own,
    }


@router.get("/movie/weighted-rating", dependencies=[Depends(rate_limited("movie-details"))])
async def weighted_rating(
    tmdb_id: int = Query(..., gt=0),
    media_type: MediaType = Query(...),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    async def _compute():
        return calculate_weighted_rating(db, user.id, tmdb_id, media_type)

    try:
        return await with_cache(f"user:{user.id}:weighted:{media_type}:{tmdb_id}", _compute, WEIGHTED_RATING_TTL)
    except Exception as e:
        logger.error(f"Weighted rating failed for {media_type}/{tmdb_id}: {e}")
        raise HTTPException(status_code=500, detail="Internal Server Error")


@router.get("/movie-details", dependencies=[Depends(rate_limited("movie-details"))])
async def movie_details(
    tmdb_id: int = Query(..., gt=0),
    media_type: MediaType = Query(...),
):
    """Genres, runtime and adult flag of one title."""
    try:
        return await titles.media_summary(tmdb_id, media_type)
    except TMDBError as e:
        logger.error(f"Movie details failed for {media_type}/{tmdb_id}: {e}")
        raise HTTPException(status_code=502, detail="Failed to fetch from TMDB")


@router.get("/collection/{collection_id}", dependencies=[Depends(rate_limited("default"))])
async def collection(
    collection_id: int = Path(..., gt=0),
    user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    try:
        return await titles.collection_with_status(db, user, collection_id)
    except TMDBError as e:
        logger.error(f"Collection {collection_id} failed: {e}")
        raise HTTPException(status_code=502, detail="Failed to fetch from TMDB")
    except Exception as e:
        logger.error(f"Collection error: {e}")
        raise HTTPException(status_code=500, detail="Internal Server Error")


@router.get("/person/{person_id}", dependencies=[Depends(rate_limited("default"))])
async def person(
    person_id: int = Path(..., gt=0),
    user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    try:
        return await titles.person_with_filmography(db, user, person_id)
    except TMDBError as e:
        logger.error(f"Person {person_id} failed: {e}")
        raise HTTPException(status_code=502, detail="Failed to fetch from TMDB")
    except Exception as e:
        logger.error(f"Person API error: {e}")
        raise HTTPException(status_code=500, detail="Internal Server Error")
