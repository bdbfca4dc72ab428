"""
search.py - TMDB search proxy (movies and TV only)
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional
import logging

from ..core.security import get_optional_user
from ..models import User
from ..services import tmdb_client
from ..services.rate_limit import rate_limited
from ..utils.timezone import should_filter_adult

logger = logging.getLogger(__name__)
router = APIRouter()

MAX_RESULTS = 30


@router.get("/search", dependencies=[Depends(rate_limited("search"))])
async def search(
    q: str = Query(..., min_length=1, description="Search query"),
    page: int = Query(1, ge=1, le=500),
    user: Optional[User] = Depends(get_optional_user),
):
    """Adult titles are hidden for minors and for users without a known age."""
    include_adult = not should_filter_adult(user.birth_date if user is not None else None)
    try:
        results = await tmdb_client.search_multi(q, page=page, include_adult=include_adult, limit=MAX_RESULTS)
        return {"results": results}
    except tmdb_client.TMDBError as e:
        logger.error(f"Search failed for '{q}': {e}")
        raise HTTPException(status_code=502, detail="Upstream search failed")
