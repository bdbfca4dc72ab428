"""
tags.py

User tags: list, autocomplete, attach/detach on a tracked title, and
listing titles by tag.
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import Optional
import logging

from ..core.database import get_db
from ..core.security import get_current_user
from ..models import User
from ..schemas import MediaType, TagIds, TagNames
from ..services import tags as tag_service
from ..services.cache import invalidate_user_cache
from ..services.stats import serialize_item
from ..services.watchlist import ItemNotFound

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("")
async def list_tags(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"tags": [tag_service.serialize_tag(t) for t in tag_service.list_user_tags(db, user.id)]}


@router.get("/search")
async def search_tags(
    q: str = Query("", max_length=50),
    limit: int = Query(10, ge=1, le=50),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return {"tags": [tag_service.serialize_tag(t) for t in tag_service.search_tags(db, user.id, q, limit)]}


@router.get("/item")
async def get_item_tags(
    tmdb_id: int = Query(..., gt=0),
    media_type: MediaType = Query(...),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    tags = tag_service.item_tags(db, user.id, tmdb_id, media_type)
    return {"tags": [tag_service.serialize_tag(t) for t in tags]}


@router.post("/item")
async def add_item_tags(
    payload: TagNames,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        added = tag_service.add_tags(db, user.id, payload.tmdb_id, payload.media_type, payload.tags)
        await invalidate_user_cache(user.id)
        return {"success": True, "tags": [tag_service.serialize_tag(t) for t in added]}
    except ItemNotFound:
        raise HTTPException(status_code=404, detail="Movie not found in watchlist")
    except tag_service.TagLimitExceeded as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error adding tags: {e}")
        raise HTTPException(status_code=500, detail="Failed to add tags")


@router.delete("/item")
async def remove_item_tags(
    payload: TagIds,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        removed = tag_service.remove_tags(db, user.id, payload.tmdb_id, payload.media_type, payload.tag_ids)
        await invalidate_user_cache(user.id)
        return {"success": True, "removed": removed}
    except ItemNotFound:
        raise HTTPException(status_code=404, detail="Movie not found in watchlist")
    except Exception as e:
        logger.error(f"Error removing tags: {e}")
        raise HTTPException(status_code=500, detail="Failed to remove tags")


@router.get("/items")
async def items_by_tags(
    tag_ids: str = Query(..., description="Comma separated tag ids"),
    status: Optional[str] = Query(None),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        ids = [int(t) for t in tag_ids.split(",") if t.strip()]
    except ValueError:
        raise HTTPException(status_code=400, detail="tag_ids must be integers")
    items = tag_service.items_by_tags(db, user.id, ids, status)
    return {"movies": [serialize_item(i) for i in items]}
