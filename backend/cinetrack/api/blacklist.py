from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import Optional
import logging

from ..core.database import get_db
from ..core.security import get_current_user, get_optional_user
from ..models import User
from ..schemas import MediaRef, MediaType
from ..services import blacklist as blacklist_service
from ..services.cache import invalidate_user_cache
from ..services.rate_limit import rate_limited
from ..utils.timezone import format_iso_utc

router = APIRouter(dependencies=[Depends(rate_limited("user"))])
logger = logging.getLogger(__name__)


@router.get("")
async def check_blacklist(
    tmdb_id: int = Query(..., gt=0),
    media_type: MediaType = Query(...),
    user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    if user is None:
        return {"is_blacklisted": False}
    return {"is_blacklisted": blacklist_service.is_blacklisted(db, user.id, tmdb_id, media_type)}


@router.post("")
async def add_blacklist(
    payload: MediaRef,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        created = blacklist_service.add_to_blacklist(db, user.id, payload.tmdb_id, payload.media_type)
        await invalidate_user_cache(user.id)
        return {"success": True, "created": created}
    except Exception as e:
        db.rollback()
        logger.error(f"Blacklist POST error: {e}")
        raise HTTPException(status_code=500, detail="Internal Server Error")


@router.delete("")
async def remove_blacklist(
    payload: MediaRef,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        removed = blacklist_service.remove_from_blacklist(db, user.id, payload.tmdb_id, payload.media_type)
        await invalidate_user_cache(user.id)
        return {"success": True, "removed": removed}
    except Exception as e:
        db.rollback()
        logger.error(f"Blacklist DELETE error: {e}")
        raise HTTPException(status_code=500, detail="Internal Server Error")


@router.get("/all")
async def list_blacklist(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    rows = blacklist_service.list_blacklist(db, user.id)
    return {
        "items": [
            {"tmdb_id": r.tmdb_id, "media_type": r.media_type, "created_at": format_iso_utc(r.created_at)}
            for r in rows
        ]
    }
