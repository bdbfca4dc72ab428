from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session
import logging

from ..core.database import get_db
from ..core.security import get_current_user
from ..models import User
from ..services import accounts
from ..utils.timezone import format_iso_utc

router = APIRouter()
logger = logging.getLogger(__name__)


class InvitationCreate(BaseModel):
    email: str


@router.post("", status_code=201)
async def create_invitation(payload: InvitationCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    try:
        invitation = accounts.create_invitation(db, user, payload.email)
        return {"success": True, "invitation": accounts.serialize_invitation(invitation, include_link=True)}
    except accounts.InvitationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        db.rollback()
        logger.error(f"Create invitation error: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("")
async def invitation_lookup(
    token: str = Query(..., min_length=1),
    action: str = Query("verify"),
    db: Session = Depends(get_db),
):
    """``action=verify`` checks usability; ``action=info`` describes the invitation."""
    try:
        if action == "verify":
            invitation = accounts.verify_invitation(db, token)
            return {"valid": True, "email": invitation.email, "expires_at": format_iso_utc(invitation.expires_at)}
        if action == "info":
            invitation = accounts.get_invitation(db, token)
            return accounts.serialize_invitation(invitation)
    except accounts.InvitationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    raise HTTPException(status_code=400, detail="Unknown action")


@router.get("/mine")
async def my_invitations(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    invitations = accounts.list_invitations(db, user.id)
    return {"invitations": [accounts.serialize_invitation(i, include_link=True) for i in invitations]}
