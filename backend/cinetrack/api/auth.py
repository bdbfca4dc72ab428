from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session
from typing import Optional
import datetime
import logging

from ..core.database import get_db
from ..core.security import create_access_token
from ..services.accounts import AccountError, authenticate, serialize_user, signup
from ..services.rate_limit import rate_limited

router = APIRouter(dependencies=[Depends(rate_limited("default"))])
logger = logging.getLogger(__name__)


class SignupRequest(BaseModel):
    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=1)
    birth_date: Optional[datetime.date] = None
    agreed_to_terms: bool = False
    name: Optional[str] = None
    invite_token: Optional[str] = None


class LoginRequest(BaseModel):
    email: str
    password: str


@router.post("/signup", status_code=201)
async def signup_user(payload: SignupRequest, db: Session = Depends(get_db)):
    try:
        user = signup(
            db,
            email=payload.email,
            password=payload.password,
            birth_date=payload.birth_date,
            agreed_to_terms=payload.agreed_to_terms,
            name=payload.name,
            invite_token=payload.invite_token,
        )
        return {"id": user.id}
    except AccountError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Signup failed: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/login")
async def login(payload: LoginRequest, db: Session = Depends(get_db)):
    user = authenticate(db, payload.email, payload.password)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid email or password")
    return {
        "access_token": create_access_token(user.id, user.email),
        "token_type": "bearer",
        "user": serialize_user(user),
    }
