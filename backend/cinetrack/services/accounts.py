"""
accounts.py

Signup, login, profile edits, account deletion and invitations.
"""
import logging
import secrets
from datetime import date, timedelta
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from cinetrack.core.config import settings
from cinetrack.core.security import MAX_PASSWORD_BYTES, hash_password, verify_password
from cinetrack.models import (
    Blacklist,
    FilterSession,
    IntentSignal,
    Invitation,
    PredictionLog,
    RatingHistory,
    RecommendationEvent,
    RecommendationLog,
    RewatchLog,
    Tag,
    User,
    UserSession,
    WatchListItem,
    watchlist_tags,
)
from cinetrack.utils.timezone import ensure_utc, format_iso_utc, should_filter_adult, utc_now, years_between

logger = logging.getLogger(__name__)

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 30


class AccountError(Exception):
    """Signup/profile input rejected (400) or conflicting (409)."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class InvitationError(AccountError):
    pass


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def validate_name(name: Optional[str]) -> Optional[str]:
    if name is None:
        return None
    name = name.strip()
    if not name:
        return None
    if len(name) < NAME_MIN_LENGTH or len(name) > NAME_MAX_LENGTH:
        raise AccountError(f"Name must be between {NAME_MIN_LENGTH} and {NAME_MAX_LENGTH} characters")
    return name


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(User.email == normalize_email(email)).first()


def _check_invitation(invitation: Optional[Invitation], email: Optional[str] = None) -> Invitation:
    if invitation is None:
        raise InvitationError("Invitation not found", status_code=404)
    if invitation.used_at is not None:
        raise InvitationError("Invitation already used")
    if ensure_utc(invitation.expires_at) < utc_now():
        raise InvitationError("Invitation expired")
    if email is not None and normalize_email(invitation.email) != normalize_email(email):
        raise InvitationError("Email does not match the invitation")
    return invitation


def signup(
    db: Session,
    email: str,
    password: str,
    birth_date: Optional[date],
    agreed_to_terms: bool,
    name: Optional[str] = None,
    invite_token: Optional[str] = None,
) -> User:
    if not email or not password or not birth_date:
        raise AccountError("Email, password and birth date are required")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise AccountError("Password is too long")
    name = validate_name(name)
    if not agreed_to_terms:
        raise AccountError("You must accept the terms of service")

    email = normalize_email(email)
    invitation = None
    if invite_token:
        invitation = db.query(Invitation).filter(Invitation.token == invite_token).first()
        try:
            _check_invitation(invitation, email)
        except InvitationError as e:
            # signup reports every invitation problem as bad input
            raise InvitationError(e.message, status_code=400)

    if get_user_by_email(db, email) is not None:
        raise AccountError("User with this email already exists", status_code=409)

    try:
        user = User(
            email=email,
            password_hash=hash_password(password),
            name=name,
            birth_date=birth_date,
            agreed_to_terms=True,
            email_verified_at=utc_now() if invitation is not None else None,
        )
        db.add(user)
        db.flush()
        if invitation is not None:
            invitation.used_at = utc_now()
            invitation.used_by_id = user.id
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(user)
    logger.info(f"User created: {user.id} ({user.email})")
    return user


def authenticate(db: Session, email: str, password: str) -> Optional[User]:
    user = get_user_by_email(db, email)
    if user is None or not verify_password(password or "", user.password_hash):
        return None
    return user


def serialize_user(user: User) -> Dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "birth_date": user.birth_date.isoformat() if user.birth_date else None,
        "age": years_between(user.birth_date) if user.birth_date else None,
        "adult_content_filtered": should_filter_adult(user.birth_date),
        "agreed_to_terms": user.agreed_to_terms,
        "email_verified_at": format_iso_utc(user.email_verified_at),
        "created_at": format_iso_utc(user.created_at),
    }


def update_profile(db: Session, user: User, name: Optional[str] = None, birth_date: Optional[date] = None) -> User:
    if name is not None:
        user.name = validate_name(name)
    if birth_date is not None:
        if birth_date > utc_now().date():
            raise AccountError("Birth date cannot be in the future")
        user.birth_date = birth_date
    db.commit()
    db.refresh(user)
    return user


def delete_account(db: Session, user_id: int) -> None:
    """Remove the user and everything they own in one transaction."""
    try:
        item_ids = db.query(WatchListItem.id).filter(WatchListItem.user_id == user_id)
        db.execute(watchlist_tags.delete().where(watchlist_tags.c.watchlist_id.in_(item_ids.scalar_subquery())))
        for model in (RecommendationEvent, IntentSignal, FilterSession, PredictionLog,
                      RecommendationLog, UserSession, RatingHistory, RewatchLog,
                      Blacklist, WatchListItem, Tag):
            db.query(model).filter(model.user_id == user_id).delete(synchronize_session=False)
        db.query(Invitation).filter(Invitation.used_by_id == user_id).update(
            {Invitation.used_by_id: None}, synchronize_session=False
        )
        db.query(Invitation).filter(Invitation.created_by_id == user_id).delete(synchronize_session=False)
        db.query(User).filter(User.id == user_id).delete(synchronize_session=False)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info(f"Deleted account {user_id}")


def generate_invite_token() -> str:
    return secrets.token_hex(32)


def invite_link(token: str) -> str:
    return f"{settings.app_url.rstrip('/')}/invite/{token}"


def create_invitation(db: Session, creator: User, email: str) -> Invitation:
    email = normalize_email(email)
    if not email:
        raise InvitationError("Email is required")
    if get_user_by_email(db, email) is not None:
        raise InvitationError("User with this email already exists", status_code=409)
    pending = db.query(Invitation).filter(
        Invitation.email == email,
        Invitation.used_at.is_(None),
        Invitation.expires_at > utc_now(),
    ).first()
    if pending is not None:
        raise InvitationError("An invitation for this email is already pending", status_code=409)

    invitation = Invitation(
        token=generate_invite_token(),
        email=email,
        created_by_id=creator.id,
        expires_at=utc_now() + timedelta(days=settings.invite_expiry_days),
    )
    db.add(invitation)
    db.commit()
    db.refresh(invitation)
    logger.info(f"Invitation {invitation.id} created by user {creator.id} for {email}")
    return invitation


def verify_invitation(db: Session, token: str) -> Invitation:
    invitation = db.query(Invitation).filter(Invitation.token == token).first()
    return _check_invitation(invitation)


def get_invitation(db: Session, token: str) -> Invitation:
    invitation = db.query(Invitation).filter(Invitation.token == token).first()
    if invitation is None:
        raise InvitationError("Invitation not found", status_code=404)
    return invitation


def list_invitations(db: Session, creator_id: int) -> List[Invitation]:
    return db.query(Invitation).filter(Invitation.created_by_id == creator_id).order_by(
        Invitation.created_at.desc()
    ).all()


def serialize_invitation(invitation: Invitation, include_link: bool = False) -> Dict:
    data = {
        "id": invitation.id,
        "email": invitation.email,
        "created_at": format_iso_utc(invitation.created_at),
        "expires_at": format_iso_utc(invitation.expires_at),
        "used_at": format_iso_utc(invitation.used_at),
        "is_valid": invitation.used_at is None and ensure_utc(invitation.expires_at) > utc_now(),
    }
    if include_link:
        data["invite_link"] = invite_link(invitation.token)
    return data
