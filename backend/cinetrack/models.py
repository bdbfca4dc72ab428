"""
models.py

SQLAlchemy models for users, watchlist tracking, tags, invitations and
recommendation telemetry.
"""
from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, DateTime, Date, Float, Text, UniqueConstraint, Index, Table, JSON
from sqlalchemy.orm import declarative_base, relationship
from cinetrack.utils.timezone import utc_now

Base = declarative_base()

# Client-facing status codes; stored verbatim in watchlist.status
STATUS_WANT = "want"
STATUS_WATCHED = "watched"
STATUS_REWATCHED = "rewatched"
STATUS_DROPPED = "dropped"
WATCH_STATUSES = (STATUS_WANT, STATUS_WATCHED, STATUS_REWATCHED, STATUS_DROPPED)
# watched + rewatched count as "seen" everywhere in the stats
SEEN_STATUSES = (STATUS_WATCHED, STATUS_REWATCHED)

MEDIA_TYPES = ("movie", "tv")


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True)
    email = Column(String, unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=False)
    name = Column(String(30), nullable=True)
    birth_date = Column(Date, nullable=True)  # drives adult-content filtering
    agreed_to_terms = Column(Boolean, default=False, nullable=False)
    email_verified_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)


watchlist_tags = Table(
    "watchlist_tags",
    Base.metadata,
    Column("watchlist_id", Integer, ForeignKey("watchlist.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


class WatchListItem(Base):
    __tablename__ = "watchlist"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    tmdb_id = Column(Integer, nullable=False)
    media_type = Column(String(10), nullable=False)  # 'movie' or 'tv'
    title = Column(String, nullable=False, default="")
    vote_average = Column(Float, nullable=True)  # TMDB snapshot at the time of the status change
    status = Column(String(20), nullable=False)
    user_rating = Column(Float, nullable=True)  # 1..10
    weighted_rating = Column(Float, nullable=True)  # derived; supersedes user_rating when present
    note = Column(Text, nullable=True)  # private note, never shared
    watched_date = Column(DateTime(timezone=True), nullable=True)
    watch_count = Column(Integer, default=0, nullable=False)
    recommendation_count = Column(Integer, default=0, nullable=False)
    last_recommended_at = Column(DateTime(timezone=True), nullable=True)
    added_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    tags = relationship("Tag", secondary=watchlist_tags, back_populates="items")

    __table_args__ = (
        UniqueConstraint("user_id", "tmdb_id", "media_type", name="uq_watchlist_user_media"),
    )

    @property
    def effective_rating(self):
        return self.weighted_rating if self.weighted_rating is not None else self.user_rating


class RatingHistory(Base):
    __tablename__ = "rating_history"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    tmdb_id = Column(Integer, nullable=False)
    media_type = Column(String(10), nullable=False)
    rating = Column(Float, nullable=False)
    action_type = Column(String(20), nullable=False)  # initial | rating_change | rewatch
    created_at = Column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        Index("ix_rating_history_lookup", "user_id", "tmdb_id", "media_type"),
    )


class RewatchLog(Base):
    __tablename__ = "rewatch_log"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    tmdb_id = Column(Integer, nullable=False)
    media_type = Column(String(10), nullable=False)
    rating_before = Column(Float, nullable=True)
    rating_after = Column(Float, nullable=True)
    previous_watch_count = Column(Integer, default=0)
    created_at = Column(DateTime(timezone=True), default=utc_now)


class Blacklist(Base):
    __tablename__ = "blacklist"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    tmdb_id = Column(Integer, nullable=False)
    media_type = Column(String(10), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        UniqueConstraint("user_id", "tmdb_id", "media_type", name="uq_blacklist_user_media"),
    )


class Tag(Base):
    __tablename__ = "tags"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(50), nullable=False)
    usage_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    items = relationship("WatchListItem", secondary=watchlist_tags, back_populates="tags")

    __table_args__ = (UniqueConstraint("user_id", "name", name="uq_tags_user_name"),)


class Invitation(Base):
    __tablename__ = "invitations"
    id = Column(Integer, primary_key=True)
    token = Column(String(64), unique=True, nullable=False)
    email = Column(String, nullable=False, index=True)
    created_by_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    used_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)


# --- Recommendation telemetry (append-only sinks) ---

class RecommendationLog(Base):
    __tablename__ = "recommendation_logs"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    tmdb_id = Column(Integer, nullable=False)
    media_type = Column(String(10), nullable=False)
    algorithm = Column(String(50), nullable=False)
    score = Column(Float, nullable=True)
    action = Column(String(20), default="shown")
    context = Column(JSON, nullable=True)
    filters_snapshot = Column(JSON, nullable=True)
    candidate_pool_metrics = Column(JSON, nullable=True)
    shown_at = Column(DateTime(timezone=True), default=utc_now, index=True)


class RecommendationEvent(Base):
    __tablename__ = "recommendation_events"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    parent_log_id = Column(Integer, ForeignKey("recommendation_logs.id", ondelete="SET NULL"), nullable=True)
    event_type = Column(String(50), nullable=False)
    event_data = Column(JSON, nullable=True)
    timestamp = Column(DateTime(timezone=True), default=utc_now)


class IntentSignal(Base):
    __tablename__ = "intent_signals"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    recommendation_log_id = Column(Integer, ForeignKey("recommendation_logs.id", ondelete="SET NULL"), nullable=True)
    signal_type = Column(String(50), nullable=False)
    intensity_score = Column(Float, default=0.5)
    element_context = Column(JSON, nullable=True)
    temporal_context = Column(JSON, nullable=True)
    predicted_intent = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)


class UserSession(Base):
    __tablename__ = "user_sessions"
    id = Column(Integer, primary_key=True)
    session_id = Column(String(100), unique=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    started_at = Column(DateTime(timezone=True), default=utc_now)
    ended_at = Column(DateTime(timezone=True), nullable=True)


class FilterSession(Base):
    __tablename__ = "filter_sessions"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    session_id = Column(String(100), ForeignKey("user_sessions.session_id", ondelete="SET NULL"), nullable=True)
    initial_state = Column(JSON, nullable=True)
    changes_history = Column(JSON, nullable=True)
    result_metrics = Column(JSON, nullable=True)
    abandoned_filters = Column(JSON, nullable=True)
    status = Column(String(20), default="active")
    started_at = Column(DateTime(timezone=True), default=utc_now)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    duration_ms = Column(Integer, nullable=True)


class PredictionLog(Base):
    """Scores produced by an external model, ingested as-is."""
    __tablename__ = "prediction_logs"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    tmdb_id = Column(Integer, nullable=False)
    media_type = Column(String(10), nullable=False)
    predicted_score = Column(Float, nullable=True)
    model_version = Column(String(50), nullable=True)
    features = Column(JSON, nullable=True)
    computed_at = Column(DateTime(timezone=True), default=utc_now)
