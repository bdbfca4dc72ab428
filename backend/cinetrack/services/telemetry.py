"""
telemetry.py

Append-only recommendation telemetry: interaction events, intent signals,
user and filter sessions, externally computed prediction scores, plus
retention statistics and cleanup.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from cinetrack.models import (
    FilterSession,
    IntentSignal,
    PredictionLog,
    RecommendationEvent,
    RecommendationLog,
    UserSession,
)
from cinetrack.utils.timezone import age_in_days, days_ago, ensure_utc, format_iso_utc, utc_now

logger = logging.getLogger(__name__)

EVENT_TYPES = (
    "filter_change",
    "action_click",
    "hover_start",
    "hover_end",
    "page_view",
    "scroll_depth",
    "session_start",
    "session_end",
)

SIGNAL_TYPES = (
    "hover_start",
    "hover_end",
    "hover_duration_threshold",
    "scroll_pause",
    "element_visible",
    "interaction_pattern",
    "temporal_pattern",
)

FILTER_SESSION_OUTCOMES = ("success", "partial", "abandoned", "error")

# table -> (model, timestamp column, retention days)
RETENTION_POLICY: Dict[str, Tuple[Any, str, int]] = {
    "recommendation_events": (RecommendationEvent, "timestamp", 90),
    "intent_signals": (IntentSignal, "created_at", 30),
    "user_sessions": (UserSession, "started_at", 60),
    "filter_sessions": (FilterSession, "started_at", 60),
    "recommendation_logs": (RecommendationLog, "shown_at", 365),
    "prediction_logs": (PredictionLog, "computed_at", 90),
}
CRITICAL_FACTOR = 1.5


class TelemetryValidationError(ValueError):
    pass


def _owned_log_id(db: Session, user_id: int, log_id: Optional[int]) -> Optional[int]:
    """Keep a recommendation log reference only when it belongs to the user."""
    if log_id is None:
        return None
    exists = db.query(RecommendationLog.id).filter(
        RecommendationLog.id == log_id,
        RecommendationLog.user_id == user_id,
    ).first()
    return log_id if exists else None


def _track_session(db: Session, user_id: int, event_type: str, data: Optional[Dict]) -> None:
    session_id = (data or {}).get("session_id")
    if not session_id:
        return
    session = db.query(UserSession).filter(UserSession.session_id == session_id).first()
    if event_type == "session_start" and session is None:
        db.add(UserSession(session_id=session_id, user_id=user_id))
        # autoflush is off; later events in the same batch must see this row
        db.flush()
    elif event_type == "session_end" and session is not None and session.user_id == user_id:
        session.ended_at = utc_now()


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str) and value:
        try:
            return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            raise TelemetryValidationError(f"Invalid timestamp: {value}")
    if value is not None and value != "":
        raise TelemetryValidationError(f"Invalid timestamp: {value}")
    return utc_now()


def _build_event(db: Session, user_id: int, payload: Dict) -> RecommendationEvent:
    event_type = payload.get("event_type")
    if event_type not in EVENT_TYPES:
        raise TelemetryValidationError(f"Invalid event type. Must be one of: {', '.join(EVENT_TYPES)}")
    event_data = payload.get("event_data")
    if event_data is not None and not isinstance(event_data, dict):
        raise TelemetryValidationError("event_data must be an object")
    timestamp = _parse_timestamp(payload.get("timestamp"))
    event = RecommendationEvent(
        user_id=user_id,
        parent_log_id=_owned_log_id(db, user_id, payload.get("recommendation_log_id")),
        event_type=event_type,
        event_data=event_data,
        timestamp=timestamp,
    )
    # sessions are touched only once the event itself is known to be valid
    if event_type in ("session_start", "session_end"):
        _track_session(db, user_id, event_type, event_data)
    return event


def record_event(db: Session, user_id: int, payload: Dict) -> RecommendationEvent:
    event = _build_event(db, user_id, payload)
    db.add(event)
    db.commit()
    db.refresh(event)
    return event


def record_events(db: Session, user_id: int, batch: List[Dict]) -> Dict[str, int]:
    """Store a batch in one transaction; invalid entries are skipped and counted."""
    stored = 0
    rejected = 0
    try:
        for payload in batch:
            try:
                db.add(_build_event(db, user_id, payload))
                stored += 1
            except TelemetryValidationError:
                rejected += 1
        db.commit()
    except Exception:
        db.rollback()
        raise
    if rejected:
        logger.warning(f"Rejected {rejected} invalid events from user {user_id}")
    return {"stored": stored, "rejected": rejected}


def _build_signal(db: Session, user_id: int, payload: Dict) -> IntentSignal:
    signal_type = payload.get("signal_type")
    if signal_type not in SIGNAL_TYPES:
        raise TelemetryValidationError(f"Invalid signal type. Must be one of: {', '.join(SIGNAL_TYPES)}")
    intensity = payload.get("intensity_score")
    if intensity is None:
        intensity = 0.5
    else:
        try:
            intensity = max(0.0, min(1.0, float(intensity)))
        except (TypeError, ValueError):
            raise TelemetryValidationError(f"Invalid intensity_score: {intensity}")
    return IntentSignal(
        user_id=user_id,
        recommendation_log_id=_owned_log_id(db, user_id, payload.get("recommendation_log_id")),
        signal_type=signal_type,
        intensity_score=intensity,
        element_context=payload.get("element_context"),
        temporal_context=payload.get("temporal_context"),
        predicted_intent=payload.get("predicted_intent"),
    )


def record_signal(db: Session, user_id: int, payload: Dict) -> IntentSignal:
    signal = _build_signal(db, user_id, payload)
    db.add(signal)
    db.commit()
    db.refresh(signal)
    return signal


def record_signals(db: Session, user_id: int, batch: List[Dict]) -> Dict[str, int]:
    stored = 0
    rejected = 0
    try:
        for payload in batch:
            try:
                db.add(_build_signal(db, user_id, payload))
                stored += 1
            except TelemetryValidationError:
                rejected += 1
        db.commit()
    except Exception:
        db.rollback()
        raise
    return {"stored": stored, "rejected": rejected}


def create_filter_session(db: Session, user_id: int, payload: Dict) -> FilterSession:
    outcome = payload.get("outcome")
    if outcome is not None and outcome not in FILTER_SESSION_OUTCOMES:
        raise TelemetryValidationError(f"Invalid outcome. Must be one of: {', '.join(FILTER_SESSION_OUTCOMES)}")

    session_id = payload.get("session_id")
    if session_id:
        linked = db.query(UserSession.id).filter(
            UserSession.session_id == session_id,
            UserSession.user_id == user_id,
        ).first()
        if linked is None:
            session_id = None

    result_metrics = dict(payload.get("result_metrics") or {})
    if outcome is not None:
        result_metrics["outcome"] = outcome

    filter_session = FilterSession(
        user_id=user_id,
        session_id=session_id,
        initial_state=payload.get("initial_state") or payload.get("initial_filters") or {},
        changes_history=payload.get("changes_history") or [],
        result_metrics=result_metrics,
        abandoned_filters=payload.get("abandoned_filters") or [],
        status="completed" if outcome else "active",
        completed_at=utc_now() if outcome else None,
        duration_ms=payload.get("duration_ms"),
    )
    db.add(filter_session)
    db.commit()
    db.refresh(filter_session)
    return filter_session


def list_filter_sessions(db: Session, user_id: int, limit: int = 20) -> List[FilterSession]:
    return db.query(FilterSession).filter(FilterSession.user_id == user_id).order_by(
        FilterSession.started_at.desc(), FilterSession.id.desc()
    ).limit(limit).all()


def serialize_filter_session(fs: FilterSession) -> Dict:
    return {
        "id": fs.id,
        "session_id": fs.session_id,
        "status": fs.status,
        "initial_state": fs.initial_state,
        "changes_history": fs.changes_history,
        "result_metrics": fs.result_metrics,
        "abandoned_filters": fs.abandoned_filters,
        "started_at": format_iso_utc(fs.started_at),
        "completed_at": format_iso_utc(fs.completed_at),
        "duration_ms": fs.duration_ms,
    }


def record_predictions(db: Session, user_id: int, predictions: List[Dict]) -> int:
    """Ingest scores computed elsewhere; nothing here evaluates a model."""
    rows = [
        PredictionLog(
            user_id=user_id,
            tmdb_id=p["tmdb_id"],
            media_type=p["media_type"],
            predicted_score=p.get("predicted_score"),
            model_version=p.get("model_version"),
            features=p.get("features"),
        )
        for p in predictions
    ]
    db.add_all(rows)
    db.commit()
    return len(rows)


def retention_status(oldest: Optional[datetime], retention_days: int, now: Optional[datetime] = None) -> Dict[str, str]:
    if oldest is None:
        return {"status": "ok", "message": "Table is empty"}
    age = age_in_days(oldest, now)
    if age <= retention_days:
        return {"status": "ok", "message": f"All records within policy ({retention_days} days)"}
    if age > retention_days * CRITICAL_FACTOR:
        return {"status": "critical", "message": f"Records older than {round(age)} days (limit: {retention_days})"}
    return {"status": "warning", "message": f"Records older than {retention_days} days present"}


def table_stats(db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    tables = {}
    details = {}
    for table, (model, column_name, retention_days) in RETENTION_POLICY.items():
        column = getattr(model, column_name)
        total, oldest, newest = db.query(func.count(model.id), func.min(column), func.max(column)).one()
        tables[table] = {
            "total": int(total or 0),
            "oldest": format_iso_utc(oldest),
            "newest": format_iso_utc(newest),
        }
        details[table] = retention_status(ensure_utc(oldest), retention_days, now)
    healthy = all(d["status"] != "critical" for d in details.values())
    return {
        "timestamp": format_iso_utc(now or utc_now()),
        "tables": tables,
        "retention_policy": {t: days for t, (_, _, days) in RETENTION_POLICY.items()},
        "cleanup_status": {"healthy": healthy, "details": details},
    }


def cleanup_expired(db: Session, dry_run: bool = False) -> Dict[str, int]:
    """Delete rows past their table's retention window."""
    removed = {}
    try:
        for table, (model, column_name, retention_days) in RETENTION_POLICY.items():
            column = getattr(model, column_name)
            query = db.query(model).filter(column < days_ago(retention_days))
            removed[table] = query.count() if dry_run else query.delete(synchronize_session=False)
        if dry_run:
            db.rollback()
        else:
            db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info(f"Telemetry cleanup{' (dry run)' if dry_run else ''}: {removed}")
    return removed
