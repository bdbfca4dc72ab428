import datetime

from cinetrack.models import FilterSession, IntentSignal, PredictionLog, RecommendationEvent, RecommendationLog, UserSession
from cinetrack.services import telemetry
from cinetrack.utils.timezone import utc_now

from conftest import make_user


def test_retention_status_thresholds():
    now = utc_now()
    assert telemetry.retention_status(None, 30, now)["status"] == "ok"
    assert telemetry.retention_status(now - datetime.timedelta(days=10), 30, now)["status"] == "ok"
    assert telemetry.retention_status(now - datetime.timedelta(days=40), 30, now)["status"] == "warning"
    assert telemetry.retention_status(now - datetime.timedelta(days=46), 30, now)["status"] == "critical"


def test_table_stats_reports_unhealthy_tables(db, user):
    db.add(IntentSignal(user_id=user.id, signal_type="scroll_pause", created_at=utc_now() - datetime.timedelta(days=60)))
    db.add(RecommendationEvent(user_id=user.id, event_type="page_view"))
    db.commit()

    stats = telemetry.table_stats(db)
    assert stats["tables"]["intent_signals"]["total"] == 1
    assert stats["cleanup_status"]["details"]["intent_signals"]["status"] == "critical"
    assert stats["cleanup_status"]["details"]["recommendation_events"]["status"] == "ok"
    assert stats["cleanup_status"]["healthy"] is False
    assert stats["retention_policy"]["intent_signals"] == 30


def test_cleanup_removes_only_expired_rows(db, user):
    db.add(IntentSignal(user_id=user.id, signal_type="scroll_pause", created_at=utc_now() - datetime.timedelta(days=31)))
    db.add(IntentSignal(user_id=user.id, signal_type="scroll_pause"))
    db.commit()

    assert telemetry.cleanup_expired(db, dry_run=True)["intent_signals"] == 1
    assert db.query(IntentSignal).count() == 2

    assert telemetry.cleanup_expired(db)["intent_signals"] == 1
    assert db.query(IntentSignal).count() == 1


def test_cleanup_script_dry_run(db, user):
    from cinetrack.scripts.cleanup_telemetry import main

    db.add(RecommendationEvent(user_id=user.id, event_type="page_view", timestamp=utc_now() - datetime.timedelta(days=120)))
    db.commit()
    assert main(["--dry-run"])["recommendation_events"] == 1
    assert main([])["recommendation_events"] == 1
    db.expire_all()
    assert db.query(RecommendationEvent).count() == 0


def test_events_single_and_batch(client, db, user, headers):
    resp = client.post("/api/recommendations/events", json={"event_type": "page_view", "event_data": {"page": "home"}}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["event_id"] > 0

    resp = client.post("/api/recommendations/events", json={"event_type": "teleport"}, headers=headers)
    assert resp.status_code == 400

    resp = client.post("/api/recommendations/events", json={"events": [
        {"event_type": "hover_start", "timestamp": "2026-01-02T10:00:00Z"},
        {"event_type": "nonsense"},
        {"event_type": "session_start", "event_data": {"session_id": "s-1"}},
    ]}, headers=headers)
    assert resp.json() == {"success": True, "stored": 2, "rejected": 1}
    assert db.query(RecommendationEvent).count() == 3
    assert db.query(UserSession).filter(UserSession.session_id == "s-1").one().user_id == user.id


def test_event_link_to_foreign_log_is_dropped(client, db, user, headers):
    other = make_user(db, email="stranger@example.com")
    log = RecommendationLog(user_id=other.id, tmdb_id=1, media_type="movie", algorithm="random_v1")
    db.add(log)
    db.commit()

    client.post("/api/recommendations/events", json={"event_type": "action_click", "recommendation_log_id": log.id}, headers=headers)
    event = db.query(RecommendationEvent).one()
    assert event.user_id == user.id
    assert event.parent_log_id is None


def test_signals_clamp_intensity(client, db, headers):
    resp = client.post("/api/recommendations/signals", json={"signals": [
        {"signal_type": "scroll_pause", "intensity_score": 4},
        {"signal_type": "hover_start"},
        {"signal_type": "mind_reading"},
    ]}, headers=headers)
    assert resp.json()["stored"] == 2
    assert sorted(s.intensity_score for s in db.query(IntentSignal).all()) == [0.5, 1.0]


def test_filter_sessions(client, db, user, headers):
    client.post("/api/recommendations/events", json={"event_type": "session_start", "event_data": {"session_id": "abc"}}, headers=headers)
    resp = client.post("/api/recommendations/filter-sessions", json={
        "session_id": "abc", "initial_state": {"types": ["movie"]}, "outcome": "success", "duration_ms": 1200,
    }, headers=headers)
    assert resp.status_code == 201
    data = resp.json()["filter_session"]
    assert data["status"] == "completed"
    assert data["session_id"] == "abc"
    assert data["result_metrics"]["outcome"] == "success"

    # unknown sessions are not linked
    resp = client.post("/api/recommendations/filter-sessions", json={"session_id": "nope"}, headers=headers)
    assert resp.json()["filter_session"]["session_id"] is None
    assert resp.json()["filter_session"]["status"] == "active"

    assert client.post("/api/recommendations/filter-sessions", json={"outcome": "meh"}, headers=headers).status_code == 400
    listed = client.get("/api/recommendations/filter-sessions", headers=headers).json()["filter_sessions"]
    assert len(listed) == 2
    assert db.query(FilterSession).count() == 2


def test_predictions_are_stored(client, db, headers):
    resp = client.post("/api/recommendations/predictions", json={"predictions": [
        {"tmdb_id": 1, "media_type": "movie", "predicted_score": 0.8, "model_version": "v1"},
        {"tmdb_id": 2, "media_type": "tv", "predicted_score": 0.3},
    ]}, headers=headers)
    assert resp.json() == {"success": True, "stored": 2}
    assert db.query(PredictionLog).count() == 2
    assert client.post("/api/recommendations/predictions", json={"predictions": []}, headers=headers).status_code == 400


def test_telemetry_stats_endpoint(client, headers):
    data = client.get("/api/recommendations/stats", headers=headers).json()
    assert set(data["tables"]) == set(telemetry.RETENTION_POLICY)
    assert data["cleanup_status"]["healthy"] is True


def test_telemetry_requires_auth(client):
    assert client.post("/api/recommendations/events", json={"event_type": "page_view"}).status_code == 401


def test_prediction_features_are_stored_as_json(client, db, headers):
    resp = client.post("/api/recommendations/predictions", json={"predictions": [
        {"tmdb_id": 1, "media_type": "movie", "predicted_score": 0.8, "features": {"genre_match": 0.9}},
    ]}, headers=headers)
    assert resp.json() == {"success": True, "stored": 1}
    assert db.query(PredictionLog).one().features == {"genre_match": 0.9}


def test_non_numeric_intensity_is_rejected(client, db, headers):
    resp = client.post("/api/recommendations/signals", json={"signal_type": "scroll_pause", "intensity_score": "high"}, headers=headers)
    assert resp.status_code == 400

    resp = client.post("/api/recommendations/signals", json={"signals": [
        {"signal_type": "scroll_pause", "intensity_score": "high"},
        {"signal_type": "scroll_pause", "intensity_score": 0.7},
    ]}, headers=headers)
    assert resp.json() == {"success": True, "stored": 1, "rejected": 1}
    assert db.query(IntentSignal).one().intensity_score == 0.7


def test_repeated_session_start_in_one_batch(client, db, user, headers):
    other = make_user(db, email="owner@example.com")
    db.add(UserSession(session_id="taken", user_id=other.id))
    db.commit()

    resp = client.post("/api/recommendations/events", json={"events": [
        {"event_type": "session_start", "event_data": {"session_id": "dup"}},
        {"event_type": "session_start", "event_data": {"session_id": "dup"}},
        {"event_type": "session_start", "event_data": {"session_id": "taken"}},
        {"event_type": "page_view"},
    ]}, headers=headers)
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "stored": 4, "rejected": 0}
    assert db.query(RecommendationEvent).count() == 4
    assert db.query(UserSession).filter(UserSession.session_id == "dup").one().user_id == user.id
    assert db.query(UserSession).filter(UserSession.session_id == "taken").one().user_id == other.id


def test_invalid_events_leave_no_session(client, db, headers):
    resp = client.post("/api/recommendations/events", json={"events": [
        {"event_type": "session_start", "event_data": {"session_id": "ghost"}, "timestamp": "yesterday"},
        {"event_type": "session_start", "event_data": ["not", "an", "object"]},
        {"event_type": "page_view"},
    ]}, headers=headers)
    assert resp.json() == {"success": True, "stored": 1, "rejected": 2}
    assert db.query(UserSession).count() == 0

    resp = client.post("/api/recommendations/events", json={"event_type": "page_view", "event_data": "home"}, headers=headers)
    assert resp.status_code == 400


def test_telemetry_stats_need_admin_secret_in_production(client, headers, monkeypatch):
    from cinetrack.core.config import settings

    monkeypatch.setattr(settings, "environment", "production")
    assert client.get("/api/recommendations/stats", headers=headers).status_code == 403
    resp = client.get("/api/recommendations/stats", headers={**headers, "X-Admin-Secret": settings.cache_clear_secret})
    assert resp.status_code == 200
    assert "tables" in resp.json()
