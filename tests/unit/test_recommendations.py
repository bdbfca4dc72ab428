import asyncio
import datetime

import pytest

from cinetrack.models import RecommendationLog, WatchListItem
from cinetrack.services import recommendations as rec_service
from cinetrack.services import watchlist as watchlist_service
from cinetrack.services.weighted_rating import calculate_weighted_rating, weight_for

from conftest import make_user


def test_random_pick_logs_and_counts(db, user, tmdb):
    tmdb.add("/movie/1", {"id": 1, "title": "Heat", "overview": "LA crime", "genres": [{"id": 80}], "release_date": "1995-12-15"})
    watchlist_service.upsert_status(db, user.id, 1, "movie", "want", title="Heat", vote_average=8.3)

    result = asyncio.run(rec_service.pick_random(db, user))

    assert result["success"] is True
    assert result["movie"]["id"] == 1
    assert result["movie"]["overview"] == "LA crime"
    log = db.query(RecommendationLog).one()
    assert log.id == result["log_id"]
    assert log.algorithm == "random_v1"
    assert log.candidate_pool_metrics["initial_count"] == 1
    assert watchlist_service.get_item(db, user.id, 1, "movie").recommendation_count == 1


def test_cooldown_excludes_recent_picks(db, user):
    watchlist_service.upsert_status(db, user.id, 1, "movie", "want", title="Heat")
    first = asyncio.run(rec_service.pick_random(db, user))
    assert first["success"] is True

    second = asyncio.run(rec_service.pick_random(db, user))
    assert second["success"] is False
    assert second["movie"] is None


def test_empty_lists_and_filters(db, user, tmdb):
    assert asyncio.run(rec_service.pick_random(db, user))["message"] == "Selected lists are empty"

    tmdb.add("/movie/2", {"id": 2, "genres": [{"id": 18}], "release_date": "1980-05-01"})
    watchlist_service.upsert_status(db, user.id, 2, "movie", "want", title="Old drama", vote_average=6.0)

    assert asyncio.run(rec_service.pick_random(db, user, year_from=2000))["success"] is False
    assert asyncio.run(rec_service.pick_random(db, user, genres=[35]))["success"] is False
    assert asyncio.run(rec_service.pick_random(db, user, min_rating=7))["success"] is False
    assert asyncio.run(rec_service.pick_random(db, user, types=["tv"]))["success"] is False
    assert asyncio.run(rec_service.pick_random(db, user, genres=[18], year_to=1990))["success"] is True


def test_adult_titles_are_skipped_for_minors(db, tmdb):
    minor = make_user(db, email="teen@example.com", birth_date=datetime.date.today() - datetime.timedelta(days=365 * 15))
    tmdb.add("/movie/3", {"id": 3, "adult": True})
    watchlist_service.upsert_status(db, minor.id, 3, "movie", "want", title="Adult")
    assert asyncio.run(rec_service.pick_random(db, minor))["success"] is False


def test_action_watched_updates_watchlist(client, db, user, headers):
    watchlist_service.upsert_status(db, user.id, 7, "movie", "want", title="Seven", vote_average=8.6)
    pick = client.get("/api/recommendations/random", headers=headers).json()
    assert pick["success"] is True

    resp = client.post(f"/api/recommendations/{pick['log_id']}/action", json={"action": "watched"}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["recommendation"]["action"] == "watched"

    db.expire_all()
    item = db.query(WatchListItem).filter(WatchListItem.tmdb_id == 7).one()
    assert item.status == "watched"
    assert item.title == "Seven"
    assert item.watched_date is not None

    details = client.get(f"/api/recommendations/{pick['log_id']}/action", headers=headers).json()
    assert details["context"]["additional_data"] is None


def test_action_validation(client, db, user, headers):
    other = make_user(db, email="else@example.com")
    log = RecommendationLog(user_id=other.id, tmdb_id=1, media_type="movie", algorithm="random_v1")
    db.add(log)
    db.commit()

    assert client.post(f"/api/recommendations/{log.id}/action", json={"action": "watched"}, headers=headers).status_code == 404
    assert client.post(f"/api/recommendations/{log.id}/action", json={"action": "loved"}, headers=headers).status_code == 400


def test_weights():
    assert weight_for(0, "initial") == 1.0
    assert weight_for(3, "rating_change") == 0.9
    assert weight_for(1, "rewatch") == pytest.approx(0.8)
    assert weight_for(9, "rewatch") == 0.3
    assert weight_for(0, "mystery") == 0.5


def test_weighted_rating_from_history(db, user):
    watchlist_service.upsert_status(db, user.id, 1, "movie", "watched", title="a", user_rating=6)
    watchlist_service.record_rewatch(db, user.id, 1, "movie", "a", user_rating=10)

    result = calculate_weighted_rating(db, user.id, 1, "movie")
    # 6 * 1.0 + 10 * 0.8 over 1.8
    assert result["weighted_rating"] == 7.8
    assert result["total_reviews"] == 2


def test_weighted_rating_without_rating(db, user):
    watchlist_service.upsert_status(db, user.id, 1, "movie", "want", title="a")
    result = calculate_weighted_rating(db, user.id, 1, "movie")
    assert result["weighted_rating"] is None
    assert result["details"]["has_record"] is True


def test_weighted_rating_endpoint_and_script(client, db, user, headers):
    from cinetrack.scripts.update_weighted_ratings import update_all

    watchlist_service.upsert_status(db, user.id, 1, "movie", "watched", title="a", user_rating=6)
    watchlist_service.record_rewatch(db, user.id, 1, "movie", "a", user_rating=10)

    resp = client.get("/api/movie/weighted-rating", params={"tmdb_id": 1, "media_type": "movie"}, headers=headers)
    assert resp.json()["weighted_rating"] == 7.8

    assert update_all(db, pause=0) == {"total": 1, "updated": 1, "errors": 0}
    db.expire_all()
    assert watchlist_service.get_item(db, user.id, 1, "movie").weighted_rating == 7.8


def test_watched_action_keeps_rewatched_status(db, user):
    watchlist_service.upsert_status(db, user.id, 9, "movie", "watched", title="Nine")
    watchlist_service.record_rewatch(db, user.id, 9, "movie", "Nine")
    log = RecommendationLog(user_id=user.id, tmdb_id=9, media_type="movie", algorithm="random_v1")
    db.add(log)
    db.commit()

    rec_service.record_action(db, user.id, log.id, "watched")

    db.expire_all()
    item = watchlist_service.get_item(db, user.id, 9, "movie")
    assert item.status == "rewatched"
    assert item.watch_count == 1
    assert item.title == "Nine"
