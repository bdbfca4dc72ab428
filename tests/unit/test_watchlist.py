from cinetrack.models import RatingHistory, RewatchLog, Tag, WatchListItem
from cinetrack.services import tags as tag_service
from cinetrack.services import watchlist as watchlist_service

from conftest import auth_headers, make_user


def test_upsert_creates_single_row(db, user):
    watchlist_service.upsert_status(db, user.id, 603, "movie", "want", title="The Matrix", vote_average=8.2)
    watchlist_service.upsert_status(db, user.id, 603, "movie", "want", title="The Matrix", vote_average=8.2)

    rows = db.query(WatchListItem).filter(WatchListItem.user_id == user.id).all()
    assert len(rows) == 1
    assert rows[0].status == "want"
    assert rows[0].watch_count == 0


def test_upsert_changes_status_and_logs_rating(db, user):
    watchlist_service.upsert_status(db, user.id, 603, "movie", "watched", title="The Matrix", user_rating=7)
    item = watchlist_service.upsert_status(db, user.id, 603, "movie", "watched", title="The Matrix", user_rating=9)

    assert item.status == "watched"
    assert item.user_rating == 9
    history = db.query(RatingHistory).order_by(RatingHistory.id).all()
    assert [(h.rating, h.action_type) for h in history] == [(7, "initial"), (9, "rating_change")]


def test_zero_rating_means_unrated(db, user):
    item = watchlist_service.upsert_status(db, user.id, 11, "movie", "watched", title="Star Wars", user_rating=0)
    assert item.user_rating is None
    assert db.query(RatingHistory).count() == 0


def test_same_id_different_media_type_are_distinct(db, user):
    watchlist_service.upsert_status(db, user.id, 1399, "movie", "want", title="A movie")
    watchlist_service.upsert_status(db, user.id, 1399, "tv", "watched", title="A show")
    assert db.query(WatchListItem).count() == 2


def test_null_status_removes_row_and_releases_tags(db, user):
    watchlist_service.upsert_status(db, user.id, 603, "movie", "watched", title="The Matrix")
    tag_service.add_tags(db, user.id, 603, "movie", ["Sci-Fi"])
    assert db.query(Tag).count() == 1

    result = watchlist_service.upsert_status(db, user.id, 603, "movie", None)

    assert result is None
    assert watchlist_service.get_item(db, user.id, 603, "movie") is None
    assert db.query(Tag).count() == 0


def test_rewatch_increments_count_and_logs(db, user):
    watchlist_service.upsert_status(db, user.id, 603, "movie", "watched", title="The Matrix", user_rating=8)
    item = watchlist_service.record_rewatch(db, user.id, 603, "movie", "The Matrix", user_rating=9)

    assert item.status == "rewatched"
    assert item.watch_count == 1
    log = db.query(RewatchLog).one()
    assert log.rating_before == 8
    assert log.rating_after == 9
    assert db.query(RatingHistory).order_by(RatingHistory.id.desc()).first().action_type == "rewatch"


def test_update_rating_requires_existing_row(db, user):
    try:
        watchlist_service.update_rating(db, user.id, 42, "movie", 6)
        assert False, "expected ItemNotFound"
    except watchlist_service.ItemNotFound:
        pass


def test_batch_lookup_returns_entry_per_distinct_pair(db, user):
    other = make_user(db, email="other@example.com")
    watchlist_service.upsert_status(db, user.id, 1, "movie", "watched", title="One", user_rating=8)
    watchlist_service.upsert_status(db, other.id, 1, "movie", "watched", title="One", user_rating=6)
    watchlist_service.upsert_status(db, other.id, 2, "tv", "want", title="Two")

    pairs = [(1, "movie"), (2, "tv"), (1, "tv"), (1, "movie")]
    result = watchlist_service.batch_lookup(db, user.id, pairs)

    assert set(result) == {"1-movie", "2-tv", "1-tv"}
    assert result["1-movie"]["status"] == "watched"
    assert result["1-movie"]["user_rating"] == 8
    assert result["1-movie"]["average_rating"] == 7.0
    assert result["1-movie"]["rating_count"] == 2
    # other user's want entry is not ours
    assert result["2-tv"]["status"] is None
    assert result["1-tv"]["average_rating"] is None


def test_batch_lookup_anonymous_has_only_community_data(db, user):
    watchlist_service.upsert_status(db, user.id, 5, "movie", "watched", title="Five", user_rating=4)
    result = watchlist_service.batch_lookup(db, None, [(5, "movie")])
    assert result["5-movie"]["status"] is None
    assert result["5-movie"]["average_rating"] == 4.0


def test_watchlist_api_roundtrip(client, db, user, headers):
    body = {"tmdb_id": 603, "media_type": "movie", "status": "watched", "title": "The Matrix", "user_rating": 8}
    resp = client.post("/api/watchlist", json=body, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["record"]["status"] == "watched"

    resp = client.post("/api/watchlist", json=body, headers=headers)
    assert resp.status_code == 200
    assert db.query(WatchListItem).count() == 1

    resp = client.get("/api/watchlist", params={"tmdb_id": 603, "media_type": "movie"}, headers=headers)
    assert resp.json()["user_rating"] == 8

    resp = client.request("DELETE", "/api/watchlist", json={"tmdb_id": 603, "media_type": "movie"}, headers=headers)
    assert resp.json() == {"success": True, "removed": True}
    assert db.query(WatchListItem).count() == 0


def test_watchlist_api_requires_auth_and_title(client, headers):
    body = {"tmdb_id": 603, "media_type": "movie", "status": "want"}
    assert client.post("/api/watchlist", json=body).status_code == 401
    assert client.post("/api/watchlist", json=body, headers=headers).status_code == 400


def test_watchlist_api_rejects_bad_payload(client, headers):
    resp = client.post("/api/watchlist", json={"tmdb_id": 1, "media_type": "book", "status": "want", "title": "x"}, headers=headers)
    assert resp.status_code == 400


def test_rating_only_update_of_missing_title_is_404(client, headers):
    body = {"tmdb_id": 77, "media_type": "movie", "user_rating": 5, "is_rating_only": True}
    assert client.post("/api/watchlist", json=body, headers=headers).status_code == 404


def test_anonymous_status_is_not_tracked(client):
    resp = client.get("/api/watchlist", params={"tmdb_id": 603, "media_type": "movie"})
    assert resp.status_code == 200
    assert resp.json()["status"] is None


def test_note_is_private_per_user(client, db, user, headers):
    other = make_user(db, email="second@example.com")
    client.post("/api/watchlist", json={"tmdb_id": 9, "media_type": "tv", "status": "want", "title": "Nine"}, headers=headers)

    resp = client.put("/api/watchlist/note", json={"tmdb_id": 9, "media_type": "tv", "note": "watch with Sam"}, headers=headers)
    assert resp.status_code == 200
    assert client.get("/api/watchlist/note", params={"tmdb_id": 9, "media_type": "tv"}, headers=headers).json()["note"] == "watch with Sam"
    assert client.get("/api/watchlist/note", params={"tmdb_id": 9, "media_type": "tv"}, headers=auth_headers(other)).json()["note"] == ""


def test_batch_endpoint(client, headers):
    client.post("/api/watchlist", json={"tmdb_id": 1, "media_type": "movie", "status": "want", "title": "One"}, headers=headers)
    resp = client.post("/api/movies/batch", json={"movies": [{"tmdb_id": 1, "media_type": "movie"}, {"tmdb_id": 2, "media_type": "tv"}]}, headers=headers)
    assert resp.status_code == 200
    data = resp.json()
    assert data["1-movie"]["status"] == "want"
    assert data["2-tv"]["status"] is None


def test_status_change_keeps_vote_average_snapshot(db, user):
    watchlist_service.upsert_status(db, user.id, 603, "movie", "want", title="The Matrix", vote_average=8.2)
    item = watchlist_service.upsert_status(db, user.id, 603, "movie", "watched")
    assert item.vote_average == 8.2
    assert item.title == "The Matrix"

    item = watchlist_service.upsert_status(db, user.id, 603, "movie", "dropped", vote_average=7.9)
    assert item.vote_average == 7.9
