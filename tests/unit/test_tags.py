import pytest

from cinetrack.models import Tag
from cinetrack.services import tags as tag_service
from cinetrack.services import watchlist as watchlist_service
from cinetrack.services.blacklist import add_to_blacklist
from cinetrack.services.my_movies import list_my_movies
from cinetrack.services.stats import movies_by_tag, tag_usage


@pytest.fixture
def tracked(db, user):
    watchlist_service.upsert_status(db, user.id, 1, "movie", "watched", title="Alien", user_rating=9)
    watchlist_service.upsert_status(db, user.id, 2, "movie", "want", title="Brazil")
    watchlist_service.upsert_status(db, user.id, 3, "tv", "watched", title="Cosmos", user_rating=6)
    return user


def test_add_tags_normalizes_and_counts(db, tracked):
    added = tag_service.add_tags(db, tracked.id, 1, "movie", ["  Sci-Fi ", "sci-fi", "Horror"])
    assert sorted(t.name for t in added) == ["horror", "sci-fi"]

    tag_service.add_tags(db, tracked.id, 2, "movie", ["SCI-FI"])
    tag = db.query(Tag).filter(Tag.name == "sci-fi").one()
    assert tag.usage_count == 2


def test_tag_limit_per_title(db, tracked):
    tag_service.add_tags(db, tracked.id, 1, "movie", ["a", "b", "c", "d"])
    with pytest.raises(tag_service.TagLimitExceeded):
        tag_service.add_tags(db, tracked.id, 1, "movie", ["e", "f"])
    assert len(tag_service.item_tags(db, tracked.id, 1, "movie")) == 4


def test_tags_require_tracked_title(db, tracked):
    with pytest.raises(watchlist_service.ItemNotFound):
        tag_service.add_tags(db, tracked.id, 999, "movie", ["x"])


def test_remove_last_use_deletes_tag(db, tracked):
    tag = tag_service.add_tags(db, tracked.id, 1, "movie", ["classic"])[0]
    assert tag_service.remove_tags(db, tracked.id, 1, "movie", [tag.id]) == 1
    assert db.query(Tag).count() == 0


def test_search_is_prefix_and_escapes_wildcards(db, tracked):
    tag_service.add_tags(db, tracked.id, 1, "movie", ["space", "spooky", "100%"])
    assert [t.name for t in tag_service.search_tags(db, tracked.id, "sp")] == ["space", "spooky"]
    assert tag_service.search_tags(db, tracked.id, "%") == []


def test_tag_usage_and_listing_by_tag(db, tracked):
    tag = tag_service.add_tags(db, tracked.id, 1, "movie", ["favorite"])[0]
    tag_service.add_tags(db, tracked.id, 2, "movie", ["favorite"])

    assert tag_usage(db, tracked.id) == [{"id": tag.id, "name": "favorite", "count": 2}]
    assert tag_usage(db, tracked.id, ["watched"]) == [{"id": tag.id, "name": "favorite", "count": 1}]

    listing = movies_by_tag(db, tracked.id, tag.id)
    assert listing["total"] == 2
    assert movies_by_tag(db, tracked.id, tag.id + 100) is None


def test_my_movies_filters_and_sorts(db, tracked):
    result = list_my_movies(db, tracked.id, statuses=["watched"])
    assert [m["title"] for m in result["movies"]] == ["Alien", "Cosmos"]
    assert result["total_count"] == 2
    assert result["has_more"] is False

    result = list_my_movies(db, tracked.id, sort_by="rating", sort_order="asc")
    # unrated last even when ascending
    assert [m["title"] for m in result["movies"]] == ["Cosmos", "Alien", "Brazil"]

    result = list_my_movies(db, tracked.id, min_rating=7)
    assert [m["title"] for m in result["movies"]] == ["Alien"]

    result = list_my_movies(db, tracked.id, limit=2)
    assert len(result["movies"]) == 2
    assert result["has_more"] is True


def test_my_movies_hidden_listing(db, tracked):
    add_to_blacklist(db, tracked.id, 1, "movie")
    visible = list_my_movies(db, tracked.id)
    assert "Alien" not in [m["title"] for m in visible["movies"]]

    hidden = list_my_movies(db, tracked.id, include_hidden=True)
    assert hidden["total_count"] == 1
    assert hidden["movies"][0]["is_blacklisted"] is True


def test_blacklist_api(client, headers):
    ref = {"tmdb_id": 42, "media_type": "movie"}
    assert client.get("/api/blacklist", params=ref, headers=headers).json()["is_blacklisted"] is False
    assert client.post("/api/blacklist", json=ref, headers=headers).status_code == 200
    assert client.post("/api/blacklist", json=ref, headers=headers).status_code == 200
    assert client.get("/api/blacklist", params=ref, headers=headers).json()["is_blacklisted"] is True
    assert len(client.get("/api/blacklist/all", headers=headers).json()["items"]) == 1
    client.request("DELETE", "/api/blacklist", json=ref, headers=headers)
    assert client.get("/api/blacklist", params=ref, headers=headers).json()["is_blacklisted"] is False


def test_tags_api(client, headers):
    client.post("/api/watchlist", json={"tmdb_id": 5, "media_type": "movie", "status": "want", "title": "Five"}, headers=headers)
    resp = client.post("/api/tags/item", json={"tmdb_id": 5, "media_type": "movie", "tags": ["cozy"]}, headers=headers)
    assert resp.status_code == 200
    tag_id = resp.json()["tags"][0]["id"]

    resp = client.post("/api/tags/item", json={"tmdb_id": 6, "media_type": "movie", "tags": ["cozy"]}, headers=headers)
    assert resp.status_code == 404

    resp = client.get("/api/tags/items", params={"tag_ids": str(tag_id)}, headers=headers)
    assert [m["tmdb_id"] for m in resp.json()["movies"]] == [5]
