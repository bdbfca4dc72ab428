"""
titles.py

TMDB detail pages enriched with the caller's own data: collection parts
and a person's filmography carry the user's status and effective rating,
plus a compact genres/runtime/adult summary for a single title.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from cinetrack.models import Blacklist, User, WatchListItem
from cinetrack.services import tmdb_client
from cinetrack.services.tmdb_client import TMDBError
from cinetrack.services.watchlist import media_key
from cinetrack.utils.timezone import should_filter_adult

logger = logging.getLogger(__name__)


def _user_marks(db: Session, user_id: int, pairs: Iterable[Tuple[int, str]]) -> Tuple[Dict[str, Dict], set]:
    """Watchlist status/effective rating and blacklisted keys for the given titles."""
    pairs = list(pairs)
    tmdb_ids = {t for t, _ in pairs}
    if not tmdb_ids:
        return {}, set()
    items = db.query(WatchListItem).filter(
        WatchListItem.user_id == user_id,
        WatchListItem.tmdb_id.in_(tmdb_ids),
    ).all()
    marks = {
        media_key(i.tmdb_id, i.media_type): {"status": i.status, "user_rating": i.effective_rating}
        for i in items
    }
    hidden = db.query(Blacklist.tmdb_id, Blacklist.media_type).filter(
        Blacklist.user_id == user_id,
        Blacklist.tmdb_id.in_(tmdb_ids),
    ).all()
    return marks, {media_key(t, m) for t, m in hidden}


async def media_summary(tmdb_id: int, media_type: str) -> Dict[str, Any]:
    data = await tmdb_client.fetch_media_details(tmdb_id, media_type)
    if data is None:
        raise TMDBError(f"No TMDB details for {media_type}/{tmdb_id}")
    episode_run_time = data.get("episode_run_time") or []
    return {
        "genres": [g.get("name") for g in data.get("genres") or [] if g.get("name")],
        "runtime": data.get("runtime") or (episode_run_time[0] if episode_run_time else 0),
        "adult": bool(data.get("adult")),
    }


async def collection_with_status(db: Session, user: Optional[User], collection_id: int) -> Dict[str, Any]:
    data = await tmdb_client.fetch_collection(collection_id)
    if data is None:
        raise TMDBError(f"No TMDB collection {collection_id}")

    raw_parts = data.get("parts") or []
    marks, hidden = {}, set()
    if user is not None:
        marks, hidden = _user_marks(db, user.id, ((p.get("id"), "movie") for p in raw_parts))

    parts = []
    for movie in raw_parts:
        key = media_key(movie.get("id"), "movie")
        part = {
            "id": movie.get("id"),
            "media_type": "movie",
            "title": movie.get("title"),
            "name": movie.get("title"),
            "poster_path": movie.get("poster_path"),
            "vote_average": movie.get("vote_average"),
            "vote_count": movie.get("vote_count"),
            "release_date": movie.get("release_date"),
            "first_air_date": movie.get("release_date"),
            "overview": movie.get("overview"),
            "is_blacklisted": key in hidden,
        }
        # status keys only appear for titles the user tracks
        if key in marks:
            part.update(marks[key])
        parts.append(part)

    return {
        "id": data.get("id"),
        "name": data.get("name"),
        "overview": data.get("overview"),
        "poster_path": data.get("poster_path"),
        "backdrop_path": data.get("backdrop_path"),
        "parts": parts,
    }


def _filmography(cast: List[Dict], include_adult: bool) -> List[Dict]:
    seen = set()
    entries = []
    for item in cast:
        if not item.get("poster_path"):
            continue
        if item.get("media_type") not in ("movie", "tv"):
            continue
        if item.get("adult") and not include_adult:
            continue
        key = media_key(item.get("id"), item["media_type"])
        if key in seen:
            continue
        seen.add(key)
        entries.append(item)

    # most popular first; ties go to the newest release
    entries.sort(key=lambda i: i.get("release_date") or i.get("first_air_date") or "", reverse=True)
    entries.sort(key=lambda i: i.get("popularity") or 0, reverse=True)
    return [
        {
            "id": i.get("id"),
            "media_type": i["media_type"],
            "title": i.get("title") or i.get("name"),
            "name": i.get("title") or i.get("name"),
            "poster_path": i.get("poster_path"),
            "vote_average": i.get("vote_average") or 0,
            "vote_count": i.get("vote_count") or 0,
            "release_date": i.get("release_date") or i.get("first_air_date") or "",
            "overview": i.get("overview") or "",
            "character": i.get("character") or "",
            "popularity": i.get("popularity") or 0,
        }
        for i in entries
    ]


async def person_with_filmography(db: Session, user: Optional[User], person_id: int) -> Dict[str, Any]:
    person = await tmdb_client.fetch_person(person_id)
    if person is None:
        raise TMDBError(f"No TMDB person {person_id}")
    credits = await tmdb_client.fetch_person_credits(person_id)
    if credits is None:
        raise TMDBError(f"No TMDB credits for person {person_id}")

    include_adult = not should_filter_adult(user.birth_date if user is not None else None)
    filmography = _filmography(credits.get("cast") or [], include_adult)
    if user is not None:
        marks, _ = _user_marks(db, user.id, ((f["id"], f["media_type"]) for f in filmography))
        for entry in filmography:
            entry.update(marks.get(media_key(entry["id"], entry["media_type"]), {}))

    return {
        "id": person.get("id"),
        "name": person.get("name"),
        "biography": person.get("biography"),
        "profile_path": person.get("profile_path"),
        "birthday": person.get("birthday"),
        "deathday": person.get("deathday"),
        "place_of_birth": person.get("place_of_birth"),
        "known_for_department": person.get("known_for_department"),
        "filmography": filmography,
    }
