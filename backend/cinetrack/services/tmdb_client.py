"""
TMDB client for CineTrack.
- Async httpx client; credentials come from settings (bearer token or api key).
- Transient 429/5xx responses are retried with exponential backoff.
- Detail lookups are cached in Redis for 24h and return None on failure so
  aggregations can degrade per item; search propagates TMDBError.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from cinetrack.core.config import settings
from cinetrack.services.cache import with_cache
from cinetrack.utils.retry import fetch_with_retry

logger = logging.getLogger(__name__)

# Optional transport override (tests route TMDB through httpx.MockTransport)
_transport: Optional[httpx.AsyncBaseTransport] = None


class TMDBError(Exception):
    """TMDB answered with an error status, timed out, or is not configured."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def set_transport(transport: Optional[httpx.AsyncBaseTransport]) -> None:
    global _transport
    _transport = transport


def _auth() -> tuple:
    if settings.tmdb_access_token:
        return {"Authorization": f"Bearer {settings.tmdb_access_token}"}, {}
    if settings.tmdb_api_key:
        return {}, {"api_key": settings.tmdb_api_key}
    raise TMDBError("TMDB credentials not configured")


async def tmdb_get(path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """GET ``path`` from TMDB and return the decoded JSON body."""
    headers, auth_params = _auth()
    query = {"language": settings.tmdb_language, **auth_params, **(params or {})}
    headers["accept"] = "application/json"
    url = f"{settings.tmdb_base_url}{path}"

    try:
        async with httpx.AsyncClient(timeout=settings.tmdb_timeout_seconds, transport=_transport) as client:
            resp = await fetch_with_retry(client, "GET", url, params=query, headers=headers)
    except httpx.HTTPStatusError as e:
        raise TMDBError(f"TMDB {path} failed: HTTP {e.response.status_code}", e.response.status_code) from e
    except httpx.HTTPError as e:
        raise TMDBError(f"TMDB {path} failed: {e}") from e

    if resp.status_code >= 400:
        raise TMDBError(f"TMDB {path} failed: HTTP {resp.status_code}", resp.status_code)
    return resp.json()


async def _cached_lookup(cache_key: str, path: str, params: Optional[Dict[str, Any]] = None) -> Optional[Dict]:
    async def _fetch():
        try:
            return await tmdb_get(path, params)
        except TMDBError as e:
            logger.debug(f"TMDB lookup failed for {path}: {e}")
            return None

    return await with_cache(cache_key, _fetch, settings.tmdb_cache_ttl)


async def fetch_media_details(tmdb_id: int, media_type: str) -> Optional[Dict]:
    """Movie or TV details (genres, original_language, belongs_to_collection...)."""
    return await _cached_lookup(f"tmdb:{media_type}:{tmdb_id}", f"/{media_type}/{tmdb_id}")


async def fetch_credits(tmdb_id: int, media_type: str) -> Optional[Dict]:
    return await _cached_lookup(f"tmdb:{media_type}:{tmdb_id}:credits", f"/{media_type}/{tmdb_id}/credits")


async def fetch_person(person_id: int) -> Optional[Dict]:
    return await _cached_lookup(f"tmdb:person:{person_id}", f"/person/{person_id}")


async def fetch_person_credits(person_id: int) -> Optional[Dict]:
    """Combined movie + TV credits for a person."""
    return await _cached_lookup(f"tmdb:person:{person_id}:credits", f"/person/{person_id}/combined_credits")


async def fetch_collection(collection_id: int) -> Optional[Dict]:
    return await _cached_lookup(f"tmdb:collection:{collection_id}", f"/collection/{collection_id}")


def _normalize_search_item(item: Dict) -> Dict:
    title = item.get("title") or item.get("name") or ""
    release = item.get("release_date") or item.get("first_air_date")
    return {
        "id": item.get("id"),
        "media_type": item.get("media_type"),
        "title": title,
        "name": item.get("name") or title,
        "poster_path": item.get("poster_path"),
        "vote_average": item.get("vote_average"),
        "release_date": release,
        "first_air_date": item.get("first_air_date") or release,
        "overview": item.get("overview"),
        "genre_ids": item.get("genre_ids") or [],
        "original_language": item.get("original_language"),
        "adult": bool(item.get("adult")),
    }


async def search_multi(query: str, page: int = 1, include_adult: bool = False, limit: int = 30) -> List[Dict]:
    """Search movies and TV shows; people and other result types are dropped."""
    if not query.strip():
        return []

    async def _fetch():
        data = await tmdb_get("/search/multi", {
            "query": query.strip(),
            "page": page,
            "include_adult": "true" if include_adult else "false",
        })
        results = [
            _normalize_search_item(item)
            for item in data.get("results", [])
            if item.get("media_type") in ("movie", "tv")
        ]
        if not include_adult:
            results = [r for r in results if not r["adult"]]
        return results[:limit]

    cache_key = f"tmdb:search:{query.strip().lower()}:{page}:{int(include_adult)}"
    return await with_cache(cache_key, _fetch, settings.tmdb_search_cache_ttl)
