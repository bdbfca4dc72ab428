"""
media_classifier.py

Maps TMDB details onto the content types shown in profile statistics:
movie, tv, cartoon (animation) and anime (Japanese animation).
"""
from typing import Any, Dict, Iterable, Optional

ANIMATION_GENRE_ID = 16
CONTENT_TYPES = ("movie", "tv", "cartoon", "anime")

# Fallback names when TMDB omits them (ids from the TMDB genre lists)
GENRE_NAMES = {
    28: "Action", 12: "Adventure", 16: "Animation", 35: "Comedy", 80: "Crime",
    99: "Documentary", 18: "Drama", 10751: "Family", 14: "Fantasy", 36: "History",
    27: "Horror", 10402: "Music", 9648: "Mystery", 10749: "Romance",
    878: "Science Fiction", 10770: "TV Movie", 53: "Thriller", 10752: "War",
    37: "Western", 10759: "Action & Adventure", 10762: "Kids", 10763: "News",
    10764: "Reality", 10765: "Sci-Fi & Fantasy", 10766: "Soap", 10767: "Talk",
    10768: "War & Politics",
}


def genre_ids(details: Optional[Dict[str, Any]]) -> list:
    """Genre ids from either ``genres`` (detail objects) or ``genre_ids`` (search results)."""
    if not details:
        return []
    if details.get("genres"):
        return [g.get("id") for g in details["genres"] if isinstance(g, dict) and g.get("id") is not None]
    return [g for g in details.get("genre_ids") or [] if isinstance(g, int)]


def is_animation(details: Optional[Dict[str, Any]]) -> bool:
    return ANIMATION_GENRE_ID in genre_ids(details)


def is_anime(details: Optional[Dict[str, Any]]) -> bool:
    return is_animation(details) and details.get("original_language") == "ja"


def is_cartoon(details: Optional[Dict[str, Any]]) -> bool:
    return is_animation(details) and details.get("original_language") != "ja"


def classify(details: Optional[Dict[str, Any]], media_type: str) -> str:
    """Content type for one title; without details the stored media_type wins."""
    if details:
        if is_anime(details):
            return "anime"
        if is_cartoon(details):
            return "cartoon"
    return media_type


def genre_name(genre_id: int, fallback: Optional[str] = None) -> str:
    return fallback or GENRE_NAMES.get(genre_id) or f"Genre {genre_id}"


def empty_breakdown() -> Dict[str, int]:
    return {t: 0 for t in CONTENT_TYPES}


def type_breakdown(pairs: Iterable) -> Dict[str, int]:
    """Count (details, media_type) pairs per content type."""
    counts = empty_breakdown()
    for details, media_type in pairs:
        kind = classify(details, media_type)
        if kind in counts:
            counts[kind] += 1
    return counts
