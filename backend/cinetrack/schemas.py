"""
schemas.py

Pydantic payloads shared by several routers.
"""
from pydantic import BaseModel, Field
from typing import List, Literal, Optional
import datetime

MediaType = Literal["movie", "tv"]
WatchStatus = Literal["want", "watched", "rewatched", "dropped"]


class MediaRef(BaseModel):
    tmdb_id: int = Field(..., gt=0)
    media_type: MediaType


class WatchlistUpdate(MediaRef):
    # None removes the title from every list
    status: Optional[WatchStatus] = None
    title: str = ""
    vote_average: Optional[float] = None
    user_rating: Optional[float] = Field(None, ge=0, le=10)
    watched_date: Optional[datetime.datetime] = None
    is_rewatch: bool = False
    is_rating_only: bool = False


class BatchLookupRequest(BaseModel):
    movies: List[MediaRef]


class TagNames(MediaRef):
    tags: List[str]


class TagIds(MediaRef):
    tag_ids: List[int]


class NoteUpdate(MediaRef):
    note: Optional[str] = Field(None, max_length=5000)
