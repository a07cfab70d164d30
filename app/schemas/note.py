"""Pydantic schemas for notes."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Note(BaseModel):
    """A note as stored in the durable store and cached as a snapshot.

    ``views`` and ``likes`` are the durable values; pending deltas held in
    the key cache are added on top when a note is served.
    """

    id: int = Field(0, description="Note id (assigned by the store on create)")
    title: str = Field(..., description="Note title")
    summary: str = Field("", description="Short summary")
    content: str = Field(..., description="Full note body")
    cover_image: str = Field("", description="Cover image URL")
    author_id: int = Field(..., description="Owner user id")
    tags: List[str] = Field(default_factory=list, description="Tag names")
    is_public: bool = Field(False, description="Visible to other users")
    views: int = Field(0, description="View count")
    likes: int = Field(0, description="Like count")
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class NoteCreate(BaseModel):
    """Request body for creating a note."""

    title: str = Field(..., min_length=1, max_length=200)
    summary: str = Field("", max_length=1000)
    content: str = Field(..., min_length=1)
    cover_image: str = ""
    tags: List[str] = Field(default_factory=list)
    is_public: bool = False


class NoteUpdate(BaseModel):
    """Partial update; omitted fields are left unchanged."""

    title: str | None = Field(None, min_length=1, max_length=200)
    summary: str | None = Field(None, max_length=1000)
    content: str | None = Field(None, min_length=1)
    cover_image: str | None = None
    tags: List[str] | None = None
    is_public: bool | None = None


class NoteList(BaseModel):
    """Paginated list of notes."""

    items: List[Note]
    total: int
    page: int
    limit: int


class LikeResponse(BaseModel):
    """Result of a like: the like count as seen right now."""

    note_id: int
    likes: int
