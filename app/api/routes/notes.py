from __future__ import annotations

from typing import Annotated, List

from fastapi import APIRouter, Depends, Query, Request, Response, status
from pydantic import BaseModel, Field

from app.core.identity import get_current_user_id
from app.core.rate_limit import rate_limit
from app.schemas.note import LikeResponse, Note, NoteCreate, NoteList, NoteUpdate
from app.services.note_service import MAX_PAGE_SIZE, NoteService

router = APIRouter(prefix="/notes", tags=["Notes"])


class TagsPayload(BaseModel):
    tags: List[str] = Field(..., min_length=1)


def get_note_service(request: Request) -> NoteService:
    return request.app.state.note_service


UserId = Annotated[int, Depends(get_current_user_id)]
Service = Annotated[NoteService, Depends(get_note_service)]


@router.get("", response_model=NoteList)
def list_notes(
    user_id: UserId,
    service: Service,
    author_id: int | None = None,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=MAX_PAGE_SIZE)] = 20,
) -> NoteList:
    """List notes of an author (the caller by default), newest first. Not cached."""
    return service.list_notes(user_id, page=page, limit=limit, author_id=author_id)


@router.get("/search", response_model=List[Note])
def search_notes(
    user_id: UserId,
    service: Service,
    q: Annotated[str, Query(min_length=1)],
    tags: Annotated[List[str], Query()] = [],
) -> List[Note]:
    """Search the caller's notes by title/content, optionally requiring tags."""
    return service.search_notes(user_id, q, tags)


@router.post("", response_model=Note, status_code=status.HTTP_201_CREATED)
def create_note(payload: NoteCreate, user_id: UserId, service: Service) -> Note:
    return service.create_note(user_id, payload)


@router.get("/{note_id}", response_model=Note)
def get_note(note_id: int, user_id: UserId, service: Service) -> Note:
    """Read a note (cached) and count the view.

    ``views`` and ``likes`` include deltas not yet synced to the store.
    """
    return service.get_note(user_id, note_id)


@router.post(
    "/{note_id}/like",
    response_model=LikeResponse,
    dependencies=[Depends(rate_limit("like"))],
)
def like_note(note_id: int, user_id: UserId, service: Service) -> LikeResponse:
    return service.like_note(user_id, note_id)


@router.patch("/{note_id}", response_model=Note)
def update_note(note_id: int, payload: NoteUpdate, user_id: UserId, service: Service) -> Note:
    return service.update_note(user_id, note_id, payload)


@router.delete("/{note_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_note(note_id: int, user_id: UserId, service: Service) -> Response:
    service.delete_note(user_id, note_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{note_id}/tags", response_model=Note)
def add_tags(note_id: int, payload: TagsPayload, user_id: UserId, service: Service) -> Note:
    return service.add_tags(user_id, note_id, payload.tags)


@router.delete("/{note_id}/tags", response_model=Note)
def remove_tags(
    note_id: int,
    user_id: UserId,
    service: Service,
    tags: Annotated[List[str], Query()],
) -> Note:
    return service.remove_tags(user_id, note_id, tags)
