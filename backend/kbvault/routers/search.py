from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlmodel import Session

from kbvault.db import get_session
from kbvault.dependencies import get_search_service, require_auth
from kbvault.services.search import DEFAULT_LIMIT, SearchService

router = APIRouter(prefix="/api/search", tags=["search"], dependencies=[Depends(require_auth)])


class SearchHitRead(BaseModel):
    id: str
    title: str
    snippet: str


@router.get("", response_model=list[SearchHitRead])
async def search_notes(
    q: str = Query(..., min_length=1, description="Free-text query"),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=200),
    db: Session = Depends(get_session),
    service: SearchService = Depends(get_search_service),
) -> list[SearchHitRead]:
    """Search titles and note bodies, including encrypted notes' shadow text."""
    hits = service.search(db, q, limit=limit)
    return [SearchHitRead(id=h.note_id, title=h.title, snippet=h.snippet) for h in hits]
