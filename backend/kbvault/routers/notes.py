"""Note CRUD endpoints.

Store calls wait on the shared StoreLock and may do AES work, so they run
in a worker thread and never hold up the event loop.
"""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, HTTPException, Response
from sqlmodel import Session

from kbvault.db import get_session
from kbvault.dependencies import get_note_store, require_auth
from kbvault.models.note import NoteCreate, NoteRead, NoteUpdate
from kbvault.services.notes import SecureNoteStore

router = APIRouter(prefix="/api/notes", tags=["notes"], dependencies=[Depends(require_auth)])


@router.post("", response_model=NoteRead, status_code=201)
async def create_note(
    body: NoteCreate,
    db: Session = Depends(get_session),
    store: SecureNoteStore = Depends(get_note_store),
) -> NoteRead:
    note_id = await asyncio.to_thread(store.create, db, body.title, body.content)
    note = await asyncio.to_thread(store.get, db, note_id)
    if note is None:
        raise HTTPException(status_code=500, detail="Note vanished after insert")
    return note


@router.get("", response_model=list[NoteRead])
async def list_notes(
    db: Session = Depends(get_session),
    store: SecureNoteStore = Depends(get_note_store),
) -> list[NoteRead]:
    return await asyncio.to_thread(store.get_all, db)


@router.get("/{note_id}", response_model=NoteRead)
async def get_note(
    note_id: str,
    db: Session = Depends(get_session),
    store: SecureNoteStore = Depends(get_note_store),
) -> NoteRead:
    note = await asyncio.to_thread(store.get, db, note_id)
    if note is None:
        raise HTTPException(status_code=404, detail="Note not found")
    return note


@router.put("/{note_id}", response_model=NoteRead)
async def update_note(
    note_id: str,
    body: NoteUpdate,
    db: Session = Depends(get_session),
    store: SecureNoteStore = Depends(get_note_store),
) -> NoteRead:
    await asyncio.to_thread(store.update, db, note_id, body.title, body.content)
    note = await asyncio.to_thread(store.get, db, note_id)
    if note is None:
        raise HTTPException(status_code=404, detail="Note not found")
    return note


@router.delete("/{note_id}", status_code=204)
async def delete_note(
    note_id: str,
    db: Session = Depends(get_session),
    store: SecureNoteStore = Depends(get_note_store),
) -> Response:
    deleted = await asyncio.to_thread(store.delete, db, note_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Note not found")
    return Response(status_code=204)
