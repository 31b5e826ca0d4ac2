from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlmodel import Session, col, func, select, text

from kbvault.db import get_session
from kbvault.dependencies import get_passphrase_session
from kbvault.models.note import Note
from kbvault.passphrase_state import PassphraseSession

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health")
async def health(
    session: Session = Depends(get_session),
    passphrase: PassphraseSession = Depends(get_passphrase_session),
):
    db_status = "ok"
    encrypted_count: int | None = None
    plaintext_count: int | None = None
    try:
        session.exec(text("SELECT 1"))
        encrypted_count = session.exec(
            select(func.count()).select_from(Note).where(col(Note.content_encrypted).is_not(None))
        ).one()
        plaintext_count = session.exec(
            select(func.count()).select_from(Note).where(col(Note.content_encrypted).is_(None))
        ).one()
    except Exception as exc:
        db_status = f"error: {exc}"

    return {
        "status": "ok" if db_status == "ok" else "degraded",
        "database": db_status,
        "encryption_enabled": passphrase.is_enabled,
        "notes": {"encrypted": encrypted_count, "plaintext": plaintext_count},
    }
