"""Full-text search over note titles and the plaintext shadow field."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from sqlmodel import Session, text

from kbvault.db import store_errors

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 20

_TERM_RE = re.compile(r"\w+", re.UNICODE)


@dataclass(frozen=True, slots=True)
class SearchHit:
    note_id: str
    title: str
    snippet: str
    score: float  # bm25, lower is better


def build_match_query(query: str) -> str:
    """Turn free text into an FTS5 query of quoted terms joined by AND.

    Quoting each term means user punctuation never reaches the FTS5 parser.
    Returns "" when the query has no word characters.
    """
    terms = _TERM_RE.findall(query)
    return " AND ".join(f'"{t}"' for t in terms)


class SearchService:
    """Reads only notes_fts; ciphertext columns are never consulted."""

    def search(self, db: Session, query: str, limit: int = DEFAULT_LIMIT) -> list[SearchHit]:
        match = build_match_query(query)
        if not match:
            return []
        with store_errors(db):
            rows = db.exec(
                text(
                    "SELECT note_id, title, "
                    "snippet(notes_fts, 2, '[', ']', '...', 12) AS snip, "
                    "bm25(notes_fts) AS score "
                    "FROM notes_fts WHERE notes_fts MATCH :match "
                    "ORDER BY score LIMIT :limit"
                ).bindparams(match=match, limit=limit)
            ).all()
        logger.debug("Search returned %d hit(s)", len(rows))
        return [
            SearchHit(note_id=r[0], title=r[1], snippet=r[2], score=r[3])
            for r in rows
        ]
