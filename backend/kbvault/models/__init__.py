from __future__ import annotations

from kbvault.models.note import Note  # noqa: F401
from kbvault.models.settings import EncryptionSettings  # noqa: F401
from kbvault.models.backup import BackupRecord  # noqa: F401
