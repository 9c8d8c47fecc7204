"""Persistence for rendered offer letters.

Two backings share one interface:

- ``FilesystemArtifactStore`` writes ``{root}/offer-{recipient_id}.pdf``.
- ``InlineArtifactStore`` keeps the bytes on the recipient row
  (``Recipient.artifact_pdf``).

A deployment picks exactly one through ``ARTIFACT_BACKEND``.  ``delete()``
is a no-op for handles whose artifact is already gone, because cleanup runs
after partial failures.
"""
from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import ArtifactNotFound, StorageError
from app.db.models import Recipient
from app.db.repositories import RecipientRepository

logger = logging.getLogger(__name__)

Backend = Literal["filesystem", "inline"]


@dataclass(frozen=True)
class ArtifactHandle:
    """Reference to one stored artifact.

    ``location`` is the file path for the filesystem backing and ``None``
    for the inline backing, where the recipient id is the key.
    """

    backend: Backend
    recipient_id: str
    location: str | None = None


# ---------------------------------------------------------------------------
# Filesystem backing
# ---------------------------------------------------------------------------

class FilesystemArtifactStore:
    backend: Backend = "filesystem"

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def path_for(self, recipient_id: str) -> Path:
        safe_id = "".join(c for c in str(recipient_id) if c.isalnum() or c in "-_")
        if not safe_id:
            raise StorageError(f"Recipient id {recipient_id!r} is not usable as a file key")
        return self.root / f"offer-{safe_id}.pdf"

    def store(self, recipient_id: str, data: bytes) -> ArtifactHandle:
        path = self.path_for(recipient_id)
        tmp_name: str | None = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".offer-", suffix=".tmp")
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as exc:
            raise StorageError(f"Could not write artifact for {recipient_id}: {exc}") from exc
        finally:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)

        logger.info("Stored artifact for recipient %s (%d bytes)", recipient_id, len(data))
        return ArtifactHandle(backend=self.backend, recipient_id=str(recipient_id), location=str(path))

    def retrieve(self, handle: ArtifactHandle) -> bytes:
        if not handle.location:
            raise ArtifactNotFound(f"No artifact location for recipient {handle.recipient_id}")
        try:
            return Path(handle.location).read_bytes()
        except FileNotFoundError as exc:
            raise ArtifactNotFound(f"Artifact missing for recipient {handle.recipient_id}") from exc
        except OSError as exc:
            raise StorageError(f"Could not read artifact for {handle.recipient_id}: {exc}") from exc

    def delete(self, handle: ArtifactHandle) -> None:
        if not handle.location:
            return
        try:
            Path(handle.location).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Could not delete artifact for {handle.recipient_id}: {exc}") from exc
        logger.info("Deleted artifact for recipient %s", handle.recipient_id)

    def handle_for(self, recipient: Recipient) -> ArtifactHandle | None:
        if not recipient.artifact_path:
            return None
        return ArtifactHandle(backend=self.backend, recipient_id=str(recipient.id), location=recipient.artifact_path)


# ---------------------------------------------------------------------------
# Inline backing
# ---------------------------------------------------------------------------

class InlineArtifactStore:
    backend: Backend = "inline"

    def __init__(self, db: Session) -> None:
        self.recipients = RecipientRepository(db)

    def _recipient(self, recipient_id: str) -> Recipient | None:
        try:
            return self.recipients.find_recipient(recipient_id)
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not load recipient {recipient_id}: {exc}") from exc

    def store(self, recipient_id: str, data: bytes) -> ArtifactHandle:
        recipient = self._recipient(recipient_id)
        if recipient is None:
            raise StorageError(f"Recipient {recipient_id} not found for inline artifact")
        try:
            self.recipients.update(recipient, artifact_pdf=data)
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not write inline artifact for {recipient_id}: {exc}") from exc
        logger.info("Stored inline artifact for recipient %s (%d bytes)", recipient_id, len(data))
        return ArtifactHandle(backend=self.backend, recipient_id=str(recipient_id))

    def retrieve(self, handle: ArtifactHandle) -> bytes:
        recipient = self._recipient(handle.recipient_id)
        if recipient is None or not recipient.artifact_pdf:
            raise ArtifactNotFound(f"No inline artifact for recipient {handle.recipient_id}")
        return bytes(recipient.artifact_pdf)

    def delete(self, handle: ArtifactHandle) -> None:
        recipient = self._recipient(handle.recipient_id)
        if recipient is None or recipient.artifact_pdf is None:
            return
        try:
            self.recipients.update(recipient, artifact_pdf=None)
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not clear inline artifact for {handle.recipient_id}: {exc}") from exc
        logger.info("Cleared inline artifact for recipient %s", handle.recipient_id)

    def handle_for(self, recipient: Recipient) -> ArtifactHandle | None:
        if not recipient.artifact_pdf:
            return None
        return ArtifactHandle(backend=self.backend, recipient_id=str(recipient.id))


ArtifactStore = FilesystemArtifactStore | InlineArtifactStore


def build_artifact_store(backend: str, *, root: str | Path, db: Session) -> ArtifactStore:
    """Return the store for the configured *backend*."""
    if backend == "filesystem":
        return FilesystemArtifactStore(root)
    if backend == "inline":
        return InlineArtifactStore(db)
    raise ValueError(f"Unknown artifact backend {backend!r}; expected 'filesystem' or 'inline'")
