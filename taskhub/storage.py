"""
taskhub/storage.py

Attachment storage backends.

Both backends implement the same capability set:
    store(stream, filename, content_type) -> StoredObject
    open(reference)                       -> iterator of bytes
    delete(reference)                     -> bool

DiskStorage keeps files under UPLOAD_DIR with a random name plus the original
extension. DatabaseStorage splits files into fixed-size chunks in the
stored_files / stored_file_chunks tables. One deployment uses exactly one of
them (ATTACHMENT_STORAGE); attachments remember which one wrote them.

Size limits are enforced while streaming: an oversized upload is removed (disk)
or rolled back (database) before UploadRejected is raised, so a rejected upload
never leaves bytes behind.
"""

from __future__ import annotations

import re
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, BinaryIO, ClassVar, Dict, Iterator, Optional

from sqlalchemy.orm import sessionmaker

from taskhub.config import ALLOWED_MIME_TYPES, IS_DEV, MAX_UPLOAD_BYTES
from taskhub.db import session_scope
from taskhub.models import StoredFile, StoredFileChunk, utc_now

READ_CHUNK_SIZE = 1024 * 1024
DB_CHUNK_SIZE = 255 * 1024

_DISK_REFERENCE = re.compile(r"^[0-9a-f]{32}(\.[A-Za-z0-9]{1,10})?$")
_DB_REFERENCE = re.compile(r"^[0-9a-f]{32}$")


class StorageError(Exception):
    """Base class for attachment storage failures."""


class UploadRejected(StorageError):
    """Upload refused because of its size or content type."""


class StoredObjectNotFound(StorageError):
    """No stored payload exists for the reference."""


class StorageBackendMismatch(StorageError):
    """Attachment was written by a different backend than the active one."""


@dataclass(frozen=True)
class StoredObject:
    reference: str
    filename: str
    content_type: str
    size: int


def validate_content_type(content_type: Optional[str], allowed: Optional[set] = None) -> str:
    """
    Check an upload's MIME type against the allow-list.

    Raises:
        UploadRejected: If the type is missing or not allowed
    """
    allowed = ALLOWED_MIME_TYPES if allowed is None else allowed
    normalized = (content_type or "").split(";")[0].strip().lower()
    if normalized not in allowed:
        raise UploadRejected(f"File type not allowed: {content_type or 'unknown'}")
    return normalized


def _safe_extension(filename: str) -> str:
    suffix = Path(filename or "").suffix.lower()
    if re.fullmatch(r"\.[a-z0-9]{1,10}", suffix):
        return suffix
    return ""


class AttachmentStorage(ABC):
    """Common interface and size-limited streaming for all backends."""

    name: ClassVar[str]

    def __init__(self, max_bytes: int = MAX_UPLOAD_BYTES):
        self.max_bytes = max_bytes

    def _read_limited(self, stream: BinaryIO) -> Iterator[bytes]:
        """Yield chunks from ``stream``, raising UploadRejected once max_bytes is exceeded."""
        total = 0
        while True:
            chunk = stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            total += len(chunk)
            if total > self.max_bytes:
                raise UploadRejected(
                    f"File too large. Maximum size: {self.max_bytes / (1024 * 1024):.0f}MB"
                )
            yield chunk

    @abstractmethod
    def store(
        self,
        stream: BinaryIO,
        filename: str,
        content_type: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> StoredObject:
        ...

    @abstractmethod
    def open(self, reference: str) -> Iterator[bytes]:
        """Return an iterator over the payload. Raises StoredObjectNotFound eagerly."""

    @abstractmethod
    def delete(self, reference: str) -> bool:
        """Remove the payload. Returns False when nothing was stored under ``reference``."""

    @abstractmethod
    def exists(self, reference: str) -> bool:
        ...

    def close(self) -> None:
        pass


class DiskStorage(AttachmentStorage):
    """Files on local disk; the reference is the generated file name."""

    name = "disk"

    def __init__(self, root: str | Path, max_bytes: int = MAX_UPLOAD_BYTES):
        super().__init__(max_bytes)
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _path_for(self, reference: str) -> Path:
        # Paths are rebuilt from generated names only, never from client input
        if not _DISK_REFERENCE.match(reference or ""):
            raise StoredObjectNotFound(f"Invalid file reference: {reference!r}")
        return self.root / reference

    def store(self, stream, filename, content_type, metadata=None) -> StoredObject:
        reference = secrets.token_hex(16) + _safe_extension(filename)
        path = self.root / reference
        size = 0

        try:
            with open(path, "wb") as f:
                for chunk in self._read_limited(stream):
                    f.write(chunk)
                    size += len(chunk)
        except BaseException:
            path.unlink(missing_ok=True)
            raise

        if IS_DEV:
            print(f"[STORAGE] disk: stored {reference} ({size} bytes)")
        return StoredObject(reference=reference, filename=filename, content_type=content_type, size=size)

    def open(self, reference: str) -> Iterator[bytes]:
        path = self._path_for(reference)
        if not path.is_file():
            raise StoredObjectNotFound(f"File not found: {reference}")
        return self._iter_file(path)

    @staticmethod
    def _iter_file(path: Path) -> Iterator[bytes]:
        with open(path, "rb") as f:
            while True:
                chunk = f.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                yield chunk

    def delete(self, reference: str) -> bool:
        try:
            path = self._path_for(reference)
        except StoredObjectNotFound:
            return False
        if not path.exists():
            return False
        path.unlink()
        if IS_DEV:
            print(f"[STORAGE] disk: deleted {reference}")
        return True

    def exists(self, reference: str) -> bool:
        try:
            return self._path_for(reference).is_file()
        except StoredObjectNotFound:
            return False


class DatabaseStorage(AttachmentStorage):
    """Chunked files inside the database; the reference is the generated file id."""

    name = "database"

    def __init__(self, session_factory: sessionmaker, max_bytes: int = MAX_UPLOAD_BYTES, chunk_size: int = DB_CHUNK_SIZE):
        super().__init__(max_bytes)
        self.session_factory = session_factory
        self.chunk_size = chunk_size

    def _rechunk(self, stream: BinaryIO) -> Iterator[bytes]:
        buffer = b""
        for piece in self._read_limited(stream):
            buffer += piece
            while len(buffer) >= self.chunk_size:
                yield buffer[: self.chunk_size]
                buffer = buffer[self.chunk_size :]
        if buffer:
            yield buffer

    def store(self, stream, filename, content_type, metadata=None) -> StoredObject:
        file_id = secrets.token_hex(16)
        size = 0
        # Rolled back as a whole if the stream exceeds max_bytes
        with session_scope(self.session_factory) as db:
            stored = StoredFile(
                id=file_id,
                filename=filename,
                content_type=content_type,
                length=0,
                chunk_size=self.chunk_size,
                upload_date=utc_now(),
                file_metadata=dict(metadata or {}),
            )
            db.add(stored)
            for n, data in enumerate(self._rechunk(stream)):
                db.add(StoredFileChunk(file_id=file_id, n=n, data=data))
                size += len(data)
            stored.length = size

        if IS_DEV:
            print(f"[STORAGE] database: stored {file_id} ({size} bytes)")
        return StoredObject(reference=file_id, filename=filename, content_type=content_type, size=size)

    def open(self, reference: str) -> Iterator[bytes]:
        if not _DB_REFERENCE.match(reference or ""):
            raise StoredObjectNotFound(f"Invalid file reference: {reference!r}")
        db = self.session_factory()
        try:
            stored = db.get(StoredFile, reference)
            if stored is None:
                raise StoredObjectNotFound(f"File not found: {reference}")
            chunk_count = db.query(StoredFileChunk).filter(StoredFileChunk.file_id == reference).count()
        finally:
            db.close()
        return self._iter_chunks(reference, chunk_count)

    def _iter_chunks(self, reference: str, chunk_count: int) -> Iterator[bytes]:
        db = self.session_factory()
        try:
            for n in range(chunk_count):
                chunk = (
                    db.query(StoredFileChunk.data)
                    .filter(StoredFileChunk.file_id == reference, StoredFileChunk.n == n)
                    .scalar()
                )
                if chunk is None:
                    raise StoredObjectNotFound(f"Missing chunk {n} of {reference}")
                yield chunk
        finally:
            db.close()

    def delete(self, reference: str) -> bool:
        with session_scope(self.session_factory) as db:
            db.query(StoredFileChunk).filter(StoredFileChunk.file_id == reference).delete(synchronize_session=False)
            removed = db.query(StoredFile).filter(StoredFile.id == reference).delete(synchronize_session=False)

        if IS_DEV and removed:
            print(f"[STORAGE] database: deleted {reference}")
        return bool(removed)

    def exists(self, reference: str) -> bool:
        db = self.session_factory()
        try:
            return db.get(StoredFile, reference) is not None
        finally:
            db.close()


def build_storage(
    kind: str,
    *,
    upload_dir: str | Path,
    session_factory: sessionmaker,
    max_bytes: int = MAX_UPLOAD_BYTES,
) -> AttachmentStorage:
    """Construct the configured backend."""
    if kind == DiskStorage.name:
        return DiskStorage(upload_dir, max_bytes=max_bytes)
    if kind == DatabaseStorage.name:
        return DatabaseStorage(session_factory, max_bytes=max_bytes)
    raise ValueError(f"Unknown attachment storage: {kind!r}")
