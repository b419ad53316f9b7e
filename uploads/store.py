"""
uploads/store.py -- Disk-backed store for user-uploaded files.

Validates size, extension and MIME type before anything touches the disk,
then writes the bytes under a collision-resistant name:

    <basename>_<unix-ms>_<random>.<ext>      e.g. avatar_1718000000000_k3j9x2p1q0.png

Every constraint violation raises core.errors.UploadError, which the error
classifier turns into a 400 response.

Security: stored names are built from the basename of the client-supplied
filename only, and every resolved path is checked to sit inside upload_dir,
so "../" tricks cannot escape the upload root.
"""

from __future__ import annotations

import logging
import secrets
import string
import time
from dataclasses import dataclass
from pathlib import Path, PurePath
from typing import Iterable, Optional

from core.errors import UploadError

logger = logging.getLogger("starterapi.uploads")

_DEFAULT_MAX_SIZE = 10 * 1024 * 1024  # 10 MB
_RANDOM_ALPHABET = string.ascii_lowercase + string.digits


@dataclass(frozen=True)
class StoredFile:
    original_name: str
    filename: str
    path: str
    size: int
    mimetype: str
    extension: str
    url: str


class FileStore:
    """Writes validated uploads under upload_dir.

    allowed_extensions / allowed_types of None mean "no restriction" for that
    dimension. Extensions are compared lowercase with the leading dot.
    """

    def __init__(
        self,
        upload_dir: str | Path = "uploads",
        max_size: int = _DEFAULT_MAX_SIZE,
        allowed_extensions: Optional[Iterable[str]] = None,
        allowed_types: Optional[Iterable[str]] = None,
        url_prefix: str = "/uploads",
    ) -> None:
        self.root = Path(upload_dir).resolve()
        self.max_size = max_size
        self.allowed_extensions = {e.lower() for e in allowed_extensions} if allowed_extensions is not None else None
        self.allowed_types = set(allowed_types) if allowed_types is not None else None
        self.url_prefix = url_prefix.rstrip("/")
        if not self.root.exists():
            self.root.mkdir(parents=True, exist_ok=True)
            logger.info("Created upload directory: %s", self.root)

    def validate(self, filename: str, content_type: str, size: int) -> str:
        """Check one upload against the store's constraints. Returns the lowercase extension."""
        if not filename or not PurePath(filename).name:
            raise UploadError("File upload failed", "Missing filename")
        if size > self.max_size:
            raise UploadError("File too large", f"{size} bytes exceeds limit of {self.max_size}")
        if self.allowed_types is not None and content_type not in self.allowed_types:
            raise UploadError("Invalid file type", f"File type {content_type} not allowed")
        extension = PurePath(filename).suffix.lower()
        if self.allowed_extensions is not None and extension not in self.allowed_extensions:
            raise UploadError("Invalid file type", f"File extension {extension or '(none)'} not allowed")
        return extension

    def save(
        self,
        filename: str,
        content_type: str,
        data: bytes,
        subdir: str = "",
        preserve_original_name: bool = False,
    ) -> StoredFile:
        """Validate and write data. Returns metadata for the stored file."""
        extension = self.validate(filename, content_type, len(data))
        original = PurePath(filename).name

        destination = self._inside_root(self.root / subdir) if subdir else self.root
        destination.mkdir(parents=True, exist_ok=True)

        stored_name = original if preserve_original_name else _unique_name(original)
        target = self._inside_root(destination / stored_name)
        target.write_bytes(data)

        relative = target.relative_to(self.root).as_posix()
        logger.info("Stored upload %s (%d bytes)", relative, len(data))
        return StoredFile(
            original_name=original,
            filename=stored_name,
            path=str(target),
            size=len(data),
            mimetype=content_type,
            extension=extension,
            url=f"{self.url_prefix}/{relative}",
        )

    def delete(self, relative_path: str) -> bool:
        """Remove a stored file. Returns False if it did not exist."""
        target = self._inside_root(self.root / relative_path)
        if not target.is_file():
            return False
        target.unlink()
        logger.info("Deleted upload %s", relative_path)
        return True

    def _inside_root(self, path: Path) -> Path:
        resolved = path.resolve()
        if resolved != self.root and self.root not in resolved.parents:
            raise UploadError("File upload failed", f"Path escapes upload directory: {path}")
        return resolved


def _unique_name(original: str) -> str:
    pure = PurePath(original)
    suffix = "".join(secrets.choice(_RANDOM_ALPHABET) for _ in range(10))
    return f"{pure.stem}_{int(time.time() * 1000)}_{suffix}{pure.suffix}"
