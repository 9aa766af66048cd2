"""Local-disk storage for task and project attachments."""
import logging
import os
import re
import secrets
import time
from pathlib import Path
from typing import BinaryIO, Optional

from .errors import ValidationError

logger = logging.getLogger("taskboard-core.storage")

ALLOWED_MIME_TYPES = frozenset({
    "image/jpeg",
    "image/png",
    "image/gif",
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "text/plain",
    "text/csv",
    "application/zip",
    "application/x-rar-compressed",
})

_EXTENSION = re.compile(r"^\.[A-Za-z0-9]{1,10}$")
_CHUNK_SIZE = 64 * 1024


class LocalFileStorage:
    """
    Stores uploaded files under a single directory.

    Stored names follow ``{field}-{millis}-{random}{ext}`` and never reuse
    the client-supplied name, so they are safe to use as path components.
    """

    def __init__(self, root: str, max_file_size: int, allowed_types: frozenset = ALLOWED_MIME_TYPES):
        self.root = Path(root)
        self.max_file_size = max_file_size
        self.allowed_types = allowed_types

    def _generate_name(self, field: str, original_name: str) -> str:
        ext = os.path.splitext(original_name or "")[1]
        if not _EXTENSION.match(ext):
            ext = ""
        return f"{field}-{int(time.time() * 1000)}-{secrets.randbelow(10**9)}{ext.lower()}"

    def check_type(self, mime_type: Optional[str]) -> None:
        if mime_type not in self.allowed_types:
            raise ValidationError("Invalid file type. Only images, documents, and archives are allowed.")

    def save(self, stream: BinaryIO, original_name: str, mime_type: Optional[str], field: str = "files") -> dict:
        """
        Copy an upload stream to disk.

        Returns:
            Dict with filename, original_name, path, size and mime_type

        Raises:
            ValidationError: Disallowed type or file larger than max_file_size
        """
        self.check_type(mime_type)
        self.root.mkdir(parents=True, exist_ok=True)

        filename = self._generate_name(field, original_name)
        path = self.root / filename
        size = 0
        with open(path, "wb") as out:
            while True:
                chunk = stream.read(_CHUNK_SIZE)
                if not chunk:
                    break
                size += len(chunk)
                if size > self.max_file_size:
                    break
                out.write(chunk)

        if size > self.max_file_size:
            self.remove(str(path))
            limit_mb = self.max_file_size // (1024 * 1024)
            raise ValidationError(f"File too large. Maximum file size is {limit_mb}MB.")

        logger.debug(f"Stored upload {original_name!r} as {filename} ({size} bytes)")
        return {
            "filename": filename,
            "original_name": original_name or filename,
            "path": str(path),
            "size": size,
            "mime_type": mime_type,
        }

    def remove(self, path: str) -> None:
        """Delete a stored file if it still exists."""
        try:
            os.remove(path)
        except FileNotFoundError:
            logger.debug(f"Stored file already gone: {path}")

    def remove_all(self, stored_files: list[dict]) -> None:
        for stored in stored_files:
            self.remove(stored["path"])

    def exists(self, path: str) -> bool:
        return os.path.isfile(path)

