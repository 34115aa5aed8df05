"""Local filesystem tier for artifact binaries.

The local tier is the synchronous write path and the durability floor of the
artifact store: every artifact is written here before the remote tier is
attempted, and its URL is used whenever the remote upload fails.
"""

from __future__ import annotations

import logging
import os
import uuid
from pathlib import Path

logger = logging.getLogger(__name__)


class LocalTier:
    """Store artifact binaries as files named by their artifact filename.

    Attributes:
        root: Directory holding the binaries.
        url_prefix: URL path under which ``root`` is served.
    """

    def __init__(self, root: Path, url_prefix: str = "/files") -> None:
        self.root = Path(root)
        self.url_prefix = url_prefix.rstrip("/")
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, filename: str) -> Path:
        """Resolve the on-disk path for ``filename``.

        Raises:
            ValueError: If ``filename`` is empty or would escape ``root``.
        """
        if not filename or Path(filename).name != filename or filename in (".", ".."):
            raise ValueError(f"Invalid artifact filename: {filename!r}")
        return self.root / filename

    def url_for(self, filename: str) -> str:
        return f"{self.url_prefix}/{filename}"

    def write(self, filename: str, data: bytes) -> Path:
        """Write ``data`` to ``filename``, replacing any existing file.

        The bytes go to a uniquely named temporary file first and are then
        renamed into place, so a reader never observes a half-written binary
        and two concurrent writers never share a temporary file.

        Returns:
            Path of the written file.

        Raises:
            OSError: If the directory or file cannot be written.
        """
        target = self.path_for(filename)
        self.root.mkdir(parents=True, exist_ok=True)
        tmp_path = self.root / f".{filename}.{uuid.uuid4().hex}.tmp"
        try:
            with open(tmp_path, "wb") as handle:
                handle.write(data)
            os.replace(tmp_path, target)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()
        return target

    def read(self, filename: str) -> bytes:
        return self.path_for(filename).read_bytes()

    def delete(self, filename: str) -> bool:
        """Remove ``filename``.

        Returns:
            True if a file was removed, False if it did not exist.
        """
        path = self.path_for(filename)
        if not path.exists():
            return False
        path.unlink()
        return True
