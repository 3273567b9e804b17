"""File-backed key-value store."""

import logging
import os
import re
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


class LocalStorage:
    """Minimal key-value store: one UTF-8 file per key inside a directory."""

    def __init__(self, directory: str | Path) -> None:
        """Initialize storage rooted at directory (created lazily on first write)."""
        self._dir = Path(directory)

    @property
    def directory(self) -> Path:
        return self._dir

    def _path(self, key: str) -> Path:
        if not _KEY_PATTERN.match(key):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self._dir / key

    def get_item(self, key: str) -> str | None:
        """Return the stored value, or None if the key was never written.

        Raises:
            OSError: If the file cannot be read
            UnicodeDecodeError: If the file is not valid UTF-8
        """
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set_item(self, key: str, value: str) -> None:
        """Store value under key, replacing the previous value atomically.

        Raises:
            OSError: If the directory or file cannot be written
        """
        path = self._path(key)
        self._dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._dir, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug(f"[LocalStorage] Wrote {key} ({len(value)} chars)")

    def remove_item(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)
