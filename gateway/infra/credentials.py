"""
Credential Store

Persists the messaging session's authentication material as a directory of
files (one file per key, as the protocol adapters write them). The store
survives process restarts; clearing it forces a fresh QR pairing.

Methods are blocking filesystem calls. The lifecycle manager runs them
through ``asyncio.to_thread``.
"""

import logging
import os
import shutil
import tempfile
from pathlib import Path

from gateway.core.errors import CredentialCleanupFailed

logger = logging.getLogger(__name__)


class CredentialStore:
    """Directory-backed credential storage."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def ensure(self) -> Path:
        """Create the credential directory if it does not exist."""
        self.directory.mkdir(parents=True, exist_ok=True)
        return self.directory

    def exists(self) -> bool:
        """True when at least one credential file is stored."""
        return self.directory.is_dir() and any(self.directory.iterdir())

    def _path(self, name: str) -> Path:
        """Resolve a credential file name, rejecting path traversal."""
        path = (self.directory / name).resolve()
        if path.parent != self.directory.resolve():
            raise ValueError(f"Invalid credential file name: {name!r}")
        return path

    def load(self) -> dict[str, bytes]:
        """Read every stored credential file."""
        if not self.directory.is_dir():
            return {}
        return {
            entry.name: entry.read_bytes()
            for entry in sorted(self.directory.iterdir())
            if entry.is_file()
        }

    def save(self, name: str, data: bytes) -> None:
        """Atomically write one credential file."""
        self.ensure()
        target = self._path(name)
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp_path, target)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    def save_many(self, files: dict[str, bytes]) -> None:
        """Write several credential files."""
        for name, data in files.items():
            self.save(name, data)
        logger.debug(f"Stored {len(files)} credential file(s)")

    def clear(self) -> int:
        """
        Delete all stored credential material, keeping the directory.

        Returns:
            Number of entries removed

        Raises:
            CredentialCleanupFailed: if any entry could not be removed
        """
        if not self.directory.exists():
            return 0

        removed = 0
        try:
            for entry in list(self.directory.iterdir()):
                if entry.is_dir() and not entry.is_symlink():
                    shutil.rmtree(entry)
                else:
                    entry.unlink(missing_ok=True)
                removed += 1
        except OSError as e:
            raise CredentialCleanupFailed(f"{self.directory}: {e}") from e

        logger.info(f"Removed {removed} credential entries from {self.directory}")
        return removed
