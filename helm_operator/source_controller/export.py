"""Working copies of a git mirror checked out at a commit."""

import logging
from pathlib import Path
from shutil import rmtree

__all__ = [
    "Export",
]

_LOGGER = logging.getLogger(__name__)


class Export:
    """A working copy checked out at a revision.

    An export is shared by every reader that resolved it. Readers `acquire`
    it before use and `release` it after. Once an export has been superseded
    by a newer one it is `retire`d and its directory is removed as soon as the
    last reader releases it.
    """

    def __init__(self, path: Path, revision: str) -> None:
        """Initialize Export."""
        self._path = path
        self._revision = revision
        self._readers = 0
        self._retired = False
        self._cleaned = False

    @property
    def path(self) -> Path:
        """The root of the working copy."""
        return self._path

    @property
    def revision(self) -> str:
        """The commit the working copy is checked out at."""
        return self._revision

    @property
    def cleaned(self) -> bool:
        """Whether the working copy has been removed."""
        return self._cleaned

    def acquire(self) -> None:
        """Register a reader of the export."""
        if self._cleaned:
            raise ValueError(f"Export {self._path} has been cleaned")
        self._readers += 1

    def release(self) -> None:
        """Unregister a reader of the export."""
        self._readers -= 1
        self._maybe_clean()

    def retire(self) -> None:
        """Mark the export as superseded."""
        self._retired = True
        self._maybe_clean()

    def _maybe_clean(self) -> None:
        if not self._retired or self._readers > 0 or self._cleaned:
            return
        _LOGGER.debug("Cleaning up export %s at %s", self._path, self._revision)
        rmtree(self._path, ignore_errors=True)
        self._cleaned = True

    def __repr__(self) -> str:
        """Return a debug representation."""
        return f"Export({self._path}, {self._revision}, readers={self._readers})"
