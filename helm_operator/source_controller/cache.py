"""Directory layout of the chart source cache.

The cache holds bare git mirrors, exported working copies of charts at a
commit and charts downloaded from chart repositories. Each entry lives in a
directory named after a readable slug of its URL and a short hash, e.g.
`<cache>/mirrors/podinfo/ab1234567890abcd`.
"""

import hashlib
import logging
from pathlib import Path
from shutil import rmtree
import tempfile
from urllib.parse import urlparse

from slugify import slugify

from ..exceptions import GitError

__all__ = [
    "SourceCache",
]

_LOGGER = logging.getLogger(__name__)

_MIRRORS = "mirrors"
_EXPORTS = "exports"
_CHARTS = "charts"


def _slugify_url(url: str) -> str:
    """Return a readable name for the repository or chart at the URL."""
    parsed = urlparse(url)
    path = parsed.path
    # SSH style remotes like git@github.com:user/repo.git
    if not parsed.scheme and "@" in url and ":" in url:
        path = url.split(":", 1)[1]
    path = path.rstrip("/")
    if path.endswith(".git"):
        path = path[:-4]
    slug = slugify(path.split("/")[-1], max_length=50, lowercase=True, separator="-")
    return slug or slugify(parsed.netloc or url, max_length=50) or "repo"


def _hash(*parts: str) -> str:
    cache_key = hashlib.sha256()
    for part in parts:
        cache_key.update(part.encode("utf-8"))
    return cache_key.hexdigest()[:16]


class SourceCache:
    """Paths for cached chart sources below a base directory."""

    def __init__(self, base_dir: Path) -> None:
        """Initialize SourceCache."""
        self._base_dir = base_dir

    @property
    def base_dir(self) -> Path:
        """The directory holding all cached sources."""
        return self._base_dir

    def _mkdir(self, path: Path) -> Path:
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as err:
            raise GitError(f"Failed to create cache directory {path}: {err}") from err
        return path

    def mirror_path(self, remote: str) -> Path:
        """Return the path of the bare mirror of the remote.

        The directory itself is not created so that it can be cloned into.
        """
        parent = self._mkdir(self._base_dir / _MIRRORS / _slugify_url(remote))
        return parent / _hash(remote)

    def new_export_dir(self, remote: str) -> Path:
        """Create and return a new unique directory for an export."""
        parent = self._mkdir(self._base_dir / _EXPORTS / _slugify_url(remote))
        return Path(tempfile.mkdtemp(prefix=f"{_hash(remote)}-", dir=parent))

    def clear_exports(self) -> None:
        """Remove the exports left behind by an earlier run."""
        path = self._base_dir / _EXPORTS
        if not path.exists():
            return
        _LOGGER.debug("Removing stale exports in %s", path)
        rmtree(path, ignore_errors=True)

    def chart_dir(self, repo_url: str, chart_name: str, version: str) -> Path:
        """Return the directory a repository chart version is downloaded to."""
        return (
            self._base_dir
            / _CHARTS
            / _slugify_url(repo_url)
            / _hash(repo_url, chart_name, version)
        )
