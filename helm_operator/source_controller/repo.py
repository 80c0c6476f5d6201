"""Charts downloaded from helm chart repositories.

A chart version in a repository never changes, so each version is
downloaded once into the cache and reused by every release of it.
"""

import asyncio
import logging
from shutil import rmtree

from aiofiles.ospath import exists

from ..exceptions import ChartUnavailableError, HelmException
from ..helm import Clients
from ..manifest import HelmRelease
from .cache import SourceCache
from .git import ResolvedChart

__all__ = [
    "RepoChartSync",
]

_LOGGER = logging.getLogger(__name__)


class RepoChartSync:
    """Downloads the charts of HelmReleases with a repository chart source."""

    def __init__(self, cache: SourceCache, helm_clients: Clients) -> None:
        """Initialize RepoChartSync."""
        self._cache = cache
        self._helm_clients = helm_clients
        self._locks: dict[str, asyncio.Lock] = {}

    async def resolve(self, release: HelmRelease) -> ResolvedChart:
        """Return the chart of the release, downloading it if needed."""
        if (source := release.chart.repository) is None:
            raise ValueError(f"HelmRelease {release.namespaced_name} has no repo chart")
        chart_dir = self._cache.chart_dir(
            source.clean_repo_url, source.name, source.version
        )
        chart_path = chart_dir / source.name
        lock = self._locks.setdefault(str(chart_dir), asyncio.Lock())
        async with lock:
            if await exists(chart_path):
                _LOGGER.debug("Chart %s %s in cache", source.name, source.version)
                return ResolvedChart(
                    path=chart_path, revision=source.version, changed=False
                )
            download_dir = chart_dir.with_name(f"{chart_dir.name}.download")
            rmtree(download_dir, ignore_errors=True)
            download_dir.mkdir(parents=True)
            client = self._helm_clients.load(release.helm_version)
            _LOGGER.info(
                "Downloading chart %s %s from %s",
                source.name,
                source.version,
                source.clean_repo_url,
            )
            try:
                await client.pull(
                    source.clean_repo_url, source.name, source.version, download_dir
                )
            except HelmException as err:
                rmtree(download_dir, ignore_errors=True)
                raise ChartUnavailableError(
                    f"Unable to download chart {source.name} {source.version}: {err}"
                ) from err
            download_dir.rename(chart_dir)
        return ResolvedChart(path=chart_path, revision=source.version, changed=True)
