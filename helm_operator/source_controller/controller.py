"""Chart sources of HelmReleases, from git or from a chart repository."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
import logging

from ..exceptions import PolicyError
from ..manifest import HelmRelease
from .git import GitChartSync, ResolvedChart
from .repo import RepoChartSync

__all__ = [
    "ChartSources",
]

_LOGGER = logging.getLogger(__name__)


class ChartSources:
    """Resolves the chart of a HelmRelease from whichever source it names."""

    def __init__(self, git_sync: GitChartSync, repo_sync: RepoChartSync) -> None:
        """Initialize ChartSources."""
        self._git_sync = git_sync
        self._repo_sync = repo_sync

    @asynccontextmanager
    async def checkout(
        self, release: HelmRelease
    ) -> AsyncGenerator[ResolvedChart, None]:
        """Resolve the chart, keeping its directory in place inside the context.

        Raises `ChartNotReadyError` while the source is still being fetched and
        `ChartUnavailableError` when the source can't produce the chart.
        """
        if release.chart.git is not None:
            chart = await self._git_sync.resolve(release)
        elif release.chart.repository is not None:
            chart = await self._repo_sync.resolve(release)
        else:
            raise PolicyError(
                f"HelmRelease {release.namespaced_name} has no chart source"
            )
        try:
            yield chart
        finally:
            chart.release()

    async def delete(self, release: HelmRelease) -> None:
        """Release the chart source of a deleted HelmRelease."""
        if release.chart.git is not None:
            await self._git_sync.delete(release)
