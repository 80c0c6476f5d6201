"""Source controller for the chart sources of HelmReleases.

Git remotes are mirrored and polled for new commits, charts from chart
repositories are downloaded into a local cache.
"""

from .cache import SourceCache
from .controller import ChartSources
from .export import Export
from .git import GitChartSync, ResolvedChart
from .mirror import Mirror, Mirrors, MirrorStatus
from .repo import RepoChartSync

__all__ = [
    "ChartSources",
    "Export",
    "GitChartSync",
    "Mirror",
    "MirrorStatus",
    "Mirrors",
    "RepoChartSync",
    "ResolvedChart",
    "SourceCache",
]
