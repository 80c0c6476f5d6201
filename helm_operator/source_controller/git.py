"""Tracks the git chart source of every HelmRelease.

Each HelmRelease with a git chart source has a source reference: the mirror
and ref it follows, the head commit last seen for that ref and an export of
the chart at the commit it last changed. A new head only produces a new
export when one of the commits since the last seen head touches the chart
path, so releases are not upgraded for unrelated commits to a repository.

Resolution happens in two ways. A reconciliation pulls the chart with
`resolve`, and the `run` loop pushes changes: whenever a mirror signals new
commits every release using it is brought up to date and enqueued for
reconciliation if its chart changed.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
import logging
from pathlib import Path

from ..config import GitConfig
from ..exceptions import (
    ChartNotReadyError,
    ChartUnavailableError,
    GitError,
    HelmOperatorException,
)
from ..manifest import GitChartSource, HelmRelease
from .cache import SourceCache
from .export import Export
from .mirror import Mirror, Mirrors, MirrorStatus

__all__ = [
    "GitChartSync",
    "ResolvedChart",
]

_LOGGER = logging.getLogger(__name__)


@dataclass
class ResolvedChart:
    """A chart ready to be released.

    The chart directory is guaranteed to exist until `release` is called.
    """

    path: Path
    """The directory of the chart."""

    revision: str
    """The commit or version the chart was resolved at."""

    changed: bool
    """Whether the chart changed since it was last resolved."""

    export: Export | None = None

    def release(self) -> None:
        """Give up the use of the chart directory."""
        if self.export is not None:
            self.export.release()
            self.export = None


@dataclass
class SourceRef:
    """The state of the git chart source of one HelmRelease."""

    remote: str
    """The remote, also the id of its mirror."""

    ref: str
    """The ref followed in the remote."""

    head: str | None = None
    """The commit of the ref when last synced."""

    export: Export | None = None
    """Working copy at the commit the chart last changed."""

    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)


class GitChartSync:
    """Keeps the git chart sources of HelmReleases up to date."""

    def __init__(
        self,
        mirrors: Mirrors,
        cache: SourceCache,
        config: GitConfig,
        lister: Callable[[], Awaitable[list[HelmRelease]]],
        enqueue: Callable[[str], None],
    ) -> None:
        """Initialize GitChartSync.

        The lister returns the current HelmReleases and enqueue schedules the
        HelmRelease with the namespaced name for reconciliation.
        """
        self._mirrors = mirrors
        self._cache = cache
        self._config = config
        self._lister = lister
        self._enqueue = enqueue
        self._sources: dict[str, SourceRef] = {}

    def _git_source(self, release: HelmRelease) -> GitChartSource:
        if (source := release.chart.git) is None:
            raise ValueError(f"HelmRelease {release.namespaced_name} has no git chart")
        return source

    def _ensure_mirror(self, source: GitChartSource) -> bool:
        return self._mirrors.ensure(
            source.git_url, self._config.poll_interval, self._config.timeout
        )

    async def _source_ref(self, release: HelmRelease) -> SourceRef:
        """Return the source reference of the release, replacing a stale one."""
        source = self._git_source(release)
        ref = source.ref_or_default(self._config.default_ref)
        key = release.namespaced_name
        while (existing := self._sources.get(key)) is not None:
            if existing.remote == source.git_url and existing.ref == ref:
                return existing
            _LOGGER.info("Chart source of %s changed to %s", key, source.git_url)
            await self._drop(key, keep_remote=source.git_url)
        source_ref = SourceRef(remote=source.git_url, ref=ref)
        self._sources[key] = source_ref
        return source_ref

    async def _sync(self, source_ref: SourceRef, mirror: Mirror, path: str) -> bool:
        """Bring the source reference up to date with the mirror.

        Must be called with the lock of the source reference held. Returns
        True when a new export was created.
        """
        try:
            head = await mirror.revision(source_ref.ref)
        except GitError as err:
            raise ChartUnavailableError(str(err)) from err
        if source_ref.export is not None:
            if head == source_ref.head:
                return False
            try:
                commits = await mirror.commits_between(
                    str(source_ref.head), head, path
                )
            except GitError as err:
                _LOGGER.debug("Exporting %s, unable to compare: %s", head, err)
                commits = [head]
            if not commits:
                _LOGGER.debug(
                    "No changes to %s in %s..%s", path, source_ref.head, head
                )
                source_ref.head = head
                return False
        try:
            export = await mirror.export(
                head, self._cache.new_export_dir(source_ref.remote)
            )
        except GitError as err:
            raise ChartUnavailableError(str(err)) from err
        previous, source_ref.export = source_ref.export, export
        source_ref.head = head
        if previous is not None:
            previous.retire()
        return True

    async def resolve(self, release: HelmRelease) -> ResolvedChart:
        """Return the chart of the release at the head of its ref.

        The caller must `release` the returned chart when done with it.
        """
        source = self._git_source(release)
        if (mirror := self._mirrors.get(source.git_url)) is None:
            self._ensure_mirror(source)
            raise ChartNotReadyError(f"git repo {source.git_url} not mirrored yet")
        if mirror.status != MirrorStatus.READY:
            raise ChartNotReadyError(mirror.status_message())
        source_ref = await self._source_ref(release)
        async with source_ref.lock:
            changed = await self._sync(source_ref, mirror, source.path)
            export = source_ref.export
            if export is None:
                raise ChartUnavailableError(f"No export for {source.git_url}")
            export.acquire()
        return ResolvedChart(
            path=export.path / source.path,
            revision=export.revision,
            changed=changed,
            export=export,
        )

    async def mirror_changed(self, mirror_id: str) -> None:
        """Sync the sources of all releases using the mirror, enqueueing changes."""
        releases = [
            release
            for release in await self._lister()
            if release.chart.git is not None
            and release.chart.git.git_url == mirror_id
        ]
        if (mirror := self._mirrors.get(mirror_id)) is None:
            for release in releases:
                self._ensure_mirror(self._git_source(release))
            return
        if mirror.status != MirrorStatus.READY:
            return
        for release in releases:
            source_ref = await self._source_ref(release)
            try:
                async with source_ref.lock:
                    changed = await self._sync(
                        source_ref, mirror, self._git_source(release).path
                    )
            except ChartUnavailableError as err:
                _LOGGER.warning(
                    "Unable to sync chart of %s: %s", release.namespaced_name, err
                )
                continue
            if changed:
                _LOGGER.info(
                    "Chart of %s changed at %s",
                    release.namespaced_name,
                    source_ref.head,
                )
                self._enqueue(release.namespaced_name)

    async def run(self) -> None:
        """Process mirror changes until cancelled."""
        while True:
            for mirror_id in await self._mirrors.changes():
                try:
                    await self.mirror_changed(mirror_id)
                except HelmOperatorException as err:
                    _LOGGER.warning(
                        "Unable to process changes of %s: %s", mirror_id, err
                    )

    async def sync_mirrors(self) -> None:
        """Refresh all mirrors now."""
        for err in await self._mirrors.refresh_all(self._config.timeout):
            _LOGGER.warning("Unable to refresh mirror: %s", err)

    async def _drop(
        self, key: str, keep_remote: str | None = None
    ) -> SourceRef | None:
        if (source_ref := self._sources.pop(key, None)) is None:
            return None
        async with source_ref.lock:
            if source_ref.export is not None:
                source_ref.export.retire()
                source_ref.export = None
        if source_ref.remote == keep_remote:
            return source_ref
        if not any(s.remote == source_ref.remote for s in self._sources.values()):
            await self._mirrors.stop(source_ref.remote)
        return source_ref

    async def shutdown(self) -> None:
        """Retire the exports of all sources."""
        sources, self._sources = self._sources, {}
        for source_ref in sources.values():
            async with source_ref.lock:
                if source_ref.export is not None:
                    source_ref.export.retire()
                    source_ref.export = None

    async def delete(self, release: HelmRelease) -> bool:
        """Forget the source of a deleted release.

        The mirror is stopped when no other release uses it. Returns True if
        the release had a source.
        """
        return await self._drop(release.namespaced_name) is not None
