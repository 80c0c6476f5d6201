"""The control loop of the operator.

The operator polls the cluster for HelmReleases and queues those that were
added, changed or deleted. Workers take HelmReleases off the queue and hand
them to the controller. Alongside the workers the operator runs the chart
source loop, which queues HelmReleases whose chart changed in git, a
periodic resync of all HelmReleases and the release status updater.
"""

import asyncio
import logging

from .config import OperatorConfig
from .exceptions import (
    ChartNotReadyError,
    HelmOperatorException,
    PolicyError,
    QueueShutDownError,
)
from .helm import Clients
from .helm_controller import HelmReleaseController
from .helm_controller.metrics import ReleaseObserver, log_observation
from .kube import ClusterClient
from .manifest import HelmRelease
from .queue import ReleaseQueue
from .source_controller import (
    ChartSources,
    GitChartSync,
    Mirrors,
    RepoChartSync,
    SourceCache,
)
from .status import StatusTracker, StatusUpdater
from .task import TaskService, get_task_service

__all__ = [
    "HelmOperator",
]

_LOGGER = logging.getLogger(__name__)


def _split_key(key: str) -> tuple[str, str]:
    namespace, _, name = key.partition("/")
    return namespace, name


class HelmOperator:
    """Runs the loops that reconcile HelmReleases."""

    def __init__(
        self,
        config: OperatorConfig,
        cluster: ClusterClient,
        helm_clients: Clients,
        task_service: TaskService | None = None,
        observer: ReleaseObserver = log_observation,
    ) -> None:
        """Initialize HelmOperator."""
        self._config = config
        self._cluster = cluster
        self._task_service = task_service or get_task_service()
        self._queue = ReleaseQueue()
        self._known: dict[str, HelmRelease] = {}
        self._deleted: dict[str, HelmRelease] = {}
        self._cache = SourceCache(config.cache_dir)
        self._mirrors = Mirrors(self._cache, self._task_service)
        self._git_sync = GitChartSync(
            self._mirrors, self._cache, config.git, self._list_releases, self._queue.add
        )
        self._sources = ChartSources(
            self._git_sync, RepoChartSync(self._cache, helm_clients)
        )
        tracker = StatusTracker(cluster)
        self._controller = HelmReleaseController(
            cluster, helm_clients, self._sources, tracker, config.helm, observer
        )
        self._updater = StatusUpdater(
            cluster,
            helm_clients,
            tracker,
            config.status_update_interval,
            config.namespace,
        )

    @property
    def queue(self) -> ReleaseQueue:
        """The queue of HelmReleases waiting to be reconciled."""
        return self._queue

    @property
    def controller(self) -> HelmReleaseController:
        """The controller reconciling HelmReleases."""
        return self._controller

    async def _list_releases(self) -> list[HelmRelease]:
        return await self._cluster.list_releases(self._config.namespace)

    async def poll(self) -> None:
        """Queue HelmReleases that were added, changed or deleted since last poll."""
        releases = {r.namespaced_name: r for r in await self._list_releases()}
        for key, release in releases.items():
            previous = self._known.get(key)
            if previous is None or previous.generation != release.generation:
                _LOGGER.debug("HelmRelease %s changed", key)
                self._queue.add(key)
        for key in self._known.keys() - releases.keys():
            _LOGGER.debug("HelmRelease %s deleted", key)
            self._deleted[key] = self._known[key]
            self._queue.add(key)
        self._known = releases

    async def resync(self) -> None:
        """Refresh all chart sources and queue all HelmReleases."""
        _LOGGER.info("Resyncing all HelmReleases")
        await self._git_sync.sync_mirrors()
        for release in await self._list_releases():
            self._queue.add(release.namespaced_name)

    async def process(self, key: str) -> None:
        """Reconcile the HelmRelease, or uninstall it if it was deleted."""
        namespace, name = _split_key(key)
        release = await self._cluster.get_release(namespace, name)
        if release is None:
            previous = self._deleted.pop(key, None) or self._known.pop(key, None)
            if previous is None:
                _LOGGER.debug("HelmRelease %s no longer exists", key)
                return
            await self._controller.uninstall(previous)
            return
        self._deleted.pop(key, None)
        await self._controller.reconcile(release)

    async def _process_next(self) -> None:
        key = await self._queue.get()
        try:
            await self.process(key)
        except ChartNotReadyError:
            # Queued again by the chart source once it is ready
            self._queue.forget(key)
        except PolicyError as err:
            _LOGGER.warning("Unable to reconcile %s: %s", key, err)
            self._queue.forget(key)
        except HelmOperatorException as err:
            _LOGGER.warning(
                "Unable to reconcile %s (%d retries): %s",
                key,
                self._queue.num_requeues(key),
                err,
            )
            self._queue.add_rate_limited(key)
        except Exception:  # pylint: disable=broad-except
            _LOGGER.exception("Unexpected error reconciling %s", key)
            self._queue.add_rate_limited(key)
        else:
            self._queue.forget(key)
        finally:
            self._queue.done(key)

    async def _worker(self) -> None:
        while True:
            try:
                await self._process_next()
            except QueueShutDownError:
                return

    async def _watch(self) -> None:
        while True:
            try:
                await self.poll()
            except HelmOperatorException as err:
                _LOGGER.warning("Unable to list HelmReleases: %s", err)
            await asyncio.sleep(self._config.watch_interval)

    async def _resync(self) -> None:
        while True:
            await asyncio.sleep(self._config.charts_sync_interval)
            try:
                await self.resync()
            except HelmOperatorException as err:
                _LOGGER.warning("Unable to resync HelmReleases: %s", err)

    async def run(self, stop: asyncio.Event) -> None:
        """Run the operator until the stop event is set."""
        _LOGGER.info(
            "Starting helm-operator with %d workers in %s",
            self._config.workers,
            self._config.namespace or "all namespaces",
        )
        self._cache.clear_exports()
        create = self._task_service.create_background_task
        create(self._git_sync.run(), name="chart-sources")
        create(self._updater.run(), name="status-updater")
        create(self._watch(), name="watch")
        create(self._resync(), name="resync")
        for i in range(self._config.workers):
            create(self._worker(), name=f"worker-{i}")
        try:
            await stop.wait()
        finally:
            _LOGGER.info("Stopping helm-operator")
            self._queue.shut_down()
            await self._task_service.shutdown()
            await self._git_sync.shutdown()
            await self._mirrors.stop_all()
