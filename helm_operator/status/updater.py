"""Periodically mirrors the status of helm releases into HelmReleases."""

import asyncio
import logging

from ..exceptions import HelmOperatorException
from ..helm import Clients
from ..kube import ClusterClient
from .status import StatusTracker

__all__ = [
    "StatusUpdater",
]

_LOGGER = logging.getLogger(__name__)


class StatusUpdater:
    """Records the name and helm status of every release."""

    def __init__(
        self,
        cluster: ClusterClient,
        helm_clients: Clients,
        tracker: StatusTracker,
        interval: float,
        namespace: str | None = None,
    ) -> None:
        """Initialize StatusUpdater."""
        self._cluster = cluster
        self._helm_clients = helm_clients
        self._tracker = tracker
        self._interval = interval
        self._namespace = namespace

    async def run(self) -> None:
        """Update the status every interval until cancelled."""
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.update_all()
            except HelmOperatorException as err:
                _LOGGER.warning("Unable to update release status: %s", err)

    async def update_all(self) -> None:
        """Update the status of all releases once."""
        for release in await self._cluster.list_releases(self._namespace):
            # Releases that can't be inspected are reported by reconciliation
            try:
                client = self._helm_clients.load(release.helm_version)
                helm_release = await client.status(
                    release.release_name, release.release_namespace
                )
            except HelmOperatorException as err:
                _LOGGER.debug(
                    "Unable to get status for %s: %s", release.namespaced_name, err
                )
                continue
            if helm_release is None:
                continue
            try:
                await self._tracker.set_release_status(
                    release, release.release_name, str(helm_release.status)
                )
            except HelmOperatorException as err:
                _LOGGER.warning(
                    "Unable to update status for %s: %s", release.namespaced_name, err
                )
