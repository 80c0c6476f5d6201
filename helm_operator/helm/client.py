"""Interface for the package manager used to release charts.

The controllers talk to helm through a `Client`, one per supported helm
version. `Clients` holds the available clients keyed by their version tag
so that a HelmRelease can select the one it was written for.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
import logging
from pathlib import Path
from typing import Any

from ..exceptions import PolicyError
from ..manifest import DEFAULT_MAX_HISTORY, DEFAULT_TIMEOUT
from .release import Release

__all__ = [
    "Client",
    "Clients",
    "GetOptions",
    "HistoryOptions",
    "RollbackOptions",
    "UninstallOptions",
    "UpgradeOptions",
]

_LOGGER = logging.getLogger(__name__)


@dataclass
class UpgradeOptions:
    """Options for installing or upgrading a release."""

    namespace: str
    """The namespace of the release."""

    install: bool = False
    """Install the release when it does not exist."""

    dry_run: bool = False
    """Simulate the upgrade and return the release it would create."""

    timeout: int = DEFAULT_TIMEOUT
    """Seconds to wait for the operation."""

    wait: bool = False
    """Wait for the release resources to become ready."""

    force: bool = False
    """Force resource updates through delete and recreate."""

    reset_values: bool = False
    """Reset the values to the ones built into the chart."""

    skip_crds: bool = False
    """Do not install the CRDs of the chart."""

    max_history: int = DEFAULT_MAX_HISTORY
    """Maximum number of revisions kept for the release."""


@dataclass
class RollbackOptions:
    """Options for rolling back a release."""

    namespace: str
    version: int | None = None
    """The revision to roll back to, the previous one if unset."""

    timeout: int = DEFAULT_TIMEOUT
    wait: bool = False
    disable_hooks: bool = False
    recreate: bool = False
    force: bool = False


@dataclass
class UninstallOptions:
    """Options for uninstalling a release."""

    namespace: str
    timeout: int = DEFAULT_TIMEOUT
    keep_history: bool = False
    disable_hooks: bool = False


@dataclass
class HistoryOptions:
    """Options for listing the revisions of a release."""

    namespace: str
    max: int = DEFAULT_MAX_HISTORY


@dataclass
class GetOptions:
    """Options for getting a revision of a release."""

    namespace: str
    version: int | None = None
    """The revision to get, the latest if unset."""


class Client(ABC):
    """A helm client for a specific helm version."""

    version: str

    @abstractmethod
    async def status(self, release_name: str, namespace: str) -> Release | None:
        """Return the latest revision of the release or None if not found."""

    @abstractmethod
    async def get(self, release_name: str, opts: GetOptions) -> Release | None:
        """Return a revision of the release or None if not found."""

    @abstractmethod
    async def upgrade_from_path(
        self,
        chart_path: Path,
        release_name: str,
        values: dict[str, Any],
        opts: UpgradeOptions,
    ) -> Release:
        """Install or upgrade the release from the chart at the local path."""

    @abstractmethod
    async def rollback(self, release_name: str, opts: RollbackOptions) -> Release:
        """Roll back the release and return the new revision."""

    @abstractmethod
    async def uninstall(self, release_name: str, opts: UninstallOptions) -> None:
        """Uninstall the release."""

    @abstractmethod
    async def history(self, release_name: str, opts: HistoryOptions) -> list[Release]:
        """Return the revisions of the release, newest first."""

    @abstractmethod
    async def dependency_update(self, chart_path: Path) -> None:
        """Download the dependencies of the chart at the local path."""

    @abstractmethod
    async def pull(
        self, repo_url: str, chart_name: str, version: str, dest: Path
    ) -> Path:
        """Download and unpack a chart from a repository, returning its path."""


class Clients:
    """The helm clients available to the operator, keyed by version."""

    def __init__(self, default_version: str) -> None:
        """Initialize Clients."""
        self._clients: dict[str, Client] = {}
        self._default_version = default_version

    def add(self, client: Client) -> None:
        """Register a client for its version."""
        self._clients[client.version] = client

    def load(self, version: str | None = None) -> Client:
        """Return the client for the version or the default version."""
        version = version or self._default_version
        if (client := self._clients.get(version)) is None:
            raise PolicyError(f"Unsupported helm version '{version}'")
        return client
