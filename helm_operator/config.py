"""Configuration objects for helm-operator."""

from dataclasses import dataclass, field
from pathlib import Path
import tempfile

DEFAULT_HELM_VERSION = "v3"


def _default_cache_dir() -> Path:
    return Path(tempfile.gettempdir()) / "helm-operator"


@dataclass
class GitConfig:
    """Configuration for the git mirrors backing chart sources."""

    timeout: float = 20.0
    """Seconds to wait for a single git fetch or clone."""

    poll_interval: float = 300.0
    """Seconds between polls of a git remote for new commits."""

    default_ref: str = "HEAD"
    """Ref followed when a chart source does not name one."""


@dataclass
class HelmControllerConfig:
    """Configuration for the HelmReleaseController."""

    log_diffs: bool = False
    """Log the divergence found when comparing a release to a dry run.

    This may expose secret values in the log.
    """

    update_deps: bool = True
    """Update chart dependencies before releasing a chart from git."""

    default_helm_version: str = DEFAULT_HELM_VERSION
    """Helm client used when a HelmRelease does not name one."""


@dataclass
class OperatorConfig:
    """Configuration for running the operator."""

    namespace: str | None = None
    """Only watch HelmReleases in this namespace, all namespaces if unset."""

    workers: int = 1
    """Number of releases reconciled concurrently."""

    charts_sync_interval: float = 180.0
    """Seconds between full resyncs of all HelmReleases."""

    status_update_interval: float = 10.0
    """Seconds between updates of the helm release status."""

    watch_interval: float = 10.0
    """Seconds between polls of the HelmRelease list for changes."""

    cache_dir: Path = field(default_factory=_default_cache_dir)
    """Directory holding git mirrors, exports and downloaded charts."""

    git: GitConfig = field(default_factory=GitConfig)
    helm: HelmControllerConfig = field(default_factory=HelmControllerConfig)
