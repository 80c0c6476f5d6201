"""Library for releasing charts with helm.

The package manager is consumed through the `Client` interface. `HelmV3`
implements it by invoking the `helm` binary.
"""

from .client import (
    Client,
    Clients,
    GetOptions,
    HistoryOptions,
    RollbackOptions,
    UninstallOptions,
    UpgradeOptions,
)
from .release import Chart, Release, ReleaseStatus
from .v3 import HelmV3

__all__ = [
    "Chart",
    "Client",
    "Clients",
    "GetOptions",
    "HelmV3",
    "HistoryOptions",
    "Release",
    "ReleaseStatus",
    "RollbackOptions",
    "UninstallOptions",
    "UpgradeOptions",
]
