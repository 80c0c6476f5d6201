"""Status and conditions of HelmRelease resources."""

from .conditions import (
    condition_for_phase,
    get_condition,
    has_rolled_back,
    has_synced,
    new_condition,
)
from .status import StatusTracker
from .updater import StatusUpdater

__all__ = [
    "StatusTracker",
    "StatusUpdater",
    "condition_for_phase",
    "get_condition",
    "has_rolled_back",
    "has_synced",
    "new_condition",
]
