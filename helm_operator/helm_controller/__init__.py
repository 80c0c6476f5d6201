"""Helm controller package.

This package contains the implementation of the HelmRelease controller,
which manages the reconciliation of HelmReleases with their helm releases.
"""

from .controller import Action, HelmReleaseController, Plan
from .metrics import ReleaseObservation, log_observation

__all__ = [
    "Action",
    "HelmReleaseController",
    "Plan",
    "ReleaseObservation",
    "log_observation",
]
