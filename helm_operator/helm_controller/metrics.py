"""Observations of the duration and outcome of release actions."""

from collections.abc import Callable
from dataclasses import dataclass
import logging

__all__ = [
    "ReleaseObservation",
    "ReleaseObserver",
    "log_observation",
]

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReleaseObservation:
    """The outcome of one action performed against a release."""

    action: str
    dry_run: bool
    success: bool
    namespace: str
    release_name: str
    duration: float
    """Seconds the action took."""


ReleaseObserver = Callable[[ReleaseObservation], None]


def log_observation(observation: ReleaseObservation) -> None:
    """Report the observation in the log."""
    _LOGGER.debug(
        "Release action=%s dry_run=%s success=%s namespace=%s release=%s took %.3fs",
        observation.action,
        observation.dry_run,
        observation.success,
        observation.namespace,
        observation.release_name,
        observation.duration,
    )
