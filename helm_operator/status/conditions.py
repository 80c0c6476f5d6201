"""Conditions recorded in the status of a HelmRelease.

These are pure functions over `HelmReleaseStatus`; writing the result to
the cluster is done by the `StatusTracker`.
"""

from datetime import datetime, timezone
import logging

from ..manifest import (
    Condition,
    ConditionStatus,
    ConditionType,
    HelmRelease,
    HelmReleaseStatus,
    Phase,
)

__all__ = [
    "condition_for_phase",
    "get_condition",
    "has_rolled_back",
    "has_synced",
    "new_condition",
    "now_timestamp",
    "set_condition",
]

_LOGGER = logging.getLogger(__name__)

_TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

# Reasons for conditions that are not the result of a phase change
REASON_CHART_NOT_READY = "GitRepoNotCloned"
REASON_CHART_UNAVAILABLE = "RepoFetchFailed"
REASON_CHART_IN_CACHE = "RepoChartInCache"
REASON_CLONED = "GitRepoCloned"
REASON_DEPENDENCY_FAILED = "UpdateDependencyFailed"
REASON_VALUES_FAILED = "ValuesFailed"
REASON_INSTALL_FAILED = "HelmInstallFailed"
REASON_UPGRADE_FAILED = "HelmUpgradeFailed"
REASON_ROLLBACK_FAILED = "HelmRollbackFailed"
REASON_SUCCESS = "HelmSuccess"

_PHASE_CONDITIONS: dict[Phase, tuple[ConditionType, ConditionStatus, str]] = {
    Phase.INSTALLING: (
        ConditionType.RELEASED,
        ConditionStatus.UNKNOWN,
        "Running installation for Helm release '{name}' in '{namespace}'.",
    ),
    Phase.UPGRADING: (
        ConditionType.RELEASED,
        ConditionStatus.UNKNOWN,
        "Running upgrade for Helm release '{name}' in '{namespace}'.",
    ),
    Phase.SUCCEEDED: (
        ConditionType.RELEASED,
        ConditionStatus.TRUE,
        "Release was successful for Helm release '{name}' in '{namespace}'.",
    ),
    Phase.FAILED: (
        ConditionType.RELEASED,
        ConditionStatus.FALSE,
        "Release failed for Helm release '{name}' in '{namespace}'.",
    ),
    Phase.ROLLING_BACK: (
        ConditionType.ROLLED_BACK,
        ConditionStatus.UNKNOWN,
        "Rolling back Helm release '{name}' in '{namespace}'.",
    ),
    Phase.ROLLED_BACK: (
        ConditionType.ROLLED_BACK,
        ConditionStatus.TRUE,
        "Rolled back Helm release '{name}' in '{namespace}'.",
    ),
    Phase.ROLLBACK_FAILED: (
        ConditionType.ROLLED_BACK,
        ConditionStatus.FALSE,
        "Rollback failed for Helm release '{name}' in '{namespace}'.",
    ),
    Phase.CHART_FETCHED: (
        ConditionType.CHART_FETCHED,
        ConditionStatus.TRUE,
        "Chart fetch was successful for Helm release '{name}' in '{namespace}'.",
    ),
    Phase.CHART_FETCH_FAILED: (
        ConditionType.CHART_FETCHED,
        ConditionStatus.FALSE,
        "Chart fetch failed for Helm release '{name}' in '{namespace}'.",
    ),
}


def now_timestamp() -> str:
    """Return the current time in the format of condition timestamps."""
    return datetime.now(timezone.utc).strftime(_TIME_FORMAT)


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


def new_condition(
    condition_type: ConditionType,
    status: ConditionStatus,
    reason: str,
    message: str,
    now: str | None = None,
) -> Condition:
    """Create a condition that was last updated and transitioned now."""
    now = now or now_timestamp()
    return Condition(
        type=condition_type,
        status=status,
        reason=reason,
        message=message,
        last_update_time=now,
        last_transition_time=now,
    )


def condition_for_phase(
    release: HelmRelease,
    phase: Phase,
    now: str | None = None,
    reason: str | None = None,
    message: str | None = None,
) -> Condition:
    """Return the condition describing the release entering the phase.

    The reason defaults to the phase and the message to a description of the
    phase for the release.
    """
    condition_type, status, default_message = _PHASE_CONDITIONS[phase]
    if message is None:
        message = default_message.format(
            name=release.release_name, namespace=release.release_namespace
        )
    return new_condition(condition_type, status, reason or str(phase), message, now)


def get_condition(
    status: HelmReleaseStatus, condition_type: str
) -> Condition | None:
    """Return the condition of the given type if present."""
    for condition in status.conditions:
        if condition.type == condition_type:
            return condition
    return None


def set_condition(status: HelmReleaseStatus, condition: Condition) -> None:
    """Record the condition in the status, replacing one of the same type.

    The transition time of an existing condition is kept when its status
    does not change. A successful release clears any recorded rollback and
    resets the rollback count, a successful rollback increments it.
    """
    current = get_condition(status, condition.type)
    if current is not None and current.status == condition.status:
        condition.last_transition_time = current.last_transition_time
    status.conditions = [
        c for c in status.conditions if c.type != condition.type
    ] + [condition]
    if condition.status != ConditionStatus.TRUE:
        return
    if condition.type == ConditionType.RELEASED:
        status.conditions = [
            c for c in status.conditions if c.type != ConditionType.ROLLED_BACK
        ]
        status.rollback_count = 0
    elif condition.type == ConditionType.ROLLED_BACK:
        status.rollback_count += 1


def has_synced(release: HelmRelease) -> bool:
    """Return if the current generation has been processed."""
    return release.status.observed_generation >= release.generation


def has_rolled_back(release: HelmRelease) -> bool:
    """Return if the current generation of the release has been rolled back.

    A chart fetched after the rollback was recorded means there is a new chart
    revision to release. Update times are compared since two updates with the
    same status do not change the transition time.
    """
    if not has_synced(release):
        return False
    rolled_back = get_condition(release.status, ConditionType.ROLLED_BACK)
    if rolled_back is None:
        return False
    chart_fetched = get_condition(release.status, ConditionType.CHART_FETCHED)
    if chart_fetched is not None and chart_fetched.status == ConditionStatus.TRUE:
        rolled_back_time = _parse_timestamp(rolled_back.last_update_time)
        fetched_time = _parse_timestamp(chart_fetched.last_update_time)
        if rolled_back_time and fetched_time and rolled_back_time < fetched_time:
            return False
    return rolled_back.status == ConditionStatus.TRUE
