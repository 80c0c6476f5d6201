"""Writes the status of HelmRelease resources.

All writes are a read-modify-write of the status subresource. The first
attempt modifies the object the caller holds; when the cluster rejects the
write because the object changed in the meantime, the latest version is read
and the modification applied again, with a bounded exponential backoff
between attempts. The written status is copied back into the caller's object
so that later decisions in the same reconciliation see it.
"""

from collections.abc import Callable
import copy
import logging

from ..backoff import DEFAULT_BACKOFF, Backoff, retry_on_conflict
from ..exceptions import ObjectNotFoundError
from ..kube import ClusterClient
from ..manifest import (
    Condition,
    ConditionStatus,
    ConditionType,
    HelmRelease,
    HelmReleaseStatus,
    Phase,
)
from .conditions import (
    condition_for_phase,
    new_condition,
    now_timestamp,
    set_condition,
)

__all__ = [
    "StatusTracker",
]

_LOGGER = logging.getLogger(__name__)


class StatusTracker:
    """Records phases and conditions of HelmReleases in the cluster."""

    def __init__(
        self,
        cluster: ClusterClient,
        backoff: Backoff = DEFAULT_BACKOFF,
        clock: Callable[[], str] = now_timestamp,
    ) -> None:
        """Initialize StatusTracker."""
        self._cluster = cluster
        self._backoff = backoff
        self._clock = clock

    async def _update(
        self,
        release: HelmRelease,
        mutate: Callable[[HelmReleaseStatus], bool],
    ) -> None:
        """Apply the mutation and write the status.

        The mutation returns False when the status is already as desired, in
        which case nothing is written.
        """
        current = release
        first_try = True

        async def attempt() -> HelmRelease:
            nonlocal current, first_try
            if not first_try:
                latest = await self._cluster.get_release(
                    release.namespace, release.name
                )
                if latest is None:
                    raise ObjectNotFoundError(
                        f"HelmRelease {release.namespaced_name} not found"
                    )
                current = latest
            first_try = False
            updated = copy.deepcopy(current)
            if not mutate(updated.status):
                return current
            return await self._cluster.update_status(updated)

        result = await retry_on_conflict(self._backoff, attempt)
        release.status = result.status
        release.resource_version = result.resource_version

    def new_condition(
        self,
        condition_type: ConditionType,
        status: ConditionStatus,
        reason: str,
        message: str,
    ) -> Condition:
        """Create a condition updated now according to the tracker clock."""
        return new_condition(condition_type, status, reason, message, self._clock())

    async def set_condition(
        self,
        release: HelmRelease,
        condition: Condition,
        mutate: Callable[[HelmReleaseStatus], None] | None = None,
    ) -> None:
        """Record the condition along with an optional status mutation."""

        def apply(status: HelmReleaseStatus) -> bool:
            set_condition(status, copy.copy(condition))
            if mutate is not None:
                mutate(status)
            return True

        _LOGGER.debug(
            "Setting condition %s=%s for %s",
            condition.type,
            condition.status,
            release.namespaced_name,
        )
        await self._update(release, apply)

    async def set_phase(
        self,
        release: HelmRelease,
        phase: Phase,
        revision: str | None = None,
        reason: str | None = None,
        message: str | None = None,
    ) -> None:
        """Record the phase and its condition.

        The revision is recorded as the last attempted one when a release is
        started and as the released one when it succeeds. The reason and
        message of the condition may be overridden, e.g. with an error.
        """

        def apply(status: HelmReleaseStatus) -> None:
            if revision is not None:
                if phase in (Phase.INSTALLING, Phase.UPGRADING):
                    status.last_attempted_revision = revision
                elif phase == Phase.SUCCEEDED:
                    status.revision = revision
            status.phase = phase

        _LOGGER.info("HelmRelease %s phase %s", release.namespaced_name, phase)
        condition = condition_for_phase(
            release, phase, self._clock(), reason=reason, message=message
        )
        await self.set_condition(release, condition, apply)

    async def set_observed_generation(
        self, release: HelmRelease, generation: int
    ) -> None:
        """Record the generation as processed, it never moves backwards."""

        def apply(status: HelmReleaseStatus) -> bool:
            if status.observed_generation >= generation:
                return False
            status.observed_generation = generation
            return True

        await self._update(release, apply)

    async def set_release_status(
        self, release: HelmRelease, release_name: str, release_status: str
    ) -> None:
        """Record the name and helm status of the release."""

        def apply(status: HelmReleaseStatus) -> bool:
            if (
                status.release_name == release_name
                and status.release_status == release_status
            ):
                return False
            status.release_name = release_name
            status.release_status = release_status
            return True

        await self._update(release, apply)

    async def set_values_checksum(self, release: HelmRelease, checksum: str) -> None:
        """Record the checksum of the released values."""

        def apply(status: HelmReleaseStatus) -> bool:
            if not checksum or status.values_checksum == checksum:
                return False
            status.values_checksum = checksum
            return True

        await self._update(release, apply)
