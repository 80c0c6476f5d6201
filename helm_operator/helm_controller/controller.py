"""HelmRelease Controller implementation.

This controller reconciles a HelmRelease with its helm release. Each
reconciliation resolves the chart, composes the values, inspects the
current release and decides on a single action:

    - Install: there is no release yet.
    - Upgrade: the HelmRelease changed since it was last processed, or it
      was rolled back and the chart changed or retries are allowed.
    - DryRunCompare: simulate an upgrade and compare the chart and values
      with the release, upgrading only when they diverged.
    - Rollback: the release failed and rolling back is enabled.
    - Skip: the release belongs to another HelmRelease or is in a state
      that can't be acted on.

Uninstall happens when the HelmRelease is deleted. Every action records
the phase of the HelmRelease before and after it runs.
"""

from collections.abc import Awaitable
from dataclasses import dataclass
from enum import StrEnum
import logging
import time
from typing import Any, TypeVar

from ..config import HelmControllerConfig
from ..exceptions import (
    ChartNotReadyError,
    ChartUnavailableError,
    HelmException,
    HelmOperatorException,
    PolicyError,
    ReleaseOwnershipError,
    ReleaseStateError,
    ValuesException,
)
from ..helm import (
    Client,
    Clients,
    GetOptions,
    HistoryOptions,
    Release,
    ReleaseStatus,
    RollbackOptions,
    UninstallOptions,
    UpgradeOptions,
)
from ..kube import ClusterClient
from ..manifest import ConditionStatus, ConditionType, HelmRelease, Phase
from ..source_controller import ChartSources, ResolvedChart
from ..status import StatusTracker, get_condition, has_rolled_back, has_synced
from ..status.conditions import (
    REASON_CHART_IN_CACHE,
    REASON_CHART_NOT_READY,
    REASON_CHART_UNAVAILABLE,
    REASON_CLONED,
    REASON_DEPENDENCY_FAILED,
    REASON_INSTALL_FAILED,
    REASON_ROLLBACK_FAILED,
    REASON_UPGRADE_FAILED,
    REASON_VALUES_FAILED,
)
from ..values import compose_values, values_checksum
from .metrics import ReleaseObservation, ReleaseObserver, log_observation
from .release import annotate_resources, can_uninstall, owner_of, release_diff

__all__ = [
    "Action",
    "HelmReleaseController",
    "Plan",
]

_LOGGER = logging.getLogger(__name__)

_T = TypeVar("_T")


class Action(StrEnum):
    """An action performed against a release."""

    INSTALL = "install"
    UPGRADE = "upgrade"
    DRY_RUN_COMPARE = "dry-run-compare"
    ROLLBACK = "rollback"
    UNINSTALL = "uninstall"
    SKIP = "skip"


@dataclass
class Plan:
    """The action decided for a release and what it is based on."""

    action: Action
    """The action to perform."""

    current: Release | None = None
    """The latest revision of the release."""

    baseline: Release | None = None
    """The revision a dry run is compared against."""

    error: PolicyError | None = None
    """Why the release is skipped, if it is not a no-op."""


class HelmReleaseController:
    """Controller for reconciling HelmRelease resources."""

    def __init__(
        self,
        cluster: ClusterClient,
        helm_clients: Clients,
        sources: ChartSources,
        status: StatusTracker,
        config: HelmControllerConfig,
        observer: ReleaseObserver = log_observation,
    ) -> None:
        """Initialize HelmReleaseController."""
        self._cluster = cluster
        self._helm_clients = helm_clients
        self._sources = sources
        self._status = status
        self._config = config
        self._observer = observer

    async def _observe(
        self,
        release: HelmRelease,
        action: Action,
        call: Awaitable[_T],
        dry_run: bool = False,
    ) -> _T:
        """Await the helm call, reporting its duration and outcome."""
        start = time.monotonic()
        success = False
        try:
            result = await call
            success = True
            return result
        finally:
            self._observer(
                ReleaseObservation(
                    action=str(action),
                    dry_run=dry_run,
                    success=success,
                    namespace=release.release_namespace,
                    release_name=release.release_name,
                    duration=time.monotonic() - start,
                )
            )

    async def reconcile(self, release: HelmRelease) -> None:
        """Bring the helm release in line with the HelmRelease.

        Failures of the release itself are recorded in the status. Raises
        `ChartNotReadyError` when the chart source is not ready yet and
        `ChartUnavailableError` or other errors when the reconciliation
        should be retried.
        """
        _LOGGER.info("Reconciling HelmRelease %s", release.namespaced_name)
        generation = release.generation
        try:
            async with self._sources.checkout(release) as chart:
                await self._record_chart_fetched(release, chart)
                await self._release(release, chart)
        except ChartNotReadyError as err:
            _LOGGER.info("Chart of %s not ready: %s", release.namespaced_name, err)
            await self._status.set_condition(
                release,
                self._status.new_condition(
                    ConditionType.CHART_FETCHED,
                    ConditionStatus.UNKNOWN,
                    REASON_CHART_NOT_READY,
                    str(err),
                ),
            )
            raise
        except ChartUnavailableError as err:
            _LOGGER.warning(
                "Chart of %s unavailable: %s", release.namespaced_name, err
            )
            await self._status.set_phase(
                release,
                Phase.CHART_FETCH_FAILED,
                reason=REASON_CHART_UNAVAILABLE,
                message=str(err),
            )
            raise
        except PolicyError as err:
            await self._record_skip(release, err)
        await self._status.set_observed_generation(release, generation)

    async def _record_chart_fetched(
        self, release: HelmRelease, chart: ResolvedChart
    ) -> None:
        """Record that a chart revision that has not been released was fetched."""
        fetched = get_condition(release.status, ConditionType.CHART_FETCHED)
        if (
            chart.revision == release.status.last_attempted_revision
            and fetched is not None
            and fetched.status == ConditionStatus.TRUE
        ):
            return
        await self._status.set_phase(
            release,
            Phase.CHART_FETCHED,
            reason=REASON_CLONED if release.chart.git else REASON_CHART_IN_CACHE,
        )

    async def _record_skip(self, release: HelmRelease, err: PolicyError) -> None:
        _LOGGER.warning("Skipping HelmRelease %s: %s", release.namespaced_name, err)
        await self._status.set_condition(
            release,
            self._status.new_condition(
                ConditionType.RELEASED,
                ConditionStatus.FALSE,
                REASON_UPGRADE_FAILED,
                str(err),
            ),
        )

    async def _release(self, release: HelmRelease, chart: ResolvedChart) -> None:
        client = self._helm_clients.load(release.helm_version)
        if (
            release.chart.git is not None
            and not release.chart.git.skip_dep_update
            and self._config.update_deps
        ):
            try:
                await client.dependency_update(chart.path)
            except HelmException as err:
                _LOGGER.warning(
                    "Unable to update dependencies of %s: %s",
                    release.namespaced_name,
                    err,
                )
                await self._status.set_condition(
                    release,
                    self._status.new_condition(
                        ConditionType.RELEASED,
                        ConditionStatus.FALSE,
                        REASON_DEPENDENCY_FAILED,
                        str(err),
                    ),
                )
                return
        try:
            values = await compose_values(self._cluster, release, chart.path)
        except ValuesException as err:
            _LOGGER.warning(
                "Unable to compose values of %s: %s", release.namespaced_name, err
            )
            await self._status.set_condition(
                release,
                self._status.new_condition(
                    ConditionType.RELEASED,
                    ConditionStatus.FALSE,
                    REASON_VALUES_FAILED,
                    str(err),
                ),
            )
            return
        current = await client.status(release.release_name, release.release_namespace)
        plan = await self.determine_action(client, release, chart, current)
        _LOGGER.debug("Action for %s: %s", release.namespaced_name, plan.action)
        await self._execute(client, release, chart, values, plan)

    async def determine_action(
        self,
        client: Client,
        release: HelmRelease,
        chart: ResolvedChart,
        current: Release | None,
    ) -> Plan:
        """Decide what to do with the current revision of the release."""
        if current is None:
            return Plan(Action.INSTALL)
        if (owner := await owner_of(self._cluster, current, release)) is not None:
            return Plan(
                Action.SKIP,
                current,
                error=ReleaseOwnershipError(release.release_name, owner),
            )
        if current.status.pending:
            return Plan(
                Action.SKIP,
                current,
                error=ReleaseStateError(
                    f"operation pending for release '{release.release_name}'"
                ),
            )
        if current.status == ReleaseStatus.FAILED:
            if release.rollback.enable:
                return Plan(Action.ROLLBACK, current)
            return Plan(
                Action.SKIP,
                current,
                error=ReleaseStateError(
                    "release requires a rollback before it can be upgraded"
                ),
            )
        if current.status != ReleaseStatus.DEPLOYED:
            return Plan(
                Action.SKIP,
                current,
                error=ReleaseStateError(
                    f"current state '{current.status}' prevents it from being upgraded"
                ),
            )
        if not has_synced(release):
            return Plan(Action.UPGRADE, current)
        if has_rolled_back(release):
            if chart.revision != release.status.last_attempted_revision:
                return Plan(Action.UPGRADE, current)
            if (
                release.rollback.retry
                and release.status.rollback_count < release.rollback.get_max_retries()
            ):
                _LOGGER.info(
                    "Retrying upgrade of %s after rollback %d of %d",
                    release.namespaced_name,
                    release.status.rollback_count,
                    release.rollback.get_max_retries(),
                )
                return Plan(Action.UPGRADE, current)
            baseline = await self._failed_revision(client, release, current)
            return Plan(Action.DRY_RUN_COMPARE, current, baseline=baseline)
        return Plan(Action.DRY_RUN_COMPARE, current, baseline=current)

    async def _failed_revision(
        self, client: Client, release: HelmRelease, current: Release
    ) -> Release:
        """Return the revision that failed before the release was rolled back."""
        history = await client.history(
            release.release_name,
            HistoryOptions(
                namespace=release.release_namespace,
                max=release.get_max_history(),
            ),
        )
        for revision in history:
            if revision.revision == current.revision:
                continue
            if revision.status in (ReleaseStatus.FAILED, ReleaseStatus.SUPERSEDED):
                found = await client.get(
                    release.release_name,
                    GetOptions(
                        namespace=release.release_namespace,
                        version=revision.revision,
                    ),
                )
                if found is not None:
                    return found
        return current

    async def _execute(
        self,
        client: Client,
        release: HelmRelease,
        chart: ResolvedChart,
        values: dict[str, Any],
        plan: Plan,
    ) -> None:
        if plan.action == Action.INSTALL:
            await self._install(client, release, chart, values)
        elif plan.action == Action.UPGRADE:
            await self._upgrade(client, release, chart, values, plan.current)
        elif plan.action == Action.ROLLBACK:
            await self._rollback(client, release)
        elif plan.action == Action.DRY_RUN_COMPARE:
            if await self._diverged(client, release, chart, values, plan):
                await self._upgrade(client, release, chart, values, plan.current)
        elif plan.error is not None:
            await self._record_skip(release, plan.error)

    def _upgrade_options(
        self, release: HelmRelease, install: bool = False, dry_run: bool = False
    ) -> UpgradeOptions:
        return UpgradeOptions(
            namespace=release.release_namespace,
            install=install,
            dry_run=dry_run,
            timeout=release.get_timeout(),
            wait=release.get_wait(),
            force=release.force_upgrade,
            reset_values=release.reset_values,
            skip_crds=release.skip_crds,
            max_history=release.get_max_history(),
        )

    async def _diverged(
        self,
        client: Client,
        release: HelmRelease,
        chart: ResolvedChart,
        values: dict[str, Any],
        plan: Plan,
    ) -> bool:
        """Whether a dry run of the upgrade differs from the baseline."""
        if (baseline := plan.baseline or plan.current) is None:
            return True
        try:
            desired = await self._observe(
                release,
                Action.DRY_RUN_COMPARE,
                client.upgrade_from_path(
                    chart.path,
                    release.release_name,
                    values,
                    self._upgrade_options(release, dry_run=True),
                ),
                dry_run=True,
            )
        except HelmException as err:
            _LOGGER.warning(
                "Dry run of %s failed: %s", release.namespaced_name, err
            )
            await self._status.set_condition(
                release,
                self._status.new_condition(
                    ConditionType.RELEASED,
                    ConditionStatus.FALSE,
                    REASON_UPGRADE_FAILED,
                    str(err),
                ),
            )
            return False
        if not (diff := release_diff(baseline, desired)):
            _LOGGER.debug("Release of %s is up to date", release.namespaced_name)
            return False
        _LOGGER.info("Release of %s has diverged", release.namespaced_name)
        if self._config.log_diffs:
            _LOGGER.info(
                "Release diff for %s:\n%s", release.namespaced_name, "".join(diff)
            )
        # A newer generation will be reconciled on its own
        latest = await self._cluster.get_release(release.namespace, release.name)
        if latest is None or latest.generation != release.generation:
            _LOGGER.info(
                "HelmRelease %s changed during dry run, skipping upgrade",
                release.namespaced_name,
            )
            return False
        return True

    async def _succeeded(
        self,
        release: HelmRelease,
        chart: ResolvedChart,
        result: Release,
        values: dict[str, Any],
    ) -> None:
        await annotate_resources(self._cluster, result, release)
        await self._status.set_phase(release, Phase.SUCCEEDED, chart.revision)
        await self._status.set_values_checksum(release, values_checksum(values))

    async def _install(
        self,
        client: Client,
        release: HelmRelease,
        chart: ResolvedChart,
        values: dict[str, Any],
    ) -> None:
        await self._status.set_phase(release, Phase.INSTALLING, chart.revision)
        try:
            result = await self._observe(
                release,
                Action.INSTALL,
                client.upgrade_from_path(
                    chart.path,
                    release.release_name,
                    values,
                    self._upgrade_options(release, install=True),
                ),
            )
        except HelmException as err:
            _LOGGER.warning("Install of %s failed: %s", release.namespaced_name, err)
            await self._status.set_phase(
                release, Phase.FAILED, reason=REASON_INSTALL_FAILED, message=str(err)
            )
            await self._cleanup_failed_install(client, release)
            return
        _LOGGER.info(
            "Installed release %s at revision %s", release.release_name, chart.revision
        )
        await self._succeeded(release, chart, result, values)

    async def _cleanup_failed_install(
        self, client: Client, release: HelmRelease
    ) -> None:
        """Uninstall a release whose only revision is the failed install."""
        history = await client.history(
            release.release_name,
            HistoryOptions(namespace=release.release_namespace, max=2),
        )
        if len(history) != 1 or history[0].status != ReleaseStatus.FAILED:
            return
        _LOGGER.info("Uninstalling failed release %s", release.release_name)
        try:
            await self._observe(
                release,
                Action.UNINSTALL,
                client.uninstall(
                    release.release_name,
                    UninstallOptions(
                        namespace=release.release_namespace,
                        timeout=release.get_timeout(),
                    ),
                ),
            )
        except HelmException as err:
            _LOGGER.warning(
                "Unable to uninstall failed release %s: %s", release.release_name, err
            )

    async def _upgrade(
        self,
        client: Client,
        release: HelmRelease,
        chart: ResolvedChart,
        values: dict[str, Any],
        current: Release | None,
    ) -> None:
        previous_revision = current.revision if current is not None else 0
        await self._status.set_phase(release, Phase.UPGRADING, chart.revision)
        try:
            result = await self._observe(
                release,
                Action.UPGRADE,
                client.upgrade_from_path(
                    chart.path,
                    release.release_name,
                    values,
                    self._upgrade_options(release),
                ),
            )
        except HelmException as err:
            _LOGGER.warning("Upgrade of %s failed: %s", release.namespaced_name, err)
            await self._status.set_phase(
                release, Phase.FAILED, reason=REASON_UPGRADE_FAILED, message=str(err)
            )
            if not release.rollback.enable:
                return
            latest = await client.status(
                release.release_name, release.release_namespace
            )
            if latest is None or latest.revision <= previous_revision:
                _LOGGER.info(
                    "Upgrade of %s created no revision, not rolling back",
                    release.release_name,
                )
                return
            await self._rollback(client, release)
            return
        _LOGGER.info(
            "Upgraded release %s to revision %s", release.release_name, chart.revision
        )
        await self._succeeded(release, chart, result, values)

    async def _rollback(self, client: Client, release: HelmRelease) -> None:
        await self._status.set_phase(release, Phase.ROLLING_BACK)
        try:
            result = await self._observe(
                release,
                Action.ROLLBACK,
                client.rollback(
                    release.release_name,
                    RollbackOptions(
                        namespace=release.release_namespace,
                        timeout=release.rollback.get_timeout(),
                        wait=release.rollback.wait,
                        disable_hooks=release.rollback.disable_hooks,
                        recreate=release.rollback.recreate,
                        force=release.rollback.force,
                    ),
                ),
            )
        except HelmException as err:
            _LOGGER.warning("Rollback of %s failed: %s", release.namespaced_name, err)
            await self._status.set_phase(
                release,
                Phase.ROLLBACK_FAILED,
                reason=REASON_ROLLBACK_FAILED,
                message=str(err),
            )
            return
        _LOGGER.info(
            "Rolled back release %s to revision %d",
            release.release_name,
            result.revision,
        )
        await annotate_resources(self._cluster, result, release)
        await self._status.set_phase(release, Phase.ROLLED_BACK)

    async def uninstall(self, release: HelmRelease) -> None:
        """Uninstall the release of a deleted HelmRelease.

        The chart source of the release is given up whether or not the
        uninstall succeeds.
        """
        _LOGGER.info("Deleting HelmRelease %s", release.namespaced_name)
        try:
            await self._uninstall(release)
        except HelmOperatorException as err:
            _LOGGER.warning(
                "Unable to uninstall release %s: %s", release.release_name, err
            )
        finally:
            await self._sources.delete(release)

    async def _uninstall(self, release: HelmRelease) -> None:
        client = self._helm_clients.load(release.helm_version)
        current = await client.status(release.release_name, release.release_namespace)
        if current is None:
            return
        if (owner := await owner_of(self._cluster, current, release)) is not None:
            raise ReleaseOwnershipError(release.release_name, owner)
        if not can_uninstall(current):
            raise ReleaseStateError(
                f"current state '{current.status}' prevents it from being uninstalled"
            )
        await self._observe(
            release,
            Action.UNINSTALL,
            client.uninstall(
                release.release_name,
                UninstallOptions(
                    namespace=release.release_namespace,
                    timeout=release.get_timeout(),
                ),
            ),
        )
        _LOGGER.info("Uninstalled release %s", release.release_name)
