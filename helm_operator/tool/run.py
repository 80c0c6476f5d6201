"""helm-operator run action."""

import asyncio
import logging
from argparse import (
    ArgumentParser,
    BooleanOptionalAction,
    _SubParsersAction as SubParsersAction,
)
from pathlib import Path
import signal
from typing import cast

from helm_operator.config import (
    DEFAULT_HELM_VERSION,
    GitConfig,
    HelmControllerConfig,
    OperatorConfig,
)
from helm_operator.helm import Clients, HelmV3
from helm_operator.kube import Kubectl
from helm_operator.operator import HelmOperator
from helm_operator.task import task_service_context

__all__ = [
    "RunAction",
]

_LOGGER = logging.getLogger(__name__)


def build_config(  # type: ignore[no-untyped-def]
    namespace: str | None,
    workers: int,
    charts_sync_interval: float,
    status_update_interval: float,
    watch_interval: float,
    log_release_diffs: bool,
    update_chart_deps: bool,
    git_timeout: float,
    git_poll_interval: float,
    git_default_ref: str,
    cache_dir: Path | None,
    default_helm_version: str,
    **kwargs,  # pylint: disable=unused-argument
) -> OperatorConfig:
    """Build the operator configuration from the command line flags."""
    config = OperatorConfig(
        namespace=namespace,
        workers=workers,
        charts_sync_interval=charts_sync_interval,
        status_update_interval=status_update_interval,
        watch_interval=watch_interval,
        git=GitConfig(
            timeout=git_timeout,
            poll_interval=git_poll_interval,
            default_ref=git_default_ref,
        ),
        helm=HelmControllerConfig(
            log_diffs=log_release_diffs,
            update_deps=update_chart_deps,
            default_helm_version=default_helm_version,
        ),
    )
    if cache_dir is not None:
        config.cache_dir = cache_dir
    return config


class RunAction:
    """Run the operator until interrupted."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "run",
                help="Run the operator",
                description="Reconcile HelmReleases in the cluster until interrupted",
            ),
        )
        args.add_argument(
            "--namespace",
            "--allow-namespace",
            default=None,
            help="Only manage HelmReleases in this namespace",
        )
        args.add_argument(
            "--workers",
            type=int,
            default=1,
            help="Number of HelmReleases reconciled concurrently",
        )
        args.add_argument(
            "--charts-sync-interval",
            type=float,
            default=180.0,
            help="Seconds between reconciliations of all HelmReleases",
        )
        args.add_argument(
            "--status-update-interval",
            type=float,
            default=10.0,
            help="Seconds between updates of the helm release status",
        )
        args.add_argument(
            "--watch-interval",
            type=float,
            default=10.0,
            help="Seconds between polls of the cluster for changed HelmReleases",
        )
        args.add_argument(
            "--log-release-diffs",
            action=BooleanOptionalAction,
            default=False,
            help="Log the diff when a release diverged, which may expose secrets",
        )
        args.add_argument(
            "--update-chart-deps",
            action=BooleanOptionalAction,
            default=True,
            help="Update the dependencies of charts from git before releasing",
        )
        args.add_argument(
            "--git-timeout",
            type=float,
            default=20.0,
            help="Seconds to wait for a git fetch or clone",
        )
        args.add_argument(
            "--git-poll-interval",
            type=float,
            default=300.0,
            help="Seconds between polls of git remotes for new commits",
        )
        args.add_argument(
            "--git-default-ref",
            default="HEAD",
            help="Ref to follow when a chart source does not name one",
        )
        args.add_argument(
            "--cache-dir",
            type=Path,
            default=None,
            help="Directory holding git mirrors and downloaded charts",
        )
        args.add_argument(
            "--default-helm-version",
            default=DEFAULT_HELM_VERSION,
            choices=[DEFAULT_HELM_VERSION],
            help="Helm version used when a HelmRelease does not name one",
        )
        args.add_argument(
            "--kube-context",
            default=None,
            help="The kubeconfig context to use",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        kube_context: str | None,
        **kwargs,
    ) -> None:
        """Async Action implementation."""
        config = build_config(**kwargs)
        helm_clients = Clients(config.helm.default_helm_version)
        helm_clients.add(HelmV3())
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)
        with task_service_context() as task_service:
            operator = HelmOperator(
                config, Kubectl(context=kube_context), helm_clients, task_service
            )
            await operator.run(stop)
