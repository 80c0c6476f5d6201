"""helm-operator get action."""

import logging
from argparse import (
    ArgumentParser,
    _SubParsersAction as SubParsersAction,
)
from typing import Any, cast

from helm_operator.kube import Kubectl
from helm_operator.manifest import ConditionType, HelmRelease
from helm_operator.status import get_condition

from .format import PrintFormatter, YamlFormatter

__all__ = [
    "GetAction",
]

_LOGGER = logging.getLogger(__name__)

COLUMNS = ["namespace", "name", "release", "phase", "status", "message"]


def release_row(release: HelmRelease) -> dict[str, Any]:
    """Summarize the status of a HelmRelease as a table row."""
    condition = get_condition(release.status, ConditionType.RELEASED)
    if condition is None and release.status.conditions:
        condition = release.status.conditions[-1]
    return {
        "namespace": release.namespace,
        "name": release.name,
        "release": release.status.release_name or release.release_name,
        "phase": release.status.phase,
        "status": release.status.release_status,
        "message": condition.message if condition else None,
    }


class GetHelmReleaseAction:
    """Get the status of HelmReleases in the cluster."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "helmreleases",
                aliases=["hr", "helmrelease"],
                help="Get HelmRelease objects",
                description="Print the status of HelmRelease objects in the cluster",
            ),
        )
        args.add_argument(
            "--namespace",
            "-n",
            default="default",
            help="Namespace of the HelmReleases",
        )
        args.add_argument(
            "--all-namespaces",
            "-A",
            action="store_true",
            help="List HelmReleases across all namespaces",
        )
        args.add_argument(
            "--output",
            "-o",
            choices=["table", "yaml"],
            default="table",
            help="Output format of the command",
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
        namespace: str,
        all_namespaces: bool,
        output: str,
        kube_context: str | None,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        cluster = Kubectl(context=kube_context)
        releases = await cluster.list_releases(
            None if all_namespaces else namespace
        )
        if not releases:
            where = "any namespace" if all_namespaces else f"namespace '{namespace}'"
            print(f"No HelmReleases found in {where}")
            return
        if output == "yaml":
            YamlFormatter().print([release.status_doc() for release in releases])
            return
        cols = list(COLUMNS)
        if not all_namespaces:
            cols.remove("namespace")
        PrintFormatter(cols).print([release_row(release) for release in releases])


class GetAction:
    """helm-operator get action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "get",
                help="Print information about HelmReleases",
                description="Print information about resources managed by the operator",
            ),
        )
        subcmds = args.add_subparsers(
            title="Available commands",
            required=True,
        )
        GetHelmReleaseAction.register(subcmds)
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        # No-op given subcommands are always the dispatch target
