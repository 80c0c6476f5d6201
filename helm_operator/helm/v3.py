"""Helm v3 client that shells out to the `helm` binary.

Every operation is a single helm invocation with JSON output that is parsed
into a `Release` snapshot. Values are passed in a temporary values file so
that they never appear on the command line.
"""

from collections.abc import Generator
from contextlib import contextmanager
import json
import logging
from pathlib import Path
import re
import tempfile
from typing import Any

import aiofiles
import yaml

from .. import command
from ..exceptions import HelmException
from .client import (
    Client,
    GetOptions,
    HistoryOptions,
    RollbackOptions,
    UninstallOptions,
    UpgradeOptions,
)
from .release import Chart, Release, ReleaseStatus

__all__ = [
    "HelmV3",
]

_LOGGER = logging.getLogger(__name__)

HELM_BIN = "helm"
VERSION = "v3"

_NOT_FOUND = "release: not found"
# A chart reported as "<name>-<version>", the version starts with a digit
_CHART_NAME_VERSION = re.compile(r"^(?P<name>.+?)-(?P<version>v?\d.*)$")

# Allow helm to give up on its own timeout before the command is killed
_TIMEOUT_MARGIN = 30


def _is_not_found(err: HelmException) -> bool:
    return _NOT_FOUND in str(err)


def _split_chart(chart: str) -> tuple[str, str]:
    """Split the chart reported by helm into its name and version."""
    if (match := _CHART_NAME_VERSION.match(chart)) is None:
        return chart, ""
    return match.group("name"), match.group("version")


def _parse_json(out: str) -> Any:
    try:
        return json.loads(out)
    except ValueError as err:
        raise HelmException(f"Unable to parse helm output: {err}") from err


@contextmanager
def _values_dir() -> Generator[Path, None, None]:
    with tempfile.TemporaryDirectory(prefix="helm-operator-values-") as tmp_dir:
        yield Path(tmp_dir)


class HelmV3(Client):
    """A `Client` for helm v3."""

    version = VERSION

    def __init__(self, helm: str = HELM_BIN) -> None:
        """Initialize HelmV3."""
        self._helm = helm

    def _command(self, *args: str, timeout: int | None = None) -> command.Command:
        cmd = command.Command([self._helm, *args], exc=HelmException)
        if timeout:
            cmd.timeout = timeout + _TIMEOUT_MARGIN
        return cmd

    async def status(self, release_name: str, namespace: str) -> Release | None:
        """Return the latest revision of the release or None if not found."""
        cmd = self._command("status", release_name, "-n", namespace, "-o", "json")
        try:
            out = await command.run(cmd)
        except HelmException as err:
            if _is_not_found(err):
                return None
            raise
        return Release.parse_doc(_parse_json(out))

    async def get(self, release_name: str, opts: GetOptions) -> Release | None:
        """Return a revision of the release or None if not found."""
        args = [release_name, "-n", opts.namespace]
        if opts.version:
            args.extend(["--revision", str(opts.version)])
        try:
            metadata = _parse_json(
                await command.run(self._command("get", "metadata", *args, "-o", "json"))
            )
            values = _parse_json(
                await command.run(self._command("get", "values", *args, "-o", "json"))
            )
            manifest = await command.run(self._command("get", "manifest", *args))
        except HelmException as err:
            if _is_not_found(err):
                return None
            raise
        return Release(
            name=metadata.get("name", release_name),
            namespace=metadata.get("namespace", opts.namespace),
            chart=Chart(
                name=metadata.get("chart", ""),
                version=metadata.get("version", ""),
                app_version=metadata.get("appVersion"),
            ),
            revision=int(metadata.get("revision", 0)),
            status=ReleaseStatus.parse(metadata.get("status")),
            values=values or {},
            manifest=manifest,
        )

    async def upgrade_from_path(
        self,
        chart_path: Path,
        release_name: str,
        values: dict[str, Any],
        opts: UpgradeOptions,
    ) -> Release:
        """Install or upgrade the release from the chart at the local path."""
        with _values_dir() as tmp_dir:
            values_path = tmp_dir / f"{release_name}-values.yaml"
            async with aiofiles.open(values_path, mode="w") as values_file:
                await values_file.write(yaml.dump(values, sort_keys=False))
            args = [
                "upgrade",
                release_name,
                str(chart_path),
                "--namespace",
                opts.namespace,
                "--values",
                str(values_path),
                "--timeout",
                f"{opts.timeout}s",
                "--history-max",
                str(opts.max_history),
                "-o",
                "json",
            ]
            if opts.install:
                args.append("--install")
            if opts.dry_run:
                args.append("--dry-run")
            if opts.wait:
                args.append("--wait")
            if opts.force:
                args.append("--force")
            if opts.reset_values:
                args.append("--reset-values")
            if opts.skip_crds:
                args.append("--skip-crds")
            out = await command.run(self._command(*args, timeout=opts.timeout))
        return Release.parse_doc(_parse_json(out))

    async def rollback(self, release_name: str, opts: RollbackOptions) -> Release:
        """Roll back the release and return the new revision."""
        args = ["rollback", release_name]
        if opts.version:
            args.append(str(opts.version))
        args.extend(["--namespace", opts.namespace, "--timeout", f"{opts.timeout}s"])
        if opts.wait:
            args.append("--wait")
        if opts.disable_hooks:
            args.append("--no-hooks")
        if opts.recreate:
            args.append("--recreate-pods")
        if opts.force:
            args.append("--force")
        await command.run(self._command(*args, timeout=opts.timeout))
        if (release := await self.status(release_name, opts.namespace)) is None:
            raise HelmException(f"Release {release_name} not found after rollback")
        return release

    async def uninstall(self, release_name: str, opts: UninstallOptions) -> None:
        """Uninstall the release."""
        args = [
            "uninstall",
            release_name,
            "--namespace",
            opts.namespace,
            "--timeout",
            f"{opts.timeout}s",
        ]
        if opts.keep_history:
            args.append("--keep-history")
        if opts.disable_hooks:
            args.append("--no-hooks")
        await command.run(self._command(*args, timeout=opts.timeout))

    async def history(self, release_name: str, opts: HistoryOptions) -> list[Release]:
        """Return the revisions of the release, newest first."""
        cmd = self._command(
            "history",
            release_name,
            "--namespace",
            opts.namespace,
            "--max",
            str(opts.max),
            "-o",
            "json",
        )
        try:
            out = await command.run(cmd)
        except HelmException as err:
            if _is_not_found(err):
                return []
            raise
        releases = []
        for entry in _parse_json(out) or []:
            name, version = _split_chart(entry.get("chart", ""))
            releases.append(
                Release(
                    name=release_name,
                    namespace=opts.namespace,
                    chart=Chart(
                        name=name, version=version, app_version=entry.get("app_version")
                    ),
                    revision=int(entry.get("revision", 0)),
                    status=ReleaseStatus.parse(entry.get("status")),
                    description=entry.get("description"),
                )
            )
        return sorted(releases, key=lambda r: r.revision, reverse=True)

    async def dependency_update(self, chart_path: Path) -> None:
        """Download the dependencies of the chart at the local path."""
        await command.run(self._command("dependency", "update", str(chart_path)))

    async def pull(
        self, repo_url: str, chart_name: str, version: str, dest: Path
    ) -> Path:
        """Download and unpack a chart from a repository, returning its path."""
        await command.run(
            self._command(
                "pull",
                chart_name,
                "--repo",
                repo_url,
                "--version",
                version,
                "--untar",
                "--untardir",
                str(dest),
            )
        )
        return dest / chart_name
