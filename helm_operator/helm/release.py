"""Snapshots of releases as reported by helm."""

from dataclasses import dataclass, field
from enum import StrEnum
import hashlib
import json
import logging
from typing import Any

import yaml

from ..exceptions import HelmException
from ..kube import ObjectRef

__all__ = [
    "Chart",
    "Release",
    "ReleaseStatus",
]

_LOGGER = logging.getLogger(__name__)

_LIST_SUFFIX = "List"


class ReleaseStatus(StrEnum):
    """The status of a helm release."""

    UNKNOWN = "unknown"
    DEPLOYED = "deployed"
    UNINSTALLED = "uninstalled"
    SUPERSEDED = "superseded"
    FAILED = "failed"
    UNINSTALLING = "uninstalling"
    PENDING_INSTALL = "pending-install"
    PENDING_UPGRADE = "pending-upgrade"
    PENDING_ROLLBACK = "pending-rollback"

    @classmethod
    def parse(cls, value: str | None) -> "ReleaseStatus":
        """Parse the status reported by helm, unknown values are UNKNOWN."""
        try:
            return cls(value or "")
        except ValueError:
            return cls.UNKNOWN

    @property
    def pending(self) -> bool:
        """Whether an operation is in progress for the release."""
        return self in (
            ReleaseStatus.PENDING_INSTALL,
            ReleaseStatus.PENDING_UPGRADE,
            ReleaseStatus.PENDING_ROLLBACK,
        )


@dataclass(frozen=True)
class Chart:
    """Metadata of the chart of a release."""

    name: str
    version: str
    app_version: str | None = None
    digest: str | None = None
    """Checksum of the chart content when known."""


def _chart_digest(chart: dict[str, Any]) -> str | None:
    """Return a checksum of the chart templates, files and default values."""
    if not chart:
        return None
    content = {
        "metadata": chart.get("metadata"),
        "templates": chart.get("templates"),
        "files": chart.get("files"),
        "values": chart.get("values"),
    }
    return hashlib.sha256(json.dumps(content, sort_keys=True).encode()).hexdigest()


@dataclass(frozen=True)
class Release:
    """An immutable snapshot of a helm release revision."""

    name: str
    """The name of the release."""

    namespace: str
    """The namespace the release is installed in."""

    chart: Chart
    """The chart the revision was released from."""

    revision: int
    """The revision number, incremented by every install, upgrade or rollback."""

    status: ReleaseStatus
    values: dict[str, Any] = field(default_factory=dict)
    """The user supplied values of the revision."""

    manifest: str = ""
    """The rendered manifest of the revision."""

    description: str | None = None

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "Release":
        """Parse a release from the JSON output of helm."""
        try:
            chart = doc.get("chart") or {}
            metadata = chart.get("metadata") or {}
            return Release(
                name=doc["name"],
                namespace=doc.get("namespace", ""),
                chart=Chart(
                    name=metadata.get("name", ""),
                    version=metadata.get("version", ""),
                    app_version=metadata.get("appVersion"),
                    digest=_chart_digest(chart),
                ),
                revision=int(doc.get("version", 0)),
                status=ReleaseStatus.parse((doc.get("info") or {}).get("status")),
                values=doc.get("config") or {},
                manifest=doc.get("manifest") or "",
                description=(doc.get("info") or {}).get("description"),
            )
        except (KeyError, ValueError) as err:
            raise HelmException(f"Unable to parse helm release: {err}") from err

    def objects(self) -> list[ObjectRef]:
        """Return the objects created by the release.

        Objects without a namespace are assumed to be in the release namespace,
        which kubectl ignores for cluster scoped objects.
        """
        refs: list[ObjectRef] = []
        try:
            docs = list(yaml.safe_load_all(self.manifest))
        except yaml.YAMLError as err:
            raise HelmException(
                f"Unable to parse manifest of release {self.name}: {err}"
            ) from err
        while docs:
            doc = docs.pop(0)
            if not isinstance(doc, dict) or not doc.get("kind"):
                continue
            if doc["kind"].endswith(_LIST_SUFFIX) and "items" in doc:
                docs.extend(doc["items"] or [])
                continue
            metadata = doc.get("metadata") or {}
            if not (name := metadata.get("name")):
                continue
            refs.append(
                ObjectRef(
                    api_version=doc.get("apiVersion", "v1"),
                    kind=doc["kind"],
                    namespace=metadata.get("namespace") or self.namespace,
                    name=name,
                )
            )
        return refs
