"""Representation of the HelmRelease custom resource.

A HelmRelease declares a helm release that the operator keeps in sync with
the cluster: where the chart comes from, the values to install it with and
what to do when a release fails. The status of the resource is written back
by the operator and is modeled here as well so that it can be read, modified
and written with optimistic concurrency.
"""

from dataclasses import dataclass, field
from enum import StrEnum
import logging
from typing import Any, ClassVar

from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig

from .exceptions import InputException

__all__ = [
    "HelmRelease",
    "HelmReleaseStatus",
    "ChartSource",
    "GitChartSource",
    "RepoChartSource",
    "ValuesFromSource",
    "Rollback",
    "Condition",
    "ConditionType",
    "ConditionStatus",
    "Phase",
]

_LOGGER = logging.getLogger(__name__)


# Match a prefix of apiVersion to ensure we have the right type of object.
HELM_RELEASE_DOMAIN = "helm.fluxcd.io"
HELM_RELEASE = "HelmRelease"
HELM_RELEASE_RESOURCE = "helmreleases.helm.fluxcd.io"
ANTECEDENT_ANNOTATION = "helm.fluxcd.io/antecedent"
DEFAULT_NAMESPACE = "default"
DEFAULT_VALUES_KEY = "values.yaml"
DEFAULT_TIMEOUT = 300
DEFAULT_MAX_HISTORY = 10
DEFAULT_ROLLBACK_TIMEOUT = 300
DEFAULT_ROLLBACK_MAX_RETRIES = 5


class ConditionType(StrEnum):
    """The type of a HelmRelease condition."""

    CHART_FETCHED = "ChartFetched"
    """The chart has been fetched from its source."""

    RELEASED = "Released"
    """The chart has been released with the declared values."""

    ROLLED_BACK = "RolledBack"
    """The release has been rolled back after a failed upgrade."""


class ConditionStatus(StrEnum):
    """The status of a HelmRelease condition."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class Phase(StrEnum):
    """The phase of the HelmRelease in the release lifecycle."""

    CHART_FETCHED = "ChartFetched"
    CHART_FETCH_FAILED = "ChartFetchFailed"
    INSTALLING = "Installing"
    UPGRADING = "Upgrading"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    ROLLING_BACK = "RollingBack"
    ROLLED_BACK = "RolledBack"
    ROLLBACK_FAILED = "RollbackFailed"


def _check_version(doc: dict[str, Any], version: str) -> None:
    """Assert that the resource has the specified version."""
    if not (api_version := doc.get("apiVersion")):
        raise InputException(f"Invalid object missing apiVersion: {doc}")
    if not api_version.startswith(version):
        raise InputException(f"Invalid object expected '{version}': {doc}")


@dataclass
class BaseManifest(DataClassDictMixin):
    """Base class for all manifest objects."""

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True


@dataclass
class GitChartSource(BaseManifest):
    """A chart stored at a path in a git repository."""

    git_url: str = field(metadata=field_options(alias="git"))
    """The URL of the git remote."""

    path: str
    """The path of the chart relative to the repository root."""

    ref: str | None = None
    """The branch, tag or commit to follow; the remote default branch if unset."""

    skip_dep_update: bool = field(
        metadata=field_options(alias="skipDepUpdate"), default=False
    )
    """Do not update the chart dependencies before releasing."""

    def ref_or_default(self, default: str) -> str:
        """Return the ref to follow, falling back to the given default."""
        return self.ref or default


@dataclass
class RepoChartSource(BaseManifest):
    """A chart published in a helm chart repository."""

    repo_url: str = field(metadata=field_options(alias="repository"))
    """The URL of the chart repository."""

    name: str
    """The name of the chart in the repository."""

    version: str
    """The version of the chart."""

    @property
    def clean_repo_url(self) -> str:
        """The repository URL with a single trailing slash."""
        return self.repo_url.rstrip("/") + "/"


@dataclass
class ChartSource:
    """The source of the chart, exactly one of the fields is set."""

    git: GitChartSource | None = None
    repository: RepoChartSource | None = None

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "ChartSource":
        """Parse the chart source from the HelmRelease spec.chart field."""
        try:
            if doc.get("git"):
                return ChartSource(git=GitChartSource.from_dict(doc))
            if doc.get("repository"):
                return ChartSource(repository=RepoChartSource.from_dict(doc))
        except (ValueError, LookupError) as err:
            raise InputException(f"Invalid chart source {doc}: {err}") from err
        return ChartSource()


@dataclass
class KeySelector(BaseManifest):
    """Selects a key of a ConfigMap or Secret."""

    name: str
    """The name of the object."""

    namespace: str | None = None
    """The namespace of the object; the HelmRelease namespace if unset."""

    key: str | None = None
    """The key holding a YAML values document."""

    optional: bool = False
    """Whether a missing object or key is ignored.

    Values of an optional ConfigMap that fail to parse are ignored too.
    """


@dataclass
class ChartFileSelector(BaseManifest):
    """Selects a values file inside the chart."""

    path: str
    """The path of the file relative to the chart directory."""

    optional: bool = False
    """Whether a missing file, or one that fails to parse, is ignored."""


@dataclass
class ExternalSourceSelector(BaseManifest):
    """Selects a values file served at a URL."""

    url: str
    """The http or https URL of the file."""

    optional: bool = False
    """Whether a file that can't be fetched or parsed is ignored."""


@dataclass
class ValuesFromSource(BaseManifest):
    """A source of values, exactly one of the fields is set."""

    config_map_key_ref: KeySelector | None = field(
        metadata=field_options(alias="configMapKeyRef"), default=None
    )
    secret_key_ref: KeySelector | None = field(
        metadata=field_options(alias="secretKeyRef"), default=None
    )
    external_source_ref: ExternalSourceSelector | None = field(
        metadata=field_options(alias="externalSourceRef"), default=None
    )
    chart_file_ref: ChartFileSelector | None = field(
        metadata=field_options(alias="chartFileRef"), default=None
    )


@dataclass
class Rollback(BaseManifest):
    """The rollback policy of a release."""

    enable: bool = False
    """Roll back the release when an upgrade fails."""

    retry: bool = False
    """Retry the upgrade after a rollback."""

    max_retries: int | None = field(
        metadata=field_options(alias="maxRetries"), default=None
    )
    """The number of upgrade attempts after rolling back."""

    force: bool = False
    recreate: bool = False
    disable_hooks: bool = field(
        metadata=field_options(alias="disableHooks"), default=False
    )
    timeout: int | None = None
    wait: bool = False

    def get_max_retries(self) -> int:
        """Return the upgrade retry budget."""
        if self.max_retries is None:
            return DEFAULT_ROLLBACK_MAX_RETRIES
        return self.max_retries

    def get_timeout(self) -> int:
        """Return the rollback timeout in seconds."""
        return self.timeout or DEFAULT_ROLLBACK_TIMEOUT


@dataclass
class Condition(BaseManifest):
    """An observation of the state of a HelmRelease."""

    type: str
    """One of ConditionType."""

    status: str
    """One of ConditionStatus."""

    reason: str | None = None
    """A machine readable reason for the last transition."""

    message: str | None = None
    """A human readable description of the last transition."""

    last_update_time: str | None = field(
        metadata=field_options(alias="lastUpdateTime"), default=None
    )
    """When the condition was last written, RFC3339."""

    last_transition_time: str | None = field(
        metadata=field_options(alias="lastTransitionTime"), default=None
    )
    """When the status of the condition last changed, RFC3339."""


@dataclass
class HelmReleaseStatus(BaseManifest):
    """The observed state of a HelmRelease, written by the operator."""

    observed_generation: int = field(
        metadata=field_options(alias="observedGeneration"), default=0
    )
    """The most recent generation the operator has processed."""

    phase: str | None = None
    """One of Phase."""

    release_name: str | None = field(
        metadata=field_options(alias="releaseName"), default=None
    )
    release_status: str | None = field(
        metadata=field_options(alias="releaseStatus"), default=None
    )
    """The status of the helm release as reported by helm."""

    revision: str | None = None
    """The chart revision of the last successful release."""

    last_attempted_revision: str | None = field(
        metadata=field_options(alias="lastAttemptedRevision"), default=None
    )
    """The chart revision of the last release attempt."""

    rollback_count: int = field(
        metadata=field_options(alias="rollbackCount"), default=0
    )
    """Rollbacks since the last successful release."""

    values_checksum: str | None = field(
        metadata=field_options(alias="valuesChecksum"), default=None
    )
    conditions: list[Condition] = field(default_factory=list)


@dataclass
class HelmRelease(BaseManifest):
    """A representation of a HelmRelease resource."""

    kind: ClassVar[str] = HELM_RELEASE
    """The kind of the object."""

    name: str
    """The name of the HelmRelease."""

    namespace: str
    """The namespace that owns the HelmRelease."""

    chart: ChartSource
    """Where to get the chart from."""

    api_version: str = f"{HELM_RELEASE_DOMAIN}/v1"
    generation: int = 0
    resource_version: str | None = None
    uid: str | None = None

    release_name_override: str | None = None
    """The name of the helm release from spec.releaseName."""

    target_namespace: str | None = None
    """The namespace to install the release in."""

    values: dict[str, Any] = field(default_factory=dict)
    values_from: list[ValuesFromSource] = field(default_factory=list)
    rollback: Rollback = field(default_factory=Rollback)
    timeout: int | None = None
    max_history: int | None = None
    reset_values: bool = False
    force_upgrade: bool = False
    wait: bool = False
    skip_crds: bool = False
    helm_version: str | None = None
    status: HelmReleaseStatus = field(default_factory=HelmReleaseStatus)

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "HelmRelease":
        """Parse a HelmRelease from a kubernetes resource object."""
        _check_version(doc, HELM_RELEASE_DOMAIN)
        if not (metadata := doc.get("metadata")):
            raise InputException(f"Invalid {cls} missing metadata: {doc}")
        if not (name := metadata.get("name")):
            raise InputException(f"Invalid {cls} missing metadata.name: {doc}")
        namespace = metadata.get("namespace") or DEFAULT_NAMESPACE
        if (spec := doc.get("spec")) is None:
            raise InputException(f"Invalid {cls} missing spec: {doc}")
        try:
            values_from = [
                ValuesFromSource.from_dict(subdoc)
                for subdoc in spec.get("valuesFrom") or ()
            ]
            rollback = Rollback.from_dict(spec.get("rollback") or {})
            status = HelmReleaseStatus.from_dict(doc.get("status") or {})
        except (ValueError, LookupError) as err:
            raise InputException(f"Invalid {cls} {namespace}/{name}: {err}") from err
        return HelmRelease(
            name=name,
            namespace=namespace,
            chart=ChartSource.parse_doc(spec.get("chart") or {}),
            api_version=doc["apiVersion"],
            generation=metadata.get("generation", 0),
            resource_version=metadata.get("resourceVersion"),
            uid=metadata.get("uid"),
            release_name_override=spec.get("releaseName"),
            target_namespace=spec.get("targetNamespace"),
            values=spec.get("values") or {},
            values_from=values_from,
            rollback=rollback,
            timeout=spec.get("timeout"),
            max_history=spec.get("maxHistory"),
            reset_values=spec.get("resetValues", False),
            force_upgrade=spec.get("forceUpgrade", False),
            wait=spec.get("wait", False),
            skip_crds=spec.get("skipCRDs", False),
            helm_version=spec.get("helmVersion"),
            status=status,
        )

    @property
    def release_namespace(self) -> str:
        """Actual namespace where the helm release will be installed to."""
        return self.target_namespace or self.namespace or DEFAULT_NAMESPACE

    @property
    def release_name(self) -> str:
        """The name of the helm release managed by this HelmRelease.

        Without an explicit name the release is named after the target
        namespace and the resource, qualified with the resource namespace when
        it installs into another namespace to keep names unique.
        """
        if self.release_name_override:
            return self.release_name_override
        namespace = self.namespace or DEFAULT_NAMESPACE
        if namespace != self.release_namespace:
            return f"{namespace}-{self.release_namespace}-{self.name}"
        return f"{self.release_namespace}-{self.name}"

    @property
    def namespaced_name(self) -> str:
        """Return the namespace and name concatenated as an id."""
        return f"{self.namespace}/{self.name}"

    @property
    def resource_id(self) -> str:
        """The identity stored in the antecedent annotation of released objects."""
        return f"{self.namespace}:{self.kind.lower()}/{self.name}"

    def get_timeout(self) -> int:
        """Return the install/upgrade timeout in seconds."""
        return self.timeout or DEFAULT_TIMEOUT

    def get_max_history(self) -> int:
        """Return the number of release revisions to keep."""
        if self.max_history is None:
            return DEFAULT_MAX_HISTORY
        return self.max_history

    def get_wait(self) -> bool:
        """Whether to wait for the release to become ready.

        A release that may be rolled back is waited on so that failures are
        detected by the upgrade.
        """
        return self.wait or self.rollback.enable

    def status_doc(self) -> dict[str, Any]:
        """Return the object used to write the status subresource."""
        metadata: dict[str, Any] = {"name": self.name, "namespace": self.namespace}
        if self.resource_version:
            metadata["resourceVersion"] = self.resource_version
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": metadata,
            "status": self.status.to_dict(),
        }
