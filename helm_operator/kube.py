"""Library for talking to the kubernetes cluster.

The operator only needs a handful of capabilities from the cluster API:
reading and listing HelmRelease resources, writing their status with
optimistic concurrency, reading ConfigMaps and Secrets referenced by release
values, and reading or writing annotations on the objects of a release.
These are defined by `ClusterClient` and implemented by shelling out to
`kubectl`.
"""

from abc import ABC, abstractmethod
import base64
from collections.abc import Iterable
from dataclasses import dataclass
from itertools import groupby
import json
import logging
from typing import Any

from . import command
from .exceptions import (
    ConflictError,
    InputException,
    KubectlException,
    ObjectNotFoundError,
)
from .manifest import HELM_RELEASE_RESOURCE, HelmRelease

__all__ = [
    "ClusterClient",
    "Kubectl",
    "ObjectRef",
]

_LOGGER = logging.getLogger(__name__)

KUBECTL_BIN = "kubectl"

_CONFLICT_MESSAGES = ("the object has been modified", "(Conflict)")


@dataclass(frozen=True, order=True)
class ObjectRef:
    """Identifier for an object in the cluster."""

    api_version: str
    kind: str
    namespace: str | None
    name: str

    @property
    def resource_type(self) -> str:
        """The fully qualified type accepted by kubectl."""
        if "/" in self.api_version:
            group, version = self.api_version.split("/", 1)
            return f"{self.kind}.{version}.{group}"
        return self.kind

    def __str__(self) -> str:
        """Return the kind and namespaced name concatenated as an id."""
        if self.namespace:
            return f"{self.kind}/{self.namespace}/{self.name}"
        return f"{self.kind}/{self.name}"


class ClusterClient(ABC):
    """Interface for accessing the cluster API."""

    @abstractmethod
    async def get_release(self, namespace: str, name: str) -> HelmRelease | None:
        """Return the HelmRelease or None if it does not exist."""

    @abstractmethod
    async def list_releases(self, namespace: str | None = None) -> list[HelmRelease]:
        """Return all HelmReleases, optionally limited to a namespace."""

    @abstractmethod
    async def update_status(self, release: HelmRelease) -> HelmRelease:
        """Write the status of the HelmRelease.

        The write is rejected with a `ConflictError` when the resource version
        of the release is not the latest one.
        """

    @abstractmethod
    async def get_config_map(self, namespace: str, name: str) -> dict[str, str] | None:
        """Return the data of a ConfigMap or None if it does not exist."""

    @abstractmethod
    async def get_secret(self, namespace: str, name: str) -> dict[str, str] | None:
        """Return the decoded data of a Secret or None if it does not exist."""

    @abstractmethod
    async def get_annotation(self, obj: ObjectRef, key: str) -> str | None:
        """Return the value of an annotation on an object.

        Raises `ObjectNotFoundError` when the object does not exist.
        """

    @abstractmethod
    async def annotate(self, objs: Iterable[ObjectRef], key: str, value: str) -> None:
        """Set the annotation on all the objects."""


def _decode_data(data: dict[str, str] | None) -> dict[str, str]:
    return {k: base64.b64decode(v).decode("utf-8") for k, v in (data or {}).items()}


class Kubectl(ClusterClient):
    """A `ClusterClient` that shells out to kubectl."""

    def __init__(self, kubectl: str = KUBECTL_BIN, context: str | None = None) -> None:
        """Initialize Kubectl."""
        self._kubectl = kubectl
        self._context = context

    def _command(self, *args: str) -> command.Command:
        cmd = [self._kubectl]
        if self._context:
            cmd.extend(["--context", self._context])
        cmd.extend(args)
        return command.Command(cmd, exc=KubectlException)

    async def _get_json(self, *args: str) -> dict[str, Any] | None:
        out = await command.run(
            self._command("get", *args, "--ignore-not-found", "-o", "json")
        )
        if not out.strip():
            return None
        try:
            return json.loads(out)
        except ValueError as err:
            raise KubectlException(f"Unable to parse kubectl output: {err}") from err

    async def get_release(self, namespace: str, name: str) -> HelmRelease | None:
        """Return the HelmRelease or None if it does not exist."""
        doc = await self._get_json(HELM_RELEASE_RESOURCE, name, "-n", namespace)
        if doc is None:
            return None
        return HelmRelease.parse_doc(doc)

    async def list_releases(self, namespace: str | None = None) -> list[HelmRelease]:
        """Return all HelmReleases, optionally limited to a namespace."""
        scope = ["-n", namespace] if namespace else ["--all-namespaces"]
        doc = await self._get_json(HELM_RELEASE_RESOURCE, *scope)
        releases = []
        for item in (doc or {}).get("items", []):
            try:
                releases.append(HelmRelease.parse_doc(item))
            except InputException as err:
                _LOGGER.warning("Ignoring invalid HelmRelease: %s", err)
        return releases

    async def update_status(self, release: HelmRelease) -> HelmRelease:
        """Write the status of the HelmRelease."""
        cmd = self._command("replace", "--subresource=status", "-f", "-", "-o", "json")
        try:
            out = await command.run(cmd, json.dumps(release.status_doc()).encode())
        except KubectlException as err:
            if any(msg in str(err) for msg in _CONFLICT_MESSAGES):
                raise ConflictError(
                    f"HelmRelease {release.namespaced_name} was modified: {err}"
                ) from err
            raise
        return HelmRelease.parse_doc(json.loads(out))

    async def get_config_map(self, namespace: str, name: str) -> dict[str, str] | None:
        """Return the data of a ConfigMap or None if it does not exist."""
        if (doc := await self._get_json("configmap", name, "-n", namespace)) is None:
            return None
        return {**(doc.get("data") or {}), **_decode_data(doc.get("binaryData"))}

    async def get_secret(self, namespace: str, name: str) -> dict[str, str] | None:
        """Return the decoded data of a Secret or None if it does not exist."""
        if (doc := await self._get_json("secret", name, "-n", namespace)) is None:
            return None
        return _decode_data(doc.get("data"))

    async def get_annotation(self, obj: ObjectRef, key: str) -> str | None:
        """Return the value of an annotation on an object."""
        args = [f"{obj.resource_type}/{obj.name}"]
        if obj.namespace:
            args.extend(["-n", obj.namespace])
        if (doc := await self._get_json(*args)) is None:
            raise ObjectNotFoundError(f"Object {obj} not found")
        return (doc.get("metadata", {}).get("annotations") or {}).get(key)

    async def annotate(self, objs: Iterable[ObjectRef], key: str, value: str) -> None:
        """Set the annotation on all the objects, one call per namespace."""
        for namespace, group in groupby(
            sorted(objs, key=lambda o: (o.namespace or "", o)),
            key=lambda o: o.namespace,
        ):
            args = ["annotate", "--overwrite"]
            if namespace:
                args.extend(["-n", namespace])
            args.extend(f"{obj.resource_type}/{obj.name}" for obj in group)
            args.append(f"{key}={value}")
            await command.run(self._command(*args))
