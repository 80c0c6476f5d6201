"""Helpers for acting on the helm release of a HelmRelease.

A release is owned by the HelmRelease whose identity is stored in the
antecedent annotation of the objects it created. A release whose objects
carry no annotation may be adopted; releases annotated for another
HelmRelease are never modified.
"""

from dataclasses import replace
import difflib
import logging
from typing import Any

import yaml

from ..exceptions import KubectlException, ObjectNotFoundError
from ..helm import Release, ReleaseStatus
from ..kube import ClusterClient
from ..manifest import ANTECEDENT_ANNOTATION, HelmRelease

__all__ = [
    "annotate_resources",
    "can_uninstall",
    "owner_of",
    "release_diff",
]

_LOGGER = logging.getLogger(__name__)


async def owner_of(
    cluster: ClusterClient, release: Release, helm_release: HelmRelease
) -> str | None:
    """Return the identity of another HelmRelease owning the release.

    Returns None when the release is owned by the HelmRelease or can be
    adopted by it. The first object of the release that exists decides.
    """
    for obj in release.objects():
        try:
            antecedent = await cluster.get_annotation(obj, ANTECEDENT_ANNOTATION)
        except ObjectNotFoundError:
            _LOGGER.debug("Object %s of release %s not found", obj, release.name)
            continue
        except KubectlException as err:
            _LOGGER.debug("Unable to get owner of %s: %s", obj, err)
            continue
        if not antecedent or antecedent == helm_release.resource_id:
            return None
        return antecedent
    return None


async def annotate_resources(
    cluster: ClusterClient, release: Release, helm_release: HelmRelease
) -> None:
    """Mark the objects of the release as owned by the HelmRelease."""
    if not (objects := release.objects()):
        return
    try:
        await cluster.annotate(
            objects, ANTECEDENT_ANNOTATION, helm_release.resource_id
        )
    except KubectlException as err:
        _LOGGER.warning(
            "Unable to annotate objects of release %s: %s", release.name, err
        )


def can_uninstall(release: Release) -> bool:
    """Whether the release is in a state that can be uninstalled."""
    return release.status in (ReleaseStatus.DEPLOYED, ReleaseStatus.FAILED)


def _describe(release: Release) -> list[str]:
    chart: dict[str, Any] = {
        "name": release.chart.name,
        "version": release.chart.version,
        "appVersion": release.chart.app_version,
    }
    doc: dict[str, Any] = {"chart": chart, "values": release.values}
    if release.chart.digest is not None:
        chart["digest"] = release.chart.digest
    return yaml.dump(doc, sort_keys=True).splitlines(keepends=True)


def release_diff(current: Release, desired: Release) -> list[str]:
    """Return a unified diff of the chart and values of two releases.

    The chart content is only compared when both releases carry it.
    """
    if current.chart.digest is None or desired.chart.digest is None:
        current = _without_digest(current)
        desired = _without_digest(desired)
    return list(
        difflib.unified_diff(
            _describe(current),
            _describe(desired),
            fromfile=f"{current.name} (revision {current.revision})",
            tofile=f"{desired.name} (desired)",
        )
    )


def _without_digest(release: Release) -> Release:
    return replace(release, chart=replace(release.chart, digest=None))
