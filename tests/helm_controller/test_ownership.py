"""Tests for the release ownership and comparison helpers."""

from dataclasses import replace

from fakes import MANIFEST, FakeCluster, new_helm_release
from helm_operator.exceptions import KubectlException
from helm_operator.helm import Chart, Release, ReleaseStatus
from helm_operator.helm_controller.release import (
    annotate_resources,
    can_uninstall,
    owner_of,
    release_diff,
)
from helm_operator.kube import ObjectRef
from helm_operator.manifest import ANTECEDENT_ANNOTATION

DEPLOYMENT = ObjectRef("apps/v1", "Deployment", "default", "app")
CONFIG_MAP = ObjectRef("v1", "ConfigMap", "default", "app-config")

RELEASE = Release(
    name="default-app",
    namespace="default",
    chart=Chart(name="app", version="1.0.0", digest="abc"),
    revision=1,
    status=ReleaseStatus.DEPLOYED,
    values={"replicas": 1},
    manifest=MANIFEST,
)


async def test_owner_of_unannotated() -> None:
    """Test a release without annotations can be adopted."""
    cluster = FakeCluster()
    cluster.annotations[CONFIG_MAP] = {}
    assert await owner_of(cluster, RELEASE, new_helm_release()) is None


async def test_owner_of_self() -> None:
    """Test a release annotated for the HelmRelease is owned by it."""
    cluster = FakeCluster()
    release = new_helm_release()
    await annotate_resources(cluster, RELEASE, release)
    assert cluster.annotations == {
        CONFIG_MAP: {ANTECEDENT_ANNOTATION: "default:helmrelease/app"},
        DEPLOYMENT: {ANTECEDENT_ANNOTATION: "default:helmrelease/app"},
    }
    assert await owner_of(cluster, RELEASE, release) is None


async def test_owner_of_other() -> None:
    """Test the first existing object decides the owner."""
    cluster = FakeCluster()
    cluster.annotations[DEPLOYMENT] = {
        ANTECEDENT_ANNOTATION: "other:helmrelease/app"
    }
    assert (
        await owner_of(cluster, RELEASE, new_helm_release())
        == "other:helmrelease/app"
    )


class ForbiddenConfigMaps(FakeCluster):
    """A cluster where ConfigMaps can't be read."""

    async def get_annotation(self, obj: ObjectRef, key: str) -> str | None:
        if obj.kind == "ConfigMap":
            raise KubectlException("configmaps is forbidden")
        return await super().get_annotation(obj, key)


async def test_owner_of_lookup_error() -> None:
    """Test objects whose annotation can't be read are skipped."""
    cluster = ForbiddenConfigMaps()
    cluster.annotations[DEPLOYMENT] = {
        ANTECEDENT_ANNOTATION: "other:helmrelease/app"
    }
    assert (
        await owner_of(cluster, RELEASE, new_helm_release())
        == "other:helmrelease/app"
    )
    del cluster.annotations[DEPLOYMENT]
    assert await owner_of(cluster, RELEASE, new_helm_release()) is None


async def test_owner_of_no_objects() -> None:
    """Test a release whose objects are all gone."""
    assert await owner_of(FakeCluster(), RELEASE, new_helm_release()) is None


def test_can_uninstall() -> None:
    """Test only settled releases are uninstalled."""
    assert can_uninstall(RELEASE)
    assert can_uninstall(replace(RELEASE, status=ReleaseStatus.FAILED))
    assert not can_uninstall(replace(RELEASE, status=ReleaseStatus.PENDING_UPGRADE))
    assert not can_uninstall(replace(RELEASE, status=ReleaseStatus.UNINSTALLING))


def test_release_diff_same() -> None:
    """Test identical releases have no diff."""
    assert release_diff(RELEASE, replace(RELEASE, revision=2)) == []


def test_release_diff_values() -> None:
    """Test a change of values is reported."""
    diff = release_diff(RELEASE, replace(RELEASE, values={"replicas": 2}))
    assert diff[0] == "--- default-app (revision 1)\n"
    assert diff[1] == "+++ default-app (desired)\n"
    assert "-  replicas: 1\n" in diff
    assert "+  replicas: 2\n" in diff


def test_release_diff_digest() -> None:
    """Test the chart content is compared only when both sides carry it."""
    changed = replace(RELEASE, chart=replace(RELEASE.chart, digest="def"))
    assert release_diff(RELEASE, changed)
    unknown = replace(RELEASE, chart=replace(RELEASE.chart, digest=None))
    assert release_diff(unknown, changed) == []
