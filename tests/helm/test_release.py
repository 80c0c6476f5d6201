"""Tests for helm release snapshots."""

import pytest

from helm_operator.exceptions import HelmException
from helm_operator.helm import Chart, Release, ReleaseStatus
from helm_operator.kube import ObjectRef

MANIFEST = """\
---
# Source: app/templates/serviceaccount.yaml
apiVersion: v1
kind: ServiceAccount
metadata:
  name: app
---
apiVersion: rbac.authorization.k8s.io/v1
kind: ClusterRole
metadata:
  name: app-reader
---
apiVersion: v1
kind: ConfigMapList
items:
  - apiVersion: v1
    kind: ConfigMap
    metadata:
      name: app-a
  - apiVersion: v1
    kind: ConfigMap
    metadata:
      name: app-b
      namespace: other
---
apiVersion: v1
kind: Service
metadata: {}
---
"""

CHART = {
    "metadata": {"name": "app", "version": "1.2.0", "appVersion": "2.0"},
    "templates": [{"name": "templates/deployment.yaml", "data": "YQ=="}],
    "values": {"replicas": 1},
}

RELEASE_DOC = {
    "name": "default-app",
    "namespace": "web",
    "version": 3,
    "info": {"status": "deployed", "description": "Upgrade complete"},
    "chart": CHART,
    "config": {"replicas": 2},
    "manifest": "kind: ConfigMap\n",
}


def test_parse_doc() -> None:
    """Test parsing the JSON output of helm."""
    release = Release.parse_doc(RELEASE_DOC)
    assert release.name == "default-app"
    assert release.namespace == "web"
    assert release.revision == 3
    assert release.status == ReleaseStatus.DEPLOYED
    assert release.description == "Upgrade complete"
    assert release.chart.name == "app"
    assert release.chart.version == "1.2.0"
    assert release.chart.app_version == "2.0"
    assert release.chart.digest
    assert release.values == {"replicas": 2}


def test_chart_digest() -> None:
    """Test the chart digest changes with the chart content."""
    digest = Release.parse_doc(RELEASE_DOC).chart.digest
    changed = {**RELEASE_DOC, "chart": {**CHART, "values": {"replicas": 3}}}
    assert Release.parse_doc(changed).chart.digest != digest
    assert Release.parse_doc({**RELEASE_DOC}).chart.digest == digest
    assert Release.parse_doc({"name": "app"}).chart.digest is None


def test_parse_invalid_doc() -> None:
    """Test parsing a release without a name."""
    with pytest.raises(HelmException, match="Unable to parse"):
        Release.parse_doc({"version": 1})


@pytest.mark.parametrize(
    ("value", "expected", "pending"),
    [
        ("deployed", ReleaseStatus.DEPLOYED, False),
        ("pending-upgrade", ReleaseStatus.PENDING_UPGRADE, True),
        ("pending-rollback", ReleaseStatus.PENDING_ROLLBACK, True),
        ("failed", ReleaseStatus.FAILED, False),
        ("bogus", ReleaseStatus.UNKNOWN, False),
        (None, ReleaseStatus.UNKNOWN, False),
    ],
)
def test_release_status(
    value: str | None, expected: ReleaseStatus, pending: bool
) -> None:
    """Test parsing release statuses."""
    status = ReleaseStatus.parse(value)
    assert status == expected
    assert status.pending == pending


def test_objects() -> None:
    """Test listing the objects of the release manifest."""
    release = Release(
        name="default-app",
        namespace="web",
        chart=Chart(name="app", version="1.0.0"),
        revision=1,
        status=ReleaseStatus.DEPLOYED,
        manifest=MANIFEST,
    )
    assert release.objects() == [
        ObjectRef("v1", "ServiceAccount", "web", "app"),
        ObjectRef("rbac.authorization.k8s.io/v1", "ClusterRole", "web", "app-reader"),
        ObjectRef("v1", "ConfigMap", "web", "app-a"),
        ObjectRef("v1", "ConfigMap", "other", "app-b"),
    ]


def test_objects_invalid_manifest() -> None:
    """Test a manifest that is not YAML."""
    release = Release(
        name="default-app",
        namespace="web",
        chart=Chart(name="app", version="1.0.0"),
        revision=1,
        status=ReleaseStatus.DEPLOYED,
        manifest="kind: [",
    )
    with pytest.raises(HelmException, match="Unable to parse manifest"):
        release.objects()
