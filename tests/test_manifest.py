"""Tests for manifest library."""

from pathlib import Path
from typing import Any

import pytest
import yaml

from helm_operator.exceptions import InputException
from helm_operator.manifest import HelmRelease

TESTDATA_DIR = Path("tests/testdata/releases")


def load_release(filename: str) -> HelmRelease:
    """Parse a HelmRelease from the testdata directory."""
    return HelmRelease.parse_doc(yaml.safe_load((TESTDATA_DIR / filename).read_text()))


def test_parse_git_release() -> None:
    """Test parsing a HelmRelease with a git chart source."""
    release = load_release("podinfo.yaml")
    assert release.name == "podinfo"
    assert release.namespace == "apps"
    assert release.generation == 4
    assert release.resource_version == "1234"
    assert release.chart.repository is None
    assert release.chart.git
    assert release.chart.git.git_url == "https://github.com/stefanprodan/podinfo.git"
    assert release.chart.git.path == "charts/podinfo"
    assert release.chart.git.ref_or_default("HEAD") == "master"
    assert not release.chart.git.skip_dep_update
    assert release.release_name == "podinfo"
    assert release.release_namespace == "podinfo"
    assert release.get_timeout() == 600
    assert release.get_max_history() == 5
    assert release.skip_crds
    assert release.reset_values
    assert release.values == {"replicaCount": 2, "ingress": {"enabled": True}}


def test_parse_values_from() -> None:
    """Test parsing the valuesFrom sources in order."""
    release = load_release("podinfo.yaml")
    assert len(release.values_from) == 3
    config_map, secret, chart_file = release.values_from
    assert config_map.config_map_key_ref
    assert config_map.config_map_key_ref.name == "podinfo-values"
    assert config_map.config_map_key_ref.key == "values.yaml"
    assert config_map.config_map_key_ref.optional
    assert secret.secret_key_ref
    assert secret.secret_key_ref.name == "podinfo-secrets"
    assert secret.secret_key_ref.key is None
    assert not secret.secret_key_ref.optional
    assert chart_file.chart_file_ref
    assert chart_file.chart_file_ref.path == "overrides/production.yaml"


def test_parse_rollback() -> None:
    """Test parsing the rollback policy."""
    release = load_release("podinfo.yaml")
    assert release.rollback.enable
    assert release.rollback.retry
    assert release.rollback.get_max_retries() == 3
    assert release.rollback.disable_hooks
    assert release.rollback.get_timeout() == 300


def test_parse_status() -> None:
    """Test parsing the status written by the operator."""
    release = load_release("podinfo.yaml")
    assert release.status.observed_generation == 3
    assert release.status.phase == "Succeeded"
    assert release.status.release_status == "deployed"
    assert release.status.revision == "7a3c2b1"
    assert release.status.last_attempted_revision == "7a3c2b1"
    assert [c.type for c in release.status.conditions] == [
        "ChartFetched",
        "Released",
    ]
    assert release.status.conditions[1].last_transition_time == "2024-01-01T00:01:00Z"


def test_parse_repo_release_defaults() -> None:
    """Test the defaults of a HelmRelease with a minimal spec."""
    release = load_release("redis.yaml")
    assert release.chart.git is None
    assert release.chart.repository
    assert release.chart.repository.name == "redis"
    assert release.chart.repository.version == "17.3.7"
    assert release.chart.repository.clean_repo_url == (
        "https://charts.bitnami.com/bitnami/"
    )
    assert release.release_name == "cache-redis"
    assert release.release_namespace == "cache"
    assert release.get_timeout() == 300
    assert release.get_max_history() == 10
    assert not release.get_wait()
    assert release.values == {}
    assert release.values_from == []
    assert not release.rollback.enable
    assert release.rollback.get_max_retries() == 5
    assert release.status.observed_generation == 0
    assert release.status.conditions == []
    assert release.resource_id == "cache:helmrelease/redis"
    assert release.namespaced_name == "cache/redis"


def release_doc(**spec: Any) -> dict[str, Any]:
    """Return a HelmRelease resource object with the given spec."""
    return {
        "apiVersion": "helm.fluxcd.io/v1",
        "kind": "HelmRelease",
        "metadata": {"name": "app", "namespace": "apps"},
        "spec": {"chart": {"git": "ssh://git@example.com/charts", "path": "app"}}
        | spec,
    }


@pytest.mark.parametrize(
    ("spec", "expected"),
    [
        ({}, "apps-app"),
        ({"targetNamespace": "apps"}, "apps-app"),
        ({"targetNamespace": "web"}, "apps-web-app"),
        ({"releaseName": "my-app", "targetNamespace": "web"}, "my-app"),
    ],
)
def test_release_name(spec: dict[str, Any], expected: str) -> None:
    """Test the name of the helm release derived from the HelmRelease."""
    release = HelmRelease.parse_doc(release_doc(**spec))
    assert release.release_name == expected


def test_default_namespace() -> None:
    """Test a HelmRelease without a namespace lives in the default namespace."""
    doc = release_doc()
    del doc["metadata"]["namespace"]
    release = HelmRelease.parse_doc(doc)
    assert release.namespace == "default"
    assert release.release_name == "default-app"


def test_rollback_enables_wait() -> None:
    """Test a release that may be rolled back waits for readiness."""
    release = HelmRelease.parse_doc(release_doc(rollback={"enable": True}))
    assert release.get_wait()


def test_missing_chart_source() -> None:
    """Test a chart without a git or repository source."""
    release = HelmRelease.parse_doc(release_doc(chart={}))
    assert release.chart.git is None
    assert release.chart.repository is None


@pytest.mark.parametrize(
    ("doc", "match"),
    [
        ({"kind": "HelmRelease"}, "missing apiVersion"),
        ({"apiVersion": "helm.toolkit.fluxcd.io/v2"}, "expected 'helm.fluxcd.io'"),
        ({"apiVersion": "helm.fluxcd.io/v1"}, "missing metadata"),
        (
            {"apiVersion": "helm.fluxcd.io/v1", "metadata": {"namespace": "apps"}},
            "missing metadata.name",
        ),
        (
            {"apiVersion": "helm.fluxcd.io/v1", "metadata": {"name": "app"}},
            "missing spec",
        ),
    ],
)
def test_parse_invalid_doc(doc: dict[str, Any], match: str) -> None:
    """Test parsing invalid HelmRelease objects."""
    with pytest.raises(InputException, match=match):
        HelmRelease.parse_doc(doc)


def test_parse_invalid_chart_source() -> None:
    """Test a git chart source without a path."""
    with pytest.raises(InputException, match="Invalid chart source"):
        HelmRelease.parse_doc(release_doc(chart={"git": "ssh://git@example.com"}))


def test_status_doc() -> None:
    """Test the status subresource object uses the resource field names."""
    release = load_release("podinfo.yaml")
    doc = release.status_doc()
    assert doc["apiVersion"] == "helm.fluxcd.io/v1"
    assert doc["kind"] == "HelmRelease"
    assert doc["metadata"] == {
        "name": "podinfo",
        "namespace": "apps",
        "resourceVersion": "1234",
    }
    status = doc["status"]
    assert status["observedGeneration"] == 3
    assert status["releaseStatus"] == "deployed"
    assert status["lastAttemptedRevision"] == "7a3c2b1"
    assert status["rollbackCount"] == 0
    assert status["conditions"][0]["lastUpdateTime"] == "2024-01-01T00:00:00Z"
    assert "observed_generation" not in status


def test_status_doc_omits_unset_fields() -> None:
    """Test unset status fields are not written."""
    release = load_release("redis.yaml")
    doc = release.status_doc()
    assert "resourceVersion" not in doc["metadata"]
    assert doc["status"] == {
        "observedGeneration": 0,
        "rollbackCount": 0,
        "conditions": [],
    }
