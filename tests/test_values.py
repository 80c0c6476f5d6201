"""Tests for composing the values of a release."""

from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any

import httpx
import pytest

from fakes import FakeCluster, new_helm_release, write_chart
from helm_operator.exceptions import ValuesException
from helm_operator.values import compose_values, merge_values, values_checksum


@pytest.fixture(name="cluster")
def cluster_fixture() -> FakeCluster:
    """Fixture for a cluster holding values sources."""
    return FakeCluster()


@pytest.fixture(name="chart_path")
def chart_path_fixture(tmp_path: Path) -> Path:
    """Fixture for a chart directory with a values override file."""
    chart_path = write_chart(tmp_path / "app")
    (chart_path / "overrides").mkdir()
    (chart_path / "overrides" / "prod.yaml").write_text(
        "replicas: 3\nimage:\n  tag: prod\n"
    )
    return chart_path


def test_merge_values() -> None:
    """Test maps are merged recursively and other values are replaced."""
    base = {
        "image": {"repository": "app", "tag": "1.0"},
        "args": ["--verbose"],
        "replicas": 1,
    }
    override = {
        "image": {"tag": "2.0"},
        "args": ["--quiet"],
        "service": {"port": 80},
    }
    assert merge_values(base, override) == {
        "image": {"repository": "app", "tag": "2.0"},
        "args": ["--quiet"],
        "replicas": 1,
        "service": {"port": 80},
    }
    assert base["image"] == {"repository": "app", "tag": "1.0"}


def test_merge_values_replaces_map_with_scalar() -> None:
    """Test a scalar override replaces a map."""
    assert merge_values({"image": {"tag": "1.0"}}, {"image": None}) == {"image": None}


def test_values_checksum() -> None:
    """Test the checksum does not depend on key order."""
    checksum = values_checksum({"a": 1, "b": {"c": 2, "d": 3}})
    assert checksum == values_checksum({"b": {"d": 3, "c": 2}, "a": 1})
    assert checksum != values_checksum({"a": 1, "b": {"c": 2, "d": 4}})
    assert len(checksum) == 64


async def test_inline_values(cluster: FakeCluster, chart_path: Path) -> None:
    """Test a release with only inline values."""
    release = new_helm_release(values={"replicas": 2})
    assert await compose_values(cluster, release, chart_path) == {"replicas": 2}


async def test_values_from_sources(cluster: FakeCluster, chart_path: Path) -> None:
    """Test later sources take precedence and inline values come last."""
    cluster.config_maps[("default", "app-values")] = {
        "values.yaml": "replicas: 1\nimage:\n  repository: app\n  tag: cm\n"
    }
    cluster.secrets[("secrets", "app-secrets")] = {
        "custom.yaml": "password: hunter2\nimage:\n  tag: secret\n"
    }
    release = new_helm_release(
        valuesFrom=[
            {"configMapKeyRef": {"name": "app-values"}},
            {
                "secretKeyRef": {
                    "name": "app-secrets",
                    "namespace": "secrets",
                    "key": "custom.yaml",
                }
            },
            {"chartFileRef": {"path": "overrides/prod.yaml"}},
        ],
        values={"image": {"pullPolicy": "Always"}},
    )
    assert await compose_values(cluster, release, chart_path) == {
        "replicas": 3,
        "password": "hunter2",
        "image": {"repository": "app", "tag": "prod", "pullPolicy": "Always"},
    }


@pytest.mark.parametrize(
    "values_from",
    [
        {"configMapKeyRef": {"name": "missing", "optional": True}},
        {"configMapKeyRef": {"name": "app-values", "key": "x", "optional": True}},
        {"secretKeyRef": {"name": "missing", "optional": True}},
        {"chartFileRef": {"path": "missing.yaml", "optional": True}},
    ],
)
async def test_optional_source_missing(
    cluster: FakeCluster, chart_path: Path, values_from: dict[str, Any]
) -> None:
    """Test missing optional sources are skipped."""
    cluster.config_maps[("default", "app-values")] = {"values.yaml": "a: 1"}
    release = new_helm_release(valuesFrom=[values_from], values={"b": 2})
    assert await compose_values(cluster, release, chart_path) == {"b": 2}


@pytest.mark.parametrize(
    ("values_from", "match"),
    [
        ({"configMapKeyRef": {"name": "missing"}}, "Could not find ConfigMap"),
        (
            {"configMapKeyRef": {"name": "app-values", "key": "other.yaml"}},
            "Could not find key other.yaml in ConfigMap default/app-values",
        ),
        ({"secretKeyRef": {"name": "missing"}}, "Could not find Secret"),
        ({"chartFileRef": {"path": "missing.yaml"}}, "Could not find chart file"),
        ({"chartFileRef": {"path": "../secret.yaml"}}, "outside of the chart"),
        ({}, "Unsupported valuesFrom source"),
    ],
)
async def test_source_missing(
    cluster: FakeCluster,
    chart_path: Path,
    values_from: dict[str, Any],
    match: str,
) -> None:
    """Test errors for missing or unsupported values sources."""
    cluster.config_maps[("default", "app-values")] = {"values.yaml": "a: 1"}
    (chart_path.parent / "secret.yaml").write_text("password: hunter2\n")
    release = new_helm_release(valuesFrom=[values_from])
    with pytest.raises(ValuesException, match=match):
        await compose_values(cluster, release, chart_path)


@pytest.mark.parametrize(
    ("content", "match"),
    [
        ("- a\n- b\n", "to be a map, found list"),
        ("a: [", "Unable to parse values"),
    ],
)
async def test_invalid_values(
    cluster: FakeCluster, chart_path: Path, content: str, match: str
) -> None:
    """Test values that are not a YAML map."""
    cluster.config_maps[("default", "app-values")] = {"values.yaml": content}
    release = new_helm_release(
        valuesFrom=[{"configMapKeyRef": {"name": "app-values"}}]
    )
    with pytest.raises(ValuesException, match=match):
        await compose_values(cluster, release, chart_path)


async def test_empty_values_document(cluster: FakeCluster, chart_path: Path) -> None:
    """Test an empty values document contributes nothing."""
    cluster.config_maps[("default", "app-values")] = {"values.yaml": ""}
    release = new_helm_release(
        valuesFrom=[{"configMapKeyRef": {"name": "app-values"}}], values={"a": 1}
    )
    assert await compose_values(cluster, release, chart_path) == {"a": 1}


async def test_invalid_optional_values(cluster: FakeCluster, chart_path: Path) -> None:
    """Test optional ConfigMap and chart file values that fail to parse are skipped."""
    cluster.config_maps[("default", "vals")] = {"values.yaml": "a: [unclosed"}
    (chart_path / "broken.yaml").write_text("- a\n")
    release = new_helm_release(
        valuesFrom=[
            {"configMapKeyRef": {"name": "vals", "optional": True}},
            {"chartFileRef": {"path": "broken.yaml", "optional": True}},
        ],
        values={"b": 1},
    )
    assert await compose_values(cluster, release, chart_path) == {"b": 1}


async def test_invalid_optional_secret(cluster: FakeCluster, chart_path: Path) -> None:
    """Test optional Secret values that fail to parse are an error."""
    cluster.secrets[("default", "vals")] = {"values.yaml": "a: [unclosed"}
    release = new_helm_release(
        valuesFrom=[{"secretKeyRef": {"name": "vals", "optional": True}}]
    )
    with pytest.raises(ValuesException, match="Unable to parse values"):
        await compose_values(cluster, release, chart_path)


VALUES_URL = "https://charts.example.com/values/prod.yaml"


def serve(request: httpx.Request) -> httpx.Response:
    """Serve values files for the values URL tests."""
    if request.url.path == "/values/prod.yaml":
        return httpx.Response(200, text="replicas: 4\nimage:\n  tag: url\n")
    if request.url.path == "/values/broken.yaml":
        return httpx.Response(200, text="a: [unclosed")
    if request.url.host == "unreachable.example.com":
        raise httpx.ConnectError("Connection refused", request=request)
    return httpx.Response(404, text="Not found")


@pytest.fixture(name="client")
async def client_fixture() -> AsyncGenerator[httpx.AsyncClient, None]:
    """Fixture for an http client serving values files."""
    async with httpx.AsyncClient(transport=httpx.MockTransport(serve)) as client:
        yield client


async def test_external_source(
    cluster: FakeCluster, chart_path: Path, client: httpx.AsyncClient
) -> None:
    """Test values are read from a URL and merged in order."""
    release = new_helm_release(
        valuesFrom=[
            {"chartFileRef": {"path": "overrides/prod.yaml"}},
            {"externalSourceRef": {"url": VALUES_URL}},
        ],
        values={"image": {"pullPolicy": "Always"}},
    )
    assert release.values_from[1].external_source_ref
    assert release.values_from[1].external_source_ref.url == VALUES_URL
    assert await compose_values(cluster, release, chart_path, client) == {
        "replicas": 4,
        "image": {"tag": "url", "pullPolicy": "Always"},
    }


@pytest.mark.parametrize(
    "url",
    [
        "https://charts.example.com/values/missing.yaml",
        "https://charts.example.com/values/broken.yaml",
        "https://unreachable.example.com/values.yaml",
    ],
)
async def test_external_source_optional(
    cluster: FakeCluster, chart_path: Path, client: httpx.AsyncClient, url: str
) -> None:
    """Test optional values files that can't be fetched or parsed are skipped."""
    release = new_helm_release(
        valuesFrom=[{"externalSourceRef": {"url": url, "optional": True}}],
        values={"b": 2},
    )
    assert await compose_values(cluster, release, chart_path, client) == {"b": 2}


@pytest.mark.parametrize(
    ("url", "match"),
    [
        (
            "https://charts.example.com/values/missing.yaml",
            "Unable to read values from URL .*missing.yaml",
        ),
        ("https://charts.example.com/values/broken.yaml", "Unable to parse values"),
        ("https://unreachable.example.com/values.yaml", "Connection refused"),
    ],
)
async def test_external_source_error(
    cluster: FakeCluster,
    chart_path: Path,
    client: httpx.AsyncClient,
    url: str,
    match: str,
) -> None:
    """Test errors reading required values files from a URL."""
    release = new_helm_release(valuesFrom=[{"externalSourceRef": {"url": url}}])
    with pytest.raises(ValuesException, match=match):
        await compose_values(cluster, release, chart_path, client)
