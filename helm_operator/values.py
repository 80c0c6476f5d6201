"""Module for composing the values of a helm release.

Values are merged from each `valuesFrom` source in order followed by the
inline `values` of the HelmRelease, with later sources taking precedence.
Maps are merged recursively, any other value replaces what was there.
"""

import hashlib
import logging
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.ospath
import httpx
import yaml

from .exceptions import ValuesException
from .kube import ClusterClient
from .manifest import DEFAULT_VALUES_KEY, HelmRelease, KeySelector, ValuesFromSource

__all__ = [
    "compose_values",
    "merge_values",
    "values_checksum",
]

_LOGGER = logging.getLogger(__name__)

URL_TIMEOUT = 30.0


def merge_values(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge two dictionaries, lists are replaced entirely."""
    result = base.copy()
    for key, override_value in override.items():
        base_value = result.get(key)
        if isinstance(base_value, dict) and isinstance(override_value, dict):
            result[key] = merge_values(base_value, override_value)
        else:
            result[key] = override_value
    return result


def values_yaml(values: dict[str, Any]) -> str:
    """Return the stable YAML encoding of the values."""
    return yaml.dump(values, sort_keys=True, default_flow_style=False)


def values_checksum(values: dict[str, Any]) -> str:
    """Return the SHA256 checksum of the values."""
    return hashlib.sha256(values_yaml(values).encode()).hexdigest()


def _parse_values(content: str, source: str) -> dict[str, Any]:
    try:
        obj = yaml.safe_load(content)
    except yaml.YAMLError as err:
        raise ValuesException(f"Unable to parse values from {source}: {err}") from err
    # Empty YAML document
    if obj is None:
        return {}
    if not isinstance(obj, dict):
        raise ValuesException(
            f"Expected values from {source} to be a map, found {type(obj).__name__}"
        )
    return obj


def _lookup_key(
    kind: str,
    selector: KeySelector,
    data: dict[str, str] | None,
    namespace: str,
) -> str | None:
    key = selector.key or DEFAULT_VALUES_KEY
    source = f"{kind} {namespace}/{selector.name}"
    if data is None:
        if selector.optional:
            _LOGGER.debug("Skipping missing optional %s", source)
            return None
        raise ValuesException(f"Could not find {source}")
    if (value := data.get(key)) is None:
        if selector.optional:
            _LOGGER.debug("Skipping missing optional key %s in %s", key, source)
            return None
        raise ValuesException(f"Could not find key {key} in {source}")
    return value


async def _read_chart_file(chart_path: Path, path: str, optional: bool) -> str | None:
    chart_dir = chart_path.resolve()
    file_path = (chart_dir / path).resolve()
    if not file_path.is_relative_to(chart_dir):
        raise ValuesException(f"Chart file {path} is outside of the chart")
    if not await aiofiles.ospath.exists(file_path):
        if optional:
            _LOGGER.debug("Skipping missing optional chart file %s", path)
            return None
        raise ValuesException(f"Could not find chart file {path}")
    async with aiofiles.open(file_path) as values_file:
        return await values_file.read()


async def _read_url(
    url: str, optional: bool, client: httpx.AsyncClient | None
) -> str | None:
    if client is None:
        async with httpx.AsyncClient(
            timeout=URL_TIMEOUT, follow_redirects=True
        ) as new_client:
            return await _read_url(url, optional, new_client)
    try:
        response = await client.get(url)
        response.raise_for_status()
    except httpx.HTTPError as err:
        if optional:
            _LOGGER.debug("Skipping optional values from URL %s: %s", url, err)
            return None
        raise ValuesException(f"Unable to read values from URL {url}: {err}") from err
    return response.text


async def _lookup_source(
    cluster: ClusterClient,
    release: HelmRelease,
    chart_path: Path,
    source: ValuesFromSource,
    client: httpx.AsyncClient | None,
) -> tuple[str | None, bool]:
    """Return the content of the source and whether invalid content is ignored."""
    if (selector := source.config_map_key_ref) is not None:
        namespace = selector.namespace or release.namespace
        data = await cluster.get_config_map(namespace, selector.name)
        return _lookup_key("ConfigMap", selector, data, namespace), selector.optional
    if (selector := source.secret_key_ref) is not None:
        namespace = selector.namespace or release.namespace
        data = await cluster.get_secret(namespace, selector.name)
        return _lookup_key("Secret", selector, data, namespace), False
    if (file_ref := source.chart_file_ref) is not None:
        content = await _read_chart_file(chart_path, file_ref.path, file_ref.optional)
        return content, file_ref.optional
    if (external := source.external_source_ref) is not None:
        content = await _read_url(external.url, external.optional, client)
        return content, external.optional
    raise ValuesException(f"Unsupported valuesFrom source {source}")


async def compose_values(
    cluster: ClusterClient,
    release: HelmRelease,
    chart_path: Path,
    client: httpx.AsyncClient | None = None,
) -> dict[str, Any]:
    """Compose the values for the release from all of its sources.

    Values files at a URL are fetched with the client, or a new client when
    none is given.
    """
    values: dict[str, Any] = {}
    for source in release.values_from:
        _LOGGER.debug(
            "Composing values for %s from %s", release.namespaced_name, source
        )
        content, optional = await _lookup_source(
            cluster, release, chart_path, source, client
        )
        if content is None:
            continue
        try:
            source_values = _parse_values(content, str(source))
        except ValuesException as err:
            if not optional:
                raise
            _LOGGER.debug("Skipping invalid optional values: %s", err)
            continue
        values = merge_values(values, source_values)
    return merge_values(values, release.values)
