"""Tests for the helm-operator command line parser."""

from pathlib import Path

import pytest

from helm_operator.tool import get, run
from helm_operator.tool.helm_operator import _make_parser


def test_run_defaults() -> None:
    """Test the configuration built from the default flags."""
    args = _make_parser().parse_args(["run"])
    assert args.cls is run.RunAction
    assert args.log_level == "INFO"
    config = run.build_config(**vars(args))
    assert config.namespace is None
    assert config.workers == 1
    assert config.charts_sync_interval == 180
    assert config.status_update_interval == 10
    assert config.watch_interval == 10
    assert config.git.timeout == 20
    assert config.git.poll_interval == 300
    assert config.git.default_ref == "HEAD"
    assert not config.helm.log_diffs
    assert config.helm.update_deps
    assert config.helm.default_helm_version == "v3"
    assert config.cache_dir.name == "helm-operator"


def test_run_flags(tmp_path: Path) -> None:
    """Test the configuration built from flags."""
    args = _make_parser().parse_args(
        [
            "--log-level",
            "DEBUG",
            "run",
            "--allow-namespace",
            "apps",
            "--workers",
            "4",
            "--charts-sync-interval",
            "60",
            "--log-release-diffs",
            "--no-update-chart-deps",
            "--git-timeout",
            "5",
            "--git-poll-interval",
            "30",
            "--git-default-ref",
            "main",
            "--cache-dir",
            str(tmp_path),
            "--kube-context",
            "prod",
        ]
    )
    assert args.log_level == "DEBUG"
    assert args.kube_context == "prod"
    config = run.build_config(**vars(args))
    assert config.namespace == "apps"
    assert config.workers == 4
    assert config.charts_sync_interval == 60
    assert config.git.timeout == 5
    assert config.git.poll_interval == 30
    assert config.git.default_ref == "main"
    assert config.helm.log_diffs
    assert not config.helm.update_deps
    assert config.cache_dir == tmp_path


@pytest.mark.parametrize("alias", ["helmreleases", "hr", "helmrelease"])
def test_get_helmreleases(alias: str) -> None:
    """Test parsing the get command."""
    args = _make_parser().parse_args(["get", alias, "-A", "-o", "yaml"])
    assert args.cls is get.GetHelmReleaseAction
    assert args.all_namespaces
    assert args.output == "yaml"
    assert args.namespace == "default"


def test_get_requires_subcommand() -> None:
    """Test the get command requires an object type."""
    with pytest.raises(SystemExit):
        _make_parser().parse_args(["get"])
