"""Tests for exported working copies."""

from pathlib import Path

import pytest

from helm_operator.source_controller import Export


@pytest.fixture(name="export")
def export_fixture(tmp_path: Path) -> Export:
    """Fixture for an export with a file in it."""
    path = tmp_path / "export"
    path.mkdir()
    (path / "Chart.yaml").write_text("name: app\n")
    return Export(path, "abc123")


def test_retire_unused(export: Export) -> None:
    """Test an export nobody reads is removed when retired."""
    export.retire()
    assert export.cleaned
    assert not export.path.exists()


def test_retire_while_read(export: Export) -> None:
    """Test an export is kept until the last reader releases it."""
    export.acquire()
    export.acquire()
    export.retire()
    assert not export.cleaned
    assert (export.path / "Chart.yaml").exists()

    export.release()
    assert export.path.exists()

    export.release()
    assert export.cleaned
    assert not export.path.exists()


def test_release_without_retire(export: Export) -> None:
    """Test the current export is kept after all readers are done."""
    export.acquire()
    export.release()
    assert not export.cleaned
    assert export.path.exists()
    assert export.revision == "abc123"


def test_acquire_cleaned(export: Export) -> None:
    """Test a removed export can't be read."""
    export.retire()
    with pytest.raises(ValueError, match="has been cleaned"):
        export.acquire()
