"""Tests for command library."""

from pathlib import Path

import pytest

from helm_operator.command import Command, run
from helm_operator.exceptions import CommandException, HelmException


async def test_command() -> None:
    """Test stdout parsing of a command."""
    result = await run(Command(["echo", "Hello"]))
    assert result == "Hello\n"


async def test_command_stdin() -> None:
    """Test passing input to a command."""
    result = await run(Command(["cat"]), b"Goodbye")
    assert result == "Goodbye"


async def test_command_cwd_and_env(tmp_path: Path) -> None:
    """Test the working directory and environment of a command."""
    cmd = Command(
        ["sh", "-c", "pwd -P; echo $GREETING"], cwd=tmp_path, env={"GREETING": "Hi"}
    )
    result = await run(cmd)
    assert result == f"{tmp_path.resolve()}\nHi\n"


async def test_failed_command() -> None:
    """Test a failing command."""
    with pytest.raises(CommandException, match="return code 1"):
        await run(Command(["/bin/false"]))


async def test_failed_command_output() -> None:
    """Test a failing command raises the exception type with its output."""
    with pytest.raises(HelmException, match="no such chart"):
        await run(
            Command(["sh", "-c", "echo no such chart >&2; exit 2"], exc=HelmException)
        )


async def test_command_timeout() -> None:
    """Test a command that runs longer than its timeout."""
    with pytest.raises(CommandException, match="timed out"):
        await run(Command(["sleep", "10"], timeout=0.1))


def test_command_string(tmp_path: Path) -> None:
    """Test rendering a command for logs."""
    cmd = Command(["helm", "upgrade", "my app"], cwd=tmp_path)
    assert cmd.string == "helm upgrade 'my app'"
    assert str(cmd) == f"({tmp_path}) helm upgrade 'my app'"
