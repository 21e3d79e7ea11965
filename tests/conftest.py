"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import subprocess
from collections.abc import Mapping, Sequence
from pathlib import Path

import pytest

from domainctl.config import DEFAULT_CONFIG, ProvisioningConfig, resolve_config


class FakeRunner:
    """Records command invocations and replays scripted exit codes."""

    def __init__(self, returncodes: Mapping[str, int] | None = None) -> None:
        """Map command names to the exit code they should report."""
        self.returncodes = dict(returncodes or {})
        self.calls: list[tuple[str, list[str], dict[str, str] | None]] = []
        self.inputs: dict[str, str] = {}

    def run(
        self,
        name: str,
        args: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        input: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Record the call and return a completed process."""
        self.calls.append((name, list(args), dict(env) if env is not None else None))
        if input is not None:
            self.inputs[name] = input
        code = self.returncodes.get(name, 0)
        stderr = f"{name} failed" if code else ""
        return subprocess.CompletedProcess(list(args), returncode=code, stdout="", stderr=stderr)

    @property
    def names(self) -> list[str]:
        """Return the invoked command names in order."""
        return [name for name, _args, _env in self.calls]


@pytest.fixture
def fake_runner() -> FakeRunner:
    """Return a runner where every command succeeds."""
    return FakeRunner()


@pytest.fixture
def nginx_dirs(tmp_path: Path) -> tuple[Path, Path]:
    """Create sites-available and sites-enabled directories under *tmp_path*."""
    available = tmp_path / "sites-available"
    enabled = tmp_path / "sites-enabled"
    available.mkdir()
    enabled.mkdir()
    return available, enabled


@pytest.fixture
def config(tmp_path: Path, nginx_dirs: tuple[Path, Path]) -> ProvisioningConfig:
    """Return in-process (no sudo) defaults pointed at temporary nginx directories."""
    available, enabled = nginx_dirs
    return resolve_config(
        DEFAULT_CONFIG,
        {
            "available_path": f"{available}/",
            "enabled_path": f"{enabled}/",
            "templates_dir": str(tmp_path / "templates"),
            "logs_dir": str(tmp_path / "logs"),
            "sudo": False,
        },
    )
