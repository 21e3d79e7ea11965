"""External command execution for provisioning steps."""
from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Protocol

LOGGER = logging.getLogger(__name__)


class CommandError(RuntimeError):
    """Raised when an external command cannot be spawned."""

    def __init__(self, name: str, args: Sequence[str], message: str) -> None:
        """Record the command identity alongside the failure message."""
        super().__init__(message)
        self.name = name
        self.args_list = list(args)


class CommandRunner(Protocol):
    """Capability used by the provisioner to run named external commands."""

    def run(
        self,
        name: str,
        args: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        input: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run *args* and return the completed process without checking it."""


@dataclass(slots=True)
class SubprocessRunner:
    """Run commands through :func:`subprocess.run`, optionally elevated."""

    privilege_command: tuple[str, ...] = ()

    def run(
        self,
        name: str,
        args: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        input: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run *args*, capturing output; nonzero exits are returned, not raised."""
        command = list(args)
        if env and self.privilege_command:
            # sudo resets the environment; VAR=value arguments need SETENV in sudoers.
            command = [f"{key}={value}" for key, value in env.items()] + command
        command = [*self.privilege_command, *command]
        process_env = {**os.environ, **env} if env else None
        LOGGER.debug("Running %s: %s", name, " ".join(command))
        try:
            return subprocess.run(  # noqa: S603
                command,
                capture_output=True,
                text=True,
                check=False,
                env=process_env,
                input=input,
            )
        except OSError as exc:
            raise CommandError(name, command, f"{command[0]} could not be started: {exc}") from exc


def describe_failure(result: subprocess.CompletedProcess[str]) -> str:
    """Return the most useful diagnostic text from a failed command."""
    stdout = getattr(result, "stdout", "") or ""
    stderr = getattr(result, "stderr", "") or ""
    return stderr.strip() or stdout.strip() or "no output"


def format_command(args: Sequence[object]) -> str:
    """Render command arguments for logs and error messages."""
    return " ".join(str(item) for item in args)


__all__ = [
    "CommandError",
    "CommandRunner",
    "SubprocessRunner",
    "describe_failure",
    "format_command",
]
