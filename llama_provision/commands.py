"""External command execution with fail-fast semantics."""

from __future__ import annotations

import logging
import shlex
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

COMMAND_NOT_FOUND_RETURN_CODE = 127


class CommandError(RuntimeError):
    """Raised when an external command exits with a non-zero status."""

    def __init__(self, message: str, *, argv: Sequence[str], returncode: int) -> None:
        super().__init__(message)
        self.argv = tuple(argv)
        self.returncode = returncode


def format_command(argv: Sequence[str]) -> str:
    """Render argv as a shell-quoted string for logs and dry runs."""
    return shlex.join(argv)


class CommandRunner(Protocol):
    """Protocol for executing one external command."""

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        """Run the command and raise CommandError on failure."""


class SubprocessRunner:
    """Run commands with subprocess, inheriting stdout/stderr."""

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        command = format_command(argv)
        logger.info("Running: %s", command)
        if cwd is not None and not cwd.is_dir():
            raise CommandError(
                f"Working directory does not exist: '{cwd}' (while running: {command}).",
                argv=argv,
                returncode=COMMAND_NOT_FOUND_RETURN_CODE,
            )
        try:
            completed = subprocess.run(
                list(argv),
                cwd=cwd,
                env=dict(env) if env is not None else None,
                check=False,
            )
        except FileNotFoundError as error:
            raise CommandError(
                f"Command not found: '{argv[0]}'.",
                argv=argv,
                returncode=COMMAND_NOT_FOUND_RETURN_CODE,
            ) from error

        if completed.returncode != 0:
            raise CommandError(
                f"Command failed with exit status {completed.returncode}: {command}",
                argv=argv,
                returncode=completed.returncode,
            )


@dataclass(frozen=True, slots=True)
class RecordedCommand:
    """One command captured by RecordingRunner."""

    argv: tuple[str, ...]
    cwd: Path | None = None


@dataclass(slots=True)
class RecordingRunner:
    """Capture commands instead of executing them (dry runs)."""

    commands: list[RecordedCommand] = field(default_factory=list)

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.commands.append(RecordedCommand(argv=tuple(argv), cwd=cwd))

    def command_lines(self) -> list[str]:
        """Return recorded commands as shell strings, prefixed with cwd when set."""
        lines: list[str] = []
        for command in self.commands:
            rendered = format_command(command.argv)
            if command.cwd is not None:
                rendered = f"(cd {shlex.quote(str(command.cwd))} && {rendered})"
            lines.append(rendered)
        return lines
