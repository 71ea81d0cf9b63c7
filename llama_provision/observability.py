"""Logging setup and setup-step telemetry."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(*, verbose: bool = False, quiet: bool = False) -> None:
    """Route log records to stderr, at DEBUG when verbose and WARNING when quiet."""
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        force=True,
    )


@dataclass(slots=True)
class StepTelemetry:
    """Timing for one completed setup step."""

    name: str
    duration_seconds: float = 0.0
    commands_run: int = 0


@dataclass(slots=True)
class RunTelemetry:
    """Rollup of the steps completed in one setup run."""

    steps: list[StepTelemetry] = field(default_factory=list)

    @property
    def total_seconds(self) -> float:
        return sum(step.duration_seconds for step in self.steps)

    @property
    def total_commands(self) -> int:
        return sum(step.commands_run for step in self.steps)
