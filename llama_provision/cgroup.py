"""Container CPU restriction discovery (cgroup v1 and v2)."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from llama_provision.parallelism import (
    UNLIMITED_QUOTA,
    CpuRestriction,
    InvalidConfigurationError,
    ParallelismDecision,
    Restricted,
    Unrestricted,
    decide_parallelism,
)

logger = logging.getLogger(__name__)

DEFAULT_CGROUP_ROOT = Path("/sys/fs/cgroup")
CGROUP_V1_QUOTA_FILE = Path("cpu/cpu.cfs_quota_us")
CGROUP_V1_PERIOD_FILE = Path("cpu/cpu.cfs_period_us")
CGROUP_V2_CPU_MAX_FILE = Path("cpu.max")
CGROUP_V2_UNLIMITED_TOKEN = "max"


def _read_text(path: Path) -> str:
    """Read a cgroup interface file, reporting unreadable files as invalid input."""
    try:
        return path.read_text(encoding="utf-8").strip()
    except OSError as error:
        raise InvalidConfigurationError(f"Cannot read '{path}': {error}") from error


def _read_int(path: Path) -> int:
    """Read one integer from a cgroup interface file."""
    raw_value = _read_text(path)
    try:
        return int(raw_value)
    except ValueError as error:
        raise InvalidConfigurationError(
            f"Expected an integer in '{path}', got '{raw_value}'."
        ) from error


def _parse_cpu_max(path: Path) -> Restricted:
    """Parse cgroup v2 'cpu.max' content: '<quota|max> <period>'."""
    raw_value = _read_text(path)
    parts = raw_value.split()
    if len(parts) != 2:
        raise InvalidConfigurationError(
            f"Expected '<quota> <period>' in '{path}', got '{raw_value}'."
        )
    quota_token, period_token = parts
    try:
        quota = UNLIMITED_QUOTA if quota_token == CGROUP_V2_UNLIMITED_TOKEN else int(quota_token)
        period = int(period_token)
    except ValueError as error:
        raise InvalidConfigurationError(
            f"Expected integer quota/period in '{path}', got '{raw_value}'."
        ) from error
    return Restricted(quota=quota, period=period)


def read_cpu_restriction(root: Path = DEFAULT_CGROUP_ROOT) -> CpuRestriction:
    """Read the CPU quota/period restriction, or Unrestricted when none is exposed."""
    quota_path = root / CGROUP_V1_QUOTA_FILE
    period_path = root / CGROUP_V1_PERIOD_FILE
    if quota_path.is_file() and period_path.is_file():
        return Restricted(quota=_read_int(quota_path), period=_read_int(period_path))

    cpu_max_path = root / CGROUP_V2_CPU_MAX_FILE
    if cpu_max_path.is_file():
        return _parse_cpu_max(cpu_max_path)

    return Unrestricted()


def host_core_count() -> int:
    """Return logical processors usable by this process, like `nproc`."""
    sched_getaffinity = getattr(os, "sched_getaffinity", None)
    if sched_getaffinity is not None:
        return max(1, len(sched_getaffinity(0)))
    return max(1, os.cpu_count() or 1)


@dataclass(frozen=True, slots=True)
class ParallelismReading:
    """Environment inputs read from the host and the decision resolved from them."""

    restriction: CpuRestriction
    host_cores: int
    decision: ParallelismDecision


def read_parallelism(root: Path = DEFAULT_CGROUP_ROOT) -> ParallelismReading:
    """Read the host environment and resolve the build parallelism."""
    restriction = read_cpu_restriction(root)
    host_cores = host_core_count()
    decision = decide_parallelism(restriction, host_cores)
    logger.info(
        "Resolved build parallelism jobs=%d source=%s host_cores=%d restriction=%s",
        decision.jobs,
        decision.source,
        host_cores,
        restriction,
    )
    return ParallelismReading(restriction=restriction, host_cores=host_cores, decision=decision)


def detect_parallelism(root: Path = DEFAULT_CGROUP_ROOT) -> int:
    """Return the resolved worker count for the current environment."""
    return read_parallelism(root).decision.jobs
