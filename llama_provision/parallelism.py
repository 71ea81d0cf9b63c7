"""Allocated-parallelism resolution for container-restricted builds."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

UNLIMITED_QUOTA = -1


class InvalidConfigurationError(ValueError):
    """Raised when CPU restriction or host core inputs cannot be resolved."""


@dataclass(frozen=True, slots=True)
class Unrestricted:
    """No quota/period restriction is expressed in this environment."""


@dataclass(frozen=True, slots=True)
class Restricted:
    """Raw CFS quota/period pair, in microseconds, as read from the environment."""

    quota: int
    period: int


CpuRestriction = Unrestricted | Restricted


class ParallelismSource(StrEnum):
    """Branch of the resolver that produced the worker count."""

    NO_RESTRICTION = "no_restriction"
    UNLIMITED_QUOTA = "unlimited_quota"
    QUOTA = "quota"
    NON_POSITIVE_QUOTA = "non_positive_quota"


@dataclass(frozen=True, slots=True)
class ParallelismDecision:
    """Resolved worker count and the branch that produced it."""

    jobs: int
    source: ParallelismSource


def ceil_div(numerator: int, denominator: int) -> int:
    """Integer division rounded toward positive infinity."""
    return (numerator + denominator - 1) // denominator


def decide_parallelism(restriction: CpuRestriction, host_core_count: int) -> ParallelismDecision:
    """Resolve the number of parallel workers from a restriction and host core count."""
    if host_core_count <= 0:
        raise InvalidConfigurationError(
            f"Host core count must be a positive integer, got {host_core_count}."
        )

    if isinstance(restriction, Unrestricted):
        return ParallelismDecision(
            jobs=host_core_count,
            source=ParallelismSource.NO_RESTRICTION,
        )

    if restriction.quota == UNLIMITED_QUOTA:
        return ParallelismDecision(
            jobs=host_core_count,
            source=ParallelismSource.UNLIMITED_QUOTA,
        )

    if restriction.period <= 0:
        raise InvalidConfigurationError(
            f"CPU period must be a positive integer when a quota is set, "
            f"got quota={restriction.quota} period={restriction.period}."
        )

    # Only strictly positive quotas count as a restriction.
    if restriction.quota <= 0:
        return ParallelismDecision(
            jobs=host_core_count,
            source=ParallelismSource.NON_POSITIVE_QUOTA,
        )

    return ParallelismDecision(
        jobs=max(1, ceil_div(restriction.quota, restriction.period)),
        source=ParallelismSource.QUOTA,
    )


def resolve_parallelism(restriction: CpuRestriction, host_core_count: int) -> int:
    """Return how many concurrent workers a parallel build should launch."""
    return decide_parallelism(restriction, host_core_count).jobs
