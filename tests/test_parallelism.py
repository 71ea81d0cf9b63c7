"""Unit tests for allocated-parallelism resolution."""

from __future__ import annotations

import pytest
from llama_provision.parallelism import (
    InvalidConfigurationError,
    ParallelismSource,
    Restricted,
    Unrestricted,
    ceil_div,
    decide_parallelism,
    resolve_parallelism,
)


@pytest.mark.unit
@pytest.mark.parametrize("host_cores", [1, 2, 16, 128])
def test_no_restriction_uses_host_core_count(host_cores: int) -> None:
    assert resolve_parallelism(Unrestricted(), host_cores) == host_cores


@pytest.mark.unit
@pytest.mark.parametrize("period", [100000, 50000, 0, -5])
def test_unlimited_quota_uses_host_core_count_for_any_period(period: int) -> None:
    decision = decide_parallelism(Restricted(quota=-1, period=period), 12)

    assert decision.jobs == 12
    assert decision.source is ParallelismSource.UNLIMITED_QUOTA


@pytest.mark.unit
def test_exact_quota_division() -> None:
    assert resolve_parallelism(Restricted(quota=400000, period=100000), 32) == 4


@pytest.mark.unit
def test_partial_core_rounds_up() -> None:
    assert resolve_parallelism(Restricted(quota=250000, period=100000), 32) == 3


@pytest.mark.unit
def test_tiny_quota_yields_one_worker() -> None:
    decision = decide_parallelism(Restricted(quota=1, period=100000), 32)

    assert decision.jobs == 1
    assert decision.source is ParallelismSource.QUOTA


@pytest.mark.unit
def test_quota_may_exceed_host_core_count() -> None:
    assert resolve_parallelism(Restricted(quota=800000, period=100000), 4) == 8


@pytest.mark.unit
def test_zero_period_raises_instead_of_dividing() -> None:
    with pytest.raises(InvalidConfigurationError):
        resolve_parallelism(Restricted(quota=100000, period=0), 8)


@pytest.mark.unit
def test_negative_period_raises() -> None:
    with pytest.raises(InvalidConfigurationError):
        resolve_parallelism(Restricted(quota=100000, period=-100000), 8)


@pytest.mark.unit
@pytest.mark.parametrize("quota", [0, -2, -100000])
def test_non_positive_quota_falls_back_to_host_cores(quota: int) -> None:
    decision = decide_parallelism(Restricted(quota=quota, period=100000), 6)

    assert decision.jobs == 6
    assert decision.source is ParallelismSource.NON_POSITIVE_QUOTA


@pytest.mark.unit
def test_zero_period_checked_before_quota_sign() -> None:
    with pytest.raises(InvalidConfigurationError):
        resolve_parallelism(Restricted(quota=0, period=0), 8)


@pytest.mark.unit
@pytest.mark.parametrize("host_cores", [0, -1])
def test_non_positive_host_core_count_raises(host_cores: int) -> None:
    with pytest.raises(InvalidConfigurationError):
        resolve_parallelism(Unrestricted(), host_cores)


@pytest.mark.unit
def test_ceil_div() -> None:
    assert ceil_div(10, 5) == 2
    assert ceil_div(11, 5) == 3
    assert ceil_div(1, 100000) == 1
