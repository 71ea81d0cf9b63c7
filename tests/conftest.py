"""Shared pytest fixtures and test-run configuration."""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path

import pytest
from llama_provision.config import ProvisionConfig


def pytest_addoption(parser: pytest.Parser) -> None:
    """Add custom pytest options for integration test execution."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run tests marked as integration (network downloads).",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip integration tests unless explicitly enabled."""
    run_integration = config.getoption("--run-integration")
    env_enabled = os.getenv("RUN_INTEGRATION_TESTS") == "1"
    if run_integration or env_enabled:
        return

    skip_marker = pytest.mark.skip(
        reason=(
            "Integration tests are disabled by default. "
            "Use --run-integration or set RUN_INTEGRATION_TESTS=1."
        )
    )
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_marker)


@pytest.fixture
def make_cgroup_v1(tmp_path: Path) -> Callable[[str, str], Path]:
    """Build a fake cgroup v1 tree with quota/period files and return its root."""

    def _make(quota: str, period: str) -> Path:
        cpu_dir = tmp_path / "cgroup" / "cpu"
        cpu_dir.mkdir(parents=True, exist_ok=True)
        (cpu_dir / "cpu.cfs_quota_us").write_text(f"{quota}\n", encoding="utf-8")
        (cpu_dir / "cpu.cfs_period_us").write_text(f"{period}\n", encoding="utf-8")
        return tmp_path / "cgroup"

    return _make


@pytest.fixture
def make_cgroup_v2(tmp_path: Path) -> Callable[[str], Path]:
    """Build a fake cgroup v2 tree with a cpu.max file and return its root."""

    def _make(cpu_max: str) -> Path:
        root = tmp_path / "cgroup2"
        root.mkdir(parents=True, exist_ok=True)
        (root / "cpu.max").write_text(f"{cpu_max}\n", encoding="utf-8")
        return root

    return _make


@pytest.fixture
def provision_config(tmp_path: Path) -> ProvisionConfig:
    """Provisioning config rooted in a temporary workspace."""
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return ProvisionConfig(
        workspace_dir=workspace,
        shell_rc_path=tmp_path / ".bashrc",
    )
