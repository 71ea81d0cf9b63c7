"""Instance setup steps: CUDA toolkit, PyTorch, and a CUDA build of llama.cpp."""

from __future__ import annotations

import logging
import os
import shutil
import time
from collections.abc import Callable, Collection, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from llama_provision.cgroup import detect_parallelism
from llama_provision.commands import CommandRunner
from llama_provision.config import ProvisionConfig
from llama_provision.observability import RunTelemetry, StepTelemetry

logger = logging.getLogger(__name__)

APT_BASE_PACKAGES = ("wget", "gpg-agent", "software-properties-common")
APT_PIN_DESTINATION = Path("/etc/apt/preferences.d/cuda-repository-pin-600")
KEYRING_DIR = Path("/usr/share/keyrings")
LOCAL_REPO_PARENT = Path("/var")
CUDA_ENV_MARKER = "# CUDA Environment Variables"
TORCH_PACKAGES = ("torch", "torchvision", "torchaudio")

STEP_CUDA = "cuda"
STEP_TORCH = "torch"
STEP_BUILD = "build"


class _CountingRunner:
    """Forward to another runner while counting invocations."""

    def __init__(self, inner: CommandRunner) -> None:
        self._inner = inner
        self.count = 0

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.count += 1
        self._inner.run(argv, cwd=cwd, env=env)


@dataclass(slots=True)
class SetupContext:
    """Mutable state shared by setup steps within one run."""

    config: ProvisionConfig
    runner: CommandRunner
    dry_run: bool = False
    resolve_jobs: Callable[[], int] = detect_parallelism
    is_root: bool = field(default_factory=lambda: hasattr(os, "geteuid") and os.geteuid() == 0)
    jobs: int | None = None

    def privileged(self, *argv: str) -> list[str]:
        """Prefix argv with sudo unless running as root or sudo is disabled."""
        if self.config.use_sudo and not self.is_root:
            return ["sudo", *argv]
        return list(argv)


@dataclass(frozen=True, slots=True)
class SetupStep:
    """Named setup step and the group it can be skipped with."""

    name: str
    group: str
    action: Callable[[SetupContext], None]


def _keyring_sources(config: ProvisionConfig) -> list[str]:
    """Return keyring files shipped by the local CUDA repository package."""
    repo_dir = LOCAL_REPO_PARENT / config.cuda.local_repo_name
    matches = sorted(str(path) for path in repo_dir.glob("cuda-*-keyring.gpg"))
    if matches:
        return matches
    return [str(repo_dir / "cuda-*-keyring.gpg")]


def install_cuda_toolkit(context: SetupContext) -> None:
    """Install the CUDA toolkit from NVIDIA's local apt repository installer."""
    cuda = context.config.cuda
    run = context.runner.run
    run(context.privileged("apt-get", "update"))
    run(context.privileged("apt-get", "install", "-y", *APT_BASE_PACKAGES))

    run(["wget", cuda.pin_url])
    run(context.privileged("mv", cuda.pin_filename, str(APT_PIN_DESTINATION)))
    run(["wget", cuda.installer_url])
    run(context.privileged("dpkg", "-i", cuda.installer_filename))

    run(context.privileged("cp", *_keyring_sources(context.config), f"{KEYRING_DIR}/"))
    run(context.privileged("apt-get", "update"))

    logger.info("Installing %s; this may take a while.", cuda.toolkit_package)
    run(context.privileged("apt-get", "-y", "install", cuda.toolkit_package))
    run(["rm", cuda.installer_filename])


def cuda_environment_block(config: ProvisionConfig) -> str:
    """Return the shell rc snippet exporting CUDA paths."""
    prefix = config.cuda.install_prefix
    return (
        "\n"
        f"{CUDA_ENV_MARKER}\n"
        f"export PATH={prefix}/bin${{PATH:+:${{PATH}}}}\n"
        f"export LD_LIBRARY_PATH={prefix}/lib64${{LD_LIBRARY_PATH:+:${{LD_LIBRARY_PATH}}}}\n"
    )


def _prepend_env_path(name: str, entry: str) -> None:
    """Prepend one entry to a colon-separated environment variable."""
    current = os.environ.get(name)
    os.environ[name] = f"{entry}:{current}" if current else entry


def configure_cuda_environment(context: SetupContext) -> None:
    """Persist CUDA paths to the shell rc file and export them for this process."""
    config = context.config
    rc_path = config.shell_rc_path
    if context.dry_run:
        logger.info("Dry run: would append CUDA environment block to %s", rc_path)
        return

    existing = rc_path.read_text(encoding="utf-8") if rc_path.exists() else ""
    if CUDA_ENV_MARKER in existing:
        logger.info("CUDA environment block already present in %s", rc_path)
    else:
        with rc_path.open("a", encoding="utf-8") as handle:
            handle.write(cuda_environment_block(config))
        logger.info("Appended CUDA environment block to %s", rc_path)

    prefix = config.cuda.install_prefix
    _prepend_env_path("PATH", f"{prefix}/bin")
    _prepend_env_path("LD_LIBRARY_PATH", f"{prefix}/lib64")


def verify_cuda(context: SetupContext) -> None:
    """Check that nvcc is reachable."""
    context.runner.run(["nvcc", "--version"])


def install_pytorch(context: SetupContext) -> None:
    """Replace any installed torch wheels with the CUDA-matched pins."""
    pytorch = context.config.pytorch
    run = context.runner.run
    run(["pip", "install", "--upgrade", "pip"])
    run(["pip", "uninstall", "-y", *TORCH_PACKAGES])
    run(["pip", "cache", "purge"])
    run(["pip", "install", *pytorch.requirements, "--index-url", pytorch.index_url])


def clone_llama_cpp(context: SetupContext) -> None:
    """Clone a fresh copy of llama.cpp into the workspace."""
    config = context.config
    llama_dir = config.llama_dir
    if llama_dir.is_dir():
        if context.dry_run:
            logger.info("Dry run: would remove existing %s", llama_dir)
        else:
            logger.info("Removing existing %s", llama_dir)
            shutil.rmtree(llama_dir)
    if not context.dry_run:
        config.workspace_dir.mkdir(parents=True, exist_ok=True)
    context.runner.run(
        ["git", "clone", config.llama_repo_url, config.llama_dir_name],
        cwd=config.workspace_dir,
    )


def build_llama_cpp(context: SetupContext) -> None:
    """Configure and build llama.cpp with CUDA using the resolved parallelism."""
    config = context.config
    jobs = config.jobs if config.jobs is not None else context.resolve_jobs()
    context.jobs = jobs

    context.runner.run(
        ["cmake", "-B", config.build_dir_name, *config.cmake_options],
        cwd=config.llama_dir,
    )
    logger.info("Building llama.cpp using %d parallel jobs", jobs)
    context.runner.run(
        [
            "cmake",
            "--build",
            config.build_dir_name,
            "--config",
            config.build_config,
            "--",
            f"-j{jobs}",
        ],
        cwd=config.llama_dir,
    )


SETUP_STEPS: tuple[SetupStep, ...] = (
    SetupStep(name="install CUDA toolkit", group=STEP_CUDA, action=install_cuda_toolkit),
    SetupStep(
        name="configure CUDA environment",
        group=STEP_CUDA,
        action=configure_cuda_environment,
    ),
    SetupStep(name="verify CUDA", group=STEP_CUDA, action=verify_cuda),
    SetupStep(name="install PyTorch", group=STEP_TORCH, action=install_pytorch),
    SetupStep(name="clone llama.cpp", group=STEP_BUILD, action=clone_llama_cpp),
    SetupStep(name="build llama.cpp", group=STEP_BUILD, action=build_llama_cpp),
)


def run_setup(
    context: SetupContext,
    *,
    skip: Collection[str] = (),
    steps: Sequence[SetupStep] = SETUP_STEPS,
    clock: Callable[[], float] = time.monotonic,
) -> RunTelemetry:
    """Run setup steps in order, stopping at the first failure."""
    telemetry = RunTelemetry()
    original_runner = context.runner
    counting_runner = _CountingRunner(original_runner)
    context.runner = counting_runner
    try:
        for step in steps:
            if step.group in skip:
                logger.info("Skipping step: %s", step.name)
                continue
            logger.info("Starting step: %s", step.name)
            commands_before = counting_runner.count
            started_at = clock()
            step.action(context)
            telemetry.steps.append(
                StepTelemetry(
                    name=step.name,
                    duration_seconds=clock() - started_at,
                    commands_run=counting_runner.count - commands_before,
                )
            )
    finally:
        context.runner = original_runner
    return telemetry
