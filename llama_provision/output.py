"""Human-readable reports for setup and parallelism resolution."""

from __future__ import annotations

from llama_provision.cgroup import ParallelismReading
from llama_provision.config import ProvisionConfig
from llama_provision.observability import RunTelemetry
from llama_provision.parallelism import ParallelismSource, Restricted

BANNER_RULE = "=" * 72

_SOURCE_DESCRIPTIONS = {
    ParallelismSource.NO_RESTRICTION: "cgroup CPU quota files not found; using all host cores",
    ParallelismSource.UNLIMITED_QUOTA: "unlimited CPU quota detected; using all host cores",
    ParallelismSource.QUOTA: "CPU quota detected via cgroups; using allocated cores",
    ParallelismSource.NON_POSITIVE_QUOTA: (
        "CPU quota is not a positive value; using all host cores"
    ),
}


def render_parallelism_report(reading: ParallelismReading) -> str:
    """Explain which branch produced the resolved worker count."""
    decision = reading.decision
    restriction = reading.restriction
    lines = [
        f"Resolved parallelism: {decision.jobs}",
        f"Reason: {_SOURCE_DESCRIPTIONS[decision.source]}",
        f"Host cores: {reading.host_cores}",
    ]
    if isinstance(restriction, Restricted):
        lines.append(f"CPU quota/period: {restriction.quota}/{restriction.period} us")
    return "\n".join(lines)


def render_completion_banner(
    config: ProvisionConfig,
    telemetry: RunTelemetry,
    *,
    jobs: int | None = None,
) -> str:
    """Render the end-of-setup summary."""
    llama_dir = config.llama_dir
    lines = [
        BANNER_RULE,
        "SETUP COMPLETE!".center(len(BANNER_RULE)).rstrip(),
        BANNER_RULE,
        "",
    ]
    for step in telemetry.steps:
        lines.append(
            f"  - {step.name}: {step.duration_seconds:.1f}s, {step.commands_run} command(s)"
        )
    if telemetry.steps:
        lines.append(
            f"  - Total: {telemetry.total_seconds:.1f}s, {telemetry.total_commands} command(s)"
        )
    if jobs is not None:
        lines.append(f"  - llama.cpp built with {jobs} parallel job(s).")
    lines.extend(
        [
            f"  - Binaries are located in: '{llama_dir / config.build_dir_name / 'bin'}'",
            "",
            f"  Example usage (from inside '{llama_dir}'):",
            f"  ./{config.build_dir_name}/bin/llama-bench -m <path_to_model.gguf> "
            "-p 512 -n 512 -ngl 32",
            "",
            f"  To pick up the CUDA {config.cuda.short_version} environment variables, run",
            f"  'source {config.shell_rc_path}' or restart your shell.",
            BANNER_RULE,
        ]
    )
    return "\n".join(lines)
