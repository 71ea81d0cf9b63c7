"""Typer CLI for GPU instance provisioning."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from llama_provision.cgroup import DEFAULT_CGROUP_ROOT, read_parallelism
from llama_provision.commands import CommandError, RecordingRunner, SubprocessRunner
from llama_provision.config import ConfigError, load_download_config, load_provision_config
from llama_provision.downloader import DownloadError, build_download_client, download_models
from llama_provision.observability import configure_logging
from llama_provision.output import render_completion_banner, render_parallelism_report
from llama_provision.parallelism import InvalidConfigurationError
from llama_provision.provision import (
    STEP_BUILD,
    STEP_CUDA,
    STEP_TORCH,
    SetupContext,
    run_setup,
)

app = typer.Typer(help="Provision a GPU instance for llama.cpp inference and fetch models.")


@app.command("cores")
def cores_command(
    cgroup_root: Annotated[
        Path, typer.Option(help="cgroup filesystem root to read CPU quota from.")
    ] = DEFAULT_CGROUP_ROOT,
    quiet: Annotated[bool, typer.Option(help="Print only the resolved number.")] = False,
    verbose: Annotated[bool, typer.Option(help="Enable debug logging.")] = False,
) -> None:
    """Resolve how many parallel build jobs this container may use."""
    configure_logging(verbose=verbose, quiet=quiet)
    try:
        reading = read_parallelism(cgroup_root)
    except InvalidConfigurationError as error:
        typer.echo(f"Parallelism resolution failed: {error}")
        raise typer.Exit(code=1) from error

    if quiet:
        typer.echo(str(reading.decision.jobs))
        return
    typer.echo(render_parallelism_report(reading))


@app.command("setup")
def setup_command(
    dry_run: Annotated[
        bool, typer.Option(help="Print the commands without running them.")
    ] = False,
    jobs: Annotated[
        int | None,
        typer.Option(min=1, help="Override the detected build parallelism."),
    ] = None,
    workspace_dir: Annotated[
        Path | None, typer.Option(help="Directory llama.cpp is cloned into.")
    ] = None,
    skip_cuda: Annotated[bool, typer.Option(help="Skip CUDA toolkit installation.")] = False,
    skip_torch: Annotated[bool, typer.Option(help="Skip PyTorch installation.")] = False,
    skip_build: Annotated[bool, typer.Option(help="Skip cloning and building llama.cpp.")] = False,
    verbose: Annotated[bool, typer.Option(help="Enable debug logging.")] = False,
) -> None:
    """Install CUDA and PyTorch, then build llama.cpp with CUDA support."""
    configure_logging(verbose=verbose)
    try:
        config = load_provision_config(jobs=jobs, workspace_dir=workspace_dir)
    except ConfigError as error:
        typer.echo(f"Setup failed: {error}")
        raise typer.Exit(code=1) from error

    skip_flags = {STEP_CUDA: skip_cuda, STEP_TORCH: skip_torch, STEP_BUILD: skip_build}
    skip = {group for group, enabled in skip_flags.items() if enabled}
    recorder = RecordingRunner() if dry_run else None
    context = SetupContext(
        config=config,
        runner=recorder if recorder is not None else SubprocessRunner(),
        dry_run=dry_run,
    )

    try:
        telemetry = run_setup(context, skip=skip)
    except CommandError as error:
        typer.echo(f"Setup failed: {error}")
        raise typer.Exit(code=1) from error
    except InvalidConfigurationError as error:
        typer.echo(f"Setup failed: could not resolve build parallelism ({error}).")
        raise typer.Exit(code=1) from error
    except OSError as error:
        typer.echo(f"Setup failed: {error}")
        raise typer.Exit(code=1) from error

    if recorder is not None:
        for line in recorder.command_lines():
            typer.echo(line)
        return
    typer.echo(render_completion_banner(config, telemetry, jobs=context.jobs))


@app.command("download")
def download_command(
    dest_dir: Annotated[
        Path | None, typer.Option(help="Directory the model files are saved into.")
    ] = None,
    url: Annotated[
        list[str] | None,
        typer.Option(help="Model URL to fetch; repeat for several. Defaults to the built-in list."),
    ] = None,
    timeout_seconds: Annotated[
        float | None, typer.Option(help="HTTP timeout in seconds.")
    ] = None,
    trust_env: Annotated[
        bool,
        typer.Option(
            "--trust-env/--no-trust-env",
            help="Use proxy/SSL environment variables from the current shell.",
        ),
    ] = True,
    verbose: Annotated[bool, typer.Option(help="Enable debug logging.")] = False,
) -> None:
    """Download the model files, continuing partial downloads."""
    configure_logging(verbose=verbose)
    try:
        config = load_download_config(
            urls=url,
            dest_dir=dest_dir,
            timeout_seconds=timeout_seconds,
            trust_env=trust_env,
        )
    except ConfigError as error:
        typer.echo(f"Download failed: {error}")
        raise typer.Exit(code=1) from error

    try:
        with build_download_client(
            timeout_seconds=config.timeout_seconds,
            trust_env=config.trust_env,
        ) as client:
            results = download_models(client, config.artifacts, config.dest_dir)
    except DownloadError as error:
        typer.echo(f"Download failed: {error}")
        raise typer.Exit(code=1) from error
    except OSError as error:
        typer.echo(f"Download failed: {error}")
        raise typer.Exit(code=1) from error

    for result in results:
        if result.already_complete:
            typer.echo(f"Already complete: {result.path}")
        else:
            typer.echo(f"Saved: {result.path} ({result.bytes_written} bytes written)")
    typer.echo("All downloads complete.")
