"""Typer-powered command line for ``aks-flex-node``.

Each command loads the configuration, builds the host platform and runs a
single structured operation. ``bootstrap`` stops at the first failing step,
``unbootstrap`` attempts every step and reports partial failures, and
``agent`` keeps the node's status file fresh after bootstrapping.
"""
from __future__ import annotations

import os
import signal
import textwrap
import threading
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from . import __version__, get_build_info
from .bootstrapper import (
    Bootstrapper,
    ExecutionResult,
    RunCancelledError,
    RunContext,
    StepFailedError,
)
from .config import AppConfig, ConfigError, load_config
from .exit_codes import ExitCode
from .logging import OperationScope, StructuredLogger, configure_logging
from .platform import Platform, PlatformError, create_platform
from .status import NodeStatus, StatusCollector, write_status
from .templates import TemplateEngine

console = Console()

LOG_LEVEL_ENV_VAR = "FLEXNODE_LOG_LEVEL"
LOG_FILE_NAME = "aks-flex-node.log"
STATUS_FILE_NAME = "status.json"

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config",
    "--config-file",
    "-c",
    dir_okay=False,
    help="Path to the aks-flex-node YAML/JSON config file.",
)

JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit machine-readable JSON instead of tables.",
)

DRY_RUN_OPTION = typer.Option(
    False,
    "--dry-run",
    help="Log mutating actions instead of performing them.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        AKS flex node bootstrapper.

        Turns a Linux or Windows machine into an AKS worker node attached
        through Azure Arc, and removes it again with ``unbootstrap``.
        """
    ).strip(),
)


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    templates: TemplateEngine


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext) and config_file is None:
        return runtime

    resolved = config_file or ctx.meta.get("flexnode.config_file")
    try:
        config = load_config(config_file=resolved)
    except ConfigError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=ExitCode.VALIDATION) from exc

    configure_logging(
        os.environ.get(LOG_LEVEL_ENV_VAR, "INFO"),
        log_file=config.paths.logs_dir / LOG_FILE_NAME,
    )
    runtime = RuntimeContext(
        config=config,
        logger=StructuredLogger(config.paths.logs_dir),
        templates=TemplateEngine.with_overrides(config.paths.templates_dir),
    )
    ctx.obj = runtime
    return runtime


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the aks-flex-node version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if config_file is not None:
        ctx.meta["flexnode.config_file"] = config_file

    if version:
        runtime = _ensure_runtime(ctx, config_file)
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"aks-flex-node {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=0)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


# ----------------------------------------------------------------------
# Helpers


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=int(rc))
    raise typer.Exit(code=int(rc))


def _dry_run_complete(
    op: OperationScope,
    summary: str,
    *,
    context: Mapping[str, object] | None = None,
) -> None:
    """Standardise dry-run completion messaging."""
    console.print(f"[yellow]Dry run[/yellow]: {summary}")
    op.success("Dry run complete.", changed=0, context=dict(context or {}))


def _build_platform(op: OperationScope, runtime: RuntimeContext, *, dry_run: bool) -> Platform:
    try:
        return create_platform(
            runtime.config,
            runtime.templates,
            dry_run=dry_run or runtime.config.dry_run,
        )
    except PlatformError as exc:
        _command_error(op, str(exc), rc=ExitCode.ENVIRONMENT)


def _check_required_fields(op: OperationScope, config: AppConfig, *, dry_run: bool) -> None:
    missing = config.require_bootstrap_fields()
    if not missing:
        return
    message = f"Missing required configuration: {', '.join(missing)}"
    if dry_run:
        console.print(f"[yellow]{message}[/yellow]")
        op.add_step("config.required", status="warning", detail=message)
        return
    _command_error(op, message, errors=[f"{name} is required" for name in missing])


@contextmanager
def _cancel_on_signals(run_ctx: RunContext) -> Iterator[None]:
    """Turn SIGINT/SIGTERM into a cooperative cancellation of *run_ctx*."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum: int, _frame: object) -> None:
        run_ctx.cancel(f"received {signal.Signals(signum).name}")

    previous = {
        signum: signal.signal(signum, _handler) for signum in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        yield
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


def _render_result(result: ExecutionResult, *, json_output: bool) -> None:
    if json_output:
        console.print_json(data=result.to_dict())
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Step", style="bold")
    table.add_column("Result")
    table.add_column("Duration", justify="right")
    table.add_column("Error")
    for name in result.skipped:
        table.add_row(name, "[cyan]skipped[/cyan]", "", "")
    for step in result.step_results:
        outcome = "[green]ok[/green]" if step.success else "[red]failed[/red]"
        table.add_row(step.step_name, outcome, f"{step.duration:.2f}s", step.error)
    if not result.skipped and not result.step_results:
        table.add_row("(none)", "", "", "")
    console.print(table)


def _render_status(status: NodeStatus, *, json_output: bool) -> None:
    if json_output:
        console.print_json(data=status.to_dict())
        return

    def _flag(value: bool) -> str:
        return "[green]yes[/green]" if value else "[red]no[/red]"

    arc = status.arc_status
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Component", style="bold")
    table.add_column("Version")
    table.add_column("Running")
    table.add_row("kubelet", status.kubelet_version or "-", _flag(status.kubelet_running))
    table.add_row("containerd", status.containerd_version or "-", _flag(status.containerd_running))
    table.add_row("runc", status.runc_version or "-", "")
    table.add_row("azcmagent", arc.agent_version or "-", _flag(arc.connected))
    console.print(table)
    if arc.registered:
        console.print(f"Arc machine: {arc.machine_name} ({arc.resource_group}, {arc.location})")
    else:
        console.print("[yellow]Machine is not registered with Azure Arc.[/yellow]")


def _run_bootstrap(
    op: OperationScope,
    bootstrapper: Bootstrapper,
    run_ctx: RunContext,
    *,
    json_output: bool,
) -> ExecutionResult:
    try:
        with _cancel_on_signals(run_ctx):
            result = bootstrapper.bootstrap(run_ctx)
    except StepFailedError as exc:
        if isinstance(exc.result, ExecutionResult):
            _render_result(exc.result, json_output=json_output)
            for step in exc.result.step_results:
                op.add_step(
                    step.step_name,
                    status="success" if step.success else "error",
                    detail=step.error or None,
                )
        rc = ExitCode.CANCELLED if isinstance(exc.cause, RunCancelledError) else ExitCode.PROVIDER
        _command_error(op, f"Bootstrap failed: {exc}", rc=rc)
    for step in result.step_results:
        op.add_step(step.step_name, status="success", detail=f"{step.duration:.2f}s")
    for name in result.skipped:
        op.add_step(name, status="skipped")
    return result


# ----------------------------------------------------------------------
# Commands


@app.command("bootstrap")
def bootstrap(
    ctx: typer.Context,
    config_file: Path | None = CONFIG_FILE_OPTION,
    json_output: bool = JSON_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
) -> None:
    """Provision this machine as an AKS flex node."""
    runtime = _ensure_runtime(ctx, config_file)
    effective_dry_run = dry_run or runtime.config.dry_run
    with runtime.logger.operation(
        "bootstrap",
        args={"json": json_output, "dry_run": effective_dry_run},
        target={"kind": "node", "scope": "bootstrap"},
    ) as op:
        _check_required_fields(op, runtime.config, dry_run=effective_dry_run)
        platform = _build_platform(op, runtime, dry_run=effective_dry_run)
        bootstrapper = Bootstrapper(runtime.config, platform, templates=runtime.templates)
        result = _run_bootstrap(op, bootstrapper, RunContext(), json_output=json_output)
        _render_result(result, json_output=json_output)
        if effective_dry_run:
            _dry_run_complete(
                op,
                f"{result.step_count} step(s) planned for {platform.os.value}.",
                context=result.to_dict(),
            )
            return
        if not json_output:
            console.print(f"[green]Bootstrap complete[/green] in {result.duration:.1f}s.")
        op.success(
            "Bootstrap complete.",
            changed=len(result.step_results),
            context=result.to_dict(),
        )


@app.command("unbootstrap")
def unbootstrap(
    ctx: typer.Context,
    config_file: Path | None = CONFIG_FILE_OPTION,
    json_output: bool = JSON_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
) -> None:
    """Remove every flex node component from this machine."""
    runtime = _ensure_runtime(ctx, config_file)
    effective_dry_run = dry_run or runtime.config.dry_run
    with runtime.logger.operation(
        "unbootstrap",
        args={"json": json_output, "dry_run": effective_dry_run},
        target={"kind": "node", "scope": "unbootstrap"},
    ) as op:
        platform = _build_platform(op, runtime, dry_run=effective_dry_run)
        bootstrapper = Bootstrapper(runtime.config, platform, templates=runtime.templates)
        run_ctx = RunContext()
        with _cancel_on_signals(run_ctx):
            result = bootstrapper.unbootstrap(run_ctx)
        _render_result(result, json_output=json_output)
        for step in result.step_results:
            op.add_step(
                step.step_name,
                status="success" if step.success else "warning",
                detail=step.error or None,
            )
        if effective_dry_run:
            _dry_run_complete(
                op,
                f"{result.step_count} step(s) planned for {platform.os.value}.",
                context=result.to_dict(),
            )
            return
        if result.success:
            if not json_output:
                console.print(f"[green]Unbootstrap complete[/green] in {result.duration:.1f}s.")
            op.success("Unbootstrap complete.", changed=len(result.step_results))
            return
        failed = [step.step_name for step in result.failed_steps]
        if not json_output:
            console.print(
                f"[yellow]Unbootstrap finished with failures:[/yellow] {', '.join(failed)}"
            )
        op.warning(
            "Unbootstrap finished with failures.",
            warnings=[f"{step.step_name}: {step.error}" for step in result.failed_steps],
            changed=len(result.step_results) - len(failed),
            context=result.to_dict(),
        )


@app.command("agent")
def agent(
    ctx: typer.Context,
    config_file: Path | None = CONFIG_FILE_OPTION,
    iterations: int | None = typer.Option(
        None,
        "--iterations",
        min=1,
        help="Stop after collecting status this many times (default: run until stopped).",
    ),
    dry_run: bool = DRY_RUN_OPTION,
) -> None:
    """Bootstrap the node, then keep its status file up to date."""
    runtime = _ensure_runtime(ctx, config_file)
    effective_dry_run = dry_run or runtime.config.dry_run
    interval = runtime.config.agent.status_interval
    status_path = runtime.config.paths.state_dir / STATUS_FILE_NAME
    with runtime.logger.operation(
        "agent",
        args={"iterations": iterations, "dry_run": effective_dry_run},
        target={"kind": "node", "scope": "agent", "status_file": str(status_path)},
    ) as op:
        _check_required_fields(op, runtime.config, dry_run=effective_dry_run)
        platform = _build_platform(op, runtime, dry_run=effective_dry_run)
        bootstrapper = Bootstrapper(runtime.config, platform, templates=runtime.templates)
        run_ctx = RunContext()
        _run_bootstrap(op, bootstrapper, run_ctx, json_output=False)
        collector = StatusCollector(platform)
        collected = 0
        with _cancel_on_signals(run_ctx):
            try:
                while iterations is None or collected < iterations:
                    write_status(status_path, collector.collect(), platform=platform)
                    collected += 1
                    if iterations is not None and collected >= iterations:
                        break
                    run_ctx.sleep(interval)
            except RunCancelledError as exc:
                console.print(f"[yellow]Agent stopping:[/yellow] {exc}")
        op.add_step("status.collect", detail=f"{collected} snapshot(s)")
        op.success(
            "Agent stopped.",
            changed=0,
            context={"status_file": str(status_path), "snapshots": collected},
        )


@app.command("status")
def status(
    ctx: typer.Context,
    config_file: Path | None = CONFIG_FILE_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Show the current node status."""
    runtime = _ensure_runtime(ctx, config_file)
    with runtime.logger.operation(
        "status",
        args={"json": json_output},
        target={"kind": "node", "scope": "status"},
    ) as op:
        platform = _build_platform(op, runtime, dry_run=False)
        node_status = StatusCollector(platform).collect()
        _render_status(node_status, json_output=json_output)
        op.success("Reported node status.", changed=0, context=node_status.to_dict())


@app.command("version")
def version(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """Show version and build metadata."""
    runtime = _ensure_runtime(ctx, None)
    with runtime.logger.operation(
        "version",
        args={"json": json_output},
        target={"kind": "meta", "scope": "version"},
    ) as op:
        info = get_build_info()
        if json_output:
            console.print_json(data=info)
        else:
            console.print(f"aks-flex-node {info['version']}")
            console.print(f"Git commit: {info['git_commit']}")
            console.print(f"Build time: {info['build_time']}")
        op.success("Reported version.", changed=0, context=info)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["RuntimeContext", "app", "main"]
