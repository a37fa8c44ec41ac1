"""Command line interface for gameportctl.

The CLI wires the configured runtime objects together and hands control to
:class:`~gameportctl.engine.Provisioner`. Every command runs inside a
structured-logging operation so that ``operations.jsonl`` records what was
attempted and how it ended.
"""
from __future__ import annotations

import json
import logging
import textwrap
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .config import AppConfig, ConfigError, load_config
from .engine import Provisioner, ProvisioningReport, RunOptions, StageRecord
from .environment import HostEnvironment, SystemEnvironment
from .errors import ProvisioningError, ProvisioningFailed
from .exit_codes import ExitCode
from .facts import assess_resources, collect
from .logging import OperationScope, StructuredLogger
from .providers.systemd import SystemdProvider
from .state import StateRegistry, StateRegistryError
from .target import ProvisioningTarget, build_target
from .templates import TemplateEngine

console = Console()
err_console = Console(stderr=True)

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to gameportctl's YAML config file.",
)

JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit machine-readable JSON instead of formatted output.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        GamePort provisioning CLI.

        Brings a host to the declared state for one GamePort panel instance:
        system packages, service account, directories, secrets, configuration
        and the supervised systemd service. Every step is safe to re-run.
        """
    ).strip(),
)
config_app = typer.Typer(help="Inspect the gameportctl configuration.")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    env: SystemEnvironment
    target: ProvisioningTarget
    logger: StructuredLogger
    templates: TemplateEngine
    systemd: SystemdProvider
    state: StateRegistry


def _configure_logging(verbose: bool) -> None:
    root = logging.getLogger("gameportctl")
    if any(isinstance(handler, RichHandler) for handler in root.handlers):
        root.setLevel(logging.DEBUG if verbose else logging.WARNING)
        return
    handler = RichHandler(console=err_console, show_path=False, rich_tracebacks=False)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        err_console.print(f"[red]Configuration error:[/red] {exc}")
        raise typer.Exit(code=ExitCode.VALIDATION) from exc

    env = HostEnvironment()
    logger = StructuredLogger(config.logs_dir)
    templates = TemplateEngine.with_overrides(config.templates_dir)
    systemd = SystemdProvider(
        env=env,
        templates=templates,
        systemd_dir=config.systemd.unit_dir,
        systemctl_bin=config.systemd.systemctl_bin,
    )
    runtime = RuntimeContext(
        config=config,
        env=env,
        target=build_target(config),
        logger=logger,
        templates=templates,
        systemd=systemd,
        state=StateRegistry(config.state_dir),
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the gameportctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log every provisioning step to stderr.",
    ),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    _configure_logging(verbose)
    if version:
        console.print(f"gameportctl {__version__}")
        raise typer.Exit(code=ExitCode.OK)

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=ExitCode.OK)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.FATAL,
    errors: Sequence[str] | None = None,
    context: Mapping[str, object] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    err_console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=int(rc), context=context)
    raise typer.Exit(code=int(rc))


def _print_stage(record: StageRecord) -> None:
    marker = "[green]ok[/green]" if record.status == "ok" else "[red]failed[/red]"
    console.print(f"  {marker} {record.stage.value}: {record.detail or ''}")


def _render_summary(
    runtime: RuntimeContext,
    report: ProvisioningReport,
    *,
    deployed: bool,
) -> None:
    target = runtime.target
    console.print("[green]GamePort has been successfully installed![/green]")
    console.print()
    if deployed:
        console.print("[blue]To create an admin user, run:[/blue]")
        console.print(
            f"  {target.deploy.cli_link.name} admin:create --email=admin@example.com "
            '--name="Admin User" --password=your_password',
            markup=False,
        )
        console.print()
    table = Table(show_header=False)
    table.add_column("Item", style="bold")
    table.add_column("Value")
    table.add_row("Access the panel at", report.access_url or "")
    table.add_row("Configuration file", str(target.config_path))
    table.add_row("Installation directory", str(target.install_root))
    table.add_row("Data directory", str(target.data_root))
    table.add_row("Log directory", str(target.log_root))
    console.print(table)


@app.command()
def install(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
    skip_packages: bool = typer.Option(
        False,
        "--skip-packages",
        help="Do not install system packages or enable dependency services.",
    ),
    skip_deploy: bool = typer.Option(
        False,
        "--skip-deploy",
        help="Do not clone, install or migrate the panel application.",
    ),
) -> None:
    """Provision (or re-provision) this host for GamePort."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "install",
        args={"json": json_output, "skip_packages": skip_packages, "skip_deploy": skip_deploy},
        target={"kind": "host", "service": runtime.target.service_name},
    ) as op:
        if not json_output:
            console.print("[green]Starting GamePort installation...[/green]")

        def on_stage(record: StageRecord) -> None:
            op.add_step(record.stage.value, status=record.status, detail=record.detail)
            if not json_output:
                _print_stage(record)

        provisioner = Provisioner(
            runtime.env,
            runtime.target,
            systemd=runtime.systemd,
            state=runtime.state,
            options=RunOptions(skip_packages=skip_packages, skip_deploy=skip_deploy),
            on_stage=on_stage,
        )
        try:
            report = provisioner.run()
        except ProvisioningFailed as exc:
            payload = exc.report.to_dict()
            if json_output:
                console.print_json(data=payload)
            message = (
                f"Provisioning failed at {exc.stage.value} "
                f"(last completed: {exc.last_completed.value}): {exc.error}"
            )
            errors = [message]
            if exc.remediation:
                errors.append(exc.remediation)
                if not json_output:
                    err_console.print(f"[yellow]{exc.remediation}[/yellow]")
            _command_error(op, message, rc=ExitCode.FATAL, errors=errors, context=payload)

        payload = report.to_dict()
        warnings = [advisory.message for advisory in report.advisories] + report.warnings
        if json_output:
            console.print_json(data=payload)
        else:
            for warning in warnings:
                console.print(f"[yellow]Warning:[/yellow] {warning}")
            _render_summary(
                runtime,
                report,
                deployed=runtime.target.deploy.enabled and not skip_deploy,
            )

        changed = int(bool(report.config_changed)) + int(bool(report.unit_changed))
        if warnings:
            op.warning(
                "Provisioning completed with warnings.",
                warnings=warnings,
                changed=changed,
                backups=report.backups,
                context=payload,
            )
        else:
            op.success(
                "Provisioning completed.",
                changed=changed,
                backups=report.backups,
                context=payload,
            )


@app.command()
def facts(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Show host facts and resource advisories without changing anything."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "facts",
        args={"json": json_output},
        target={"kind": "host", "scope": "facts"},
    ) as op:
        try:
            host = collect(runtime.env)
        except ProvisioningError as exc:
            _command_error(op, str(exc), rc=ExitCode.FATAL)
        advisories = assess_resources(host)
        payload = {
            "facts": host.to_dict(),
            "advisories": [advisory.to_dict() for advisory in advisories],
        }
        if json_output:
            console.print_json(data=payload)
        else:
            table = Table(show_header=True, header_style="bold magenta")
            table.add_column("Fact", style="bold")
            table.add_column("Value")
            for key, value in host.to_dict().items():
                if isinstance(value, list):
                    value = " ".join(value)
                table.add_row(key, "" if value is None else str(value))
            console.print(table)
            for advisory in advisories:
                console.print(f"[yellow]Warning:[/yellow] {advisory.message}")
        if advisories:
            op.warning(
                "Host is below recommended resources.",
                warnings=[advisory.message for advisory in advisories],
                changed=0,
                context=payload,
            )
        else:
            op.success("Collected host facts.", changed=0, context=payload)


@app.command()
def status(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Show the outcome of the last recorded provisioning run."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "status",
        args={"json": json_output},
        target={"kind": "state", "scope": "last-run"},
    ) as op:
        try:
            last_run = runtime.state.read_last_run()
        except StateRegistryError as exc:
            _command_error(op, str(exc), rc=ExitCode.FATAL)
        if last_run is None:
            if json_output:
                console.print_json(data={"last_run": None})
            else:
                console.print("No provisioning run recorded.")
            op.success("No recorded runs.", changed=0)
            return

        if json_output:
            console.print_json(data={"last_run": last_run})
            op.success("Reported last run.", changed=0)
            return

        console.print(
            f"Last run [bold]{last_run.get('run_id')}[/bold] "
            f"started {last_run.get('started_at')}: {last_run.get('status')} "
            f"(last completed: {last_run.get('last_completed')})"
        )
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Stage", style="bold")
        table.add_column("Status")
        table.add_column("Detail")
        stages = last_run.get("stages")
        if isinstance(stages, list):
            for entry in stages:
                if isinstance(entry, Mapping):
                    table.add_row(
                        str(entry.get("stage", "")),
                        str(entry.get("status", "")),
                        str(entry.get("detail") or ""),
                    )
        console.print(table)
        failure = last_run.get("failure")
        if isinstance(failure, Mapping):
            console.print(f"[red]{failure.get('error')}[/red]")
            if failure.get("remediation"):
                console.print(f"[yellow]{failure.get('remediation')}[/yellow]")
        op.success("Reported last run.", changed=0)


@config_app.command("show")
def config_show(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")

        for key, value in data.items():
            if isinstance(value, dict):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(key, rendered)

        console.print(table)
        op.success("Rendered configuration table.", changed=0)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
