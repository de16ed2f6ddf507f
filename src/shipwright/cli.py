"""
Shipwright CLI - Command-line interface.

Validate, build, verify and supervise artifacts from the terminal. Exit
codes distinguish configuration, build, packaging and runtime failures.
"""

import os
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from shipwright.artifact.packager import verify_artifact
from shipwright.config import Settings, configure_logging
from shipwright.core.exceptions import (
    BuildError,
    ExitCode,
    PackagingIntegrityError,
    ShipwrightError,
    exit_code_for,
    format_exception,
)
from shipwright.core.models import Artifact, BuildConfiguration
from shipwright.environment.validator import EnvironmentValidator
from shipwright.pipeline import BuildPipeline
from shipwright.supervisor.supervisor import ProcessSupervisor

DEFAULT_CONFIG = Path("shipwright.json")

app = typer.Typer(
    name="shipwright",
    help="Shipwright - build, package and supervise a self-contained web service",
    no_args_is_help=True,
)
console = Console()


@app.callback()
def configure(
    log_level: str = typer.Option("INFO", "--log-level", "-l", help="Logging level"),
):
    """Configure logging for every command."""
    configure_logging(log_level)


def _fail(error: Exception) -> None:
    """Print an error and exit with its category's code."""
    console.print(f"[red]{format_exception(error)}[/red]")
    if isinstance(error, PackagingIntegrityError):
        for problem in error.problems:
            console.print(f"  [red]-[/red] {problem}")
    if isinstance(error, BuildError) and error.diagnostic:
        # Compiler output is passed through untouched
        sys.stderr.write(error.diagnostic)
        if not error.diagnostic.endswith("\n"):
            sys.stderr.write("\n")
    raise typer.Exit(int(exit_code_for(error)))


def _load_config(config_path: Path, output: Optional[Path]) -> BuildConfiguration:
    overrides = {}
    if output is not None:
        overrides["output_dir"] = str(output.resolve())
    return BuildConfiguration.from_file(config_path, **overrides)


def _settings(environ: dict[str, str], port: Optional[int], grace_period: Optional[float]) -> Settings:
    return Settings.from_env(environ, port=port, grace_period=grace_period)


@app.command()
def check(
    config_path: Path = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Build configuration file"),
):
    """Check required and optional environment variables."""
    environ = dict(os.environ)
    try:
        config = _load_config(config_path, None)
    except ShipwrightError as e:
        _fail(e)

    validator = EnvironmentValidator(config.environment)
    report = validator.inspect(environ)

    table = Table(title=f"Environment ({len(validator.requirements)} variables)")
    table.add_column("Variable", style="cyan")
    table.add_column("Kind")
    table.add_column("Status")

    for requirement in validator.requirements:
        kind = "required" if requirement.required else "optional"
        if requirement.name in report.present:
            source = report.present[requirement.name]
            via = f" (via {source})" if source != requirement.name else ""
            status = f"[green]present{via}[/green]"
        elif requirement.required:
            status = "[red]missing[/red]"
        else:
            status = "[yellow]missing (disabled)[/yellow]"
        table.add_row(requirement.name, kind, status)

    console.print(table)

    if not report.ok:
        console.print(f"[red]Missing required: {', '.join(report.missing_required)}[/red]")
        raise typer.Exit(int(ExitCode.CONFIGURATION))


@app.command()
def build(
    config_path: Path = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Build configuration file"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Artifact directory"),
    sequential: bool = typer.Option(False, "--sequential", help="Run build steps one after another"),
):
    """Validate the environment, build and package an artifact."""
    environ = dict(os.environ)
    try:
        config = _load_config(config_path, output)
        console.print(
            Panel.fit(
                f"[bold blue]Shipwright Build[/bold blue]\n"
                f"Name: {config.name}\n"
                f"Runtime: {config.runtime} ({config.module_format.value})\n"
                f"Output: {config.output_dir}",
            )
        )
        result = BuildPipeline(config, parallel=not sequential).run(environ)
    except ShipwrightError as e:
        _fail(e)

    console.print(f"\n[green]Artifact ready:[/green] {result.artifact.path}")
    console.print(f"Start command: {' '.join(result.artifact.manifest.start_command)}")
    console.print(f"Duration: {result.duration_ms:.0f}ms")


@app.command()
def verify(
    artifact_path: Path = typer.Argument(..., help="Artifact directory"),
):
    """Verify an existing artifact against its manifest."""
    try:
        artifact = verify_artifact(artifact_path)
    except ShipwrightError as e:
        _fail(e)

    console.print(
        f"[green]Artifact verified:[/green] {artifact.manifest.name} "
        f"({len(artifact.manifest.files)} files)"
    )


@app.command()
def inspect(
    artifact_path: Path = typer.Argument(..., help="Artifact directory"),
):
    """Show an artifact's manifest."""
    try:
        artifact = Artifact.load(artifact_path)
    except ShipwrightError as e:
        _fail(e)

    manifest = artifact.manifest
    console.print(
        Panel.fit(
            f"[bold blue]{manifest.name}[/bold blue]\n"
            f"Module type: {manifest.module_type.value}\n"
            f"Entry: {manifest.entry}\n"
            f"Start command: {' '.join(manifest.start_command)}\n"
            f"Assets: {manifest.assets_dir or '-'}\n"
            f"External: {', '.join(manifest.external_dependencies) or 'none'}",
        )
    )

    table = Table(title=f"Files ({len(manifest.files)})")
    table.add_column("Path", style="cyan")
    table.add_column("SHA256", style="dim")
    for rel, digest in sorted(manifest.files.items()):
        table.add_row(rel, digest[:16])
    console.print(table)


def _supervise(artifact: Artifact, settings: Settings, environ: dict[str, str], wait: bool) -> None:
    supervisor = ProcessSupervisor(
        artifact,
        settings,
        base_env=environ,
        wait_for_liveness=wait,
    )
    try:
        report = supervisor.run()
    except ShipwrightError as e:
        _fail(e)

    style = "green" if report.succeeded else "red"
    console.print(f"[{style}]{report.describe()}[/{style}]")
    if not report.succeeded:
        raise typer.Exit(int(ExitCode.RUNTIME))


@app.command()
def start(
    artifact_path: Path = typer.Argument(..., help="Artifact directory"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Service port (default: $PORT or 5000)"),
    grace_period: Optional[float] = typer.Option(None, "--grace-period", help="Seconds before SIGKILL"),
    wait: bool = typer.Option(True, "--wait/--no-wait", help="Wait for liveness before supervising"),
):
    """Launch an artifact and supervise it until it exits."""
    environ = dict(os.environ)
    try:
        settings = _settings(environ, port, grace_period)
        artifact = verify_artifact(artifact_path)
    except ShipwrightError as e:
        _fail(e)

    console.print(
        Panel.fit(
            f"[bold blue]Starting {artifact.manifest.name}[/bold blue]\n"
            f"Command: {' '.join(artifact.manifest.start_command)}\n"
            f"Port: {settings.port}\n"
            f"Mode: {settings.mode}",
        )
    )
    _supervise(artifact, settings, environ, wait)


@app.command()
def deploy(
    config_path: Path = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Build configuration file"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Artifact directory"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Service port (default: $PORT or 5000)"),
    grace_period: Optional[float] = typer.Option(None, "--grace-period", help="Seconds before SIGKILL"),
):
    """Build an artifact, then launch and supervise it."""
    environ = dict(os.environ)
    try:
        settings = _settings(environ, port, grace_period)
        config = _load_config(config_path, output)
        result = BuildPipeline(config).run(environ)
    except ShipwrightError as e:
        _fail(e)

    console.print(f"[green]Artifact ready:[/green] {result.artifact.path}")
    _supervise(result.artifact, settings, environ, wait=True)


@app.command()
def version():
    """Show Shipwright version."""
    from shipwright import __version__

    console.print(f"Shipwright v{__version__}")


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
