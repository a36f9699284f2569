#!/usr/bin/env python3
"""
Agreement System CLI - convergence layer between product, implementation, and code

Usage:
    agreement-system init      Install the Agreement System in the current project
    agreement-system update    Update commands without touching existing agreements
    agreement-system help      Show usage

Or run without installing:
    uvx --from . agreement-system init
"""

import sys
from pathlib import Path

import click
import typer
from rich.align import Align
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from typer.core import TyperGroup

from .environment import Environment, Settings, probe
from .installer import SLASH_COMMANDS, InstallOptions, RunReport, run_install, run_update
from .merge import Action
from .sync import SyncEngine
from .tracker import StepTracker

TAGLINE = "Convergence layer between product, implementation, and code"

ACTION_STYLES = {
    Action.WRITTEN: "green",
    Action.APPENDED: "cyan",
    Action.MERGED: "cyan",
    Action.SKIPPED: "yellow",
}

console = Console()


def get_version() -> str:
    """Installed package version, or the pyproject.toml version when running from source."""
    import importlib.metadata
    try:
        return importlib.metadata.version("agreement-system")
    except importlib.metadata.PackageNotFoundError:
        try:
            import tomllib
            pyproject_path = Path(__file__).parent.parent.parent / "pyproject.toml"
            if pyproject_path.exists():
                with open(pyproject_path, "rb") as f:
                    data = tomllib.load(f)
                    return data.get("project", {}).get("version", "unknown")
        except (OSError, tomllib.TOMLDecodeError):
            pass
    return "unknown"


def show_banner():
    """Display the tool name, version and tagline."""
    title = Text()
    title.append("agreement-system", style="bold bright_cyan")
    title.append(f" v{get_version()}", style="bright_blue")
    console.print()
    console.print(Align.center(title))
    console.print(Align.center(Text(TAGLINE, style="italic bright_yellow")))
    console.print()


class AgreementGroup(TyperGroup):
    """Top-level group: any unrecognised token prints usage and exits 1."""

    def _reject(self, ctx, token):
        console.print(f"[red]Unknown command:[/red] {token}")
        typer.echo(ctx.get_help())
        ctx.exit(1)

    def parse_args(self, ctx, args):
        try:
            return super().parse_args(ctx, args)
        except click.NoSuchOption as e:
            self._reject(ctx, e.option_name)

    def resolve_command(self, ctx, args):
        cmd_name = args[0] if args else None
        if cmd_name and self.get_command(ctx, cmd_name) is None:
            self._reject(ctx, cmd_name)
        return super().resolve_command(ctx, args)


app = typer.Typer(
    name="agreement-system",
    help="Install and update the Agreement System in the current project.",
    add_completion=False,
    invoke_without_command=True,
    cls=AgreementGroup,
    context_settings={"help_option_names": ["-h", "--help"]},
)


@app.callback()
def callback(ctx: typer.Context):
    """Show usage when no subcommand is provided."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit(0)


@app.command("help")
def help_command(ctx: typer.Context):
    """Show this help message."""
    typer.echo(ctx.parent.get_help())


def show_environment(env: Environment):
    """Print the detected environment as a panel."""
    def yes_no(flag: bool) -> str:
        return "[green]yes[/green]" if flag else "[bright_black]no[/bright_black]"

    agreements = "[yellow]already installed[/yellow]" if env.has_agreements else "[bright_black]not found[/bright_black]"
    lines = [
        "[cyan]Environment detected[/cyan]",
        "",
        f"{'BMAD':<16} {yes_no(env.has_bmad)}",
        f"{'Spec Kit':<16} {yes_no(env.has_speckit)}",
        f"{'Claude commands':<16} {yes_no(env.has_claude_commands)}",
        f"{'Agreements':<16} {agreements}",
    ]
    console.print(Panel("\n".join(lines), border_style="cyan", padding=(1, 2)))


def show_results(report: RunReport, title: str):
    """Print one row per managed file plus any warnings."""
    if report.results:
        table = Table(title=title, show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Action", justify="right")
        table.add_column("File")
        table.add_column("Note", style="bright_black")
        for result in report.results:
            style = ACTION_STYLES.get(result.action, "white")
            table.add_row(f"[{style}]{result.action.value}[/{style}]", result.destination, result.detail)
        console.print()
        console.print(table)

    for warning in report.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")


def show_failure(title: str, error: Exception, debug: bool):
    console.print(Panel(f"{title}: {error}", title="Failure", border_style="red"))
    if debug:
        _env_pairs = [
            ("Python", sys.version.split()[0]),
            ("Platform", sys.platform),
            ("CWD", str(Path.cwd())),
        ]
        _label_width = max(len(k) for k, _ in _env_pairs)
        env_lines = [f"{k.ljust(_label_width)} → [bright_black]{v}[/bright_black]" for k, v in _env_pairs]
        console.print(Panel("\n".join(env_lines), title="Debug Environment", border_style="magenta"))
    console.print("[dim]Nothing is rolled back; fix the problem and run the command again.[/dim]")


def ask_overwrite(question: str) -> str:
    """Read one answer line. Closed stdin counts as an empty answer."""
    try:
        return typer.prompt(question, default="", show_default=False)
    except click.exceptions.Abort:
        console.print()
        return ""


@app.command(context_settings={"ignore_unknown_options": True, "allow_extra_args": True})
def init(
    skip_bmad: bool = typer.Option(False, "--skip-bmad", help="Skip BMAD integration even if detected"),
    force_bmad: bool = typer.Option(False, "--force-bmad", help="Install BMAD integration even if not detected"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompts"),
    debug: bool = typer.Option(False, "--debug", help="Show diagnostic output when a file operation fails"),
):
    """
    Install the Agreement System in the current project.

    This command will:
    1. Detect BMAD, Spec Kit, Claude Code commands and an existing install
    2. Ask before touching an existing .agreements/ directory (unless --yes)
    3. Install the core templates into .agreements/
    4. Install the Claude Code commands into .claude/commands/
    5. Extend the BMAD agents when BMAD is present (or --force-bmad)

    Existing agreements in index.yaml and an existing config.yaml are never
    overwritten.

    Examples:
        agreement-system init
        agreement-system init --yes
        agreement-system init --skip-bmad
        agreement-system init --force-bmad --yes
    """
    show_banner()

    settings = Settings.from_env()
    env = probe(settings.project_root)
    show_environment(env)

    engine = SyncEngine(settings.template_root, settings.project_root)
    options = InstallOptions(skip_bmad=skip_bmad, force_bmad=force_bmad, assume_yes=yes)

    tracker = StepTracker("Install Agreement System")
    for key, label in [
        ("core", "Install core templates"),
        ("commands", "Install Claude Code commands"),
        ("bmad", "BMAD integration"),
        ("final", "Finalize"),
    ]:
        tracker.add(key, label)

    try:
        with Live(tracker.render(), console=console, refresh_per_second=8, transient=True) as live:
            tracker.attach_refresh(lambda: live.update(tracker.render()))

            def ask(question: str) -> str:
                # Pause the live tree so the prompt line is not redrawn over
                live.stop()
                try:
                    return ask_overwrite(f"  {question}")
                finally:
                    live.start()

            report = run_install(engine, env, options, ask, tracker=tracker)
            if not report.declined:
                tracker.complete("final", "installed")
    except OSError as e:
        tracker.error("final", str(e))
        show_failure("Installation failed", e, debug)
        raise typer.Exit(1)

    if report.declined:
        console.print("[yellow]Skipping core templates (existing agreements preserved).[/yellow]")
        console.print("Use [cyan]agreement-system update[/cyan] to update commands only.")
        raise typer.Exit(0)

    console.print(tracker.render())
    show_results(report, "Managed files")
    console.print("\n[bold green]Done! Agreement System installed.[/bold green]")

    steps_lines = [f"[cyan]{usage}[/cyan]  {description}" for usage, description in SLASH_COMMANDS]
    console.print()
    console.print(Panel("\n".join(steps_lines), title="Available Commands", border_style="cyan", padding=(1, 2)))

    if env.has_speckit:
        console.print()
        console.print(
            "[cyan]Spec Kit detected:[/cyan] [cyan]/agreement.doctor[/cyan] will generate tasks "
            "compatible with [cyan]/speckit.implement[/cyan]."
        )


@app.command(context_settings={"ignore_unknown_options": True, "allow_extra_args": True})
def update(
    debug: bool = typer.Option(False, "--debug", help="Show diagnostic output when a file operation fails"),
):
    """
    Update commands and templates without touching existing agreements.

    Refreshes the Claude Code commands, .agreements/agreement.md, the
    agreement template and the BMAD customize files (only the Agent
    Customization section is replaced). index.yaml and config.yaml are
    never modified.
    """
    show_banner()

    settings = Settings.from_env()
    env = probe(settings.project_root)
    engine = SyncEngine(settings.template_root, settings.project_root)

    tracker = StepTracker("Update Agreement System")
    for key, label in [
        ("commands", "Update Claude Code commands"),
        ("core", "Update agreement doc and template"),
        ("bmad", "Update BMAD integration"),
        ("final", "Finalize"),
    ]:
        tracker.add(key, label)

    try:
        with Live(tracker.render(), console=console, refresh_per_second=8, transient=True) as live:
            tracker.attach_refresh(lambda: live.update(tracker.render()))
            report = run_update(engine, env, tracker=tracker)
            if not report.exit_code:
                tracker.complete("final", "updated")
    except OSError as e:
        tracker.error("final", str(e))
        show_failure("Update failed", e, debug)
        raise typer.Exit(1)

    if report.exit_code:
        console.print(f"[red]Error:[/red] {report.error}")
        raise typer.Exit(report.exit_code)

    console.print(tracker.render())
    show_results(report, "Managed files")
    console.print("\n[bold green]Done! Commands and templates updated.[/bold green]")
    console.print("Your existing agreements and config are untouched.")


def main():
    app()

if __name__ == "__main__":
    main()
