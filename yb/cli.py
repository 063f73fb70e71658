"""yb CLI — the main entry point for the Yocto workspace reconciler."""

import logging
import sys

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from yb import __version__
from yb.errors import YbError

console = Console()


def _setup_logging(verbose: bool) -> None:
    logger = logging.getLogger("yb")
    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        logger.addHandler(RichHandler(console=Console(stderr=True), show_time=False, show_path=False))
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)


def _workspace():
    from yb.workspace import Workspace

    return Workspace.discover()


def _fail(error) -> None:
    console.print(f"[red]error:[/] {error}")
    sys.exit(1)


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
def main(verbose: bool):
    """yb — keep a multi-repo Yocto workspace in line with a shared spec.

    Specs live in streams (git repositories of spec documents). Activate
    one, then run 'yb status' to see what differs and 'yb sync --apply'
    to fix it.
    """
    _setup_logging(verbose)


# ── Init ─────────────────────────────────────────────────────────────


@main.command()
@click.argument("location", default=".")
@click.option("--build-dir", default=None, help="Build directory (default: <location>/build)")
@click.option("--sources-dir", default=None, help="Where repositories are cloned (default: <location>/sources)")
@click.option("--poky-dir", default=None, help="Poky checkout, if it lives outside the sources directory")
def init(location: str, build_dir: str | None, sources_dir: str | None, poky_dir: str | None):
    """Create a new yb workspace at LOCATION."""
    from yb.workspace import Workspace

    try:
        ws = Workspace.initialize(location, build_dir, sources_dir, poky_dir)
    except YbError as e:
        _fail(e)

    console.print(f"\n[bold blue]yb[/] — Initialized workspace at {ws.root}\n")
    console.print(f"  Build dir:   {ws.build_dir}")
    console.print(f"  Sources dir: {ws.sources_dir}")
    if ws.poky_dir is not None:
        console.print(f"  Poky dir:    {ws.poky_dir}")
    console.print("\n  Next: [cyan]yb stream add <url>[/] then [cyan]yb activate <spec>[/]")


# ── Streams ──────────────────────────────────────────────────────────


@main.group()
def stream():
    """Manage spec streams."""


@stream.command(name="add")
@click.argument("url")
@click.option("--name", "-n", default=None, help="Stream name (default: derived from URL)")
def stream_add(url: str, name: str | None):
    """Clone a stream from URL into the workspace."""
    from yb.config import EngineOptions

    try:
        ws = _workspace()
        added = ws.add_stream(url, name, timeout=EngineOptions.from_env().network_timeout)
    except YbError as e:
        _fail(e)

    console.print(f"  Added stream [cyan]{added.name}[/] ({len(added.specs)} specs)")
    for error in added.broken.values():
        console.print(f"  [yellow]![/] {error}")


@stream.command(name="update")
@click.argument("name", required=False)
def stream_update(name: str | None):
    """Fast-forward stream NAME (default: every stream) to its upstream."""
    from yb.config import EngineOptions

    try:
        ws = _workspace()
        streams = [ws.stream(name)] if name else ws.streams()
        timeout = EngineOptions.from_env().network_timeout
    except YbError as e:
        _fail(e)

    if not streams:
        console.print("[yellow]No streams. Add one with 'yb stream add <url>'.[/]")
        return

    failed = 0
    for s in streams:
        try:
            revision = s.refresh(timeout=timeout)
        except YbError as e:
            console.print(f"  [red]x[/] {e}")
            failed += 1
            continue
        if revision is None:
            console.print(f"  [green]v[/] {s.name}: no change")
        else:
            console.print(f"  [green]v[/] {s.name}: updated to {revision[:12]}")

    if failed:
        sys.exit(1)


@stream.command(name="list")
def stream_list():
    """List streams in the workspace."""
    try:
        streams = _workspace().streams()
    except YbError as e:
        _fail(e)

    if not streams:
        console.print("[yellow]No streams. Add one with 'yb stream add <url>'.[/]")
        return

    table = Table(title=f"Streams ({len(streams)})")
    table.add_column("Name", style="cyan")
    table.add_column("Revision", style="dim")
    table.add_column("Specs", justify="right")
    table.add_column("Broken", justify="right")

    for s in streams:
        broken = f"[red]{len(s.broken)}[/]" if s.broken else "0"
        table.add_row(s.name, (s.revision or "?")[:12], str(len(s.specs)), broken)

    console.print(table)


# ── Specs ────────────────────────────────────────────────────────────


@main.command(name="list")
def list_specs():
    """List specs available in every stream."""
    try:
        ws = _workspace()
        streams = ws.streams()
        active = ws.active_spec_name()
    except YbError as e:
        _fail(e)

    rows = [(spec, s) for s in streams for spec in sorted(s.specs.values(), key=lambda sp: sp.name)]
    if not rows:
        console.print("[yellow]No specs found.[/]")
        return

    table = Table(title=f"Specs ({len(rows)})")
    table.add_column("", width=1)
    table.add_column("Name", style="cyan")
    table.add_column("Stream")
    table.add_column("Repos", justify="right")

    for spec, s in rows:
        marker = "[green]*[/]" if spec.name == active else ""
        table.add_row(marker, spec.name, s.name, str(len(spec.repos)))

    console.print(table)


@main.command()
@click.argument("spec_name")
def activate(spec_name: str):
    """Make SPEC_NAME the active spec."""
    try:
        spec = _workspace().set_active(spec_name)
    except YbError as e:
        _fail(e)

    console.print(f"  Activated [cyan]{spec.name}[/]. Run [cyan]yb sync[/] to see what would change.")


# ── Status / Sync ────────────────────────────────────────────────────


@main.command()
@click.option("--no-fetch", is_flag=True, help="Do not fetch from remotes")
def status(no_fetch: bool):
    """Show how the workspace differs from the active spec."""
    from yb.config import EngineOptions
    from yb.sync.reconciler import Reconciler

    try:
        options = EngineOptions.from_env(fetch=not no_fetch)
        report = Reconciler(_workspace(), options).status()
    except YbError as e:
        _fail(e)

    _print_status(report)


@main.command()
@click.argument("spec_name", required=False)
@click.option("--apply", "-a", "apply_", is_flag=True, help="Perform the actions (default: dry-run)")
@click.option("--force", "-f", is_flag=True, help="Allow discarding local changes")
def sync(spec_name: str | None, apply_: bool, force: bool):
    """Reconcile the workspace with the active spec (or SPEC_NAME).

    Without --apply, nothing is changed: every action is validated and
    reported as it would be performed.
    """
    from yb.sync.reconciler import Reconciler
    from yb.workspace import WorkspaceKind

    try:
        ws = _workspace()
        if spec_name is None and ws.kind == WorkspaceKind.BARE:
            _fail("no active spec; run 'yb activate <spec>' or pass a spec name")
        report = Reconciler(ws).sync(apply=apply_, force=force, spec_name=spec_name)
    except YbError as e:
        _fail(e)

    _print_status(report.status, show_plan=report.result is None)

    result = report.result
    if result is None:
        return

    mode = "Applied" if apply_ else "Dry run"
    table = Table(title=f"{mode}: {report.status.plan.spec_name}")
    table.add_column("Repo", style="cyan")
    table.add_column("Action")
    table.add_column("Result")

    colors = {"applied": "green", "would apply": "blue", "failed": "red", "skipped": "dim", "refused": "red"}
    for repo in result.repos:
        if repo.conflict is not None and not repo.outcomes:
            table.add_row(repo.name, "-", f"[red]blocked[/] {repo.conflict.reason}")
        for outcome in repo.outcomes:
            color = colors.get(outcome.status, "white")
            table.add_row(repo.name, outcome.action.describe(), f"[{color}]{outcome.status}[/] {outcome.message}")
    for outcome in result.layer_outcomes:
        color = colors.get(outcome.status, "white")
        table.add_row("layers", outcome.action.describe(), f"[{color}]{outcome.status}[/] {outcome.message}")

    console.print(table)

    if not apply_ and result.ok:
        console.print("\n  Run with [cyan]--apply[/] to perform these actions.")
    if not result.ok:
        console.print(f"\n[red]{len(result.conflicts)} conflicts, {len(result.failures)} failures.[/]")
        sys.exit(1)


def _print_status(report, show_plan: bool = True) -> None:
    header = f"spec: {report.spec.name} (stream {report.stream_name})" if report.spec else "bare workspace"
    if report.stream_revision:
        header += f"\nstream revision: {report.stream_revision[:12]}"
    if report.spec_updated:
        header += "\n[yellow]active spec updated[/]"
    console.print(Panel(header, title="[bold blue]yb status[/]"))

    for state in report.state.repos.values():
        console.print(f"  {state.summary()}")
    for state in report.state.unreferenced:
        kind = "git repository" if state.is_repo else "directory"
        console.print(f"  [dim]{state.path} ({kind}, not in spec)[/]")
    for warning in report.warnings:
        console.print(f"  [yellow]![/] {warning}")

    plan = report.plan
    if plan is None:
        return
    for repo_plan in plan.repos:
        if repo_plan.conflict:
            console.print(f"  [red]x[/] {repo_plan.name}: {repo_plan.conflict}")
        for note in repo_plan.notes:
            console.print(f"  [dim]{repo_plan.name}: {note}[/]")

    if plan.is_empty:
        console.print("\n  [green]v[/] Workspace matches the spec")
    elif show_plan:
        console.print("\n  Pending actions:")
        for action in plan.actions:
            console.print(f"    - {action.describe()}")
