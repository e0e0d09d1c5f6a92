"""rbx-configs CLI — sync a local flag file with a universe's configuration."""

from contextlib import contextmanager

import click
from dotenv import find_dotenv, load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from rbx_configs import __version__
from rbx_configs.errors import PartialPublish, RemoteError, StageRejected, SyncError
from rbx_configs.log import configure_logging
from rbx_configs.remote.client import RemoteConfigClient
from rbx_configs.remote.http import HttpRemoteConfigClient
from rbx_configs.settings import DEFAULT_FILE, ENV_COOKIE, SyncSettings
from rbx_configs.sync.orchestrator import SyncOrchestrator

console = Console()


def build_client(settings: SyncSettings) -> RemoteConfigClient:
    """Create the remote client for an invocation."""
    if not settings.has_credentials:
        raise click.UsageError(f"No session cookie found. Set {ENV_COOKIE}.")
    return HttpRemoteConfigClient(
        cookie=settings.cookie,
        base_url=settings.base_url,
        retry=settings.retry,
    )


def _orchestrator(ctx: click.Context) -> SyncOrchestrator:
    settings: SyncSettings = ctx.obj
    client = build_client(settings)
    ctx.call_on_close(client.close)
    return SyncOrchestrator(client, settings)


@contextmanager
def _sync_errors(action: str):
    """Report any SyncError and exit non-zero."""
    try:
        yield
    except SyncError as e:
        console.print(f"[red]Failed to {action}:[/] {escape(str(e))}")
        if isinstance(e, StageRejected):
            for name, reason in e.rejections.items():
                console.print(f"  [red]x[/] {escape(name)}: {escape(reason)}")
        elif isinstance(e, PartialPublish):
            for name in e.names:
                console.print(f"  [yellow]![/] {escape(name)}")
        elif isinstance(e, RemoteError) and (e.staged or e.unconfirmed):
            console.print("Staged before the failure:")
            for name in e.staged:
                console.print(f"  [green]+[/] {escape(name)}")
            console.print("Not staged or unconfirmed:")
            for name in e.unconfirmed:
                console.print(f"  [red]x[/] {escape(name)}")
        if e.published:
            console.print("[yellow]Already published by earlier drafts:[/]")
            for name in e.published:
                console.print(f"  [green]+[/] {escape(name)}")
        raise SystemExit(1)


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--universe-id", "-u", required=True, type=int, help="REQUIRED: the universe ID to operate on"
)
@click.option(
    "--file",
    "-f",
    "file_path",
    default=DEFAULT_FILE,
    show_default=True,
    type=click.Path(dir_okay=False),
    help="Path to the flag file (.json, .yaml or .yml)",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, universe_id: int, file_path: str, verbose: bool):
    """rbx-configs — manage universe configs/experiments as a local file.

    Download the published configuration, edit it, and upload it back.
    Uploads only touch flags that changed and never delete remote flags.
    """
    load_dotenv(find_dotenv(usecwd=True))
    configure_logging(verbose=verbose)
    try:
        ctx.obj = SyncSettings.from_env(universe_id, file_path)
    except ValueError as e:
        raise click.UsageError(str(e))


# ── Download ─────────────────────────────────────────────────────────


@main.command()
@click.pass_context
def download(ctx: click.Context):
    """Downloads all the configs/experiments from the universe."""
    orchestrator = _orchestrator(ctx)

    with _sync_errors("download config"):
        store = orchestrator.download()

    console.print(
        f"[green]Downloaded {len(store)} flag(s) to[/] {escape(str(ctx.obj.file))}"
    )


# ── Upload ───────────────────────────────────────────────────────────


@main.command()
@click.option("--dry-run", is_flag=True, help="Show what would change without staging anything")
@click.option(
    "--discard-first",
    is_flag=True,
    help="Discard any existing staged draft before uploading",
)
@click.pass_context
def upload(ctx: click.Context, dry_run: bool, discard_first: bool):
    """Uploads all changed configs/experiments to the universe and publishes them."""
    ctx.obj.discard_before_upload = discard_first
    orchestrator = _orchestrator(ctx)

    with _sync_errors("upload config"):
        result = orchestrator.upload(dry_run=dry_run)

    if dry_run and not result.plan.is_empty:
        _print_plan(result.plan)
    style = "green" if result.changed or result.plan.is_empty else "yellow"
    console.print(f"[{style}]{escape(result.summary())}[/]")


# ── Diff ─────────────────────────────────────────────────────────────


@main.command()
@click.pass_context
def diff(ctx: click.Context):
    """Show how the local file differs from the published config."""
    orchestrator = _orchestrator(ctx)

    with _sync_errors("diff config"):
        plan = orchestrator.plan()

    if plan.is_empty:
        console.print("[green]Remote already matches the local file.[/]")
    else:
        _print_plan(plan)
    if plan.remote_only:
        console.print(
            f"[dim]{len(plan.remote_only)} remote-only flag(s) left untouched: "
            f"{escape(', '.join(plan.remote_only))}[/]"
        )


def _print_plan(plan):
    table = Table(title=f"Pending changes ({plan.summary()})")
    table.add_column("Action", style="cyan")
    table.add_column("Flag")
    table.add_column("Value")

    for op in plan.operations:
        value = repr(op.flag.value.to_json())
        table.add_row(op.kind.value, escape(op.name), escape(value[:60]))

    console.print(table)


# ── Draft ────────────────────────────────────────────────────────────


@main.group()
def draft():
    """Discard / Publish changes to the universe config."""


@draft.command()
@click.pass_context
def discard(ctx: click.Context):
    """Discards any staged changes to the universe config."""
    orchestrator = _orchestrator(ctx)

    with _sync_errors("discard staged changes"):
        discarded = orchestrator.draft_discard()

    if discarded:
        console.print("[green]Staged changes discarded successfully.[/]")
    else:
        console.print("[yellow]No staged changes to discard.[/]")


@draft.command()
@click.pass_context
def publish(ctx: click.Context):
    """Publishes any staged changes to the universe config."""
    orchestrator = _orchestrator(ctx)

    with _sync_errors("publish staged changes"):
        orchestrator.draft_publish()

    console.print("[green]Staged changes published successfully.[/]")


if __name__ == "__main__":
    main()
