"""Operator CLI for inspecting and recovering checkpoints."""

import asyncio
import logging
import sys
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional

import click
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..config.checkpoint_config import CheckpointConfig, CheckpointStoreConfig
from ..core.errors import CheckpointError, CheckpointNotFoundError
from ..core.integrity import utc_now
from ..core.store import FileCheckpointStore
from ..models.checkpoint_models import RecoveryOptions
from ..services.checkpoint_service import CheckpointManager
from ..services.recovery_service import RecoveryManager

logger = logging.getLogger(__name__)

console = Console()

TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


class CheckpointCLIContext:
    """Services shared by all commands of one invocation."""

    def __init__(self, store_config: CheckpointStoreConfig, verbose: bool):
        self.verbose = verbose
        self.store = FileCheckpointStore(store_config)
        self.manager = CheckpointManager(self.store, CheckpointConfig())
        self.recovery = RecoveryManager(self.manager)

    async def initialize(self) -> None:
        # No retention sweep here; pruning is an explicit command
        await self.store.initialize()


def _run(
    ctx: CheckpointCLIContext, func: Callable[..., Awaitable[Any]], *args: Any
) -> Any:
    """Run a command coroutine, mapping errors to exit status 1."""

    async def runner():
        await ctx.initialize()
        return await func(*args)

    try:
        return asyncio.run(runner())
    except CheckpointError as e:
        if ctx.verbose:
            logger.exception("Checkpoint command failed")
        _fail(e)
    except ValidationError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def _fail(error: CheckpointError) -> None:
    click.echo(f"Error [{error.code}]: {error.message}", err=True)
    sys.exit(1)


@click.group()
@click.option(
    "--base-path",
    type=click.Path(file_okay=False),
    help="Checkpoint directory (default: CHECKPOINT_BASE_PATH or .checkpoints)",
)
@click.option(
    "--no-compression",
    is_flag=True,
    help="Write uncompressed checkpoint files",
)
@click.option(
    "--verbose", "-v",
    is_flag=True,
    help="Enable verbose logging",
)
@click.pass_context
def main(
    ctx: click.Context,
    base_path: Optional[str],
    no_compression: bool,
    verbose: bool,
) -> None:
    """
    Swarm checkpoints - inspect, validate and recover workflow checkpoints.

    List checkpoints:
        swarm-checkpoints list

    Check whether a checkpoint can be resumed:
        swarm-checkpoints status <checkpoint-id>

    Recover without the failed agent:
        swarm-checkpoints recover <checkpoint-id> --skip-failed-agent
    """
    log_level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    overrides = {}
    if base_path:
        overrides["base_path"] = base_path
    if no_compression:
        overrides["compression"] = False

    try:
        store_config = CheckpointStoreConfig(**overrides)
    except ValidationError as e:
        raise click.BadParameter(str(e))

    ctx.obj = CheckpointCLIContext(store_config, verbose)


@main.command("list")
@click.pass_obj
def list_command(obj: CheckpointCLIContext) -> None:
    """List checkpoints, oldest first."""
    entries = _run(obj, obj.manager.list_index_entries)

    if not entries:
        console.print("[yellow]No checkpoints found[/yellow]")
        return

    table = Table(title="Checkpoints")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Created")
    table.add_column("Trigger")
    table.add_column("Status")
    table.add_column("State")
    table.add_column("Resumable")
    table.add_column("Size", justify="right")

    for entry in entries:
        table.add_row(
            entry.id,
            entry.created_at.strftime(TIME_FORMAT),
            entry.trigger,
            entry.status,
            escape(entry.state),
            "[green]yes[/green]" if entry.can_resume else "[red]no[/red]",
            f"{entry.size:,}",
        )

    console.print(table)
    console.print(f"[dim]{len(entries)} checkpoints[/dim]")


@main.command()
@click.argument("checkpoint_id")
@click.pass_obj
def show(obj: CheckpointCLIContext, checkpoint_id: str) -> None:
    """Show a checkpoint."""
    checkpoint = _run(obj, obj.manager.get_checkpoint, checkpoint_id)
    if checkpoint is None:
        _fail(CheckpointNotFoundError(checkpoint_id))

    console.print(f"[bold]Checkpoint {checkpoint.id}[/bold]")
    console.print(f"Created: {checkpoint.created_at.strftime(TIME_FORMAT)}")
    console.print(f"Trigger: {checkpoint.trigger} {escape(checkpoint.trigger_reason)}")
    console.print(f"Status: {checkpoint.status}")
    console.print(f"State: {escape(checkpoint.workflow.current_state)}")
    console.print(f"Session: {escape(checkpoint.context.session_id)}")
    console.print(f"Size: {checkpoint.metadata.checkpoint_size:,} bytes")

    if checkpoint.agents:
        table = Table(title="Agents")
        table.add_column("Agent", style="cyan")
        table.add_column("Status")
        table.add_column("Attempts", justify="right")
        table.add_column("Error")
        for agent in checkpoint.agents:
            table.add_row(
                escape(agent.agent_id),
                agent.status,
                str(agent.attempts),
                escape(agent.error or ""),
            )
        console.print(table)

    _print_recovery(checkpoint.recovery.can_resume, checkpoint.recovery.blockers)


def _print_recovery(can_resume: bool, blockers) -> None:
    if can_resume:
        console.print("[green]Resumable[/green]")
    else:
        console.print("[red]Not resumable[/red]")
    for blocker in blockers:
        console.print(f"  [yellow]-[/yellow] {escape(blocker)}")


@main.command()
@click.argument("checkpoint_id")
@click.pass_obj
def status(obj: CheckpointCLIContext, checkpoint_id: str) -> None:
    """Show whether a checkpoint can be recovered."""
    recovery_status = _run(obj, obj.recovery.get_recovery_status, checkpoint_id)

    _print_recovery(recovery_status.can_recover, recovery_status.blockers)
    for suggestion in recovery_status.suggestions:
        console.print(f"  [cyan]>[/cyan] {escape(suggestion)}")


@main.command()
@click.argument("checkpoint_id")
@click.pass_obj
def validate(obj: CheckpointCLIContext, checkpoint_id: str) -> None:
    """Validate checkpoint integrity."""
    if not _run(obj, obj.manager.validate_checkpoint, checkpoint_id):
        _fail(CheckpointNotFoundError(checkpoint_id))

    console.print(f"[green]Checkpoint {checkpoint_id} is valid[/green]")


@main.command()
@click.argument("checkpoint_id")
@click.option("--skip-failed-agent", is_flag=True, help="Do not restore failed agents")
@click.option("--reset-to-state", help="Roll the workflow back to this state")
@click.option("--replay", is_flag=True, help="Enter single-step replay mode")
@click.option("--dry-run", is_flag=True, help="Report only, change nothing")
@click.pass_obj
def recover(
    obj: CheckpointCLIContext,
    checkpoint_id: str,
    skip_failed_agent: bool,
    reset_to_state: Optional[str],
    replay: bool,
    dry_run: bool,
) -> None:
    """Recover workflow state from a checkpoint."""
    try:
        options = RecoveryOptions(
            checkpoint_id=checkpoint_id,
            skip_failed_agent=skip_failed_agent,
            reset_to_state=reset_to_state,
            replay_mode=replay,
            dry_run=dry_run,
        )
    except ValidationError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    result = _run(obj, obj.recovery.recover, options)

    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/yellow] {escape(warning)}")

    if not result.success:
        for error in result.errors:
            click.echo(f"Error: {error}", err=True)
        sys.exit(1)

    console.print(f"[green]Recovered to state {escape(result.restored_state)}[/green]")
    if result.skipped_agents:
        console.print(f"Skipped agents: {escape(', '.join(result.skipped_agents))}")


@main.command()
@click.pass_obj
def stats(obj: CheckpointCLIContext) -> None:
    """Show checkpoint store statistics."""
    store_stats = _run(obj, obj.store.get_stats)

    table = Table(title="Checkpoint Statistics", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value")

    table.add_row("Checkpoints", str(store_stats.count))
    table.add_row("Total Size", f"{store_stats.total_size:,} bytes")
    table.add_row("Oldest", store_stats.oldest_checkpoint or "[dim]none[/dim]")
    table.add_row("Newest", store_stats.newest_checkpoint or "[dim]none[/dim]")

    console.print(table)


@main.command()
@click.argument("checkpoint_id")
@click.pass_obj
def archive(obj: CheckpointCLIContext, checkpoint_id: str) -> None:
    """Archive a checkpoint."""
    _run(obj, obj.manager.archive_checkpoint, checkpoint_id)
    console.print(f"[green]Archived checkpoint {checkpoint_id}[/green]")


@main.command()
@click.option(
    "--older-than-days",
    type=click.IntRange(min=0),
    required=True,
    help="Delete checkpoints created more than N days ago",
)
@click.pass_obj
def prune(obj: CheckpointCLIContext, older_than_days: int) -> None:
    """Delete old checkpoints."""
    cutoff = utc_now() - timedelta(days=older_than_days)
    deleted = _run(obj, obj.store.delete_older_than, cutoff)
    console.print(f"Deleted {deleted} checkpoints")


@main.command("rebuild-index")
@click.pass_obj
def rebuild_index(obj: CheckpointCLIContext) -> None:
    """Rebuild index.json from the checkpoint files."""
    count = _run(obj, obj.store.rebuild_from_disk)
    console.print(f"Indexed {count} checkpoints")


if __name__ == "__main__":
    main()
