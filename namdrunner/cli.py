"""
NAMDRunner CLI: command-line front end for the job lifecycle automations.

Every remote command opens one SSH session using the configured cluster
and the password stored in the system keyring (prompting if there is
none), runs one automation and disconnects.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path, PurePosixPath
from typing import Awaitable, Callable, List, Optional, TypeVar

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from namdrunner.automations import (
    AutomationContext,
    CreateJobParams,
    complete_job,
    create_job,
    delete_job,
    download_job_file,
    refetch_slurm_logs,
    submit_job,
    sync_all_jobs,
)
from namdrunner.automations.progress import ConsoleProgressCallback
from namdrunner.core.config import Settings, load_settings
from namdrunner.core.connection_manager import ConnectionManager, set_connection_manager
from namdrunner.core.database import SQLiteJobStore
from namdrunner.core.exceptions import ConfigurationError, NamdRunnerError
from namdrunner.core.templates import TemplateRegistry, VariableType
from namdrunner.models import JobStatus, SlurmConfig

T = TypeVar("T")

app = typer.Typer(
    name="namdrunner",
    help="NAMDRunner CLI - NAMD job management on SLURM clusters",
    no_args_is_help=True,
)
console = Console()

_STATUS_STYLES = {
    JobStatus.CREATED: "cyan",
    JobStatus.PENDING: "yellow",
    JobStatus.RUNNING: "blue",
    JobStatus.COMPLETED: "green",
    JobStatus.FAILED: "red",
    JobStatus.CANCELLED: "dim",
}


class _State:
    config_path: Optional[Path] = None


state = _State()


@app.callback()
def main(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to config.yaml"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """NAMDRunner - NAMD job management on SLURM clusters."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    state.config_path = config


def _settings() -> Settings:
    try:
        return load_settings(state.config_path)
    except NamdRunnerError as e:
        _fail(e)


def _store(settings: Settings) -> SQLiteJobStore:
    try:
        return SQLiteJobStore(settings.db_path)
    except NamdRunnerError as e:
        _fail(e)


def _fail(error: NamdRunnerError) -> None:
    console.print(f"[red]Error:[/red] {escape(error.user_message())}")
    if error.details:
        logging.getLogger(__name__).debug(error.details)
    raise typer.Exit(1)


def _run_remote(settings: Settings, action: Callable[[AutomationContext], Awaitable[T]]) -> T:
    """Connect, run ``action`` and always disconnect."""
    cluster = settings.cluster
    if not cluster.host or not cluster.username:
        _fail(
            ConfigurationError(
                "cluster.host and cluster.username must be set in the config file",
                config_key="cluster",
            )
        )

    manager = ConnectionManager(
        timeouts=settings.timeouts,
        known_hosts_file=Path(cluster.known_hosts) if cluster.known_hosts is not None else None,
    )
    set_connection_manager(manager)
    password = manager.get_password(cluster.host, cluster.username)
    if password is None:
        password = typer.prompt(f"Password for {cluster.username}@{cluster.host}", hide_input=True)

    ctx = AutomationContext(
        connection=manager,
        store=_store(settings),
        templates=TemplateRegistry(Path(settings.template_dir) if settings.template_dir else None),
        settings=settings,
    )

    async def runner() -> T:
        await manager.connect(cluster.host, cluster.port, cluster.username, password)
        try:
            return await action(ctx)
        finally:
            await manager.disconnect()

    try:
        return asyncio.run(runner())
    except NamdRunnerError as e:
        _fail(e)


@app.command("set-password")
def set_password() -> None:
    """Store the cluster password in the system keyring."""
    settings = _settings()
    cluster = settings.cluster
    if not cluster.host or not cluster.username:
        _fail(ConfigurationError("cluster.host and cluster.username must be set", config_key="cluster"))
    password = typer.prompt(
        f"Password for {cluster.username}@{cluster.host}", hide_input=True, confirmation_prompt=True
    )
    ConnectionManager().set_password(cluster.host, cluster.username, password)
    console.print("[green]Password stored in keyring[/green]")


@app.command("delete-password")
def delete_password() -> None:
    """Remove the stored cluster password from the system keyring."""
    settings = _settings()
    cluster = settings.cluster
    if not cluster.host or not cluster.username:
        _fail(ConfigurationError("cluster.host and cluster.username must be set", config_key="cluster"))
    if ConnectionManager().delete_password(cluster.host, cluster.username):
        console.print("[green]Password removed from keyring[/green]")
    else:
        console.print(f"[yellow]No password stored for {cluster.username}@{cluster.host}[/yellow]")


@app.command("connect-test")
def connect_test() -> None:
    """Open a session, run a trivial command and report the result."""
    settings = _settings()

    async def action(ctx: AutomationContext):
        return await ctx.connection.execute_command("hostname")

    result = _run_remote(settings, action)
    console.print(
        f"[green]Connected[/green] to {result.stdout.strip() or settings.cluster.host} "
        f"({result.duration_ms} ms)"
    )


@app.command()
def templates() -> None:
    """List available NAMD templates."""
    settings = _settings()
    registry = TemplateRegistry(Path(settings.template_dir) if settings.template_dir else None)
    table = Table(title="Templates")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Variables")
    for template in registry.list_templates():
        variables = ", ".join(
            f"{v.key}{'*' if v.type == VariableType.FILE else ''}" for v in template.variables.values()
        )
        table.add_row(template.id, template.name, variables)
    console.print(table)
    console.print("[dim]* file inputs[/dim]")


@app.command()
def create(
    name: str = typer.Argument(..., help="Job display name"),
    template_id: str = typer.Option(..., "--template", "-t", help="Template id"),
    values: List[str] = typer.Option([], "--set", "-s", help="Template value as key=value"),
    values_file: Optional[Path] = typer.Option(None, "--values", help="JSON file of template values"),
    cores: int = typer.Option(24, help="Cores per node"),
    memory: str = typer.Option("16GB", help="Memory request"),
    walltime: str = typer.Option("24:00:00", help="Wall time (HH:MM:SS)"),
    partition: Optional[str] = typer.Option(None, help="SLURM partition"),
    qos: Optional[str] = typer.Option(None, help="SLURM QoS"),
) -> None:
    """
    Create a job on the cluster.

    Examples:
        namdrunner create "lysozyme run" -t namd_production -s coordinates_file=./lys.pdb ...
    """
    settings = _settings()
    template_values = {}
    if values_file:
        try:
            template_values.update(json.loads(values_file.read_text()))
        except (OSError, json.JSONDecodeError) as e:
            console.print(f"[red]Error reading values file:[/red] {e}")
            raise typer.Exit(1)
    for item in values:
        key, sep, value = item.partition("=")
        if not sep:
            console.print(f"[red]Error:[/red] --set expects key=value, got {item!r}")
            raise typer.Exit(1)
        template_values[key.strip()] = value

    params = CreateJobParams(
        job_name=name,
        template_id=template_id,
        template_values=template_values,
        slurm_config=SlurmConfig(
            cores=cores, memory=memory, walltime=walltime, partition=partition, qos=qos
        ),
    )
    result = _run_remote(
        settings, lambda ctx: create_job(ctx, params, ConsoleProgressCallback())
    )
    console.print(f"[green]Created[/green] job [bold]{result.job.job_id}[/bold]")


@app.command()
def submit(job_id: str = typer.Argument(..., help="Job id")) -> None:
    """Submit a created or failed job to SLURM."""
    settings = _settings()
    result = _run_remote(settings, lambda ctx: submit_job(ctx, job_id, ConsoleProgressCallback()))
    console.print(f"[green]Submitted[/green] {job_id} as SLURM job {result.slurm_job_id}")


@app.command()
def sync() -> None:
    """Refresh the status of all active jobs."""
    settings = _settings()
    report = _run_remote(settings, lambda ctx: sync_all_jobs(ctx, ConsoleProgressCallback()))
    if report.discovered:
        console.print(f"Imported {report.discovered} jobs from the cluster")
    for change in report.changes:
        console.print(f"{change.job_id}: {change.old_status.value} -> {change.new_status.value}")
    for failure in report.failures:
        console.print(f"[yellow]{failure.job_id}:[/yellow] {escape(failure.message)}")
    for job_id in report.completed:
        console.print(f"[green]{job_id}:[/green] results copied to project directory")
    for job_id in report.completion_failures:
        console.print(
            f"[yellow]{job_id}:[/yellow] results not collected, run `namdrunner complete {job_id}`"
        )
    if not report.changes and not report.failures:
        console.print("All jobs up to date")


@app.command()
def complete(job_id: str = typer.Argument(..., help="Job id")) -> None:
    """Copy a finished job's results back to its project directory."""
    settings = _settings()
    result = _run_remote(settings, lambda ctx: complete_job(ctx, job_id, ConsoleProgressCallback()))
    console.print(
        f"[green]Results saved[/green] for {job_id} ({len(result.output_files)} output files)"
    )


@app.command()
def download(
    job_id: str = typer.Argument(..., help="Job id"),
    file_path: str = typer.Argument(..., help="Path inside the job directory, e.g. outputs/run.dcd"),
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Local file to write (default: file name in current directory)"
    ),
) -> None:
    """Download one file from a job's project directory."""
    settings = _settings()
    destination = output or Path(PurePosixPath(file_path).name or "download")
    result = _run_remote(
        settings,
        lambda ctx: download_job_file(ctx, job_id, file_path, destination, ConsoleProgressCallback()),
    )
    console.print(f"[green]Downloaded[/green] {escape(file_path)} to {result.saved_to} ({result.size} bytes)")


@app.command()
def logs(
    job_id: str = typer.Argument(..., help="Job id"),
    refetch: bool = typer.Option(
        False, "--refetch", help="Re-read the logs from the cluster, replacing the cached copy"
    ),
) -> None:
    """Show a job's SLURM stdout and stderr."""
    settings = _settings()
    if refetch:
        job = _run_remote(
            settings, lambda ctx: refetch_slurm_logs(ctx, job_id, ConsoleProgressCallback())
        )
    else:
        job = _store(settings).load(job_id)
        if job is None:
            console.print(f"[red]Error:[/red] Job not found: {job_id}")
            raise typer.Exit(1)

    for title, text in (("stdout", job.slurm_stdout), ("stderr", job.slurm_stderr)):
        console.rule(title)
        if text is None:
            console.print("[dim]Not fetched yet; run `complete` or `logs --refetch`[/dim]")
        elif not text:
            console.print("[dim](empty)[/dim]")
        else:
            console.print(text, markup=False, highlight=False)


@app.command()
def delete(
    job_id: str = typer.Argument(..., help="Job id"),
    remote: bool = typer.Option(False, "--remote", help="Also delete the job's directories on the cluster"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Delete a job, cancelling it first if it is still queued or running."""
    if not yes:
        what = "job and its remote directories" if remote else "job record"
        typer.confirm(f"Delete {what} for {job_id}?", abort=True)
    settings = _settings()
    result = _run_remote(
        settings, lambda ctx: delete_job(ctx, job_id, remote, ConsoleProgressCallback())
    )
    if result.cancelled:
        console.print(f"Cancelled SLURM job for {job_id}")
    console.print(f"[green]Deleted[/green] {job_id}")


@app.command("list")
def list_jobs(
    status: Optional[str] = typer.Option(None, help="Filter by status (e.g. RUNNING)"),
) -> None:
    """List jobs in the local store."""
    settings = _settings()
    jobs = _store(settings).load_all()
    if status:
        try:
            wanted = JobStatus(status.upper())
        except ValueError:
            console.print(f"[red]Error:[/red] Invalid status: {status}")
            console.print(f"Valid statuses: {', '.join(s.value for s in JobStatus)}")
            raise typer.Exit(1)
        jobs = [j for j in jobs if j.status == wanted]

    if not jobs:
        console.print("[dim]No jobs found[/dim]")
        return

    table = Table(title="Jobs")
    table.add_column("Job ID", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("SLURM ID")
    table.add_column("Created")
    for job in jobs:
        style = _STATUS_STYLES.get(job.status, "")
        table.add_row(
            job.job_id,
            job.job_name,
            f"[{style}]{job.status.value}[/{style}]",
            job.slurm_job_id or "-",
            job.created_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


@app.command()
def show(job_id: str = typer.Argument(..., help="Job id")) -> None:
    """Show the full record of a job."""
    settings = _settings()
    job = _store(settings).load(job_id)
    if job is None:
        console.print(f"[red]Error:[/red] Job not found: {job_id}")
        raise typer.Exit(1)
    console.print_json(job.to_json())


if __name__ == "__main__":
    app()
