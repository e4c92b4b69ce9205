"""Tiering CLI - manage storage lifecycle policies and archive retrievals.

Usage:
    tiering table create
    tiering table seed --start 2022-01-01 --end 2025-06-30
    tiering policy create transaction_retention_policy --column transaction_date --days 1095
    tiering policy attach transactions transaction_retention_policy
    tiering scheduler tick --now 2025-11-05
    tiering archive explain transactions restored --where "transaction_date BETWEEN '2023-01-01' AND '2023-03-31'"
    tiering archive restore transactions restored --where "transaction_date BETWEEN '2023-01-01' AND '2023-03-31'"
    tiering history executions

Entry point configured in pyproject.toml as 'tiering'.
"""

import asyncio
import dataclasses
import json
from datetime import date, datetime, timezone
from typing import Any, Optional

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from tiering import __version__
from tiering.audit.history import AuditLog
from tiering.common.config import config
from tiering.common.metrics import initialize_metrics
from tiering.lifecycle.evaluator import LifecycleScheduler
from tiering.lifecycle.policy import ArchiveTier, StorageLifecyclePolicy
from tiering.lifecycle.registry import PolicyRegistry
from tiering.retrieval.retriever import ArchiveRetriever, RetrievalRequest
from tiering.retrieval.session import Session
from tiering.storage.sample_data import generate_transactions
from tiering.storage.schema import TRANSACTIONS_TABLE
from tiering.storage.warehouse import Warehouse

app = typer.Typer(
    name="tiering",
    help="Age-based storage tiering and archive retrieval for a DuckDB warehouse.",
    add_completion=False,
    no_args_is_help=True,
)
table_app = typer.Typer(help="Managed tables.", no_args_is_help=True)
policy_app = typer.Typer(help="Storage lifecycle policies.", no_args_is_help=True)
scheduler_app = typer.Typer(help="Run policy evaluation.", no_args_is_help=True)
archive_app = typer.Typer(help="Retrieve data from archive storage.", no_args_is_help=True)
history_app = typer.Typer(help="Account usage history.", no_args_is_help=True)

app.add_typer(table_app, name="table")
app.add_typer(policy_app, name="policy")
app.add_typer(scheduler_app, name="scheduler")
app.add_typer(archive_app, name="archive")
app.add_typer(history_app, name="history")

console = Console()

_state: dict[str, Optional[str]] = {"database": None}


@app.callback()
def _main(
    database: Optional[str] = typer.Option(
        None, "--database", "-d", help="DuckDB database file (default: TIERING_WAREHOUSE_DATABASE_PATH)"
    ),
):
    _state["database"] = database


def _warehouse() -> Warehouse:
    return Warehouse(database_path=_state["database"])


def _parse_date(date_str: str) -> date:
    """Parse date string in YYYY-MM-DD format."""
    try:
        return datetime.strptime(date_str, "%Y-%m-%d").date()
    except ValueError:
        raise typer.BadParameter(f"Invalid date format: {date_str}. Use YYYY-MM-DD")


def _parse_datetime(dt_str: str) -> datetime:
    """Parse a UTC datetime string in various formats."""
    formats = [
        "%Y-%m-%d",
        "%Y-%m-%d %H:%M:%S",
        "%Y-%m-%dT%H:%M:%S",
    ]
    for fmt in formats:
        try:
            return datetime.strptime(dt_str, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    raise typer.BadParameter(
        f"Invalid datetime format: {dt_str}. Use YYYY-MM-DD or YYYY-MM-DD HH:MM:SS"
    )


def _echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


def _fmt(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M:%S")
    return str(value)


# ==============================================================================
# table
# ==============================================================================


@table_app.command("create")
def table_create(
    name: str = typer.Option("transactions", "--name", help="Table name"),
    or_replace: bool = typer.Option(False, "--or-replace", help="Replace an existing table"),
):
    """
    Create the transactions table (optionally under another name).

    Examples:
        tiering table create
        tiering table create --name transactions_eu --or-replace
    """
    try:
        definition = dataclasses.replace(TRANSACTIONS_TABLE, name=name)
        with _warehouse() as warehouse:
            info = warehouse.create_table(definition, or_replace=or_replace)
        console.print(
            f"[green]Table {info.name} created (partitioned by {info.partition_column})[/green]"
        )
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


@table_app.command("seed")
def table_seed(
    table: str = typer.Option("transactions", "--table", "-t", help="Table to fill"),
    start: str = typer.Option(..., "--start", help="First transaction date (YYYY-MM-DD)"),
    end: str = typer.Option(..., "--end", help="Last transaction date (YYYY-MM-DD)"),
    rows_per_day: int = typer.Option(10, "--rows-per-day", help="Transactions per day"),
    seed: int = typer.Option(42, "--seed", help="Random seed"),
):
    """
    Insert generated transactions.

    Examples:
        tiering table seed --start 2022-01-01 --end 2025-06-30
    """
    try:
        rows = generate_transactions(
            _parse_date(start), _parse_date(end), rows_per_day=rows_per_day, seed=seed
        )
        with _warehouse() as warehouse:
            inserted = warehouse.insert_rows(table, rows)
            partitions = warehouse.refresh_partitions(table)
        console.print(
            f"[green]Inserted {inserted:,} rows into {table} ({len(partitions)} HOT partitions)[/green]"
        )
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


@table_app.command("show")
def table_show(
    table: str = typer.Argument(..., help="Table name"),
    output: str = typer.Option("table", "--output", "-o", help="Output format: table, json"),
):
    """
    Show a table's partitions and their lifecycle state.
    """
    try:
        with _warehouse() as warehouse:
            info = warehouse.get_table(table)
            partitions = warehouse.list_partitions(info.name)
            hot_rows = warehouse.count_rows(info.name)
            archived_rows = warehouse.count_archived_rows(info.name)

        if output == "json":
            _echo_json(
                {
                    "table": info.name,
                    "partition_column": info.partition_column,
                    "hot_rows": hot_rows,
                    "archived_rows": archived_rows,
                    "partitions": [dataclasses.asdict(p) for p in partitions],
                }
            )
            return

        console.print(
            f"\n[bold]{info.name}[/bold] partitioned by {info.partition_column}: "
            f"{hot_rows:,} HOT rows, {archived_rows:,} archived rows\n"
        )
        grid = Table(title=f"Partitions ({len(partitions)})", box=box.ROUNDED)
        grid.add_column("ID", justify="right")
        grid.add_column("Month", style="cyan")
        grid.add_column("State", style="green")
        grid.add_column("Tier")
        grid.add_column("Rows", justify="right")
        grid.add_column("Files", justify="right")
        grid.add_column("Expires")
        for p in partitions:
            grid.add_row(
                str(p.partition_id),
                p.partition_key.strftime("%Y-%m"),
                p.state.value,
                p.archive_tier.value if p.archive_tier else "-",
                f"{p.row_count:,}",
                str(p.file_count),
                _fmt(p.expires_at),
            )
        console.print(grid)

    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


@table_app.command("drop")
def table_drop(
    table: str = typer.Argument(..., help="Table name"),
    if_exists: bool = typer.Option(False, "--if-exists", help="Do nothing if the table is missing"),
):
    """
    Drop a table, its archive and its policy binding.
    """
    try:
        with _warehouse() as warehouse:
            dropped = warehouse.drop_table(table, if_exists=if_exists)
        if dropped:
            console.print(f"[green]Table {table} dropped[/green]")
        else:
            console.print(f"[yellow]Table {table} does not exist[/yellow]")
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


# ==============================================================================
# policy
# ==============================================================================


@policy_app.command("create")
def policy_create(
    name: str = typer.Argument(..., help="Policy name"),
    column: str = typer.Option(..., "--column", "-c", help="DATE column the predicate tests"),
    quarters_back: int = typer.Option(1, "--quarters-back", help="Quarters before the current one to keep HOT"),
    tier: ArchiveTier = typer.Option(ArchiveTier.COOL, "--tier", help="Archive tier"),
    days: int = typer.Option(..., "--days", help="ARCHIVE_FOR_DAYS"),
    comment: str = typer.Option("", "--comment", help="Policy comment"),
    or_replace: bool = typer.Option(False, "--or-replace", help="Replace an existing policy"),
):
    """
    Create a storage lifecycle policy.

    Examples:
        tiering policy create transaction_retention_policy --column transaction_date --days 1095
        tiering policy create cold_policy -c transaction_date --tier COLD --days 365
    """
    try:
        policy = StorageLifecyclePolicy(
            name=name,
            column=column,
            quarters_back=quarters_back,
            archive_tier=tier,
            archive_for_days=days,
            comment=comment,
        )
        with _warehouse() as warehouse:
            created = PolicyRegistry(warehouse).create_policy(policy, or_replace=or_replace)
        console.print(f"[green]Storage lifecycle policy {created.name} created[/green]")
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


@policy_app.command("describe")
def policy_describe(
    name: str = typer.Argument(..., help="Policy name"),
    output: str = typer.Option("table", "--output", "-o", help="Output format: table, json"),
):
    """
    DESCRIBE STORAGE LIFECYCLE POLICY.
    """
    try:
        with _warehouse() as warehouse:
            description = PolicyRegistry(warehouse).describe_policy(name)

        if output == "json":
            _echo_json(dataclasses.asdict(description))
            return

        grid = Table(title=f"Policy {description.name}", box=box.ROUNDED, show_header=False)
        grid.add_column("Property", style="cyan")
        grid.add_column("Value")
        for key, value in dataclasses.asdict(description).items():
            grid.add_row(key, _fmt(value.value if isinstance(value, ArchiveTier) else value))
        console.print(grid)

    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


@policy_app.command("list")
def policy_list(
    output: str = typer.Option("table", "--output", "-o", help="Output format: table, json"),
):
    """
    List storage lifecycle policies and where they are attached.
    """
    try:
        with _warehouse() as warehouse:
            registry = PolicyRegistry(warehouse)
            policies = [(p, registry.tables_for_policy(p.name)) for p in registry.list_policies()]

        if output == "json":
            _echo_json(
                [{**p.model_dump(mode="json"), "attached_to": tables} for p, tables in policies]
            )
            return

        if not policies:
            console.print("[yellow]No storage lifecycle policies[/yellow]")
            return

        grid = Table(title=f"Policies ({len(policies)})", box=box.ROUNDED)
        grid.add_column("Name", style="cyan")
        grid.add_column("Column")
        grid.add_column("Tier", style="green")
        grid.add_column("Days", justify="right")
        grid.add_column("Attached to")
        for p, tables in policies:
            grid.add_row(
                p.name, p.column, p.archive_tier.value, str(p.archive_for_days), ", ".join(tables) or "-"
            )
        console.print(grid)

    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


@policy_app.command("attach")
def policy_attach(
    table: str = typer.Argument(..., help="Table name"),
    policy: str = typer.Argument(..., help="Policy name"),
):
    """
    ALTER TABLE <table> SET STORAGE_LIFECYCLE_POLICY = <policy>.
    """
    try:
        with _warehouse() as warehouse:
            scheduler = LifecycleScheduler(warehouse)
            binding = scheduler.registry.attach(table, policy)
            first_run = scheduler.next_run_at(binding)
        console.print(
            f"[green]Policy {binding.policy_name} attached to {binding.table_name}; "
            f"first evaluation after {_fmt(first_run)} UTC[/green]"
        )
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


@policy_app.command("detach")
def policy_detach(
    table: str = typer.Argument(..., help="Table name"),
):
    """
    ALTER TABLE <table> UNSET STORAGE_LIFECYCLE_POLICY.
    """
    try:
        with _warehouse() as warehouse:
            detached = PolicyRegistry(warehouse).detach(table)
        if detached:
            console.print(f"[green]Policy detached from {table}[/green]")
        else:
            console.print(f"[yellow]No policy attached to {table}[/yellow]")
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


@policy_app.command("parameters")
def policy_parameters(
    table: str = typer.Argument(..., help="Table name"),
    output: str = typer.Option("table", "--output", "-o", help="Output format: table, json"),
):
    """
    SHOW PARAMETERS LIKE 'STORAGE_LIFECYCLE_POLICY' IN TABLE.
    """
    try:
        with _warehouse() as warehouse:
            parameter = PolicyRegistry(warehouse).show_parameters(table)

        if output == "json":
            _echo_json(dataclasses.asdict(parameter))
            return

        grid = Table(box=box.ROUNDED)
        for column in ("key", "value", "default", "level", "description"):
            grid.add_column(column)
        grid.add_row(
            parameter.key, parameter.value, parameter.default, parameter.level, parameter.description
        )
        console.print(grid)

    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


@policy_app.command("drop")
def policy_drop(
    name: str = typer.Argument(..., help="Policy name"),
    if_exists: bool = typer.Option(False, "--if-exists", help="Do nothing if the policy is missing"),
):
    """
    DROP STORAGE LIFECYCLE POLICY.
    """
    try:
        with _warehouse() as warehouse:
            dropped = PolicyRegistry(warehouse).drop_policy(name, if_exists=if_exists)
        if dropped:
            console.print(f"[green]Storage lifecycle policy {name} dropped[/green]")
        else:
            console.print(f"[yellow]Storage lifecycle policy {name} does not exist[/yellow]")
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


# ==============================================================================
# scheduler
# ==============================================================================


def _print_executions(executions, title: str) -> None:
    grid = Table(title=title, box=box.ROUNDED)
    grid.add_column("Started", style="cyan")
    grid.add_column("Policy")
    grid.add_column("Table")
    grid.add_column("Status")
    grid.add_column("Archived", justify="right")
    grid.add_column("Expired", justify="right")
    grid.add_column("Error")
    for e in executions:
        style = "green" if e.status.value == "SUCCEEDED" else "red"
        grid.add_row(
            _fmt(e.execution_start_time),
            e.policy_name,
            e.table_name,
            f"[{style}]{e.status.value}[/{style}]",
            f"{e.partitions_archived} ({e.rows_archived:,} rows)",
            f"{e.partitions_expired} ({e.rows_expired:,} rows)",
            e.error_message or "",
        )
    console.print(grid)


@scheduler_app.command("tick")
def scheduler_tick(
    now: Optional[str] = typer.Option(None, "--now", help="Evaluation time in UTC (default: now)"),
    output: str = typer.Option("table", "--output", "-o", help="Output format: table, json"),
):
    """
    Evaluate every attached policy that is due.

    Examples:
        tiering scheduler tick
        tiering scheduler tick --now 2025-11-05
    """
    try:
        run_at = _parse_datetime(now) if now else None
        with _warehouse() as warehouse:
            executions = LifecycleScheduler(warehouse).run_pending(now=run_at)

        if output == "json":
            _echo_json([e.to_dict() for e in executions])
            return

        if not executions:
            console.print("[yellow]No policies due[/yellow]")
            return
        _print_executions(executions, f"Executions ({len(executions)})")

    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


@scheduler_app.command("serve")
def scheduler_serve(
    poll_interval: float = typer.Option(300.0, "--poll-interval", help="Seconds between ticks"),
    max_ticks: Optional[int] = typer.Option(None, "--max-ticks", help="Stop after this many ticks"),
):
    """
    Poll for due policies until interrupted.
    """
    try:
        if config.observability.enable_metrics:
            from prometheus_client import start_http_server

            initialize_metrics(version=__version__, environment=config.environment)
            start_http_server(config.observability.prometheus_port)
            console.print(
                f"Metrics on http://localhost:{config.observability.prometheus_port}/metrics"
            )

        with _warehouse() as warehouse:
            executed = LifecycleScheduler(warehouse).serve(
                poll_interval_seconds=poll_interval, max_ticks=max_ticks
            )
        console.print(f"[green]Scheduler stopped after {executed} executions[/green]")

    except KeyboardInterrupt:
        console.print("[yellow]Scheduler interrupted[/yellow]")
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


# ==============================================================================
# archive
# ==============================================================================


@archive_app.command("explain")
def archive_explain(
    source: str = typer.Argument(..., help="Table whose archive is read"),
    target: str = typer.Argument(..., help="Table to create"),
    where: Optional[str] = typer.Option(None, "--where", "-w", help="Filter on the source table"),
    output: str = typer.Option("table", "--output", "-o", help="Output format: table, json"),
):
    """
    EXPLAIN CREATE TABLE <target> FROM ARCHIVE OF <source> WHERE ...

    Examples:
        tiering archive explain transactions restored -w "transaction_date < '2023-04-01'"
    """
    try:
        with _warehouse() as warehouse:
            plan = ArchiveRetriever(warehouse).explain(
                RetrievalRequest.from_sql(source, target, where)
            )

        if output == "json":
            _echo_json(plan.to_dict())
            return

        grid = Table(title="Retrieval plan", box=box.ROUNDED, show_header=False)
        grid.add_column("Property", style="cyan")
        grid.add_column("Value")
        grid.add_row("operation", plan.operation)
        grid.add_row("objects", plan.objects)
        grid.add_row("filter", plan.filter)
        grid.add_row("archive tier", plan.archive_tier.value if plan.archive_tier else "-")
        grid.add_row("assigned partitions", f"{plan.assigned_partitions} of {plan.total_partitions}")
        grid.add_row("assigned files", f"{plan.assigned_files:,}")
        grid.add_row("estimated bytes", f"{plan.estimated_bytes:,}")
        grid.add_row("max restore seconds", str(plan.max_restore_seconds))
        console.print(grid)

    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


async def _restore(
    retriever: ArchiveRetriever,
    request: RetrievalRequest,
    session: Session,
    wait: Optional[float],
):
    """Run a retrieval, staying with it after a detach unless the session aborts it."""
    task = retriever.start(request, session)
    try:
        return await task.wait(timeout=wait)
    except asyncio.TimeoutError:
        if session.abort_detached_query:
            raise TimeoutError(
                f"Stopped waiting after {wait}s; retrieval {task.query_id} aborted "
                "(ABORT_DETACHED_QUERY is TRUE)"
            ) from None

    console.print(
        f"[yellow]Detached after {wait}s; retrieval {task.query_id} keeps running "
        "(ABORT_DETACHED_QUERY is FALSE)[/yellow]"
    )
    return await task.wait()


@archive_app.command("restore")
def archive_restore(
    source: str = typer.Argument(..., help="Table whose archive is read"),
    target: str = typer.Argument(..., help="Table to create"),
    where: Optional[str] = typer.Option(None, "--where", "-w", help="Filter on the source table"),
    statement_timeout: Optional[int] = typer.Option(
        None, "--statement-timeout", help="STATEMENT_TIMEOUT_IN_SECONDS for this session"
    ),
    abort_detached: Optional[bool] = typer.Option(
        None, "--abort-detached/--no-abort-detached", help="ABORT_DETACHED_QUERY for this session"
    ),
    wait: Optional[float] = typer.Option(None, "--wait", help="Seconds to wait before detaching"),
):
    """
    CREATE TABLE <target> FROM ARCHIVE OF <source> WHERE ...

    Examples:
        tiering archive restore transactions q1_2023 -w "transaction_date BETWEEN '2023-01-01' AND '2023-03-31'"
        tiering archive restore transactions q1_2023 -w "..." --statement-timeout 172800 --no-abort-detached
    """
    try:
        parameters = {}
        if statement_timeout is not None:
            parameters["statement_timeout_in_seconds"] = statement_timeout
        if abort_detached is not None:
            parameters["abort_detached_query"] = abort_detached
        session = Session().alter(**parameters)

        with _warehouse() as warehouse:
            retriever = ArchiveRetriever(warehouse)
            request = RetrievalRequest.from_sql(source, target, where)
            result = asyncio.run(_restore(retriever, request, session, wait))

        console.print(
            f"[green]Table {result.target_table} created with {result.rows_retrieved:,} rows "
            f"from {result.partitions_retrieved} archived partitions "
            f"({result.files_retrieved:,} files)[/green]"
        )

    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


# ==============================================================================
# history
# ==============================================================================


@history_app.command("executions")
def history_executions(
    policy: Optional[str] = typer.Option(None, "--policy", "-p", help="Filter by policy"),
    table: Optional[str] = typer.Option(None, "--table", "-t", help="Filter by table"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum rows to return"),
    output: str = typer.Option("table", "--output", "-o", help="Output format: table, json"),
):
    """
    Show storage_lifecycle_policy_executions, newest first.
    """
    try:
        with _warehouse() as warehouse:
            executions = AuditLog(warehouse).policy_executions(
                policy_name=policy, table_name=table, limit=limit
            )

        if output == "json":
            _echo_json([e.to_dict() for e in executions])
            return

        if not executions:
            console.print("[yellow]No policy executions recorded[/yellow]")
            return
        _print_executions(executions, f"Policy executions ({len(executions)} rows)")

    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


@history_app.command("retrievals")
def history_retrievals(
    table: Optional[str] = typer.Option(None, "--table", "-t", help="Filter by source table"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum rows to return"),
    output: str = typer.Option("table", "--output", "-o", help="Output format: table, json"),
):
    """
    Show archive_storage_data_retrieval_usage_history, newest first.
    """
    try:
        with _warehouse() as warehouse:
            usages = AuditLog(warehouse).retrieval_history(source_table=table, limit=limit)

        if output == "json":
            _echo_json([u.to_dict() for u in usages])
            return

        if not usages:
            console.print("[yellow]No retrievals recorded[/yellow]")
            return

        grid = Table(title=f"Retrievals ({len(usages)} rows)", box=box.ROUNDED)
        grid.add_column("Started", style="cyan")
        grid.add_column("Source")
        grid.add_column("Target")
        grid.add_column("Tier")
        grid.add_column("Status")
        grid.add_column("Partitions", justify="right")
        grid.add_column("Files", justify="right")
        grid.add_column("Bytes", justify="right")
        for u in usages:
            grid.add_row(
                _fmt(u.start_time),
                u.source_table_name,
                u.target_table_name,
                u.archive_tier.value if u.archive_tier else "-",
                u.status.value,
                str(u.partitions_retrieved),
                f"{u.files_retrieved:,}",
                f"{u.bytes_retrieved:,}",
            )
        console.print(grid)

    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


def main():
    """Entry point for tiering CLI."""
    app()


if __name__ == "__main__":
    main()
