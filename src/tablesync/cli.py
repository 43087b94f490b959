"""
Command-line interface for tablesync.
"""

import sys
from functools import wraps
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import TableSyncConfig
from .exceptions import ConfigurationError, SchemaRejectedError, TableSyncError
from .helper import TableServiceHelper
from .logging_setup import configure_logging
from .remote.rest_client import RestTableClient
from .schema.description import TableSchema
from .schema.reconciler import SchemaReconciler


console = Console()


def handle_errors(func):
    """Decorator to handle errors gracefully in CLI commands."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except TableSyncError as e:
            console.print(f"[red]Error:[/red] {e}")
            sys.exit(1)
        except KeyboardInterrupt:
            console.print("\n[yellow]Interrupted by user[/yellow]")
            sys.exit(0)
        except Exception as e:
            console.print(f"[red]Unexpected error:[/red] {e}")
            if "--debug" in sys.argv:
                import traceback
                traceback.print_exc()
            sys.exit(1)
    return wrapper


def config_option(func):
    return click.option(
        "--config",
        "-c",
        type=click.Path(exists=True),
        help="Configuration file path (defaults and TABLESYNC_* environment variables if omitted)",
    )(func)


def _load_config(ctx: click.Context, path: Optional[str]) -> TableSyncConfig:
    config = TableSyncConfig.from_yaml(path) if path else TableSyncConfig()
    config.validate_config()
    debug = bool(ctx.obj.get("debug")) or config.debug
    configure_logging(config.logging, debug=debug)
    return config


def _build_helper(config: TableSyncConfig) -> TableServiceHelper:
    return TableServiceHelper(RestTableClient(config.remote), config)


def _resolve_table_id(table_id: Optional[str], schema: TableSchema) -> str:
    resolved = table_id or schema.table_id
    if not resolved:
        raise ConfigurationError("No table id given and the schema file has no 'table_id'")
    return resolved


@click.group()
@click.version_option(__version__)
@click.option(
    "--debug", is_flag=True, help="Enable debug mode"
)
@click.pass_context
def main(ctx, debug):
    """tablesync: Safe schema evolution and bulk loading for remote tables."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@main.command()
@click.option(
    "--output",
    "-o",
    type=click.Path(),
    default="tablesync-config.yaml",
    help="Output configuration file path",
)
@handle_errors
def init(output: str):
    """Initialize a new tablesync configuration file."""
    if Path(output).exists():
        if not click.confirm(f"Configuration file {output} already exists. Overwrite?"):
            return

    config = _create_default_config()
    config.to_yaml(output)
    console.print(f"[green]✓[/green] Configuration file created: {output}")
    console.print("\n[yellow]Next steps:[/yellow]")
    console.print("1. Set TABLESYNC_AUTH_TOKEN, or edit remote.auth_token in the file")
    console.print("2. Run: tablesync validate-config -c your-config.yaml")
    console.print("3. Run: tablesync diff -c your-config.yaml -s schema.yaml")


@main.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="Configuration file path",
)
@handle_errors
def validate_config(config: str):
    """Validate configuration file."""
    console.print(f"Validating configuration: {config}")

    try:
        tablesync_config = TableSyncConfig.from_yaml(config)
        tablesync_config.validate_config()

        console.print("[green]✓[/green] Configuration is valid")

        _display_config_summary(tablesync_config)

    except ConfigurationError as e:
        console.print(f"[red]✗[/red] Configuration error: {e}")
        sys.exit(1)


@main.command()
@config_option
@click.option("--schema", "-s", "schema_path", type=click.Path(exists=True), required=True,
              help="Desired table schema (YAML)")
@click.option("--table-id", "-t", help="Table id (overrides table_id in the schema file)")
@click.option("--merge-deleted", is_flag=True, help="Keep live columns missing from the schema")
@click.pass_context
@handle_errors
def diff(ctx, config: Optional[str], schema_path: str, table_id: Optional[str], merge_deleted: bool):
    """Show how a table's live columns differ from a schema file. Writes nothing."""
    tablesync_config = _load_config(ctx, config)
    schema = TableSchema.from_yaml(schema_path)
    table_id = _resolve_table_id(table_id, schema)

    helper = _build_helper(tablesync_config)
    try:
        live_columns = helper.get_columns_for_table_with_retry(table_id)
    finally:
        helper.client.close()

    result = SchemaReconciler(merge_deleted_fields=merge_deleted).check(
        live_columns, schema.columns, table_id
    )
    _display_diff(table_id, live_columns, result)

    if not result.ok:
        console.print(f"[red]✗[/red] Table {table_id} cannot be updated safely")
        sys.exit(1)
    elif result.requires_remote_change:
        console.print(f"[yellow]![/yellow] Table {table_id} needs a schema update")
    else:
        console.print(f"[green]✓[/green] Table {table_id} is up to date")


@main.command()
@config_option
@click.option("--schema", "-s", "schema_path", type=click.Path(exists=True), required=True,
              help="Desired table schema (YAML)")
@click.option("--table-id", "-t", help="Table id (overrides table_id in the schema file)")
@click.option("--merge-deleted", is_flag=True, help="Keep live columns missing from the schema")
@click.pass_context
@handle_errors
def sync(ctx, config: Optional[str], schema_path: str, table_id: Optional[str], merge_deleted: bool):
    """Apply a schema file to a table, refusing destructive changes."""
    tablesync_config = _load_config(ctx, config)
    schema = TableSchema.from_yaml(schema_path)
    table_id = _resolve_table_id(table_id, schema)

    helper = _build_helper(tablesync_config)
    try:
        helper.check_writable_or_raise()
        response = helper.safe_update_table(table_id, schema.columns, merge_deleted_fields=merge_deleted)
    except SchemaRejectedError as e:
        console.print(f"[red]✗[/red] {e}")
        console.print("Run [cyan]tablesync diff[/cyan] to see the offending columns")
        sys.exit(1)
    finally:
        helper.client.close()

    if response is None:
        console.print(f"[green]✓[/green] Table {table_id} is already up to date")
    else:
        console.print(
            f"[green]✓[/green] Updated table {table_id}: "
            f"{', '.join(str(c) for c in response.columns)}"
        )


@main.command("upload-tsv")
@config_option
@click.option("--table-id", "-t", required=True, help="Table id")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
@handle_errors
def upload_tsv(ctx, config: Optional[str], table_id: str, path: str):
    """Upload a tab-separated file with a header line into a table."""
    tablesync_config = _load_config(ctx, config)

    helper = _build_helper(tablesync_config)
    try:
        helper.check_writable_or_raise()
        rows = helper.upload_tsv_file_to_table(table_id, path)
    finally:
        helper.client.close()

    console.print(f"[green]✓[/green] Imported {rows} rows into table {table_id}")


@main.command("create-table")
@config_option
@click.option("--schema", "-s", "schema_path", type=click.Path(exists=True), required=True,
              help="Table schema (YAML)")
@click.option("--parent-id", "-p", required=True, help="Parent project or folder id")
@click.option("--name", "-n", help="Table name (defaults to the schema's name)")
@click.option("--folder", help="Create the table in this folder under the parent, creating it if needed")
@click.option("--read-only", "read_only", multiple=True, help="Principal id granted read access (repeatable)")
@click.option("--admin", "admins", multiple=True, help="Principal id granted admin access (repeatable)")
@click.pass_context
@handle_errors
def create_table(
    ctx,
    config: Optional[str],
    schema_path: str,
    parent_id: str,
    name: Optional[str],
    folder: Optional[str],
    read_only: Tuple[str, ...],
    admins: Tuple[str, ...],
):
    """Create a table from a schema file and set its access control list."""
    tablesync_config = _load_config(ctx, config)
    schema = TableSchema.from_yaml(schema_path)
    table_name = name or schema.name
    if not table_name:
        raise ConfigurationError("No table name given and the schema file has no 'name'")

    helper = _build_helper(tablesync_config)
    try:
        helper.check_writable_or_raise()
        if folder:
            parent_id = helper.create_folder_if_not_exists(parent_id, folder)
        table_id = helper.create_table_with_columns_and_acls(
            schema.columns, read_only, admins, parent_id, table_name
        )
    finally:
        helper.client.close()

    console.print(f"[green]✓[/green] Created table {table_name}: {table_id}")


def _create_default_config() -> TableSyncConfig:
    """Create a default configuration."""
    config = TableSyncConfig()
    config.remote.auth_token = "${TABLESYNC_AUTH_TOKEN}"
    return config


def _display_config_summary(config: TableSyncConfig):
    """Display a summary of the configuration."""
    console.print("\n[blue]Configuration Summary[/blue]")

    remote_table = Table(title="Remote Service")
    remote_table.add_column("Base URL", style="cyan")
    remote_table.add_column("Auth", style="magenta")
    remote_table.add_column("Timeout", style="green")
    remote_table.add_row(
        config.remote.base_url,
        "token" if config.remote.auth_token else "anonymous",
        f"{config.remote.timeout:g}s",
    )
    console.print(remote_table)

    limits_table = Table(title="Rate Limits and Retries")
    limits_table.add_column("Call Class", style="cyan")
    limits_table.add_column("Rate", style="magenta")
    limits_table.add_column("Attempts", style="green")
    limits_table.add_column("Delay", style="yellow")
    limits_table.add_row(
        "general",
        f"{config.rate_limits.general_per_second:g}/s",
        str(config.retries.metadata.attempts),
        f"{config.retries.metadata.delay_seconds:g}s",
    )
    limits_table.add_row(
        "column metadata",
        f"{config.rate_limits.metadata_per_second * 60:g}/min",
        str(config.retries.metadata.attempts),
        f"{config.retries.metadata.delay_seconds:g}s",
    )
    limits_table.add_row(
        "file upload",
        "-",
        str(config.retries.upload.attempts),
        f"{config.retries.upload.delay_seconds:g}s",
    )
    console.print(limits_table)

    console.print(
        f"Async jobs: poll every {config.polling.interval_seconds:g}s, "
        f"at most {config.polling.max_polls} polls (~{config.poll_budget_seconds:g}s)"
    )


def _display_diff(table_id: str, live_columns, result):
    """Display a reconciliation result as a table of columns."""
    diff = result.diff
    live_by_name = {c.name: c for c in live_columns}

    table = Table(title=f"Schema diff for {table_id}")
    table.add_column("Column", style="cyan")
    table.add_column("Live", style="magenta")
    table.add_column("Desired", style="green")
    table.add_column("Change", style="yellow")

    for column in result.desired_columns:
        live = live_by_name.get(column.name)
        if column.name in diff.added:
            change = "added"
        elif column.name in diff.incompatible:
            change = "[red]incompatible[/red]"
        elif column.name in diff.modified:
            change = "modified"
        else:
            change = ""
        table.add_row(column.name, str(live) if live else "", str(column), change)

    for name in sorted(diff.deleted):
        table.add_row(name, str(live_by_name[name]), "", "[red]deleted[/red]")

    console.print(table)


if __name__ == "__main__":
    main()
