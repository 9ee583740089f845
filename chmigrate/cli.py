"""Command line entry point for ClickHouse operations."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import click

from . import log
from .client import Client
from .migrate import Migration


def _debug_enabled() -> bool:
    return os.environ.get("DEBUG", "") != ""


@dataclass(frozen=True)
class _ConnectionSettings:
    node: str
    user: str
    password: str
    database: str


@click.group(name="clickhouse-cli", help="CLI tool for ClickHouse operations")
@click.option(
    "-n",
    "--node",
    default="localhost:9000",
    envvar="CLICKHOUSE_NODE",
    show_default=True,
    help="ClickHouse node to execute commands against.",
)
@click.option(
    "-u",
    "--user",
    default="default",
    envvar="CLICKHOUSE_USER",
    show_default=True,
    help="ClickHouse user to execute commands as.",
)
@click.option(
    "-p",
    "--password",
    default="",
    envvar="CLICKHOUSE_PASSWORD",
    help="Password for the ClickHouse user.",
)
@click.option(
    "-d",
    "--database",
    default="",
    envvar="CLICKHOUSE_DATABASE",
    help="Default database to connect to. Leave empty to not select a database on connect.",
)
@click.pass_context
def _cli(ctx: click.Context, node: str, user: str, password: str, database: str) -> None:
    ctx.obj = _ConnectionSettings(node, user, password, database)


@_cli.command(name="migrate", help="Run Clickhouse migrations.")
@click.argument("schema_dir", metavar="<migration directory>", required=False, default="")
@click.option(
    "--schema-table",
    default="default.schema_migrations",
    envvar="CLICKHOUSE_SCHEMA_TABLE",
    show_default=True,
    help="Table containing schema migrations in the format of <database>.<table>.",
)
@click.option(
    "--create-migrations-table/--no-create-migrations-table",
    default=False,
    envvar="CLICKHOUSE_CREATE_MIGRATIONS_TABLE",
    help="Create the schema migration table and database if it does not exist.",
)
@click.option(
    "--cluster-mode/--no-cluster-mode",
    default=True,
    envvar="CLICKHOUSE_CLUSTER_MODE",
    help="Use Replicated database and ReplicatedMergeTree engines with ON CLUSTER. "
    "Disable for single-node setups.",
)
@click.pass_obj
def _migrate(
    settings: _ConnectionSettings,
    schema_dir: str,
    schema_table: str,
    create_migrations_table: bool,
    cluster_mode: bool,
) -> None:
    if not schema_dir:
        click.echo(
            "migration directory argument is required (see `clickhouse-cli migrate --help`)",
            err=True,
        )
        raise click.exceptions.Exit(1)

    with Client(
        settings.node,
        settings.user,
        settings.password,
        settings.database,
        _debug_enabled(),
        log.get_logger(),
    ) as client:
        migration = Migration(
            client, Path(schema_dir), schema_table, create_migrations_table, cluster_mode
        )
        migration.run()


def main(argv: list[str] | None = None) -> None:
    """Run the command line; exits with a non-zero status on failure."""
    log.initialize(log.LogOptions(debug=_debug_enabled()))
    try:
        code = _cli.main(args=argv, prog_name="clickhouse-cli", standalone_mode=False)
    except click.ClickException as exc:
        exc.show()
        raise SystemExit(exc.exit_code) from exc
    except click.Abort as exc:
        click.echo("Aborted!", err=True)
        raise SystemExit(1) from exc
    except Exception as exc:  # noqa: BLE001 - every failure is reported the same way
        log.fatal("application error", error=str(exc))
        return
    if code:
        raise SystemExit(code)


if __name__ == "__main__":
    main()