# chmigrate

`chmigrate` applies SQL migration files to a ClickHouse server, in order,
and records each applied version in a schema-migrations table so that a
later run only applies what is new. It talks to ClickHouse through the
server's HTTP interface.

## Installation

```
pip install chmigrate
```

This installs two equivalent commands, `chmigrate` and `clickhouse-cli`.

## Migration files

A migration directory holds files named `<number>_<description>.sql`,
for example:

```
1_create_events.sql
2_add_index.sql
3_create_views.sql
```

Rules:

- Numbering starts at 1 and has no gaps or duplicates; otherwise the run
  stops with an error (`missing sequence number: ...` or
  `invalid migration files, duplicate sequence number: ...`).
- Files that do not match the pattern (such as `README.md` or
  `not_a_migration.sql`) are ignored, as are subdirectories.
- A file may hold several statements separated by `;`. The file is split on
  every `;` and empty pieces are skipped, so semicolons inside string
  literals, comments or compound statements are not supported.

## The schema-migrations table

Applied versions are stored in a table given as `<database>.<table>`
(default `default.schema_migrations`). Both names may only contain letters,
digits and underscores, and must not start with a digit.

Each applied file adds a row `(version, dirty, sequence)`. Files whose number
is not above the latest recorded version are skipped. If a statement fails,
the version is recorded as dirty and the run stops; while the latest row is
dirty, no further migrations are executed until the table is fixed by hand.

When the database or table does not exist, the run fails unless
`--create-migrations-table` is given. In cluster mode (the default) they are
created with a `Replicated` database engine and `ON CLUSTER '{cluster}'`, and
a `ReplicatedMergeTree` table; use `--no-cluster-mode` for single-node
servers, which creates a plain database and a `MergeTree` table.

## Command line

```
chmigrate [global options] migrate [migrate options] <migration directory>
```

Global options:

| Option | Environment variable | Default | Meaning |
| --- | --- | --- | --- |
| `--node`, `-n` | `CLICKHOUSE_NODE` | `localhost:9000` | ClickHouse node to connect to |
| `--user`, `-u` | `CLICKHOUSE_USER` | `default` | User name |
| `--password`, `-p` | `CLICKHOUSE_PASSWORD` | empty | Password for the user |
| `--database`, `-d` | `CLICKHOUSE_DATABASE` | empty | Default database; empty selects none |

The node is an address of the HTTP interface, as `host:port` or a full URL
(`http://` is assumed when no scheme is given). The default port 9000 is
ClickHouse's native-protocol port, so pass the HTTP port explicitly,
usually `8123`.

Options of `migrate`:

| Option | Environment variable | Default | Meaning |
| --- | --- | --- | --- |
| `--schema-table` | `CLICKHOUSE_SCHEMA_TABLE` | `default.schema_migrations` | Migrations table, `<database>.<table>` |
| `--create-migrations-table` / `--no-create-migrations-table` | `CLICKHOUSE_CREATE_MIGRATIONS_TABLE` | off | Create the database and table if missing |
| `--cluster-mode` / `--no-cluster-mode` | `CLICKHOUSE_CLUSTER_MODE` | on | Use replicated engines and `ON CLUSTER` |

Example:

```
export CLICKHOUSE_PASSWORD=password
chmigrate --node localhost:8123 --user default migrate --create-migrations-table --no-cluster-mode ./migrations
```

Run `chmigrate --help` or `chmigrate migrate --help` for the full list.

Without a migration directory, `migrate` prints a message to standard error
and exits with status 1. Any other failure is logged as `application error`
and the command exits with status 1.

Logs are written as JSON lines: errors to standard error, everything else
to standard output. Set the `DEBUG` environment variable to any non-empty
value to include debug messages, such as every query that is executed and
every request sent to the server.

## Use from Python

```python
from pathlib import Path

from chmigrate.client import Client
from chmigrate.log import LogOptions, get_logger, initialize
from chmigrate.migrate import Migration, parse_migration_directory

initialize(LogOptions())

# Check the directory without touching a server.
for migration_file in parse_migration_directory(Path("migrations")):
    print(migration_file.seq, migration_file.file)

password = "password"
with Client("localhost:8123", "default", password, "", False, get_logger()) as client:
    migration = Migration(client, Path("migrations"), "default.schema_migrations", True, False)
    migration.run()
```

`Client` pings the server when it is created and offers `execute`,
`query_rows` (rows as dictionaries), `query_one` (first row, or
`NoRowsError`), `database_exists` and `table_exists`. Query parameters are
passed as a mapping and used as `{name:Type}` placeholders in the SQL.

`Migration.run` raises `chmigrate.migrate.MigrationError` when the
migrations cannot be applied; `Client` raises
`chmigrate.client.ClickHouseError` when the server cannot be reached or
reports an error.

`chmigrate.log` configures the process-wide logger: `initialize` takes a
`LogOptions` with `debug`, `encoding` (`Encoding.JSON` or
`Encoding.CONSOLE`) and an optional `file` to write to instead of standard
output and error. The helpers `debug`, `info`, `warn`, `error`, `panic` and
`fatal` take structured fields as keyword arguments; `panic` raises
`LogPanic` and `fatal` exits with status 1 after logging.

## What it does not do

- It only applies migrations forward; there is no rollback or "down" step.
- It only speaks the HTTP interface, not the native ClickHouse protocol.
- The only command is `migrate`.