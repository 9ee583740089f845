"""Sequential schema migrations tracked in a ClickHouse table."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from . import log
from .client import Client, ClickHouseError, NoRowsError

_DATABASE_DDL_CLUSTER = (
    "CREATE DATABASE `%s` ON CLUSTER '{cluster}' "
    "ENGINE=Replicated('/clickhouse/databases/{database}', '{shard}', '{replica}')"
)
_TABLE_DDL_CLUSTER = (
    "CREATE TABLE `%s`.`%s` (version UInt32, dirty Bool, sequence DateTime64) "
    "ENGINE = ReplicatedMergeTree ORDER BY sequence"
)
_DATABASE_DDL_SINGLE = "CREATE DATABASE `%s`"
_TABLE_DDL_SINGLE = (
    "CREATE TABLE `%s`.`%s` (version UInt32, dirty Bool, sequence DateTime64) "
    "ENGINE = MergeTree ORDER BY sequence"
)

# Migration files are named <sequential_number>_*.sql. Their contents are split
# on ';' before execution, so semicolons inside literals or comments are not
# supported.
MIGRATION_FILE_PATTERN = re.compile(r"([0-9]+)_.*\.sql")

# Identifiers are interpolated into DDL directly, so they are restricted to a
# safe character set.
_IDENTIFIER_PATTERN = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

_LONG_FRACTION = re.compile(r"(\.\d{6})\d+")


class MigrationError(Exception):
    """A migration could not be prepared or applied."""


@dataclass(frozen=True)
class MigrationFile:
    """A migration file and its sequence number."""

    file: str
    seq: int


@dataclass(frozen=True)
class MigrationRow:
    """One entry of the schema migrations table."""

    version: int
    dirty: bool
    sequence: datetime | None


def parse_migration_directory(schema_dir: str | os.PathLike[str]) -> list[MigrationFile]:
    """Return the migration files in a directory ordered by sequence number.

    Files not matching the naming pattern are ignored. The sequence must start
    at 1 and have neither gaps nor duplicates. An empty directory yields an
    empty list.
    """
    try:
        with os.scandir(schema_dir) as entries:
            names = sorted(
                entry.name for entry in entries if not entry.is_dir(follow_symlinks=False)
            )
    except OSError as exc:
        raise MigrationError(f"failed to read migrations directory: {exc}") from exc

    files = [
        MigrationFile(file=name, seq=int(match.group(1)))
        for name in names
        if (match := MIGRATION_FILE_PATTERN.fullmatch(name))
    ]
    files.sort(key=lambda mf: mf.seq)

    previous: MigrationFile | None = None
    for expected, current in enumerate(files, start=1):
        if current.seq != expected:
            if previous is not None and current.seq == previous.seq:
                raise MigrationError(
                    f"invalid migration files, duplicate sequence number: {current.seq}"
                )
            raise MigrationError(
                f"missing sequence number: expected {expected}, but found {current.seq}"
            )
        previous = current
    return files


def _statements(contents: str) -> list[str]:
    return [part.strip() for part in contents.split(";") if part.strip()]


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1")
    return bool(value)


def _as_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    return datetime.fromisoformat(_LONG_FRACTION.sub(r"\1", str(value)))


def _parse_row(row: dict[str, Any]) -> MigrationRow:
    try:
        return MigrationRow(
            version=int(row["version"]),
            dirty=_as_bool(row["dirty"]),
            sequence=_as_datetime(row.get("sequence")),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise MigrationError(
            f"failed to fetch latest migration sequence: malformed row {row!r}"
        ) from exc


class Migration:
    """Applies pending migration files and records them in a schema table."""

    def __init__(
        self,
        client: Client | None,
        schema_dir: str | os.PathLike[str],
        table: str,
        create_table: bool,
        cluster_mode: bool,
    ) -> None:
        parts = table.split(".")
        if len(parts) != 2:
            raise MigrationError(
                f"invalid table name expecting format <database>.<table>, got: {table}"
            )
        database, table_name = parts
        if not _IDENTIFIER_PATTERN.fullmatch(database):
            raise MigrationError(f"invalid database identifier: {database!r}")
        if not _IDENTIFIER_PATTERN.fullmatch(table_name):
            raise MigrationError(f"invalid table identifier: {table_name!r}")

        self._client = client
        self.schema_dir = Path(schema_dir)
        self.database = database
        self.table = table_name
        self.create_table = create_table
        self.cluster_mode = cluster_mode

    def run(self) -> None:
        """Apply every migration newer than the latest recorded version."""
        self._check_migration_table()
        files = parse_migration_directory(self.schema_dir)
        latest_version, dirty = self._fetch_latest_version()
        if dirty:
            raise MigrationError(
                "schema migrations are in a dirty state, won't execute any migrations"
            )

        for mf in files:
            try:
                contents = (self.schema_dir / mf.file).read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                raise MigrationError(f"failed to read migration file {mf.file}: {exc}") from exc

            if mf.seq <= latest_version:
                log.info("skipping migration file as it's already applied", file=mf.file)
                continue

            for statement in _statements(contents):
                try:
                    self._client.execute(statement)
                except ClickHouseError as exc:
                    log.error("failed to execute migration", query=statement, error=str(exc))
                    self._record(mf.seq, dirty=True)
                    raise MigrationError(f"failed to execute migration: {exc}") from exc
            log.info("successfully applied migration", file=mf.file)
            self._record(mf.seq, dirty=False)

    @property
    def _qualified_table(self) -> str:
        return f"`{self.database}`.`{self.table}`"

    def _record(self, seq: int, dirty: bool) -> None:
        query = f"INSERT INTO {self._qualified_table} VALUES ({{seq:UInt32}}, {{dirty:Bool}}, now())"
        try:
            self._client.execute(query, {"seq": str(seq), "dirty": "true" if dirty else "false"})
        except ClickHouseError as exc:
            raise MigrationError(f"failed to update migration table: {exc}") from exc

    def _fetch_latest_version(self) -> tuple[int, bool]:
        query = (
            f"SELECT * FROM {self._qualified_table} "
            "ORDER BY version DESC, sequence DESC LIMIT 1"
        )
        try:
            row = self._client.query_one(query)
        except NoRowsError:
            return 0, False
        except ClickHouseError as exc:
            raise MigrationError(f"failed to fetch latest migration sequence: {exc}") from exc
        record = _parse_row(row)
        return record.version, record.dirty

    def _check_migration_table(self) -> None:
        try:
            database_exists = self._client.database_exists(self.database)
        except ClickHouseError as exc:
            raise MigrationError(f"failed to check if database exists: {exc}") from exc
        if not database_exists:
            if not self.create_table:
                raise MigrationError(
                    f"database {self.database!r} for the schema migrations doesn't exist "
                    "and should not be created"
                )
            log.info("creating database for schema_migrations", database=self.database)
            ddl = _DATABASE_DDL_CLUSTER if self.cluster_mode else _DATABASE_DDL_SINGLE
            try:
                self._client.execute(ddl % self.database)
            except ClickHouseError as exc:
                raise MigrationError(
                    f"failed to create database for schema migrations: {exc}"
                ) from exc

        try:
            table_exists = self._client.table_exists(self.database, self.table)
        except ClickHouseError as exc:
            raise MigrationError(f"failed to check if table exists: {exc}") from exc
        if not table_exists:
            if not self.create_table:
                raise MigrationError(
                    f"table '{self.database}.{self.table}' for the schema migrations "
                    "doesn't exist and should not be created"
                )
            log.info(
                "creating table for schema_migrations", database=self.database, table=self.table
            )
            ddl = _TABLE_DDL_CLUSTER if self.cluster_mode else _TABLE_DDL_SINGLE
            try:
                self._client.execute(ddl % (self.database, self.table))
            except ClickHouseError as exc:
                raise MigrationError(
                    f"failed to create table for schema migrations: {exc}"
                ) from exc