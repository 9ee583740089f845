"""Client for the ClickHouse HTTP interface."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any

import requests

from .log import get_logger

_ROW_FORMAT = "JSONEachRow"
_TIMEOUT = (10, None)


class ClickHouseError(Exception):
    """A request to the ClickHouse server failed."""


class NoRowsError(ClickHouseError):
    """A query expected to return a row returned none."""


class Client:
    """Connection to a single ClickHouse node.

    The connection is checked with a ping when the client is created. When
    ``database`` is empty no default database is selected.
    """

    def __init__(
        self,
        node: str,
        user: str,
        password: str,
        database: str,
        debug: bool = False,
        logger: logging.Logger | None = None,
    ) -> None:
        self._logger = get_logger() if logger is None else logger
        self._database = database
        self._debug = debug
        if not node:
            raise ClickHouseError("failed to connect to Clickhouse: no node address given")
        base = node if "://" in node else f"http://{node}"
        self._base_url = base.rstrip("/") + "/"
        self._session = requests.Session()
        self._session.headers.update({"X-ClickHouse-User": user, "X-ClickHouse-Key": password})

        try:
            response = self._session.get(self._base_url + "ping", timeout=_TIMEOUT)
            response.raise_for_status()
        except requests.RequestException as exc:
            self._session.close()
            raise ClickHouseError(f"failed to ping Clickhouse: {exc}") from exc

        self._logger.info(
            "successfully connected to Clickhouse",
            extra={"fields": {"node": node, "database": database}},
        )

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self._session.close()

    def __enter__(self) -> Client:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _log_query(self, query: str, parameters: Mapping[str, Any] | None) -> None:
        self._logger.debug(
            "executing query",
            extra={"fields": {"query": query, "parameters": dict(parameters) if parameters else parameters}},
        )

    def _post(
        self,
        query: str,
        parameters: Mapping[str, Any] | None,
        output_format: str | None = None,
    ) -> str:
        params: dict[str, str] = {}
        if self._database:
            params["database"] = self._database
        if output_format:
            params["default_format"] = output_format
        if parameters is not None:
            params.update({f"param_{name}": str(value) for name, value in parameters.items()})

        if self._debug:
            self._logger.debug(
                "sending request to Clickhouse",
                extra={"fields": {"url": self._base_url, "params": params}},
            )

        try:
            response = self._session.post(
                self._base_url, params=params, data=query.encode("utf-8"), timeout=_TIMEOUT
            )
        except requests.RequestException as exc:
            raise ClickHouseError(str(exc)) from exc
        if response.status_code != 200:
            raise ClickHouseError(
                f"server returned HTTP {response.status_code}: {response.text.strip()}"
            )
        return response.text

    def _rows(self, query: str, parameters: Mapping[str, Any] | None) -> list[dict[str, Any]]:
        body = self._post(query, parameters, _ROW_FORMAT)
        try:
            return [json.loads(line) for line in body.splitlines() if line.strip()]
        except json.JSONDecodeError as exc:
            raise ClickHouseError(f"malformed response row: {exc}") from exc

    def execute(self, query: str, parameters: Mapping[str, Any] | None = None) -> None:
        """Run a statement that returns no rows."""
        self._log_query(query, parameters)
        self._post(query, parameters)

    def query_rows(
        self, query: str, parameters: Mapping[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Run a query and return its rows as dictionaries keyed by column."""
        self._log_query(query, parameters)
        return self._rows(query, parameters)

    def query_one(
        self, query: str, parameters: Mapping[str, Any] | None = None
    ) -> dict[str, Any]:
        """Run a query and return its first row; raise NoRowsError if empty."""
        self._log_query(query, parameters)
        try:
            rows = self._rows(query, parameters)
        except ClickHouseError as exc:
            raise ClickHouseError(f"failed to execute Clickhouse query: {exc}") from exc
        if not rows:
            raise NoRowsError("failed to execute Clickhouse query: no rows in result set")
        return rows[0]

    def database_exists(self, database: str) -> bool:
        """Tell whether a database of that name exists."""
        try:
            rows = self.query_rows(
                "SELECT 1 FROM system.databases WHERE name = {name:String} LIMIT 1",
                {"name": database},
            )
        except ClickHouseError as exc:
            raise ClickHouseError(f"failed to check if database exists: {exc}") from exc
        return bool(rows)

    def table_exists(self, database: str, table: str) -> bool:
        """Tell whether a table exists in the given database."""
        try:
            rows = self.query_rows(
                "SELECT 1 FROM system.tables WHERE database = {database:String} "
                "AND name = {name:String} LIMIT 1",
                {"database": database, "name": table},
            )
        except ClickHouseError as exc:
            raise ClickHouseError(f"failed to check if table exists: {exc}") from exc
        return bool(rows)