import json
import re
from urllib.parse import parse_qsl, urlsplit

import pytest
import responses

from chmigrate.cli import main

ENV_VARS = [
    "DEBUG",
    "CLICKHOUSE_NODE",
    "CLICKHOUSE_USER",
    "CLICKHOUSE_PASSWORD",
    "CLICKHOUSE_DATABASE",
    "CLICKHOUSE_SCHEMA_TABLE",
    "CLICKHOUSE_CREATE_MIGRATIONS_TABLE",
    "CLICKHOUSE_CLUSTER_MODE",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class FakeServer:
    def __init__(self, database_exists=True, table_exists=True):
        self.database_exists = database_exists
        self.table_exists = table_exists
        self.queries = []

    def executed(self):
        return [query for query, _ in self.queries]

    def handle(self, request):
        params = dict(parse_qsl(urlsplit(request.url).query, keep_blank_values=True))
        body = request.body
        query = body.decode("utf-8") if isinstance(body, bytes) else body
        self.queries.append((query, params))
        if "system.databases" in query:
            return 200, {}, '{"1":1}\n' if self.database_exists else ""
        if "system.tables" in query:
            return 200, {}, '{"1":1}\n' if self.table_exists else ""
        return 200, {}, ""


def serve(rsps, server, host="localhost:9000"):
    rsps.add(responses.GET, f"http://{host}/ping", body="Ok.\n")
    rsps.add_callback(
        responses.POST, re.compile(rf"http://{re.escape(host)}/.*"), callback=server.handle
    )


def stdout_messages(capsys):
    return [json.loads(line)["msg"] for line in capsys.readouterr().out.splitlines() if line]


def test_missing_directory_argument(capsys):
    with pytest.raises(SystemExit) as info:
        main(["migrate"])
    assert info.value.code == 1
    assert "migration directory argument is required" in capsys.readouterr().err


def test_full_run_applies_migration(tmp_path, capsys):
    (tmp_path / "1_init.sql").write_text("CREATE TABLE t (x UInt8) ENGINE = Memory;", encoding="utf-8")
    server = FakeServer()
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        serve(rsps, server)
        main(["migrate", str(tmp_path)])

    assert "CREATE TABLE t (x UInt8) ENGINE = Memory" in server.executed()
    records = [p for q, p in server.queries if q.startswith("INSERT INTO `default`.`schema_migrations`")]
    assert [(p["param_seq"], p["param_dirty"]) for p in records] == [("1", "false")]
    assert "successfully applied migration" in stdout_messages(capsys)


def test_invalid_schema_table_is_fatal(tmp_path, capsys):
    server = FakeServer()
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        serve(rsps, server)
        with pytest.raises(SystemExit) as info:
            main(["migrate", "--schema-table", "onlyone", str(tmp_path)])
    assert info.value.code == 1
    err = capsys.readouterr().err
    entry = json.loads(err.strip().splitlines()[-1])
    assert entry["msg"] == "application error"
    assert "invalid table name" in entry["error"]


def test_node_from_environment(tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("CLICKHOUSE_NODE", "db.example.com:8123")
    (tmp_path / "1_init.sql").write_text("SELECT 1;", encoding="utf-8")
    server = FakeServer()
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        serve(rsps, server, host="db.example.com:8123")
        main(["migrate", str(tmp_path)])
    assert any("system.databases" in query for query in server.executed())
    assert "SELECT 1" in server.executed()
    assert "successfully applied migration" in stdout_messages(capsys)


def test_single_node_creation(tmp_path, capsys):
    (tmp_path / "1_init.sql").write_text("SELECT 1;", encoding="utf-8")
    server = FakeServer(database_exists=False, table_exists=False)
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        serve(rsps, server)
        main(["migrate", "--create-migrations-table", "--no-cluster-mode", str(tmp_path)])
    executed = server.executed()
    assert "CREATE DATABASE `default`" in executed
    assert (
        "CREATE TABLE `default`.`schema_migrations` (version UInt32, dirty Bool, sequence DateTime64) "
        "ENGINE = MergeTree ORDER BY sequence"
    ) in executed
    assert "successfully applied migration" in stdout_messages(capsys)


def test_ping_failure_is_fatal(tmp_path, capsys):
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        rsps.add(responses.GET, "http://localhost:9000/ping", status=500, body="down")
        with pytest.raises(SystemExit) as info:
            main(["migrate", str(tmp_path)])
    assert info.value.code == 1
    assert "failed to ping Clickhouse" in capsys.readouterr().err