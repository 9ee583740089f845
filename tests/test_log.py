import io
import json
from datetime import datetime, timezone

import pytest

from chmigrate.log import (
    Encoding,
    LogOptions,
    LogPanic,
    debug,
    error,
    fatal,
    get_logger,
    info,
    initialize,
    panic,
    warn,
)


def _lines(buffer):
    return [line for line in buffer.getvalue().splitlines() if line]


def test_json_entry_holds_message_and_fields():
    buffer = io.StringIO()
    initialize(LogOptions(file=buffer))
    info("hello", node="db1")
    [line] = _lines(buffer)
    record = json.loads(line)
    assert record["msg"] == "hello"
    assert record["node"] == "db1"
    assert record["level"] == "info"


def test_json_timestamp_is_iso8601_with_offset():
    buffer = io.StringIO()
    initialize(LogOptions(file=buffer))
    info("tick")
    record = json.loads(_lines(buffer)[0])
    assert record["msg"] == "tick"
    parsed = datetime.strptime(record["ts"], "%Y-%m-%dT%H:%M:%S.%f%z")
    elapsed = abs((datetime.now(timezone.utc) - parsed).total_seconds())
    assert elapsed < 60


def test_debug_suppressed_without_debug_option():
    buffer = io.StringIO()
    initialize(LogOptions(debug=False, file=buffer))
    debug("hidden")
    assert buffer.getvalue() == ""


def test_debug_written_with_debug_option():
    buffer = io.StringIO()
    initialize(LogOptions(debug=True, file=buffer))
    debug("shown", answer=42)
    record = json.loads(_lines(buffer)[0])
    assert record["msg"] == "shown"
    assert record["answer"] == 42


def test_console_debug_uses_development_level_names():
    buffer = io.StringIO()
    initialize(LogOptions(debug=True, encoding=Encoding.CONSOLE, file=buffer))
    debug("hello", key="v")
    parts = _lines(buffer)[0].split("\t")
    assert parts[1] == "DEBUG"
    assert parts[2] == "hello"
    assert json.loads(parts[3]) == {"key": "v"}


def test_console_production_level_matches_json_level():
    json_buffer = io.StringIO()
    initialize(LogOptions(file=json_buffer))
    info("same")
    json_level = json.loads(_lines(json_buffer)[0])["level"]

    console_buffer = io.StringIO()
    initialize(LogOptions(encoding=Encoding.CONSOLE, file=console_buffer))
    info("same")
    parts = _lines(console_buffer)[0].split("\t")
    assert parts[1] == json_level
    assert parts[2] == "same"
    assert len(parts) == 3


def test_errors_go_to_stderr_and_others_to_stdout(capsys):
    initialize(LogOptions())
    info("to-out")
    warn("also-out")
    error("to-err")
    captured = capsys.readouterr()
    out_msgs = [json.loads(line)["msg"] for line in captured.out.splitlines()]
    err_msgs = [json.loads(line)["msg"] for line in captured.err.splitlines()]
    assert out_msgs == ["to-out", "also-out"]
    assert err_msgs == ["to-err"]


def test_debug_not_printed_to_stdout_without_debug(capsys):
    initialize(LogOptions())
    debug("quiet")
    captured = capsys.readouterr()
    assert captured.out == ""
    assert captured.err == ""


def test_panic_logs_then_raises():
    buffer = io.StringIO()
    initialize(LogOptions(file=buffer))
    with pytest.raises(LogPanic, match="boom"):
        panic("boom")
    assert json.loads(_lines(buffer)[0])["msg"] == "boom"


def test_fatal_logs_then_exits():
    buffer = io.StringIO()
    initialize(LogOptions(file=buffer))
    with pytest.raises(SystemExit) as exc_info:
        fatal("bye", reason="test")
    assert exc_info.value.code == 1
    record = json.loads(_lines(buffer)[0])
    assert record["msg"] == "bye"
    assert record["reason"] == "test"


def test_get_logger_writes_through_configured_output():
    buffer = io.StringIO()
    initialize(LogOptions(file=buffer))
    get_logger().warning("direct", extra={"fields": {"a": 1}})
    record = json.loads(_lines(buffer)[0])
    assert record["msg"] == "direct"
    assert record["a"] == 1


def test_reinitialize_replaces_previous_output():
    first = io.StringIO()
    second = io.StringIO()
    initialize(LogOptions(file=first))
    initialize(LogOptions(file=second))
    info("only-second")
    assert first.getvalue() == ""
    assert json.loads(_lines(second)[0])["msg"] == "only-second"