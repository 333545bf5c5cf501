from datetime import date, datetime, timezone

import pytest

from logweave import parsers
from logweave.parsers import extract_level, extract_tags, find_json_object, is_new_entry, parse_line


def test_blank_lines_are_not_entries():
    assert parse_line("") is None
    assert parse_line("   ") is None
    assert parse_line("\t\n") is None


def test_iso_timestamp_is_extracted_and_stripped():
    e = parse_line("2024-01-01T12:34:56Z service started", source="app.log")
    assert e is not None
    assert e.timestamp == datetime(2024, 1, 1, 12, 34, 56, tzinfo=timezone.utc)
    assert e.message == "service started"
    assert e.source == "app.log"
    assert e.level == "INFO"


def test_bracketed_iso_with_level_and_tags():
    e = parse_line("[2025-08-24T06:38:36.757Z] [INFO] [api] [v2] request served")
    assert e.timestamp == datetime(2025, 8, 24, 6, 38, 36, 757000, tzinfo=timezone.utc)
    assert e.level == "INFO"
    assert e.tags == ["api", "v2"]
    assert e.message == "request served"


def test_iso_with_numeric_offset():
    e = parse_line("2024-03-10T08:00:00+02:00 WARN disk at 91%")
    assert e.timestamp == datetime(2024, 3, 10, 6, 0, 0, tzinfo=timezone.utc)
    assert e.level == "WARN"
    assert e.message == "disk at 91%"


def test_space_separated_datetime_is_local_time():
    e = parse_line("2023-12-15 15:24:31.542 DEBUG cache warm")
    assert e.timestamp == datetime(2023, 12, 15, 15, 24, 31, 542000).astimezone()
    assert e.level == "DEBUG"
    assert e.message == "cache warm"


def test_time_only_is_anchored_to_today():
    e = parse_line("15:24:31 TRACE tick")
    assert e.timestamp.date() == date.today()
    assert (e.timestamp.hour, e.timestamp.minute, e.timestamp.second) == (15, 24, 31)
    assert e.level == "TRACE"
    assert e.message == "tick"


def test_syslog_timestamp_uses_current_year():
    e = parse_line("Dec 15 15:24:31 host sshd[42]: session opened")
    assert (e.timestamp.year, e.timestamp.month, e.timestamp.day) == (date.today().year, 12, 15)
    assert e.message == "host sshd[42]: session opened"


def test_invalid_calendar_date_leaves_text_untouched():
    before = datetime.now(timezone.utc)
    e = parse_line("2024-13-45T00:00:00Z boom")
    assert e.message == "2024-13-45T00:00:00Z boom"
    assert e.timestamp >= before


def test_missing_timestamp_defaults_to_ingestion_time():
    before = datetime.now(timezone.utc)
    e = parse_line("plain words only")
    after = datetime.now(timezone.utc)
    assert before <= e.timestamp <= after
    assert e.message == "plain words only"
    assert e.level == "INFO"
    assert e.tags == []


@pytest.mark.parametrize(
    "text,level,rest",
    [
        ("ERROR something broke", "ERROR", "something broke"),
        ("[warn] slow query", "WARN", "slow query"),
        ("request failed with Error code 5", "ERROR", "request failed with Error code 5"),
        ("Debug: leading token", "DEBUG", ": leading token"),
    ],
)
def test_extract_level(text, level, rest):
    assert extract_level(text) == (level, rest)


def test_level_word_in_body_is_detected_but_kept():
    # Known false positive: a message that merely mentions a level word
    e = parse_line("disk error rate nominal")
    assert e.level == "ERROR"
    assert e.message == "disk error rate nominal"


def test_tags_keep_order_and_duplicates():
    tags, rest = extract_tags("[db] [db] [pool-1] connected [not-a-tag]")
    assert tags == ["db", "db", "pool-1"]
    assert rest == "connected [not-a-tag]"


def test_json_line_wins_over_heuristics():
    raw = '{"level":"warn","msg":"x"}'
    e = parse_line(raw)
    assert e.level == "WARN"
    assert e.message == "x"
    assert e.metadata == {"level": "warn", "msg": "x"}


def test_json_fields_and_tag_union():
    raw = (
        '{"@timestamp":"2024-05-01T10:00:00Z","severity":"ERROR","message":"db down",'
        '"tags":["db","infra"],"service":"api","component":"db","labels":{"k":"v"}}'
    )
    e = parse_line(raw, source="svc.log")
    assert e.timestamp == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
    assert e.level == "ERROR"
    assert e.message == "db down"
    assert e.tags == ["db", "infra", "api"]
    assert e.metadata["service"] == "api"
    assert e.source == "svc.log"


def test_json_numeric_timestamp_is_epoch_millis():
    e = parse_line('{"time": 1700000000000, "text": "hello"}')
    assert e.timestamp == datetime.fromtimestamp(1700000000, tz=timezone.utc)
    assert e.message == "hello"


def test_json_unknown_level_and_missing_message():
    e = parse_line('{"level":"fatal","code":7}')
    assert e.level == "INFO"
    assert e.message == '{"level":"fatal","code":7}'


def test_json_embedded_in_text():
    e = parse_line('12:00:01 worker done {"msg":"job finished","module":"queue","n":{"a":1}} trailing')
    assert e.message == "job finished"
    assert e.tags == ["queue"]
    assert e.metadata == {"msg": "job finished", "module": "queue", "n": {"a": 1}}


def test_find_json_object_handles_braces_inside_strings():
    assert find_json_object('x {"a": "}{", "b": 2} y') == {"a": "}{", "b": 2}
    assert find_json_object("no braces here") is None
    assert find_json_object("{not json}") is None
    assert find_json_object("[1, 2, 3]") is None


def test_ids_are_unique():
    ids = {parse_line(f"line {i}").id for i in range(2000)}
    assert len(ids) == 2000


def test_internal_failure_falls_back_to_raw_entry(monkeypatch):
    def boom(raw, source):
        raise RuntimeError("kaput")

    monkeypatch.setattr(parsers, "_parse", boom)
    e = parse_line("2024-01-01T00:00:00Z [ERROR] boom", source="s")
    assert e is not None
    assert e.message == "2024-01-01T00:00:00Z [ERROR] boom"
    assert e.level == "INFO"
    assert e.tags == []
    assert e.source == "s"


@pytest.mark.parametrize(
    "line",
    [
        "2024-01-01T00:00:00Z boom",
        "[2024-01-01T00:00:00.123Z] started",
        "2024-01-01 00:00:00 started",
        "12:00:00 tick",
        "Jan  3 04:05:06 host cron",
        "ERROR boom",
        "[WARN] slow",
        "  info padded",
        '{"level": "info", "msg": "json lines are records"}',
    ],
)
def test_is_new_entry_true(line):
    assert is_new_entry(line) is True


@pytest.mark.parametrize(
    "line",
    [
        "  at foo.js:10",
        "Traceback (most recent call last):",
        "    ... 12 more",
        "Caused by: java.io.IOException",
        "ERRORS everywhere",
        "",
        "   ",
    ],
)
def test_is_new_entry_false(line):
    assert is_new_entry(line) is False
