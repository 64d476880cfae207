from __future__ import annotations

import io
import json
import logging
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import BaseModel

from structured_errors import (
    BAD_KEY,
    Attr,
    EmptyStoreError,
    InMemorySink,
    KeyTransform,
    RenderConfig,
    RenderError,
    Severity,
    SinkWriteError,
    StructuredErrors,
)

TEST_TIME = datetime(2000, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

TEXT_LINES = [
    "time=2000-01-02T03:04:05.000Z level=DEBUG msg=m a=1 m=map[b:2]",
    "time=2000-01-02T03:04:05.000Z level=INFO msg=m a=2 m=map[b:2]",
    "time=2000-01-02T03:04:05.000Z level=WARN msg=m a=3 m=map[b:2]",
    "time=2000-01-02T03:04:05.000Z level=ERROR msg=m a=4 m=map[b:2]",
]

JSON_LINES = [
    '{"time":"2000-01-02T03:04:05Z","level":"DEBUG","msg":"m","a":1,"m":{"b":2}}',
    '{"time":"2000-01-02T03:04:05Z","level":"INFO","msg":"m","a":2,"m":{"b":2}}',
    '{"time":"2000-01-02T03:04:05Z","level":"WARN","msg":"m","a":3,"m":{"b":2}}',
    '{"time":"2000-01-02T03:04:05Z","level":"ERROR","msg":"m","a":4,"m":{"b":2}}',
]


def _fill(store: StructuredErrors) -> StructuredErrors:
    store.debug(TEST_TIME, "m", Attr("a", 1), Attr("m", {"b": 2}))
    store.info(TEST_TIME, "m", Attr("a", 2), Attr("m", {"b": 2}))
    store.warn(TEST_TIME, "m", Attr("a", 3), Attr("m", {"b": 2}))
    store.error(TEST_TIME, "m", Attr("a", 4), Attr("m", {"b": 2}))
    return store


def _messages(store: StructuredErrors) -> list[str]:
    return [r.message for r in store]


def _store_of(*messages: str, severity: Severity = Severity.INFO) -> StructuredErrors:
    store = StructuredErrors.new_text()
    for msg in messages:
        store.add(TEST_TIME, severity, msg)
    return store


def test_text_store_renders_all_lines_in_order() -> None:
    store = _fill(StructuredErrors.new_text())
    assert store.render_all() == "".join(line + "\n" for line in TEXT_LINES)
    assert str(store) == store.render_all()
    assert store.render_each() == TEXT_LINES


def test_text_store_upper_case_keys() -> None:
    store = _fill(StructuredErrors.new_text(key_transform=KeyTransform.UPPER))
    assert store.render_each()[0] == "TIME=2000-01-02T03:04:05.000Z LEVEL=DEBUG MSG=m A=1 M=map[b:2]"


def test_json_store_renders_all_lines_in_order() -> None:
    store = _fill(StructuredErrors.new())
    assert store.config.format == "json"
    assert store.render_all() == "".join(line + "\n" for line in JSON_LINES)


def test_to_json_is_a_comma_joined_array() -> None:
    store = _fill(StructuredErrors.new_json())
    got = store.to_json()
    assert got == "[" + ",".join(JSON_LINES) + "]"
    assert len(json.loads(got)) == 4


def test_to_json_of_empty_store() -> None:
    assert StructuredErrors.new_json().to_json() == "[]"


def test_to_json_refuses_text_store() -> None:
    store = _fill(StructuredErrors.new_text())
    with pytest.raises(RenderError):
        store.to_json()


def test_rendering_is_idempotent_and_read_only() -> None:
    store = _fill(StructuredErrors.new_json())
    before = store.records
    assert store.render_all() == store.render_all()
    assert store.to_json() == store.to_json()
    assert store.records == before


def test_order_preserved_for_mixed_add_calls() -> None:
    store = StructuredErrors.new_text()
    store.add(TEST_TIME, Severity.WARN, "one")
    store.add_from_args(TEST_TIME, Severity.INFO, "two", "k", 1)
    store.error_from_args(TEST_TIME, "three")
    store.debug(TEST_TIME, "four", ("k", "v"))
    assert _messages(store) == ["one", "two", "three", "four"]
    assert [line.split(" msg=")[1].split(" ")[0] for line in store.render_each()] == ["one", "two", "three", "four"]


def test_add_from_args_pairs_positionally() -> None:
    store = StructuredErrors.new_json()
    store.info_from_args(TEST_TIME, "m", "a", 1, "b", "two", Attr("c", 3))
    assert store.last().attrs == (Attr("a", 1), Attr("b", "two"), Attr("c", 3))


def test_add_from_args_recovers_malformed_input(caplog: pytest.LogCaptureFixture) -> None:
    store = StructuredErrors.new_text()
    store.warn(TEST_TIME, "kept")
    with caplog.at_level(logging.WARNING, logger="structured_errors"):
        store.warn_from_args(TEST_TIME, "m", 42, "a", 1, "dangling")
    assert store.last().attrs == (Attr(BAD_KEY, 42), Attr("a", 1), Attr(BAD_KEY, "dangling"))
    assert store.first().message == "kept"
    assert store.render_each()[1].endswith("msg=m !BADKEY=42 a=1 !BADKEY=dangling")
    assert "non-string key" in caplog.text


def test_add_from_args_keeps_callers_timestamp() -> None:
    store = StructuredErrors.new_json()
    store.debug_from_args(TEST_TIME - timedelta(days=1), "m", "a", 1)
    assert store.first().timestamp == TEST_TIME - timedelta(days=1)


def test_highest_severity_tracks_maximum() -> None:
    store = StructuredErrors.new_json()
    assert store.highest_severity is None
    store.debug(TEST_TIME, "m")
    assert store.highest_severity is Severity.DEBUG
    store.error(TEST_TIME, "m")
    store.info(TEST_TIME, "m")
    assert store.highest_severity is Severity.ERROR
    assert store.highest_severity == max(r.severity for r in store)


@pytest.mark.parametrize(
    ("mine", "theirs", "want"),
    [
        (Severity.INFO, Severity.ERROR, Severity.ERROR),
        (Severity.WARN, Severity.DEBUG, Severity.WARN),
    ],
)
def test_merges_take_max_severity(mine: Severity, theirs: Severity, want: Severity) -> None:
    for merge in ("append", "prepend"):
        a = _store_of("a", severity=mine)
        b = _store_of("b", severity=theirs)
        getattr(a, merge)(b)
        assert a.highest_severity is want


def test_merge_with_empty_store_keeps_severity() -> None:
    a = _store_of("a", severity=Severity.DEBUG)
    a.append(StructuredErrors.new_text())
    a.prepend(StructuredErrors.new_text())
    assert a.highest_severity is Severity.DEBUG
    assert _messages(a) == ["a"]


def test_append_and_prepend_are_asymmetric() -> None:
    a = _store_of("r1", "r2")
    b = _store_of("r3", "r4")
    a.append(b)
    assert _messages(a) == ["r1", "r2", "r3", "r4"]

    a = _store_of("r1", "r2")
    a.prepend(b)
    assert _messages(a) == ["r3", "r4", "r1", "r2"]

    # other is never modified
    assert _messages(b) == ["r3", "r4"]


def test_append_self_doubles_records() -> None:
    a = _store_of("r1", "r2")
    a.append(a)
    assert _messages(a) == ["r1", "r2", "r1", "r2"]


def test_empty_store_guard() -> None:
    store = StructuredErrors.new_json()
    assert store.is_empty()
    assert len(store) == 0
    with pytest.raises(EmptyStoreError):
        store.first()
    with pytest.raises(IndexError):
        store.last()

    store.info(TEST_TIME, "m")
    assert not store.is_empty()
    assert store.first() is store.last()


@pytest.mark.parametrize("output_format", ["text", "json"])
def test_flush_matches_render_all(output_format: str) -> None:
    sink = InMemorySink()
    store = _fill(StructuredErrors(sink, RenderConfig(format=output_format, key_transform=KeyTransform.LOWER)))
    store.flush()
    assert sink.getvalue() == store.render_all().encode("utf-8")
    assert len(sink.snapshot()) == 4
    assert len(store) == 4


def test_flush_to_binary_stream() -> None:
    buf = io.BytesIO()
    store = _fill(StructuredErrors.new_json(buf))
    store.flush()
    assert buf.getvalue().decode("utf-8").splitlines() == JSON_LINES


def test_flush_without_sink_discards() -> None:
    store = _fill(StructuredErrors.new_text())
    store.flush()
    assert len(store) == 4


class _FailingSink:
    def __init__(self, fail_after: int) -> None:
        self.fail_after = fail_after
        self.written: list[bytes] = []

    def write(self, data: bytes) -> None:
        if len(self.written) == self.fail_after:
            raise OSError("disk full")
        self.written.append(data)


def test_flush_stops_at_first_sink_failure() -> None:
    sink = _FailingSink(fail_after=2)
    store = _fill(StructuredErrors.new_text(sink))
    with pytest.raises(SinkWriteError) as excinfo:
        store.flush()
    assert excinfo.value.forwarded == 2
    assert isinstance(excinfo.value.__cause__, OSError)
    assert [w.decode("utf-8") for w in sink.written] == [line + "\n" for line in TEXT_LINES[:2]]
    assert len(store) == 4


@pytest.mark.asyncio
async def test_aflush_forwards_all_records() -> None:
    sink = InMemorySink()
    store = _fill(StructuredErrors.new_json(sink))
    await store.aflush()
    assert sink.getvalue().decode("utf-8").splitlines() == JSON_LINES


def test_store_embeds_as_json_array_in_pydantic_model() -> None:
    class Report(BaseModel):
        name: str
        count: int
        errors: StructuredErrors

    store = _fill(StructuredErrors.new_json())
    report = Report(name="m", count=1, errors=store)
    assert report.model_dump_json() == '{"name":"m","count":1,"errors":[' + ",".join(JSON_LINES) + "]}"
    assert report.model_dump()["errors"][3]["level"] == "ERROR"


def test_from_env_reads_render_config(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STRUCTURED_ERRORS_FORMAT", "text")
    monkeypatch.setenv("STRUCTURED_ERRORS_KEY_CASE", "upper")
    store = StructuredErrors.from_env()
    store.info(TEST_TIME, "m")
    assert store.render_each() == ["TIME=2000-01-02T03:04:05.000Z LEVEL=INFO MSG=m"]


def test_repr_summarises_store() -> None:
    store = _store_of("a", severity=Severity.WARN)
    assert repr(store) == "StructuredErrors(format='text', records=1, highest=WARN)"


def test_json_store_stays_valid_json_for_awkward_values() -> None:
    sink = InMemorySink()
    store = StructuredErrors.new_json(sink)
    store.info(TEST_TIME, "m", Attr("m", {1: "a", "b": 2}), Attr("x", float("nan")))

    def _reject(token: str):
        raise ValueError(token)

    parsed = json.loads(store.to_json(), parse_constant=_reject)
    assert parsed[0]["m"] == {"1": "a", "b": 2}
    assert parsed[0]["x"] == "NaN"
    store.flush()
    assert sink.getvalue() == store.render_all().encode("utf-8")
