"""
Unit tests for utility helpers.
"""

from datetime import datetime, timezone

from behavior_delivery.utils import generate_output_id, iter_ndjson, payload_size, to_json


def test_output_ids_unique():
    ids = {generate_output_id() for _ in range(100)}
    assert len(ids) == 100
    assert all(i.startswith("output-") for i in ids)


def test_payload_size():
    assert payload_size(b"\x00\x01") == 2
    assert payload_size("abc") == 3
    assert payload_size({"a": 1}) == len('{"a": 1}')


def test_to_json_handles_bytes_and_datetimes():
    ts = datetime(2026, 1, 1, tzinfo=timezone.utc)
    assert to_json({"raw": b"hi", "at": ts}) == '{"raw": "hi", "at": "2026-01-01T00:00:00+00:00"}'


def test_iter_ndjson_skips_blank_lines(tmp_path):
    path = tmp_path / "requests.ndjson"
    path.write_text('{"a": 1}\n\n{"b": 2}\n', encoding="utf-8")
    assert list(iter_ndjson(path)) == [{"a": 1}, {"b": 2}]
