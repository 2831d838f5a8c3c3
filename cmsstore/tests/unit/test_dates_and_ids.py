from __future__ import annotations

from datetime import datetime, timezone

import pytest

from cmsstore.persistence.dates import MonotonicClock, parse, serialize_row, to_iso
from cmsstore.persistence.ids import IdGenerator


def test_iso_round_trip_uses_z_suffix() -> None:
    value = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)
    assert to_iso(value) == "2024-05-01T12:30:00Z"
    assert parse("2024-05-01T12:30:00Z") == value
    assert parse("2024-05-01T14:30:00+02:00") == value


def test_naive_values_are_treated_as_utc() -> None:
    assert to_iso(datetime(2024, 1, 1)) == "2024-01-01T00:00:00Z"
    assert serialize_row({"a": datetime(2024, 1, 1), "b": 1}) == {"a": "2024-01-01T00:00:00Z", "b": 1}


def test_parse_rejects_unsupported_types() -> None:
    with pytest.raises(TypeError):
        parse(12)


def test_monotonic_clock_is_strictly_increasing() -> None:
    frozen = datetime(2024, 1, 1, tzinfo=timezone.utc)
    clock = MonotonicClock(time_provider=lambda: frozen)
    readings = [clock.now() for _ in range(5)]
    assert readings == sorted(readings)
    assert len(set(readings)) == 5
    assert readings[0] == frozen


def test_id_generator_shapes() -> None:
    ids = IdGenerator()
    first, second = ids.generate_id(), ids.generate_id()
    assert first != second
    assert ids.validate_id(first)
    assert not ids.validate_id("not-an-id")
    assert len(ids.generate_token()) >= 32
