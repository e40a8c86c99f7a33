from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from habitcache.core.errors import InvalidTimestamp
from habitcache.core.occurrence_key import decode, encode


def test_encode_format() -> None:
    assert encode(datetime(2024, 1, 1, 9, 5, 7, tzinfo=timezone.utc)) == "20240101T090507Z"


def test_encode_normalizes_to_utc() -> None:
    seoul = timezone(timedelta(hours=9))
    assert encode(datetime(2024, 1, 1, 9, 0, tzinfo=seoul)) == "20240101T000000Z"
    assert encode("2024-01-01T00:00:00Z") == "20240101T000000Z"


def test_same_second_same_key() -> None:
    a = datetime(2024, 5, 1, 12, 0, 0, 100, tzinfo=timezone.utc)
    b = datetime(2024, 5, 1, 12, 0, 0, 999999, tzinfo=timezone.utc)
    assert encode(a) == encode(b)
    assert encode(a) != encode(a + timedelta(seconds=1))


def test_key_order_matches_time_order() -> None:
    base = datetime(2023, 12, 31, 23, 59, 59, tzinfo=timezone.utc)
    instants = [base + timedelta(seconds=s) for s in (0, 1, 61, 3600, 86400 * 40, 86400 * 400)]
    keys = [encode(i) for i in instants]
    assert keys == sorted(keys)


def test_decode_inverts_encode() -> None:
    instant = datetime(2024, 2, 29, 23, 0, 1, tzinfo=timezone.utc)
    assert decode(encode(instant)) == instant


def test_decode_rejects_garbage() -> None:
    with pytest.raises(InvalidTimestamp):
        decode("2024-01-01T00:00:00Z")
    with pytest.raises(InvalidTimestamp):
        decode("20241301T000000Z")
