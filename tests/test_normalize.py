from datetime import datetime, timedelta, timezone

import pytest

from src.exchange_admin.normalize import (
    as_string_list,
    as_utc,
    parse_byte_quantity,
    parse_exchange_datetime,
)


@pytest.mark.parametrize(
    "value, expected",
    [
        ("2024-02-03T04:05:06Z", datetime(2024, 2, 3, 4, 5, 6, tzinfo=timezone.utc)),
        ("2024-02-03T04:05:06.1234567Z", datetime(2024, 2, 3, 4, 5, 6, 123456, tzinfo=timezone.utc)),
        ("2024-05-01T10:00:00.12Z", datetime(2024, 5, 1, 10, 0, 0, 120000, tzinfo=timezone.utc)),
        ("2024-05-01T10:00:00.5+01:00", datetime(2024, 5, 1, 9, 0, 0, 500000, tzinfo=timezone.utc)),
        ("2024-05-01T10:00:00.123456Z", datetime(2024, 5, 1, 10, 0, 0, 123456, tzinfo=timezone.utc)),
        ("2024-02-03T06:05:06+02:00", datetime(2024, 2, 3, 4, 5, 6, tzinfo=timezone.utc)),
        ("/Date(0)/", datetime(1970, 1, 1, tzinfo=timezone.utc)),
        (datetime(2024, 2, 3), datetime(2024, 2, 3, tzinfo=timezone.utc)),
        (None, None),
        ("", None),
        ("not a date", None),
    ],
)
def test_parse_exchange_datetime(value, expected) -> None:
    """Timestamps in every service form become aware UTC datetimes."""

    assert parse_exchange_datetime(value) == expected


@pytest.mark.parametrize(
    "value, expected",
    [
        (1234, 1234),
        ({"Value": 2048}, 2048),
        ("1.5 GB (1,610,612,736 bytes)", 1610612736),
        ("512 MB", 512 * 1024**2),
        ("4096", 4096),
        ("Unlimited", None),
        (None, None),
        ("lots", None),
    ],
)
def test_parse_byte_quantity(value, expected) -> None:
    """Byte quantities in every service form become integers."""

    assert parse_byte_quantity(value) == expected


def test_as_string_list_handles_scalars_and_nulls() -> None:
    """Single values, lists and nulls normalize to lists of non-empty strings."""

    assert as_string_list(None) == []
    assert as_string_list("alice") == ["alice"]
    assert as_string_list(["alice", "", None, " bob "]) == ["alice", "bob"]


def test_as_utc_assumes_naive_values_are_utc() -> None:
    """Naive values are tagged UTC; aware values are converted to UTC."""

    naive = datetime(2024, 5, 1, 10, 0, 0)
    offset = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone(timedelta(hours=2)))

    assert as_utc(naive) == datetime(2024, 5, 1, 10, 0, 0, tzinfo=timezone.utc)
    assert as_utc(naive).tzinfo is timezone.utc
    assert as_utc(offset) == datetime(2024, 5, 1, 10, 0, 0, tzinfo=timezone.utc)
    assert as_utc(offset).tzinfo is timezone.utc
