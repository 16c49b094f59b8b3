"""Tests for shared database helpers."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import pytest

from usage_sync_internal.database import parse_db_timestamp, require_db_timestamp
from usage_sync_internal.paths import get_default_database_path


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("2024-01-01 00:00:00+00", datetime(2024, 1, 1, tzinfo=UTC)),
        ("2024-01-01 02:30:00+02", datetime(2024, 1, 1, 0, 30, tzinfo=UTC)),
        ("2024-01-01 05:30:00+05:30", datetime(2024, 1, 1, tzinfo=UTC)),
        ("2024-01-01 00:00:00.123456+00", datetime(2024, 1, 1, 0, 0, 0, 123456, tzinfo=UTC)),
        ("2024-01-01T00:00:00", datetime(2024, 1, 1, tzinfo=UTC)),
    ],
)
def test_parse_db_timestamp_normalizes_to_utc(raw: str, expected: datetime) -> None:
    """DuckDB TIMESTAMPTZ text in any session timezone should parse to the same UTC instant."""
    parsed = parse_db_timestamp(raw)
    assert parsed == expected
    assert parsed is not None
    assert parsed.tzinfo == UTC


def test_parse_db_timestamp_handles_null_and_rejects_non_strings() -> None:
    """NULL maps to None; non-string values mean the query forgot to cast."""
    assert parse_db_timestamp(None) is None
    with pytest.raises(TypeError):
        _ = parse_db_timestamp(datetime(2024, 1, 1, tzinfo=UTC))  # type: ignore[arg-type]
    with pytest.raises(ValueError):
        _ = require_db_timestamp(None)


def test_default_database_path_follows_xdg(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """XDG_DATA_HOME should decide where the default store lives."""
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path))
    assert get_default_database_path() == tmp_path / "usage-sync" / "usage.duckdb"

    monkeypatch.delenv("XDG_DATA_HOME")
    assert get_default_database_path() == Path("~/.local/share/usage-sync/usage.duckdb").expanduser()
