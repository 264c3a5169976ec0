import json
from datetime import date

import pytest

from utils import SyncSettings, get_previous_month_range, load_sync_settings, resolve_date_range


@pytest.mark.parametrize(
    "today, expected",
    [
        (date(2024, 3, 15), ("2024-02-01", "2024-02-29")),
        (date(2023, 3, 1), ("2023-02-01", "2023-02-28")),
        (date(2024, 1, 31), ("2023-12-01", "2023-12-31")),
        (date(2024, 5, 31), ("2024-04-01", "2024-04-30")),
    ],
)
def test_get_previous_month_range(today, expected):
    assert get_previous_month_range(today) == expected


def test_resolve_date_range_defaults_to_previous_month():
    assert resolve_date_range(None, "", today=date(2024, 7, 17)) == ("2024-06-01", "2024-06-30")


def test_resolve_date_range_keeps_given_dates():
    assert resolve_date_range("2024-01-01", " 2024-03-31 ") == ("2024-01-01", "2024-03-31")


@pytest.mark.parametrize(
    "start, end",
    [("2024-01-01", None), (None, "2024-01-31"), ("2024-02-01", "2024-01-31"), ("202401", "2024-01-31")],
)
def test_resolve_date_range_invalid(start, end):
    with pytest.raises(ValueError):
        resolve_date_range(start, end)


def write_config(tmp_path, settings: dict):
    path = tmp_path / "sync_config.json"
    path.write_text(json.dumps({"SETTINGS": settings}), encoding="utf-8")
    return path


def test_load_sync_settings_defaults(tmp_path):
    path = write_config(tmp_path, {"TARGET_DHIS2_CONNECTION": "dhis2-local"})

    assert load_sync_settings(path) == SyncSettings(
        target_connection="dhis2-local",
        org_units_level=3,
        chunk_size=50000,
        max_workers=4,
        request_timeout=None,
    )


def test_load_sync_settings(tmp_path):
    path = write_config(
        tmp_path,
        {
            "TARGET_DHIS2_CONNECTION": "dhis2-local",
            "ORG_UNITS_LEVEL": 2,
            "CHUNK_SIZE": 1000,
            "MAX_WORKERS": 8,
            "REQUEST_TIMEOUT": 600,
        },
    )

    settings = load_sync_settings(path)

    assert settings.org_units_level == 2
    assert settings.chunk_size == 1000
    assert settings.max_workers == 8
    assert settings.request_timeout == 600


@pytest.mark.parametrize(
    "settings",
    [
        {},
        {"TARGET_DHIS2_CONNECTION": "dhis2-local", "CHUNK_SIZE": 0},
        {"TARGET_DHIS2_CONNECTION": "dhis2-local", "MAX_WORKERS": -1},
        {"TARGET_DHIS2_CONNECTION": "dhis2-local", "ORG_UNITS_LEVEL": "district"},
    ],
)
def test_load_sync_settings_invalid(tmp_path, settings):
    with pytest.raises(ValueError):
        load_sync_settings(write_config(tmp_path, settings))


def test_load_sync_settings_missing_file(tmp_path):
    with pytest.raises(Exception, match="was not found"):
        load_sync_settings(tmp_path / "missing.json")
