import json
import logging
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path

from d2d_library.dhis2_mapping_resolver import SyncConfiguration
from dateutil.relativedelta import relativedelta
from openhexa.sdk import DHIS2Connection, workspace
from openhexa.toolbox.dhis2 import DHIS2

DATE_FORMAT = "%Y-%m-%d"


@dataclass(frozen=True)
class SyncSettings:
    """Pipeline settings loaded from the sync configuration file."""

    target_connection: str
    org_units_level: int = 3
    chunk_size: int = 50000
    max_workers: int = 4
    request_timeout: int | None = None


def load_configuration(config_path: Path) -> dict:
    """Reads a JSON file configuration and returns its contents as a dictionary.

    Args:
        config_path: Path to the JSON configuration file.

    Returns:
        dict: Dictionary containing the JSON data.
    """
    try:
        with Path.open(config_path, "r", encoding="utf-8") as file:
            return json.load(file)
    except FileNotFoundError as e:
        raise Exception(f"The file '{config_path}' was not found {e}") from e
    except json.JSONDecodeError as e:
        raise Exception(f"Error decoding JSON: {e}") from e
    except Exception as e:
        raise Exception(f"Unexpected error while loading configuration '{config_path}' {e}") from e


def load_sync_settings(config_path: Path) -> SyncSettings:
    """Load and validate the pipeline settings.

    Expected format:
    {
        "SETTINGS": {
            "TARGET_DHIS2_CONNECTION": "dhis2-connection-slug",  (required)
            "ORG_UNITS_LEVEL": 3,
            "CHUNK_SIZE": 50000,
            "MAX_WORKERS": 4,
            "REQUEST_TIMEOUT": null
        }
    }

    Args:
        config_path: Path to the JSON configuration file.

    Returns:
        SyncSettings: The validated settings.
    """
    config = load_configuration(config_path)
    settings = config.get("SETTINGS", {})
    target_conn = settings.get("TARGET_DHIS2_CONNECTION")
    if not target_conn:
        raise ValueError("Missing 'TARGET_DHIS2_CONNECTION' in sync configuration.")

    try:
        sync_settings = SyncSettings(
            target_connection=target_conn,
            org_units_level=int(settings.get("ORG_UNITS_LEVEL", 3)),
            chunk_size=int(settings.get("CHUNK_SIZE", 50000)),
            max_workers=int(settings.get("MAX_WORKERS", 4)),
            request_timeout=int(settings["REQUEST_TIMEOUT"]) if settings.get("REQUEST_TIMEOUT") else None,
        )
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid sync configuration settings: {e}") from e

    if sync_settings.chunk_size <= 0:
        raise ValueError(f"Invalid 'CHUNK_SIZE': {sync_settings.chunk_size}")
    if sync_settings.max_workers <= 0:
        raise ValueError(f"Invalid 'MAX_WORKERS': {sync_settings.max_workers}")
    return sync_settings


def connect_to_dhis2(connection_str: str, cache_dir: Path | None) -> DHIS2:
    """Establishes a connection to DHIS2 using the provided connection string and cache directory.

    Parameters
    ----------
    connection_str : str
        The connection string for DHIS2.
    cache_dir : Path
        The directory to use for caching DHIS2 data.

    Returns
    -------
    DHIS2
        An instance of the DHIS2 client.

    Raises
    ------
    Exception
        If there is an error while connecting to DHIS2.
    """
    try:
        connection = workspace.dhis2_connection(connection_str)
        if cache_dir:
            cache_dir.mkdir(parents=True, exist_ok=True)
        return DHIS2(connection=connection, cache_dir=cache_dir)
    except Exception as e:
        raise Exception(f"Error while connecting to DHIS2 {connection_str}: {e}") from e


def connect_to_remote_dhis2(configuration: SyncConfiguration) -> DHIS2:
    """Connects to the remote DHIS2 described by a mapping set configuration (no cache)."""
    connection = DHIS2Connection(
        url=configuration.remote_url,
        username=configuration.remote_username,
        password=configuration.remote_password,
    )
    return DHIS2(connection=connection, cache_dir=None)


def get_previous_month_range(today: date | None = None) -> tuple[str, str]:
    """Returns the first and last day (YYYY-MM-DD) of the month before `today`."""
    today = today if today else date.today()
    last_month = today - relativedelta(months=1)
    start = last_month + relativedelta(day=1)
    end = last_month + relativedelta(day=31)
    return start.strftime(DATE_FORMAT), end.strftime(DATE_FORMAT)


def resolve_date_range(start_date: str | None, end_date: str | None, today: date | None = None) -> tuple[str, str]:
    """Validate the sync dates, the previous month is used if none is provided.

    Raises
    ------
    ValueError
        If only one date is provided, a date is not YYYY-MM-DD or start is after end.
    """
    if not start_date and not end_date:
        return get_previous_month_range(today)
    if not start_date or not end_date:
        raise ValueError("Both start and end dates must be provided (or none for the previous month).")

    try:
        start = datetime.strptime(start_date.strip(), DATE_FORMAT).date()
        end = datetime.strptime(end_date.strip(), DATE_FORMAT).date()
    except ValueError as e:
        raise ValueError(f"Invalid date format, expected YYYY-MM-DD: {e}") from e

    if start > end:
        raise ValueError(f"Start date {start_date} is after end date {end_date}.")
    return start.strftime(DATE_FORMAT), end.strftime(DATE_FORMAT)


def configure_logging(logs_path: Path, task_name: str):
    """Configure logging for the pipeline.

    Parameters
    ----------
    logs_path : Path
        Directory path where log files will be stored.
    task_name : str
        Name of the task to include in the log filename.

    This function creates the log directory if it does not exist and sets up logging to a file.
    """
    logs_path.mkdir(parents=True, exist_ok=True)
    now = datetime.now().strftime("%Y-%m-%d-%H_%M")
    logging.basicConfig(
        filename=logs_path / f"{task_name}_{now}.log",
        level=logging.INFO,
        format="%(asctime)s - %(message)s",
    )
