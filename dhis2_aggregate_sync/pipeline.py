import logging
from pathlib import Path

from d2d_library.dhis2_mapping_resolver import DHIS2MappingResolver
from d2d_library.dhis2_pusher import DHIS2Pusher
from d2d_library.dhis2_sync_orchestrator import AggregateSyncOrchestrator
from openhexa.sdk import current_run, parameter, pipeline, workspace
from utils import (
    configure_logging,
    connect_to_dhis2,
    connect_to_remote_dhis2,
    load_sync_settings,
    resolve_date_range,
)


@pipeline("dhis2_aggregate_sync", timeout=43200)  # 3600 * 12 hours
@parameter(
    code="section_name",
    name="Section name",
    type=str,
    help="Name of the sync section, used for the extract file and the logs.",
    required=True,
)
@parameter(
    code="mapping_ids",
    name="Mapping IDs",
    type=str,
    help="Comma separated mapping set ids stored in the DHIS2 dataStore.",
    required=True,
)
@parameter(
    code="start_date",
    name="Start date (YYYY-MM-DD)",
    type=str,
    help="Leave empty (with end date) to sync the previous month.",
    required=False,
)
@parameter(
    code="end_date",
    name="End date (YYYY-MM-DD)",
    type=str,
    help="Leave empty (with start date) to sync the previous month.",
    required=False,
)
def dhis2_aggregate_sync(section_name: str, mapping_ids: str, start_date: str = None, end_date: str = None):
    """Main pipeline function for DHIS2 aggregate data synchronization.

    Parameters
    ----------
    section_name : str
        Name of the sync section.
    mapping_ids : str
        Comma separated mapping set ids.
    start_date : str, optional
        Start date of the data values to sync (default is the first day of the previous month).
    end_date : str, optional
        End date of the data values to sync (default is the last day of the previous month).

    Raises
    ------
    Exception
        If an error occurs during the pipeline execution.
    """
    pipeline_path = Path(workspace.files_path) / "pipelines" / "dhis2_aggregate_sync"

    try:
        sync_aggregate_data(
            pipeline_path=pipeline_path,
            section_name=section_name,
            mapping_ids=mapping_ids,
            start_date=start_date,
            end_date=end_date,
        )
    except Exception as e:
        current_run.log_error(f"An error occurred: {e}")
        raise


@dhis2_aggregate_sync.task
def sync_aggregate_data(
    pipeline_path: Path,
    section_name: str,
    mapping_ids: str,
    start_date: str | None = None,
    end_date: str | None = None,
) -> None:
    """Syncs the aggregate data values of the mapping sets from the remote DHIS2 into the target DHIS2."""
    configure_logging(logs_path=pipeline_path / "logs" / section_name, task_name=section_name)
    logger = logging.getLogger(section_name)

    start, end = resolve_date_range(start_date, end_date)
    settings = load_sync_settings(config_path=pipeline_path / "configuration" / "sync_config.json")

    msg = (
        f"Starting aggregate sync '{section_name}' for mappings ({mapping_ids}) from {start} to {end} "
        f"(org units level: {settings.org_units_level}, chunk size: {settings.chunk_size})"
    )
    current_run.log_info(msg)
    logger.info(msg)

    # No cache for data sync
    target_dhis2 = connect_to_dhis2(connection_str=settings.target_connection, cache_dir=None)

    orchestrator = AggregateSyncOrchestrator(
        resolver=DHIS2MappingResolver(
            dhis2_client=target_dhis2,
            max_workers=settings.max_workers,
            timeout=settings.request_timeout,
            logger=logger,
        ),
        pusher=DHIS2Pusher(
            dhis2_client=target_dhis2,
            chunk_size=settings.chunk_size,
            max_workers=settings.max_workers,
            timeout=settings.request_timeout,
            logger=logger,
        ),
        remote_connector=connect_to_remote_dhis2,
        extract_path=pipeline_path / "data" / "extracts" / f"{section_name}.csv",
        org_units_level=settings.org_units_level,
        timeout=settings.request_timeout,
        logger=logger,
    )
    orchestrator.run(mapping_ids=mapping_ids, start_date=start, end_date=end)
    current_run.log_info("Done")


if __name__ == "__main__":
    dhis2_aggregate_sync()
