import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable

from openhexa.sdk import current_run
from openhexa.toolbox.dhis2 import DHIS2

from d2d_library.dhis2_extract_handlers import DHIS2Extractor, OrgUnit
from d2d_library.dhis2_mapping_resolver import DHIS2MappingResolver, SyncConfiguration, parse_mapping_ids
from d2d_library.dhis2_pusher import DHIS2Pusher
from d2d_library.dhis2_record_transformer import DataValueTransformer
from d2d_library.errors import SubmissionError, SyncSetupError, UnitSyncError


class UnitState(Enum):
    DOWNLOADING = "downloading"
    TRANSFORMING = "transforming"
    SUBMITTING = "submitting"
    DONE = "done"
    FAILED = "failed"


@dataclass
class UnitOutcome:
    org_unit: OrgUnit
    state: UnitState = UnitState.DOWNLOADING
    failed_state: UnitState | None = None
    records: int = 0
    task_ids: list[str] = field(default_factory=list)
    error: str | None = None


@dataclass
class SyncReport:
    outcomes: list[UnitOutcome] = field(default_factory=list)

    @property
    def synced(self) -> list[UnitOutcome]:
        return [o for o in self.outcomes if o.state == UnitState.DONE]

    @property
    def failed(self) -> list[UnitOutcome]:
        return [o for o in self.outcomes if o.state == UnitState.FAILED]


class AggregateSyncOrchestrator:
    """Runs the aggregate data sync for every remote organisation unit.

    Setup (mappings, remote connection, org units listing) errors are raised to the caller.
    Organisation units are then processed one after the other (download -> transform -> submit),
    a failing org unit is logged and the sync continues with the next one.

    ATTENTION: the extract file is shared by all organisation units of a run, org units
     must not be processed concurrently.
    """

    def __init__(
        self,
        resolver: DHIS2MappingResolver,
        pusher: DHIS2Pusher,
        remote_connector: Callable[[SyncConfiguration], DHIS2],
        extract_path: Path,
        org_units_level: int = 3,
        timeout: int | None = None,
        logger: logging.Logger | None = None,
    ):
        self.resolver = resolver
        self.pusher = pusher
        self.remote_connector = remote_connector
        self.extract_path = extract_path
        self.org_units_level = org_units_level
        self.timeout = timeout
        self.logger = logger if logger else logging.getLogger(__name__)

    def run(self, mapping_ids: str | list[str], start_date: str, end_date: str) -> SyncReport:
        """Sync the data values of the mapping sets between start and end dates.

        Parameters
        ----------
        mapping_ids : str | list[str]
            Mapping set ids (list or comma separated string).
        start_date : str
            Start date (YYYY-MM-DD).
        end_date : str
            End date (YYYY-MM-DD).

        Returns
        -------
        SyncReport
            The outcome of every organisation unit.

        Raises
        ------
        SyncSetupError
            If the mappings or the remote organisation units can not be loaded.
        """
        context = self.resolver.resolve(mapping_ids)
        try:
            remote_dhis2 = self.remote_connector(context.configuration)
        except Exception as e:
            raise SyncSetupError(
                f"Error while connecting to remote DHIS2 {context.configuration.remote_url}: {e}"
            ) from e

        extractor = DHIS2Extractor(dhis2_client=remote_dhis2, timeout=self.timeout, logger=self.logger)
        org_units = extractor.org_units.get_level(level=self.org_units_level)
        transformer = DataValueTransformer(context.tables, logger=self.logger)
        mappings_label = ",".join(parse_mapping_ids(mapping_ids))

        report = SyncReport()
        for org_unit in org_units:
            outcome = self.sync_org_unit(
                org_unit=org_unit,
                extractor=extractor,
                transformer=transformer,
                dataset_id=context.configuration.remote_dataset_id,
                start_date=start_date,
                end_date=end_date,
                mappings_label=mappings_label,
            )
            report.outcomes.append(outcome)

        self._log(
            f"Aggregate sync finished for mappings ({mappings_label}): {len(report.synced)} org units synced, "
            f"{len(report.failed)} failed out of {len(org_units)}."
        )
        return report

    def sync_org_unit(
        self,
        org_unit: OrgUnit,
        extractor: DHIS2Extractor,
        transformer: DataValueTransformer,
        dataset_id: str,
        start_date: str,
        end_date: str,
        mappings_label: str = "",
    ) -> UnitOutcome:
        """Download, transform and submit the data values of one organisation unit.

        Errors are not raised, they are logged and reported in the returned outcome.
        """
        outcome = UnitOutcome(org_unit=org_unit)
        try:
            self._log(f"Downloading data for {org_unit.display_name} for mappings ({mappings_label})")
            extractor.data_values.download(
                dataset_id=dataset_id,
                org_unit_id=org_unit.id,
                start_date=start_date,
                end_date=end_date,
                output_path=self.extract_path,
            )

            outcome.state = UnitState.TRANSFORMING
            self._log(f"Processing data for {org_unit.display_name} for mappings ({mappings_label})")
            data_points = transformer.transform(self.extract_path)
            outcome.records = len(data_points)

            if data_points:
                outcome.state = UnitState.SUBMITTING
                self._log(f"Inserting {len(data_points)} records for {org_unit.display_name}")
                results = self.pusher.push(data_points)
                outcome.task_ids = [r.task_id for r in results if r.accepted]
                failed = [r for r in results if not r.accepted]
                if failed:
                    raise SubmissionError(
                        f"{len(failed)} of {len(results)} chunks rejected "
                        f"(chunks: {', '.join(str(r.chunk_index) for r in failed)}): {failed[0].error}",
                        failed_results=failed,
                    )
            else:
                self._log(f"No records to insert for {org_unit.display_name}")

            outcome.state = UnitState.DONE
            self._log(f"Data sync done for {org_unit.display_name}")

        except UnitSyncError as e:
            self._fail(outcome, e)
        except Exception as e:
            self._fail(outcome, e, unexpected=True)

        return outcome

    def _fail(self, outcome: UnitOutcome, error: Exception, unexpected: bool = False) -> None:
        outcome.failed_state = outcome.state
        outcome.state = UnitState.FAILED
        outcome.error = str(error)
        kind = "Unexpected error" if unexpected else "Error"
        msg = (
            f"{kind} while {outcome.failed_state.value} data for {outcome.org_unit.display_name} "
            f"({outcome.org_unit.id}): {error}"
        )
        current_run.log_error(msg)
        self.logger.error(msg)

    def _log(self, msg: str) -> None:
        current_run.log_info(msg)
        self.logger.info(msg)
