import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path

import requests
from openhexa.sdk import current_run
from openhexa.toolbox.dhis2 import DHIS2

from d2d_library.dhis2_api_utils import api_endpoint, dhis2_request, is_error_payload
from d2d_library.errors import ExtractDownloadError, OrgUnitListingError


@dataclass(frozen=True)
class OrgUnit:
    id: str
    display_name: str


class OrgUnitsExtractor:
    """Handles the listing of organisation units from the remote DHIS2."""

    def __init__(self, extractor: "DHIS2Extractor"):
        self.extractor = extractor

    def get_level(self, level: int = 3) -> list[OrgUnit]:
        """Retrieve all organisation units at the given hierarchy level (unpaginated).

        Parameters
        ----------
        level : int
            Hierarchy level of the organisation units to retrieve (default is 3).

        Returns
        -------
        list[OrgUnit]
            Organisation units in the order returned by DHIS2.

        Raises
        ------
        OrgUnitListingError
            If the request fails or the response does not contain organisation units.
        """
        url = api_endpoint(self.extractor.dhis2_client, "organisationUnits.json")
        params = {"level": level, "paging": "false", "fields": "id,displayName"}
        response = dhis2_request(
            self.extractor.dhis2_client.api.session, "get", url, params=params, timeout=self.extractor.timeout
        )
        if is_error_payload(response):
            raise OrgUnitListingError(f"Error retrieving organisation units at level {level}: {response['error']}")

        org_units = response.get("organisationUnits") if isinstance(response, dict) else None
        if not isinstance(org_units, list):
            raise OrgUnitListingError(f"Malformed organisation units response for level {level}.")

        try:
            result = [OrgUnit(id=ou["id"], display_name=ou.get("displayName", ou["id"])) for ou in org_units]
        except (KeyError, TypeError, AttributeError) as e:
            raise OrgUnitListingError(f"Malformed organisation unit in response for level {level}: {e}") from e

        current_run.log_info(f"Remote organisation units at level {level}: {len(result)}")
        return result


class DataValueSetsExtractor:
    """Handles the streaming download of data value set extracts (CSV) from the remote DHIS2."""

    CHUNK_SIZE = 1024 * 1024

    def __init__(self, extractor: "DHIS2Extractor"):
        self.extractor = extractor

    def download(
        self,
        dataset_id: str,
        org_unit_id: str,
        start_date: str,
        end_date: str,
        output_path: Path,
    ) -> Path:
        """Download the data values of a dataset for an organisation unit and all its descendants.

        The response is streamed to a temporary file which replaces `output_path` once the
        download is complete, so the previous extract in that slot is overwritten.

        Parameters
        ----------
        dataset_id : str
            Remote dataset UID.
        org_unit_id : str
            Remote organisation unit UID (children are included).
        start_date : str
            Start date (YYYY-MM-DD).
        end_date : str
            End date (YYYY-MM-DD).
        output_path : Path
            Path of the CSV extract file.

        Returns
        -------
        Path
            The path to the extract file.

        Raises
        ------
        ExtractDownloadError
            If an error occurs during the download.
        """
        url = api_endpoint(self.extractor.dhis2_client, "dataValueSets.csv")
        params = {
            "dataSet": dataset_id,
            "startDate": start_date,
            "endDate": end_date,
            "orgUnit": org_unit_id,
            "children": "true",
        }
        output_path.parent.mkdir(parents=True, exist_ok=True)

        temp_filename = None
        try:
            with self.extractor.dhis2_client.api.session.get(
                url, params=params, stream=True, timeout=self.extractor.timeout
            ) as response:
                response.raise_for_status()
                with tempfile.NamedTemporaryFile(suffix=".csv", dir=output_path.parent, delete=False) as tmp_file:
                    temp_filename = Path(tmp_file.name)
                    for chunk in response.iter_content(chunk_size=self.CHUNK_SIZE):
                        if chunk:
                            tmp_file.write(chunk)

            # Atomically replace the old extract with the new one
            temp_filename.replace(output_path)

        except (requests.RequestException, OSError) as e:
            if temp_filename is not None and temp_filename.exists():
                temp_filename.unlink()
            raise ExtractDownloadError(f"Extract download error for org unit {org_unit_id}: {e}") from e

        self.extractor.logger.info(f"Extract for org unit {org_unit_id} saved: {output_path}")
        return output_path


class DHIS2Extractor:
    """Extracts data from the remote DHIS2 using handlers for organisation units and data value sets.

    Attributes
    ----------
    dhis2_client : DHIS2
        The remote DHIS2 client.
    timeout : int | None
        Requests timeout in seconds (None waits indefinitely).

    Handlers
    --------
    org_units : OrgUnitsExtractor
        Handler for listing organisation units.
    data_values : DataValueSetsExtractor
        Handler for downloading data value set extracts.
    """

    def __init__(self, dhis2_client: DHIS2, timeout: int | None = None, logger: logging.Logger | None = None):
        self.dhis2_client = dhis2_client
        self.timeout = timeout
        self.logger = logger if logger else logging.getLogger(__name__)
        self.org_units = OrgUnitsExtractor(self)
        self.data_values = DataValueSetsExtractor(self)
