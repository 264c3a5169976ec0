import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Sequence

from openhexa.sdk import current_run
from openhexa.toolbox.dhis2 import DHIS2

from d2d_library.data_point import DataPoint
from d2d_library.dhis2_api_utils import api_endpoint, dhis2_request, is_error_payload

DEFAULT_CHUNK_SIZE = 50000

# dataValueSets import parameters, always sent unchanged
IMPORT_PARAMETERS = {
    "async": "true",
    "dryRun": "false",
    "strategy": "NEW_AND_UPDATES",
    "preheatCache": "true",
    "skipAudit": "true",
    "dataElementIdScheme": "UID",
    "orgUnitIdScheme": "UID",
    "idScheme": "UID",
    "skipExistingCheck": "false",
    "format": "json",
}


@dataclass(frozen=True)
class SubmissionResult:
    """Outcome of one chunk import request."""

    chunk_index: int
    size: int
    task_id: str | None = None
    error: str | None = None

    @property
    def accepted(self) -> bool:
        return self.error is None and self.task_id is not None


def split_into_chunks(records: Sequence, chunk_size: int) -> list[Sequence]:
    """Split the records in ordered chunks of at most `chunk_size` elements."""
    if chunk_size <= 0:
        raise ValueError(f"Invalid chunk size: {chunk_size}")
    return [records[i : i + chunk_size] for i in range(0, len(records), chunk_size)]


class DHIS2Pusher:
    """Main class to handle pushing data values to the destination DHIS2.

    Data points are split in chunks, each chunk is posted as an asynchronous
    dataValueSets import. Chunks are posted concurrently and the outcome of each
    chunk is captured independently.
    """

    def __init__(
        self,
        dhis2_client: DHIS2,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        max_workers: int = 4,
        timeout: int | None = None,
        logger: logging.Logger | None = None,
    ):
        if chunk_size <= 0:
            raise ValueError(f"Invalid chunk size: {chunk_size}")
        self.dhis2_client = dhis2_client
        self.chunk_size = chunk_size
        self.max_workers = max(1, max_workers)
        self.timeout = timeout
        self.logger = logger if logger else logging.getLogger(__name__)

    def push(self, data_points: list[DataPoint]) -> list[SubmissionResult]:
        """Submit the data points to the dataValueSets endpoint.

        Parameters
        ----------
        data_points : list[DataPoint]
            The data points to import.

        Returns
        -------
        list[SubmissionResult]
            One result per chunk, ordered by chunk index.
        """
        chunks = split_into_chunks(data_points, self.chunk_size)
        if not chunks:
            return []

        results = []
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(chunks))) as executor:
            futures = {executor.submit(self._post_chunk, idx, chunk): idx for idx, chunk in enumerate(chunks)}
            for future in as_completed(futures):
                idx = futures[future]
                try:
                    results.append(future.result())
                except Exception as e:
                    results.append(SubmissionResult(chunk_index=idx, size=len(chunks[idx]), error=str(e)))

        return sorted(results, key=lambda r: r.chunk_index)

    def _post_chunk(self, chunk_index: int, chunk: Sequence[DataPoint]) -> SubmissionResult:
        url = api_endpoint(self.dhis2_client, "dataValueSets")
        payload = {"dataValues": [dp.to_json() for dp in chunk]}
        response = dhis2_request(
            self.dhis2_client.api.session,
            "post",
            url,
            json=payload,
            params=IMPORT_PARAMETERS,
            timeout=self.timeout,
        )

        if is_error_payload(response):
            self.logger.error(f"Chunk {chunk_index} ({len(chunk)} values) rejected: {response['error']}")
            return SubmissionResult(chunk_index=chunk_index, size=len(chunk), error=response["error"])

        task_id = self._task_id(response)
        if task_id is None:
            msg = f"No task id in import response: {response}"
            self.logger.error(f"Chunk {chunk_index} ({len(chunk)} values) rejected: {msg}")
            return SubmissionResult(chunk_index=chunk_index, size=len(chunk), error=msg)

        current_run.log_info(f"Created task with id {task_id}")
        self.logger.info(f"Chunk {chunk_index} ({len(chunk)} values) accepted, task id: {task_id}")
        return SubmissionResult(chunk_index=chunk_index, size=len(chunk), task_id=task_id)

    @staticmethod
    def _task_id(response: dict | list) -> str | None:
        if not isinstance(response, dict):
            return None
        job = response.get("response")
        if not isinstance(job, dict) or not job.get("id"):
            return None
        return str(job["id"])
