import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from openhexa.sdk import current_run
from openhexa.toolbox.dhis2 import DHIS2

from d2d_library.dhis2_api_utils import api_endpoint, dhis2_request, is_error_payload
from d2d_library.errors import MappingResolutionError

# dataStore namespaces
ORG_UNIT_MAPPING_NAMESPACE = "o-mapping"
CONFIGURATION_NAMESPACE = "agg-wizard"
ATTRIBUTE_MAPPING_NAMESPACE = "a-mapping"
COMBO_MAPPING_NAMESPACE = "c-mapping"


@dataclass(frozen=True)
class SyncConfiguration:
    """Remote DHIS2 dataset and connection details of a mapping set."""

    remote_dataset_id: str
    remote_url: str
    remote_username: str
    remote_password: str

    def __repr__(self) -> str:
        return (
            f"SyncConfiguration(remote_dataset_id={self.remote_dataset_id!r}, remote_url={self.remote_url!r}, "
            f"remote_username={self.remote_username!r})"
        )


@dataclass(frozen=True)
class MappingTables:
    """Read-only lookup tables (source id -> destination id) used to remap the extracts.

    Attributes
    ----------
    org_units : Mapping[str, str]
        Organisation unit mapping.
    combos : Mapping[str, str]
        "dataElement,categoryOptionCombo" -> "dataElement,categoryOptionCombo" mapping.
    attributes : Mapping[str, str]
        Attribute option combo mapping.
    """

    org_units: Mapping[str, str]
    combos: Mapping[str, str]
    attributes: Mapping[str, str]


@dataclass(frozen=True)
class SyncContext:
    configuration: SyncConfiguration
    tables: MappingTables


def parse_mapping_ids(mapping_ids: str | list[str]) -> list[str]:
    """Split a comma separated list of mapping set ids, blank items are ignored."""
    if isinstance(mapping_ids, str):
        mapping_ids = mapping_ids.split(",")
    return [str(m).strip() for m in mapping_ids if m is not None and str(m).strip()]


def build_lookup_table(entries: list, source: str = "mapping") -> dict[str, str]:
    """Index mapping entries by their source id, entries without mapping are excluded.

    Parameters
    ----------
    entries : list
        List of dataStore mapping entries: [{"id": "...", "mapping": "..."}, ...]
    source : str
        Name of the collection, used in error messages.

    Returns
    -------
    dict[str, str]
        The resolved lookup table.

    Raises
    ------
    MappingResolutionError
        If the collection is not a list of mapping entries.
    """
    if not isinstance(entries, list):
        raise MappingResolutionError(f"Malformed {source}: expected a list of mapping entries.")

    table = {}
    for entry in entries:
        if not isinstance(entry, dict):
            raise MappingResolutionError(f"Malformed {source}: invalid entry {entry!r}.")
        mapping = entry.get("mapping")
        if not mapping or entry.get("id") is None:
            continue
        table[str(entry["id"])] = str(mapping)
    return table


class DHIS2MappingResolver:
    """Loads the mapping tables and the sync configuration of mapping sets from the DHIS2 dataStore.

    The mapping sets are stored in the dataStore of the destination DHIS2:
        - o-mapping/<id>: organisation units mapping
        - a-mapping/<id>: attribute option combos mapping
        - c-mapping/<id>: data element + category option combos mapping
        - agg-wizard/<id>: remote dataset and remote DHIS2 connection

    Organisation units, attributes and configuration come from the first mapping set,
    combos are merged over all mapping sets (later sets override earlier ones).
    """

    def __init__(
        self,
        dhis2_client: DHIS2,
        max_workers: int = 4,
        timeout: int | None = None,
        logger: logging.Logger | None = None,
    ):
        self.dhis2_client = dhis2_client
        self.max_workers = max(1, max_workers)
        self.timeout = timeout
        self.logger = logger if logger else logging.getLogger(__name__)

    def resolve(self, mapping_ids: str | list[str]) -> SyncContext:
        """Load the mapping tables and sync configuration for the given mapping sets.

        Parameters
        ----------
        mapping_ids : str | list[str]
            Mapping set ids (list or comma separated string).

        Returns
        -------
        SyncContext
            The sync configuration and the resolved mapping tables.

        Raises
        ------
        MappingResolutionError
            If any of the dataStore values is missing or malformed.
        """
        ids = parse_mapping_ids(mapping_ids)
        if not ids:
            raise MappingResolutionError("No mapping ids provided.")

        main_id = ids[0]
        keys = [
            (ORG_UNIT_MAPPING_NAMESPACE, main_id),
            (CONFIGURATION_NAMESPACE, main_id),
            (ATTRIBUTE_MAPPING_NAMESPACE, main_id),
        ] + [(COMBO_MAPPING_NAMESPACE, mapping_id) for mapping_id in ids]

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(keys))) as executor:
            payloads = list(executor.map(lambda k: self._fetch_datastore_value(*k), keys))

        org_units = build_lookup_table(payloads[0], source=f"{ORG_UNIT_MAPPING_NAMESPACE}/{main_id}")
        configuration = self._build_configuration(payloads[1], source=f"{CONFIGURATION_NAMESPACE}/{main_id}")
        attributes = build_lookup_table(payloads[2], source=f"{ATTRIBUTE_MAPPING_NAMESPACE}/{main_id}")

        combos = {}
        for mapping_id, payload in zip(ids, payloads[3:]):
            combos.update(build_lookup_table(payload, source=f"{COMBO_MAPPING_NAMESPACE}/{mapping_id}"))

        msg = (
            f"Mappings ({','.join(ids)}) loaded: {len(org_units)} org units, {len(combos)} combos, "
            f"{len(attributes)} attributes. Remote dataset: {configuration.remote_dataset_id}"
        )
        current_run.log_info(msg)
        self.logger.info(msg)

        return SyncContext(
            configuration=configuration,
            tables=MappingTables(
                org_units=MappingProxyType(org_units),
                combos=MappingProxyType(combos),
                attributes=MappingProxyType(attributes),
            ),
        )

    def _fetch_datastore_value(self, namespace: str, key: str) -> dict | list:
        url = api_endpoint(self.dhis2_client, f"dataStore/{namespace}/{key}")
        payload = dhis2_request(self.dhis2_client.api.session, "get", url, timeout=self.timeout)
        if is_error_payload(payload):
            raise MappingResolutionError(f"Failed to load dataStore value {namespace}/{key}: {payload['error']}")
        return payload

    @staticmethod
    def _build_configuration(payload: dict, source: str) -> SyncConfiguration:
        if not isinstance(payload, dict):
            raise MappingResolutionError(f"Malformed {source}: expected a configuration object.")

        missing = [k for k in ("remoteDataSet", "url", "username", "password") if not payload.get(k)]
        if missing:
            raise MappingResolutionError(f"Malformed {source}: missing {', '.join(missing)}.")

        return SyncConfiguration(
            remote_dataset_id=str(payload["remoteDataSet"]),
            remote_url=str(payload["url"]),
            remote_username=str(payload["username"]),
            remote_password=str(payload["password"]),
        )
