"""Exceptions raised by the DHIS2 aggregate sync components.

Setup errors abort the whole run, unit errors only abort the organisation unit
being processed.
"""


class AggregateSyncError(Exception):
    """Base class for all aggregate sync errors."""


class SyncSetupError(AggregateSyncError):
    """Raised when the run cannot start (mappings, configuration, org units)."""


class MappingResolutionError(SyncSetupError):
    """Raised when a mapping collection or the sync configuration can not be loaded."""


class OrgUnitListingError(SyncSetupError):
    """Raised when the remote organisation units can not be listed."""


class UnitSyncError(AggregateSyncError):
    """Raised when the sync of a single organisation unit fails."""


class ExtractDownloadError(UnitSyncError):
    """Raised when the data values extract download fails."""


class ExtractDecodeError(UnitSyncError):
    """Raised when the downloaded extract can not be decoded."""


class SubmissionError(UnitSyncError):
    """Raised when one or more chunks were not accepted by the destination DHIS2.

    Attributes
    ----------
    failed_results : list
        The failed `SubmissionResult` of each rejected chunk.
    """

    def __init__(self, message: str, failed_results: list | None = None):
        super().__init__(message)
        self.failed_results = failed_results or []
