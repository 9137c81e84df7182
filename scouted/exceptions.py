"""Exception hierarchy for the scouted package."""


class ScoutedError(Exception):
    """Base class for all scouted errors."""


class ConfigurationError(ScoutedError):
    """Missing or invalid configuration (files, credentials, endpoints)."""


class StorageError(ScoutedError):
    """Storage backend is missing or not supported."""


class IngestionError(ScoutedError):
    """Externally supplied batch cannot be ingested at all."""


class EmailDeliveryError(ScoutedError):
    """Mail provider rejected a send request."""

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code
