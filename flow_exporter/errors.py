"""Exception classes for the flow-log exporter."""

from typing import Any, Optional


class ExtractorError(Exception):
    """Base exception for a failed extraction run."""

    code = "EXTRACTOR_ERROR"

    def __init__(self, message: str, details: Optional[Any] = None):
        self.message = message
        self.details = details
        super().__init__(message)


class ConfigurationError(ExtractorError):
    """Missing or invalid credentials, identifiers or limits."""

    code = "CONFIGURATION_ERROR"


class SourceFetchError(ExtractorError):
    """Transport failure or non-success status from the firewall API."""

    code = "SOURCE_FETCH_ERROR"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Any] = None,
    ):
        self.status_code = status_code
        super().__init__(message, details)


class DestinationError(ExtractorError):
    """Query or append failure against the log-analytics store."""

    code = "DESTINATION_ERROR"
