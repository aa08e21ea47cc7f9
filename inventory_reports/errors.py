"""Exception taxonomy for the reporting pipeline.

Every error carries a stable :attr:`ReportError.category` string so callers
(and :class:`~inventory_reports.models.ExportResult`) can tell a timeout from
an empty result or a rejected request without string matching.
"""
from __future__ import annotations

from typing import Any, Optional


class ReportError(Exception):
    """Base class for all pipeline errors."""

    category = "report_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(ReportError):
    """Raised when environment configuration is missing or inconsistent."""

    category = "configuration"


class MissingDataError(ReportError):
    """No rows are available for the requested scope or date range."""

    category = "missing_data"


class SchemaMismatchError(ReportError):
    """The provider payload does not match any known envelope shape."""

    category = "schema_mismatch"


class InvalidExportRequestError(ReportError):
    """The export request is malformed (e.g. no columns selected)."""

    category = "invalid_request"


class RenderError(ReportError):
    """A document writer failed while producing an artifact."""

    category = "render_error"


class EmptyArtifactError(ReportError):
    """An artifact of zero bytes was produced; it must never reach the sink."""

    category = "empty_artifact"


class RemoteError(ReportError):
    """Base class for failures of the remote export service."""

    category = "remote_error"


class RemoteTimeoutError(RemoteError):
    """The remote call exceeded its timeout. The only retryable category."""

    category = "timeout"


class RemoteValidationError(RemoteError):
    """The remote service rejected the request.

    ``details`` keeps the provider's field-level payload verbatim.
    """

    category = "validation"

    def __init__(self, message: str, details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.details = details


class RemoteNotFoundError(RemoteError):
    """The remote endpoint does not exist, usually a misconfigured base URL."""

    category = "not_found"


class RemoteServerError(RemoteError):
    """The remote service failed or could not be reached."""

    category = "server_error"


__all__ = [
    "ReportError",
    "ConfigurationError",
    "MissingDataError",
    "SchemaMismatchError",
    "InvalidExportRequestError",
    "RenderError",
    "EmptyArtifactError",
    "RemoteError",
    "RemoteTimeoutError",
    "RemoteValidationError",
    "RemoteNotFoundError",
    "RemoteServerError",
]
