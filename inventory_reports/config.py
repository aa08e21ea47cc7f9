"""Application configuration utilities for the inventory_dash backend.

This module centralises environment-driven configuration so the rest of the
code base does not need to read environment variables directly.  Every
variable carries the ``INVENTORY_DASH_`` prefix.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .errors import ConfigurationError

# Load any variables defined in a local .env file. The call is idempotent and
# inexpensive, so importing it at module import time keeps the API ergonomic.
load_dotenv()

PREFIX = "INVENTORY_DASH_"

# Extra attempts after a timed-out export are capped; the variable may only lower it.
MAX_RETRY_LIMIT = 2


@dataclass(frozen=True)
class AppConfig:
    """Strongly-typed container for runtime configuration.

    Attributes:
        project_root: Root directory of the project. Used to derive default
            paths so the app works out of the box after cloning the repo.
        data_dir: Directory holding ``imports.json`` and ``orders.json`` served
            by the local provider.
        export_dir: Directory the filesystem sink writes artifacts into.
        api_base_url: Base URL of the remote export service. ``None`` disables
            the remote path so every export is rendered locally.
        api_token: Optional bearer token sent to the remote service.
        fetch_timeout: Seconds allowed for ordinary data fetches.
        export_timeout: Seconds allowed for export generation. Must be at least
            twice :attr:`fetch_timeout`.
        max_retries: Extra attempts after a timed-out export request, between
            0 and :data:`MAX_RETRY_LIMIT`.
        retry_delay: Seconds to wait between timed-out attempts.
        dual_export_pause: Seconds to wait between the two halves of a paired
            export.
        rows_per_page: Table rows per page in paginated documents.
        preview_page_size: Rows returned per "load more" preview page.
        currency: Currency symbol used when formatting money.
        log_level: Name of the level handed to :func:`configure_logging`.
    """

    project_root: Path
    data_dir: Path
    export_dir: Path
    api_base_url: Optional[str] = None
    api_token: Optional[str] = None
    fetch_timeout: float = 30.0
    export_timeout: float = 60.0
    max_retries: int = 2
    retry_delay: float = 1.0
    dual_export_pause: float = 1.0
    rows_per_page: int = 25
    preview_page_size: int = 50
    currency: str = "$"
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.fetch_timeout <= 0:
            raise ConfigurationError(f"{PREFIX}FETCH_TIMEOUT must be positive, got {self.fetch_timeout}")
        if self.export_timeout < 2 * self.fetch_timeout:
            raise ConfigurationError(
                f"{PREFIX}EXPORT_TIMEOUT ({self.export_timeout}s) must be at least twice "
                f"{PREFIX}FETCH_TIMEOUT ({self.fetch_timeout}s)"
            )
        if not 0 <= self.max_retries <= MAX_RETRY_LIMIT:
            raise ConfigurationError(
                f"{PREFIX}MAX_RETRIES must be between 0 and {MAX_RETRY_LIMIT}, got {self.max_retries}"
            )
        if self.rows_per_page < 1 or self.preview_page_size < 1:
            raise ConfigurationError("Page sizes must be at least 1")

    @property
    def max_attempts(self) -> int:
        """Total remote attempts for a single export, first try included."""

        return 1 + self.max_retries

    @property
    def remote_enabled(self) -> bool:
        return bool(self.api_base_url)


def load_config() -> AppConfig:
    """Create a new :class:`AppConfig` instance based on environment settings.

    Environment variables override the default values, allowing users to
    customise the runtime without touching the source code.  Malformed values
    raise :class:`~inventory_reports.errors.ConfigurationError`.
    """

    project_root = Path(__file__).resolve().parent.parent
    data_dir = Path(getenv_with_default(f"{PREFIX}DATA_DIR", project_root / "data"))
    export_dir = Path(getenv_with_default(f"{PREFIX}EXPORT_DIR", project_root / "exports"))

    api_base_url = getenv_with_default(f"{PREFIX}API_BASE_URL")
    if api_base_url:
        api_base_url = api_base_url.rstrip("/")

    return AppConfig(
        project_root=project_root,
        data_dir=data_dir,
        export_dir=export_dir,
        api_base_url=api_base_url or None,
        api_token=getenv_with_default(f"{PREFIX}API_TOKEN"),
        fetch_timeout=_number("FETCH_TIMEOUT", 30.0, float),
        export_timeout=_number("EXPORT_TIMEOUT", 60.0, float),
        max_retries=_number("MAX_RETRIES", 2, int),
        retry_delay=_number("RETRY_DELAY", 1.0, float),
        dual_export_pause=_number("DUAL_EXPORT_PAUSE", 1.0, float),
        rows_per_page=_number("ROWS_PER_PAGE", 25, int),
        preview_page_size=_number("PREVIEW_PAGE_SIZE", 50, int),
        currency=getenv_with_default(f"{PREFIX}CURRENCY", "$"),
        log_level=getenv_with_default(f"{PREFIX}LOG_LEVEL", "INFO").upper(),
    )


def getenv_with_default(name: str, default: Optional[Path | str] = None) -> Optional[str]:
    """Return the value of an environment variable or a sensible default.

    ``None`` values are propagated so callers can make explicit decisions about
    optional configuration values. Paths are converted to strings.
    """

    from os import getenv

    value = getenv(name)
    if value is not None:
        return value
    if default is None:
        return None
    return str(default)


def _number(suffix: str, default, cast):
    raw = getenv_with_default(f"{PREFIX}{suffix}")
    if raw is None or not raw.strip():
        return default
    try:
        return cast(raw.strip())
    except ValueError:
        raise ConfigurationError(f"{PREFIX}{suffix} must be a number, got {raw!r}") from None
