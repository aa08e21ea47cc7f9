"""Remote-first export delivery with local rendering as the fallback.

For a single :class:`~inventory_reports.models.ExportRequest` the remote
attempt always finishes (successfully, terminally or after exhausting its
retries) before any local rendering starts.  Only timeouts are retried.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional, Sequence

from .config import MAX_RETRY_LIMIT, AppConfig
from .errors import ConfigurationError, EmptyArtifactError, RemoteError, ReportError
from .models import Artifact, CanonicalRow, ExportRequest, ExportResult
from .renderers import resolve_columns

if TYPE_CHECKING:
    from .client import ExportApiClient
    from .services import ReportService
    from .sinks import Sink

logger = logging.getLogger(__name__)

RowFetcher = Callable[[ExportRequest], Sequence[CanonicalRow]]
LocalRenderer = Callable[[ExportRequest, Sequence[CanonicalRow]], Artifact]


@dataclass(frozen=True)
class RetryPolicy:
    """When to try the remote export again.  Pure, no I/O."""

    max_attempts: int = 3
    timeout: float = 60.0
    delay: float = 0.0
    retryable: frozenset[str] = frozenset({"timeout"})

    def __post_init__(self) -> None:
        if not 1 <= self.max_attempts <= 1 + MAX_RETRY_LIMIT:
            raise ConfigurationError(
                f"max_attempts must be between 1 and {1 + MAX_RETRY_LIMIT}, got {self.max_attempts}"
            )

    @classmethod
    def from_config(cls, config: "AppConfig") -> "RetryPolicy":
        return cls(max_attempts=config.max_attempts, timeout=config.export_timeout, delay=config.retry_delay)

    def is_retryable(self, category: str) -> bool:
        return category in self.retryable

    def should_retry(self, attempt: int, category: str) -> bool:
        """``attempt`` is the 1-based number of the attempt that just failed."""

        return attempt < self.max_attempts and self.is_retryable(category)


class DownloadTransport:
    """Produce an export artifact and hand it to a sink."""

    def __init__(
        self,
        sink: "Sink",
        fetch_rows: RowFetcher,
        render_local: LocalRenderer,
        *,
        client: Optional["ExportApiClient"] = None,
        policy: Optional[RetryPolicy] = None,
        pair_pause: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._sink = sink
        self._fetch_rows = fetch_rows
        self._render_local = render_local
        self._client = client
        self._policy = policy or RetryPolicy()
        self._pair_pause = pair_pause
        self._sleep = sleep

    @classmethod
    def for_service(
        cls,
        service: "ReportService",
        sink: "Sink",
        client: Optional["ExportApiClient"] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "DownloadTransport":
        """Wire a transport to a :class:`ReportService` and its configuration."""

        config = service.config
        return cls(
            sink,
            fetch_rows=lambda request: service.rows_for(request, refresh=True),
            render_local=lambda request, rows: service.render_artifact(request, rows=rows),
            client=client,
            policy=RetryPolicy.from_config(config),
            pair_pause=config.dual_export_pause,
            sleep=sleep,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def request_export(
        self,
        request: ExportRequest,
        displayed_rows: Optional[Sequence[CanonicalRow]] = None,
    ) -> ExportResult:
        """Deliver *request*, remotely if possible and locally otherwise.

        ``displayed_rows`` are the rows the caller already shows; they are only
        rendered when fresh rows cannot be fetched.
        """

        try:
            resolve_columns(request.kind, request.selected_columns)
        except ReportError as exc:
            return ExportResult(success=False, error_category=exc.category, message=exc.message)

        attempts = 0
        remote_error = None
        if self._client is not None:
            artifact, attempts, remote_error = self._try_remote(request)
            if artifact is not None:
                return self._deliver(artifact, source="remote", attempts=attempts)
            logger.warning("Remote export of %s failed (%s); rendering locally", request.filename, remote_error)

        rows = self._best_rows(request, displayed_rows)
        if not rows:
            return ExportResult(
                success=False,
                filename=request.filename,
                error_category="missing_data",
                message="No rows available for the requested scope or date range",
                attempts=attempts,
                remote_error=remote_error,
            )

        try:
            artifact = self._render_local(request, rows)
            if not artifact.byte_size:
                raise EmptyArtifactError(f"Local rendering of {artifact.filename} produced no bytes")
        except ReportError as exc:
            logger.error("Local export of %s failed: %s", request.filename, exc.message)
            return ExportResult(
                success=False,
                filename=request.filename,
                error_category=exc.category,
                message=exc.message,
                source="local",
                attempts=attempts,
                remote_error=remote_error,
            )
        return self._deliver(artifact, source="local", attempts=attempts, remote_error=remote_error)

    def request_pair(
        self,
        first: ExportRequest,
        second: ExportRequest,
        displayed_rows: tuple[Optional[Sequence[CanonicalRow]], Optional[Sequence[CanonicalRow]]] = (None, None),
    ) -> tuple[ExportResult, ExportResult]:
        """Run two exports one after the other with a pause in between."""

        first_result = self.request_export(first, displayed_rows[0])
        if self._pair_pause > 0:
            self._sleep(self._pair_pause)
        second_result = self.request_export(second, displayed_rows[1])
        return first_result, second_result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _try_remote(self, request: ExportRequest) -> tuple[Optional[Artifact], int, Optional[str]]:
        attempt = 0
        while True:
            attempt += 1
            try:
                content = self._client.download_export(request, timeout=self._policy.timeout)
                if not content:
                    raise EmptyArtifactError(f"The export service returned an empty {request.format.value} file")
                return Artifact(request.filename, content, request.format), attempt, None
            except (RemoteError, EmptyArtifactError) as exc:
                logger.warning("Remote export attempt %d/%d failed: %s", attempt, self._policy.max_attempts, exc.message)
                if self._policy.should_retry(attempt, exc.category):
                    if self._policy.delay > 0:
                        self._sleep(self._policy.delay)
                    continue
                return None, attempt, _describe(exc)

    def _best_rows(
        self,
        request: ExportRequest,
        displayed_rows: Optional[Sequence[CanonicalRow]],
    ) -> Sequence[CanonicalRow]:
        try:
            fresh = self._fetch_rows(request)
        except ReportError as exc:
            logger.warning("Could not re-fetch rows for %s: %s", request.filename, exc.message)
            fresh = []
        if fresh:
            return fresh
        return displayed_rows or []

    def _deliver(
        self,
        artifact: Artifact,
        *,
        source: str,
        attempts: int,
        remote_error: Optional[str] = None,
    ) -> ExportResult:
        location = self._sink.save(artifact.filename, artifact.content)
        logger.info("Delivered %s from %s to %s", artifact.filename, source, location)
        return ExportResult(
            success=True,
            filename=artifact.filename,
            byte_size=artifact.byte_size,
            source=source,
            attempts=attempts,
            remote_error=remote_error,
        )


def _describe(exc: ReportError) -> str:
    details = getattr(exc, "details", None)
    if details:
        return f"{exc.category}: {exc.message} {details}"
    return f"{exc.category}: {exc.message}"
