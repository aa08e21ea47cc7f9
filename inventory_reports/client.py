"""HTTP helpers for the remote data provider and export service."""
from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Mapping, Optional

import requests

from .config import AppConfig
from .errors import (
    RemoteError,
    RemoteNotFoundError,
    RemoteServerError,
    RemoteTimeoutError,
    RemoteValidationError,
)
from .models import ExportRequest, TransactionKind

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class _Download:
    """State shared between a download and the thread waiting on it."""

    def __init__(self) -> None:
        self.done = threading.Event()
        self.aborted = threading.Event()
        self.response: Optional[requests.Response] = None
        self.content = b""
        self.error: Optional[Exception] = None

    def abort(self) -> None:
        self.aborted.set()
        if self.response is None:
            return
        try:
            self.response.close()
        except Exception:
            logger.debug("Closing an abandoned export response failed", exc_info=True)


class ExportApiClient:
    """Talk to the remote service over a shared :class:`requests.Session`.

    Data fetches use ``fetch_timeout``; export downloads use the longer
    ``export_timeout`` and enforce it as a wall-clock bound over the whole
    streamed body, not just per socket read.
    """

    def __init__(
        self,
        config: AppConfig,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not config.api_base_url:
            raise RemoteNotFoundError("No remote base URL configured (INVENTORY_DASH_API_BASE_URL)")
        self._config = config
        self._base_url = config.api_base_url.rstrip("/")
        self._session = session or requests.Session()
        self._clock = clock
        if config.api_token:
            self._session.headers["Authorization"] = f"Bearer {config.api_token}"
        self._session.headers.setdefault("Accept", "application/json")

    # ------------------------------------------------------------------
    # Data provider
    # ------------------------------------------------------------------
    def fetch_transactions(self, kind: TransactionKind, params: Optional[Mapping[str, Any]] = None) -> Any:
        """Return the raw JSON payload of the ``imports`` or ``orders`` collection."""

        url = f"{self._base_url}/{kind.collection}"
        response = self._send(url, params=dict(params or {}), timeout=self._config.fetch_timeout)
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteServerError(f"{url} returned a body that is not JSON") from exc
        finally:
            response.close()

    # ------------------------------------------------------------------
    # Export service
    # ------------------------------------------------------------------
    def download_export(self, request: ExportRequest, timeout: Optional[float] = None) -> bytes:
        """Download the server-rendered artifact for *request*.

        The request runs on a worker thread and the caller waits at most
        *timeout* seconds for it.  Per-read socket timeouts alone cannot bound
        a server that keeps trickling bytes, so on expiry the response is
        closed and :class:`RemoteTimeoutError` is raised without waiting for
        the worker.
        """

        timeout = timeout or self._config.export_timeout
        url = f"{self._base_url}/reports/{request.kind.value}/export"
        download = _Download()

        def run() -> None:
            try:
                download.content = self._stream(url, request, timeout, download)
            except Exception as exc:  # re-raised on the calling thread
                download.error = exc
            finally:
                download.done.set()

        threading.Thread(target=run, name="export-download", daemon=True).start()
        if not download.done.wait(timeout):
            download.abort()
            raise RemoteTimeoutError(f"Export download from {url} exceeded {timeout:g}s")
        if download.error is not None:
            raise download.error
        logger.debug("Downloaded %d bytes from %s", len(download.content), url)
        return download.content

    def close(self) -> None:
        self._session.close()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _stream(self, url: str, request: ExportRequest, timeout: float, download: "_Download") -> bytes:
        deadline = self._clock() + timeout
        response = self._send(url, params=request.to_params(), timeout=timeout, stream=True)
        download.response = response
        if download.aborted.is_set():
            response.close()
            raise RemoteTimeoutError(f"Export download from {url} exceeded {timeout:g}s")

        chunks: list[bytes] = []
        try:
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                if download.aborted.is_set() or self._clock() > deadline:
                    raise RemoteTimeoutError(f"Export download from {url} exceeded {timeout:g}s")
                if chunk:
                    chunks.append(chunk)
        except requests.Timeout as exc:
            raise RemoteTimeoutError(f"Export download from {url} timed out after {timeout:g}s") from exc
        except requests.RequestException as exc:
            if download.aborted.is_set():
                raise RemoteTimeoutError(f"Export download from {url} exceeded {timeout:g}s") from exc
            raise RemoteServerError(f"Export download from {url} was interrupted: {exc}") from exc
        finally:
            response.close()
        return b"".join(chunks)

    def _send(self, url: str, *, timeout: float, **kwargs) -> requests.Response:
        try:
            response = self._session.request("GET", url, timeout=timeout, **kwargs)
        except requests.Timeout as exc:
            raise RemoteTimeoutError(f"GET {url} timed out after {timeout:g}s") from exc
        except requests.RequestException as exc:
            raise RemoteServerError(f"GET {url} failed: {exc}") from exc

        if response.status_code >= 400:
            try:
                raise _error_for(response, url)
            finally:
                response.close()
        return response


def _error_for(response: requests.Response, url: str) -> RemoteError:
    status = response.status_code
    if status in (400, 422):
        details = _error_details(response)
        return RemoteValidationError(f"The export service rejected the request ({status})", details=details)
    if status == 404:
        return RemoteNotFoundError(f"Endpoint not found: {url}; check INVENTORY_DASH_API_BASE_URL")
    if status >= 500:
        return RemoteServerError(f"The export service failed with HTTP {status}")
    return RemoteError(f"Unexpected HTTP {status} from {url}")


def _error_details(response: requests.Response) -> Any:
    try:
        payload = response.json()
    except ValueError:
        return response.text or None
    if isinstance(payload, Mapping):
        for name in ("errors", "detail"):
            if name in payload:
                return payload[name]
    return payload
