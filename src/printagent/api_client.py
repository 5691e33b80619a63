"""HTTP client for the order API that hands out print jobs."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import requests

from .errors import TransportError
from .jobs import Job, JobStatus

log = logging.getLogger(__name__)

API_KEY_HEADER = "X-TABLETRACK-KEY"
DEFAULT_TIMEOUT_SECONDS = 30

PRINTERS_PATH = "/api/printer-details"
PULL_JOBS_PATH = "/api/print-jobs/pull-multiple"
JOB_STATUS_PATH = "/api/print-jobs/{job_id}"


@dataclass(frozen=True)
class ApiPrinter:
    """A logical printer as configured in the order system."""
    id: Optional[int]
    name: Optional[str] = None
    printer_name: Optional[str] = None
    printer_type: Optional[str] = None
    connection: Optional[str] = None
    status: Optional[str] = None
    kitchen_name: Optional[str] = None
    alias: Optional[str] = None

    @property
    def display_name(self) -> str:
        for candidate in (self.name, self.printer_name, self.kitchen_name, self.alias):
            if candidate:
                return candidate
        return f"Printer_{self.id or 0}"

    @classmethod
    def from_api(cls, raw: Mapping[str, Any]) -> "ApiPrinter":
        def text(key: str) -> Optional[str]:
            value = raw.get(key)
            return value.strip() if isinstance(value, str) and value.strip() else None

        rawId = raw.get("id")
        return cls(
            id=rawId if isinstance(rawId, int) and not isinstance(rawId, bool) else None,
            name=text("name"),
            printer_name=text("printer_name"),
            printer_type=text("type"),
            connection=text("connection"),
            status=text("status"),
            kitchen_name=text("kitchen_name"),
            alias=text("alias"),
        )


def extract_items(raw: Any, keys: Sequence[str]) -> List[Any]:
    """Find the item array in a response that may wrap it under one of *keys*.

    Accepts a bare array, ``{key: [...]}`` and one level of nesting such as
    ``{"data": {"jobs": [...]}}``.
    """
    if isinstance(raw, list):
        return raw
    if not isinstance(raw, Mapping):
        return []
    for key in keys:
        value = raw.get(key)
        if isinstance(value, list):
            return value
        if isinstance(value, Mapping):
            for nestedKey in keys:
                nestedValue = value.get(nestedKey)
                if isinstance(nestedValue, list):
                    return nestedValue
    return []


class PrintApiClient:
    """
    Talks to the order API.

    Handles:
    - Connection test
    - Listing logical printers
    - Pulling pending print jobs
    - Reporting terminal job status
    - Downloading referenced images and documents
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ) -> None:
        """
        Initialize the API client.

        Args:
            base_url: Order API base URL (e.g. https://pos.example.com)
            api_key: API key sent in the X-TABLETRACK-KEY header
            timeout: Request timeout in seconds
            session: Optional pre-configured requests session
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key.strip()
        self.timeout = timeout
        self._session = session or requests.Session()
        log.debug("Order API client for %s (key %s)", self.base_url, mask_api_key(self.api_key))

    def _headers(self) -> Dict[str, str]:
        return {
            API_KEY_HEADER: self.api_key,
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = self._url(path)
        try:
            response = self._session.request(
                method,
                url,
                headers=self._headers(),
                timeout=self.timeout,
                **kwargs,
            )
        except requests.Timeout as error:
            raise TransportError(f"{method} {url} timed out: {error}") from error
        except requests.RequestException as error:
            raise TransportError(f"{method} {url} failed: {error}") from error

        if response.status_code >= 400:
            body = (response.text or "")[:500]
            raise TransportError(
                f"API returned error {response.status_code}: {body}",
                status_code=response.status_code,
            )
        return response

    def _json(self, response: requests.Response) -> Any:
        try:
            return response.json()
        except ValueError as error:
            raise TransportError(f"Failed to parse response as JSON: {error}") from error

    def test_connection(self) -> bool:
        """Return True when the printers endpoint answers with a success status."""
        try:
            self._request("GET", PRINTERS_PATH)
        except TransportError as error:
            log.warning("Connection test against %s failed: %s", self.base_url, error)
            return False
        return True

    def fetch_printers(self) -> List[ApiPrinter]:
        response = self._request("GET", PRINTERS_PATH)
        items = extract_items(self._json(response), ("data", "printers"))
        printers = [ApiPrinter.from_api(item) for item in items if isinstance(item, Mapping)]
        log.info("Found %d printers from API", len(printers))
        return printers

    def fetch_pending_jobs(self) -> List[Job]:
        """
        Pull the current job list.

        Returns:
            Parsed jobs. Entries without an id are dropped.

        Raises:
            TransportError: network failure, HTTP error status or unreadable body
        """
        response = self._request("GET", PULL_JOBS_PATH)
        items = extract_items(self._json(response), ("data", "jobs"))
        jobs = [job for job in (Job.from_api(item) for item in items) if job is not None]
        log.debug("Poll response status: %d, jobs: %d", response.status_code, len(jobs))
        return jobs

    def report_job_status(
        self,
        job_id: Union[int, str],
        status: Union[JobStatus, str],
        reason: Optional[str] = None,
    ) -> None:
        """
        Send the terminal status of a job.

        Raises:
            TransportError: the update could not be delivered
        """
        statusValue = status.value if isinstance(status, JobStatus) else str(status)
        payload: Dict[str, Any] = {"status": statusValue}
        if reason:
            payload["reason"] = reason
        self._request("PATCH", JOB_STATUS_PATH.format(job_id=job_id), json=payload)
        log.info("Reported job #%s as %s", job_id, statusValue)

    def download(self, url: str, *, timeout: Optional[float] = None) -> bytes:
        """Fetch raw bytes from an absolute URL referenced by a job."""
        try:
            response = self._session.get(url, timeout=timeout or self.timeout)
        except requests.RequestException as error:
            raise TransportError(f"Failed to download {url}: {error}") from error
        if response.status_code >= 400:
            raise TransportError(
                f"Failed to download {url}: HTTP {response.status_code}",
                status_code=response.status_code,
            )
        return response.content

    def close(self) -> None:
        self._session.close()


def mask_api_key(api_key: Optional[str]) -> str:
    """Mask API key for logging, showing only first and last few characters."""
    if not api_key or len(api_key) <= 10:
        return "***"
    return f"{api_key[:5]}...{api_key[-5:]}"


__all__ = [
    "API_KEY_HEADER",
    "ApiPrinter",
    "PrintApiClient",
    "extract_items",
    "mask_api_key",
]
