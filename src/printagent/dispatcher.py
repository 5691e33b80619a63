"""Polling dispatcher: pull pending jobs, print them, report the outcome."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence, Union

from .errors import ConfigurationError, DrawerError, TransportError, UnknownPayloadError
from .jobs import DocumentPayload, Job, JobStatus, Payload, TextPayload
from .printer import PrintBackend

log = logging.getLogger(__name__)

NO_MAPPING_REASON = "no printer mapping configured"
UNKNOWN_TYPE_REASON = "unknown job type"
STOP_JOIN_TIMEOUT_SECONDS = 5.0


class JobSource(Protocol):
    def fetch_pending_jobs(self) -> Sequence[Job]:
        ...

    def report_job_status(
        self,
        job_id: Union[int, str],
        status: JobStatus,
        reason: Optional[str] = None,
    ) -> None:
        ...


class DispatchConfig(Protocol):
    def get_printer_mapping(self, printer_ref: Optional[str]) -> Optional[str]:
        ...

    def open_drawer_after_print(self) -> bool:
        ...

    def get_drawer_pin(self) -> int:
        ...


@dataclass(frozen=True)
class JobOutcome:
    """Terminal result of one attempted job."""
    job_id: Union[int, str]
    status: JobStatus
    reason: Optional[str] = None
    device: Optional[str] = None
    prints: int = 0
    reported: bool = False
    drawer_opened: bool = False

    @property
    def ok(self) -> bool:
        return self.status is JobStatus.DONE


@dataclass
class CycleResult:
    fetched: int = 0
    processed: int = 0
    done: int = 0
    failed: int = 0
    skipped: int = 0
    error: Optional[str] = None
    outcomes: List[JobOutcome] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fetched": self.fetched,
            "processed": self.processed,
            "done": self.done,
            "failed": self.failed,
            "skipped": self.skipped,
            "error": self.error,
        }


@dataclass
class DispatchSession:
    """State of one start()/stop() run, owned by a single dispatcher."""
    interval_seconds: float
    stop_event: threading.Event = field(default_factory=threading.Event)
    thread: Optional[threading.Thread] = None
    started_at: float = field(default_factory=time.time)


def _inline_document_notice(job: Job) -> TextPayload:
    return TextPayload(content=f"PDF Document Received\nJob ID: {job.id}")


class PollingDispatcher:
    """
    Fixed-rate poll loop over the order API.

    One cycle fetches the job list and processes every pending job in order,
    one at a time. Every attempted job gets exactly one terminal status
    report. A failed fetch aborts only the current cycle; the next scheduled
    cycle is the retry.
    """

    def __init__(self, api: JobSource, backend: PrintBackend, config: DispatchConfig) -> None:
        self.api = api
        self.backend = backend
        self.config = config

        self._lock = threading.Lock()
        self._cycle_lock = threading.Lock()
        self._session: Optional[DispatchSession] = None

        self._cycles = 0
        self._jobs_done = 0
        self._jobs_failed = 0
        self._last_poll: Optional[float] = None
        self._last_error: Optional[str] = None

    def start(self, interval_ms: int) -> bool:
        """
        Start polling: first cycle immediately, then every ``interval_ms``.

        Returns:
            False when the dispatcher was already running (nothing changes)
        """
        with self._lock:
            if self._session is not None:
                log.debug("Dispatcher already running")
                return False
            session = DispatchSession(interval_seconds=max(0.0, interval_ms / 1000.0))
            session.thread = threading.Thread(
                target=self._worker_loop,
                args=(session,),
                name="PollingDispatcher",
                daemon=True,
            )
            self._session = session
            session.thread.start()
        log.info("Dispatcher started (interval: %dms)", interval_ms)
        return True

    def stop(self, timeout: Optional[float] = STOP_JOIN_TIMEOUT_SECONDS) -> None:
        """Prevent further cycles. A cycle already running is allowed to finish."""
        with self._lock:
            session = self._session
            self._session = None
        if session is None:
            return
        session.stop_event.set()
        thread = session.thread
        if thread is not None and thread is not threading.current_thread() and thread.is_alive():
            thread.join(timeout=timeout)
        log.info("Dispatcher stopped")

    def is_running(self) -> bool:
        with self._lock:
            return self._session is not None

    def _worker_loop(self, session: DispatchSession) -> None:
        while not session.stop_event.is_set():
            cycleStart = time.monotonic()
            try:
                self.run_cycle()
            except Exception as error:  # noqa: BLE001 - prevent thread crash
                log.exception("Unexpected error in dispatch cycle: %s", error)

            elapsed = time.monotonic() - cycleStart
            session.stop_event.wait(max(0.0, session.interval_seconds - elapsed))

    def run_cycle(self) -> CycleResult:
        """Fetch and process one batch of jobs. Cycles never overlap."""
        with self._cycle_lock:
            result = CycleResult()
            self._last_poll = time.time()
            self._cycles += 1

            try:
                jobs = list(self.api.fetch_pending_jobs())
            except TransportError as error:
                log.error("Poll failed: %s", error)
                self._last_error = str(error)
                result.error = str(error)
                return result

            result.fetched = len(jobs)
            log.info("Processing %d print jobs", len(jobs))

            for job in jobs:
                if not job.is_pending:
                    result.skipped += 1
                    continue
                outcome = self.process_job(job)
                result.outcomes.append(outcome)
                result.processed += 1
                if outcome.ok:
                    result.done += 1
                else:
                    result.failed += 1

            self._last_error = None
            log.debug("Cycle finished: %s", result.to_dict())
            return result

    def process_job(self, job: Job) -> JobOutcome:
        """Print one pending job, report its terminal status, then kick the drawer."""
        outcome = self._execute(job)

        reported = self._report(outcome)
        if outcome.ok:
            self._jobs_done += 1
            log.info("Job #%s completed successfully", job.id, extra=self._log_context(outcome))
        else:
            self._jobs_failed += 1
            log.error("Failed to process job #%s: %s", job.id, outcome.reason, extra=self._log_context(outcome))

        drawerOpened = False
        if outcome.ok and outcome.device and self.config.open_drawer_after_print():
            drawerOpened = self._open_drawer(outcome.device)

        return JobOutcome(
            job_id=outcome.job_id,
            status=outcome.status,
            reason=outcome.reason,
            device=outcome.device,
            prints=outcome.prints,
            reported=reported,
            drawer_opened=drawerOpened,
        )

    def _execute(self, job: Job) -> JobOutcome:
        device: Optional[str] = None
        prints = 0
        try:
            device = self.config.get_printer_mapping(job.printer_ref)
            if not device:
                log.warning("No printer mapping for: %s", job.printer_ref)
                raise ConfigurationError(NO_MAPPING_REASON)

            payload = self._printable_payload(job)
            log.info("Processing job #%s (type: %s) for printer: %s", job.id, job.job_type, device)
            for copy in range(job.copies):
                if copy:
                    log.info("Printing copy %d of %d", copy + 1, job.copies)
                self.backend.print(device, payload)
                prints += 1
        except UnknownPayloadError:
            log.warning("Unknown job type for job #%s", job.id)
            return JobOutcome(job.id, JobStatus.FAILED, UNKNOWN_TYPE_REASON, device, prints)
        except Exception as error:  # noqa: BLE001 - any job-level failure is terminal for the job
            reason = str(error) or type(error).__name__
            return JobOutcome(job.id, JobStatus.FAILED, reason, device, prints)
        return JobOutcome(job.id, JobStatus.DONE, None, device, prints)

    @staticmethod
    def _log_context(outcome: JobOutcome) -> Dict[str, Any]:
        return {"job_id": outcome.job_id, "device": outcome.device, "status": outcome.status.value}

    def _printable_payload(self, job: Job) -> Payload:
        payload = job.require_payload()
        if isinstance(payload, DocumentPayload) and payload.is_inline:
            log.warning("Inline PDF received for job #%s, printing document notice instead", job.id)
            return _inline_document_notice(job)
        return payload

    def _report(self, outcome: JobOutcome) -> bool:
        try:
            self.api.report_job_status(outcome.job_id, outcome.status, outcome.reason)
        except Exception as error:  # noqa: BLE001 - status reports are best effort
            log.warning("Failed to report job #%s as %s: %s", outcome.job_id, outcome.status.value, error)
            return False
        return True

    def _open_drawer(self, device: str) -> bool:
        pin = self.config.get_drawer_pin()
        log.info("Opening cash drawer on %s (pin %d)", device, pin)
        try:
            self.backend.open_drawer(device, pin)
        except DrawerError as error:
            log.error("Failed to open drawer: %s", error)
            return False
        except Exception as error:  # noqa: BLE001 - drawer never changes the job outcome
            log.exception("Unexpected drawer failure on %s: %s", device, error)
            return False
        return True

    def stats(self) -> Dict[str, Any]:
        return {
            "running": self.is_running(),
            "cycles": self._cycles,
            "jobs_done": self._jobs_done,
            "jobs_failed": self._jobs_failed,
            "last_poll": self._last_poll,
            "last_error": self._last_error,
        }


__all__ = [
    "CycleResult",
    "DispatchSession",
    "JobOutcome",
    "NO_MAPPING_REASON",
    "PollingDispatcher",
    "UNKNOWN_TYPE_REASON",
]
