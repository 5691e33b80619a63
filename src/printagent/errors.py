"""Error taxonomy shared by the dispatcher and its collaborators."""

from __future__ import annotations

from typing import Optional


class PrintAgentError(RuntimeError):
    """Base class for every error raised by the print agent."""


class TransportError(PrintAgentError):
    """Network or HTTP failure talking to the order API.

    Cycle-level when raised by the job fetch; the next scheduled cycle retries.
    """

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class ConfigurationError(PrintAgentError):
    """Missing or invalid local configuration, such as a printer mapping."""


class PrintError(PrintAgentError):
    """The printer transport rejected or failed a print action."""


class DrawerError(PrintAgentError):
    """Opening the cash drawer failed. Never changes a job's outcome."""


class UnknownPayloadError(PrintAgentError):
    """A job carries none of the payload fields the agent knows how to print."""

    def __init__(self, job_id: object = None) -> None:
        self.job_id = job_id
        super().__init__("unknown job type")


__all__ = [
    "ConfigurationError",
    "DrawerError",
    "PrintAgentError",
    "PrintError",
    "TransportError",
    "UnknownPayloadError",
]
