"""Print job model and payload classification."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Union

from .errors import UnknownPayloadError

log = logging.getLogger(__name__)


class JobStatus(str, Enum):
    """Server-side job states. The agent only moves PENDING to DONE or FAILED."""
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class ImagePayload:
    """Inline base64 image, optionally with a ``data:`` URL prefix."""
    data: str
    kind = "image"


@dataclass(frozen=True)
class DocumentPayload:
    """A PDF document, either fetched from ``url`` or carried ``inline``."""
    url: Optional[str] = None
    inline: Optional[str] = None
    kind = "pdf"

    @property
    def is_inline(self) -> bool:
        return self.url is None


@dataclass(frozen=True)
class MarkupPayload:
    html: str
    kind = "html"


@dataclass(frozen=True)
class ImageUrlPayload:
    url: str
    kind = "url"


@dataclass(frozen=True)
class TextPayload:
    content: str
    kind = "content"


Payload = Union[ImagePayload, DocumentPayload, MarkupPayload, ImageUrlPayload, TextPayload]


def _text_field(raw: Mapping[str, Any], key: str) -> Optional[str]:
    value = raw.get(key)
    if isinstance(value, str) and value.strip():
        return value
    return None


def classify_payload(raw: Mapping[str, Any]) -> Payload:
    """Build the payload variant for a raw job.

    Several fields may be populated at once; the first match wins in the order
    image, pdf, html, image URL, text.

    Raises:
        UnknownPayloadError: none of the known payload fields is populated.
    """
    image = _text_field(raw, "image")
    if image is not None:
        return ImagePayload(data=image)

    pdf = _text_field(raw, "pdf")
    if pdf is not None:
        if pdf.startswith("http"):
            return DocumentPayload(url=pdf)
        return DocumentPayload(inline=pdf)

    html = _text_field(raw, "html")
    if html is not None:
        return MarkupPayload(html=html)

    imageUrl = _text_field(raw, "image_path") or _text_field(raw, "url")
    if imageUrl is not None:
        return ImageUrlPayload(url=imageUrl)

    content = _text_field(raw, "content")
    if content is not None:
        return TextPayload(content=content)

    raise UnknownPayloadError(raw.get("id"))


def _coerce_job_id(job_id: Any) -> Optional[Union[int, str]]:
    if job_id is None or isinstance(job_id, bool):
        return None
    if isinstance(job_id, int):
        return job_id
    normalized = str(job_id).strip()
    if not normalized:
        return None
    if normalized.isdigit():
        return int(normalized)
    return normalized


def _resolve_printer_ref(raw: Mapping[str, Any]) -> Optional[str]:
    for key in ("printer_name", "printerName"):
        candidate = _text_field(raw, key)
        if candidate:
            return candidate.strip()

    printer = raw.get("printer")
    if isinstance(printer, str) and printer.strip():
        return printer.strip()
    if isinstance(printer, Mapping):
        candidate = _text_field(printer, "name")
        if candidate:
            return candidate.strip()

    station = raw.get("station")
    if isinstance(station, Mapping):
        candidate = _text_field(station, "name")
        if candidate:
            return candidate.strip()
    return None


def _resolve_copies(raw: Mapping[str, Any]) -> int:
    candidate = raw.get("copies")
    if candidate is None:
        station = raw.get("station")
        if isinstance(station, Mapping):
            candidate = station.get("print_copies")
    try:
        copies = int(candidate) if candidate is not None else 1
    except (TypeError, ValueError):
        log.warning("Ignoring invalid copies value %r", candidate)
        return 1
    return max(1, copies)


def _resolve_status(raw: Mapping[str, Any]) -> Optional[str]:
    status = raw.get("status")
    if isinstance(status, str) and status.strip():
        return status.strip().lower()
    # only an explicit "pending" is ever acted on
    return None


@dataclass(frozen=True)
class Job:
    """A unit of print work fetched from the order API.

    ``payload`` is ``None`` when the job carried no printable field; the
    dispatcher reports such jobs as failed.
    """
    id: Union[int, str]
    status: Optional[str]
    printer_ref: Optional[str]
    payload: Optional[Payload]
    copies: int = 1
    created_at: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.status == JobStatus.PENDING.value

    @property
    def job_type(self) -> str:
        if self.payload is None:
            return "unknown"
        return self.payload.kind

    def require_payload(self) -> Payload:
        if self.payload is None:
            raise UnknownPayloadError(self.id)
        return self.payload

    @classmethod
    def from_api(cls, raw: Mapping[str, Any]) -> Optional["Job"]:
        """Build a Job from one element of the pull response.

        Returns ``None`` when the element has no usable id, since no status
        could ever be reported for it.
        """
        if not isinstance(raw, Mapping):
            log.warning("Skipping job entry that is not an object: %r", raw)
            return None

        jobId = _coerce_job_id(raw.get("id"))
        if jobId is None:
            log.warning("Skipping job without id: %s", {k: raw.get(k) for k in ("status", "printer_name")})
            return None

        try:
            payload: Optional[Payload] = classify_payload(raw)
        except UnknownPayloadError:
            payload = None

        return cls(
            id=jobId,
            status=_resolve_status(raw),
            printer_ref=_resolve_printer_ref(raw),
            payload=payload,
            copies=_resolve_copies(raw),
            created_at=raw.get("created_at") if isinstance(raw.get("created_at"), str) else None,
        )


__all__ = [
    "DocumentPayload",
    "ImagePayload",
    "ImageUrlPayload",
    "Job",
    "JobStatus",
    "MarkupPayload",
    "Payload",
    "TextPayload",
    "classify_payload",
]
