"""Self-update client: ask the update feed for a newer build and download it."""

from __future__ import annotations

import logging
import os
import platform
import re
import threading
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple, Union

import requests

from .errors import PrintAgentError, TransportError

log = logging.getLogger(__name__)

CHECK_TIMEOUT_SECONDS = 15
DOWNLOAD_TIMEOUT_SECONDS = 60
DEFAULT_CHUNK_SIZE = 64 * 1024

_ARCH_ALIASES = {
    "arm64": "aarch64",
    "aarch64": "aarch64",
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "x64": "x86_64",
}

_LEADING_DIGITS = re.compile(r"^\s*(\d+)")


class DownloadCancelled(PrintAgentError):
    """Raised to the consumer of an UpdateDownload after cancel()."""


def detect_platform(system: Optional[str] = None, machine: Optional[str] = None) -> Tuple[str, str]:
    """Return the ``(target, arch)`` pair used in update feed paths."""
    systemName = (system or platform.system()).lower()
    if systemName.startswith("win"):
        target = "windows"
    elif systemName == "darwin":
        target = "darwin"
    else:
        target = "linux"
    machineName = (machine or platform.machine()).lower()
    return target, _ARCH_ALIASES.get(machineName, machineName)


def _version_parts(version: str) -> List[int]:
    normalized = version.strip().lstrip("vV")
    parts = []
    for segment in normalized.split("."):
        match = _LEADING_DIGITS.match(segment)
        parts.append(int(match.group(1)) if match else 0)
    return parts


def is_newer(latest: str, current: str) -> bool:
    latestParts = _version_parts(latest)
    currentParts = _version_parts(current)
    width = max(len(latestParts), len(currentParts))
    latestParts += [0] * (width - len(latestParts))
    currentParts += [0] * (width - len(currentParts))
    return latestParts > currentParts


@dataclass(frozen=True)
class UpdateDescriptor:
    """One platform's entry from the update feed."""
    platform_key: str
    version: str
    notes: str
    pub_date: str
    url: str
    signature: str

    @classmethod
    def from_feed(cls, payload: dict, key: str) -> "UpdateDescriptor":
        platforms = payload.get("platforms") or {}
        entry = platforms.get(key)
        if not isinstance(entry, dict) or not entry.get("url"):
            raise TransportError(f"Update feed has no artifact for {key}")
        return cls(
            platform_key=key,
            version=str(payload.get("version", "")),
            notes=str(payload.get("notes", "")),
            pub_date=str(payload.get("pub_date", "")),
            url=str(entry["url"]),
            signature=str(entry.get("signature", "")),
        )


def check_for_update(
    feed_url: str,
    current_version: str,
    *,
    system: Optional[str] = None,
    machine: Optional[str] = None,
    session: Optional[requests.Session] = None,
) -> Optional[UpdateDescriptor]:
    """
    Ask the feed whether a newer build exists for this machine.

    Returns:
        The descriptor, or None when the feed answers 204 or offers nothing newer

    Raises:
        TransportError: the feed could not be reached or answered badly
    """
    target, arch = detect_platform(system, machine)
    url = f"{feed_url.rstrip('/')}/{target}/{arch}/{current_version}"
    http = session or requests
    try:
        response = http.get(url, timeout=CHECK_TIMEOUT_SECONDS)
    except requests.RequestException as error:
        raise TransportError(f"Failed to check for updates: {error}") from error

    if response.status_code == 204:
        log.info("No update available (current: %s)", current_version)
        return None
    if response.status_code >= 400:
        raise TransportError(
            f"Update feed returned {response.status_code}",
            status_code=response.status_code,
        )
    try:
        payload = response.json()
    except ValueError as error:
        raise TransportError(f"Failed to parse update info: {error}") from error

    descriptor = UpdateDescriptor.from_feed(payload, f"{target}-{arch}")
    if not is_newer(descriptor.version, current_version):
        log.info("Feed offered %s which is not newer than %s", descriptor.version, current_version)
        return None
    log.info("Update available: %s -> %s", current_version, descriptor.version)
    return descriptor


@dataclass(frozen=True)
class DownloadStarted:
    content_length: Optional[int]


@dataclass(frozen=True)
class DownloadProgress:
    chunk_length: int
    downloaded: int
    content_length: Optional[int]


@dataclass(frozen=True)
class DownloadFinished:
    path: str


DownloadEvent = Union[DownloadStarted, DownloadProgress, DownloadFinished]


class UpdateDownload:
    """
    A cancellable download of an update artifact.

    Iterating yields DownloadStarted, then DownloadProgress per chunk, then
    DownloadFinished. Nothing is fetched until iteration begins. The file is
    written to ``<destination>.part`` and renamed on completion; after
    cancel() the partial file is removed and the iterator raises
    DownloadCancelled.
    """

    def __init__(
        self,
        url: str,
        destination: str,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.url = url
        self.destination = destination
        self.chunk_size = max(1, int(chunk_size))
        self._session = session or requests.Session()
        self._cancelled = threading.Event()
        self._consumed = False

    @property
    def partial_path(self) -> str:
        return f"{self.destination}.part"

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def __iter__(self) -> Iterator[DownloadEvent]:
        if self._consumed:
            raise RuntimeError("UpdateDownload can only be consumed once")
        self._consumed = True
        return self._events()

    def _remove_partial(self) -> None:
        try:
            os.remove(self.partial_path)
        except FileNotFoundError:
            pass

    def _events(self) -> Iterator[DownloadEvent]:
        if self.cancelled:
            raise DownloadCancelled(f"Download of {self.url} cancelled")

        try:
            response = self._session.get(self.url, stream=True, timeout=DOWNLOAD_TIMEOUT_SECONDS)
        except requests.RequestException as error:
            raise TransportError(f"Failed to download update: {error}") from error

        try:
            if response.status_code >= 400:
                raise TransportError(
                    f"Failed to download update: HTTP {response.status_code}",
                    status_code=response.status_code,
                )
            header = response.headers.get("Content-Length")
            contentLength = int(header) if header and header.isdigit() else None

            directory = os.path.dirname(os.path.abspath(self.destination))
            os.makedirs(directory, exist_ok=True)

            yield DownloadStarted(contentLength)
            downloaded = 0
            completed = False
            try:
                with open(self.partial_path, "wb") as handle:
                    for chunk in response.iter_content(chunk_size=self.chunk_size):
                        if self.cancelled:
                            raise DownloadCancelled(f"Download of {self.url} cancelled")
                        if not chunk:
                            continue
                        handle.write(chunk)
                        downloaded += len(chunk)
                        yield DownloadProgress(len(chunk), downloaded, contentLength)
                if self.cancelled:
                    raise DownloadCancelled(f"Download of {self.url} cancelled")
                os.replace(self.partial_path, self.destination)
                completed = True
            except requests.RequestException as error:
                raise TransportError(f"Update download interrupted: {error}") from error
            finally:
                if not completed:
                    self._remove_partial()
        finally:
            response.close()

        log.info("Downloaded update to %s (%d bytes)", self.destination, downloaded)
        yield DownloadFinished(self.destination)


__all__ = [
    "DownloadCancelled",
    "DownloadFinished",
    "DownloadProgress",
    "DownloadStarted",
    "UpdateDescriptor",
    "UpdateDownload",
    "check_for_update",
    "detect_platform",
    "is_newer",
]
