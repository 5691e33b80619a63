"""Print backends: render payloads to ESC/POS and hand them to the OS spooler."""

from __future__ import annotations

import logging
import os
import subprocess
import sys
import tempfile
from typing import Any, Callable, List, Optional, Protocol

import requests

from . import receipt
from .errors import DrawerError, PrintError, TransportError
from .jobs import (
    DocumentPayload,
    ImagePayload,
    ImageUrlPayload,
    MarkupPayload,
    Payload,
    TextPayload,
)
from .markup import html_to_text

log = logging.getLogger(__name__)

SPOOLER_TIMEOUT_SECONDS = 60
DOWNLOAD_TIMEOUT_SECONDS = 30
RAW_DOCUMENT_NAME = "printagent"


class PrintBackend(Protocol):
    """What the dispatcher needs from a printer transport."""

    def print(self, device: str, payload: Payload) -> None:
        """Print one copy of *payload*. Raises PrintError."""

    def open_drawer(self, device: str, pin: int) -> None:
        """Kick the cash drawer attached to *device*. Raises DrawerError."""


def _http_download(url: str) -> bytes:
    try:
        response = requests.get(url, timeout=DOWNLOAD_TIMEOUT_SECONDS)
        response.raise_for_status()
    except requests.RequestException as error:
        raise TransportError(f"Failed to download {url}: {error}") from error
    return response.content


def _is_windows(system: str) -> bool:
    return system.startswith("win")


def _win32print() -> Any:
    try:
        import win32print  # type: ignore
    except ImportError as error:
        raise PrintError("Printing on Windows requires pywin32 (win32print)") from error
    return win32print


class SystemPrintBackend:
    """
    Raw ESC/POS printing through the operating system's print queue.

    Uses ``lp -o raw`` on macOS and Linux (CUPS) and a RAW document through
    ``win32print`` on Windows.
    """

    def __init__(
        self,
        *,
        max_width: int = receipt.MAX_WIDTH_80MM,
        downloader: Optional[Callable[[str], bytes]] = None,
        system: Optional[str] = None,
    ) -> None:
        self.max_width = max_width
        self._download = downloader or _http_download
        self._system = (system or sys.platform).lower()

    def render(self, payload: Payload) -> bytes:
        """Turn one payload into the bytes sent to the printer."""
        if isinstance(payload, ImagePayload):
            return receipt.base64_image_job(payload.data, self.max_width)
        if isinstance(payload, ImageUrlPayload):
            return receipt.image_bytes_job(self._fetch(payload.url), self.max_width)
        if isinstance(payload, DocumentPayload):
            if payload.url is None:
                raise PrintError("inline documents cannot be rendered")
            return receipt.document_notice(len(self._fetch(payload.url)))
        if isinstance(payload, MarkupPayload):
            return receipt.text_job(html_to_text(payload.html))
        if isinstance(payload, TextPayload):
            return receipt.text_job(payload.content)
        raise PrintError(f"Unsupported payload {type(payload).__name__}")

    def _fetch(self, url: str) -> bytes:
        try:
            return self._download(url)
        except TransportError as error:
            raise PrintError(str(error)) from error

    def print(self, device: str, payload: Payload) -> None:
        self.print_raw(device, self.render(payload))

    def open_drawer(self, device: str, pin: int) -> None:
        try:
            self.print_raw(device, receipt.drawer_kick(pin))
        except PrintError as error:
            raise DrawerError(f"Failed to open drawer on {device}: {error}") from error

    def cut_paper(self, device: str) -> None:
        self.print_raw(device, receipt.cut_paper())

    def print_test_page(self, device: str) -> None:
        self.print_raw(device, receipt.diagnostic_page())

    def print_raw(self, device: str, data: bytes) -> None:
        """
        Submit raw bytes to the spooler.

        Args:
            device: Local printer (queue) name
            data: ESC/POS bytes

        Raises:
            PrintError: the spooler rejected the job
        """
        if not device:
            raise PrintError("No printer device given")
        log.debug("Spooling %d bytes to %s", len(data), device)
        if _is_windows(self._system):
            self._write_windows(device, data)
        else:
            self._write_cups(device, data)
        log.info("Sent %d bytes to %s", len(data), device)

    def _write_cups(self, device: str, data: bytes) -> None:
        handle, path = tempfile.mkstemp(prefix="printagent_", suffix=".bin")
        command = ["lp", "-d", device, "-o", "raw", path]
        try:
            with os.fdopen(handle, "wb") as tempFile:
                tempFile.write(data)
            try:
                result = subprocess.run(
                    command,
                    capture_output=True,
                    text=True,
                    timeout=SPOOLER_TIMEOUT_SECONDS,
                )
            except (OSError, subprocess.TimeoutExpired) as error:
                raise PrintError(f"Failed to execute lp: {error}") from error
        finally:
            try:
                os.remove(path)
            except OSError:
                log.debug("Could not remove spool file %s", path)

        if result.returncode != 0:
            stderr = (result.stderr or result.stdout or "").strip()
            raise PrintError(f"lp command failed: {stderr}")

    def _write_windows(self, device: str, data: bytes) -> None:
        win32print = _win32print()
        try:
            printerHandle = win32print.OpenPrinter(device)
        except win32print.error as error:
            raise PrintError(f"Failed to open printer {device}: {error}") from error
        try:
            win32print.StartDocPrinter(printerHandle, 1, (RAW_DOCUMENT_NAME, None, "RAW"))
            try:
                win32print.StartPagePrinter(printerHandle)
                win32print.WritePrinter(printerHandle, data)
                win32print.EndPagePrinter(printerHandle)
            finally:
                win32print.EndDocPrinter(printerHandle)
        except win32print.error as error:
            raise PrintError(f"Failed to write to printer {device}: {error}") from error
        finally:
            win32print.ClosePrinter(printerHandle)

    def list_printers(self) -> List[str]:
        """Names of the printers known to the local spooler."""
        if _is_windows(self._system):
            win32print = _win32print()
            flags = win32print.PRINTER_ENUM_LOCAL | win32print.PRINTER_ENUM_CONNECTIONS
            try:
                # level 1 entries are (flags, description, name, comment)
                return [entry[2] for entry in win32print.EnumPrinters(flags)]
            except win32print.error as error:
                raise PrintError(f"Failed to enumerate printers: {error}") from error

        try:
            result = subprocess.run(["lpstat", "-p"], capture_output=True, text=True, timeout=15)
        except (OSError, subprocess.TimeoutExpired) as error:
            raise PrintError(f"Failed to execute lpstat: {error}") from error
        if result.returncode != 0:
            # lpstat exits non-zero when no printers are configured
            log.warning("lpstat returned %d: %s", result.returncode, result.stderr.strip())
            return []

        printers: List[str] = []
        for line in result.stdout.splitlines():
            if line.startswith("printer "):
                parts = line.split()
                if len(parts) > 1:
                    printers.append(parts[1])
        return printers

    def clear_jobs(self, device: str) -> None:
        """Cancel every queued job for *device*."""
        if _is_windows(self._system):
            self._clear_windows(device)
            return
        try:
            result = subprocess.run(["cancel", "-a", device], capture_output=True, text=True, timeout=30)
        except (OSError, subprocess.TimeoutExpired) as error:
            raise PrintError(f"Failed to execute cancel: {error}") from error
        if result.returncode != 0 and "no job" not in (result.stderr or ""):
            raise PrintError(f"cancel command failed: {result.stderr.strip()}")

    def _clear_windows(self, device: str) -> None:
        win32print = _win32print()
        try:
            printerHandle = win32print.OpenPrinter(device)
        except win32print.error as error:
            raise PrintError(f"Failed to open printer {device}: {error}") from error
        try:
            for job in win32print.EnumJobs(printerHandle, 0, -1, 1):
                win32print.SetJob(printerHandle, job["JobId"], 0, None, win32print.JOB_CONTROL_DELETE)
        except win32print.error as error:
            raise PrintError(f"Failed to clear queue for {device}: {error}") from error
        finally:
            win32print.ClosePrinter(printerHandle)


__all__ = ["PrintBackend", "SystemPrintBackend"]
