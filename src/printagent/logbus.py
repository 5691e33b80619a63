"""Structured logging helpers shared across agent modules."""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

_LOG = logging.getLogger(__name__)

DEFAULT_LOG_FOLDER = os.path.expanduser("~/.printagent/logs")

CATEGORY_BY_MODULE = {
    "dispatcher": "dispatch",
    "printer": "printer",
    "receipt": "printer",
    "markup": "printer",
    "api_client": "api",
    "updater": "update",
    "config_manager": "config",
}

JOB_CONTEXT_KEYS = ("job_id", "device", "printer_ref", "status")


@dataclass
class LogEvent:
    ts: float
    level: str
    category: str
    event: str
    message: str
    ctx: Dict[str, Any]


class LogBus:
    """In-memory ring buffer plus daily JSONL files."""

    def __init__(self, maxMemory: int = 100, folder: Optional[str] = None) -> None:
        self._buffer: List[LogEvent] = []
        self._lock = threading.Lock()
        self._maxMemory = max(1, int(maxMemory))
        self._folder = folder or os.getenv("PRINTAGENT_LOG_DIR") or DEFAULT_LOG_FOLDER

    @property
    def folder(self) -> str:
        return self._folder

    def logPathFor(self, day: Optional[str] = None) -> str:
        return os.path.join(self._folder, (day or time.strftime("%Y-%m-%d")) + ".jsonl")

    def emit(self, level: str, category: str, event: str, message: str = "", **context: Any) -> None:
        normalizedLevel = level.upper()
        eventRecord = LogEvent(time.time(), normalizedLevel, category, event, message, dict(context))

        with self._lock:
            self._buffer.append(eventRecord)
            if len(self._buffer) > self._maxMemory:
                self._buffer = self._buffer[-self._maxMemory :]

        logPath = self.logPathFor()
        try:
            os.makedirs(self._folder, exist_ok=True)
            with open(logPath, "a", encoding="utf-8") as handle:
                handle.write(json.dumps(asdict(eventRecord), ensure_ascii=False, default=str) + "\n")
        except OSError:
            _LOG.debug("Failed to write structured log to %s", logPath, exc_info=True)

    def snapshot(self) -> List[LogEvent]:
        with self._lock:
            return list(self._buffer)

    def tail(self, lines: int = 50, day: Optional[str] = None) -> List[Dict[str, Any]]:
        """Read the last *lines* records of a day's file."""
        logPath = self.logPathFor(day)
        if not os.path.exists(logPath):
            return []
        records: List[Dict[str, Any]] = []
        with open(logPath, "r", encoding="utf-8") as handle:
            for rawLine in handle.readlines()[-max(1, int(lines)):]:
                try:
                    records.append(json.loads(rawLine))
                except json.JSONDecodeError:
                    continue
        return records


BUS = LogBus()


class LogBusHandler(logging.Handler):
    """Bridge standard logging records into the structured log bus."""

    def __init__(self, bus: Optional[LogBus] = None) -> None:
        super().__init__()
        self.setLevel(logging.NOTSET)
        self._bus = bus or BUS
        self._formatter = logging.Formatter()

    def emit(self, record: logging.LogRecord) -> None:
        if record.name.startswith(__name__):
            return

        try:
            category = self._resolveCategory(record)
            eventName = self._resolveEventName(record)
            message = record.getMessage()
            context = self._buildContext(record)
            self._bus.emit(record.levelname, category, eventName, message, **context)
        except Exception:  # noqa: BLE001 - logging handlers must not raise
            self.handleError(record)

    def _resolveCategory(self, record: logging.LogRecord) -> str:
        moduleName = record.name.rsplit(".", 1)[-1].lower()
        return CATEGORY_BY_MODULE.get(moduleName, "agent")

    def _resolveEventName(self, record: logging.LogRecord) -> str:
        if record.funcName:
            return record.funcName
        if record.name:
            return record.name.split(".")[-1]
        return "log"

    def _buildContext(self, record: logging.LogRecord) -> Dict[str, Any]:
        context: Dict[str, Any] = {
            "logger": record.name,
            "module": record.module,
            "line": record.lineno,
        }
        if record.threadName:
            context["thread"] = record.threadName
        if record.exc_info:
            context["exception"] = self._formatter.formatException(record.exc_info)
        # set through logging's extra= argument
        for key in JOB_CONTEXT_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                context[key] = value
        return context


def installLogBusHandler(bus: Optional[LogBus] = None) -> None:
    rootLogger = logging.getLogger()
    for handler in rootLogger.handlers:
        if isinstance(handler, LogBusHandler):
            return
    rootLogger.addHandler(LogBusHandler(bus))


__all__ = ["BUS", "LogBus", "LogEvent", "LogBusHandler", "installLogBusHandler"]
