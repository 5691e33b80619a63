"""Receipt print agent: polls the order API and dispatches jobs to local printers."""

from importlib import import_module
from typing import Any

__version__ = "1.0.0"

__all__ = [
    "api_client",
    "cli",
    "config_manager",
    "dispatcher",
    "errors",
    "receipt",
    "jobs",
    "logbus",
    "markup",
    "printer",
    "updater",
]


def __getattr__(name: str) -> Any:
    """Lazily expose submodules to avoid circular import issues."""
    if name in __all__:
        lazyModule = import_module(f".{name}", __name__)
        globals()[name] = lazyModule
        return lazyModule
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> list[str]:
    """Include lazily exposed attributes in dir(printagent)."""
    return sorted(set(globals()) | set(__all__))
