"""Configuration manager for persistent agent settings."""

from __future__ import annotations

import json
import logging
import os
import stat
import threading
from pathlib import Path
from typing import Any, Dict, Optional

log = logging.getLogger(__name__)

# Default configuration directory
CONFIG_DIR = Path.home() / ".printagent"
CONFIG_FILE = CONFIG_DIR / "config.json"

DEFAULT_POLLING_INTERVAL_MS = 3000
MIN_POLLING_INTERVAL_MS = 1000
DEFAULT_UPDATE_FEED_PATH = "/vopecsprinter/update"


def _default_config_path() -> Path:
    override = os.getenv("PRINTAGENT_CONFIG", "").strip()
    if override:
        return Path(override).expanduser()
    return CONFIG_FILE


class ConfigManager:
    """Manages persistent configuration for the print agent.

    All reads and writes go through one re-entrant lock because the dispatcher
    thread reads printer mappings while the CLI may be changing them.
    """

    def __init__(self, config_path: Optional[Path] = None) -> None:
        """
        Initialize the configuration manager.

        Args:
            config_path: Optional path to the config file. Defaults to ~/.printagent/config.json
        """
        self.config_path = Path(config_path) if config_path else _default_config_path()
        self._config: Dict[str, Any] = {}
        self._lock = threading.RLock()
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from disk."""
        with self._lock:
            if not self.config_path.exists():
                log.info("Configuration file does not exist, using defaults")
                self._config = {}
                return

            try:
                with self.config_path.open("r", encoding="utf-8") as f:
                    loaded = json.load(f)
                    if isinstance(loaded, dict):
                        self._config = loaded
                        log.info("Configuration loaded from %s", self.config_path)
                    else:
                        log.warning("Invalid config format, using defaults")
                        self._config = {}
            except (OSError, json.JSONDecodeError) as error:
                log.error("Failed to load configuration: %s", error)
                self._config = {}

    def save(self) -> bool:
        """
        Save configuration to disk with secure permissions.

        Returns:
            True if save was successful, False otherwise
        """
        with self._lock:
            try:
                self.config_path.parent.mkdir(parents=True, exist_ok=True)

                with self.config_path.open("w", encoding="utf-8") as f:
                    json.dump(self._config, f, indent=2, sort_keys=True)

                # Owner read/write only; the file holds the API key
                if os.name != "nt":
                    os.chmod(self.config_path, stat.S_IRUSR | stat.S_IWUSR)

                log.info("Configuration saved successfully")
                return True
            except (OSError, TypeError) as error:
                log.error("Failed to save configuration: %s", error)
                return False

    def _get_string(self, key: str, env_key: Optional[str] = None) -> Optional[str]:
        with self._lock:
            value = self._config.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
        if env_key:
            env_value = os.getenv(env_key, "").strip()
            if env_value:
                return env_value
        return None

    def get_domain_url(self) -> Optional[str]:
        """
        Get the order API base URL.

        Returns:
            Base URL without trailing slash, or None when unset
        """
        domain_url = self._get_string("domainUrl", "PRINTAGENT_DOMAIN_URL")
        if not domain_url:
            return None
        if not domain_url.startswith("http://") and not domain_url.startswith("https://"):
            domain_url = f"https://{domain_url}"
        return domain_url.rstrip("/")

    def set_domain_url(self, domain_url: str) -> None:
        with self._lock:
            self._config["domainUrl"] = domain_url.strip()

    def get_api_key(self) -> Optional[str]:
        return self._get_string("key", "PRINTAGENT_API_KEY")

    def set_api_key(self, api_key: str) -> None:
        with self._lock:
            self._config["key"] = api_key.strip()

    def get_printer_mappings(self) -> Dict[str, str]:
        """Return a copy of the printerRef -> local device table."""
        with self._lock:
            mappings = self._config.get("printerMappings")
            if not isinstance(mappings, dict):
                return {}
            return {
                str(ref): str(device)
                for ref, device in mappings.items()
                if isinstance(device, str) and device.strip()
            }

    def get_printer_mapping(self, printer_ref: Optional[str]) -> Optional[str]:
        """
        Look up the local device for a logical printer name.

        Args:
            printer_ref: Printer name as known to the order system

        Returns:
            Local device name, or None when no mapping exists
        """
        if not printer_ref:
            return None
        return self.get_printer_mappings().get(printer_ref)

    def set_printer_mapping(self, printer_ref: str, device: str) -> None:
        with self._lock:
            mappings = self._config.get("printerMappings")
            if not isinstance(mappings, dict):
                mappings = {}
            if device and device.strip():
                mappings[printer_ref] = device.strip()
            else:
                mappings.pop(printer_ref, None)
            self._config["printerMappings"] = mappings

    def remove_printer_mapping(self, printer_ref: str) -> bool:
        with self._lock:
            mappings = self._config.get("printerMappings")
            if not isinstance(mappings, dict) or printer_ref not in mappings:
                return False
            del mappings[printer_ref]
            return True

    def open_drawer_after_print(self) -> bool:
        with self._lock:
            return bool(self._config.get("openDrawerAfterPrint", False))

    def set_open_drawer_after_print(self, enabled: bool) -> None:
        with self._lock:
            self._config["openDrawerAfterPrint"] = bool(enabled)

    def get_drawer_pin(self) -> int:
        with self._lock:
            value = self._config.get("drawerPin", 0)
        try:
            return int(value)
        except (TypeError, ValueError):
            return 0

    def set_drawer_pin(self, pin: int) -> None:
        if int(pin) not in (0, 1):
            raise ValueError("drawer pin must be 0 (pin 2) or 1 (pin 5)")
        with self._lock:
            self._config["drawerPin"] = int(pin)

    def get_polling_interval_ms(self) -> int:
        with self._lock:
            value = self._config.get("pollingInterval")
        try:
            interval = int(value) if value else DEFAULT_POLLING_INTERVAL_MS
        except (TypeError, ValueError):
            interval = DEFAULT_POLLING_INTERVAL_MS
        return max(MIN_POLLING_INTERVAL_MS, interval)

    def set_polling_interval_ms(self, interval_ms: int) -> None:
        with self._lock:
            self._config["pollingInterval"] = max(MIN_POLLING_INTERVAL_MS, int(interval_ms))

    def get_update_feed_url(self) -> Optional[str]:
        """Update feed base URL; defaults to the feed path on the order API host."""
        feed_url = self._get_string("updateFeedUrl", "PRINTAGENT_UPDATE_FEED_URL")
        if feed_url:
            return feed_url.rstrip("/")
        domain_url = self.get_domain_url()
        if not domain_url:
            return None
        return f"{domain_url}{DEFAULT_UPDATE_FEED_PATH}"

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._config[key] = value

    def is_configured(self) -> bool:
        """
        Check if the agent can talk to the order API.

        Returns:
            True if domain URL and API key are set, False otherwise
        """
        return bool(self.get_domain_url() and self.get_api_key())

    def get_masked_api_key(self) -> str:
        """
        Get a masked version of the API key for display.

        Returns:
            First 12 characters followed by ``***``, or empty string if not set
        """
        api_key = self.get_api_key()
        if not api_key:
            return ""
        if len(api_key) <= 12:
            return "***"
        return f"{api_key[:12]}***"

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return json.loads(json.dumps(self._config))

