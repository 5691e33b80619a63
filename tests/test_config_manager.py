"""Unit tests for ConfigManager."""

from __future__ import annotations

import json
import os
import stat
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from printagent.config_manager import DEFAULT_POLLING_INTERVAL_MS, ConfigManager


class TestConfigManager(unittest.TestCase):
    def setUp(self) -> None:
        self.tempDir = tempfile.TemporaryDirectory()
        self.configPath = Path(self.tempDir.name) / "agent" / "config.json"
        self.envPatcher = patch.dict(os.environ, {}, clear=False)
        self.envPatcher.start()
        for key in ("PRINTAGENT_DOMAIN_URL", "PRINTAGENT_API_KEY", "PRINTAGENT_UPDATE_FEED_URL"):
            os.environ.pop(key, None)

    def tearDown(self) -> None:
        self.envPatcher.stop()
        self.tempDir.cleanup()

    def test_defaults_without_file(self) -> None:
        manager = ConfigManager(self.configPath)
        self.assertFalse(manager.is_configured())
        self.assertIsNone(manager.get_domain_url())
        self.assertEqual(manager.get_printer_mappings(), {})
        self.assertFalse(manager.open_drawer_after_print())
        self.assertEqual(manager.get_drawer_pin(), 0)
        self.assertEqual(manager.get_polling_interval_ms(), DEFAULT_POLLING_INTERVAL_MS)

    def test_save_and_reload_round_trip(self) -> None:
        manager = ConfigManager(self.configPath)
        manager.set_domain_url("pos.example.com/")
        manager.set_api_key("  tt_live_0123456789abcdef  ")
        manager.set_printer_mapping("Kitchen", "EPSON_TM_T20")
        manager.set_open_drawer_after_print(True)
        manager.set_drawer_pin(1)
        manager.set_polling_interval_ms(5000)
        self.assertTrue(manager.save())

        reloaded = ConfigManager(self.configPath)
        self.assertEqual(reloaded.get_domain_url(), "https://pos.example.com")
        self.assertEqual(reloaded.get_api_key(), "tt_live_0123456789abcdef")
        self.assertEqual(reloaded.get_printer_mapping("Kitchen"), "EPSON_TM_T20")
        self.assertTrue(reloaded.open_drawer_after_print())
        self.assertEqual(reloaded.get_drawer_pin(), 1)
        self.assertEqual(reloaded.get_polling_interval_ms(), 5000)
        self.assertTrue(reloaded.is_configured())

        with self.configPath.open("r", encoding="utf-8") as handle:
            stored = json.load(handle)
        self.assertEqual(stored["printerMappings"], {"Kitchen": "EPSON_TM_T20"})
        self.assertEqual(stored["pollingInterval"], 5000)

    @unittest.skipIf(os.name == "nt", "POSIX permissions only")
    def test_saved_file_is_owner_only(self) -> None:
        manager = ConfigManager(self.configPath)
        manager.set_api_key("secret")
        manager.save()
        mode = stat.S_IMODE(os.stat(self.configPath).st_mode)
        self.assertEqual(mode, stat.S_IRUSR | stat.S_IWUSR)

    def test_invalid_json_falls_back_to_defaults(self) -> None:
        self.configPath.parent.mkdir(parents=True)
        self.configPath.write_text("{not json", encoding="utf-8")
        manager = ConfigManager(self.configPath)
        self.assertEqual(manager.to_dict(), {})

    def test_environment_fallbacks(self) -> None:
        os.environ["PRINTAGENT_DOMAIN_URL"] = "https://env.example"
        os.environ["PRINTAGENT_API_KEY"] = "env-key"
        manager = ConfigManager(self.configPath)
        self.assertEqual(manager.get_domain_url(), "https://env.example")
        self.assertEqual(manager.get_api_key(), "env-key")

    def test_file_value_wins_over_environment(self) -> None:
        os.environ["PRINTAGENT_API_KEY"] = "env-key"
        manager = ConfigManager(self.configPath)
        manager.set_api_key("file-key")
        self.assertEqual(manager.get_api_key(), "file-key")

    def test_mapping_removal(self) -> None:
        manager = ConfigManager(self.configPath)
        manager.set_printer_mapping("Kitchen", "EPSON")
        manager.set_printer_mapping("Bar", "STAR")
        self.assertTrue(manager.remove_printer_mapping("Kitchen"))
        self.assertFalse(manager.remove_printer_mapping("Kitchen"))
        manager.set_printer_mapping("Bar", "")
        self.assertEqual(manager.get_printer_mappings(), {})
        self.assertIsNone(manager.get_printer_mapping(None))

    def test_mappings_are_returned_as_copy(self) -> None:
        manager = ConfigManager(self.configPath)
        manager.set_printer_mapping("Kitchen", "EPSON")
        mappings = manager.get_printer_mappings()
        mappings["Kitchen"] = "changed"
        self.assertEqual(manager.get_printer_mapping("Kitchen"), "EPSON")

    def test_drawer_pin_validation(self) -> None:
        manager = ConfigManager(self.configPath)
        with self.assertRaises(ValueError):
            manager.set_drawer_pin(3)

    def test_polling_interval_has_floor(self) -> None:
        manager = ConfigManager(self.configPath)
        manager.set_polling_interval_ms(200)
        self.assertEqual(manager.get_polling_interval_ms(), 1000)
        manager.set("pollingInterval", "garbage")
        self.assertEqual(manager.get_polling_interval_ms(), DEFAULT_POLLING_INTERVAL_MS)

    def test_masked_api_key(self) -> None:
        manager = ConfigManager(self.configPath)
        self.assertEqual(manager.get_masked_api_key(), "")
        manager.set_api_key("short")
        self.assertEqual(manager.get_masked_api_key(), "***")
        manager.set_api_key("tt_live_0123456789abcdef")
        self.assertEqual(manager.get_masked_api_key(), "tt_live_0123***")

    def test_update_feed_url_defaults_to_domain(self) -> None:
        manager = ConfigManager(self.configPath)
        self.assertIsNone(manager.get_update_feed_url())
        manager.set_domain_url("https://pos.example.com")
        self.assertEqual(manager.get_update_feed_url(), "https://pos.example.com/vopecsprinter/update")
        manager.set("updateFeedUrl", "https://updates.example/feed/")
        self.assertEqual(manager.get_update_feed_url(), "https://updates.example/feed")

    def test_config_path_from_environment(self) -> None:
        override = Path(self.tempDir.name) / "override.json"
        with patch.dict(os.environ, {"PRINTAGENT_CONFIG": str(override)}):
            manager = ConfigManager()
        self.assertEqual(manager.config_path, override)


if __name__ == "__main__":
    unittest.main()
