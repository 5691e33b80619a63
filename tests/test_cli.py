import json
from unittest.mock import patch

import pytest

from conftest import FakeJobSource, RecordingBackend
from printagent import cli
from printagent.config_manager import ConfigManager
from printagent.errors import TransportError
from printagent.updater import UpdateDescriptor


@pytest.fixture(autouse=True)
def noLogBus(monkeypatch):
    monkeypatch.setattr(cli, "installLogBusHandler", lambda: None)
    monkeypatch.delenv("PRINTAGENT_DOMAIN_URL", raising=False)
    monkeypatch.delenv("PRINTAGENT_API_KEY", raising=False)


@pytest.fixture
def configPath(tmp_path):
    return tmp_path / "config.json"


def runCli(configPath, *arguments):
    return cli.main(["--config", str(configPath), *arguments])


def test_config_set_and_show(configPath, capsys):
    assert runCli(
        configPath, "config", "set",
        "--domainUrl", "pos.example.com",
        "--key", "tt_live_0123456789abcdef",
        "--pollingInterval", "5000",
        "--openDrawerAfterPrint", "on",
        "--drawerPin", "1",
    ) == 0

    stored = json.loads(configPath.read_text(encoding="utf-8"))
    assert stored["domainUrl"] == "pos.example.com"
    assert stored["openDrawerAfterPrint"] is True
    assert stored["drawerPin"] == 1

    capsys.readouterr()
    assert runCli(configPath, "config", "show") == 0
    output = capsys.readouterr().out
    assert "tt_live_0123***" in output
    assert "0123456789abcdef" not in output


def test_config_set_without_values(configPath):
    assert runCli(configPath, "config", "set") == 1


def test_config_has_no_autostart_setting(configPath, capsys):
    with pytest.raises(SystemExit):
        runCli(configPath, "config", "set", "--autoStart", "on")
    capsys.readouterr()

    assert runCli(configPath, "config", "show") == 0
    assert "autoStart" not in capsys.readouterr().out


def test_map_and_unmap(configPath):
    assert runCli(configPath, "map", "Kitchen", "EPSON_TM_T20") == 0
    assert ConfigManager(configPath).get_printer_mapping("Kitchen") == "EPSON_TM_T20"

    assert runCli(configPath, "unmap", "Kitchen") == 0
    assert ConfigManager(configPath).get_printer_mappings() == {}
    assert runCli(configPath, "unmap", "Kitchen") == 1


def test_poll_once_requires_configuration(configPath):
    assert runCli(configPath, "poll-once") == 1


def test_poll_once_runs_a_cycle(configPath, monkeypatch):
    source = FakeJobSource([
        {"id": 1, "status": "pending", "printer_name": "Kitchen", "content": "A"},
        {"id": 2, "status": "pending", "printer_name": "Patio", "content": "B"},
    ])
    backend = RecordingBackend()
    monkeypatch.setattr(cli, "buildApiClient", lambda config: source)
    monkeypatch.setattr(cli, "SystemPrintBackend", lambda **kwargs: backend)
    runCli(configPath, "map", "Kitchen", "EPSON_TM_T20")

    assert runCli(configPath, "poll-once") == 0

    assert [report[:2] for report in source.reports] == [(1, "done"), (2, "failed")]
    assert len(backend.printCalls) == 1


def test_poll_once_reports_transport_failure(configPath, monkeypatch):
    source = FakeJobSource(fetchError=TransportError("connection refused"))
    monkeypatch.setattr(cli, "buildApiClient", lambda config: source)
    monkeypatch.setattr(cli, "SystemPrintBackend", lambda **kwargs: RecordingBackend())

    assert runCli(configPath, "poll-once") == 1


def test_test_print_uses_mapping(configPath):
    runCli(configPath, "map", "Kitchen", "EPSON_TM_T20")
    with patch.object(cli.SystemPrintBackend, "print_test_page") as printTestPage:
        assert runCli(configPath, "test-print", "Kitchen") == 0
    printTestPage.assert_called_once_with("EPSON_TM_T20")


def test_test_drawer_without_mapping(configPath):
    assert runCli(configPath, "test-drawer", "Unknown") == 1


def test_check_update(configPath, capsys):
    runCli(configPath, "config", "set", "--updateFeedUrl", "https://updates.example/feed")
    descriptor = UpdateDescriptor(
        platform_key="linux-x86_64",
        version="9.9.9",
        notes="Faster polling",
        pub_date="2025-01-01T00:00:00Z",
        url="https://updates.example/VopecsPrinter_9.9.9_amd64.AppImage.tar.gz",
        signature="c2ln",
    )
    with patch.object(cli, "check_for_update", return_value=descriptor) as checkForUpdate:
        assert runCli(configPath, "check-update") == 0
    assert checkForUpdate.call_args[0][0] == "https://updates.example/feed"
    assert "9.9.9" in capsys.readouterr().out


def test_check_update_transport_error(configPath):
    runCli(configPath, "config", "set", "--updateFeedUrl", "https://updates.example/feed")
    with patch.object(cli, "check_for_update", side_effect=TransportError("Update feed returned 500")):
        assert runCli(configPath, "check-update") == 2


def test_logs_without_entries(configPath, monkeypatch, tmp_path):
    monkeypatch.setenv("PRINTAGENT_LOG_DIR", str(tmp_path / "logs"))
    assert runCli(configPath, "logs") == 0
