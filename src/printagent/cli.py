"""Command-line interface for the receipt print agent."""

import argparse
import json
import logging
import os
import sys
import time
from pathlib import Path
from typing import List, Optional, Sequence

from rich.console import Console
from rich.progress import BarColumn, DownloadColumn, Progress, TextColumn, TransferSpeedColumn
from rich.table import Table

from . import __version__
from .api_client import PrintApiClient
from .config_manager import CONFIG_DIR, ConfigManager
from .dispatcher import PollingDispatcher
from .errors import PrintAgentError, TransportError
from .logbus import LogBus, installLogBusHandler
from .printer import SystemPrintBackend
from .updater import (
    DownloadCancelled,
    DownloadFinished,
    DownloadProgress,
    DownloadStarted,
    UpdateDownload,
    check_for_update,
)

console = Console()

defaultUpdatesDirectory = CONFIG_DIR / "updates"


def configureLogging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
    )


def parseArguments(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="printagent",
        description="Poll the order API for print jobs and send them to local receipt printers.",
    )
    parser.add_argument("--config", default=None, help="Path to config.json (default: ~/.printagent/config.json).")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    runParser = subparsers.add_parser("run", help="Start polling and block until Ctrl+C.")
    runParser.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Polling interval in milliseconds (default: configured pollingInterval).",
    )

    subparsers.add_parser("poll-once", help="Run a single poll cycle and print the result.")

    configParser = subparsers.add_parser("config", help="Show or change the agent configuration.")
    configSubparsers = configParser.add_subparsers(dest="configCommand", required=True)
    configSubparsers.add_parser("show", help="Show the configuration with the API key masked.")
    setParser = configSubparsers.add_parser("set", help="Change configuration values.")
    setParser.add_argument("--domainUrl", help="Order API base URL.")
    setParser.add_argument("--key", help="API key sent as X-TABLETRACK-KEY.")
    setParser.add_argument("--pollingInterval", type=int, help="Polling interval in milliseconds.")
    setParser.add_argument(
        "--openDrawerAfterPrint",
        choices=("on", "off"),
        help="Open the cash drawer after every successful job.",
    )
    setParser.add_argument("--drawerPin", type=int, choices=(0, 1), help="Drawer pin: 0 = pin 2, 1 = pin 5.")
    setParser.add_argument("--updateFeedUrl", help="Update feed base URL.")

    subparsers.add_parser("test-connection", help="Check the domain URL and API key against the order API.")
    subparsers.add_parser("printers", help="List system printers and API printers with their mappings.")

    mapParser = subparsers.add_parser("map", help="Map an API printer name to a local printer.")
    mapParser.add_argument("printerRef", help="Printer name as known to the order system.")
    mapParser.add_argument("device", help="Local printer (queue) name.")

    unmapParser = subparsers.add_parser("unmap", help="Remove a printer mapping.")
    unmapParser.add_argument("printerRef")

    testPrintParser = subparsers.add_parser("test-print", help="Print a test page on a mapped printer.")
    testPrintParser.add_argument("printerRef")

    testDrawerParser = subparsers.add_parser("test-drawer", help="Open the cash drawer on a mapped printer.")
    testDrawerParser.add_argument("printerRef")

    cutParser = subparsers.add_parser("cut", help="Feed and cut the paper on a mapped printer.")
    cutParser.add_argument("printerRef")

    clearParser = subparsers.add_parser("clear-queue", help="Cancel all queued jobs for a mapped printer.")
    clearParser.add_argument("printerRef")

    subparsers.add_parser("check-update", help="Ask the update feed for a newer version.")
    updateParser = subparsers.add_parser("update", help="Download the newest version if one exists.")
    updateParser.add_argument(
        "--outputDir",
        default=str(defaultUpdatesDirectory),
        help="Directory for downloaded update artifacts (default: ~/.printagent/updates).",
    )

    logsParser = subparsers.add_parser("logs", help="Show the most recent structured log entries.")
    logsParser.add_argument("--lines", type=int, default=50)
    logsParser.add_argument("--day", default=None, help="Day to read as YYYY-MM-DD (default: today).")

    return parser.parse_args(argv)


def loadConfig(arguments: argparse.Namespace) -> ConfigManager:
    return ConfigManager(Path(arguments.config) if arguments.config else None)


def buildApiClient(config: ConfigManager) -> PrintApiClient:
    domainUrl = config.get_domain_url()
    apiKey = config.get_api_key()
    if not domainUrl or not apiKey:
        raise PrintAgentError("Domain URL and API key must be configured first (printagent config set).")
    return PrintApiClient(domainUrl, apiKey)


def buildDispatcher(config: ConfigManager) -> PollingDispatcher:
    api = buildApiClient(config)
    backend = SystemPrintBackend(downloader=api.download)
    return PollingDispatcher(api, backend, config)


def requireMapping(config: ConfigManager, printerRef: str) -> str:
    device = config.get_printer_mapping(printerRef)
    if not device:
        raise PrintAgentError(f"No printer mapping for: {printerRef}")
    return device


def commandRun(config: ConfigManager, arguments: argparse.Namespace) -> int:
    dispatcher = buildDispatcher(config)
    intervalMs = arguments.interval or config.get_polling_interval_ms()
    dispatcher.start(intervalMs)
    console.print(f"[green]Print service active[/green] (polling every {intervalMs} ms, Ctrl+C to stop)")
    try:
        while dispatcher.is_running():
            time.sleep(1.0)
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopping print service...[/yellow]")
    finally:
        dispatcher.stop()
    return 0


def commandPollOnce(config: ConfigManager) -> int:
    result = buildDispatcher(config).run_cycle()
    table = Table(title="Poll cycle")
    for column in ("fetched", "processed", "done", "failed", "skipped"):
        table.add_column(column, justify="right")
    table.add_row(*(str(value) for value in (
        result.fetched, result.processed, result.done, result.failed, result.skipped,
    )))
    console.print(table)
    for outcome in result.outcomes:
        if not outcome.ok:
            console.print(f"[red]Job #{outcome.job_id} failed:[/red] {outcome.reason}")
    if result.error:
        console.print(f"[red]Poll failed:[/red] {result.error}")
        return 1
    return 0


def commandConfig(config: ConfigManager, arguments: argparse.Namespace) -> int:
    if arguments.configCommand == "show":
        data = config.to_dict()
        if data.get("key"):
            data["key"] = config.get_masked_api_key()
        data.setdefault("pollingInterval", config.get_polling_interval_ms())
        data.setdefault("updateFeedUrl", config.get_update_feed_url())
        console.print_json(json.dumps(data))
        return 0

    changed = False
    if arguments.domainUrl is not None:
        config.set_domain_url(arguments.domainUrl)
        changed = True
    if arguments.key is not None:
        config.set_api_key(arguments.key)
        changed = True
    if arguments.pollingInterval is not None:
        config.set_polling_interval_ms(arguments.pollingInterval)
        changed = True
    if arguments.openDrawerAfterPrint is not None:
        config.set_open_drawer_after_print(arguments.openDrawerAfterPrint == "on")
        changed = True
    if arguments.drawerPin is not None:
        config.set_drawer_pin(arguments.drawerPin)
        changed = True
    if arguments.updateFeedUrl is not None:
        config.set("updateFeedUrl", arguments.updateFeedUrl.strip())
        changed = True

    if not changed:
        console.print("[yellow]Nothing to change.[/yellow]")
        return 1
    if not config.save():
        console.print(f"[red]Failed to save configuration to {config.config_path}[/red]")
        return 1
    console.print(f"[green]Configuration saved to {config.config_path}[/green]")
    return 0


def commandTestConnection(config: ConfigManager) -> int:
    api = buildApiClient(config)
    if api.test_connection():
        console.print(f"[green]Connected to {api.base_url}[/green]")
        return 0
    console.print(f"[red]Could not connect to {api.base_url}[/red]")
    return 1


def commandPrinters(config: ConfigManager) -> int:
    backend = SystemPrintBackend()
    systemPrinters = backend.list_printers()
    systemTable = Table(title="System printers")
    systemTable.add_column("Name")
    for name in systemPrinters:
        systemTable.add_row(name)
    console.print(systemTable)

    mappings = config.get_printer_mappings()
    apiTable = Table(title="API printers")
    apiTable.add_column("ID", justify="right")
    apiTable.add_column("Name")
    apiTable.add_column("Status")
    apiTable.add_column("Mapped to")
    if config.is_configured():
        for printer in buildApiClient(config).fetch_printers():
            displayName = printer.display_name
            mapped = mappings.get(displayName)
            apiTable.add_row(
                str(printer.id if printer.id is not None else "-"),
                displayName,
                printer.status or "-",
                mapped if mapped else "[yellow]not mapped[/yellow]",
            )
    else:
        console.print("[yellow]Order API not configured; showing local mappings only.[/yellow]")
        for printerRef, device in sorted(mappings.items()):
            apiTable.add_row("-", printerRef, "-", device)
    console.print(apiTable)
    return 0


def commandMap(config: ConfigManager, arguments: argparse.Namespace) -> int:
    config.set_printer_mapping(arguments.printerRef, arguments.device)
    if not config.save():
        return 1
    console.print(f"[green]{arguments.printerRef} -> {arguments.device}[/green]")
    return 0


def commandUnmap(config: ConfigManager, arguments: argparse.Namespace) -> int:
    if not config.remove_printer_mapping(arguments.printerRef):
        console.print(f"[yellow]No mapping for {arguments.printerRef}[/yellow]")
        return 1
    if not config.save():
        return 1
    console.print(f"[green]Removed mapping for {arguments.printerRef}[/green]")
    return 0


def commandTestPrint(config: ConfigManager, arguments: argparse.Namespace) -> int:
    device = requireMapping(config, arguments.printerRef)
    SystemPrintBackend().print_test_page(device)
    console.print(f"[green]Test page sent to {device}[/green]")
    return 0


def commandTestDrawer(config: ConfigManager, arguments: argparse.Namespace) -> int:
    device = requireMapping(config, arguments.printerRef)
    SystemPrintBackend().open_drawer(device, config.get_drawer_pin())
    console.print(f"[green]Drawer opened on {device}[/green]")
    return 0


def commandCut(config: ConfigManager, arguments: argparse.Namespace) -> int:
    device = requireMapping(config, arguments.printerRef)
    SystemPrintBackend().cut_paper(device)
    console.print(f"[green]Paper cut on {device}[/green]")
    return 0


def commandClearQueue(config: ConfigManager, arguments: argparse.Namespace) -> int:
    device = requireMapping(config, arguments.printerRef)
    SystemPrintBackend().clear_jobs(device)
    console.print(f"[green]Print queue cleared for {device}[/green]")
    return 0


def requireFeedUrl(config: ConfigManager) -> str:
    feedUrl = config.get_update_feed_url()
    if not feedUrl:
        raise PrintAgentError("No update feed URL: set updateFeedUrl or domainUrl first.")
    return feedUrl


def commandCheckUpdate(config: ConfigManager) -> int:
    descriptor = check_for_update(requireFeedUrl(config), __version__)
    if descriptor is None:
        console.print(f"[green]Up to date[/green] ({__version__})")
        return 0
    console.print(f"[cyan]Update available:[/cyan] {__version__} -> {descriptor.version}")
    if descriptor.notes:
        console.print(descriptor.notes)
    return 0


def commandUpdate(config: ConfigManager, arguments: argparse.Namespace) -> int:
    descriptor = check_for_update(requireFeedUrl(config), __version__)
    if descriptor is None:
        console.print(f"[green]Up to date[/green] ({__version__})")
        return 0

    fileName = descriptor.url.rstrip("/").rsplit("/", 1)[-1] or f"update-{descriptor.version}"
    destination = os.path.join(arguments.outputDir, fileName)
    download = UpdateDownload(descriptor.url, destination)
    try:
        with Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            DownloadColumn(),
            TransferSpeedColumn(),
            console=console,
        ) as progress:
            task = progress.add_task(f"Downloading {descriptor.version}", total=None)
            for event in download:
                if isinstance(event, DownloadStarted):
                    progress.update(task, total=event.content_length)
                elif isinstance(event, DownloadProgress):
                    progress.update(task, completed=event.downloaded)
                elif isinstance(event, DownloadFinished):
                    destination = event.path
    except KeyboardInterrupt:
        download.cancel()
        console.print("\n[yellow]Update download cancelled[/yellow]")
        return 1
    except DownloadCancelled:
        console.print("[yellow]Update download cancelled[/yellow]")
        return 1

    console.print(f"[green]Downloaded {descriptor.version} to {destination}[/green]")
    if not descriptor.signature:
        console.print("[yellow]The feed published no signature for this artifact.[/yellow]")
    return 0


def commandLogs(arguments: argparse.Namespace) -> int:
    records = LogBus().tail(arguments.lines, arguments.day)
    if not records:
        console.print("[yellow]No log entries.[/yellow]")
        return 0
    table = Table(title="Agent log")
    table.add_column("Time")
    table.add_column("Level")
    table.add_column("Category")
    table.add_column("Message")
    for record in records:
        stamp = time.strftime("%H:%M:%S", time.localtime(record.get("ts", 0)))
        table.add_row(stamp, str(record.get("level", "")), str(record.get("category", "")), str(record.get("message", "")))
    console.print(table)
    return 0


def dispatchCommand(arguments: argparse.Namespace) -> int:
    if arguments.command == "logs":
        return commandLogs(arguments)

    config = loadConfig(arguments)
    command = arguments.command
    if command == "run":
        return commandRun(config, arguments)
    if command == "poll-once":
        return commandPollOnce(config)
    if command == "config":
        return commandConfig(config, arguments)
    if command == "test-connection":
        return commandTestConnection(config)
    if command == "printers":
        return commandPrinters(config)
    if command == "map":
        return commandMap(config, arguments)
    if command == "unmap":
        return commandUnmap(config, arguments)
    if command == "test-print":
        return commandTestPrint(config, arguments)
    if command == "test-drawer":
        return commandTestDrawer(config, arguments)
    if command == "cut":
        return commandCut(config, arguments)
    if command == "clear-queue":
        return commandClearQueue(config, arguments)
    if command == "check-update":
        return commandCheckUpdate(config)
    if command == "update":
        return commandUpdate(config, arguments)
    raise PrintAgentError(f"Unknown command: {command}")


def main(argv: Optional[List[str]] = None) -> int:
    arguments = parseArguments(argv)
    configureLogging(arguments.verbose)
    installLogBusHandler()
    try:
        return dispatchCommand(arguments)
    except TransportError as error:
        logging.error("Order API request failed: %s", error)
        console.print(f"[red]{error}[/red]")
        return 2
    except (PrintAgentError, ValueError) as error:
        logging.error("%s", error)
        console.print(f"[red]{error}[/red]")
        return 1


if __name__ == "__main__":
    sys.exit(main())
