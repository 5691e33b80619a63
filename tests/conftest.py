from pathlib import Path
import sys

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from printagent.errors import DrawerError, PrintError, TransportError  # noqa: E402
from printagent.jobs import Job  # noqa: E402
from updatefeed.app import createApp  # noqa: E402
from updatefeed.resolver import FeedSettings  # noqa: E402


class FakeJobSource:
    def __init__(self, rawJobs=None, fetchError=None, reportError=None):
        self.rawJobs = list(rawJobs or [])
        self.fetchError = fetchError
        self.reportError = reportError
        self.fetchCalls = 0
        self.reports = []

    def fetch_pending_jobs(self):
        self.fetchCalls += 1
        if self.fetchError is not None:
            raise self.fetchError
        return [job for job in (Job.from_api(raw) for raw in self.rawJobs) if job is not None]

    def report_job_status(self, job_id, status, reason=None):
        self.reports.append((job_id, status.value, reason))
        if self.reportError is not None:
            raise self.reportError

    def download(self, url):
        raise TransportError(f"Failed to download {url}: offline")


class RecordingBackend:
    def __init__(self, failingDevices=(), failingJobContent=(), drawerError=False):
        self.failingDevices = set(failingDevices)
        self.failingJobContent = set(failingJobContent)
        self.drawerError = drawerError
        self.printCalls = []
        self.drawerCalls = []

    def print(self, device, payload):
        self.printCalls.append((device, payload))
        if device in self.failingDevices:
            raise PrintError(f"lp command failed: {device} is offline")
        if getattr(payload, "content", None) in self.failingJobContent:
            raise PrintError("paper out")

    def open_drawer(self, device, pin):
        self.drawerCalls.append((device, pin))
        if self.drawerError:
            raise DrawerError("drawer jammed")


class StaticConfig:
    def __init__(self, mappings=None, openDrawer=False, drawerPin=0):
        self.mappings = dict(mappings or {})
        self.openDrawer = openDrawer
        self.drawerPin = drawerPin

    def get_printer_mapping(self, printer_ref):
        if not printer_ref:
            return None
        return self.mappings.get(printer_ref)

    def open_drawer_after_print(self):
        return self.openDrawer

    def get_drawer_pin(self):
        return self.drawerPin


@pytest.fixture
def jobSource():
    return FakeJobSource()


@pytest.fixture
def backend():
    return RecordingBackend()


@pytest.fixture
def kitchenConfig():
    return StaticConfig({"Kitchen": "EPSON_TM_T20", "Bar": "STAR_TSP100"})


@pytest.fixture
def unreachableSource():
    return FakeJobSource(fetchError=TransportError("GET https://pos.example/api/print-jobs/pull-multiple failed"))


@pytest.fixture
def signatureDir(tmp_path):
    directory = tmp_path / "signatures"
    directory.mkdir()
    (directory / "darwin-aarch64.sig").write_text("dW50cnVzdGVkIGNvbW1lbnQ=\n", encoding="utf-8")
    (directory / "linux-x86_64.sig").write_text("bGludXggc2lnbmF0dXJl", encoding="utf-8")
    return directory


@pytest.fixture
def feedSettings(signatureDir):
    return FeedSettings(
        latestVersion="1.0.1",
        baseUrl="https://updates.example/releases",
        signatureDir=str(signatureDir),
    )


@pytest.fixture
def strictFeedSettings(signatureDir):
    return FeedSettings(
        latestVersion="1.0.1",
        baseUrl="https://updates.example/releases",
        signatureDir=str(signatureDir),
        requireSignature=True,
    )


@pytest.fixture
def feedApp(feedSettings):
    flaskApp = createApp(feedSettings)
    flaskApp.config["TESTING"] = True
    return flaskApp


@pytest.fixture
def feedClient(feedApp):
    return feedApp.test_client()
