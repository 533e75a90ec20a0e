import datetime
import logging

import pytest
import pytz

from signin_sentry.config import MonitorConfig
from signin_sentry.models import Event


def make_event(hhmm, principal, ip, resource="Microsoft Graph", status="failure", code="53003"):
    hour, minute = (int(part) for part in hhmm.split(":"))
    return Event(
        timestamp=datetime.datetime(2024, 5, 1, hour, minute, tzinfo=pytz.utc),
        principal=principal,
        source_ip=ip,
        conditional_access_status=status,
        error_code=code,
        resource_name=resource,
    )


class FakeResponse:
    def __init__(self, status_code=200, body=None, headers=None, text=""):
        self.status_code = status_code
        self._body = body
        self.headers = headers or {}
        self.text = text

    def json(self):
        if self._body is None:
            raise ValueError("No JSON object could be decoded")
        return self._body


class FakeProcess:
    def __init__(self, command, returncode=0):
        self.command = command
        self.pid = 4242
        self.returncode = returncode

    def wait(self, timeout=None):
        return self.returncode


class FakePopen:
    """Records every command instead of starting a process."""

    def __init__(self, returncode=0, error=None):
        self.commands = []
        self.returncode = returncode
        self.error = error

    def __call__(self, command, **kwargs):
        if self.error is not None:
            raise self.error
        self.commands.append(command)
        return FakeProcess(command, self.returncode)


@pytest.fixture
def worker_script(tmp_path):
    path = tmp_path / "triage_worker.py"
    path.write_text("print('worker')\n")
    return path


@pytest.fixture
def config(tmp_path, worker_script):
    return MonitorConfig(
        app_id="app-id",
        tenant_id="tenant-id",
        client_secret="secret",
        workspace_id="workspace-id",
        interval_seconds=30,
        worker_path=str(worker_script),
        triage_policy="decline",
        write_cycle_reports=False,
        report_dir=str(tmp_path / "reports"),
        log_dir=str(tmp_path / "logs"),
    )


@pytest.fixture(autouse=True)
def restore_root_logging():
    """Drop handlers that setup_logging() attached during a test."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)
