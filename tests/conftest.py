"""
Pytest configuration and shared fixtures for EzUpdate tests.

Provides scripted package-manager commands and in-memory backend adapters
so no test touches the host's real package managers.
"""

import logging
import os
import subprocess
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch
from pathlib import Path
from typing import Dict, List, Optional
import sys

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


# ============ Environment Fixtures ============

@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """Never escalate with sudo and never inherit a log directory override."""
    monkeypatch.delenv("EZUPDATE_LOG_DIR", raising=False)
    with patch("ezupdate.system._needs_sudo", return_value=False):
        yield


@pytest.fixture
def log_dir(tmp_path: Path) -> Path:
    """Provide a writable log directory."""
    path = tmp_path / "logs"
    path.mkdir()
    return path


@pytest.fixture
def reset_logging():
    """Restore root logger handlers changed by setup_logging."""
    root = logging.getLogger()
    saved_handlers = list(root.handlers)
    saved_level = root.level
    yield
    for handler in root.handlers:
        if handler not in saved_handlers:
            handler.close()
    root.handlers[:] = saved_handlers
    root.setLevel(saved_level)


# ============ Subprocess Fixtures ============

@pytest.fixture
def mock_subprocess():
    """Mock subprocess.run for tests."""
    with patch('subprocess.run') as mock_run:
        mock_run.return_value = MagicMock(
            returncode=0,
            stdout="",
            stderr="",
        )
        yield mock_run


class CommandScript:
    """
    Scripted replacement for subprocess.run.

    Responses are matched by argument prefix. A prefix registered more than
    once answers in registration order; the last answer then repeats.
    Unmatched commands succeed with no output.
    """

    def __init__(self):
        self._responses = []
        self.calls: List[List[str]] = []
        self.kwargs: List[dict] = []

    def on(self, *prefix, returncode=0, stdout="", stderr="", raises=None):
        result = MagicMock(returncode=returncode, stdout=stdout, stderr=stderr)
        self._responses.append((list(prefix), result, raises))
        return self

    def ran(self, *prefix) -> List[List[str]]:
        """Calls whose arguments start with prefix."""
        return [c for c in self.calls if c[:len(prefix)] == list(prefix)]

    def __call__(self, args, **kwargs):
        args = list(args)
        self.calls.append(args)
        self.kwargs.append(kwargs)

        for index, (prefix, result, raises) in enumerate(self._responses):
            if args[:len(prefix)] != prefix:
                continue
            if sum(1 for p, _, _ in self._responses if p == prefix) > 1:
                del self._responses[index]
            if raises is not None:
                raise raises
            return result

        return MagicMock(returncode=0, stdout="", stderr="")


@pytest.fixture
def command_script():
    """Route every subprocess.run call through a CommandScript."""
    script = CommandScript()
    with patch('subprocess.run', side_effect=script):
        yield script


@pytest.fixture
def timeout_expired():
    """Build a TimeoutExpired for a command."""
    def make(cmd="cmd", timeout=1):
        return subprocess.TimeoutExpired(cmd=cmd, timeout=timeout)
    return make


@pytest.fixture
def fake_binary(tmp_path, monkeypatch):
    """
    Put shell scripts on PATH under package-manager names.

    Runs real subprocesses, for behavior that depends on how output bytes
    are decoded.
    """
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")

    def install(name: str, script: str) -> Path:
        path = bin_dir / name
        path.write_text("#!/bin/sh\n" + script)
        path.chmod(0o755)
        return path

    return install


# ============ Record Fixtures ============

@pytest.fixture
def make_record():
    """Factory for TransactionRecords with increasing timestamps."""
    from ezupdate.records import Action, Backend, TransactionRecord

    base = datetime(2026, 10, 18, 10, 15, tzinfo=timezone.utc)
    counter = {"n": 0}

    def make(unit="curl", batch_id="B1", backend=Backend.APT, before="1.0", after="1.1",
             timestamp: Optional[datetime] = None):
        if timestamp is None:
            timestamp = base + timedelta(seconds=counter["n"])
            counter["n"] += 1
        return TransactionRecord(
            timestamp=timestamp,
            batch_id=batch_id,
            backend=backend,
            unit=unit,
            action=Action.UPDATE,
            before=before,
            after=after,
        )

    return make


# ============ Adapter Fixtures ============

@pytest.fixture
def fake_adapter():
    """
    In-memory BackendAdapter class.

    Pending units carry the version they upgrade to; applying moves the
    unit's state to that version unless the unit is listed in ``stuck``.
    """
    from common.exceptions import CleanupError, FetchError
    from ezupdate.backends.base import BackendAdapter, PendingUnit
    from ezupdate.records import Backend

    class FakeAdapter(BackendAdapter):
        binary = "true"

        def __init__(
            self,
            backend: Backend = Backend.APT,
            label: Optional[str] = None,
            pending: Optional[Dict[str, str]] = None,
            states: Optional[Dict[str, str]] = None,
            bulk_only: bool = False,
            detected: bool = True,
            fetch_error: bool = False,
            install_error: Optional[str] = None,
            cleanup_error: bool = False,
            stuck: tuple = (),
            revert_errors: Optional[dict] = None,
        ):
            super().__init__()
            self.backend = backend
            self.bulk_only = bulk_only
            self._label = label
            self.pending = dict(pending or {})
            self.states = dict(states or {})
            self.detected = detected
            self.fetch_error = fetch_error
            self.install_error = install_error
            self.cleanup_error = cleanup_error
            self.stuck = set(stuck)
            self.revert_errors = dict(revert_errors or {})
            self.transaction_id = 40
            self.detect_calls = 0
            self.install_calls: List[List[str]] = []
            self.bulk_installs = 0
            self.cleaned = False
            self.reverted = []

        @property
        def label(self) -> str:
            return self._label or self.backend.value

        def detect(self) -> bool:
            self.detect_calls += 1
            return self.detected

        def list_pending(self):
            if self.fetch_error:
                raise FetchError(self.label, "mirror unreachable")
            return [
                PendingUnit(id=unit, descriptor=f"Upgrade to {version}", version=version)
                for unit, version in self.pending.items()
            ]

        def query_state(self, unit):
            return self.states.get(unit)

        def query_bulk_state(self):
            return str(self.transaction_id)

        def _install(self, units):
            self.install_calls.append(list(units))
            for unit in units:
                if unit in self.pending and unit not in self.stuck:
                    self.states[unit] = self.pending[unit]
            return self.install_error

        def _install_all(self):
            self.bulk_installs += 1
            if not self.install_error:
                self.transaction_id += 1
            return self.install_error

        def cleanup(self):
            self.cleaned = True
            if self.cleanup_error:
                raise CleanupError(self.label, "autoremove failed")

        def revert(self, record):
            self.reverted.append(record)
            error = self.revert_errors.get(record.unit)
            if error is not None:
                raise error

    return FakeAdapter


# ============ Marker Configuration ============

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line(
        "markers", "unit: fast unit tests with no external deps"
    )
    config.addinivalue_line(
        "markers", "integration: tests that exercise several modules together"
    )

