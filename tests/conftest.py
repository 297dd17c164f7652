"""
Pytest configuration and fixtures.
"""

from pathlib import Path

import pytest

from stallguard.process_manager import ProcessHandle

SETTINGS_ENV_VARS = [
    "CHECK_INTERVAL",
    "RESTART_WAIT_TIME",
    "SETTLE_TIME",
    "DISCORD_WEBHOOK_URL",
    "NOTIFY_TIMEOUT",
    "WARNING_MESSAGE",
    "CRITICAL_MESSAGE",
    "LOG_DIR",
    "LOG_FILE_NAME",
    "WORKER_COMMAND",
    "WORKER_PROCESS_NAME",
    "AUXILIARY_PROCESS_NAMES",
    "COMPLETION_MARKER",
    "LOG_LEVEL",
    "LOG_FORMAT",
    "STALLGUARD_CONFIG",
]


@pytest.fixture
def clean_env(tmp_path: Path, monkeypatch):
    """Empty settings environment, run from a directory without a .env file."""
    for name in SETTINGS_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    workdir = tmp_path / "cwd"
    workdir.mkdir()
    monkeypatch.chdir(workdir)
    return monkeypatch


@pytest.fixture
def required_env(clean_env, tmp_path: Path):
    """Minimal valid settings environment."""
    clean_env.setenv("CHECK_INTERVAL", "60")
    clean_env.setenv("RESTART_WAIT_TIME", "10")
    clean_env.setenv("DISCORD_WEBHOOK_URL", "https://discord.test/api/webhooks/1/abc")
    clean_env.setenv("LOG_DIR", str(tmp_path / "logs"))
    return clean_env


@pytest.fixture
def log_path(tmp_path: Path) -> Path:
    return tmp_path / "log.txt"


class FakeHandle(ProcessHandle):
    """ProcessHandle that records calls instead of touching real processes."""

    def __init__(self, events: list[str] | None = None, start_ok: bool = True):
        self.events = events if events is not None else []
        self.start_ok = start_ok
        self.running = False
        self.starts = 0
        self.stops = 0

    async def start(self) -> bool:
        self.events.append("start")
        self.starts += 1
        self.running = self.start_ok
        return self.start_ok

    async def stop(self) -> None:
        self.events.append("stop")
        self.stops += 1
        self.running = False

    def is_running(self) -> bool:
        return self.running


class FakeNotifier:
    """Collects delivered messages."""

    def __init__(self, events: list[str] | None = None, result: bool = True):
        self.events = events if events is not None else []
        self.result = result
        self.messages: list[str] = []

    async def deliver(self, content: str) -> bool:
        self.events.append("notify")
        self.messages.append(content)
        return self.result


@pytest.fixture
def events() -> list[str]:
    return []


@pytest.fixture
def fake_handle(events) -> FakeHandle:
    return FakeHandle(events)


@pytest.fixture
def fake_notifier(events) -> FakeNotifier:
    return FakeNotifier(events)
