"""Pytest configuration and fixtures for webuild tests."""

from __future__ import annotations

from typing import AsyncGenerator, Generator, List

import pytest
import pytest_asyncio

from webuild.config import reset_config
from webuild.sandbox.lifecycle import SandboxOrchestrator
from webuild.sandbox.preview import PreviewCallbacks
from tests.fakes import FakeRuntime

WEBUILD_ENV = [
    "WEBUILD_TAG_NAME",
    "WEBUILD_MAX_FILE_SIZE",
    "WEBUILD_ALLOWED_EXTENSIONS",
    "WEBUILD_DEBOUNCE_MS",
    "WEBUILD_MAX_RETRIES",
    "WEBUILD_READY_TIMEOUT",
    "WEBUILD_INSTALL_COMMAND",
    "WEBUILD_DEV_COMMAND",
    "WEBUILD_DEFAULT_URL",
    "WEBUILD_HEURISTIC_READINESS",
    "WEBUILD_SANDBOX_IMAGE",
    "WEBUILD_PORT_RANGE_START",
    "WEBUILD_PORT_RANGE_END",
    "WEBUILD_LOG_LEVEL",
    "WEBUILD_LOG_JSON",
]


@pytest.fixture(autouse=True)
def clean_config(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Run every test against default settings."""
    for name in WEBUILD_ENV:
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def runtime() -> FakeRuntime:
    """Fake runtime whose dev server announces readiness with an event."""
    return FakeRuntime()


@pytest_asyncio.fixture
async def orchestrator(runtime: FakeRuntime) -> AsyncGenerator[SandboxOrchestrator, None]:
    """Orchestrator on the fake runtime with a short readiness timeout."""
    orch = SandboxOrchestrator(runtime, ready_timeout=1.0)
    try:
        yield orch
    finally:
        await orch.teardown()


class RecordingCallbacks(PreviewCallbacks):
    """PreviewCallbacks that remember every call."""

    def __init__(self) -> None:
        self.ready: List[str] = []
        self.loading: List[bool] = []
        self.errors: List[str] = []
        super().__init__(
            on_ready=self.ready.append,
            on_loading=self.loading.append,
            on_error=self.errors.append,
        )


@pytest.fixture
def callbacks() -> RecordingCallbacks:
    return RecordingCallbacks()
