from __future__ import annotations

import asyncio
import os
from contextlib import asynccontextmanager
from typing import Any, List, Optional, Sequence, Tuple

import pytest

from yfkit.core.exceptions import StatusError, TransportError
from yfkit.logging_utils import setup_test_logging

os.environ.setdefault("ENV", "test")


class FakeTransport:
    """Scripted HTTP transport: outcomes are matched by URL substring.

    An outcome is bytes, an exception to raise, or a zero-arg callable. The last
    outcome of a route repeats once the earlier ones are used up.
    """

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self.calls: List[Tuple[str, List[Tuple[str, str]], str]] = []
        self._routes: List[Tuple[str, List[Any]]] = []

    def route(self, needle: str, *outcomes: Any) -> "FakeTransport":
        self._routes.append((needle, list(outcomes)))
        return self

    def calls_to(self, needle: str) -> int:
        return sum(1 for url, _, _ in self.calls if needle in url)

    async def send_request(self, url, query=None, *, accept="application/json") -> bytes:
        self.calls.append((url, list(query or []), accept))
        await asyncio.sleep(self.delay)
        for needle, outcomes in self._routes:
            if needle in url:
                outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
                if isinstance(outcome, BaseException):
                    raise outcome
                if callable(outcome):
                    return outcome()
                return outcome
        raise StatusError(404, url)


class FakeStreamTransport:
    """Each ``open_stream`` consumes one scripted session.

    A session is an exception (connect failure) or a list of frames; inside a
    list an exception is raised mid-stream and ``None`` blocks forever.
    """

    def __init__(self, sessions: Sequence[Any]) -> None:
        self.sessions = list(sessions)
        self.opened = 0
        self.closed = 0
        self.subscribed: List[List[str]] = []

    @asynccontextmanager
    async def open_stream(self, symbols):
        self.opened += 1
        self.subscribed.append(list(symbols))
        if not self.sessions:
            raise TransportError("no more scripted sessions")
        script = self.sessions.pop(0)
        if isinstance(script, BaseException):
            raise script
        try:
            yield self._frames(script)
        finally:
            self.closed += 1

    @staticmethod
    async def _frames(script):
        for item in script:
            await asyncio.sleep(0)
            if item is None:
                await asyncio.Event().wait()
            if isinstance(item, BaseException):
                raise item
            yield item


@pytest.fixture(scope="session", autouse=True)
def configure_logging():
    setup_test_logging("DEBUG")
    yield


@pytest.fixture
def anyio_backend():
    """Force anyio-powered async tests to run under asyncio backend only."""
    return "asyncio"


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def make_stream_transport():
    def _make(*sessions: Any) -> FakeStreamTransport:
        return FakeStreamTransport(sessions)

    return _make


@pytest.fixture
def recorded_sleeps():
    sleeps: List[float] = []

    async def _sleep(delay: float) -> None:
        sleeps.append(delay)

    _sleep.calls = sleeps  # type: ignore[attr-defined]
    return _sleep


@pytest.fixture
def settings_factory(monkeypatch):
    """Build ``Settings`` from a clean ``YF_*`` environment plus overrides."""
    from yfkit.settings import Settings

    for key in list(os.environ):
        if key.startswith("YF_"):
            monkeypatch.delenv(key, raising=False)

    def _make(**env: Optional[str]) -> Settings:
        for key, value in env.items():
            if value is None:
                monkeypatch.delenv(key, raising=False)
            else:
                monkeypatch.setenv(key, value)
        return Settings()

    return _make
