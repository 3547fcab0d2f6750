from __future__ import annotations

import asyncio
import contextlib
import json
import threading
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Protocol,
    Tuple,
    Union,
)

import websockets
from loguru import logger

from yfkit.core.exceptions import ConfigError, DecodeError, TransportError, YFError
from yfkit.core.models import StreamUpdate
from yfkit.dal.backoff import BackoffPolicy
from yfkit.settings import HttpSettings, StreamSettings
from yfkit.stream.wire import decode_frame

Frame = Union[str, bytes]
Poller = Callable[[List[str]], Awaitable[List[StreamUpdate]]]


class StreamMethod(str, Enum):
    WEBSOCKET = "websocket"
    WEBSOCKET_WITH_FALLBACK = "websocket_with_fallback"
    POLLING = "polling"


class OverflowPolicy(str, Enum):
    BLOCK = "block"
    DROP_OLDEST = "drop_oldest"


class StreamState(str, Enum):
    CONNECTING = "connecting"
    STREAMING = "streaming"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (StreamState.CLOSED, StreamState.FAILED)


def _reconnect_backoff() -> BackoffPolicy:
    return BackoffPolicy(base_delay=0.5, multiplier=2.0, max_delay=10.0, jitter=True)


@dataclass(frozen=True, slots=True)
class StreamConfig:
    queue_size: int = 1024
    send_timeout: Optional[float] = 5.0
    overflow: OverflowPolicy = OverflowPolicy.BLOCK
    diff_only: bool = True
    reconnect: bool = True
    max_reconnects: int = 5
    backoff: BackoffPolicy = field(default_factory=_reconnect_backoff)
    method: StreamMethod = StreamMethod.WEBSOCKET_WITH_FALLBACK
    poll_interval: float = 1.0
    strict_decode: bool = False

    @classmethod
    def from_settings(cls, settings: StreamSettings) -> "StreamConfig":
        try:
            overflow = OverflowPolicy(settings.overflow)
            method = StreamMethod(settings.method)
        except ValueError as exc:
            raise ConfigError(f"invalid stream settings: {exc}") from exc
        return cls(
            queue_size=max(1, settings.queue_size),
            send_timeout=settings.send_timeout,
            overflow=overflow,
            diff_only=settings.diff_only,
            reconnect=settings.reconnect,
            max_reconnects=max(0, settings.max_reconnects),
            method=method,
            poll_interval=max(0.0, settings.poll_interval),
        )


class StreamTransport(Protocol):
    def open_stream(
        self, symbols: List[str]
    ) -> "contextlib.AbstractAsyncContextManager[AsyncIterator[Frame]]": ...


async def _first_of(work: Awaitable, gate: asyncio.Event) -> Tuple[bool, object]:
    """Await ``work`` unless ``gate`` is set first; returns ``(finished, result)``."""
    task = asyncio.ensure_future(work)
    waiter = asyncio.ensure_future(gate.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not task.done():
            task.cancel()
    if task.done() and not task.cancelled():
        return True, task.result()
    return False, None


_CLOSED = object()


class UpdateChannel:
    """Bounded single-consumer queue of ``StreamUpdate`` with explicit closure.

    ``recv()`` returns ``None`` once the channel is closed and drained. A
    cancelled ``recv()`` never consumes an update.
    """

    def __init__(self, maxsize: int = 1024) -> None:
        self._queue: "asyncio.Queue[object]" = asyncio.Queue(maxsize=max(1, maxsize))
        self._closed = asyncio.Event()
        self._marker_queued = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def qsize(self) -> int:
        return self._queue.qsize() - (1 if self._marker_queued else 0)

    async def send(
        self,
        update: StreamUpdate,
        *,
        overflow: OverflowPolicy = OverflowPolicy.BLOCK,
        timeout: Optional[float] = None,
    ) -> bool:
        """Enqueue ``update``; ``False`` when it was dropped or the channel is closed."""
        if self.closed:
            return False
        if overflow is OverflowPolicy.DROP_OLDEST:
            while True:
                try:
                    self._queue.put_nowait(update)
                    return True
                except asyncio.QueueFull:
                    try:
                        self._queue.get_nowait()
                        self.dropped += 1
                    except asyncio.QueueEmpty:  # pragma: no cover - race
                        await asyncio.sleep(0)

        try:
            self._queue.put_nowait(update)
            return True
        except asyncio.QueueFull:
            pass
        try:
            finished, _ = await asyncio.wait_for(
                _first_of(self._queue.put(update), self._closed), timeout
            )
        except asyncio.TimeoutError:
            finished = False
        if not finished:
            self.dropped += 1
        return finished

    def close(self, *, discard: bool = False) -> None:
        self._closed.set()
        if discard:
            while True:
                try:
                    self._queue.get_nowait()
                except asyncio.QueueEmpty:
                    break
            self._marker_queued = False
        # a reader can only be parked on an empty queue
        if not self._marker_queued and self._queue.empty():
            self._queue.put_nowait(_CLOSED)
            self._marker_queued = True

    async def recv(self) -> Optional[StreamUpdate]:
        if self.closed and self.qsize() == 0:
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            self._marker_queued = False
            return None
        return item  # type: ignore[return-value]

    def __aiter__(self) -> "UpdateChannel":
        return self

    async def __anext__(self) -> StreamUpdate:
        update = await self.recv()
        if update is None:
            raise StopAsyncIteration
        return update


class StreamHandle:
    """Control side of a running stream: state, terminal error and shutdown."""

    def __init__(self, channel: UpdateChannel) -> None:
        self.channel = channel
        self.state = StreamState.CONNECTING
        self.error: Optional[BaseException] = None
        self._task: Optional[asyncio.Task] = None
        self._discard = False

    @property
    def done(self) -> bool:
        return self._task is None or self._task.done()

    def _set_state(self, state: StreamState) -> None:
        if self.state is not state:
            logger.debug("stream state {} -> {}", self.state.value, state.value)
        self.state = state

    def abort(self) -> None:
        """Cancel immediately; undelivered updates are discarded."""
        self._discard = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        if not self.state.terminal:
            self._set_state(StreamState.CLOSED)
        self.channel.close(discard=True)

    async def stop(self) -> StreamState:
        """Cancel and wait for teardown; buffered updates stay readable."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        return await self.wait()

    async def wait(self) -> StreamState:
        if self._task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        return self.state


class WebsocketTransport:
    """Live pricing over the ``websockets`` client; one connection per ``open_stream``."""

    def __init__(
        self,
        settings: Optional[HttpSettings] = None,
        *,
        url: Optional[str] = None,
        open_timeout: float = 10.0,
    ) -> None:
        self.settings = settings or HttpSettings()
        self.url = url or self.settings.base_stream
        self.open_timeout = open_timeout

    @asynccontextmanager
    async def open_stream(self, symbols: List[str]) -> AsyncIterator[AsyncIterator[Frame]]:
        try:
            ws = await websockets.connect(
                self.url,
                additional_headers={"Origin": "https://finance.yahoo.com"},
                user_agent_header=self.settings.user_agent,
                open_timeout=self.open_timeout,
                ping_interval=20,
                ping_timeout=20,
            )
        except (websockets.exceptions.WebSocketException, OSError, asyncio.TimeoutError) as exc:
            raise TransportError(f"stream connect to {self.url} failed: {exc}") from exc

        try:
            try:
                await ws.send(json.dumps({"subscribe": list(symbols)}))
            except websockets.exceptions.ConnectionClosed as exc:
                raise TransportError(f"stream subscribe failed: {exc}") from exc
            logger.info("stream subscribed url={} symbols={}", self.url, ",".join(symbols))
            yield self._frames(ws)
        finally:
            await ws.close()

    @staticmethod
    async def _frames(ws) -> AsyncIterator[Frame]:
        try:
            async for message in ws:
                yield message
        except websockets.exceptions.ConnectionClosedError as exc:
            raise TransportError(f"stream connection lost: {exc}") from exc


class _StreamSession:
    def __init__(
        self,
        symbols: List[str],
        config: StreamConfig,
        handle: StreamHandle,
        transport: Optional[StreamTransport],
        poller: Optional[Poller],
    ) -> None:
        self.symbols = symbols
        self.config = config
        self.handle = handle
        self.channel = handle.channel
        self.transport = transport
        self.poller = poller
        self._lock = threading.Lock()
        self._last: Dict[str, StreamUpdate] = {}

    async def run(self) -> None:
        handle = self.handle
        try:
            await self._run_method()
            handle._set_state(StreamState.CLOSED)
        except asyncio.CancelledError:
            if not handle.state.terminal:
                handle._set_state(StreamState.CLOSED)
            raise
        except YFError as exc:
            handle.error = exc
            handle._set_state(StreamState.FAILED)
            logger.bind(kind=exc.kind.value).error("stream failed: {}", exc)
        except Exception as exc:
            handle.error = exc
            handle._set_state(StreamState.FAILED)
            logger.exception("stream failed unexpectedly: {}", exc)
        finally:
            self.channel.close(discard=handle._discard)

    async def _run_method(self) -> None:
        method = self.config.method
        if method is StreamMethod.POLLING:
            await self._poll_loop()
            return
        try:
            await self._websocket_loop()
        except TransportError as exc:
            if method is not StreamMethod.WEBSOCKET_WITH_FALLBACK or self.poller is None:
                raise
            logger.warning("websocket stream unavailable ({}); falling back to polling", exc)
            await self._poll_loop()

    async def _websocket_loop(self) -> None:
        failures = 0
        while True:
            received = False
            try:
                async with self.transport.open_stream(self.symbols) as frames:
                    self.handle._set_state(StreamState.STREAMING)
                    async for frame in frames:
                        received = True
                        await self._handle_frame(frame)
                logger.info("stream closed by peer symbols={}", ",".join(self.symbols))
                return
            except TransportError as exc:
                if received:
                    failures = 0
                if not self.config.reconnect or failures >= self.config.max_reconnects:
                    raise
                delay = self.config.backoff.delay(failures)
                failures += 1
                self.handle._set_state(StreamState.RECONNECTING)
                logger.warning(
                    "stream transport error ({}); reconnect {}/{} in {:.2f}s",
                    exc,
                    failures,
                    self.config.max_reconnects,
                    delay,
                )
                await asyncio.sleep(delay)

    async def _poll_loop(self) -> None:
        failures = 0
        self.handle._set_state(StreamState.STREAMING)
        while True:
            try:
                updates = await self.poller(self.symbols)
            except YFError as exc:
                if not self.config.reconnect or failures >= self.config.max_reconnects:
                    raise
                delay = self.config.backoff.delay(failures)
                failures += 1
                self.handle._set_state(StreamState.RECONNECTING)
                logger.warning("stream poll failed ({}); retrying in {:.2f}s", exc, delay)
                await asyncio.sleep(delay)
                continue
            failures = 0
            self.handle._set_state(StreamState.STREAMING)
            for update in updates:
                await self._deliver(update)
            await asyncio.sleep(self.config.poll_interval)

    async def _handle_frame(self, frame: Frame) -> None:
        try:
            update = decode_frame(frame)
        except DecodeError as exc:
            if self.config.strict_decode:
                raise
            logger.debug("skipping undecodable stream frame: {}", exc)
            return
        await self._deliver(update)

    async def _deliver(self, update: StreamUpdate) -> None:
        if self.config.diff_only:
            with self._lock:
                if self._last.get(update.symbol) == update:
                    return
        delivered = await self.channel.send(
            update, overflow=self.config.overflow, timeout=self.config.send_timeout
        )
        if not delivered:
            if not self.channel.closed:
                logger.warning(
                    "stream update dropped symbol={} (channel full for {}s)",
                    update.symbol,
                    self.config.send_timeout,
                )
            return
        if self.config.diff_only:
            with self._lock:
                self._last[update.symbol] = update


def _normalize_symbols(symbols: Union[str, Iterable[str]]) -> List[str]:
    if isinstance(symbols, str):
        symbols = [symbols]
    out: List[str] = []
    for sym in symbols:
        sym = (sym or "").strip().upper()
        if sym and sym not in out:
            out.append(sym)
    return out


async def start_stream(
    symbols: Union[str, Iterable[str]],
    config: Optional[StreamConfig] = None,
    *,
    transport: Optional[StreamTransport] = None,
    poller: Optional[Poller] = None,
) -> Tuple[StreamHandle, UpdateChannel]:
    """Spawn the delivery task and return its control handle and update channel."""
    syms = _normalize_symbols(symbols)
    if not syms:
        raise ConfigError("stream requires at least one symbol")
    cfg = config or StreamConfig.from_settings(StreamSettings())
    if cfg.method is StreamMethod.POLLING and poller is None:
        raise ConfigError("polling stream requires a poller")
    if cfg.method is not StreamMethod.POLLING and transport is None:
        transport = WebsocketTransport()

    channel = UpdateChannel(cfg.queue_size)
    handle = StreamHandle(channel)
    session = _StreamSession(syms, cfg, handle, transport, poller)
    handle._task = asyncio.create_task(session.run(), name=f"yfkit-stream-{'-'.join(syms)}")
    return handle, channel


__all__ = [
    "OverflowPolicy",
    "Poller",
    "StreamConfig",
    "StreamHandle",
    "StreamMethod",
    "StreamState",
    "StreamTransport",
    "UpdateChannel",
    "WebsocketTransport",
    "start_stream",
]
