from __future__ import annotations

import asyncio
import json
import time
from functools import partial
from typing import Any, Dict, Optional, Protocol, Sequence, Tuple, Union

import requests
from loguru import logger

from yfkit.core.exceptions import DecodeError, StatusError, TransportError
from yfkit.settings import HttpSettings

Query = Union[Dict[str, Any], Sequence[Tuple[str, str]], None]


class HttpTransport(Protocol):
    """Anything that can turn a URL + query into raw response bytes."""

    async def send_request(
        self, url: str, query: Query = None, *, accept: str = "application/json"
    ) -> bytes: ...


# ------------------------------------------------------------------------------
# Header helpers
# ------------------------------------------------------------------------------


def _ensure_ua(user_agent: str, headers: Optional[Dict[str, str]]) -> Dict[str, str]:
    merged = {"User-Agent": user_agent}
    if headers:
        merged.update(headers)
    return merged


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    return parsed if parsed > 0 else None


def _log_http_event(
    *,
    level: str,
    method: str,
    url: str,
    status: int,
    start_time: float,
    note: str = "",
) -> None:
    latency_ms = round((time.perf_counter() - start_time) * 1000.0, 1)
    logger.log(
        level,
        "[http] method={} url={} status={} latency_ms={:.1f} {}",
        method.upper(),
        url,
        status,
        latency_ms,
        note,
    )


# ------------------------------------------------------------------------------
# Blocking requests transport bridged onto the event loop
# ------------------------------------------------------------------------------


class RequestsTransport:
    """Single-attempt GET transport; retries belong to the retry executor.

    ``requests`` is blocking, so each call runs on the loop's default executor.
    Cancelling the awaiting task returns immediately; the worker thread finishes
    on its own once the request timeout elapses.
    """

    def __init__(
        self,
        settings: Optional[HttpSettings] = None,
        *,
        session: Optional[requests.Session] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self.settings = settings or HttpSettings()
        self.session = session or requests.Session()
        self.headers = _ensure_ua(self.settings.user_agent, headers)

    async def send_request(
        self, url: str, query: Query = None, *, accept: str = "application/json"
    ) -> bytes:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, partial(self._send, url, query, accept)
        )

    def _send(self, url: str, query: Query, accept: str) -> bytes:
        start_time = time.perf_counter()
        headers = dict(self.headers)
        headers["Accept"] = accept
        try:
            resp = self.session.get(
                url,
                params=query or {},
                headers=headers,
                timeout=self.settings.timeout,
            )
        except requests.RequestException as exc:
            _log_http_event(
                level="WARNING",
                method="GET",
                url=url,
                status=599,
                start_time=start_time,
                note=f"error={exc}",
            )
            raise TransportError(f"GET {url} failed: {exc}") from exc

        if 200 <= resp.status_code < 300:
            _log_http_event(
                level="DEBUG",
                method="GET",
                url=url,
                status=resp.status_code,
                start_time=start_time,
                note="ok",
            )
            return resp.content

        body = (resp.text or "")[:400]
        _log_http_event(
            level="WARNING",
            method="GET",
            url=url,
            status=resp.status_code,
            start_time=start_time,
            note="non-2xx",
        )
        logger.debug("non-2xx body for {}: {}", url, body)
        raise StatusError(
            resp.status_code,
            resp.url or url,
            retry_after=_parse_retry_after(resp.headers.get("Retry-After")),
        )

    def close(self) -> None:
        self.session.close()


def decode_json(body: Union[bytes, str], *, what: str = "response") -> Any:
    """Parse a JSON body, mapping syntax errors onto ``DecodeError``."""
    try:
        return json.loads(body)
    except (ValueError, TypeError) as exc:
        raise DecodeError(f"{what}: malformed JSON ({exc})") from exc


__all__ = ["HttpTransport", "RequestsTransport", "decode_json"]
