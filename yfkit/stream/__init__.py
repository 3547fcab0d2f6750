"""Live quotes: pricing frame decoder and the stream delivery pipeline."""

from .wire import decode_frame

__all__ = [
    "OverflowPolicy",
    "StreamConfig",
    "StreamHandle",
    "StreamMethod",
    "StreamState",
    "UpdateChannel",
    "WebsocketTransport",
    "decode_frame",
    "start_stream",
]


def __getattr__(name: str):
    if name in __all__ and name != "decode_frame":
        from . import pipeline as _pipeline

        return getattr(_pipeline, name)
    raise AttributeError(f"module {__name__} has no attribute {name!r}")
