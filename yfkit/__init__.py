from pathlib import Path

from dotenv import load_dotenv

__version__ = "0.4.0"

# Load environment variables early so YF_* settings are visible to the first client
load_dotenv(dotenv_path=Path(__file__).resolve().parents[1] / ".env")

__all__ = [
    "__version__",
    "YahooClient",
    "adjust_history",
    "start_stream",
]


def __getattr__(name: str):
    if name == "YahooClient":
        from .dal.client import YahooClient as _YahooClient

        return _YahooClient
    if name == "adjust_history":
        from .history.adjust import adjust_history as _adjust_history

        return _adjust_history
    if name == "start_stream":
        from .stream.pipeline import start_stream as _start_stream

        return _start_stream
    raise AttributeError(f"module {__name__} has no attribute {name!r}")
