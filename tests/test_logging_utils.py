from __future__ import annotations

import logging
from contextlib import contextmanager

import pytest
from loguru import logger

from yfkit import __version__
from yfkit.logging_utils import logging_context, setup_logging, setup_test_logging


@pytest.fixture(autouse=True)
def _reset_logging():
    setup_logging(force=True, level="INFO")
    yield
    setup_test_logging("DEBUG")


@contextmanager
def capture_records(level=logging.INFO):
    records = []

    class ListHandler(logging.Handler):
        def emit(self, record):
            records.append(record)

    handler = ListHandler()
    handler.setLevel(level)
    root = logging.getLogger()
    prev_level = root.level
    root.setLevel(level)
    root.addHandler(handler)
    try:
        yield records
    finally:
        root.removeHandler(handler)
        root.setLevel(prev_level)


def test_setup_logging_attaches_metadata(monkeypatch):
    monkeypatch.setenv("ENV", "staging")

    setup_logging(force=True, level="INFO")

    with capture_records() as records:
        logger.info("hello world")

    record = records[-1]
    assert record.getMessage() == "hello world"
    assert record.environment == "staging"
    assert record.client_version == __version__
    assert record.request_id == "-"


def test_logging_context_sets_request_id():
    with capture_records() as records:
        with logging_context(request_id="req-1"):
            logger.info("with request id")
        logger.info("without request id")

    assert records[-2].request_id == "req-1"
    assert records[-1].request_id == "-"


def test_level_filters_bridge():
    setup_logging(force=True, level="WARNING")

    with capture_records(logging.DEBUG) as records:
        logger.info("quiet")
        logger.warning("loud")

    assert [r.getMessage() for r in records] == ["loud"]


def test_setup_test_logging_writes_file(tmp_path):
    log_file = tmp_path / "logs" / "pytest.log"
    setup_test_logging("DEBUG", log_file=log_file)

    logger.debug("to file")
    logger.remove()

    assert log_file.exists()
    assert "to file" in log_file.read_text()
