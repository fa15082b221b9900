import json
import logging

import pytest

from badge_printer.core.logging import JsonFormatter, RequestIdFilter, configure_logging, job_context


def _record(msg: str = "printed %s", args=("u1",)) -> logging.LogRecord:
    return logging.LogRecord("badge_printer.test", logging.INFO, __file__, 1, msg, args, None)


@pytest.fixture
def root_logger():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    yield root
    root.handlers = saved_handlers
    root.setLevel(saved_level)


def test_filter_defaults_outside_request_and_job():
    record = _record()
    assert RequestIdFilter().filter(record) is True
    assert record.request_id == "-"
    assert record.path == "-"
    assert record.job_id == "-"


def test_job_context_tags_records_and_resets():
    inside = _record()
    with job_context("job-1"):
        RequestIdFilter().filter(inside)
    outside = _record()
    RequestIdFilter().filter(outside)
    assert inside.job_id == "job-1"
    assert outside.job_id == "-"


def test_explicit_job_id_extra_wins():
    record = _record()
    record.job_id = "explicit"
    with job_context("ctx"):
        RequestIdFilter().filter(record)
    assert record.job_id == "explicit"


def test_json_formatter_fields():
    record = _record()
    with job_context("abc"):
        RequestIdFilter().filter(record)
    out = json.loads(JsonFormatter().format(record))
    assert out["msg"] == "printed u1"
    assert out["job_id"] == "abc"
    assert out["logger"] == "badge_printer.test"
    assert "path" not in out


def test_configure_logging_replaces_only_its_own_handler(root_logger, monkeypatch):
    monkeypatch.delenv("BADGEPRINTER_LOG_LEVEL", raising=False)
    foreign = logging.NullHandler()
    root_logger.addHandler(foreign)

    configure_logging(level="debug")
    configure_logging(level="warning", json_logs=True)

    ours = [h for h in root_logger.handlers if any(isinstance(f, RequestIdFilter) for f in h.filters)]
    assert len(ours) == 1
    assert isinstance(ours[0].formatter, JsonFormatter)
    assert foreign in root_logger.handlers
    assert root_logger.level == logging.WARNING
