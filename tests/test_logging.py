import json
import logging

import pytest

from schoolrecords.core.config import settings
from schoolrecords.core.logging import get_logger, setup_logging


@pytest.fixture(autouse=True)
def restore_logging():
    yield
    setup_logging(settings)


def test_console_logging_carries_logger_name_and_fields(caplog: pytest.LogCaptureFixture) -> None:
    setup_logging(settings)
    caplog.set_level(logging.INFO)

    get_logger("schoolrecords.dissolution").info("catalog_loaded", subjects=4)
    get_logger("schoolrecords.dissolution").warning("catalog_failed", error="boom")

    messages = [r.getMessage() for r in caplog.records]
    assert "catalog_loaded" in messages[0]
    assert "subjects=4" in messages[0]
    assert "schoolrecords.dissolution" in messages[0]
    assert "catalog_failed" in messages[1]
    assert caplog.records[1].levelno == logging.WARNING


def test_json_logging_renders_one_object_per_event(caplog: pytest.LogCaptureFixture) -> None:
    setup_logging(settings.model_copy(update={"log_json": True}))
    caplog.set_level(logging.INFO)
    logger = get_logger("schoolrecords.workflow")

    logger.info("dissolution_opened", students=3)
    try:
        raise RuntimeError("records API unreachable")
    except RuntimeError:
        logger.exception("dissolution_failed")

    opened, failed = [json.loads(r.getMessage()) for r in caplog.records]
    assert opened["event"] == "dissolution_opened"
    assert opened["students"] == 3
    assert opened["logger"] == "schoolrecords.workflow"
    assert opened["level"] == "info"
    assert failed["level"] == "error"
    assert "records API unreachable" in failed["exception"]


def test_records_below_the_configured_level_are_dropped(caplog: pytest.LogCaptureFixture) -> None:
    setup_logging(settings.model_copy(update={"log_level": "warning"}))

    get_logger("schoolrecords.quiet").info("not_shown")
    get_logger("schoolrecords.quiet").warning("shown")

    assert [r.levelno for r in caplog.records] == [logging.WARNING]
