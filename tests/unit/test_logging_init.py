from __future__ import annotations

import logging

from compliance_import.logging.init import (
    LOGGER_NAME,
    SUMMARY_LEVEL,
    LabeledFormatter,
    get_logger,
    log_summary,
    set_debug,
    setup_logging,
)


def test_setup_logging_idempotent():
    first = setup_logging()
    second = setup_logging()
    assert first is second
    assert first.name == LOGGER_NAME
    assert len(first.handlers) == 1
    assert first.propagate is False


def test_labels(capsys):
    logger = get_logger()
    logger.info("hello")
    logger.warning("careful")
    logger.error("boom")
    log_summary("files=0/0")
    out = capsys.readouterr().out.splitlines()
    assert out == ["INFO hello", "WARN careful", "ERROR boom", "SUMMARY files=0/0"]


def test_module_loggers_share_package_handler(capsys):
    setup_logging()
    logging.getLogger("compliance_import.services.orchestrator").info("from module %s", "x")
    assert capsys.readouterr().out == "INFO from module x\n"


def test_debug_toggle(capsys):
    logger = setup_logging()
    logger.debug("hidden")
    set_debug(True)
    logger.debug("shown")
    set_debug(False)
    assert capsys.readouterr().out == "DEBUG shown\n"


def test_formatter_unknown_level_uses_level_name():
    record = logging.LogRecord("x", 15, __file__, 1, "msg", None, None)
    record.levelname = "TRACE"
    assert LabeledFormatter().format(record) == "TRACE msg"
    assert SUMMARY_LEVEL == 25
