"""Tests for logging setup helpers."""
import logging

from drivebot.log import setup_logging, short_id


def test_short_id_truncates_long_ids():
    assert short_id("1AbCdEfGhIjKlMnOpQrStUvWxYz") == "1AbCdEfGhI..."
    assert short_id("short") == "short"


def test_setup_logging_with_file(tmp_path):
    log_file = tmp_path / "bot.log"

    setup_logging("debug", str(log_file))
    logging.getLogger("drivebot.test").debug("hello from the test")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("pyrogram").level == logging.WARNING
    assert "hello from the test" in log_file.read_text()


def test_unknown_level_falls_back_to_info():
    setup_logging("chatty")

    assert logging.getLogger().level == logging.INFO
