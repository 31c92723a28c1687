"""ロギング設定のテスト"""
import logging

from farm_tasker import config


def test_setup_logging_adds_single_handler():
    logger = logging.getLogger("farm_tasker")
    saved = list(logger.handlers), logger.level
    logger.handlers.clear()
    try:
        first = config.setup_logging("debug")
        second = config.setup_logging("warning")

        assert first is second is logger
        assert len(logger.handlers) == 1
        assert logger.level == logging.WARNING
        assert logger.handlers[0].formatter._fmt == config.LOG_FORMAT
    finally:
        logger.handlers[:] = saved[0]
        logger.setLevel(saved[1])
