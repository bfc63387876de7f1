from __future__ import annotations

import logging
import sys

import pytest

from hackvote.logging_config import setup_logging


@pytest.fixture
def root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in list(root.handlers):
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
    logging.getLogger("botocore").setLevel(logging.NOTSET)


def test_setup_logging_uses_settings_level_and_single_stdout_handler(root_logger):
    """設定のログレベル文字列をそのまま使い、標準出力のハンドラを1つだけ付ける。"""

    setup_logging("debug")
    setup_logging("debug")

    assert root_logger.level == logging.DEBUG
    assert len(root_logger.handlers) == 1
    assert root_logger.handlers[0].stream is sys.stdout
    assert logging.getLogger("botocore").level == logging.WARNING
