"""
Tests for the control process logging setup.
"""

import logging
from logging.handlers import RotatingFileHandler

import pytest

from bridge.main import configure_logging


@pytest.fixture(autouse=True)
def restore_logging():
    root_logger = logging.getLogger()
    handlers = root_logger.handlers[:]
    level = root_logger.level
    noisy_levels = {name: logging.getLogger(name).level for name in ("socketio", "engineio", "aiohttp.access")}
    yield
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        if handler not in handlers:
            handler.close()
    for handler in handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(level)
    for name, noisy_level in noisy_levels.items():
        logging.getLogger(name).setLevel(noisy_level)


def test_console_only(capsys):
    configure_logging(log_level="debug")

    root_logger = logging.getLogger()
    assert root_logger.level == logging.DEBUG
    assert len(root_logger.handlers) == 1
    assert not isinstance(root_logger.handlers[0], RotatingFileHandler)
    assert logging.getLogger("socketio").level == logging.WARNING
    # Status goes through logging, never straight to stdout
    assert capsys.readouterr().out == ""


def test_rotating_file(tmp_path):
    log_path = tmp_path / "nested" / "bridge.log"
    configure_logging(log_level="INFO", log_to_file=True, log_file_path=str(log_path),
                      max_lines_per_file=10, max_log_files=3)

    file_handlers = [h for h in logging.getLogger().handlers if isinstance(h, RotatingFileHandler)]
    assert len(file_handlers) == 1
    assert file_handlers[0].maxBytes == 1000
    assert file_handlers[0].backupCount == 2

    logging.getLogger("editor.scene").warning("written to file")
    file_handlers[0].flush()
    assert "written to file" in log_path.read_text(encoding="utf-8")


def test_unwritable_file_path_falls_back_to_console(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("")
    configure_logging(log_to_file=True, log_file_path=str(blocker / "bridge.log"))

    handlers = logging.getLogger().handlers
    assert len(handlers) == 1
    assert not isinstance(handlers[0], RotatingFileHandler)


def test_invalid_level_falls_back_to_info():
    configure_logging(log_level="chatty")
    assert logging.getLogger().level == logging.INFO
