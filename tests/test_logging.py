import logging

import pytest

from vallox_bridge.logging import QUIET_LOGGERS, configure_logging


@pytest.fixture(autouse=True)
def _restore_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    levels = {name: logging.getLogger(name).level for name in QUIET_LOGGERS}
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
        if handler not in handlers:
            handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
    for name, value in levels.items():
        logging.getLogger(name).setLevel(value)


def test_network_loggers_are_quieted_by_default() -> None:
    configure_logging("DEBUG")

    assert "aiohttp.access" in QUIET_LOGGERS
    for name in QUIET_LOGGERS:
        assert logging.getLogger(name).level == logging.WARNING


def test_log_network_keeps_network_loggers_at_root_level() -> None:
    configure_logging("DEBUG", log_network=True)

    for name in QUIET_LOGGERS:
        assert logging.getLogger(name).getEffectiveLevel() == logging.DEBUG


def test_file_handler_is_added(tmp_path) -> None:
    log_path = tmp_path / "logs" / "vallox-bridge.log"
    configure_logging("INFO", log_path=log_path)

    logging.getLogger("vallox_bridge.test").info("hello")

    assert log_path.parent.is_dir()
    assert any(isinstance(h, logging.FileHandler) for h in logging.getLogger().handlers)
