import json
import logging
import os
from logging.handlers import RotatingFileHandler

import pytest

import branchvault.observability as obs
from branchvault.config_schema import LoggingConfig
from branchvault.observability import (
    LOGGER_NAME,
    _get_log_file_path,
    _get_log_level,
    configure_logging,
    get_logger,
    log_action,
    log_debug,
    log_warning,
    timeit,
)


@pytest.fixture(autouse=True)
def reset_logger():
    """Reset logger state between tests."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.handlers.clear()
    obs._logger_initialized = False
    obs._session_start = None
    yield
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
    obs._logger_initialized = False
    obs._session_start = None


def test_log_action_emits_json(caplog):
    caplog.set_level(logging.INFO, logger=LOGGER_NAME)
    log_action("snapshot.copy", outcome="ok", duration_ms=123, branch="beta-branch", files=12)
    data = json.loads(caplog.records[-1].message)
    assert data["action"] == "snapshot.copy"
    assert data["outcome"] == "ok"
    assert data["duration_ms"] == 123
    assert data["branch"] == "beta-branch"
    assert data["files"] == 12
    assert data["ts"].endswith("Z")


def test_log_action_on_given_logger(caplog):
    caplog.set_level(logging.INFO, logger=LOGGER_NAME)
    log_action("workflow.wait", logger=get_logger("orchestrator"), outcome="timed_out")
    record = caplog.records[-1]
    assert record.name == "branchvault.orchestrator"
    assert json.loads(record.message)["outcome"] == "timed_out"


def test_timeit_success_logs(caplog):
    caplog.set_level(logging.INFO, logger=LOGGER_NAME)
    with timeit("test.block", branch="main-branch") as info:
        info["deleted"] = True
    data = json.loads(caplog.records[-1].message)
    assert data["action"] == "test.block"
    assert data["outcome"] == "ok"
    assert data["branch"] == "main-branch"
    assert data["deleted"] is True
    assert isinstance(data["duration_ms"], (int, float))


def test_timeit_error_logs(caplog):
    caplog.set_level(logging.INFO, logger=LOGGER_NAME)
    with pytest.raises(RuntimeError):
        with timeit("test.err", branch="beta-branch"):
            raise RuntimeError("boom")
    data = json.loads(caplog.records[-1].message)
    assert data["action"] == "test.err"
    assert data["outcome"] == "error"
    assert data["branch"] == "beta-branch"


def test_log_helpers_append_fields(caplog):
    caplog.set_level(logging.DEBUG, logger=LOGGER_NAME)
    log_warning("Copy incomplete", failed=2)
    log_debug("Polling", check=3)
    messages = [r.message for r in caplog.records]
    assert 'Copy incomplete {"failed":2}' in messages
    assert 'Polling {"check":3}' in messages


def test_log_level_from_env(monkeypatch):
    monkeypatch.setenv("BRANCHVAULT_LOG_LEVEL", "debug")
    assert _get_log_level() == logging.DEBUG
    monkeypatch.setenv("BRANCHVAULT_LOG_LEVEL", "nonsense")
    assert _get_log_level() == logging.INFO


def test_file_logging_disabled():
    # BRANCHVAULT_LOG_DISABLE_FILE=1 is set for every test
    assert _get_log_file_path() is None
    logger = configure_logging()
    assert not any(isinstance(h, RotatingFileHandler) for h in logger.handlers)
    assert len(logger.handlers) == 1


def test_file_logging_enabled(tmp_path, monkeypatch):
    monkeypatch.delenv("BRANCHVAULT_LOG_DISABLE_FILE")
    monkeypatch.setenv("BRANCHVAULT_LOG_DIR", str(tmp_path / "logs"))

    path = _get_log_file_path()

    assert path.parent == tmp_path / "logs"
    assert path.name.startswith("branchvault_")
    assert path.suffix == ".log"
    assert (tmp_path / "logs").is_dir()


def test_configure_logging_from_settings(tmp_path, monkeypatch):
    monkeypatch.delenv("BRANCHVAULT_LOG_DISABLE_FILE")
    settings = LoggingConfig(level="warning", dir=str(tmp_path / "logs"), backup_count=2)

    logger = configure_logging(settings)

    assert logger.level == logging.WARNING
    file_handlers = [h for h in logger.handlers if isinstance(h, RotatingFileHandler)]
    assert len(file_handlers) == 1
    assert file_handlers[0].backupCount == 2
    assert file_handlers[0].baseFilename.startswith(str(tmp_path / "logs"))
    for var in ("BRANCHVAULT_LOG_LEVEL", "BRANCHVAULT_LOG_DIR", "BRANCHVAULT_LOG_MAX_BYTES",
                "BRANCHVAULT_LOG_BACKUP_COUNT", "BRANCHVAULT_LOG_DISABLE_FILE"):
        assert var not in os.environ


def test_configure_logging_twice_uses_latest_settings(tmp_path):
    configure_logging(LoggingConfig(level="DEBUG", dir=str(tmp_path / "first"), disable_file=False))

    logger = configure_logging(LoggingConfig(level="ERROR", disable_file=True))

    assert logger.level == logging.ERROR
    assert not any(isinstance(h, RotatingFileHandler) for h in logger.handlers)
    assert len(logger.handlers) == 1
    assert "BRANCHVAULT_LOG_LEVEL" not in os.environ


def test_get_logger_is_child_of_package_logger():
    assert get_logger("copier").name == "branchvault.copier"
    assert get_logger("copier").parent is logging.getLogger(LOGGER_NAME)
