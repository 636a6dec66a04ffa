import json
import logging

import pytest

from supercache.config import Config, ConfigError, apply_defaults
from supercache.logsetup import init_logging, parse_level

SECRET = "secret" * 6


@pytest.fixture(autouse=True)
def restore_root():
    root = logging.getLogger()
    level = root.level
    handlers = list(root.handlers)
    yield
    for h in list(root.handlers):
        if h not in handlers:
            root.removeHandler(h)
    root.setLevel(level)


def make_cfg(**kwargs):
    cfg = Config(shared_secret=SECRET, **kwargs)
    apply_defaults(cfg)
    return cfg


def test_init_stdout(capsys):
    cleanup = init_logging(make_cfg(log_output="stdout", log_level="debug"))
    try:
        logging.getLogger("supercache.test").debug("to-stdout")
    finally:
        cleanup()
    out = capsys.readouterr().out
    assert "to-stdout" in out
    assert logging.getLogger().level == logging.DEBUG


@pytest.mark.parametrize(
    ("name", "level"),
    [
        ("debug", logging.DEBUG),
        ("info", logging.INFO),
        ("warn", logging.WARNING),
        ("warning", logging.WARNING),
        ("error", logging.ERROR),
        ("nonsense", logging.INFO),
    ],
)
def test_parse_level(name, level):
    assert parse_level(name) == level


def test_text_output_to_file(tmp_path):
    log_path = tmp_path / "out.log"
    cleanup = init_logging(make_cfg(log_output=str(log_path), log_level="info", log_format="logfmt"))
    logging.getLogger("supercache.test").info("hello world", extra={"addr": "h:1"})
    logging.getLogger("supercache.test").debug("hidden")
    cleanup()
    text = log_path.read_text()
    assert 'msg="hello world"' in text
    assert "level=INFO" in text
    assert "addr=h:1" in text
    assert "hidden" not in text


def test_json_output_to_file(tmp_path):
    log_path = tmp_path / "out.json"
    cleanup = init_logging(make_cfg(log_output=str(log_path), log_level="warn", log_format="json"))
    logging.getLogger("supercache.test").warning("careful")
    cleanup()
    lines = log_path.read_text().splitlines()
    assert len(lines) == 1
    doc = json.loads(lines[0])
    assert doc["msg"] == "careful"
    assert doc["level"] == "WARN"


def test_reinit_replaces_handler(tmp_path):
    first = tmp_path / "first.log"
    second = tmp_path / "second.log"
    init_logging(make_cfg(log_output=str(first)))
    cleanup = init_logging(make_cfg(log_output=str(second)))
    logging.getLogger("supercache.test").info("only-second")
    cleanup()
    assert "only-second" in second.read_text()
    assert "only-second" not in first.read_text()


def test_cleanup_stops_logging_to_file(tmp_path):
    log_path = tmp_path / "x.log"
    cleanup = init_logging(make_cfg(log_output=str(log_path)))
    logging.getLogger("supercache.test").info("before-cleanup")
    cleanup()
    logging.getLogger("supercache.test").info("after-cleanup")
    text = log_path.read_text()
    assert "before-cleanup" in text
    assert "after-cleanup" not in text


def test_unopenable_log_file_raises(tmp_path):
    with pytest.raises(ConfigError, match="open log file"):
        init_logging(make_cfg(log_output=str(tmp_path / "missing" / "x.log")))