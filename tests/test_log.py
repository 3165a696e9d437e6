import json
import logging
import re

import pytest

from blocky.log import configure_logger, get_logger, prefixed_log


@pytest.fixture(autouse=True)
def _reset_logger():
    yield
    configure_logger("info", "text", True)


def _last_line(capsys):
    lines = [line for line in capsys.readouterr().err.splitlines() if line]
    return lines[-1]


def test_level_is_case_insensitive():
    configure_logger("Warn", "text", True)
    assert get_logger().level == logging.WARNING


def test_empty_level_means_info():
    configure_logger("debug", "text", True)
    configure_logger("", "text", True)
    assert get_logger().level == logging.INFO


def test_invalid_level_raises():
    with pytest.raises(ValueError):
        configure_logger("loud", "text", True)


def test_messages_below_level_are_suppressed(capsys):
    configure_logger("error", "text", True)
    get_logger().info("quiet message")
    assert "quiet message" not in capsys.readouterr().err


def test_json_output(capsys):
    configure_logger("info", "json", True)
    get_logger().info("hello world")
    data = json.loads(_last_line(capsys))
    assert data["msg"] == "hello world"
    assert data["level"] == "info"
    assert "time" in data


def test_json_output_with_prefix_and_fields(capsys):
    configure_logger("info", "json", True)
    prefixed_log("list_cache").info("imported", extra={"fields": {"group": "gr1"}})
    data = json.loads(_last_line(capsys))
    assert data["prefix"] == "list_cache"
    assert data["group"] == "gr1"
    assert data["msg"] == "imported"


def test_text_output_without_timestamp(capsys):
    configure_logger("info", "text", False)
    prefixed_log("list_cache").info("hello")
    line = _last_line(capsys)
    assert "list_cache: hello" in line
    assert not line.startswith("[")


def test_text_output_with_timestamp(capsys):
    configure_logger("info", "text", True)
    get_logger().info("stamped")
    line = _last_line(capsys)
    assert re.match(r"^\[\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\]", line)
    assert line.endswith("stamped")


def test_unknown_format_keeps_previous_formatter(capsys):
    configure_logger("info", "json", True)
    configure_logger("info", "Text", True)
    get_logger().info("still json")
    data = json.loads(_last_line(capsys))
    assert data["msg"] == "still json"