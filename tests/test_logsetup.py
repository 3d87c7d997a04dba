import logging
import re

from btclient.logsetup import init_logging

LINE_RE = re.compile(r"^\[\d{4}-\d\d-\d\dT\d\d:\d\d:\d\dZ (\w+)\s*\] (.*)$")


def _lines(path):
    return path.read_text(encoding="utf-8").splitlines()


def test_writes_formatted_debug_lines(tmp_path):
    path = tmp_path / "logs" / "debug.log"
    handler = init_logging(path)
    assert handler.baseFilename == str(path.resolve())
    logging.getLogger("btclient.sample").debug("hello %s", "world")
    match = LINE_RE.match(_lines(path)[-1])
    assert match is not None
    assert match.group(1) == "DEBUG"
    assert match.group(2) == "hello world"


def test_warning_level_is_shown_as_warn(tmp_path):
    path = tmp_path / "warn.log"
    init_logging(path)
    logging.getLogger("btclient.sample").warning("careful")
    match = LINE_RE.match(_lines(path)[-1])
    assert match.group(1) == "WARN"
    assert match.group(2) == "careful"


def test_existing_file_is_replaced(tmp_path):
    path = tmp_path / "old.log"
    path.write_text("stale entry\n", encoding="utf-8")
    init_logging(path)
    logging.getLogger("btclient").info("fresh entry")
    content = path.read_text(encoding="utf-8")
    assert "stale entry" not in content
    assert "fresh entry" in content


def test_second_call_with_same_path_keeps_log(tmp_path):
    path = tmp_path / "same.log"
    first = init_logging(path)
    logging.getLogger("btclient").info("kept")
    second = init_logging(path)
    assert second is first
    assert "kept" in path.read_text(encoding="utf-8")


def test_unwritable_path_reports_failure(tmp_path, capsys):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    result = init_logging(blocker / "debug.log")
    assert result is None
    assert "Failed to initialize logging" in capsys.readouterr().err