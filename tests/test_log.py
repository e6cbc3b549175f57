import re
from datetime import datetime, timedelta

import pytest

from okestra.log import LogLevel, log


@pytest.mark.parametrize(
    "level, message, color",
    [
        (LogLevel.DEBUG, "2023-10-10 15:30:45 [DEBUG] Hello, world!", "\033[92m"),
        (LogLevel.INFO, "2023-10-10 15:30:45 [INFO] Hello, world!", "\033[34m"),
        (LogLevel.WARN, "2023-10-10 15:30:45 [WARN] Hello, world!", "\033[33m"),
        (LogLevel.ERROR, "2023-10-10 15:30:45 [ERROR] Hello, world!", "\033[31m"),
    ],
)
def test_log_levels(capsys, level, message, color):
    log(level, message)
    err = capsys.readouterr().err
    assert err.startswith(color)
    assert message in err
    assert err.endswith("\n\033[0m")


def test_log_has_timestamp(capsys):
    before = datetime.now().replace(microsecond=0)
    log(LogLevel.INFO, "hello")
    after = datetime.now()
    err = capsys.readouterr().err
    match = re.fullmatch(
        r"\033\[34m(\d{4}/\d{2}/\d{2} \d{2}:\d{2}:\d{2}) (.*)\n\033\[0m",
        err,
        re.S,
    )
    assert match is not None
    assert match.group(2) == "hello"
    stamp = datetime.strptime(match.group(1), "%Y/%m/%d %H:%M:%S")
    assert before - timedelta(seconds=1) <= stamp <= after + timedelta(seconds=1)


def test_unknown_level_uses_default_color(capsys):
    log("TRACE", "something")
    err = capsys.readouterr().err
    assert err.startswith("\033[0m")
    assert "something" in err


def test_string_level_matches_enum(capsys):
    log("ERROR", "boom")
    err = capsys.readouterr().err
    assert err.startswith("\033[31m")


def test_trailing_newline_not_doubled(capsys):
    log(LogLevel.INFO, "line\n")
    err = capsys.readouterr().err
    assert err.count("\n") == 1


def test_warn_value_is_warning(capsys):
    assert LogLevel.WARN.value == "WARNING"
    log("WARNING", "careful")
    err = capsys.readouterr().err
    assert err.startswith("\033[33m")
    assert "careful" in err