import logging

from bridge.console import strip_ansi
from bridge.logging_handler import RepeatFilter


def _record(msg):
    return logging.LogRecord("bridge.sync", logging.INFO, __file__, 1, msg, None, None)


def test_repeat_filter_drops_immediate_repeats():
    f = RepeatFilter(window=60)
    assert f.filter(_record("Inserted 3 attendance logs"))
    assert not f.filter(_record("Inserted 3 attendance logs"))
    assert f.filter(_record("Inserted 4 attendance logs"))


def test_repeat_filter_drops_server_noise():
    f = RepeatFilter()
    assert not f.filter(_record(" * Serving Flask app 'bridge'"))
    assert not f.filter(_record(""))


def test_strip_ansi():
    assert strip_ansi("\x1b[32m[CONNECTED] 10.0.0.1:4370") == "[CONNECTED] 10.0.0.1:4370"
