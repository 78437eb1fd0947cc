import logging

from logger import ColourFormatter, _resolve_level, get_logger, logger


def test_component_loggers_share_project_handlers():
    child = get_logger("streaks")
    assert child.name == "meditation.streaks"
    assert child.parent is logger
    assert logger.handlers


def test_level_from_environment(monkeypatch):
    monkeypatch.setenv("MEDITATION_LOG_LEVEL", "debug")
    assert _resolve_level(None) == logging.DEBUG
    monkeypatch.setenv("MEDITATION_LOG_LEVEL", "chatty")
    assert _resolve_level(None) == logging.INFO
    assert _resolve_level(logging.ERROR) == logging.ERROR


def test_colour_formatter_wraps_line():
    record = logging.LogRecord("meditation", logging.WARNING, __file__, 1, "careful", None, None)
    line = ColourFormatter().format(record)
    assert line.startswith(ColourFormatter.COLOURS[logging.WARNING])
    assert "careful" in line
    assert line.endswith(ColourFormatter.RESET)
