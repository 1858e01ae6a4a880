"""Tests for configuration loading and validation."""

import pytest
import tempfile
from pathlib import Path

from penplot.config import (
    PlotterConfig,
    SerialConfig,
    SessionConfig,
    default_config,
    load_from_toml,
)


def test_load_from_toml():
    toml_content = """
[serial]
port = "/dev/ttyUSB1"
baudrate = 19200
mock = false
xonxoff = true

[session]
model = "7475A"
paper = "A3"
orientation = "portrait"
identity_timeout = 0.5
drain_rate = 300.0
flow_control = "xonxoff"
chunk_size = 120
"""
    with tempfile.NamedTemporaryFile(mode="w", suffix=".toml", delete=False) as f:
        f.write(toml_content)
        path = f.name

    try:
        cfg = load_from_toml(path)
        assert cfg.serial.port == "/dev/ttyUSB1"
        assert cfg.serial.baudrate == 19200
        assert cfg.serial.mock is False
        assert cfg.serial.xonxoff is True
        assert cfg.serial.rtscts is False
        assert cfg.session.model == "7475A"
        assert cfg.session.paper == "A3"
        assert cfg.session.orientation == "portrait"
        assert cfg.session.identity_timeout == 0.5
        assert cfg.session.drain_rate == 300.0
        assert cfg.session.flow_control == "xonxoff"
        assert cfg.session.chunk_size == 120
        assert cfg.session.close_timeout == 5.0
    finally:
        Path(path).unlink()


def test_load_empty_file_uses_defaults(tmp_path):
    path = tmp_path / "empty.toml"
    path.write_text("")
    assert load_from_toml(path) == default_config()


def test_missing_file():
    with pytest.raises(FileNotFoundError):
        load_from_toml("/nonexistent/plotter.toml")


def test_defaults():
    cfg = default_config()
    assert isinstance(cfg, PlotterConfig)
    assert cfg.serial.baudrate == 9600
    assert cfg.serial.mock is True
    assert cfg.session.model is None
    assert cfg.session.identify is True
    assert cfg.session.flow_control is None


@pytest.mark.parametrize(
    "kwargs",
    [
        {"orientation": "sideways"},
        {"identity_timeout": 0},
        {"close_timeout": -1},
        {"drain_rate": 0},
        {"chunk_size": 0},
        {"flow_control": "rtscts"},
    ],
)
def test_invalid_session_config(kwargs):
    with pytest.raises(ValueError):
        SessionConfig(**kwargs)


def test_invalid_serial_config():
    with pytest.raises(ValueError):
        SerialConfig(baudrate=0)
    with pytest.raises(ValueError):
        SerialConfig(timeout=0)


if __name__ == "__main__":
    pytest.main([__file__])
