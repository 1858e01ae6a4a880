"""Tests for buffer drain estimation strategies."""

import pytest

from penplot.flow_control import XOFF, XON, TimedDrain, XonXoff, create_flow_control


def test_timed_drain_reports_elapsed_consumption():
    flow = TimedDrain(bytes_per_second=100)
    flow.reset(0.0)
    assert flow.drained(60, 0.25) == 25
    assert flow.drained(50, 0.5) == 25
    # never more than is outstanding
    assert flow.drained(5, 10.0) == 5


def test_timed_drain_carries_fractions():
    flow = TimedDrain(bytes_per_second=10)
    flow.reset(0.0)
    assert flow.drained(60, 0.0625) == 0
    assert flow.drained(60, 0.125) == 1


def test_idle_time_is_not_banked():
    flow = TimedDrain(bytes_per_second=100)
    flow.reset(0.0)
    assert flow.drained(0, 5.0) == 0
    assert flow.drained(60, 5.25) == 25


def test_wait_hint_scales_with_deficit():
    flow = TimedDrain(bytes_per_second=200)
    flow.reset(0.0)
    assert flow.wait_hint(20) == pytest.approx(0.1)
    assert flow.wait_hint(0) == pytest.approx(1 / 200)


def test_xonxoff_handshake():
    flow = XonXoff(bytes_per_second=100)
    flow.reset(0.0)

    assert flow.filter_inbound(bytes([XOFF]) + b"12\r") == b"12\r"
    assert flow.paused
    assert flow.drained(60, 1.0) == 0

    assert flow.filter_inbound(bytes([XON])) == b""
    assert not flow.paused
    assert flow.drained(60, 1.0) == 60


def test_factory():
    assert isinstance(create_flow_control("timed", 50), TimedDrain)
    assert isinstance(create_flow_control("XONXOFF", 50), XonXoff)
    with pytest.raises(ValueError):
        create_flow_control("rtscts", 50)
    with pytest.raises(ValueError):
        TimedDrain(bytes_per_second=0)
