"""Tests for SessionController orchestration."""

import asyncio
import dataclasses

import pytest

from penplot.capabilities import CATALOGUE, CapabilityRegistry, lookup
from penplot.config import PlotterConfig, SessionConfig
from penplot.controller import RESPONSE_BACKLOG, SessionController
from penplot.encoder import Command, parse_statements
from penplot.errors import (
    InvalidArgument,
    PaperFormatUnavailable,
    ResponseTimeout,
    SerialConnectionError,
    SessionStateError,
    UnsupportedInstruction,
)
from penplot.flow_control import TimedDrain, XonXoff
from penplot.operations import Label, PenDown, PenUp, Polyline, Raw, SelectPen
from penplot.serial_link import MockSerialLink
from penplot.transport import EventKind, SessionState


def make_controller(
    identity="7475A", model=None, identify=True, buffer_size=None, responses=None
):
    cfg = PlotterConfig(
        session=SessionConfig(
            model=model,
            identify=identify,
            identity_timeout=0.05,
            drain_rate=20000.0,
        )
    )
    link = MockSerialLink(
        identity=identity,
        buffer_size=buffer_size,
        drain_rate=40000.0,
        responses=responses,
    )
    events = []
    controller = SessionController(cfg, link=link, observer=events.append)
    return controller, link, events


def degraded(events):
    return [e.data for e in events if e.kind is EventKind.DEGRADED]


@pytest.mark.asyncio
async def test_start_identifies_device():
    controller, link, events = make_controller(identity="7475A")

    geometry = await controller.start()

    assert controller.profile.model == "7475A"
    assert controller.session.capacity == 1024
    assert geometry.scaled
    assert bytes(link.received) == b"OI;IN;PS4;"
    assert controller.notices == []
    assert events[0].kind is EventKind.OPENED
    assert [e.data for e in events if e.kind is EventKind.DATA] == ["7475A"]
    await controller.close()
    assert events[-1].kind is EventKind.CLOSED


@pytest.mark.asyncio
async def test_identity_timeout_falls_back_to_generic():
    controller, link, events = make_controller(identity=None)

    geometry = await controller.start()

    assert controller.profile.model == "GENERIC"
    assert controller.session.capacity == 60
    assert not geometry.scaled
    notices = degraded(events)
    assert any("no identity reply" in n for n in notices)
    assert any("no scaling points" in n for n in notices)
    assert notices == controller.notices

    # the session remains usable
    assert controller.is_open()
    assert await controller.plot([PenUp(((100, 200),))]) == 1
    assert bytes(link.received) == b"OI;IN;PU100,200;"
    await controller.close()


@pytest.mark.asyncio
async def test_unrecognized_identity_falls_back_to_generic():
    controller, _, events = make_controller(identity="9999Z")
    await controller.start()
    assert controller.profile.model == "GENERIC"
    assert any("unrecognized identity '9999Z'" in n for n in degraded(events))
    await controller.close()


@pytest.mark.asyncio
async def test_explicit_model_skips_identity_query():
    controller, link, _ = make_controller(model="7440A")
    geometry = await controller.start()

    assert controller.profile.model == "7440A"
    assert bytes(link.received) == b"IN;"
    assert geometry.scale(0, 0) == (250, 279)
    await controller.close()


@pytest.mark.asyncio
async def test_unknown_explicit_model_is_degraded():
    controller, _, events = make_controller(model="9999Z")
    await controller.start()
    assert controller.profile.model == "GENERIC"
    assert any("unknown model '9999Z'" in n for n in degraded(events))
    await controller.close()


@pytest.mark.asyncio
async def test_identification_disabled_uses_generic():
    controller, link, _ = make_controller(identify=False)
    await controller.start(paper="B")
    assert controller.profile.model == "GENERIC"
    assert bytes(link.received) == b"IN;"
    await controller.close()


@pytest.mark.asyncio
async def test_start_parameters_override_config():
    controller, _, _ = make_controller()
    geometry = await controller.start(paper="A", orientation="portrait")
    assert geometry.paper.name == "A"
    assert geometry.width == 7962 - 112 - 562
    await controller.close()


@pytest.mark.asyncio
async def test_unavailable_paper_closes_session():
    controller, link, _ = make_controller(model="7440A")
    with pytest.raises(PaperFormatUnavailable):
        await controller.start(paper="A3")
    assert controller.session.state is SessionState.CLOSED
    assert not link.is_connected()


@pytest.mark.asyncio
async def test_invalid_orientation_closes_session():
    controller, link, _ = make_controller(model="7475A")
    with pytest.raises(InvalidArgument):
        await controller.start(orientation="sideways")
    assert controller.session.state is SessionState.CLOSED
    assert not link.is_connected()
    assert not controller.is_open()


@pytest.mark.asyncio
async def test_profile_flow_control_applies_without_configured_strategy():
    xon_profile = dataclasses.replace(lookup("7475A"), flow_control="xonxoff")
    registry = CapabilityRegistry({**CATALOGUE, "7475A": xon_profile})
    link = MockSerialLink(drain_rate=40000.0)
    cfg = PlotterConfig(session=SessionConfig(model="7475A", drain_rate=20000.0))
    controller = SessionController(cfg, registry=registry, link=link)

    await controller.start()
    assert isinstance(controller.session.flow_control, XonXoff)
    await controller.close()


@pytest.mark.asyncio
async def test_configured_flow_control_overrides_profile():
    xon_profile = dataclasses.replace(lookup("7475A"), flow_control="xonxoff")
    registry = CapabilityRegistry({**CATALOGUE, "7475A": xon_profile})
    cfg = PlotterConfig(
        session=SessionConfig(model="7475A", drain_rate=20000.0, flow_control="timed")
    )
    controller = SessionController(cfg, registry=registry, link=MockSerialLink())

    await controller.start()
    assert not isinstance(controller.session.flow_control, XonXoff)
    assert isinstance(controller.session.flow_control, TimedDrain)
    await controller.close()


@pytest.mark.asyncio
async def test_unclaimed_replies_are_bounded():
    controller, link, _ = make_controller(model="7475A", responses={"OS": "8"})
    await controller.start()

    for i in range(RESPONSE_BACKLOG * 3):
        link.inject(f"{i}\r".encode())
    await asyncio.sleep(0.01)
    assert controller._responses.qsize() == RESPONSE_BACKLOG

    # stale records do not answer the next query
    assert await controller.status() == 8
    await controller.close()


@pytest.mark.asyncio
async def test_200_commands_paced_through_60_byte_buffer_in_order():
    controller, link, _ = make_controller(model="7440A", buffer_size=60)
    await controller.start()

    operations = [PenDown(((i / 200, i / 200),)) for i in range(200)]
    sent = await controller.plot(operations)

    assert sent == 200
    assert controller.session.stats.peak_outstanding <= 60
    assert not link.overflowed

    received = parse_statements(bytes(link.received))
    assert received[0] == Command("IN")
    expected = [
        Command("PD", controller.geometry.scale(i / 200, i / 200)) for i in range(200)
    ]
    assert received[1:] == expected
    await controller.close()


@pytest.mark.asyncio
async def test_unsupported_instruction_sends_nothing():
    controller, link, _ = make_controller(model="7470A")
    await controller.start()
    before = bytes(link.received)

    with pytest.raises(UnsupportedInstruction):
        await controller.plot([Command("PA", (0, 0)), Command("PS", (4,))])

    assert bytes(link.received) == before
    assert controller.is_open()
    await controller.close()


@pytest.mark.asyncio
async def test_operations_are_scaled_and_encoded():
    controller, link, _ = make_controller(model="7475A")
    await controller.start(paper="A4")
    start = len(link.received)

    await controller.plot(
        [
            SelectPen(2),
            Polyline(((0, 0), (1, 1))),
            Raw(Command("PA", (5000, 4000))),
            Label("Hi; there"),
            SelectPen(0),
        ]
    )

    assert bytes(link.received[start:]) == (
        b"SP2;PU603,521;PD10603,7721;PU;PA5000,4000;LBHi; there\x03SP0;"
    )
    await controller.close()


@pytest.mark.asyncio
async def test_output_queries():
    responses = {"OS": "24", "OE": "0", "OA": "100,200,1", "OH": "0,0,10365,7962"}
    controller, _, _ = make_controller(model="7475A", responses=responses)
    await controller.start()

    assert await controller.status() == 24
    assert await controller.error_code() == 0
    assert await controller.position() == (100, 200, 1)
    assert await controller.hard_clip_limits() == (0, 0, 10365, 7962)
    await controller.close()


@pytest.mark.asyncio
async def test_query_errors():
    controller, _, _ = make_controller(model="7470A")
    await controller.start()

    with pytest.raises(UnsupportedInstruction):
        await controller.hard_clip_limits()
    with pytest.raises(ResponseTimeout):
        await controller.status()
    await controller.close()


@pytest.mark.asyncio
async def test_plot_requires_start():
    controller, _, _ = make_controller()
    with pytest.raises(SessionStateError):
        await controller.plot([SelectPen(1)])


@pytest.mark.asyncio
async def test_transport_failure_aborts_session():
    controller, link, events = make_controller(model="7475A")
    await controller.start()
    link.fail_writes = True

    with pytest.raises(SerialConnectionError):
        await controller.plot([SelectPen(1)])

    assert controller.session.state is SessionState.ERRORED
    assert not link.is_connected()
    assert EventKind.ERROR in [e.kind for e in events]


@pytest.mark.asyncio
async def test_context_manager():
    controller, _, _ = make_controller(model="7475A")
    async with controller as c:
        assert c.is_open()
        assert c.profile.model == "7475A"
    assert not controller.is_open()
    assert controller.session.state is SessionState.CLOSED


@pytest.mark.asyncio
async def test_drain():
    controller, _, events = make_controller(model="7475A")
    await controller.start()
    await controller.plot([SelectPen(1), PenUp(((0, 0),))])
    assert await controller.drain(timeout=1.0)
    assert events[-1].kind is EventKind.DRAINED
    await controller.close()
