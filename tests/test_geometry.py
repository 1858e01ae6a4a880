"""Tests for plot geometry resolution."""

from types import MappingProxyType

import pytest

from penplot.capabilities import DeviceProfile, Margins, Orientation, PaperFormat, lookup
from penplot.errors import GeometryInvalid, PaperFormatUnavailable
from penplot.geometry import NO_SCALING_NOTICE, resolve, round_half_away


def test_7475a_a4_reference_points():
    geometry = resolve(lookup("7475A"), "A4", "landscape")
    assert geometry.scaled
    assert geometry.scale(0, 0) == (603, 521)
    assert geometry.scale(1, 1) == (10603, 7721)
    assert geometry.scale(0.5, 0.5) == (5603, 4121)
    assert geometry.limitations == ()


def test_landscape_and_portrait_swap_axes():
    hp7475 = lookup("7475A")
    landscape = resolve(hp7475, "A", Orientation.LANDSCAPE)
    portrait = resolve(hp7475, "A", Orientation.PORTRAIT)

    # landscape: long side on x, minus left/right margins 348 + 463
    assert landscape.width == 10365 - 348 - 463
    assert landscape.height == 7962 - 562 - 112
    # portrait: short side on x, portrait margins
    assert portrait.width == 7962 - 112 - 562
    assert portrait.height == 10365 - 348 - 463


def test_full_bleed_without_margins():
    geometry = resolve(lookup("7475A"), "A3", "portrait")
    assert geometry.margins == Margins()
    assert (geometry.width, geometry.height) == (11040, 16158)


def test_missing_scaling_points_is_reported():
    geometry = resolve(lookup("GENERIC"), "A4", "landscape")
    assert not geometry.scaled
    assert geometry.limitations == (NO_SCALING_NOTICE,)
    assert geometry.scale(120.4, 99.5) == (120, 100)


def test_unknown_paper():
    with pytest.raises(PaperFormatUnavailable):
        resolve(lookup("7470A"), "B", "landscape")


def test_zero_area_is_invalid():
    paper = PaperFormat(
        "X", long=1000, short=500, landscape_margins=Margins(left=600, right=400)
    )
    profile = DeviceProfile(
        brand="Test",
        model="T1",
        buffer=60,
        instructions=frozenset({"PA"}),
        papers=MappingProxyType({"X": paper}),
    )
    with pytest.raises(GeometryInvalid):
        resolve(profile, "X", "landscape")
    # the portrait orientation has no margins and stays valid
    assert resolve(profile, "X", "portrait").width == 500


def test_round_half_away():
    assert round_half_away(2.5) == 3
    assert round_half_away(-2.5) == -3
    assert round_half_away(2.4) == 2
