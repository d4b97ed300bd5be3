import pytest

from prophecy.models import Fixture
from prophecy.utils.derbies import DerbyRegistry

from .conftest import NOW


def test_pairs_are_unordered():
    registry = DerbyRegistry([("Liverpool", "Everton")])

    assert registry.is_derby("Liverpool", "Everton")
    assert registry.is_derby("Everton", "Liverpool")


def test_matching_ignores_case_and_spacing():
    registry = DerbyRegistry([("Manchester United", "Manchester City")])

    assert registry.is_derby("manchester  city", "MANCHESTER UNITED")


def test_no_substring_matches():
    registry = DerbyRegistry([("Manchester United", "Manchester City")])

    assert not registry.is_derby("Manchester United", "Manchester")
    assert not registry.is_derby("Manchester City", "Manchester City Women")


def test_from_config_string():
    registry = DerbyRegistry.from_config_string("Arsenal|Tottenham, Liverpool|Everton,")

    assert len(registry) == 2
    assert registry.is_derby("Tottenham", "Arsenal")
    assert not registry.is_derby("Arsenal", "Everton")


@pytest.mark.parametrize("value", ["Arsenal", "Arsenal|", "Arsenal|Chelsea|Spurs"])
def test_invalid_config_pair(value):
    with pytest.raises(ValueError):
        DerbyRegistry.from_config_string(value)


def test_same_team_is_not_a_derby():
    with pytest.raises(ValueError):
        DerbyRegistry([("Arsenal", "arsenal")])


def test_create_fixture_uses_configured_pairs(app):
    app.config["DERBY_PAIRS"] = "Liverpool|Everton"

    derby = Fixture.create_fixture("d1", 1, "Everton", "Liverpool", NOW)
    ordinary = Fixture.create_fixture("d2", 1, "Everton", "Chelsea", NOW)
    forced = Fixture.create_fixture("d3", 1, "Everton", "Fulham", NOW, is_derby=True)

    assert derby.is_derby is True
    assert ordinary.is_derby is False
    assert forced.is_derby is True
