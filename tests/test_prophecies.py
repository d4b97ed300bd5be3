from datetime import timedelta

import pytest

from prophecy import db
from prophecy.models import Prophecy
from prophecy.utils.timezone_utils import get_utc_time

from .conftest import NOW

PICKS = {
    "winner": "Arsenal",
    "relegation": ["Ipswich", "Southampton", "Leicester"],
    "golden_boot": "Erling Haaland",
    "first_sacking": "Gary O'Neil",
}


class TestSaveForUser:
    def test_save_then_replace(self, make_user):
        user = make_user()

        prophecy, message = Prophecy.save_for_user(user, PICKS, now=NOW)
        db.session.commit()
        assert message == "Prophecies saved"

        replaced, message = Prophecy.save_for_user(user, {"winner": "Liverpool"}, now=NOW)
        db.session.commit()

        assert message == "Prophecies updated"
        assert replaced.id == prophecy.id
        assert Prophecy.query.count() == 1
        assert replaced.to_dict()["winner"] == "Liverpool"
        assert replaced.relegation == []
        assert replaced.golden_boot == ""

    def test_answers_are_tidied(self, make_user):
        prophecy, _ = Prophecy.save_for_user(
            make_user(),
            {"winner": "  Manchester   City ", "relegation": ["Luton", "", "Burnley"]},
            now=NOW,
        )

        assert prophecy.winner == "Manchester City"
        assert prophecy.relegation == ["Luton", "Burnley"]

    @pytest.mark.parametrize(
        "picks",
        [
            {"winner": 7},
            {"relegation": "Luton"},
            {"relegation": ["A", "B", "C", "D"]},
            {"relegation": ["Luton", "luton"]},
            {"golden_boot": "x" * 101},
        ],
    )
    def test_invalid_picks_rejected(self, make_user, picks):
        prophecy, _ = Prophecy.save_for_user(make_user(), picks, now=NOW)

        assert prophecy is None
        assert Prophecy.query.count() == 0

    def test_body_must_be_object(self, make_user):
        assert Prophecy.save_for_user(make_user(), ["Arsenal"], now=NOW)[0] is None

    def test_locked_once_season_kicks_off(self, make_user, make_fixture):
        user = make_user()
        make_fixture("opener", kickoff=NOW + timedelta(hours=1))

        before, _ = Prophecy.save_for_user(user, PICKS, now=NOW)
        after, message = Prophecy.save_for_user(
            user, PICKS, now=NOW + timedelta(hours=1)
        )

        assert before is not None
        assert after is None
        assert message == "The season has started, prophecies are locked"


class TestProphecyApi:
    def test_requires_login(self, app):
        response = app.test_client().post("/api/prophecies", json={"prophecies": PICKS})

        assert response.status_code == 401

    def test_submit_and_read_back(self, app, make_user, make_fixture):
        make_fixture("opener", kickoff=get_utc_time() + timedelta(days=5))
        client = app.test_client(user=make_user())

        response = client.post("/api/prophecies", json={"prophecies": PICKS})

        assert response.status_code == 200
        assert response.get_json()["message"] == "Prophecies saved"

        me = client.get("/api/me").get_json()
        assert me["prophecies"]["relegation"] == PICKS["relegation"]
        assert me["prophecies"]["first_sacking"] == "Gary O'Neil"

    def test_rejected_picks_return_400(self, app, make_user):
        response = app.test_client(user=make_user()).post(
            "/api/prophecies", json={"prophecies": {"relegation": ["A", "B", "C", "D"]}}
        )

        assert response.status_code == 400
        assert response.get_json()["success"] is False

    def test_locked_after_first_kickoff(self, app, make_user, make_fixture):
        make_fixture("opener", kickoff=get_utc_time() - timedelta(days=1))

        response = app.test_client(user=make_user()).post(
            "/api/prophecies", json={"prophecies": PICKS}
        )

        assert response.status_code == 400
        assert Prophecy.query.count() == 0

    def test_me_without_prophecies(self, app, make_user):
        me = app.test_client(user=make_user()).get("/api/me").get_json()

        assert me["prophecies"] is None
