"""Pytest configuration and shared fixtures."""

import itertools
from datetime import datetime, timedelta, timezone

import pytest
from flask_login import FlaskLoginClient

from prophecy import create_app, db
from prophecy.models import Fixture, Prediction, User
from prophecy.services.result_provider import (
    NOT_FINISHED,
    ProviderResult,
    ResultProvider,
    ResultProviderError,
)
from prophecy.utils.timezone_utils import to_naive_utc

# Fixed "now" for settlement tests
NOW = datetime(2024, 9, 2, 12, 0, tzinfo=timezone.utc)


class FakeResultProvider(ResultProvider):
    """In-memory provider: fixtures are pending until finished or failing"""

    def __init__(self):
        self.results = {}
        self.failures = set()
        self.calls = []

    def finish(self, external_id, home_score, away_score):
        self.failures.discard(external_id)
        self.results[external_id] = ProviderResult(True, home_score, away_score)

    def fail(self, external_id):
        self.failures.add(external_id)

    def lookup_result(self, external_id):
        self.calls.append(external_id)
        if external_id in self.failures:
            raise ResultProviderError(f"timeout looking up {external_id}")
        return self.results.get(external_id, NOT_FINISHED)


@pytest.fixture
def app():
    app = create_app("testing")
    app.test_client_class = FlaskLoginClient

    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def provider():
    return FakeResultProvider()


@pytest.fixture
def make_user(app):
    counter = itertools.count(1)

    def _make(name=None, is_admin=False):
        n = next(counter)
        user = User(
            name=name or f"Player {n}",
            email=f"player{n}@example.com",
            is_active=True,
            is_admin=is_admin,
        )
        user.set_password("secret")
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def make_fixture(app):
    def _make(
        external_id,
        gameweek=1,
        home_team="Arsenal",
        away_team="Chelsea",
        kickoff=None,
        is_derby=False,
    ):
        fixture = Fixture.create_fixture(
            external_id,
            gameweek,
            home_team,
            away_team,
            kickoff or NOW - timedelta(days=1),
            is_derby=is_derby,
        )
        db.session.commit()
        return fixture

    return _make


@pytest.fixture
def add_prediction(app):
    """Store a prediction directly, bypassing the kickoff check in submit()"""

    def _add(user, fixture, home_score, away_score, is_late=False):
        prediction = Prediction(
            user_id=user.id,
            fixture_id=fixture.id,
            home_score=home_score,
            away_score=away_score,
            submitted_at=to_naive_utc(NOW - timedelta(days=2)),
            is_late=is_late,
        )
        db.session.add(prediction)
        db.session.commit()
        return prediction

    return _add
