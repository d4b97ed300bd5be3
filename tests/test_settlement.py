import itertools
import threading
import time
from datetime import timedelta

import pytest
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from prophecy import db
from prophecy.models import GameweekScore, User
from prophecy.services import settlement
from prophecy.services.settlement import SettlementEngine, recompute_user_scores

from .conftest import NOW


@pytest.fixture
def engine(provider):
    return SettlementEngine(provider)


def _gameweek(user, gameweek):
    return GameweekScore.query.filter_by(user_id=user.id, gameweek=gameweek).one()


def test_scores_finished_fixtures(engine, provider, make_user, make_fixture, add_prediction):
    user = make_user()
    exact = make_fixture("f1")
    direction = make_fixture("f2", home_team="Fulham", away_team="Brentford")
    miss = make_fixture("f3", home_team="Wolves", away_team="Burnley")
    add_prediction(user, exact, 2, 1)
    add_prediction(user, direction, 3, 0)
    add_prediction(user, miss, 1, 1)
    provider.finish("f1", 2, 1)
    provider.finish("f2", 1, 0)
    provider.finish("f3", 0, 2)

    result = engine.run_settlement(NOW)

    assert result.success is True
    assert result.scored_count == 3
    assert result.message == "3 fixtures scored."
    assert user.total_score == 4
    assert _gameweek(user, 1).points == 4


def test_nothing_to_score(engine, make_user):
    make_user()

    result = engine.run_settlement(NOW)

    assert result == (0, True, "No fixtures to score.")


def test_unfinished_and_future_fixtures_stay_pending(
    engine, provider, make_user, make_fixture, add_prediction
):
    user = make_user()
    running = make_fixture("live")
    make_fixture("future", kickoff=NOW + timedelta(days=1))
    add_prediction(user, running, 1, 0)

    result = engine.run_settlement(NOW)

    assert result.scored_count == 0
    assert running.has_result is False
    assert provider.calls == ["live"]
    assert user.total_score == 0


def test_repeated_runs_do_not_double_count(
    engine, provider, make_user, make_fixture, add_prediction
):
    user = make_user()
    fixture = make_fixture("f1", is_derby=True)
    add_prediction(user, fixture, 2, 0)
    provider.finish("f1", 2, 0)

    engine.run_settlement(NOW)
    second = engine.run_settlement(NOW)
    engine.recompute_all(NOW)

    assert second.message == "No fixtures to score."
    assert user.total_score == 6
    assert GameweekScore.query.filter_by(user_id=user.id).count() == 1


def test_scored_fixtures_are_not_fetched_again(
    engine, provider, make_user, make_fixture
):
    make_user()
    make_fixture("f1")
    provider.finish("f1", 1, 1)

    engine.run_settlement(NOW)
    engine.run_settlement(NOW)

    assert provider.calls == ["f1"]


@pytest.mark.parametrize("order", list(itertools.permutations(["f1", "f2", "f3"])))
def test_arrival_order_does_not_change_totals(
    order, engine, provider, make_user, make_fixture, add_prediction
):
    user = make_user()
    fixtures = {
        "f1": make_fixture("f1", gameweek=1),
        "f2": make_fixture("f2", gameweek=1, home_team="Everton", away_team="Liverpool", is_derby=True),
        "f3": make_fixture("f3", gameweek=2, home_team="Leeds", away_team="Spurs"),
    }
    add_prediction(user, fixtures["f1"], 1, 0)
    add_prediction(user, fixtures["f2"], 2, 2)
    add_prediction(user, fixtures["f3"], 0, 3, is_late=True)
    final = {"f1": (1, 0), "f2": (1, 1), "f3": (0, 3)}

    # One result becomes available per run, in the given order
    for external_id in order:
        provider.finish(external_id, *final[external_id])
        engine.run_settlement(NOW)

    # 3 + 2 in GW1, 3 - 3 in GW2
    assert user.total_score == 5
    assert [(s["gameweek"], s["net_points"]) for s in user.get_gameweek_breakdown()] == [
        (1, 5),
        (2, 0),
    ]


def test_late_penalty_applied_once_per_gameweek(
    engine, provider, make_user, make_fixture, add_prediction
):
    user = make_user()
    first = make_fixture("f1")
    second = make_fixture("f2", home_team="Fulham", away_team="Brentford")
    add_prediction(user, first, 1, 0, is_late=True)
    add_prediction(user, second, 1, 0, is_late=True)
    provider.finish("f1", 1, 0)
    provider.finish("f2", 2, 2)

    engine.run_settlement(NOW)
    engine.run_settlement(NOW)
    engine.recompute_all(NOW)

    score = _gameweek(user, 1)
    assert score.penalty == 3
    assert score.points == 3
    assert user.total_score == 0


def test_penalty_counts_before_any_result(
    engine, make_user, make_fixture, add_prediction
):
    user = make_user()
    fixture = make_fixture("f1", kickoff=NOW + timedelta(hours=2))
    add_prediction(user, fixture, 1, 0, is_late=True)

    engine.run_settlement(NOW)

    assert _gameweek(user, 1).penalty == 3
    assert user.total_score == -3


def test_joker_on_derby_quadruples(
    engine, provider, make_user, make_fixture, add_prediction
):
    user = make_user()
    derby = make_fixture("f1", home_team="Everton", away_team="Liverpool", is_derby=True)
    add_prediction(user, derby, 2, 1)
    user.joker_fixture_id = derby.id
    user.joker_used = True
    db.session.commit()
    provider.finish("f1", 2, 1)

    engine.run_settlement(NOW)

    assert derby.predictions.first().points_earned == 12
    assert user.total_score == 12


def test_provider_failure_only_skips_that_fixture(
    engine, provider, make_user, make_fixture, add_prediction
):
    user = make_user()
    ok = make_fixture("ok")
    flaky = make_fixture("flaky", home_team="Fulham", away_team="Brentford")
    add_prediction(user, ok, 1, 0)
    add_prediction(user, flaky, 1, 0)
    provider.finish("ok", 1, 0)
    provider.fail("flaky")

    result = engine.run_settlement(NOW)

    assert result.success is True
    assert result.scored_count == 1
    assert flaky.has_result is False
    assert user.total_score == 3

    # Next run picks up the fixture that failed
    provider.finish("flaky", 3, 1)
    result = engine.run_settlement(NOW)

    assert result.scored_count == 1
    assert user.total_score == 4


def test_unexpected_provider_error_is_contained(
    engine, provider, make_user, make_fixture, monkeypatch
):
    make_user()
    make_fixture("f1")

    def boom(external_id):
        raise KeyError(external_id)

    monkeypatch.setattr(provider, "lookup_result", boom)

    result = engine.run_settlement(NOW)

    assert result.success is True
    assert result.scored_count == 0


def test_store_failure_reports_error(
    engine, provider, make_user, make_fixture, add_prediction, monkeypatch
):
    user = make_user()
    fixture = make_fixture("f1")
    add_prediction(user, fixture, 1, 0)
    provider.finish("f1", 1, 0)

    def failing_commit():
        raise SQLAlchemyError("database is locked")

    monkeypatch.setattr(db.session, "commit", failing_commit)

    result = engine.run_settlement(NOW)

    assert result.success is False
    assert result.message == "Error during scoring."
    monkeypatch.undo()
    assert fixture.has_result is False


def test_stale_user_is_recomputed_again(
    engine, provider, make_user, make_fixture, add_prediction, monkeypatch
):
    user = make_user()
    fixture = make_fixture("f1")
    add_prediction(user, fixture, 1, 0)
    provider.finish("f1", 1, 0)
    attempts = []

    def flaky_recompute(target, now=None):
        attempts.append(target.id)
        if len(attempts) == 1:
            raise StaleDataError("user row changed")
        return recompute_user_scores(target, now)

    monkeypatch.setattr(settlement, "recompute_user_scores", flaky_recompute)

    result = engine.run_settlement(NOW)

    assert result.success is True
    assert attempts == [user.id, user.id]
    assert db.session.get(User, user.id).total_score == 3


def test_correct_result_rescores_everyone(
    engine, provider, make_user, make_fixture, add_prediction
):
    alice = make_user("Alice")
    bob = make_user("Bob")
    fixture = make_fixture("f1")
    add_prediction(alice, fixture, 2, 1)
    add_prediction(bob, fixture, 2, 2)
    provider.finish("f1", 2, 1)
    engine.run_settlement(NOW)

    result = engine.correct_result(fixture, 2, 2, NOW)

    assert result.message == "Result corrected and scores recomputed."
    assert alice.total_score == 0
    assert bob.total_score == 3
    assert engine.correct_result(fixture, 2, 2, NOW).message == "Result unchanged."


def test_run_settlement_uses_configured_engine(app, provider, make_user, make_fixture, monkeypatch):
    make_user()
    make_fixture("f1")
    provider.finish("f1", 0, 0)
    monkeypatch.setattr(
        settlement, "get_settlement_engine", lambda result_provider=None: SettlementEngine(provider)
    )

    result = settlement.run_settlement(NOW)

    assert result.scored_count == 1


class TestSerializedRuns:
    def test_concurrent_runs_do_not_overlap(self, app, engine, monkeypatch):
        events = []
        first_entered = threading.Event()
        release_first = threading.Event()

        def fake_fetch(now):
            name = threading.current_thread().name
            events.append(("start", name))
            if name == "first":
                first_entered.set()
                release_first.wait(timeout=5)
            events.append(("end", name))
            return []

        monkeypatch.setattr(engine, "_fetch_results", fake_fetch)
        monkeypatch.setattr(engine, "_recompute_all", lambda now=None: 0)

        def settle():
            with app.app_context():
                engine.run_settlement(NOW)

        first = threading.Thread(target=settle, name="first")
        second = threading.Thread(target=settle, name="second")
        first.start()
        assert first_entered.wait(timeout=5)
        second.start()

        time.sleep(0.2)
        assert events == [("start", "first")]

        release_first.set()
        first.join(timeout=5)
        second.join(timeout=5)

        assert events == [
            ("start", "first"),
            ("end", "first"),
            ("start", "second"),
            ("end", "second"),
        ]

    def test_recompute_waits_for_running_settlement(self, app, engine, monkeypatch):
        finished = threading.Event()
        monkeypatch.setattr(engine, "_recompute_all", lambda now=None: 0)

        def recompute():
            with app.app_context():
                engine.recompute_all(NOW)
            finished.set()

        with settlement._settlement_lock:
            worker = threading.Thread(target=recompute)
            worker.start()
            assert not finished.wait(timeout=0.2)

        worker.join(timeout=5)
        assert finished.is_set()
