"""
Settlement engine.

A settlement run has two phases:

1. Fetch results for every fixture that has kicked off and has no result,
   one fixture at a time. Provider failures only affect that fixture, which
   stays pending and is picked up again by the next run.
2. Recompute every user's gameweek scores and total from their full
   prediction history. Scores are always rebuilt, never accumulated, so
   repeated or reordered runs converge on the same totals.

Only one run happens at a time within a process.
"""

import logging
import threading
from collections import defaultdict, namedtuple

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from prophecy import db
from prophecy.models import Fixture, GameweekScore, User
from prophecy.services.result_provider import ApiFootballProvider, ResultProviderError
from prophecy.utils.cache_utils import invalidate_model_cache
from prophecy.utils.scoring import apply_modifiers, calculate_points
from prophecy.utils.timezone_utils import ensure_utc, get_utc_time, to_naive_utc

logger = logging.getLogger(__name__)

SettlementResult = namedtuple("SettlementResult", ["scored_count", "success", "message"])

MAX_USER_ATTEMPTS = 3

_settlement_lock = threading.Lock()


def recompute_user_scores(user, now=None):
    """
    Rebuild a user's gameweek scores and total from their predictions.

    Points are derived from scratch every time. A gameweek penalty, once set,
    is kept and never stacked. Changes are left in the session for the
    caller to commit.

    Returns:
        list of the user's GameweekScore rows, ordered by gameweek
    """
    existing = {score.gameweek: score for score in user.gameweek_scores.all()}
    penalties = {gameweek: score.penalty for gameweek, score in existing.items()}
    points = defaultdict(int)
    active_gameweeks = set(existing)

    for prediction in user.predictions.all():
        fixture = prediction.fixture
        gameweek = fixture.gameweek

        base = calculate_points(
            (prediction.home_score, prediction.away_score), fixture.actual_score
        )
        result = apply_modifiers(
            base,
            is_derby=fixture.is_derby,
            is_joker=user.joker_fixture_id == fixture.id,
            is_late=prediction.is_late,
            gameweek_penalty=penalties.get(gameweek, 0),
        )

        if result.penalty:
            penalties[gameweek] = penalties.get(gameweek, 0) + result.penalty
            active_gameweeks.add(gameweek)

        if fixture.has_result:
            prediction.points_earned = result.points
            points[gameweek] += result.points
            active_gameweeks.add(gameweek)
        else:
            prediction.points_earned = 0

    scores = []
    for gameweek in sorted(active_gameweeks):
        score = existing.get(gameweek)
        if score is None:
            score = GameweekScore(user_id=user.id, gameweek=gameweek, penalty=0)
            db.session.add(score)

        score.points = points.get(gameweek, 0)
        score.penalty = penalties.get(gameweek, 0)
        scores.append(score)

    user.total_score = sum(score.points - score.penalty for score in scores)
    # Always touch the row so the version check covers every write
    user.scores_updated_at = to_naive_utc(now or get_utc_time())

    return scores


class SettlementEngine:
    """Fetches finished results and rebuilds all user scores"""

    def __init__(self, result_provider):
        self.result_provider = result_provider

    def run_settlement(self, now=None):
        """
        Run one settlement.

        Returns:
            SettlementResult(scored_count, success, message)
        """
        with _settlement_lock:
            now = ensure_utc(now) if now else get_utc_time()
            logger.info("Settlement run started")

            try:
                scored = self._fetch_results(now)
            except SQLAlchemyError as e:
                db.session.rollback()
                logger.error(f"Error storing fixture results: {e}", exc_info=True)
                return SettlementResult(0, False, "Error during scoring.")

            try:
                users_updated = self._recompute_all(now)
            except SQLAlchemyError as e:
                db.session.rollback()
                logger.error(f"Error recomputing user scores: {e}", exc_info=True)
                return SettlementResult(len(scored), False, "Error during scoring.")

            invalidate_model_cache("leaderboard")

            if scored:
                message = f"{len(scored)} fixtures scored."
            else:
                message = "No fixtures to score."

            logger.info(f"Settlement run finished: {message} {users_updated} users updated")
            return SettlementResult(len(scored), True, message)

    def _fetch_results(self, now):
        """Phase 1: look up and store results. Returns the newly scored fixtures."""
        candidates = Fixture.needing_results(now)
        if not candidates:
            logger.info("No fixtures awaiting results")
            return []

        scored = []
        for fixture in candidates:
            try:
                result = self.result_provider.lookup_result(fixture.external_id)
            except ResultProviderError as e:
                logger.warning(
                    f"Result lookup failed for fixture {fixture.id} ({fixture.external_id}): {e}"
                )
                continue
            except Exception as e:
                logger.error(
                    f"Unexpected error looking up fixture {fixture.id}: {e}", exc_info=True
                )
                continue

            if not result.finished:
                logger.debug(f"Fixture {fixture.id} not finished yet")
                continue

            try:
                changed = fixture.record_result(result.home_score, result.away_score)
            except ValueError as e:
                logger.warning(f"Ignoring result for fixture {fixture.id}: {e}")
                continue

            if changed:
                scored.append(fixture)
                logger.info(
                    f"Recorded {fixture.home_team} {fixture.home_score}-"
                    f"{fixture.away_score} {fixture.away_team} (GW{fixture.gameweek})"
                )

        db.session.commit()
        logger.info(
            f"Phase 1: {len(scored)} of {len(candidates)} pending fixtures scored"
        )
        return scored

    def recompute_all(self, now=None):
        """Rebuild every user's scores without contacting the result provider"""
        with _settlement_lock:
            users_updated = self._recompute_all(now)

        invalidate_model_cache("leaderboard")
        return users_updated

    def _recompute_all(self, now=None):
        """Phase 2: rebuild every user's scores, one transaction per user"""
        now = ensure_utc(now) if now else get_utc_time()
        user_ids = [user_id for (user_id,) in db.session.query(User.id).order_by(User.id)]

        for user_id in user_ids:
            self._recompute_user(user_id, now)

        logger.info(f"Phase 2: recomputed scores for {len(user_ids)} users")
        return len(user_ids)

    def _recompute_user(self, user_id, now):
        for attempt in range(1, MAX_USER_ATTEMPTS + 1):
            user = db.session.get(User, user_id)
            if user is None:
                return

            try:
                recompute_user_scores(user, now)
                db.session.commit()
                return
            except StaleDataError:
                # Another writer changed this user mid-run; reload and redo
                db.session.rollback()
                logger.warning(
                    f"Concurrent update for user {user_id}, retrying "
                    f"({attempt}/{MAX_USER_ATTEMPTS})"
                )

        logger.error(
            f"Gave up recomputing user {user_id} after {MAX_USER_ATTEMPTS} attempts; "
            "the next run will converge"
        )

    def correct_result(self, fixture, home_score, away_score, now=None):
        """Overwrite a recorded result (admin correction) and rebuild all scores"""
        with _settlement_lock:
            try:
                changed = fixture.record_result(home_score, away_score)
                db.session.commit()
                if changed:
                    logger.info(
                        f"Corrected fixture {fixture.id} to {home_score}-{away_score}"
                    )
                self._recompute_all(now)
            except SQLAlchemyError as e:
                db.session.rollback()
                logger.error(f"Error correcting fixture {fixture.id}: {e}", exc_info=True)
                return SettlementResult(0, False, "Error during correction.")

            invalidate_model_cache("leaderboard")

            if not changed:
                return SettlementResult(0, True, "Result unchanged.")
            return SettlementResult(1, True, "Result corrected and scores recomputed.")


def get_settlement_engine(result_provider=None):
    """Engine wired to the configured result provider"""
    if result_provider is None:
        result_provider = ApiFootballProvider.from_app_config(current_app.config)
    return SettlementEngine(result_provider)


def run_settlement(now=None, result_provider=None):
    """Trigger surface used by the scheduler, the admin API and the CLI"""
    return get_settlement_engine(result_provider).run_settlement(now)
