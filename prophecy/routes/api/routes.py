import logging
from functools import wraps

from flask import current_app, jsonify, request
from flask_login import current_user, login_required
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from prophecy import db, limiter
from prophecy.models import Fixture, Prediction, Prophecy, User
from prophecy.routes.api import bp
from prophecy.services import settlement
from prophecy.utils.cache_utils import cached_route
from prophecy.utils.timezone_utils import get_utc_time

logger = logging.getLogger(__name__)


def admin_required(f):
    """Reject non-admin users with a JSON 403"""

    @wraps(f)
    @login_required
    def decorated_function(*args, **kwargs):
        if not current_user.is_admin:
            return jsonify({"error": "Access denied"}), 403
        return f(*args, **kwargs)

    return decorated_function


def _get_fixture(fixture_id):
    try:
        return db.session.get(Fixture, int(fixture_id))
    except (TypeError, ValueError):
        return None


@bp.route("/fixtures")
def fixtures():
    """Get fixtures, optionally for one gameweek"""
    gameweek = request.args.get("gameweek", type=int)

    if gameweek:
        fixture_list = Fixture.get_for_gameweek(gameweek)
    else:
        fixture_list = Fixture.query.order_by(Fixture.kickoff_time).all()

    return jsonify([fixture.to_dict() for fixture in fixture_list])


@bp.route("/leaderboard")
@cached_route(timeout=300, key_prefix="leaderboard")
def leaderboard():
    """Season leaderboard, refreshed after every settlement"""
    return {"leaderboard": User.get_leaderboard()}


@bp.route("/me")
@login_required
def me():
    """Current user with predictions and gameweek breakdown"""
    return jsonify(current_user.to_dict(include_details=True))


@bp.route("/prophecies", methods=["POST"])
@login_required
@limiter.limit("10 per minute")
def submit_prophecies():
    """
    Save the current user's season prophecies.

    Body: {"prophecies": {"winner": team, "relegation": [team, ...],
           "golden_boot": player, "first_sacking": manager}}
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Expected a JSON object"}), 400

    prophecy, message = Prophecy.save_for_user(current_user, data.get("prophecies"))
    if prophecy is None:
        return jsonify({"success": False, "message": message}), 400

    try:
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        logger.warning(f"Conflicting prophecy write for user {current_user.id}: {e}")
        return jsonify({"error": "Prophecies changed concurrently, please retry"}), 409

    return jsonify(
        {"success": True, "message": message, "prophecies": prophecy.to_dict()}
    )


@bp.route("/predictions", methods=["POST"])
@login_required
@limiter.limit("30 per minute")
def submit_predictions():
    """
    Save predictions and the joker choice for the current user.

    Body: {"predictions": {fixture_id: {"home_score": h, "away_score": a}},
           "joker_fixture_id": id or null}
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Expected a JSON object"}), 400

    submitted = data.get("predictions") or {}
    if not isinstance(submitted, dict):
        return jsonify({"error": "predictions must be an object keyed by fixture id"}), 400

    # Server receipt time decides lateness
    now = get_utc_time()
    deadline_minutes = current_app.config.get("PREDICTION_DEADLINE_MINUTES", 0)

    saved = []
    rejected = []
    for fixture_id, scores in submitted.items():
        scores = scores if isinstance(scores, dict) else {}
        prediction, message = Prediction.submit(
            current_user,
            _get_fixture(fixture_id),
            scores.get("home_score"),
            scores.get("away_score"),
            now=now,
            deadline_minutes=deadline_minutes,
        )
        if prediction is None:
            rejected.append({"fixture_id": fixture_id, "error": message})
        else:
            saved.append(prediction)

    joker = None
    if "joker_fixture_id" in data:
        joker_id = data.get("joker_fixture_id")
        joker_fixture = _get_fixture(joker_id) if joker_id is not None else None

        if joker_id is not None and joker_fixture is None:
            joker = {"success": False, "message": "Fixture not found"}
        else:
            success, message = current_user.select_joker(joker_fixture, now)
            joker = {"success": success, "message": message}

    try:
        db.session.commit()
    except (IntegrityError, StaleDataError) as e:
        db.session.rollback()
        logger.warning(f"Conflicting prediction write for user {current_user.id}: {e}")
        return jsonify({"error": "Predictions changed concurrently, please retry"}), 409

    return jsonify(
        {
            "success": True,
            "submitted_at": now.isoformat(),
            "saved": [
                {
                    "fixture_id": p.fixture_id,
                    "home_score": p.home_score,
                    "away_score": p.away_score,
                    "is_late": p.is_late,
                }
                for p in saved
            ],
            "rejected": rejected,
            "joker": joker,
        }
    )


@bp.route("/admin/settle", methods=["POST"])
@admin_required
def admin_settle():
    """Run one settlement now"""
    result = settlement.run_settlement()
    status = 200 if result.success else 500
    return jsonify(result._asdict()), status


@bp.route("/admin/scheduler")
@admin_required
def admin_scheduler():
    """Scheduler status and run statistics"""
    from prophecy.services.scheduler_service import scheduler_service

    return jsonify(scheduler_service.get_status())
