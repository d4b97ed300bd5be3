from datetime import datetime, timezone

from prophecy import db
from prophecy.utils.scoring import parse_score
from prophecy.utils.timezone_utils import ensure_utc, get_utc_time, to_naive_utc


class Prediction(db.Model):
    __tablename__ = "predictions"

    id = db.Column(db.Integer, primary_key=True)

    # Prediction identification
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    fixture_id = db.Column(db.Integer, db.ForeignKey("fixtures.id"), nullable=False)

    # Predicted score
    home_score = db.Column(db.Integer, nullable=False)
    away_score = db.Column(db.Integer, nullable=False)

    # Server receipt time of the latest submission and whether it missed the
    # gameweek deadline
    submitted_at = db.Column(db.DateTime, nullable=False)
    is_late = db.Column(db.Boolean, default=False, nullable=False)

    # Results (rewritten by every settlement run)
    points_earned = db.Column(db.Integer, default=0, nullable=False)

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Constraints and indexes
    __table_args__ = (
        db.UniqueConstraint("user_id", "fixture_id", name="unique_user_fixture_prediction"),
        db.CheckConstraint(
            "home_score >= 0 AND away_score >= 0", name="non_negative_prediction"
        ),
        db.Index("idx_prediction_user", "user_id"),
        db.Index("idx_prediction_fixture", "fixture_id"),
    )

    def __repr__(self):
        return f"<Prediction user_id={self.user_id} fixture_id={self.fixture_id} {self.home_score}-{self.away_score}>"

    @property
    def gameweek(self):
        """Get the gameweek number from the associated fixture"""
        return self.fixture.gameweek if self.fixture else None

    @staticmethod
    def submit(user, fixture, home_score, away_score, now=None, deadline_minutes=0):
        """
        Create or replace a user's prediction for a fixture.

        Lateness is decided here from the server time and the gameweek
        deadline, never from anything the client sends.

        Returns:
            tuple: (prediction, message), prediction is None when rejected
        """
        from .fixture import Fixture

        if fixture is None:
            return None, "Fixture not found"

        home = parse_score(home_score)
        away = parse_score(away_score)
        if home is None or away is None:
            return None, "Scores must be whole numbers of 0 or more"

        now = ensure_utc(now) if now else get_utc_time()

        if fixture.has_started(now):
            return None, "Fixture has already kicked off"

        deadline = Fixture.gameweek_deadline(fixture.gameweek, deadline_minutes)
        is_late = deadline is not None and now > deadline

        existing = Prediction.query.filter_by(
            user_id=user.id, fixture_id=fixture.id
        ).first()

        if existing:
            existing.home_score = home
            existing.away_score = away
            existing.submitted_at = to_naive_utc(now)
            existing.is_late = is_late
            return existing, "Prediction updated"

        prediction = Prediction(
            user_id=user.id,
            fixture_id=fixture.id,
            home_score=home,
            away_score=away,
            submitted_at=to_naive_utc(now),
            is_late=is_late,
        )
        prediction.fixture = fixture
        db.session.add(prediction)
        return prediction, "Prediction saved"

    def to_dict(self):
        """Convert prediction to dictionary for API responses"""
        return {
            "id": self.id,
            "fixture_id": self.fixture_id,
            "gameweek": self.gameweek,
            "home_score": self.home_score,
            "away_score": self.away_score,
            "submitted_at": (
                ensure_utc(self.submitted_at).isoformat() if self.submitted_at else None
            ),
            "is_late": self.is_late,
            "points_earned": self.points_earned,
            "fixture": self.fixture.to_dict() if self.fixture else None,
        }
