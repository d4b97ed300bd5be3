from datetime import datetime, timezone

from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash

from prophecy import db


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)

    # Account status
    is_active = db.Column(db.Boolean, default=True)
    is_admin = db.Column(db.Boolean, default=False)

    # Season total, always re-derived from gameweek scores by settlement
    total_score = db.Column(db.Integer, default=0, nullable=False)
    scores_updated_at = db.Column(db.DateTime)

    # Joker chip: one fixture per season doubles its points
    joker_fixture_id = db.Column(
        db.Integer, db.ForeignKey("fixtures.id"), nullable=True
    )
    joker_used = db.Column(db.Boolean, default=False, nullable=False)

    # Optimistic concurrency between settlement and user writes
    version_id = db.Column(db.Integer, nullable=False)

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    # Relationships
    predictions = db.relationship(
        "Prediction", backref="user", lazy="dynamic", cascade="all, delete-orphan"
    )
    gameweek_scores = db.relationship(
        "GameweekScore", backref="user", lazy="dynamic", cascade="all, delete-orphan"
    )
    joker_fixture = db.relationship("Fixture", foreign_keys=[joker_fixture_id])

    __table_args__ = (db.Index("idx_user_total_score", "total_score"),)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self):
        return f"<User {self.email}>"

    def set_password(self, password):
        """Set password hash"""
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        """Check password against hash"""
        return check_password_hash(self.password_hash, password)

    def is_joker_locked(self, now=None):
        """The joker is locked once its fixture has kicked off"""
        return self.joker_fixture is not None and self.joker_fixture.has_started(now)

    def select_joker(self, fixture, now=None):
        """
        Choose (or clear, with fixture=None) the joker fixture.

        The choice can change freely until the chosen fixture kicks off,
        after which it is locked for the rest of the season.

        Returns:
            tuple: (success, message)
        """
        current_id = self.joker_fixture_id
        new_id = fixture.id if fixture is not None else None

        if new_id == current_id:
            return True, "Joker unchanged"

        if self.is_joker_locked(now):
            return (
                False,
                f"Joker already played on {self.joker_fixture.home_team} v "
                f"{self.joker_fixture.away_team}",
            )

        if fixture is None:
            self.joker_fixture_id = None
            self.joker_fixture = None
            return True, "Joker cleared"

        if fixture.has_started(now):
            return False, "Cannot play the joker on a fixture that has kicked off"

        self.joker_fixture = fixture
        self.joker_fixture_id = fixture.id
        self.joker_used = True
        return True, "Joker selected"

    def get_gameweek_breakdown(self):
        """Per-gameweek points, penalty and net score, ordered by gameweek"""
        from .gameweek_score import GameweekScore

        scores = self.gameweek_scores.order_by(GameweekScore.gameweek).all()
        return [score.to_dict() for score in scores]

    @staticmethod
    def get_leaderboard():
        """Active users ordered by total score; equal totals share a rank"""
        users = (
            User.query.filter_by(is_active=True)
            .order_by(User.total_score.desc(), User.name.asc())
            .all()
        )

        leaderboard = []
        rank = 0
        previous_score = None
        for position, user in enumerate(users, start=1):
            if user.total_score != previous_score:
                rank = position
                previous_score = user.total_score

            leaderboard.append(
                {
                    "rank": rank,
                    "user_id": user.id,
                    "name": user.name,
                    "total_score": user.total_score,
                }
            )

        return leaderboard

    def to_dict(self, include_details=False):
        """Convert user to dictionary for API responses"""
        data = {
            "id": self.id,
            "name": self.name,
            "total_score": self.total_score,
            "joker": {
                "fixture_id": self.joker_fixture_id,
                "used": self.joker_used,
                "locked": self.is_joker_locked(),
            },
        }

        if include_details:
            data["email"] = self.email
            data["gameweeks"] = self.get_gameweek_breakdown()
            data["predictions"] = [p.to_dict() for p in self.predictions.all()]
            data["prophecies"] = self.prophecy.to_dict() if self.prophecy else None

        return data
