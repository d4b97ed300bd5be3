from datetime import datetime, timedelta, timezone

from prophecy import db
from prophecy.utils.timezone_utils import ensure_utc, get_utc_time, to_naive_utc

MAX_GAMEWEEK = 38


class Fixture(db.Model):
    __tablename__ = "fixtures"

    id = db.Column(db.Integer, primary_key=True)

    # External ID used to correlate with the result provider
    external_id = db.Column(db.String(50), unique=True, nullable=False, index=True)

    # Fixture identification
    gameweek = db.Column(db.Integer, nullable=False)
    home_team = db.Column(db.String(100), nullable=False)
    away_team = db.Column(db.String(100), nullable=False)
    kickoff_time = db.Column(db.DateTime, nullable=False)
    is_derby = db.Column(db.Boolean, default=False, nullable=False)

    # Final score (both NULL until the match finishes)
    home_score = db.Column(db.Integer)
    away_score = db.Column(db.Integer)
    result_recorded_at = db.Column(db.DateTime)

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    predictions = db.relationship(
        "Prediction", backref="fixture", lazy="dynamic", cascade="all, delete-orphan"
    )

    # Indexes and constraints
    __table_args__ = (
        db.Index("idx_fixture_gameweek", "gameweek"),
        db.Index("idx_fixture_kickoff", "kickoff_time"),
        db.CheckConstraint("home_team != away_team", name="different_teams"),
        db.CheckConstraint(
            f"gameweek >= 1 AND gameweek <= {MAX_GAMEWEEK}", name="gameweek_range"
        ),
        db.CheckConstraint(
            "(home_score IS NULL AND away_score IS NULL) OR "
            "(home_score IS NOT NULL AND away_score IS NOT NULL)",
            name="result_fully_set",
        ),
    )

    def __repr__(self):
        return f"<Fixture {self.home_team} v {self.away_team} GW{self.gameweek}>"

    @property
    def has_result(self):
        """Check if the final score has been recorded"""
        return self.home_score is not None and self.away_score is not None

    @property
    def actual_score(self):
        """Final score as a (home, away) pair, None while pending"""
        if not self.has_result:
            return None
        return (self.home_score, self.away_score)

    @property
    def kickoff_utc(self):
        return ensure_utc(self.kickoff_time)

    def has_started(self, now=None):
        """Check if the fixture has kicked off"""
        if not self.kickoff_time:
            return False
        now = ensure_utc(now) if now else get_utc_time()
        return now >= self.kickoff_utc

    @property
    def status(self):
        if self.has_result:
            return "finished"
        if self.has_started():
            return "awaiting_result"
        return "scheduled"

    def record_result(self, home_score, away_score):
        """
        Store the final score.

        Both scores must be present; a recorded result is never cleared.
        Returns True if the stored score changed.
        """
        if home_score is None or away_score is None:
            raise ValueError("A result needs both a home and an away score")
        if home_score < 0 or away_score < 0:
            raise ValueError("Scores cannot be negative")

        if self.home_score == home_score and self.away_score == away_score:
            return False

        self.home_score = home_score
        self.away_score = away_score
        self.result_recorded_at = datetime.now(timezone.utc)
        return True

    @staticmethod
    def needing_results(now=None):
        """Fixtures that have kicked off but have no result yet"""
        # Stored datetimes are naive UTC
        cutoff = to_naive_utc(now or get_utc_time())

        return (
            Fixture.query.filter(
                Fixture.kickoff_time < cutoff, Fixture.home_score.is_(None)
            )
            .order_by(Fixture.kickoff_time)
            .all()
        )

    @staticmethod
    def create_fixture(
        external_id, gameweek, home_team, away_team, kickoff_time, is_derby=None
    ):
        """Create a fixture; the derby flag defaults to the configured derby pairs"""
        if not 1 <= gameweek <= MAX_GAMEWEEK:
            raise ValueError(f"Gameweek must be between 1 and {MAX_GAMEWEEK}")

        if is_derby is None:
            from prophecy.utils.derbies import DerbyRegistry

            is_derby = DerbyRegistry.from_app_config().is_derby(home_team, away_team)

        fixture = Fixture(
            external_id=str(external_id),
            gameweek=gameweek,
            home_team=home_team,
            away_team=away_team,
            kickoff_time=to_naive_utc(kickoff_time),
            is_derby=is_derby,
        )
        db.session.add(fixture)
        return fixture

    @staticmethod
    def get_for_gameweek(gameweek):
        return (
            Fixture.query.filter_by(gameweek=gameweek)
            .order_by(Fixture.kickoff_time)
            .all()
        )

    @staticmethod
    def gameweek_deadline(gameweek, deadline_minutes=0):
        """
        Prediction deadline for a gameweek: the first kickoff of the gameweek
        minus deadline_minutes. None if the gameweek has no fixtures.
        """
        first_kickoff = (
            db.session.query(db.func.min(Fixture.kickoff_time))
            .filter(Fixture.gameweek == gameweek)
            .scalar()
        )
        if first_kickoff is None:
            return None
        return ensure_utc(first_kickoff) - timedelta(minutes=deadline_minutes)

    def to_dict(self):
        """Convert fixture to dictionary for API responses"""
        from prophecy.utils.timezone_utils import convert_to_app_timezone

        return {
            "id": self.id,
            "external_id": self.external_id,
            "gameweek": self.gameweek,
            "home_team": self.home_team,
            "away_team": self.away_team,
            "kickoff_time": self.kickoff_utc.isoformat() if self.kickoff_time else None,
            "kickoff_local": (
                convert_to_app_timezone(self.kickoff_time).isoformat()
                if self.kickoff_time
                else None
            ),
            "is_derby": self.is_derby,
            "home_score": self.home_score,
            "away_score": self.away_score,
            "status": self.status,
        }
