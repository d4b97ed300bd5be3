from datetime import datetime, timezone

from prophecy import db
from prophecy.utils.timezone_utils import ensure_utc, get_utc_time, to_naive_utc

RELEGATION_PLACES = 3
MAX_ANSWER_LENGTH = 100


class Prophecy(db.Model):
    """A user's season-long picks, made before the season kicks off"""

    __tablename__ = "prophecies"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), unique=True, nullable=False
    )

    # Season picks, empty string / empty list when not answered
    winner = db.Column(db.String(MAX_ANSWER_LENGTH), default="", nullable=False)
    relegation = db.Column(db.JSON, default=list, nullable=False)
    golden_boot = db.Column(db.String(MAX_ANSWER_LENGTH), default="", nullable=False)
    first_sacking = db.Column(db.String(MAX_ANSWER_LENGTH), default="", nullable=False)

    submitted_at = db.Column(db.DateTime, nullable=False)

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    user = db.relationship(
        "User", backref=db.backref("prophecy", uselist=False, cascade="all, delete-orphan")
    )

    def __repr__(self):
        return f"<Prophecy user_id={self.user_id} winner={self.winner!r}>"

    @staticmethod
    def season_deadline():
        """The first kickoff of the season; None before any fixture exists"""
        from .fixture import Fixture

        first_kickoff = db.session.query(db.func.min(Fixture.kickoff_time)).scalar()
        return ensure_utc(first_kickoff)

    @staticmethod
    def _clean_answer(value, field):
        if value is None:
            return ""
        if not isinstance(value, str):
            raise ValueError(f"{field} must be text")
        value = " ".join(value.split())
        if len(value) > MAX_ANSWER_LENGTH:
            raise ValueError(f"{field} must be at most {MAX_ANSWER_LENGTH} characters")
        return value

    @staticmethod
    def _clean_relegation(value):
        if value is None:
            return []
        if not isinstance(value, list):
            raise ValueError("relegation must be a list of teams")

        teams = [Prophecy._clean_answer(team, "relegation") for team in value]
        teams = [team for team in teams if team]
        if len(teams) > RELEGATION_PLACES:
            raise ValueError(f"relegation takes at most {RELEGATION_PLACES} teams")
        if len({team.casefold() for team in teams}) != len(teams):
            raise ValueError("relegation teams must be different")
        return teams

    @staticmethod
    def save_for_user(user, data, now=None):
        """
        Create or replace a user's prophecies.

        Every submission replaces the whole set; omitted answers are cleared.
        Prophecies are locked once the first fixture of the season kicks off.

        Returns:
            tuple: (prophecy, message), prophecy is None when rejected
        """
        if not isinstance(data, dict):
            return None, "Prophecies must be an object"

        now = ensure_utc(now) if now else get_utc_time()
        deadline = Prophecy.season_deadline()
        if deadline is not None and now >= deadline:
            return None, "The season has started, prophecies are locked"

        try:
            answers = {
                "winner": Prophecy._clean_answer(data.get("winner"), "winner"),
                "relegation": Prophecy._clean_relegation(data.get("relegation")),
                "golden_boot": Prophecy._clean_answer(
                    data.get("golden_boot"), "golden_boot"
                ),
                "first_sacking": Prophecy._clean_answer(
                    data.get("first_sacking"), "first_sacking"
                ),
            }
        except ValueError as e:
            return None, str(e)

        prophecy = Prophecy.query.filter_by(user_id=user.id).first()
        message = "Prophecies updated"
        if prophecy is None:
            prophecy = Prophecy(user_id=user.id)
            db.session.add(prophecy)
            message = "Prophecies saved"

        for field, value in answers.items():
            setattr(prophecy, field, value)
        prophecy.submitted_at = to_naive_utc(now)

        return prophecy, message

    def to_dict(self):
        return {
            "winner": self.winner,
            "relegation": list(self.relegation or []),
            "golden_boot": self.golden_boot,
            "first_sacking": self.first_sacking,
            "submitted_at": (
                ensure_utc(self.submitted_at).isoformat() if self.submitted_at else None
            ),
        }
