from datetime import datetime, timezone

from prophecy import db


class GameweekScore(db.Model):
    __tablename__ = "gameweek_scores"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    gameweek = db.Column(db.Integer, nullable=False)

    # Derived by settlement from the user's predictions
    points = db.Column(db.Integer, default=0, nullable=False)
    # Flat late-submission penalty, at most once per gameweek
    penalty = db.Column(db.Integer, default=0, nullable=False)

    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("user_id", "gameweek", name="unique_user_gameweek"),
        db.CheckConstraint("penalty >= 0", name="non_negative_penalty"),
    )

    def __repr__(self):
        return f"<GameweekScore user_id={self.user_id} GW{self.gameweek} {self.points}-{self.penalty}>"

    @property
    def net_points(self):
        return self.points - self.penalty

    def to_dict(self):
        return {
            "gameweek": self.gameweek,
            "points": self.points,
            "penalty": self.penalty,
            "net_points": self.net_points,
        }
