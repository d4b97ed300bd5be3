from prophecy import db  # noqa: F401 - imported for model imports

from .fixture import Fixture
from .gameweek_score import GameweekScore
from .prediction import Prediction
from .prophecy import Prophecy
from .user import User

__all__ = [
    "User",
    "Fixture",
    "Prediction",
    "GameweekScore",
    "Prophecy",
]
