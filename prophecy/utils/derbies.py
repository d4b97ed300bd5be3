"""
Derby detection for fixtures.

Derbies are configured as unordered pairs of team names. Matching is done on
whole normalized names so that, for example, "Manchester United" never
matches a pairing that only names "Manchester".
"""

from flask import current_app


def _normalize(team_name):
    return " ".join((team_name or "").split()).casefold()


class DerbyRegistry:
    """Set of unordered team pairs whose fixtures count double"""

    def __init__(self, pairs=()):
        self._pairs = set()
        for home, away in pairs:
            self.add(home, away)

    @classmethod
    def from_config_string(cls, value):
        """Build a registry from "Team A|Team B,Team C|Team D" """
        pairs = []
        for chunk in (value or "").split(","):
            if not chunk.strip():
                continue
            teams = [t.strip() for t in chunk.split("|")]
            if len(teams) != 2 or not all(teams):
                raise ValueError(f"Invalid derby pair: {chunk!r}")
            pairs.append((teams[0], teams[1]))
        return cls(pairs)

    @classmethod
    def from_app_config(cls):
        return cls.from_config_string(current_app.config.get("DERBY_PAIRS", ""))

    def add(self, home_team, away_team):
        home, away = _normalize(home_team), _normalize(away_team)
        if home == away:
            raise ValueError("A derby needs two different teams")
        self._pairs.add(frozenset((home, away)))

    def is_derby(self, home_team, away_team):
        return frozenset((_normalize(home_team), _normalize(away_team))) in self._pairs

    def __len__(self):
        return len(self._pairs)
