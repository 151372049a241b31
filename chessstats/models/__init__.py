"""SQLAlchemy ORM models.

Models describe the schema of a freshly created main store:
- games: tournament and ingested online games
"""

from chessstats.models.game import GAME_RESULTS, Game

__all__ = ["GAME_RESULTS", "Game"]
