"""Game model.

One row per game in the main store. Over-the-board games come from the bulk
tournament import (source "otb"); online games are ingested from Lichess and
Chess.com and keep the platform's game id in external_id.

Example external_id: "q7ZvsdUF" (Lichess), "https://www.chess.com/game/live/98765" (Chess.com)
"""

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from chessstats.stores.sqlite import Base

GAME_RESULTS = ("1-0", "0-1", "1/2-1/2", "*")


class Game(Base):
    """A finished game with the headers used by the statistics queries."""

    __tablename__ = "games"
    __table_args__ = (
        # Re-ingesting a game must not duplicate it
        UniqueConstraint("source", "external_id", name="uq_games_source_external_id"),
        CheckConstraint("result IN ('1-0', '0-1', '1/2-1/2', '*')", name="ck_games_result"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    # Provenance
    source: Mapped[str] = mapped_column(String(20), default="otb", index=True)  # otb/lichess/chesscom
    external_id: Mapped[str | None] = mapped_column(String(200))

    # Players
    white: Mapped[str] = mapped_column(String(200), index=True)
    black: Mapped[str] = mapped_column(String(200), index=True)
    white_elo: Mapped[int | None] = mapped_column(Integer)
    black_elo: Mapped[int | None] = mapped_column(Integer)

    # Outcome and headers
    result: Mapped[str] = mapped_column(String(7), default="*")
    date: Mapped[str | None] = mapped_column(String(10), index=True)  # YYYY.MM.DD as in PGN
    eco: Mapped[str | None] = mapped_column(String(3), index=True)
    opening: Mapped[str | None] = mapped_column(String(200))
    time_control: Mapped[str | None] = mapped_column(String(20))  # e.g. "180+2"
    time_class: Mapped[str | None] = mapped_column(String(20), index=True)  # bullet/blitz/rapid/classical
    ply_count: Mapped[int | None] = mapped_column(Integer)
    pgn: Mapped[str | None] = mapped_column(Text)

    retrieved_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
