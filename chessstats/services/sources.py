"""HTTP clients for the external game sources (Lichess, Chess.com).

Each client issues exactly one outbound request per call and never throttles
itself: throttling and persistence belong to IngestionClient, which is the only
caller. Transport problems are classified as FetchFailure so the caller can
decide whether to retry.

Endpoints:
- Lichess: GET /games/user/{username} (NDJSON, one game per line)
- Chess.com: GET /player/{username}/games/{YYYY}/{MM} (JSON {"games": [...]})
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import httpx

from chessstats.errors import FetchFailure
from chessstats.settings import Settings, get_settings

logger = logging.getLogger("uvicorn.error")

LICHESS = "lichess"
CHESSCOM = "chesscom"


@dataclass(frozen=True)
class GamesRequest:
    """What to pull for one player.

    Lichess uses max_games; Chess.com serves monthly archives and uses
    year/month (default: the current month).
    """

    username: str
    max_games: int = 100
    year: int | None = None
    month: int | None = None


@dataclass
class IngestedRecord:
    """Raw game payload as retrieved; consumed by ingestion, never retained."""

    source: str
    payload: dict[str, Any]
    retrieved_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _int_or_none(value: Any) -> int | None:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


class GameSource(ABC):
    """Shared HTTP plumbing for a single external source.

    Subclasses provide the endpoint and payload mapping.
    """

    name: str = ""
    BASE_URL: str = ""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self._timeout = timeout or get_settings().http_timeout_seconds
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None

    def _headers(self) -> dict[str, str]:
        return {"Accept": "application/json"}

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self._timeout,
                headers=self._headers(),
                transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def _get(self, path: str, params: dict[str, Any] | None = None, **kwargs: Any) -> httpx.Response:
        client = await self._get_client()
        url = f"{self.base_url}{path}"
        try:
            response = await client.get(url, params=params, **kwargs)
        except httpx.TransportError as e:
            raise FetchFailure(self.name, f"{type(e).__name__}: {e}") from e

        if response.status_code >= 400:
            raise FetchFailure(
                self.name,
                f"HTTP {response.status_code} for {path}",
                status_code=response.status_code,
                retry_after=_parse_retry_after(response.headers.get("retry-after")),
            )
        return response

    @abstractmethod
    async def fetch_games(self, request: GamesRequest) -> list[IngestedRecord]:
        """One outbound request for the player's games."""

    @abstractmethod
    def normalize(self, record: IngestedRecord) -> dict[str, Any] | None:
        """Map a raw payload to a `games` row, or None if it is unusable."""


class LichessSource(GameSource):
    """Lichess public API."""

    name = LICHESS
    BASE_URL = "https://lichess.org/api"

    def __init__(self, base_url: str | None = None, *, api_token: str | None = None, **kwargs: Any):
        super().__init__(base_url, **kwargs)
        self.api_token = api_token if api_token is not None else get_settings().lichess_api_token

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/x-ndjson"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return headers

    async def fetch_games(self, request: GamesRequest) -> list[IngestedRecord]:
        params = {
            "max": request.max_games,
            "perfType": "classical,rapid,blitz,bullet",
            "pgnInJson": "true",
            "opening": "true",
            "rated": "true",
        }
        response = await self._get(f"/games/user/{request.username}", params=params)

        records: list[IngestedRecord] = []
        for line in response.text.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                payload = json.loads(line)
            except json.JSONDecodeError:
                logger.warning(f"Skipping malformed Lichess NDJSON line for {request.username}")
                continue
            records.append(IngestedRecord(source=self.name, payload=payload))

        logger.info(f"Lichess returned {len(records)} games for {request.username}")
        return records

    def normalize(self, record: IngestedRecord) -> dict[str, Any] | None:
        game = record.payload
        game_id = game.get("id")
        players = game.get("players") or {}
        white = (players.get("white") or {}).get("user") or {}
        black = (players.get("black") or {}).get("user") or {}
        if not game_id or not white.get("name") or not black.get("name"):
            return None

        winner = game.get("winner")
        if winner == "white":
            result = "1-0"
        elif winner == "black":
            result = "0-1"
        elif game.get("status") in ("draw", "stalemate"):
            result = "1/2-1/2"
        else:
            result = "*"

        played_at = None
        if game.get("createdAt"):
            played_at = datetime.fromtimestamp(game["createdAt"] / 1000, tz=timezone.utc).strftime("%Y.%m.%d")

        clock = game.get("clock") or {}
        time_control = None
        if clock.get("initial") is not None:
            time_control = f"{clock['initial']}+{clock.get('increment', 0)}"

        opening = game.get("opening") or {}
        moves = game.get("moves") or ""
        return {
            "source": self.name,
            "external_id": str(game_id),
            "white": white["name"],
            "black": black["name"],
            "white_elo": _int_or_none((players.get("white") or {}).get("rating")),
            "black_elo": _int_or_none((players.get("black") or {}).get("rating")),
            "result": result,
            "date": played_at,
            "eco": opening.get("eco"),
            "opening": opening.get("name"),
            "time_control": time_control,
            "time_class": game.get("speed"),
            "ply_count": len(moves.split()) if moves else None,
            "pgn": game.get("pgn"),
            "retrieved_at": record.retrieved_at.isoformat(),
        }


class ChessComSource(GameSource):
    """Chess.com published-data API."""

    name = CHESSCOM
    BASE_URL = "https://api.chess.com/pub"

    def __init__(self, base_url: str | None = None, *, user_agent: str | None = None, **kwargs: Any):
        # Chess.com terms require an identifying User-Agent
        self.user_agent = user_agent or get_settings().http_user_agent
        super().__init__(base_url, **kwargs)

    def _headers(self) -> dict[str, str]:
        return {"Accept": "application/json", "User-Agent": self.user_agent}

    async def fetch_games(self, request: GamesRequest) -> list[IngestedRecord]:
        now = datetime.now(timezone.utc)
        year = request.year or now.year
        month = request.month or now.month
        username = request.username.lower()

        response = await self._get(f"/player/{username}/games/{year:04d}/{month:02d}")
        try:
            data = response.json()
        except ValueError as e:
            raise FetchFailure(self.name, f"invalid JSON archive for {username}") from e

        games = data.get("games") or []
        records = [IngestedRecord(source=self.name, payload=g) for g in games[-request.max_games:]]
        logger.info(f"Chess.com returned {len(records)} games for {username} ({year}-{month:02d})")
        return records

    def normalize(self, record: IngestedRecord) -> dict[str, Any] | None:
        game = record.payload
        url = game.get("url")
        white = game.get("white") or {}
        black = game.get("black") or {}
        if not url or not white.get("username") or not black.get("username"):
            return None

        white_result = white.get("result")
        black_result = black.get("result")
        if white_result == "win":
            result = "1-0"
        elif black_result == "win":
            result = "0-1"
        elif white_result in _CHESSCOM_DRAWS:
            result = "1/2-1/2"
        else:
            result = "*"

        played_at = None
        if game.get("end_time"):
            played_at = datetime.fromtimestamp(game["end_time"], tz=timezone.utc).strftime("%Y.%m.%d")

        pgn = game.get("pgn")
        return {
            "source": self.name,
            "external_id": url,
            "white": white["username"],
            "black": black["username"],
            "white_elo": _int_or_none(white.get("rating")),
            "black_elo": _int_or_none(black.get("rating")),
            "result": result,
            "date": played_at,
            "eco": _pgn_header(pgn, "ECO"),
            "opening": _opening_from_eco_url(game.get("eco")),
            "time_control": game.get("time_control"),
            "time_class": game.get("time_class"),
            "ply_count": None,
            "pgn": pgn,
            "retrieved_at": record.retrieved_at.isoformat(),
        }


_CHESSCOM_DRAWS = {"agreed", "repetition", "stalemate", "insufficient", "50move", "timevsinsufficient"}


def _pgn_header(pgn: str | None, tag: str) -> str | None:
    if not pgn:
        return None
    prefix = f'[{tag} "'
    for line in pgn.splitlines():
        if line.startswith(prefix) and line.endswith('"]'):
            return line[len(prefix):-2] or None
    return None


def _opening_from_eco_url(eco_url: str | None) -> str | None:
    """Chess.com gives the opening as a URL, e.g. .../openings/Sicilian-Defense-Najdorf."""
    if not eco_url:
        return None
    slug = eco_url.rstrip("/").rsplit("/", 1)[-1]
    return slug.replace("-", " ") or None


def build_sources(
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, GameSource]:
    """Create one client per configured source."""
    settings = settings or get_settings()
    timeout = settings.http_timeout_seconds
    return {
        LICHESS: LichessSource(
            settings.lichess_base_url,
            api_token=settings.lichess_api_token,
            timeout=timeout,
            transport=transport,
        ),
        CHESSCOM: ChessComSource(
            settings.chesscom_base_url,
            user_agent=settings.http_user_agent,
            timeout=timeout,
            transport=transport,
        ),
    }
