import logging
from typing import Optional

import httpx

from pickforge import config

# ── LEAGUES & MARKETS ─────────────────────────────────────────────────────────
LEAGUE_MAP = {
    "nfl": "americanfootball_nfl",
    "ncaaf": "americanfootball_ncaaf",
}

# Odds API expects 'h2h' for moneyline
MARKET_ALIASES = {"moneyline": "h2h", "ml": "h2h"}
ALLOWED_MARKETS = ("spreads", "h2h", "totals")
DEFAULT_MARKETS = "spreads,h2h"

# Safe starter list of player prop markets per sport
DEFAULT_PLAYER_MARKETS: dict[str, list[str]] = {
    "basketball_nba": ["player_points", "player_rebounds", "player_assists"],
    "americanfootball_nfl": ["player_pass_yds", "player_rush_yds", "player_rec_yds"],
}

NO_PROP_MARKETS = "no_player_prop_markets_available_for_event_yet"


def map_league(q: Optional[str]) -> str:
    k = str(q or "nfl").strip().lower()
    return LEAGUE_MAP.get(k, LEAGUE_MAP["nfl"])


def db_league(league_key: str) -> str:
    """Odds API sport key (americanfootball_nfl) -> stored league tag (nfl)."""
    return "nfl" if "nfl" in league_key else "ncaaf"


def map_markets(q: Optional[str]) -> str:
    """Resolve a comma-separated market list to Odds API keys.

    Aliases are mapped, unsupported tokens dropped, duplicates removed
    (first occurrence wins). Falls back to 'spreads,h2h' when nothing survives.
    """
    parts = [s.strip().lower() for s in str(q or "spreads,moneyline").split(",")]
    out: list[str] = []
    for m in parts:
        m = MARKET_ALIASES.get(m, m)
        if m in ALLOWED_MARKETS and m not in out:
            out.append(m)
    return ",".join(out) or DEFAULT_MARKETS


# ── UPSTREAM CLIENT ───────────────────────────────────────────────────────────
class UpstreamError(Exception):
    """Non-2xx or timeout from the odds provider."""

    def __init__(self, status: int | None, detail: str, meta: dict | None = None, timed_out: bool = False):
        super().__init__(detail or f"Odds API error: {status}")
        self.status = status
        self.detail = detail
        self.meta = meta or {}
        self.timed_out = timed_out


def _quota_meta(resp: httpx.Response) -> dict:
    return {
        "xRemaining": resp.headers.get("x-requests-remaining"),
        "xUsed": resp.headers.get("x-requests-used"),
    }


async def odds_fetch(client: httpx.AsyncClient, path: str, params: dict) -> tuple[object, dict]:
    """GET an Odds API path. Returns (json, quota meta) or raises UpstreamError."""
    url = f"{config.ODDS_API_BASE}{path}"
    try:
        r = await client.get(
            url,
            params={"apiKey": config.ODDS_API_KEY, **params},
            timeout=config.UPSTREAM_TIMEOUT,
        )
    except httpx.TimeoutException:
        raise UpstreamError(None, "Request timed out", timed_out=True)
    except httpx.HTTPError as e:
        raise UpstreamError(None, f"Request failed: {e}")

    meta = _quota_meta(r)
    if r.status_code >= 400:
        raise UpstreamError(r.status_code, r.text, meta)
    try:
        return r.json(), meta
    except ValueError:
        raise UpstreamError(r.status_code, r.text, meta)


# ── NORMALIZER ────────────────────────────────────────────────────────────────
def _pick_bookmaker(bookmakers: list[dict]) -> dict | None:
    """First book that quotes spreads, else the first book listed."""
    for b in bookmakers:
        if any(m.get("key") == "spreads" for m in b.get("markets") or []):
            return b
    return bookmakers[0] if bookmakers else None


def normalize_game(event: dict) -> dict:
    home = event.get("home_team")
    away = event.get("away_team")

    book = _pick_bookmaker(event.get("bookmakers") or [])
    by_key = {m.get("key"): m for m in (book or {}).get("markets") or []}
    m_spreads = by_key.get("spreads") or {}
    m_h2h = by_key.get("h2h") or {}

    spread_home = spread_away = None
    for o in m_spreads.get("outcomes") or []:
        if o.get("name") == home:
            spread_home = o.get("point")
        if o.get("name") == away:
            spread_away = o.get("point")

    moneyline = {}
    for o in m_h2h.get("outcomes") or []:
        moneyline[o.get("name")] = o.get("price")

    return {
        "id": event["id"],
        "commenceTime": event.get("commence_time"),
        "home": home,
        "away": away,
        "spreadHome": spread_home,
        "spreadAway": spread_away,
        "moneyline": moneyline,
        "source": (book or {}).get("title") or "unknown",
    }


def normalize_odds(raw) -> list[dict]:
    """Map a raw /odds event list to canonical game records, skipping bad events."""
    games = []
    for event in raw or []:
        try:
            games.append(normalize_game(event))
        except (KeyError, TypeError, AttributeError) as e:
            logging.warning(f"Skipping malformed odds event: {e!r}")
    return games


async def fetch_lines(client: httpx.AsyncClient, league_key: str, region: str, markets: str) -> tuple[list[dict], dict]:
    raw, meta = await odds_fetch(
        client,
        f"/sports/{league_key}/odds",
        {"regions": region, "markets": markets, "oddsFormat": "american"},
    )
    return normalize_odds(raw), meta


# ── GAME INDEX ────────────────────────────────────────────────────────────────
async def build_games_index(client: httpx.AsyncClient, league_key: str) -> dict[str, dict]:
    """
    Fresh game id -> {commenceTime, home, away} lookup for lock validation.
    Moneyline only to keep upstream cost down. Never cached: kickoff times
    must be as fresh as possible.
    """
    raw, _ = await odds_fetch(
        client,
        f"/sports/{league_key}/odds",
        {"regions": "us", "markets": "h2h", "oddsFormat": "american"},
    )
    idx: dict[str, dict] = {}
    for g in raw or []:
        if not isinstance(g, dict) or not g.get("id"):
            continue
        idx[g["id"]] = {
            "commenceTime": g.get("commence_time"),
            "home": g.get("home_team"),
            "away": g.get("away_team"),
        }
    return idx


async def fetch_scores(client: httpx.AsyncClient, league_key: str, days_from: int | None = None) -> list[dict]:
    raw, _ = await odds_fetch(
        client,
        f"/sports/{league_key}/scores",
        {"daysFrom": str(days_from or config.SCORES_DAYS_FROM), "dateFormat": "iso"},
    )
    return raw or []


# ── EVENT MARKETS / PLAYER PROPS ──────────────────────────────────────────────
def _available_markets(bookmakers: list[dict] | None) -> set[str]:
    available = set()
    for bm in bookmakers or []:
        for m in bm.get("markets") or []:
            if m.get("key"):
                available.add(m["key"])
    return available


async def fetch_event_markets(client: httpx.AsyncClient, sport_key: str, event_id: str, regions: str = "us") -> dict:
    data, meta = await odds_fetch(client, f"/sports/{sport_key}/events/{event_id}", {"regions": regions})
    bookmakers = data.get("bookmakers") if isinstance(data, dict) else None
    return {"bookmakers": bookmakers, "raw": data, "meta": meta}


async def fetch_event_player_props(
    client: httpx.AsyncClient,
    sport_key: str,
    event_id: str,
    regions: str = "us",
    markets: str | list[str] | None = "auto",
) -> dict:
    """
    Fetch player props for one event, requesting only markets the event exposes.

    markets="auto" intersects the sport's default prop markets with what the
    event offers; an explicit list/comma string is filtered the same way.
    Either way falls back to any available player_* market.
    """
    markets = markets or "auto"
    found = await fetch_event_markets(client, sport_key, event_id, regions)
    available = _available_markets(found["bookmakers"])
    fallback = sorted(k for k in available if k.startswith("player_"))

    if markets == "auto":
        wanted = DEFAULT_PLAYER_MARKETS.get(sport_key, [])
    elif isinstance(markets, list):
        wanted = [m for m in markets if m]
    else:
        wanted = [s.strip() for s in markets.split(",") if s.strip()]

    final = [m for m in wanted if m in available] or fallback
    if not final:
        return {"markets": [], "message": NO_PROP_MARKETS, "data": None}

    data, meta = await odds_fetch(
        client,
        f"/sports/{sport_key}/events/{event_id}/odds",
        {"regions": regions, "markets": ",".join(final)},
    )
    return {"markets": final, "data": data, "meta": meta}
