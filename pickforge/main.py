from fastapi import FastAPI, Body, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel
from contextlib import asynccontextmanager
import httpx
import logging
import asyncio
from datetime import datetime, timezone
from typing import Any, Optional, Union

from pickforge import config
from pickforge.cache import OddsCache, fingerprint
from pickforge.grading import calc_result_amount, calc_to_win, season_stats
from pickforge.odds import (
    UpstreamError,
    build_games_index,
    db_league,
    fetch_event_markets,
    fetch_event_player_props,
    fetch_lines,
    map_league,
    map_markets,
)
from pickforge.picks import PickBatchError, classify_picks, parse_pick_batch
from pickforge.results import sync_games_from_picks
from pickforge.schedule import nfl_week_number, week_window
from pickforge.slips import (
    VISION_MODES,
    SlipOcrError,
    annotate_image,
    fetch_as_base64,
    parse_slip_from_ocr,
    shape_ocr_response,
    strip_data_url,
    vision_access_token,
)
from pickforge.store import get_store


@asynccontextmanager
async def lifespan(app: FastAPI):
    config.require_odds_api_key()
    yield
    for task in list(_background_tasks):
        task.cancel()


app = FastAPI(title="PickForge API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Owned by the serving process; tests swap it for one with a fake clock.
app.state.odds_cache = OddsCache(ttl=config.ODDS_CACHE_TTL)


def http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient()


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ── BACKGROUND WORK ───────────────────────────────────────────────────────────
# Strong refs so detached tasks aren't garbage-collected mid-flight.
_background_tasks: set[asyncio.Task] = set()


def _on_task_done(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logging.error(f"Background task {task.get_name()} failed: {exc!r}")


def spawn_background(coro, name: str) -> asyncio.Task:
    """Run `coro` detached from the request; failures are logged, never raised."""
    task = asyncio.create_task(coro, name=name)
    _background_tasks.add(task)
    task.add_done_callback(_on_task_done)
    return task


async def _background_sync_games(league_key: str) -> None:
    """Sync scores for picked games after the odds response has been sent."""
    async with http_client() as client:
        await sync_games_from_picks(client, league_key, get_store())


# ── ERRORS ────────────────────────────────────────────────────────────────────
def _upstream_response(e: UpstreamError) -> JSONResponse:
    logging.warning(f"Odds upstream error status={e.status} timed_out={e.timed_out}: {e.detail[:200]}")
    return JSONResponse(
        status_code=504 if e.timed_out else 502,
        content={"error": "upstream_error", "status": e.status, "detail": e.detail, "meta": e.meta},
    )


def _server_error(e: Exception) -> JSONResponse:
    logging.exception(f"server_error: {e}")
    return JSONResponse(status_code=500, content={"error": "server_error", "detail": str(e)})


# ── ENDPOINTS ─────────────────────────────────────────────────────────────────
@app.get("/health")
def health():
    return {"ok": True}


@app.get("/api/lines")
async def get_lines(request: Request, league: Optional[str] = None, region: str = "us", markets: Optional[str] = None):
    """Normalized odds for a league. Cached per league/region/market set."""
    league_key = map_league(league)
    markets = map_markets(markets)
    region = region or "us"

    cache: OddsCache = request.app.state.odds_cache
    key = fingerprint(league_key, region, markets)
    cached = cache.get(key)
    if cached is not None:
        return cached

    try:
        async with http_client() as client:
            games, meta = await fetch_lines(client, league_key, region, markets)
    except UpstreamError as e:
        return _upstream_response(e)
    except Exception as e:
        return _server_error(e)

    spawn_background(_background_sync_games(league_key), name=f"games-sync:{league_key}")

    payload = {
        "league": league_key,
        "games": games,
        "meta": {**meta, "fetchedAt": _now().isoformat()},
    }
    cache.put(key, payload)
    return payload


@app.post("/api/picks")
async def submit_picks(payload: Any = Body(default=None)):
    """
    Validate a pick batch against fresh kickoff times.
    body: { league?: "nfl"|"ncaaf", picks: [{ gameId, side: "home"|"away" }] }
    """
    league_key = map_league(payload.get("league") if isinstance(payload, dict) else None)
    try:
        picks = parse_pick_batch(payload)
    except PickBatchError as e:
        return JSONResponse(status_code=400, content={"error": e.code, "message": e.message})

    try:
        async with http_client() as client:
            index = await build_games_index(client, league_key)
    except UpstreamError as e:
        return _upstream_response(e)
    except Exception as e:
        return _server_error(e)

    now = _now()
    accepted, rejected = classify_picks(picks, index, now)
    logging.info(f"Picks league={league_key} accepted={len(accepted)} rejected={len(rejected)}")
    return {
        "serverTime": now.isoformat(),
        "league": league_key,
        "accepted": accepted,
        "rejected": rejected,
    }


@app.get("/api/week")
def current_week():
    now = _now()
    start, end = week_window(now)
    return {"week": nfl_week_number(now), "weekStart": start.isoformat(), "weekEnd": end.isoformat()}


@app.get("/api/stats")
def get_stats(league: Optional[str] = None, week: Optional[int] = None):
    """Per-user record, streak and Moneyline Mastery from stored picks + games."""
    store = get_store()
    if store is None:
        return JSONResponse(status_code=503, content={"error": "store_unavailable"})
    tag = db_league(map_league(league))
    picks = store.load_picks(tag, week)
    game_ids = sorted({p["game_id"] for p in picks if p.get("game_id")})
    games = store.load_games(game_ids) if game_ids else {}
    return {"league": tag, "week": week, "stats": season_stats(picks, games)}


# ── EVENT MARKETS / PROPS ─────────────────────────────────────────────────────
class EventPropsRequest(BaseModel):
    sportKey: str = ""
    eventId: str = ""
    regions: str = "us"
    markets: Union[list[str], str, None] = "auto"


def _missing_parameters() -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "missing_parameters", "detail": "sportKey and eventId are required"},
    )


@app.get("/api/odds/event-markets")
async def event_markets(sportKey: str = "", eventId: str = "", regions: str = "us"):
    if not sportKey or not eventId:
        return _missing_parameters()
    try:
        async with http_client() as client:
            result = await fetch_event_markets(client, sportKey, eventId, regions)
    except UpstreamError as e:
        return _upstream_response(e)
    return {
        "ok": True,
        "sportKey": sportKey,
        "eventId": eventId,
        "regions": regions,
        "bookmakers": result["bookmakers"],
        "meta": result["meta"],
    }


@app.post("/api/odds/event-props")
async def event_props(req: EventPropsRequest):
    if not req.sportKey or not req.eventId:
        return _missing_parameters()
    try:
        async with http_client() as client:
            result = await fetch_event_player_props(client, req.sportKey, req.eventId, req.regions, req.markets)
    except UpstreamError as e:
        return _upstream_response(e)

    out = {
        "source": "odds_api",
        "sportKey": req.sportKey,
        "eventId": req.eventId,
        "regions": req.regions,
        "markets": result["markets"],
    }
    if result["data"] is None:
        return {**out, "available_markets": [], "message": result["message"]}
    return {**out, "data": result["data"], "meta": result["meta"]}


# ── BET MATH ──────────────────────────────────────────────────────────────────
class BetQuoteRequest(BaseModel):
    odds: float
    stake: float
    status: str = "pending"


@app.post("/api/bets/quote")
def bet_quote(req: BetQuoteRequest):
    to_win = calc_to_win(req.odds, req.stake)
    return {"toWin": to_win, "resultAmount": calc_result_amount(req.status, req.stake, to_win)}


# ── SLEEPER PROXY ─────────────────────────────────────────────────────────────
@app.get("/api/sleeper/{path:path}")
async def sleeper_proxy(path: str, request: Request):
    url = f"{config.SLEEPER_API_BASE}/{path}"
    try:
        async with http_client() as client:
            r = await client.get(url, params=dict(request.query_params), timeout=config.UPSTREAM_TIMEOUT)
    except httpx.HTTPError as e:
        logging.warning(f"Sleeper fetch failed for {path}: {e}")
        return JSONResponse(status_code=500, content={"error": "Sleeper fetch failed"})
    return Response(
        content=r.content,
        status_code=r.status_code,
        media_type=r.headers.get("content-type") or "application/json",
        headers={"Cache-Control": "s-maxage=300, stale-while-revalidate=600"},
    )


# ── BET SLIP OCR ──────────────────────────────────────────────────────────────
class VisionOcrRequest(BaseModel):
    imageUrl: Optional[str] = None
    imageBase64: Optional[str] = None
    mode: Optional[str] = None
    debug: bool = False


class SlipParseRequest(BaseModel):
    text: str = ""
    bookHint: Optional[str] = None


@app.post("/api/vision-ocr")
async def vision_ocr(req: VisionOcrRequest):
    if not req.imageUrl and not req.imageBase64:
        return JSONResponse(status_code=400, content={"error": "Missing imageUrl or imageBase64"})
    mode = req.mode if req.mode in VISION_MODES else "DOCUMENT_TEXT_DETECTION"
    try:
        token = await asyncio.to_thread(vision_access_token)
        async with http_client() as client:
            if req.imageBase64:
                content = strip_data_url(req.imageBase64)
            else:
                content = await fetch_as_base64(client, req.imageUrl)
            resp = await annotate_image(client, content, mode, token)
        data = resp.json()
    except (SlipOcrError, httpx.HTTPError, ValueError) as e:
        logging.warning(f"Vision OCR failed: {e}")
        return JSONResponse(status_code=500, content={"error": "Server error", "details": str(e)})

    if resp.status_code >= 400:
        return JSONResponse(status_code=resp.status_code, content={"error": "Vision API error", "details": data})
    return shape_ocr_response(data, mode, req.debug)


@app.post("/api/slips/parse")
def parse_slip(req: SlipParseRequest):
    return parse_slip_from_ocr(req.text, book_hint=req.bookHint)
