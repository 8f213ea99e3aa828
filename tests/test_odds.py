"""
tests/test_odds.py

Purpose:
    League/market aliasing, odds normalization, game index and the
    event-markets / player-props helpers against a stubbed Odds API.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from conftest import make_event, spread_book
from pickforge import config
from pickforge.odds import (
    NO_PROP_MARKETS,
    UpstreamError,
    build_games_index,
    db_league,
    fetch_event_player_props,
    fetch_lines,
    map_league,
    map_markets,
    normalize_game,
    normalize_odds,
)

KICKOFF = datetime(2024, 9, 8, 17, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _api_key(monkeypatch):
    monkeypatch.setattr(config, "ODDS_API_KEY", "test-key")


def test_map_league_defaults_to_nfl():
    assert map_league(None) == "americanfootball_nfl"
    assert map_league("NCAAF") == "americanfootball_ncaaf"
    assert map_league("cricket") == "americanfootball_nfl"
    assert db_league("americanfootball_ncaaf") == "ncaaf"


@pytest.mark.parametrize("raw,expected", [
    (None, "spreads,h2h"),
    ("moneyline,totals", "h2h,totals"),
    ("ML, Spreads ,ml", "h2h,spreads"),
    ("props,alt", "spreads,h2h"),
    ("", "spreads,h2h"),
    ("totals", "totals"),
])
def test_map_markets(raw, expected):
    assert map_markets(raw) == expected


@pytest.mark.parametrize("raw", ["moneyline,totals", "ml,ml,spreads", "junk", "TOTALS,h2h,spreads"])
def test_map_markets_is_idempotent(raw):
    once = map_markets(raw)
    assert map_markets(once) == once
    assert set(once.split(",")) <= {"spreads", "h2h", "totals"}


def test_normalize_without_bookmakers_degrades_to_nulls():
    game = normalize_game(make_event("G1", KICKOFF))
    assert game["spreadHome"] is None
    assert game["spreadAway"] is None
    assert game["moneyline"] == {}
    assert game["source"] == "unknown"
    assert game["commenceTime"] == "2024-09-08T17:00:00Z"


def test_normalize_prefers_first_book_with_spreads():
    h2h_only = {"key": "a", "title": "BookA", "markets": [
        {"key": "h2h", "outcomes": [{"name": "Miami Dolphins", "price": -150}]},
    ]}
    with_spreads = spread_book("BookB", "Miami Dolphins", "Buffalo Bills", -2.5, 2.5)
    game = normalize_game(make_event("G1", KICKOFF, bookmakers=[h2h_only, with_spreads]))
    assert game["source"] == "BookB"
    assert game["spreadHome"] == -2.5
    assert game["spreadAway"] == 2.5
    assert game["moneyline"] == {"Miami Dolphins": -140, "Buffalo Bills": 120}


def test_normalize_falls_back_to_first_book_and_keeps_partial_moneyline():
    book = {"key": "a", "title": "BookA", "markets": [
        {"key": "h2h", "outcomes": [{"name": "Buffalo Bills", "price": 105}]},
    ]}
    game = normalize_game(make_event("G1", KICKOFF, bookmakers=[book]))
    assert game["source"] == "BookA"
    assert game["spreadHome"] is None
    assert game["moneyline"] == {"Buffalo Bills": 105}


def test_normalize_spread_outcome_without_point_is_null():
    book = {"title": "BookA", "markets": [
        {"key": "spreads", "outcomes": [{"name": "Miami Dolphins", "price": -110}]},
    ]}
    game = normalize_game(make_event("G1", KICKOFF, bookmakers=[book]))
    assert game["spreadHome"] is None
    assert game["spreadAway"] is None


def test_malformed_event_does_not_abort_batch():
    raw = [
        make_event("G1", KICKOFF),
        {"home_team": "No Id"},
        "not-an-event",
        make_event("G2", KICKOFF, bookmakers=[{"title": "X", "markets": None}]),
    ]
    games = normalize_odds(raw)
    assert [g["id"] for g in games] == ["G1", "G2"]
    assert games[1]["source"] == "X"


@pytest.mark.asyncio
async def test_fetch_lines_sends_params_and_returns_quota_meta(upstream):
    upstream.set(
        "/sports/americanfootball_nfl/odds",
        json=[make_event("G1", KICKOFF)],
        headers={"x-requests-remaining": "480", "x-requests-used": "20"},
    )
    async with upstream.client() as client:
        games, meta = await fetch_lines(client, "americanfootball_nfl", "us", "h2h,totals")

    assert [g["id"] for g in games] == ["G1"]
    assert meta == {"xRemaining": "480", "xUsed": "20"}
    params = upstream.calls[0].url.params
    assert params["apiKey"] == "test-key"
    assert params["markets"] == "h2h,totals"
    assert params["oddsFormat"] == "american"


@pytest.mark.asyncio
async def test_upstream_error_carries_status_detail_and_meta(upstream):
    upstream.set("/odds", status=429, text="quota exceeded", headers={"x-requests-remaining": "0"})
    async with upstream.client() as client:
        with pytest.raises(UpstreamError) as info:
            await fetch_lines(client, "americanfootball_nfl", "us", "h2h")
    assert info.value.status == 429
    assert info.value.detail == "quota exceeded"
    assert info.value.meta["xRemaining"] == "0"
    assert not info.value.timed_out


@pytest.mark.asyncio
async def test_non_json_success_body_is_upstream_error(upstream):
    upstream.set("/odds", status=200, text="<html>maintenance</html>", headers={"x-requests-used": "3"})
    async with upstream.client() as client:
        with pytest.raises(UpstreamError) as info:
            await fetch_lines(client, "americanfootball_nfl", "us", "h2h")
    assert info.value.status == 200
    assert "maintenance" in info.value.detail
    assert info.value.meta["xUsed"] == "3"


@pytest.mark.asyncio
async def test_timeout_surfaces_as_upstream_error(upstream):
    upstream.raise_timeout = True
    async with upstream.client() as client:
        with pytest.raises(UpstreamError) as info:
            await build_games_index(client, "americanfootball_nfl")
    assert info.value.timed_out
    assert info.value.status is None


@pytest.mark.asyncio
async def test_build_games_index_uses_moneyline_snapshot(upstream):
    upstream.set("/odds", json=[make_event("G1", KICKOFF), {"id": ""}, make_event("G2", KICKOFF, home="Jets")])
    async with upstream.client() as client:
        idx = await build_games_index(client, "americanfootball_nfl")

    assert set(idx) == {"G1", "G2"}
    assert idx["G2"] == {"commenceTime": "2024-09-08T17:00:00Z", "home": "Jets", "away": "Buffalo Bills"}
    params = upstream.calls[0].url.params
    assert params["markets"] == "h2h"
    assert params["regions"] == "us"


def _event_with_markets(*keys):
    return {"id": "E1", "bookmakers": [{"key": "dk", "markets": [{"key": k} for k in keys]}]}


@pytest.mark.asyncio
async def test_player_props_auto_uses_sport_defaults_that_exist(upstream):
    upstream.set("/events/E1", json=_event_with_markets("player_points", "player_blocks", "h2h"))
    upstream.set("/events/E1/odds", json={"id": "E1", "bookmakers": []})
    async with upstream.client() as client:
        result = await fetch_event_player_props(client, "basketball_nba", "E1")

    assert result["markets"] == ["player_points"]
    odds_call = [r for r in upstream.calls if r.url.path.endswith("/events/E1/odds")][0]
    assert odds_call.url.params["markets"] == "player_points"


@pytest.mark.asyncio
async def test_player_props_explicit_markets_fall_back_to_available_player_markets(upstream):
    upstream.set("/events/E1", json=_event_with_markets("player_rec_yds", "player_anytime_td"))
    upstream.set("/events/E1/odds", json={"id": "E1"})
    async with upstream.client() as client:
        result = await fetch_event_player_props(client, "americanfootball_nfl", "E1", markets="player_kicking_points")

    assert result["markets"] == ["player_anytime_td", "player_rec_yds"]


@pytest.mark.asyncio
async def test_player_props_none_available(upstream):
    upstream.set("/events/E1", json=_event_with_markets("h2h", "spreads"))
    async with upstream.client() as client:
        result = await fetch_event_player_props(client, "americanfootball_nfl", "E1", markets=["player_pass_yds"])

    assert result == {"markets": [], "message": NO_PROP_MARKETS, "data": None}
    assert upstream.count("/odds") == 0
