"""
tests/conftest.py

Purpose:
    Shared fixtures: fake clock, in-memory pick/game store, stubbed odds
    upstream (httpx.MockTransport) and a TestClient wired to them.
"""

from __future__ import annotations

import os

os.environ.setdefault("ODDS_API_KEY", "test-key")

from datetime import datetime, timedelta, timezone

import httpx
import pytest
from fastapi.testclient import TestClient

from pickforge import config
from pickforge import main
from pickforge.cache import OddsCache


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeStore:
    """Stands in for FirestoreStore."""

    def __init__(self, picks: list[dict] | None = None, games: dict[str, dict] | None = None):
        self.picks = list(picks or [])
        self.games = dict(games or {})
        self.upserts: list[list[dict]] = []

    def load_picks(self, league: str, week: int | None = None) -> list[dict]:
        return [
            p for p in self.picks
            if p.get("league") == league and (week is None or p.get("week") == week)
        ]

    def load_games(self, game_ids: list[str]) -> dict[str, dict]:
        return {gid: self.games[gid] for gid in game_ids if gid in self.games}

    def upsert_games(self, rows: list[dict]) -> None:
        self.upserts.append(rows)
        for row in rows:
            self.games[row["id"]] = {**self.games.get(row["id"], {}), **row}


class OddsUpstream:
    """Records requests and serves canned Odds API responses by path suffix."""

    def __init__(self):
        self.calls: list[httpx.Request] = []
        self.routes: dict[str, httpx.Response] = {}
        self.raise_timeout = False

    def set(self, suffix: str, status: int = 200, json=None, headers: dict | None = None, text: str | None = None):
        if text is not None:
            self.routes[suffix] = httpx.Response(status, text=text, headers=headers or {})
        else:
            self.routes[suffix] = httpx.Response(status, json=json, headers=headers or {})

    def count(self, suffix: str) -> int:
        return sum(1 for r in self.calls if r.url.path.endswith(suffix))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        if self.raise_timeout:
            raise httpx.ReadTimeout("timed out", request=request)
        for suffix, resp in self.routes.items():
            if request.url.path.endswith(suffix):
                return httpx.Response(resp.status_code, content=resp.content, headers=resp.headers)
        return httpx.Response(404, text="not found")

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


def iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def make_event(event_id: str, kickoff: datetime, home: str = "Miami Dolphins", away: str = "Buffalo Bills",
               bookmakers: list[dict] | None = None) -> dict:
    return {
        "id": event_id,
        "sport_key": "americanfootball_nfl",
        "commence_time": iso(kickoff),
        "home_team": home,
        "away_team": away,
        "bookmakers": bookmakers if bookmakers is not None else [],
    }


def spread_book(title: str, home: str, away: str, home_pt: float, away_pt: float) -> dict:
    return {
        "key": title.lower(),
        "title": title,
        "markets": [
            {"key": "spreads", "outcomes": [
                {"name": home, "price": -110, "point": home_pt},
                {"name": away, "price": -110, "point": away_pt},
            ]},
            {"key": "h2h", "outcomes": [
                {"name": home, "price": -140},
                {"name": away, "price": 120},
            ]},
        ],
    }


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def upstream() -> OddsUpstream:
    return OddsUpstream()


@pytest.fixture
def api(monkeypatch, upstream, store, clock):
    monkeypatch.setattr(config, "ODDS_API_KEY", "test-key")
    monkeypatch.setattr(main, "http_client", upstream.client)
    monkeypatch.setattr(main, "get_store", lambda: store)
    monkeypatch.setattr(main.app.state, "odds_cache", OddsCache(ttl=30, clock=clock))
    with TestClient(main.app) as client:
        yield client


@pytest.fixture
def future() -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=2)
