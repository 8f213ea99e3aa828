import logging

import httpx

from pickforge.odds import db_league, fetch_scores


def _parse_score(value) -> int | None:
    if value is None:
        return None
    try:
        return int(float(str(value).strip()))
    except (ValueError, OverflowError):
        return None


def weeks_by_game(picks: list[dict]) -> dict[str, int]:
    """game_id -> week of the first pick that referenced it (first write wins)."""
    out: dict[str, int] = {}
    for p in picks:
        gid = p.get("game_id")
        if not gid or gid in out:
            continue
        out[gid] = p.get("week")
    return out


def build_result_rows(api_games: list[dict], week_by_game: dict[str, int], league: str) -> list[dict]:
    """Game-result rows for score entries that someone picked; others are ignored."""
    rows = []
    for g in api_games:
        week = week_by_game.get(g.get("id"))
        if week is None:
            continue

        scores = g.get("scores") or []
        home_row = next((s for s in scores if s.get("name") == g.get("home_team")), {})
        away_row = next((s for s in scores if s.get("name") == g.get("away_team")), {})
        home_score = _parse_score(home_row.get("score"))
        away_score = _parse_score(away_row.get("score"))

        # real scores count as final even if 'completed' lags behind
        is_final = bool(g.get("completed")) or home_score is not None or away_score is not None

        rows.append({
            "id": g["id"],
            "league": league,
            "week": week,
            "home_team": g.get("home_team"),
            "away_team": g.get("away_team"),
            "kickoff_time": g.get("commence_time"),
            "status": "final" if is_final else "scheduled",
            "home_score": home_score,
            "away_score": away_score,
        })
    return rows


async def sync_games_from_picks(client: httpx.AsyncClient, league_key: str, store) -> int:
    """
    Pull recent scores and upsert results for games users have picked.
    Best-effort: every failure is logged and swallowed. Returns rows written.
    """
    if store is None:
        logging.warning("[games-sync] store not configured, skipping.")
        return 0

    league = db_league(league_key)
    try:
        logging.info(f"[games-sync] start league_key={league_key} league={league}")

        picks = store.load_picks(league)
        week_by_game = weeks_by_game(picks)
        logging.info(f"[games-sync] picks loaded {len(picks)} unique games: {len(week_by_game)}")
        if not week_by_game:
            logging.info("[games-sync] no games with picks yet, skipping.")
            return 0

        api_games = await fetch_scores(client, league_key)
        logging.info(f"[games-sync] scores from API: {len(api_games)}")

        rows = build_result_rows(api_games, week_by_game, league)
        if not rows:
            logging.info("[games-sync] no matching games with scores to upsert.")
            return 0

        store.upsert_games(rows)
        logging.info(f"[games-sync] upserted {len(rows)} games for league={league}")
        return len(rows)
    except Exception as e:
        logging.error(f"[games-sync] failed: {e!r}")
        return 0
