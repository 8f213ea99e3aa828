from datetime import datetime

from pickforge.schedule import nfl_week_number, parse_iso

SIDES = ("home", "away")


class PickBatchError(Exception):
    """Request-level problem with a pick batch (maps to HTTP 400)."""

    MESSAGES = {
        "no_picks": "No picks provided",
        "bad_pick": "Invalid pick shape",
    }

    def __init__(self, code: str):
        super().__init__(self.MESSAGES.get(code, code))
        self.code = code
        self.message = self.MESSAGES.get(code, code)


def parse_pick_batch(body) -> list[dict]:
    """
    Check batch shape before any upstream call.

    An empty/missing list is 'no_picks'. Any item without a string gameId or
    with a side outside home/away fails the whole request as 'bad_pick'.
    """
    picks = body.get("picks") if isinstance(body, dict) else None
    if not isinstance(picks, list) or not picks:
        raise PickBatchError("no_picks")
    for p in picks:
        if not isinstance(p, dict) or p.get("side") not in SIDES:
            raise PickBatchError("bad_pick")
        game_id = p.get("gameId")
        if not isinstance(game_id, str) or not game_id:
            raise PickBatchError("bad_pick")
    return picks


def classify_picks(picks: list[dict], index: dict[str, dict], now: datetime) -> tuple[list[dict], list[dict]]:
    """Split picks into (accepted, rejected), keeping input order in each.

    A pick is locked from the kickoff instant on: now == kickoff is rejected.
    """
    accepted: list[dict] = []
    rejected: list[dict] = []
    received_at = now.isoformat()

    for p in picks:
        meta = index.get(p["gameId"])
        if not meta:
            rejected.append({**p, "reason": "unknown_game"})
            continue
        kickoff = parse_iso(meta.get("commenceTime"))
        # unparseable kickoff can't be proven open
        if kickoff is None or now >= kickoff:
            rejected.append({**p, "reason": "locked"})
            continue
        accepted.append({
            **p,
            "commenceTime": meta["commenceTime"],
            "receivedAt": received_at,
            "week": nfl_week_number(kickoff),
        })
    return accepted, rejected
