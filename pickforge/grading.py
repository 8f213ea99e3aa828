"""Pick grading, Moneyline Mastery scoring, bet math and season stats."""

FINAL_STATUSES = ("final", "finished", "complete", "completed", "closed", "ended")


def is_final_status(status: str | None) -> bool:
    if not status:
        return False
    s = status.lower()
    # "final_ot", "final overtime", ...
    return s in FINAL_STATUSES or s.startswith("final")


def grade_pick(pick: dict, game: dict | None) -> str:
    """'win' | 'loss' | 'push' | 'pending' for a stored pick against its game row."""
    if not game or not is_final_status(game.get("status")):
        return "pending"
    home, away = game.get("home_score"), game.get("away_score")
    if home is None or away is None:
        return "pending"

    picked, other = (home, away) if pick.get("side") == "home" else (away, home)

    # Moneyline or missing spread -> straight up
    if pick.get("picked_price_type") == "ml" or pick.get("picked_price") is None:
        diff = picked - other
    else:
        diff = picked + pick["picked_price"] - other

    if diff > 0:
        return "win"
    if diff < 0:
        return "loss"
    return "push"


def classify_dog_fav(pick: dict) -> str:
    price, price_type = pick.get("picked_price"), pick.get("picked_price_type")
    if price is None or not price_type:
        return "unknown"
    if price_type == "spread":
        if price > 0:
            return "underdog"
        if price < 0:
            return "favorite"
        return "even"
    if price_type == "ml":
        if price > 0:
            return "underdog"
        if price < 0:
            return "favorite"
    return "unknown"


def format_line(pick: dict) -> str:
    v = pick.get("picked_price")
    if not pick.get("picked_price_type") or v is None:
        return "-"
    return f"+{v}" if v > 0 else f"{v}"


# ── MONEYLINE MASTERY ─────────────────────────────────────────────────────────
# Dogs (odds >= 0): win +odds, loss -100.
# Favorites (odds < 0): win +100, loss -|odds|.
# Push/pending: 0.

def moneyline_mastery_delta(odds, outcome: str) -> float:
    if odds is None or odds != odds:  # NaN
        return 0
    if outcome in ("push", "pending"):
        return 0
    o = float(odds)
    if o >= 0:
        return o if outcome == "win" else -100
    return 100 if outcome == "win" else -abs(o)


def sum_moneyline_mastery(picks: list[dict]) -> float:
    """Sum deltas over graded picks (each needs a 'grade'); non-ml picks are ignored."""
    total = 0
    for p in picks:
        if p.get("picked_price_type") != "ml":
            continue
        total += moneyline_mastery_delta(p.get("picked_price"), p["grade"])
    return total


# ── BET MATH ──────────────────────────────────────────────────────────────────
def calc_to_win(odds: float, stake: float) -> float:
    if not stake or not odds:
        return 0
    if odds < 0:
        return round(stake * (100 / abs(odds)), 2)
    return round(stake * (odds / 100), 2)


def calc_result_amount(status: str, stake: float, to_win: float) -> float:
    if status == "won":
        return round(to_win, 2)
    if status == "lost":
        return round(-stake, 2)
    # push / void / pending
    return 0


# ── SEASON STATS ──────────────────────────────────────────────────────────────
def _streak(results: list[str]) -> tuple[str | None, int]:
    """Current W/L streak; pushes don't break it."""
    kind, length = None, 0
    for r in results:
        if r == "P":
            continue
        if r != kind:
            kind, length = r, 1
        else:
            length += 1
    return kind, length


def season_stats(picks: list[dict], games: dict[str, dict]) -> dict[str, dict]:
    """Aggregate graded picks per user. Pending picks are left out entirely."""
    by_user: dict[str, dict] = {}
    results: dict[str, list[str]] = {}
    mastery: dict[str, list[dict]] = {}

    for p in picks:
        grade = grade_pick(p, games.get(p.get("game_id")))
        if grade == "pending":
            continue
        uid = p.get("user_id")
        s = by_user.setdefault(uid, {
            "userId": uid,
            "totalPicks": 0,
            "wins": 0,
            "losses": 0,
            "pushes": 0,
            "winRate": 0.0,
            "currentStreakType": None,
            "currentStreakLen": 0,
            "moneylineMastery": 0,
        })
        key = {"win": "wins", "loss": "losses", "push": "pushes"}[grade]
        s[key] += 1
        results.setdefault(uid, []).append({"win": "W", "loss": "L", "push": "P"}[grade])
        mastery.setdefault(uid, []).append({**p, "grade": grade})

    for uid, s in by_user.items():
        s["totalPicks"] = s["wins"] + s["losses"] + s["pushes"]
        decided = s["wins"] + s["losses"]
        s["winRate"] = s["wins"] / decided * 100 if decided else 0.0
        s["currentStreakType"], s["currentStreakLen"] = _streak(results[uid])
        s["moneylineMastery"] = sum_moneyline_mastery(mastery[uid])
    return by_user
