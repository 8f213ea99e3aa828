import base64
import json
import re

import httpx
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2 import service_account

from pickforge import config

VISION_URL = "https://vision.googleapis.com/v1/images:annotate"
VISION_SCOPES = ["https://www.googleapis.com/auth/cloud-platform"]
VISION_MODES = ("DOCUMENT_TEXT_DETECTION", "TEXT_DETECTION")
MAX_IMAGE_BYTES = int(7.5 * 1024 * 1024)
PARSER_VERSION = "dev"

_DATA_URL_PREFIX = re.compile(r"^data:image/[a-zA-Z0-9.+-]+;base64,")


class SlipOcrError(Exception):
    pass


# ── VISION OCR ────────────────────────────────────────────────────────────────
def _service_account_info() -> dict:
    raw = config.GOOGLE_VISION_SERVICE_ACCOUNT
    if not raw:
        raise SlipOcrError("Missing env var: GOOGLE_VISION_SERVICE_ACCOUNT")
    try:
        info = json.loads(raw)
    except ValueError:
        raise SlipOcrError("GOOGLE_VISION_SERVICE_ACCOUNT is not valid JSON")
    if not info.get("client_email") or not info.get("private_key"):
        raise SlipOcrError("Service account JSON missing client_email/private_key")
    return info


_vision_creds = None


def vision_access_token() -> str:
    """Blocking token refresh; call it off the event loop."""
    global _vision_creds
    if _vision_creds is None:
        _vision_creds = service_account.Credentials.from_service_account_info(
            _service_account_info(), scopes=VISION_SCOPES,
        )
    if not _vision_creds.valid:
        try:
            _vision_creds.refresh(GoogleAuthRequest())
        except GoogleAuthError as e:
            raise SlipOcrError(f"Google token refresh failed: {e}")
    if not _vision_creds.token:
        raise SlipOcrError("Failed to obtain Google access token")
    return _vision_creds.token


def strip_data_url(b64: str) -> str:
    return _DATA_URL_PREFIX.sub("", b64)


async def fetch_as_base64(client: httpx.AsyncClient, url: str) -> str:
    r = await client.get(url, timeout=config.UPSTREAM_TIMEOUT)
    if r.status_code >= 400:
        raise SlipOcrError(f"Failed to fetch image: {r.status_code}")
    if len(r.content) > MAX_IMAGE_BYTES:
        raise SlipOcrError("Image too large for OCR")
    return base64.b64encode(r.content).decode("ascii")


async def annotate_image(client: httpx.AsyncClient, content_b64: str, mode: str, token: str) -> httpx.Response:
    return await client.post(
        VISION_URL,
        headers={"Authorization": f"Bearer {token}"},
        json={"requests": [{"image": {"content": content_b64}, "features": [{"type": mode}]}]},
        timeout=30,
    )


def center_of(poly: dict | None) -> tuple[float, float]:
    verts = (poly or {}).get("vertices") or []
    if not verts:
        return 0.0, 0.0
    xs = [v.get("x", 0) for v in verts]
    ys = [v.get("y", 0) for v in verts]
    return sum(xs) / len(xs), sum(ys) / len(ys)


def build_dollar_amounts(annotations: list[dict]) -> list[dict]:
    """
    Pair each '$' token with the nearest number to its right on the same row.
    annotations[0] is the full-text block and is skipped.
    """
    anns = annotations[1:] if isinstance(annotations, list) else []

    def centered(pred):
        out = []
        for a in anns:
            if pred(a.get("description") or ""):
                x, y = center_of(a.get("boundingPoly"))
                if x > 0 and y > 0:
                    out.append((a, x, y))
        return out

    dollars = centered(lambda d: d == "$")
    nums = centered(lambda d: re.fullmatch(r"\d{1,5}(?:\.\d{1,2})?", d) is not None)

    amounts = []
    for _, dx, dy in dollars:
        cands = [n for n in nums if abs(n[2] - dy) < 18 and dx < n[1] and n[1] - dx < 160]
        if not cands:
            continue
        a, x, y = min(cands, key=lambda n: n[1] - dx)
        amounts.append({"value": float(a["description"]), "x": x, "y": y})
    return amounts


def ocr_debug(annotations: list[dict]) -> dict:
    tokens = []
    for a in annotations[1:251]:
        x, y = center_of(a.get("boundingPoly"))
        tokens.append({"t": a.get("description") or "", "x": round(x), "y": round(y)})
    amounts = build_dollar_amounts(annotations)
    return {
        "annotationCount": len(annotations),
        "hasTextAnnotations": len(annotations) > 0,
        "tokens": tokens,
        "amounts": amounts,
        # column buckets observed on BetMASS slips
        "riskAmounts": [a for a in amounts if 760 <= a["x"] <= 950],
        "winAmounts": [a for a in amounts if 980 <= a["x"] <= 1250],
    }


def shape_ocr_response(data: dict, mode: str, debug: bool) -> dict:
    r0 = (data.get("responses") or [{}])[0] or {}
    full = r0.get("fullTextAnnotation")
    text_annotations = r0.get("textAnnotations") or []
    text = (full or {}).get("text") or (text_annotations[0].get("description") if text_annotations else "") or ""

    out = {
        "mode": mode,
        "text": text,
        "fullTextAnnotation": full,
        "textAnnotations": text_annotations,
        "annotations": text_annotations,
        "error": r0.get("error"),
    }
    if debug:
        out["debug"] = {"hasFullText": bool((full or {}).get("text")), **ocr_debug(text_annotations)}
    return out


# ── SLIP PARSER ───────────────────────────────────────────────────────────────
PARLAY_MARKETS = {
    "moneyline": "moneyline_parlay",
    "spread": "spread_parlay",
    "total": "total_parlay",
    "team_total": "team_total_parlay",
    "player_prop": "player_prop_parlay",
    "game_prop": "game_prop_parlay",
    "first_td": "first_td_parlay",
    "anytime_td": "anytime_td_parlay",
    "alt_line": "alt_line_parlay",
}


def to_number(raw: str) -> float | None:
    cleaned = raw.replace(",", "").replace("$", "").strip()
    if not cleaned:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


def detect_market_type(line: str) -> str:
    s = line.lower()
    if "moneyline" in s or re.search(r"\bml\b", s):
        return "moneyline"
    if "spread" in s or re.search(r"\b-\d+(\.\d+)?\b", s):
        return "spread"
    if "over" in s or "under" in s or "total" in s:
        return "total"
    if "first td" in s or "first touchdown" in s:
        return "first_td"
    if "anytime td" in s or "anytime touchdown" in s:
        return "anytime_td"
    if "alt" in s:
        return "alt_line"
    if "future" in s:
        return "future"
    if "game prop" in s:
        return "game_prop"
    if "prop" in s:
        return "player_prop"
    return "other"


def detect_side(line: str) -> str | None:
    s = line.lower()
    for side in ("over", "under", "yes", "no"):
        if re.search(rf"\b{side}\b", s):
            return side
    return None


def _is_bet_line(line: str) -> bool:
    s = line.lower()
    if s.startswith(("odds", "wager", "return")):
        return False
    if "successfully submitted" in s or "leg parlay" in s:
        return False
    return bool(
        re.search(r"\b(over|under)\b", line, re.I)
        or re.search(r"\bto record\b", line, re.I)
        or re.search(r"\b@\b", line)
        or re.search(r"[+-]\d{2,5}", line)
    )


def _bet(kind: str, market_type: str, selection: str, side, odds, issues: list[str]) -> dict:
    return {
        "kind": kind,
        "sport": None,
        "league": None,
        "event": None,
        "event_date": None,
        "home_team": None,
        "away_team": None,
        "market_type": market_type,
        "market_text": None,
        "selection_text": selection,
        "player": None,
        "stat": None,
        "period": None,
        "line": None,
        "side": side,
        "team": None,
        "odds_american": odds,
        "is_alt": True if market_type in ("alt_line", "alt_line_parlay") else None,
        "is_live": None,
        "confidence": 0.4,
        "issues": issues,
    }


def _parlay_market(bet_lines: list[str]) -> str:
    kinds = {detect_market_type(l) for l in bet_lines}
    if len(kinds) == 1:
        return PARLAY_MARKETS.get(kinds.pop(), "parlay")
    return "alt_line_parlay" if "alt_line" in kinds else "parlay"


def parse_slip_from_ocr(ocr_text: str | None, book_hint: str | None = None) -> dict:
    """
    Best-effort OCR slip parser.

    Always returns a stable slip shape (most fields may be None) so the review
    screen can render editable rows. A parlay collapses into a single bet row.
    """
    text = (ocr_text or "").replace("\r", "")
    lines = [l.strip() for l in text.split("\n") if l.strip()]

    parlay_hint = any(re.search(r"\bparlay\b|view\s+legs", l, re.I) for l in lines)
    m = re.search(r"(\d+)\s*leg\s*parlay", " ".join(lines), re.I)
    legs_from_text = int(m.group(1)) if m else None

    wager_line = next((l for l in lines if re.search(r"\bwager\b", l, re.I)), None)
    return_line = next((l for l in lines if re.search(r"\breturn\b|\bto win\b", l, re.I)), None)
    odds_line = next((l for l in lines if re.search(r"\bodds\b", l, re.I)), None)

    wager = to_number(re.split(r"wager\s*:?", wager_line, flags=re.I)[-1]) if wager_line else None
    to_win = None
    if return_line:
        splitter = r"return\s*:?" if re.search(r"return", return_line, re.I) else r"to win\s*:?"
        to_win = to_number(re.split(splitter, return_line, flags=re.I)[-1])

    om = re.search(r"([+-]\d{2,5})", odds_line) if odds_line else None
    odds_american = int(om.group(1)) if om else None

    bet_lines = [l for l in lines if _is_bet_line(l)]
    is_parlay = parlay_hint and len(bet_lines) > 1

    if is_parlay:
        bets = [_bet("single", _parlay_market(bet_lines), " | ".join(bet_lines), None,
                     odds_american, ["parlay_detected", "needs_review"])]
    else:
        bets = []
        for line in bet_lines:
            lm = re.search(r"(?:@\s*)?([+-]\d{2,5})\b", line)
            bets.append(_bet(
                "parlay_leg" if len(bet_lines) > 1 else "single",
                detect_market_type(line),
                line,
                detect_side(line),
                int(lm.group(1)) if lm else None,
                ["needs_review"],
            ))

    if is_parlay:
        bet_style, legs_count = "parlay", legs_from_text or len(bet_lines)
    else:
        bet_style = "single" if len(bets) == 1 else "unknown"
        legs_count = len(bets) or None

    return {
        "book": book_hint,
        "ticket_no": None,
        "placed_at": None,
        "wager": wager,
        "to_win": to_win,
        "odds_american": odds_american,
        "currency": "USD",
        "bet_style": bet_style,
        "legs_count": legs_count,
        "bets": bets,
        "meta": {"parser_version": PARSER_VERSION, "source": "ocr"},
    }
