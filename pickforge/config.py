import os

ODDS_API_KEY = os.getenv("ODDS_API_KEY", "").strip()
ODDS_API_BASE = os.getenv("ODDS_API_BASE", "https://api.the-odds-api.com/v4").rstrip("/")

ODDS_CACHE_TTL = float(os.getenv("ODDS_CACHE_TTL", "30"))  # seconds
UPSTREAM_TIMEOUT = float(os.getenv("UPSTREAM_TIMEOUT", "12"))  # seconds
SCORES_DAYS_FROM = int(os.getenv("SCORES_DAYS_FROM", "3"))

# Tuesday the NFL season's week 1 begins on (YYYY-MM-DD)
NFL_SEASON_START_TUE = os.getenv("NFL_SEASON_START_TUE", "").strip() or "2024-09-03"

FIREBASE_CREDENTIALS = os.getenv("FIREBASE_CREDENTIALS", "").strip()
GOOGLE_VISION_SERVICE_ACCOUNT = os.getenv("GOOGLE_VISION_SERVICE_ACCOUNT", "").strip()

SLEEPER_API_BASE = os.getenv("SLEEPER_API_BASE", "https://api.sleeper.app/v1").rstrip("/")

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]


def require_odds_api_key() -> str:
    """Fail fast before serving when the odds provider key is missing."""
    if not ODDS_API_KEY:
        raise RuntimeError("Missing ODDS_API_KEY; set it in the environment before starting the API.")
    return ODDS_API_KEY
