import json
import logging
import pathlib

from pickforge import config

# ── FIREBASE / FIRESTORE ───────────────────────────────────────────────────────
try:
    import firebase_admin
    from firebase_admin import credentials as fb_credentials, firestore as fb_firestore
    from google.cloud.firestore_v1.base_query import FieldFilter
    _FIREBASE_AVAILABLE = True
except ImportError:
    _FIREBASE_AVAILABLE = False

_firestore_db = None

SERVICE_ACCOUNT_FILE = "firebase-service-account.json"


def _firebase_credential():
    """FIREBASE_CREDENTIALS JSON wins, then a local key file, then ADC."""
    if config.FIREBASE_CREDENTIALS:
        return fb_credentials.Certificate(json.loads(config.FIREBASE_CREDENTIALS))
    if pathlib.Path(SERVICE_ACCOUNT_FILE).exists():
        return fb_credentials.Certificate(SERVICE_ACCOUNT_FILE)
    return fb_credentials.ApplicationDefault()


def _firebase_app():
    try:
        return firebase_admin.get_app()
    except ValueError:
        return firebase_admin.initialize_app(_firebase_credential())


def _init_firestore():
    """Firestore client for picks/games, created on first use. None if unavailable."""
    global _firestore_db
    if _firestore_db is None and _FIREBASE_AVAILABLE:
        try:
            _firestore_db = fb_firestore.client(_firebase_app())
            logging.info("Firestore ready: picks and games collections")
        except Exception as e:
            logging.warning(f"No Firestore, result sync and /api/stats are off: {e}")
    return _firestore_db


class FirestoreStore:
    """Picks and games collections. Games are upserted by document id."""

    PICK_FIELDS = ("user_id", "league", "week", "game_id", "side", "picked_price_type", "picked_price")
    GAME_FIELDS = ("id", "league", "week", "home_team", "away_team", "kickoff_time",
                   "status", "home_score", "away_score")
    BATCH_LIMIT = 500

    def __init__(self, db):
        self.db = db

    def load_picks(self, league: str, week: int | None = None) -> list[dict]:
        query = self.db.collection("picks").where(filter=FieldFilter("league", "==", league))
        if week is not None:
            query = query.where(filter=FieldFilter("week", "==", week))
        rows = []
        for doc in query.stream():
            data = doc.to_dict() or {}
            rows.append({k: data.get(k) for k in self.PICK_FIELDS})
        return rows

    def load_games(self, game_ids: list[str]) -> dict[str, dict]:
        refs = [self.db.collection("games").document(gid) for gid in game_ids]
        games = {}
        for doc in self.db.get_all(refs):
            if doc.exists:
                data = doc.to_dict() or {}
                games[doc.id] = {"id": doc.id, **{k: data.get(k) for k in self.GAME_FIELDS if k != "id"}}
        return games

    def upsert_games(self, rows: list[dict]) -> None:
        # a WriteBatch takes at most BATCH_LIMIT writes
        for start in range(0, len(rows), self.BATCH_LIMIT):
            batch = self.db.batch()
            for row in rows[start:start + self.BATCH_LIMIT]:
                ref = self.db.collection("games").document(row["id"])
                batch.set(ref, {**row, "updated_at": fb_firestore.SERVER_TIMESTAMP}, merge=True)
            batch.commit()


def get_store() -> FirestoreStore | None:
    """Return the persisted store, or None when Firestore isn't configured."""
    db = _init_firestore()
    return FirestoreStore(db) if db else None
