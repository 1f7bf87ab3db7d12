"""
SQLite database layer for golf-edge.
Handles persistence of player identities, runs, recommendations, calibration
models, raw input artifacts, data issues and the HTTP response cache.
"""

import gzip
import hashlib
import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import get_config
from .errors import DatabaseError
from .models import (
    Candidate, ConsensusSource, DataIssue, Market, PlayerIdentity, Run, RunStatus,
    Severity, Tier,
)

logger = logging.getLogger(__name__)


def _loads(raw: Optional[str], default):
    if not raw:
        return default
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return default


class Database:
    """SQLite database manager."""

    def __init__(self, db_path: Optional[Path] = None, compress_bytes: Optional[int] = None):
        """Initialize database connection."""
        config = get_config()
        self.db_path = db_path or config.db_path
        self.compress_bytes = compress_bytes if compress_bytes is not None else config.artifact_compress_bytes
        try:
            self._init_db()
        except sqlite3.OperationalError as e:
            message = str(e).lower()
            if "permission" in message or "readonly" in message:
                raise DatabaseError(f"Permission denied writing database at {self.db_path}") from e
            if "disk" in message and "full" in message:
                raise DatabaseError(f"Disk full, cannot write database at {self.db_path}") from e
            raise DatabaseError(f"Cannot open database at {self.db_path}: {e}") from e

    @contextmanager
    def _connection(self):
        """Context manager for database connections."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self):
        """Initialize database schema."""
        with self._connection() as conn:
            cursor = conn.cursor()

            # Canonical player identities
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS players (
                    id TEXT PRIMARY KEY,
                    canonical_name TEXT NOT NULL UNIQUE,
                    aliases_json TEXT,
                    external_id TEXT,
                    updated_at TEXT
                )
            """)

            # Pipeline runs, one row per idempotency key
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS runs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    run_key TEXT NOT NULL UNIQUE,
                    week_start TEXT NOT NULL,
                    week_end TEXT NOT NULL,
                    status TEXT NOT NULL,
                    input_hash TEXT,
                    input_summary_json TEXT,
                    stages_json TEXT,
                    failure_reason TEXT,
                    failure_step TEXT,
                    created_at TEXT,
                    completed_at TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS recommendations (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    run_id INTEGER NOT NULL REFERENCES runs(id) ON DELETE CASCADE,
                    tier TEXT NOT NULL,
                    rank INTEGER NOT NULL,
                    event_key TEXT NOT NULL,
                    event_name TEXT,
                    tour TEXT,
                    market TEXT NOT NULL,
                    selection_key TEXT NOT NULL,
                    selection TEXT NOT NULL,
                    group_id TEXT NOT NULL DEFAULT '',
                    fair_prob REAL,
                    market_prob REAL,
                    edge REAL,
                    ev REAL,
                    best_odds REAL,
                    best_book TEXT,
                    market_source TEXT,
                    external_prob REAL,
                    alt_offers_json TEXT,
                    confidence INTEGER,
                    is_fallback INTEGER DEFAULT 0,
                    fallback_reason TEXT,
                    analysis TEXT,
                    bullets_json TEXT,
                    UNIQUE(run_id, event_key, market, selection_key, group_id)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS calibration_models (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    market TEXT NOT NULL,
                    bins_json TEXT NOT NULL,
                    metrics_json TEXT,
                    is_active INTEGER DEFAULT 1,
                    created_at TEXT
                )
            """)

            # Raw provider payloads for audit
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS run_artifacts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    run_id INTEGER NOT NULL REFERENCES runs(id) ON DELETE CASCADE,
                    name TEXT NOT NULL,
                    payload BLOB NOT NULL,
                    sha256 TEXT NOT NULL,
                    compressed INTEGER DEFAULT 0,
                    size_bytes INTEGER,
                    created_at TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS data_issues (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    run_id INTEGER NOT NULL REFERENCES runs(id) ON DELETE CASCADE,
                    severity TEXT NOT NULL,
                    step TEXT NOT NULL,
                    tour TEXT,
                    message TEXT NOT NULL,
                    context_json TEXT,
                    created_at TEXT
                )
            """)

            # Cache table for API data
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS cache (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    expires_at TEXT NOT NULL
                )
            """)

    # =========================================================================
    # Player operations
    # =========================================================================

    def save_player(self, identity: PlayerIdentity):
        """Insert or update a player identity."""
        with self._connection() as conn:
            conn.execute("""
                INSERT INTO players (id, canonical_name, aliases_json, external_id, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    aliases_json = excluded.aliases_json,
                    external_id = excluded.external_id,
                    updated_at = excluded.updated_at
            """, (
                identity.id,
                identity.canonical_name,
                json.dumps(sorted(identity.aliases)),
                identity.external_id,
                datetime.now().isoformat(),
            ))

    def get_all_players(self) -> List[PlayerIdentity]:
        with self._connection() as conn:
            rows = conn.execute("SELECT * FROM players ORDER BY canonical_name").fetchall()
            return [self._row_to_player(row) for row in rows]

    def _row_to_player(self, row: sqlite3.Row) -> PlayerIdentity:
        return PlayerIdentity(
            id=row["id"],
            canonical_name=row["canonical_name"],
            aliases=set(_loads(row["aliases_json"], [])),
            external_id=row["external_id"],
        )

    # =========================================================================
    # Run operations
    # =========================================================================

    def get_run(self, run_key: str) -> Optional[Run]:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM runs WHERE run_key = ?", (run_key,)).fetchone()
            if not row:
                return None
            run = self._row_to_run(row)
            run.recommendations = self._load_recommendations(conn, row["id"])
            return run

    def list_runs(self, limit: int = 20) -> List[Run]:
        with self._connection() as conn:
            rows = conn.execute("SELECT * FROM runs ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
            return [self._row_to_run(row) for row in rows]

    def _row_to_run(self, row: sqlite3.Row) -> Run:
        return Run(
            id=row["id"],
            run_key=row["run_key"],
            week_start=date.fromisoformat(row["week_start"]),
            week_end=date.fromisoformat(row["week_end"]),
            status=RunStatus(row["status"]),
            input_hash=row["input_hash"],
            stages=_loads(row["stages_json"], {}),
            failure_reason=row["failure_reason"],
            failure_step=row["failure_step"],
            completed_at=datetime.fromisoformat(row["completed_at"]) if row["completed_at"] else None,
        )

    def start_run(self, run_key: str, week_start: date, week_end: date) -> int:
        """
        Create the run row, or reset an existing one with the same key.
        A reset deletes the previous recommendations, artifacts and issues.
        """
        now = datetime.now().isoformat()
        with self._connection() as conn:
            row = conn.execute("SELECT id, status FROM runs WHERE run_key = ?", (run_key,)).fetchone()
            if row is None:
                cursor = conn.execute("""
                    INSERT INTO runs (run_key, week_start, week_end, status, created_at)
                    VALUES (?, ?, ?, ?, ?)
                """, (run_key, week_start.isoformat(), week_end.isoformat(), RunStatus.RUNNING.value, now))
                return cursor.lastrowid

            run_id = row["id"]
            for table in ("recommendations", "run_artifacts", "data_issues"):
                conn.execute(f"DELETE FROM {table} WHERE run_id = ?", (run_id,))
            conn.execute("""
                UPDATE runs SET week_start = ?, week_end = ?, status = ?, input_hash = NULL,
                    input_summary_json = NULL, stages_json = NULL, failure_reason = NULL,
                    failure_step = NULL, completed_at = NULL
                WHERE id = ?
            """, (week_start.isoformat(), week_end.isoformat(), RunStatus.RUNNING.value, run_id))
            logger.info(f"Reset existing run {run_key} (was {row['status']})")
            return run_id

    def complete_run(
        self,
        run_id: int,
        input_hash: str,
        input_summary: Dict[str, Any],
        stages: Dict[str, bool],
        recommendations: Dict[Tier, List[Candidate]],
        artifacts: Optional[Dict[str, Any]] = None,
        issues: Optional[List[DataIssue]] = None,
    ):
        """Write recommendations, artifacts, issues and the completed status in one transaction."""
        with self._connection() as conn:
            for tier, picks in recommendations.items():
                for rank, candidate in enumerate(picks, start=1):
                    self._insert_recommendation(conn, run_id, tier, rank, candidate)
            for name, payload in (artifacts or {}).items():
                self._insert_artifact(conn, run_id, name, payload)
            self._insert_issues(conn, run_id, issues or [])
            conn.execute("""
                UPDATE runs SET status = ?, input_hash = ?, input_summary_json = ?, stages_json = ?,
                    completed_at = ?
                WHERE id = ?
            """, (
                RunStatus.COMPLETED.value,
                input_hash,
                json.dumps(input_summary, default=str),
                json.dumps(stages),
                datetime.now().isoformat(),
                run_id,
            ))

    def fail_run(self, run_id: int, step: str, reason: str, stages: Optional[Dict[str, bool]] = None,
                 issues: Optional[List[DataIssue]] = None):
        """Mark a run failed and keep the issues explaining why."""
        with self._connection() as conn:
            self._insert_issues(conn, run_id, issues or [])
            conn.execute("""
                UPDATE runs SET status = ?, failure_step = ?, failure_reason = ?, stages_json = ?,
                    completed_at = ?
                WHERE id = ?
            """, (
                RunStatus.FAILED.value,
                step,
                reason,
                json.dumps(stages or {}),
                datetime.now().isoformat(),
                run_id,
            ))

    # =========================================================================
    # Recommendation operations
    # =========================================================================

    def _insert_recommendation(self, conn, run_id: int, tier: Tier, rank: int, c: Candidate):
        conn.execute("""
            INSERT INTO recommendations
            (run_id, tier, rank, event_key, event_name, tour, market, selection_key, selection,
             group_id, fair_prob, market_prob, edge, ev, best_odds, best_book, market_source,
             external_prob, alt_offers_json, confidence, is_fallback, fallback_reason, analysis,
             bullets_json)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            run_id, tier.value, rank, c.event_key, c.event_name, c.tour, c.market.value,
            c.selection_key, c.selection, c.group_id or "", c.fair_prob, c.market_prob, c.edge,
            c.ev, c.best_odds, c.best_book, c.market_source.value, c.external_prob,
            json.dumps([list(o) for o in c.alt_offers]), c.confidence, 1 if c.is_fallback else 0,
            c.fallback_reason, c.analysis, json.dumps(list(c.bullets)),
        ))

    def _load_recommendations(self, conn, run_id: int) -> List[Candidate]:
        rows = conn.execute(
            "SELECT * FROM recommendations WHERE run_id = ? ORDER BY id", (run_id,)
        ).fetchall()
        return [self._row_to_candidate(row) for row in rows]

    def get_recommendations(self, run_key: str) -> List[Candidate]:
        with self._connection() as conn:
            row = conn.execute("SELECT id FROM runs WHERE run_key = ?", (run_key,)).fetchone()
            if not row:
                return []
            return self._load_recommendations(conn, row["id"])

    def count_recommendations(self, run_key: str) -> int:
        with self._connection() as conn:
            return conn.execute("""
                SELECT COUNT(*) FROM recommendations r JOIN runs ON runs.id = r.run_id
                WHERE runs.run_key = ?
            """, (run_key,)).fetchone()[0]

    def _row_to_candidate(self, row: sqlite3.Row) -> Candidate:
        return Candidate(
            event_key=row["event_key"],
            event_name=row["event_name"] or "",
            tour=row["tour"] or "",
            market=Market(row["market"]),
            selection_key=row["selection_key"],
            selection=row["selection"],
            fair_prob=row["fair_prob"],
            market_prob=row["market_prob"],
            edge=row["edge"],
            ev=row["ev"],
            best_odds=row["best_odds"],
            best_book=row["best_book"] or "",
            market_source=ConsensusSource(row["market_source"] or ConsensusSource.CONSENSUS.value),
            external_prob=row["external_prob"],
            group_id=row["group_id"] or None,
            alt_offers=tuple(tuple(o) for o in _loads(row["alt_offers_json"], [])),
            tier=Tier(row["tier"]),
            confidence=row["confidence"] or 1,
            is_fallback=bool(row["is_fallback"]),
            fallback_reason=row["fallback_reason"] or "",
            analysis=row["analysis"] or "",
            bullets=tuple(_loads(row["bullets_json"], [])),
        )

    # =========================================================================
    # Artifact and issue operations
    # =========================================================================

    def _insert_artifact(self, conn, run_id: int, name: str, payload: Any):
        raw = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
        digest = hashlib.sha256(raw).hexdigest()
        compressed = len(raw) > self.compress_bytes
        stored = gzip.compress(raw) if compressed else raw
        conn.execute("""
            INSERT INTO run_artifacts (run_id, name, payload, sha256, compressed, size_bytes, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (run_id, name, stored, digest, 1 if compressed else 0, len(raw), datetime.now().isoformat()))

    def get_artifacts(self, run_key: str) -> List[Dict[str, Any]]:
        """Stored payloads for a run, decompressed and checked against their hash."""
        with self._connection() as conn:
            rows = conn.execute("""
                SELECT a.* FROM run_artifacts a JOIN runs ON runs.id = a.run_id
                WHERE runs.run_key = ? ORDER BY a.id
            """, (run_key,)).fetchall()

        artifacts = []
        for row in rows:
            raw = gzip.decompress(row["payload"]) if row["compressed"] else bytes(row["payload"])
            if hashlib.sha256(raw).hexdigest() != row["sha256"]:
                logger.error(f"Artifact {row['name']} failed hash check")
            artifacts.append({
                "name": row["name"],
                "sha256": row["sha256"],
                "compressed": bool(row["compressed"]),
                "size_bytes": row["size_bytes"],
                "payload": _loads(raw.decode("utf-8"), None),
            })
        return artifacts

    def _insert_issues(self, conn, run_id: int, issues: List[DataIssue]):
        for issue in issues:
            conn.execute("""
                INSERT INTO data_issues (run_id, severity, step, tour, message, context_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                run_id, issue.severity.value, issue.step, issue.tour, issue.message,
                json.dumps(issue.context, default=str), issue.created_at.isoformat(),
            ))

    def get_issues(self, run_key: str) -> List[DataIssue]:
        with self._connection() as conn:
            rows = conn.execute("""
                SELECT i.* FROM data_issues i JOIN runs ON runs.id = i.run_id
                WHERE runs.run_key = ? ORDER BY i.id
            """, (run_key,)).fetchall()
            return [
                DataIssue(
                    severity=Severity(row["severity"]),
                    step=row["step"],
                    message=row["message"],
                    tour=row["tour"],
                    context=_loads(row["context_json"], {}),
                    created_at=datetime.fromisoformat(row["created_at"]),
                )
                for row in rows
            ]

    # =========================================================================
    # Calibration operations
    # =========================================================================

    def save_calibration_model(self, market: Market, model: Dict[str, Any],
                               metrics: Optional[Dict[str, Any]] = None) -> int:
        """Store a model as the active one for its market."""
        with self._connection() as conn:
            conn.execute("UPDATE calibration_models SET is_active = 0 WHERE market = ?", (market.value,))
            cursor = conn.execute("""
                INSERT INTO calibration_models (market, bins_json, metrics_json, is_active, created_at)
                VALUES (?, ?, ?, 1, ?)
            """, (market.value, json.dumps(model), json.dumps(metrics or {}), datetime.now().isoformat()))
            return cursor.lastrowid

    def get_calibration_models(self) -> Dict[str, Dict[str, Any]]:
        """Active model payloads keyed by market value."""
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT market, bins_json FROM calibration_models WHERE is_active = 1 ORDER BY id"
            ).fetchall()
        models = {}
        for row in rows:
            payload = _loads(row["bins_json"], None)
            if payload is None:
                logger.warning(f"Corrupted calibration model for {row['market']}")
                continue
            models[row["market"]] = payload
        return models

    # =========================================================================
    # Cache operations
    # =========================================================================

    def set_cache(self, key: str, value: Any, expires_at: datetime):
        """Set a cache entry."""
        with self._connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO cache (key, value, expires_at) VALUES (?, ?, ?)",
                (key, json.dumps(value), expires_at.isoformat())
            )

    def get_cache(self, key: str) -> Optional[Any]:
        """Get a cache entry if not expired."""
        with self._connection() as conn:
            row = conn.execute("SELECT value, expires_at FROM cache WHERE key = ?", (key,)).fetchone()
            if row:
                expires = datetime.fromisoformat(row["expires_at"])
                if expires > datetime.now():
                    return _loads(row["value"], None)
                # Expired, delete it
                conn.execute("DELETE FROM cache WHERE key = ?", (key,))
        return None

    def clear_expired_cache(self):
        """Remove all expired cache entries."""
        with self._connection() as conn:
            conn.execute("DELETE FROM cache WHERE expires_at < ?", (datetime.now().isoformat(),))
