"""
Reference Store Module

SQLite-backed datastore for the hybrid phenotype matcher.

Read path:
- phenotypes: the immutable reference corpus, with one stored embedding
  per phenotype (float32 BLOB) and optional archetype ratios (JSON)
- search: cosine nearest-neighbour lookup over the stored embeddings

Write path (append-only):
- uploads: one row per analysed image, with its probe embedding
- analyses: snapshot of the ranked matches of one run
- reports: primary/secondary phenotypes and narrative; the only column
  updated after insert is the access counter

Usage:
    from phenomatch.reference_store import ReferenceStore

    store = ReferenceStore(db_path="storage/phenomatch.sqlite")
    store.add_phenotype(entity)
    hits = store.search(probe_vector, k=20)
"""

import json
import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from phenomatch.errors import DatastoreError
from phenomatch.matching.interfaces import VectorIndex
from phenomatch.matching.reconciliation import ReferenceIndex
from phenomatch.models import AnalysisResult, ReferenceEntity

logger = logging.getLogger(__name__)


def generate_id(prefix: str) -> str:
    """
    Generate a unique record ID.

    Format: prefix, underscore, 12 random hex characters (e.g. "rpt_a1b2c3d4e5f6").
    """
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _encode_vector(vector: Optional[np.ndarray]) -> Optional[bytes]:
    if vector is None:
        return None
    return np.asarray(vector, dtype=np.float32).ravel().tobytes()


def _decode_vector(blob: Optional[bytes]) -> Optional[np.ndarray]:
    if blob is None:
        return None
    return np.frombuffer(blob, dtype=np.float32).copy()


class ReferenceStore(VectorIndex):
    """
    Persistence for the reference corpus, analyses and reports.

    The connection is shared between the event loop and worker threads,
    so writes are serialized with a lock. The normalized embedding matrix
    used by `search` is cached and rebuilt after the corpus changes.

    Attributes:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._transaction_depth = 0
        self._matrix: Optional[np.ndarray] = None
        self._matrix_ids: List[str] = []

        if str(db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_database()

        logger.info(f"ReferenceStore initialized: db={self.db_path}")

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the SQLite connection (Row factory for dict-like access)."""
        if self._conn is None:
            try:
                self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            except sqlite3.Error as e:
                raise DatastoreError(f"Cannot open datastore {self.db_path}: {e}") from e
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def _init_database(self) -> None:
        """Create tables if they don't exist."""
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS phenotypes (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                description TEXT,
                regions TEXT NOT NULL DEFAULT '[]',
                parent_groups TEXT NOT NULL DEFAULT '[]',
                embedding BLOB,
                dimensions INTEGER,
                ratios TEXT
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS uploads (
                id TEXT PRIMARY KEY,
                image_ref TEXT NOT NULL,
                embedding BLOB,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS analyses (
                id TEXT PRIMARY KEY,
                upload_id TEXT NOT NULL,
                mode TEXT NOT NULL,
                signals_used TEXT NOT NULL,
                degraded BOOLEAN NOT NULL,
                matches TEXT NOT NULL,
                narrative TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (upload_id) REFERENCES uploads(id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS reports (
                id TEXT PRIMARY KEY,
                upload_id TEXT NOT NULL,
                analysis_id TEXT NOT NULL,
                primary_phenotype_id TEXT NOT NULL,
                secondary_phenotypes TEXT NOT NULL,
                narrative TEXT NOT NULL,
                narrative_source TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'preview',
                generated_at TIMESTAMP,
                access_count INTEGER NOT NULL DEFAULT 0,
                last_accessed TIMESTAMP,
                FOREIGN KEY (upload_id) REFERENCES uploads(id),
                FOREIGN KEY (analysis_id) REFERENCES analyses(id)
            )
        """)

        conn.commit()
        logger.debug("Database schema initialized")

    @contextmanager
    def transaction(self) -> Iterator["ReferenceStore"]:
        """
        Group writes into one SQLite transaction.

        Writes inside the block are committed together when the outermost
        block exits, and all rolled back if it raises. Blocks may nest.

        Example:
            with store.transaction():
                upload_id = store.save_upload(image_ref, vector)
                store.save_analysis(upload_id, result, narrative)
        """
        with self._lock:
            conn = self._get_connection()
            self._transaction_depth += 1
            try:
                yield self
            except BaseException:
                if self._transaction_depth == 1:
                    conn.rollback()
                    logger.warning("Datastore transaction rolled back")
                raise
            else:
                if self._transaction_depth == 1:
                    try:
                        conn.commit()
                    except sqlite3.Error as e:
                        conn.rollback()
                        logger.error(f"Datastore commit failed: {e}")
                        raise DatastoreError(f"Datastore commit failed: {e}") from e
            finally:
                self._transaction_depth -= 1

    def _execute_write(self, sql: str, params: Sequence[Any]) -> int:
        with self._lock:
            conn = self._get_connection()
            try:
                cursor = conn.execute(sql, params)
                if self._transaction_depth == 0:
                    conn.commit()
            except sqlite3.Error as e:
                if self._transaction_depth == 0:
                    conn.rollback()
                logger.error(f"Datastore write failed: {e}")
                raise DatastoreError(f"Datastore write failed: {e}") from e
            return cursor.rowcount

    def _fetch(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        try:
            return self._get_connection().execute(sql, params).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Datastore read failed: {e}")
            raise DatastoreError(f"Datastore read failed: {e}") from e

    # ============================================================
    # Reference corpus (read path)
    # ============================================================

    def add_phenotype(self, entity: ReferenceEntity) -> None:
        """
        Insert or replace one reference phenotype.

        Corpus maintenance only; never called while matching.
        """
        vector = None if entity.vector is None else np.asarray(entity.vector, dtype=np.float32).ravel()
        self._execute_write(
            """
            INSERT OR REPLACE INTO phenotypes
                (id, name, description, regions, parent_groups, embedding, dimensions, ratios)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entity.id,
                entity.name,
                entity.description,
                json.dumps(list(entity.regions)),
                json.dumps(list(entity.parent_groups)),
                _encode_vector(vector),
                None if vector is None else int(vector.shape[0]),
                json.dumps(dict(entity.ratios)) if entity.ratios else None,
            ),
        )
        self._matrix = None

    def _row_to_entity(self, row: sqlite3.Row) -> ReferenceEntity:
        ratios = json.loads(row["ratios"]) if row["ratios"] else None
        return ReferenceEntity(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            regions=tuple(json.loads(row["regions"] or "[]")),
            parent_groups=tuple(json.loads(row["parent_groups"] or "[]")),
            vector=_decode_vector(row["embedding"]),
            ratios=ratios,
        )

    def load_phenotypes(self) -> List[ReferenceEntity]:
        """Load the whole corpus, ordered by name."""
        rows = self._fetch("SELECT * FROM phenotypes ORDER BY name")
        return [self._row_to_entity(row) for row in rows]

    def get_phenotype(self, phenotype_id: str) -> Optional[ReferenceEntity]:
        rows = self._fetch("SELECT * FROM phenotypes WHERE id = ?", (phenotype_id,))
        return self._row_to_entity(rows[0]) if rows else None

    def build_index(self) -> ReferenceIndex:
        """Snapshot the corpus into a read-only ReferenceIndex."""
        return ReferenceIndex(self.load_phenotypes())

    def _load_matrix(self) -> Tuple[np.ndarray, List[str]]:
        if self._matrix is not None:
            return self._matrix, self._matrix_ids

        rows = self._fetch(
            "SELECT id, embedding FROM phenotypes WHERE embedding IS NOT NULL ORDER BY id"
        )
        ids: List[str] = []
        vectors: List[np.ndarray] = []
        dim = None
        for row in rows:
            vector = _decode_vector(row["embedding"])
            if dim is None:
                dim = vector.shape[0]
            if vector.shape[0] != dim:
                logger.warning(
                    f"Skipping phenotype {row['id']}: embedding has {vector.shape[0]} dims, expected {dim}"
                )
                continue
            norm = np.linalg.norm(vector)
            if norm < 1e-8:
                logger.warning(f"Skipping phenotype {row['id']}: zero-norm embedding")
                continue
            ids.append(row["id"])
            vectors.append(vector / norm)

        matrix = np.stack(vectors) if vectors else np.zeros((0, dim or 0), dtype=np.float32)
        self._matrix, self._matrix_ids = matrix, ids
        logger.info(f"Loaded {len(ids)} reference embeddings")
        return matrix, ids

    def search(self, vector: np.ndarray, k: int) -> List[Tuple[str, float]]:
        """
        Cosine nearest-neighbour search over stored phenotype embeddings.

        Returns:
            Up to k (phenotype_id, cosine_similarity) pairs, most similar
            first, ties ordered by id.

        Raises:
            DatastoreError: On read failure or a probe/corpus dimension mismatch.
        """
        matrix, ids = self._load_matrix()
        if len(ids) == 0:
            return []

        probe = np.asarray(vector, dtype=np.float32).ravel()
        if probe.shape[0] != matrix.shape[1]:
            raise DatastoreError(
                f"Probe has {probe.shape[0]} dims but reference embeddings have {matrix.shape[1]}"
            )
        probe = probe / max(float(np.linalg.norm(probe)), 1e-8)

        similarities = matrix @ probe
        ranked = sorted(
            zip(ids, (float(s) for s in similarities)),
            key=lambda item: (-item[1], item[0]),
        )
        return ranked[:k]

    # ============================================================
    # Uploads, analyses and reports (append-only write path)
    # ============================================================

    def save_upload(self, image_ref: str, vector: Optional[np.ndarray]) -> str:
        upload_id = generate_id("upl")
        self._execute_write(
            "INSERT INTO uploads (id, image_ref, embedding) VALUES (?, ?, ?)",
            (upload_id, image_ref, _encode_vector(vector)),
        )
        return upload_id

    def save_analysis(self, upload_id: str, result: AnalysisResult, narrative: str) -> str:
        """Persist an immutable snapshot of the ranked matches."""
        analysis_id = generate_id("ana")
        snapshot = result.to_dict()
        self._execute_write(
            """
            INSERT INTO analyses (id, upload_id, mode, signals_used, degraded, matches, narrative)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                analysis_id,
                upload_id,
                result.mode,
                json.dumps(snapshot["signals_used"]),
                bool(result.degraded),
                json.dumps(snapshot["matches"]),
                narrative,
            ),
        )
        return analysis_id

    def get_analysis(self, analysis_id: str) -> Optional[Dict[str, Any]]:
        rows = self._fetch("SELECT * FROM analyses WHERE id = ?", (analysis_id,))
        if not rows:
            return None
        row = rows[0]
        return {
            "id": row["id"],
            "upload_id": row["upload_id"],
            "mode": row["mode"],
            "signals_used": json.loads(row["signals_used"]),
            "degraded": bool(row["degraded"]),
            "matches": json.loads(row["matches"]),
            "narrative": row["narrative"],
            "created_at": row["created_at"],
        }

    def create_report(
        self,
        upload_id: str,
        analysis_id: str,
        primary_phenotype_id: str,
        secondary_phenotypes: List[Dict[str, Any]],
        narrative: str,
        narrative_source: str,
        generated_at: str,
    ) -> str:
        report_id = generate_id("rpt")
        self._execute_write(
            """
            INSERT INTO reports (
                id, upload_id, analysis_id, primary_phenotype_id,
                secondary_phenotypes, narrative, narrative_source, status, generated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, 'preview', ?)
            """,
            (
                report_id,
                upload_id,
                analysis_id,
                primary_phenotype_id,
                json.dumps(secondary_phenotypes),
                narrative,
                narrative_source,
                generated_at,
            ),
        )
        return report_id

    def get_report(self, report_id: str) -> Optional[Dict[str, Any]]:
        rows = self._fetch("SELECT * FROM reports WHERE id = ?", (report_id,))
        if not rows:
            return None
        row = rows[0]
        return {
            "id": row["id"],
            "upload_id": row["upload_id"],
            "analysis_id": row["analysis_id"],
            "primary_phenotype_id": row["primary_phenotype_id"],
            "secondary_phenotypes": json.loads(row["secondary_phenotypes"]),
            "narrative": row["narrative"],
            "narrative_source": row["narrative_source"],
            "status": row["status"],
            "generated_at": row["generated_at"],
            "access_count": row["access_count"],
            "last_accessed": row["last_accessed"],
        }

    def increment_report_access(self, report_id: str) -> bool:
        """
        Bump the access counter of a report.

        Returns:
            True if the report exists.
        """
        updated = self._execute_write(
            """
            UPDATE reports
            SET access_count = access_count + 1, last_accessed = ?
            WHERE id = ?
            """,
            (datetime.now().isoformat(), report_id),
        )
        return updated > 0

    # ============================================================
    # Maintenance
    # ============================================================

    def check_health(self) -> bool:
        try:
            self._fetch("SELECT 1")
            return True
        except DatastoreError:
            return False

    def get_stats(self) -> Dict[str, int]:
        counts = {}
        for table in ("phenotypes", "uploads", "analyses", "reports"):
            counts[f"total_{table}"] = self._fetch(f"SELECT COUNT(*) AS n FROM {table}")[0]["n"]
        return counts

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.debug("Database connection closed")


# Singleton instance for the store
_store_instance: Optional[ReferenceStore] = None


def get_reference_store(db_path: Optional[str] = None) -> ReferenceStore:
    """
    Get or create the shared ReferenceStore.

    Args:
        db_path: Path to the SQLite database. If None, uses the value from config.
    """
    global _store_instance

    if _store_instance is None:
        if db_path is None:
            from phenomatch.config import get_storage_config
            db_path = get_storage_config().get("db_path", "storage/phenomatch.sqlite")
        _store_instance = ReferenceStore(db_path=db_path)

    return _store_instance
