"""
Database module for ProofSeal.

Provides SQLite-based storage for seal objects and proof records.
Uses thread-local connections and proper indexing.
"""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from . import config
from .cipher import generate_key
from .errors import ValidationError
from .policy import AccessPolicy, InMemoryPolicyStore, PolicyStore, SealObject
from .records import InMemoryProofStore, ProofRecord, ProofStore
from .util import parse_rfc3339, utc_rfc3339

logger = logging.getLogger(__name__)

TABLES = ("seal_objects", "proof_records")


class Database:
    """
    A SQLite database file with one connection per thread.
    Connections are reused within the same thread.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._local = threading.local()

    def connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.path), check_same_thread=False)
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            conn.execute("PRAGMA temp_store=MEMORY;")
            conn.row_factory = sqlite3.Row
            self._local.conn = conn
        return conn

    @contextmanager
    def transaction(self, immediate: bool = False):
        """
        Context manager for database transactions.
        Automatically commits on success, rolls back on failure.
        With ``immediate=True`` the write lock is taken before the first read.
        """
        conn = self.connection()
        if immediate and not conn.in_transaction:
            conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def init_db(self) -> None:
        """
        Initialize database schema with indexes.
        Safe to call multiple times (uses IF NOT EXISTS).
        """
        with self.transaction() as conn:
            conn.execute("""
            CREATE TABLE IF NOT EXISTS seal_objects (
                object_id TEXT PRIMARY KEY,
                owner_identity TEXT NOT NULL,
                encryption_key BLOB NOT NULL,
                policy_json TEXT NOT NULL,
                created_at TEXT NOT NULL
            );""")

            conn.execute("""
            CREATE TABLE IF NOT EXISTS proof_records (
                proof_code TEXT PRIMARY KEY,
                owner_address TEXT NOT NULL,
                owner_key TEXT NOT NULL,
                plaintext_hash TEXT NOT NULL,
                ciphertext_hash TEXT NOT NULL,
                seal_object_id TEXT NOT NULL UNIQUE,
                content_id TEXT NOT NULL,
                storage_url TEXT NOT NULL,
                anchor_tx_id TEXT NOT NULL,
                document_name TEXT,
                created_at TEXT NOT NULL
            );""")
            conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_proof_records_owner
            ON proof_records(owner_key);""")

    def get_db_stats(self) -> Dict[str, int]:
        """Get database statistics for monitoring."""
        conn = self.connection()
        stats = {}
        for table in TABLES:
            cur = conn.execute(f"SELECT COUNT(*) as cnt FROM {table}")
            stats[f"{table}_count"] = cur.fetchone()['cnt']
        return stats

    def reset_db(self) -> None:
        """
        Reset the database for test isolation.
        Clears all tables but preserves schema.
        """
        with self.transaction() as conn:
            for table in TABLES:
                conn.execute(f"DELETE FROM {table}")

    def close_connection(self) -> None:
        """Close this thread's connection."""
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None


# ============================================================
# Seal Objects
# ============================================================

class SqlitePolicyStore(PolicyStore):
    """Policy store backed by the ``seal_objects`` table."""

    def __init__(self, db: Database, key_factory: Callable[[], bytes] = generate_key):
        super().__init__(key_factory)
        self.db = db
        self.db.init_db()

    def _insert(self, seal: SealObject) -> None:
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    "INSERT INTO seal_objects(object_id, owner_identity, encryption_key, policy_json, created_at) "
                    "VALUES(?,?,?,?,?)",
                    (seal.object_id, seal.owner_identity, seal.encryption_key,
                     json.dumps(seal.policy.to_dict(), sort_keys=True), utc_rfc3339(seal.created_at))
                )
        except sqlite3.IntegrityError:
            raise ValidationError("object_id", "already exists")

    def _get(self, object_id: str) -> Optional[SealObject]:
        conn = self.db.connection()
        cur = conn.execute(
            "SELECT object_id, owner_identity, encryption_key, policy_json, created_at "
            "FROM seal_objects WHERE object_id=?",
            (object_id,)
        )
        row = cur.fetchone()
        if row is None:
            return None
        return SealObject(
            object_id=row["object_id"],
            owner_identity=row["owner_identity"],
            encryption_key=bytes(row["encryption_key"]),
            policy=AccessPolicy.from_dict(json.loads(row["policy_json"])),
            created_at=parse_rfc3339(row["created_at"]),
        )

    def count(self) -> int:
        return self.db.get_db_stats()["seal_objects_count"]


# ============================================================
# Proof Records
# ============================================================

_RECORD_COLUMNS = (
    "proof_code, owner_address, plaintext_hash, ciphertext_hash, seal_object_id, "
    "content_id, storage_url, anchor_tx_id, document_name, created_at"
)


def _row_to_record(row: sqlite3.Row) -> ProofRecord:
    return ProofRecord.from_dict(dict(row))


class SqliteProofStore(ProofStore):
    """Proof store backed by the ``proof_records`` table."""

    def __init__(self, db: Database):
        self.db = db
        self.db.init_db()

    def create(self, record: ProofRecord) -> ProofRecord:
        d = record.to_dict()
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    f"INSERT INTO proof_records({_RECORD_COLUMNS}, owner_key) "
                    "VALUES(?,?,?,?,?,?,?,?,?,?,?)",
                    (d["proof_code"], d["owner_address"], d["plaintext_hash"], d["ciphertext_hash"],
                     d["seal_object_id"], d["content_id"], d["storage_url"], d["anchor_tx_id"],
                     d["document_name"], d["created_at"], record.owner_address.lower())
                )
        except sqlite3.IntegrityError:
            raise ValidationError("proof_code", "already registered")
        return record

    def get_by_code(self, proof_code: str) -> Optional[ProofRecord]:
        conn = self.db.connection()
        cur = conn.execute(f"SELECT {_RECORD_COLUMNS} FROM proof_records WHERE proof_code=?", (proof_code,))
        row = cur.fetchone()
        return _row_to_record(row) if row else None

    def list_by_owner(self, owner_address: str) -> List[ProofRecord]:
        conn = self.db.connection()
        cur = conn.execute(
            f"SELECT {_RECORD_COLUMNS} FROM proof_records WHERE owner_key=? ORDER BY created_at ASC, rowid ASC",
            (owner_address.lower(),)
        )
        return [_row_to_record(row) for row in cur.fetchall()]

    def swap_anchor_tx_id(self, proof_code: str, anchor_tx_id: str) -> Optional[Tuple[str, ProofRecord]]:
        with self.db.transaction(immediate=True) as conn:
            prev = conn.execute(
                "SELECT anchor_tx_id FROM proof_records WHERE proof_code=?", (proof_code,)
            ).fetchone()
            if prev is None:
                return None
            conn.execute(
                "UPDATE proof_records SET anchor_tx_id=? WHERE proof_code=?",
                (anchor_tx_id, proof_code)
            )
            row = conn.execute(
                f"SELECT {_RECORD_COLUMNS} FROM proof_records WHERE proof_code=?", (proof_code,)
            ).fetchone()
        return prev["anchor_tx_id"], _row_to_record(row)

    def count(self) -> int:
        return self.db.get_db_stats()["proof_records_count"]


# ============================================================
# Factories
# ============================================================

def get_policy_store(db: Optional[Database] = None) -> PolicyStore:
    """Create the policy store selected by configuration."""
    if config.STORE_BACKEND == "sqlite":
        return SqlitePolicyStore(db or Database(config.DB_PATH))
    return InMemoryPolicyStore()


def get_proof_store(db: Optional[Database] = None) -> ProofStore:
    """Create the proof store selected by configuration."""
    if config.STORE_BACKEND == "sqlite":
        return SqliteProofStore(db or Database(config.DB_PATH))
    return InMemoryProofStore()
