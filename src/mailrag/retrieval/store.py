"""
SQLite document store for emails and their embedded chunks.

The store owns a SimilarityIndex and keeps it in lockstep with the
``email_sections`` table: every chunk row has exactly one vector in the
index and every indexed vector has a row. Writes and consistent reads
are serialised by a single re-entrant lock.
"""

import json
import logging
import sqlite3
import threading
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

import numpy as np
from numpy.typing import NDArray

from mailrag.config import settings
from mailrag.errors import DuplicateOrderError, ReferentialError, ValidationError
from mailrag.models import Chunk, Email, EmailDraft, parse_email_draft
from mailrag.retrieval.indexer import SimilarityIndex

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS emails (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    subject TEXT NOT NULL,
    sender TEXT NOT NULL,
    recipient TEXT NOT NULL,
    cc TEXT NOT NULL DEFAULT '[]',
    bcc TEXT NOT NULL DEFAULT '[]',
    body TEXT NOT NULL,
    chunk_size INTEGER NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS email_sections (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    email_id INTEGER NOT NULL REFERENCES emails (id) ON DELETE CASCADE,
    section_content TEXT NOT NULL,
    embedding BLOB NOT NULL,
    section_order INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    UNIQUE (email_id, section_order)
);

CREATE INDEX IF NOT EXISTS idx_email_sections_email_id ON email_sections (email_id);
CREATE INDEX IF NOT EXISTS idx_emails_sender ON emails (sender);
"""


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class DocumentStore:
    """
    Persist emails and ordered, embedded chunks.

    Example:
        >>> store = DocumentStore("data/mailrag.db")
        >>> email_id = store.create_email(draft)
        >>> store.append_chunk(email_id, "Hi Bob, ...", vector, order_index=1)
        >>> store.get_chunks(email_id)
    """

    def __init__(
        self,
        db_path: Union[str, Path, None] = None,
        dimension: Optional[int] = None,
    ) -> None:
        """
        Open (and if needed create) the database and load the index.

        Args:
            db_path: SQLite file path, or ":memory:" (default from settings)
            dimension: Embedding dimension (default from settings)
        """
        self.dimension = dimension or settings.embedding_dimension
        path = db_path if db_path is not None else settings.database_path

        if str(path) != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self.db_path = str(path)

        self._lock = threading.RLock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON;")
        self._conn.executescript(SCHEMA)

        self.index = SimilarityIndex(dimension=self.dimension)
        self._load_index()

    # ==========================================================================
    # Lifecycle
    # ==========================================================================
    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    def __enter__(self) -> "DocumentStore":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @contextmanager
    def snapshot(self) -> Iterator["DocumentStore"]:
        """Hold the store lock so a multi-step read sees one consistent state."""
        with self._lock:
            yield self

    def _load_index(self) -> None:
        rows = self._conn.execute("SELECT id, embedding FROM email_sections").fetchall()
        self.index.rebuild(
            (row["id"], np.frombuffer(row["embedding"], dtype=np.float32)) for row in rows
        )
        logger.info(f"Loaded {self.index.size} chunk vectors from {self.db_path}")

    # ==========================================================================
    # Emails
    # ==========================================================================
    def create_email(
        self,
        fields: Union[EmailDraft, Mapping[str, Any]],
        chunk_size: Optional[int] = None,
    ) -> int:
        """
        Insert an email row. Chunks are appended separately.

        Args:
            fields: Email subject, sender, recipient, cc, bcc and body
            chunk_size: Character budget the body is chunked with (default
                from settings); stored so a resume re-chunks identically

        Returns:
            The new email id

        Raises:
            ValidationError: If any field is missing or malformed
        """
        draft = parse_email_draft(fields)
        budget = chunk_size or settings.chunk_size
        if budget < 1:
            raise ValidationError(f"Chunk size must be >= 1, got {budget}")

        with self._lock, self._conn:
            cursor = self._conn.execute(
                """
                INSERT INTO emails (subject, sender, recipient, cc, bcc, body, chunk_size, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    draft.subject,
                    draft.sender,
                    json.dumps(draft.recipient),
                    json.dumps(draft.cc),
                    json.dumps(draft.bcc),
                    draft.body,
                    budget,
                    _utcnow(),
                ),
            )
            email_id = int(cursor.lastrowid)

        logger.debug(f"Stored email {email_id} from {draft.sender}")
        return email_id

    def get_email(self, email_id: int) -> Optional[Email]:
        """Fetch an email by id, or None if it does not exist."""
        with self._lock:
            row = self._conn.execute("SELECT * FROM emails WHERE id = ?", (email_id,)).fetchone()
        if row is None:
            return None

        return Email(
            id=row["id"],
            subject=row["subject"],
            sender=row["sender"],
            recipients=json.loads(row["recipient"]),
            cc=json.loads(row["cc"]),
            bcc=json.loads(row["bcc"]),
            body=row["body"],
            chunk_size=row["chunk_size"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def email_exists(self, email_id: int) -> bool:
        with self._lock:
            row = self._conn.execute("SELECT 1 FROM emails WHERE id = ?", (email_id,)).fetchone()
        return row is not None

    def delete_email(self, email_id: int) -> bool:
        """
        Delete an email together with its chunks and their vectors.

        Returns:
            True if the email existed
        """
        with self._lock:
            chunk_ids = [
                row["id"]
                for row in self._conn.execute(
                    "SELECT id FROM email_sections WHERE email_id = ?", (email_id,)
                )
            ]
            with self._conn:
                cursor = self._conn.execute("DELETE FROM emails WHERE id = ?", (email_id,))
            if cursor.rowcount == 0:
                return False
            self.index.remove(chunk_ids)

        logger.debug(f"Deleted email {email_id} and {len(chunk_ids)} chunks")
        return True

    # ==========================================================================
    # Chunks
    # ==========================================================================
    def append_chunk(
        self,
        email_id: int,
        content: str,
        vector: NDArray[np.float32],
        order_index: int,
    ) -> int:
        """
        Store one embedded chunk of an email and index its vector.

        The row insert and the index insert succeed or fail together.

        Returns:
            The new chunk id

        Raises:
            ReferentialError: If the email does not exist
            DuplicateOrderError: If the email already has this order index
            ValidationError: If content, order index or vector is malformed
        """
        if not content or not content.strip():
            raise ValidationError("Chunk content must not be empty")
        if order_index < 1:
            raise ValidationError(f"Order index must be >= 1, got {order_index}")
        embedding = self._check_vector(vector)

        with self._lock:
            if not self.email_exists(email_id):
                raise ReferentialError(email_id)

            chunk_id = None
            try:
                with self._conn:
                    cursor = self._conn.execute(
                        """
                        INSERT INTO email_sections
                            (email_id, section_content, embedding, section_order, created_at)
                        VALUES (?, ?, ?, ?, ?)
                        """,
                        (email_id, content, embedding.tobytes(), order_index, _utcnow()),
                    )
                    chunk_id = int(cursor.lastrowid)
                    # Index before commit: a failure here rolls the row back
                    self.index.add(chunk_id, embedding)
            except sqlite3.IntegrityError as e:
                if "UNIQUE" in str(e):
                    raise DuplicateOrderError(email_id, order_index) from e
                if "FOREIGN KEY" in str(e):
                    raise ReferentialError(email_id) from e
                raise
            except sqlite3.Error:
                # Commit failed after the vector went in
                if chunk_id is not None:
                    self.index.remove([chunk_id])
                raise

        logger.debug(f"Stored chunk {chunk_id} (email {email_id}, order {order_index})")
        return chunk_id

    def get_chunks(self, email_id: int) -> list[Chunk]:
        """Chunks of an email in order-index order."""
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT id, email_id, section_content, section_order, created_at
                FROM email_sections
                WHERE email_id = ?
                ORDER BY section_order
                """,
                (email_id,),
            ).fetchall()
        return [self._row_to_chunk(row) for row in rows]

    def get_chunk_contents(self, chunk_ids: Iterable[int]) -> dict[int, tuple[int, str]]:
        """Map chunk id to (email_id, content) for the given ids."""
        ids = list(chunk_ids)
        if not ids:
            return {}

        placeholders = ", ".join("?" for _ in ids)
        with self._lock:
            rows = self._conn.execute(
                f"SELECT id, email_id, section_content FROM email_sections WHERE id IN ({placeholders})",
                ids,
            ).fetchall()
        return {row["id"]: (row["email_id"], row["section_content"]) for row in rows}

    def get_vector(self, chunk_id: int) -> Optional[NDArray[np.float32]]:
        """The stored (unnormalised) embedding of a chunk."""
        with self._lock:
            row = self._conn.execute(
                "SELECT embedding FROM email_sections WHERE id = ?", (chunk_id,)
            ).fetchone()
        if row is None:
            return None
        return np.frombuffer(row["embedding"], dtype=np.float32).copy()

    def last_order_index(self, email_id: int) -> int:
        """Highest stored order index for an email (0 when it has no chunks)."""
        with self._lock:
            row = self._conn.execute(
                "SELECT COALESCE(MAX(section_order), 0) AS last FROM email_sections WHERE email_id = ?",
                (email_id,),
            ).fetchone()
        return int(row["last"])

    def chunk_ids_for_identity(self, identity: str) -> list[int]:
        """
        Ids of chunks whose email was sent by or to ``identity``.

        Only the sender and primary recipients count; cc and bcc do not.
        """
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT es.id
                FROM email_sections es
                JOIN emails e ON es.email_id = e.id
                WHERE e.sender = ?
                   OR EXISTS (SELECT 1 FROM json_each(e.recipient) WHERE json_each.value = ?)
                ORDER BY es.id
                """,
                (identity, identity),
            ).fetchall()
        return [row["id"] for row in rows]

    def count_chunks(self) -> int:
        with self._lock:
            row = self._conn.execute("SELECT COUNT(*) AS n FROM email_sections").fetchone()
        return int(row["n"])

    def _check_vector(self, vector: NDArray[np.float32]) -> NDArray[np.float32]:
        embedding = np.asarray(vector, dtype=np.float32)
        if embedding.shape != (self.dimension,):
            raise ValidationError(
                f"Embedding must have shape ({self.dimension},), got {embedding.shape}"
            )
        if not np.all(np.isfinite(embedding)) or not np.any(embedding):
            raise ValidationError("Embedding must be finite and non-zero")
        return embedding

    @staticmethod
    def _row_to_chunk(row: sqlite3.Row) -> Chunk:
        return Chunk(
            id=row["id"],
            email_id=row["email_id"],
            content=row["section_content"],
            order_index=row["section_order"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )
