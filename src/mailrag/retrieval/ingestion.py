"""
Email ingestion: validate, store, chunk, embed and store chunks.

Per email the stages run in a fixed order:

    VALIDATING -> EMAIL_PERSISTED -> CHUNKING
        -> EMBEDDING(i) -> CHUNK_PERSISTED(i)   for i = 1..N
        -> COMPLETE

Any stage can end in FAILED. Once the email row exists it is kept even
if a later chunk fails, and ingestion can be resumed from the last
persisted order index.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Union

import numpy as np
from numpy.typing import NDArray
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from mailrag.config import settings
from mailrag.errors import IngestionError, ProviderError, ReferentialError
from mailrag.models import EmailDraft, parse_email_draft
from mailrag.retrieval.chunker import chunk_text
from mailrag.retrieval.embeddings import Embedder
from mailrag.retrieval.store import DocumentStore

logger = logging.getLogger(__name__)


class IngestionStage(str, Enum):
    VALIDATING = "validating"
    EMAIL_PERSISTED = "email_persisted"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    CHUNK_PERSISTED = "chunk_persisted"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class IngestionResult:
    """Outcome of a completed ingestion."""

    email_id: int
    chunk_count: int
    """Total chunks the email has after this run."""

    chunks_written: int
    """Chunks written by this run (less than chunk_count after a resume)."""


class IngestionOrchestrator:
    """
    Drive one email at a time through chunking, embedding and storage.

    Example:
        >>> orchestrator = IngestionOrchestrator(store, embedder)
        >>> orchestrator.ingest({"subject": "Hi", "sender": "a@x.com", ...})
        IngestionResult(email_id=1, chunk_count=2, chunks_written=2)
    """

    def __init__(
        self,
        store: DocumentStore,
        embedder: Embedder,
        chunk_size: Optional[int] = None,
        max_attempts: Optional[int] = None,
        retry_wait: Optional[float] = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            store: Where emails and chunks are persisted
            embedder: Produces one vector per chunk
            chunk_size: Character budget per chunk (default from settings)
            max_attempts: Embedding attempts per chunk (default from settings)
            retry_wait: Backoff multiplier in seconds (default from settings)
        """
        self.store = store
        self.embedder = embedder
        self.chunk_size = chunk_size or settings.chunk_size
        self.max_attempts = max_attempts or settings.embedding_max_attempts
        self.retry_wait = settings.embedding_retry_wait if retry_wait is None else retry_wait

    def ingest(self, fields: Union[EmailDraft, Mapping[str, Any]]) -> IngestionResult:
        """
        Store an email and all of its embedded chunks.

        Args:
            fields: Email subject, sender, recipient, cc, bcc and body

        Returns:
            IngestionResult for the new email

        Raises:
            ValidationError: If the input is malformed (nothing is written)
            IngestionError: If a chunk could not be embedded or stored
        """
        logger.info(f"Ingestion stage: {IngestionStage.VALIDATING.value}")
        draft = parse_email_draft(fields)

        email_id = self.store.create_email(draft, chunk_size=self.chunk_size)
        logger.info(f"Email {email_id} stage: {IngestionStage.EMAIL_PERSISTED.value}")

        return self._ingest_chunks(email_id, draft.body, self.chunk_size, last_order_index=0)

    def resume(self, email_id: int) -> IngestionResult:
        """
        Finish a partially ingested email.

        Re-chunks the stored body with the budget it was first chunked
        with, whatever this orchestrator's chunk_size is, and writes only
        the chunks after the last persisted order index. Resuming a
        complete email is a no-op.

        Raises:
            ReferentialError: If the email does not exist
            IngestionError: If a chunk could not be embedded or stored
        """
        email = self.store.get_email(email_id)
        if email is None:
            raise ReferentialError(email_id)

        last = self.store.last_order_index(email_id)
        logger.info(f"Resuming email {email_id} after order index {last}")
        return self._ingest_chunks(email_id, email.body, email.chunk_size, last_order_index=last)

    def _ingest_chunks(
        self, email_id: int, body: str, budget: int, last_order_index: int
    ) -> IngestionResult:
        logger.info(f"Email {email_id} stage: {IngestionStage.CHUNKING.value}")
        chunks = chunk_text(body, budget)
        logger.info(f"Email {email_id}: {len(chunks)} chunks (budget {budget} chars)")

        written = 0
        for order_index, content in enumerate(chunks, start=1):
            if order_index <= last_order_index:
                continue

            stage = IngestionStage.EMBEDDING
            try:
                logger.debug(f"Email {email_id} stage: {stage.value}({order_index})")
                vector = self._embed(content)

                stage = IngestionStage.CHUNK_PERSISTED
                self.store.append_chunk(email_id, content, vector, order_index)
                logger.debug(f"Email {email_id} stage: {stage.value}({order_index})")
            except Exception as e:
                logger.error(
                    f"Email {email_id} stage: {IngestionStage.FAILED.value} "
                    f"at {stage.value}({order_index}): {e}"
                )
                raise IngestionError(
                    email_id=email_id,
                    last_order_index=last_order_index,
                    stage=stage.value,
                    message=str(e),
                ) from e

            last_order_index = order_index
            written += 1

        logger.info(
            f"Email {email_id} stage: {IngestionStage.COMPLETE.value} ({written} chunks written)"
        )
        return IngestionResult(
            email_id=email_id,
            chunk_count=len(chunks),
            chunks_written=written,
        )

    def _embed(self, content: str) -> NDArray[np.float32]:
        """Embed one chunk, retrying provider errors with exponential backoff."""
        retryer = Retrying(
            retry=retry_if_exception_type(ProviderError),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.retry_wait, max=30),
            before_sleep=lambda state: logger.warning(
                f"Embedding attempt {state.attempt_number} failed, retrying: "
                f"{state.outcome.exception()}"
            ),
            reraise=True,
        )
        return retryer(self.embedder.embed, content)
