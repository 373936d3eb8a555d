"""
Error taxonomy for ingestion and retrieval.

Errors are raised where a problem is detected and translated to HTTP
status codes or CLI output only at the outer layers.
"""

from typing import Any, Optional


class MailRagError(Exception):
    """Base class for all mailrag errors."""


class ValidationError(MailRagError):
    """Malformed input. Nothing was persisted; fix and resubmit."""

    def __init__(self, message: str, errors: Optional[list[dict[str, Any]]] = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class ReferentialError(MailRagError):
    """A chunk write or resume referenced an email that does not exist."""

    def __init__(self, email_id: int) -> None:
        super().__init__(f"Email {email_id} does not exist")
        self.email_id = email_id


class DuplicateOrderError(MailRagError):
    """A chunk with the same order index already exists for the email."""

    def __init__(self, email_id: int, order_index: int) -> None:
        super().__init__(
            f"Email {email_id} already has a chunk with order index {order_index}"
        )
        self.email_id = email_id
        self.order_index = order_index


class ProviderError(MailRagError):
    """The embedding provider failed (network, auth, quota, bad response)."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class EmptyInputError(MailRagError):
    """Embedding was requested for empty text."""


class QueryError(MailRagError):
    """Malformed retrieval parameters (vector, threshold or identity)."""


class IngestionError(MailRagError):
    """
    Ingestion stopped part-way through an email.

    The email row and every chunk up to ``last_order_index`` stay committed,
    so the caller can resume from ``last_order_index + 1``.
    """

    def __init__(
        self,
        email_id: int,
        last_order_index: int,
        stage: str,
        message: str,
    ) -> None:
        super().__init__(
            f"Ingestion of email {email_id} failed during {stage} "
            f"after order index {last_order_index}: {message}"
        )
        self.email_id = email_id
        self.last_order_index = last_order_index
        self.stage = stage
