"""
Domain models for emails, chunks and search matches.

EmailDraft is the validated ingestion input; Email, Chunk and SearchResult
are what the document store and retrieval engine hand back.
"""

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import pydantic
from pydantic import BaseModel, EmailStr, Field, field_validator

from mailrag.errors import ValidationError


class EmailDraft(BaseModel):
    """An email as submitted for ingestion, before it has an id."""

    model_config = {"str_strip_whitespace": False, "extra": "ignore"}

    subject: str = Field(
        ...,
        description="Email subject line",
        examples=["Q3 budget review"],
    )
    sender: EmailStr = Field(
        ...,
        description="Sender address",
        examples=["alice@example.com"],
    )
    recipient: list[EmailStr] = Field(
        ...,
        min_length=1,
        description="Primary recipient addresses (at least one)",
        examples=[["bob@example.com"]],
    )
    cc: list[EmailStr] = Field(
        default_factory=list,
        description="Carbon-copy addresses",
    )
    bcc: list[EmailStr] = Field(
        default_factory=list,
        description="Blind carbon-copy addresses",
    )
    body: str = Field(
        ...,
        description="Plain-text email body",
    )

    @field_validator("subject", "body")
    @classmethod
    def require_text(cls, v: str) -> str:
        """Reject blank subjects and bodies."""
        if not v.strip():
            raise ValueError("must contain non-whitespace text")
        return v

    @field_validator("recipient", "cc", "bcc", mode="before")
    @classmethod
    def none_as_empty(cls, v: Any) -> Any:
        """Treat an explicit null address list as empty."""
        return [] if v is None else v

    @field_validator("recipient", "cc", "bcc")
    @classmethod
    def dedupe(cls, v: list[str]) -> list[str]:
        """Drop repeated addresses, keeping first-seen order."""
        return list(dict.fromkeys(v))


def parse_email_draft(fields: "EmailDraft | Mapping[str, Any]") -> EmailDraft:
    """
    Coerce raw ingestion input into a validated EmailDraft.

    Raises:
        ValidationError: If any field is missing or malformed
    """
    if isinstance(fields, EmailDraft):
        return fields
    try:
        return EmailDraft.model_validate(dict(fields))
    except pydantic.ValidationError as e:
        raise ValidationError(
            f"Invalid email data ({e.error_count()} errors)",
            errors=json.loads(e.json(include_url=False)),
        ) from e
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid email data: {e}") from e


@dataclass
class Email:
    """A stored email."""

    id: int
    subject: str
    sender: str
    recipients: list[str]
    body: str
    chunk_size: int
    """Character budget the body was chunked with."""

    created_at: datetime
    cc: list[str] = field(default_factory=list)
    bcc: list[str] = field(default_factory=list)


@dataclass
class Chunk:
    """A stored slice of an email body."""

    id: int
    """Chunk identifier assigned by the store."""

    email_id: int
    """Owning email."""

    content: str
    """The text content of the chunk."""

    order_index: int
    """1-based position of the chunk within the email body."""

    created_at: datetime
    """When the chunk row was written."""


@dataclass
class SearchResult:
    """A chunk matched by a similarity search."""

    chunk_id: int
    email_id: int
    content: str
    similarity: float
    """Cosine similarity to the query (-1.0 to 1.0)."""
