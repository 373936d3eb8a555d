"""
Pydantic models for API request and response schemas.

These models provide automatic validation and OpenAPI documentation.
The ingestion request body is mailrag.models.EmailDraft itself.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator

from mailrag.config import settings


class SearchRequest(BaseModel):
    """Request schema for the /search endpoint."""

    query_text: Optional[str] = Field(
        default=None,
        min_length=1,
        description="Question to embed and search with",
        examples=["When is the budget review?"],
    )
    query_vector: Optional[list[float]] = Field(
        default=None,
        description="Pre-computed query embedding",
    )
    threshold: float = Field(
        default_factory=lambda: settings.similarity_threshold,
        description="Exclusive lower bound on cosine similarity",
    )
    limit: int = Field(
        default_factory=lambda: settings.retrieval_limit,
        description="Maximum matches to return (capped at 200, <= 0 returns none)",
    )
    identity: str = Field(
        ...,
        description="Sender or recipient address to filter by",
        examples=["bob@example.com"],
    )

    @model_validator(mode="after")
    def exactly_one_query(self) -> "SearchRequest":
        """Require either query_text or query_vector, not both."""
        if (self.query_text is None) == (self.query_vector is None):
            raise ValueError("Provide exactly one of query_text or query_vector")
        return self


class SearchMatch(BaseModel):
    """A single ranked chunk."""

    chunk_id: int
    email_id: int
    content: str
    similarity: float = Field(description="Cosine similarity to the query (-1.0 to 1.0)")


class SearchResponse(BaseModel):
    """Response schema for the /search endpoint."""

    results: list[SearchMatch] = Field(default_factory=list)


class IngestResponse(BaseModel):
    """Response schema for ingestion and resume."""

    email_id: int
    chunk_count: int = Field(description="Total chunks stored for the email")
    chunks_written: int = Field(description="Chunks written by this request")


class ChunkSchema(BaseModel):
    """A stored chunk, without its vector."""

    id: int
    order_index: int
    content: str
    created_at: datetime


class EmailResponse(BaseModel):
    """Response schema for GET /emails/{id}."""

    id: int
    subject: str
    sender: str
    recipient: list[str]
    cc: list[str]
    bcc: list[str]
    body: str
    chunk_size: int = Field(description="Character budget the body was chunked with")
    created_at: datetime
    chunks: list[ChunkSchema] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Response schema for the /health endpoint."""

    status: str = Field(
        description="Health status",
        examples=["healthy", "unhealthy"],
    )
    version: str = Field(
        description="API version",
    )
    indexed_chunks: int = Field(
        description="Number of chunk vectors in the similarity index",
    )


class ErrorResponse(BaseModel):
    """Schema for error responses."""

    error: str = Field(
        description="Error code",
        examples=["invalid_email", "ingestion_failed", "invalid_query", "not_found"],
    )
    message: str = Field(
        description="Human-readable error message",
    )
    details: Optional[list[dict[str, Any]]] = Field(
        default=None,
        description="Field-level validation errors",
    )
    email_id: Optional[int] = Field(
        default=None,
        description="Email left partially ingested (ingestion_failed only)",
    )
    last_order_index: Optional[int] = Field(
        default=None,
        description="Last chunk order index that was stored (ingestion_failed only)",
    )
