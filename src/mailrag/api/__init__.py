"""
FastAPI REST API for mailrag.

Endpoints:
    POST /emails - Ingest an email (chunk, embed, store)
    POST /emails/{id}/resume - Finish a partially ingested email
    GET /emails/{id} - Fetch an email with its chunks
    DELETE /emails/{id} - Delete an email and its chunks
    POST /search - Identity-filtered similarity search
    GET /health - Health check
"""

from mailrag.api.main import app, create_app

__all__ = ["app", "create_app"]
