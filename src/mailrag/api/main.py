"""
FastAPI application for the mailrag REST API.

Run with:
    uvicorn mailrag.api.main:app --reload

Or use the CLI:
    mailrag serve
"""

import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, FastAPI, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from mailrag import __version__
from mailrag.api.models import (
    ChunkSchema,
    EmailResponse,
    ErrorResponse,
    HealthResponse,
    IngestResponse,
    SearchMatch,
    SearchRequest,
    SearchResponse,
)
from mailrag.config import settings
from mailrag.errors import (
    EmptyInputError,
    IngestionError,
    ProviderError,
    QueryError,
    ReferentialError,
    ValidationError,
)
from mailrag.logging_setup import setup_logging
from mailrag.models import EmailDraft
from mailrag.retrieval.ingestion import IngestionOrchestrator, IngestionResult
from mailrag.retrieval.resources import (
    get_document_store,
    get_ingestion_orchestrator,
    get_retrieval_engine,
    initialize_resources,
)
from mailrag.retrieval.search import RetrievalEngine
from mailrag.retrieval.store import DocumentStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
        - Configure logging
        - Open the document store and rebuild the similarity index (cached)
        - Initialize the embedder (cached)
    """
    setup_logging(settings.log_level)
    logger.info("Initializing mailrag resources...")

    try:
        resource_status = initialize_resources()
        logger.info(f"Resource initialization status: {resource_status}")
    except Exception as e:
        logger.error(f"Failed to initialize resources: {e}")
        raise RuntimeError(f"Startup failed: {e}") from e

    yield

    logger.info("Shutting down mailrag...")


def _error(status_code: int, **fields) -> JSONResponse:
    body = ErrorResponse(**fields).model_dump(exclude_none=True)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error(
        status.HTTP_400_BAD_REQUEST,
        error="invalid_request",
        message="Request body failed validation",
        details=jsonable_encoder(exc.errors()),
    )


async def _validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return _error(
        status.HTTP_400_BAD_REQUEST,
        error="invalid_email",
        message=str(exc),
        details=exc.errors or None,
    )


async def _query_handler(request: Request, exc: Exception) -> JSONResponse:
    return _error(status.HTTP_400_BAD_REQUEST, error="invalid_query", message=str(exc))


async def _not_found_handler(request: Request, exc: ReferentialError) -> JSONResponse:
    return _error(status.HTTP_404_NOT_FOUND, error="not_found", message=str(exc))


async def _ingestion_handler(request: Request, exc: IngestionError) -> JSONResponse:
    return _error(
        status.HTTP_502_BAD_GATEWAY,
        error="ingestion_failed",
        message=str(exc),
        email_id=exc.email_id,
        last_order_index=exc.last_order_index,
    )


async def _provider_handler(request: Request, exc: ProviderError) -> JSONResponse:
    return _error(status.HTTP_502_BAD_GATEWAY, error="provider_error", message=str(exc))


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI app instance
    """
    app = FastAPI(
        title="mailrag",
        description="Email chunk embedding and identity-filtered similarity search",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(ValidationError, _validation_handler)
    app.add_exception_handler(QueryError, _query_handler)
    app.add_exception_handler(EmptyInputError, _query_handler)
    app.add_exception_handler(ReferentialError, _not_found_handler)
    app.add_exception_handler(IngestionError, _ingestion_handler)
    app.add_exception_handler(ProviderError, _provider_handler)

    app.include_router(router)

    return app


router = APIRouter()

_ERRORS = {
    400: {"model": ErrorResponse, "description": "Invalid request"},
    404: {"model": ErrorResponse, "description": "Email not found"},
    502: {"model": ErrorResponse, "description": "Embedding provider failure"},
}


def _ingest_response(result: IngestionResult) -> IngestResponse:
    return IngestResponse(
        email_id=result.email_id,
        chunk_count=result.chunk_count,
        chunks_written=result.chunks_written,
    )


@router.get("/health", response_model=HealthResponse, tags=["System"])
def health_check(store: DocumentStore = Depends(get_document_store)) -> HealthResponse:
    """Health check endpoint for liveness/readiness probes."""
    return HealthResponse(
        status="healthy",
        version=__version__,
        indexed_chunks=store.index.size,
    )


@router.post(
    "/emails",
    response_model=IngestResponse,
    status_code=status.HTTP_201_CREATED,
    responses=_ERRORS,
    tags=["Emails"],
)
def store_email(
    draft: EmailDraft,
    orchestrator: IngestionOrchestrator = Depends(get_ingestion_orchestrator),
) -> IngestResponse:
    """
    Store an email and embed its body chunk by chunk.

    On a 502 the email row and the chunks up to ``last_order_index`` are
    kept; POST /emails/{email_id}/resume finishes the job.
    """
    return _ingest_response(orchestrator.ingest(draft))


@router.post(
    "/emails/{email_id}/resume",
    response_model=IngestResponse,
    responses=_ERRORS,
    tags=["Emails"],
)
def resume_email(
    email_id: int,
    orchestrator: IngestionOrchestrator = Depends(get_ingestion_orchestrator),
) -> IngestResponse:
    """Embed and store the chunks a failed ingestion did not reach."""
    return _ingest_response(orchestrator.resume(email_id))


@router.get(
    "/emails/{email_id}",
    response_model=EmailResponse,
    responses=_ERRORS,
    tags=["Emails"],
)
def get_email(
    email_id: int,
    store: DocumentStore = Depends(get_document_store),
) -> EmailResponse:
    """Fetch an email with its ordered chunks."""
    email = store.get_email(email_id)
    if email is None:
        raise ReferentialError(email_id)

    return EmailResponse(
        id=email.id,
        subject=email.subject,
        sender=email.sender,
        recipient=email.recipients,
        cc=email.cc,
        bcc=email.bcc,
        body=email.body,
        chunk_size=email.chunk_size,
        created_at=email.created_at,
        chunks=[
            ChunkSchema(
                id=chunk.id,
                order_index=chunk.order_index,
                content=chunk.content,
                created_at=chunk.created_at,
            )
            for chunk in store.get_chunks(email_id)
        ],
    )


@router.delete(
    "/emails/{email_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses=_ERRORS,
    tags=["Emails"],
)
def delete_email(
    email_id: int,
    store: DocumentStore = Depends(get_document_store),
) -> Response:
    """Delete an email, its chunks and their vectors."""
    if not store.delete_email(email_id):
        raise ReferentialError(email_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/search",
    response_model=SearchResponse,
    responses=_ERRORS,
    tags=["Search"],
)
def search(
    request: SearchRequest,
    engine: RetrievalEngine = Depends(get_retrieval_engine),
) -> SearchResponse:
    """
    Rank the identity's email chunks against a query.

    Only emails the identity sent or primarily received are searched
    (cc/bcc do not count). Matches score strictly above ``threshold``.
    """
    if request.query_text is not None:
        results = engine.search_text(
            request.query_text,
            threshold=request.threshold,
            limit=request.limit,
            identity=request.identity,
        )
    else:
        results = engine.search(
            request.query_vector,
            threshold=request.threshold,
            limit=request.limit,
            identity=request.identity,
        )

    return SearchResponse(
        results=[
            SearchMatch(
                chunk_id=r.chunk_id,
                email_id=r.email_id,
                content=r.content,
                similarity=r.similarity,
            )
            for r in results
        ]
    )


# Create app instance
app = create_app()
