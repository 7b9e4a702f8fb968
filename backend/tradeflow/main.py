import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from tradeflow.ai.processor import DocumentProcessor
from tradeflow.ai.quota_manager import QuotaManager
from tradeflow.ai.worker import DocumentProcessingQueue
from tradeflow.api.router import api_router
from tradeflow.config import settings
from tradeflow.database import async_session_factory
from tradeflow.middleware.logging import RequestLoggingMiddleware
from tradeflow.workflow.errors import WorkflowError

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)-8s %(name)s - %(message)s",
)

logger = logging.getLogger(__name__)

_HTTP_ERROR_TYPES = {
    400: "BAD_REQUEST",
    401: "AUTHENTICATION_ERROR",
    403: "AUTHORIZATION_ERROR",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Initialize Sentry if DSN is configured
    if settings.sentry_dsn:
        try:
            import sentry_sdk
            sentry_sdk.init(
                dsn=settings.sentry_dsn,
                traces_sample_rate=0.1,
                environment=settings.environment,
            )
            logger.info("Sentry initialized (env=%s)", settings.environment)
        except Exception as e:
            logger.warning("Failed to initialize Sentry: %s", e)

    quota_manager = QuotaManager.from_settings(settings)
    processor = DocumentProcessor(settings, quota_manager)
    queue = DocumentProcessingQueue(
        processor,
        async_session_factory,
        max_attempts=settings.processing_max_attempts,
    )
    app.state.quota_manager = quota_manager
    app.state.document_processor = processor
    app.state.processing_queue = queue
    queue.start()

    logger.info("Starting TradeFlow backend (env=%s)", settings.environment)
    yield
    await queue.stop()
    logger.info("Shutting down TradeFlow backend")


app = FastAPI(
    title="TradeFlow - Trade Document Workflow",
    description="Shipment orders, staged forwarder assignments and AI document processing",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)


def _error_response(status_code: int, message: str, error_type: str, details=None, headers=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({
            "success": False,
            "message": message,
            "error_type": error_type,
            "details": details,
        }),
        headers=headers,
    )


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    logger.info("%s %s rejected: %s (%s)", request.method, request.url.path, exc.message, exc.code)
    return _error_response(exc.status_code, exc.message, exc.code, exc.details or None)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error_response(
        exc.status_code,
        str(exc.detail),
        _HTTP_ERROR_TYPES.get(exc.status_code, "HTTP_ERROR"),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"field": ".".join(str(p) for p in err["loc"][1:]), "message": err["msg"]}
        for err in exc.errors()
    ]
    return _error_response(400, "Validation failed", "VALIDATION_ERROR", {"errors": errors})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    message = "Internal server error" if settings.is_production else f"Internal server error: {exc}"
    return _error_response(500, message, "INTERNAL_ERROR")


app.include_router(api_router, prefix="/api")
