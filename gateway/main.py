"""HTTP front door of a backup peer."""

import time
import uuid

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from common.exceptions import (
    BackupServiceError,
    FileNotBackedUpError,
    FileTooLargeError,
    InsufficientReplicationError,
    InvalidRequestError,
    KeyMaterialError,
    OperationInProgressError,
    RestoreError,
    SourceFileNotFoundError
)
from common.logging_config import get_logger
from gateway.routes.operation_routes import router as operation_router
from gateway.schemas import ErrorResponse

logger = get_logger(__name__)


def _error(request: Request, exc: Exception, status_code: int, code: str, log_error: bool = False) -> JSONResponse:
    request_id = getattr(request.state, 'request_id', 'unknown')
    message = f"{type(exc).__name__}: {exc} [request_id={request_id}] path={request.url.path}"
    if log_error:
        logger.error(message, exc_info=True)
    else:
        logger.warning(message)
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(detail=str(exc), code=code).model_dump()
    )


def create_app() -> FastAPI:
    """
    Build the gateway application.

    The peer itself is injected through gateway.routes.operation_routes.set_peer.
    """
    app = FastAPI(
        title="Multicast Backup Peer",
        description="Front door of a serverless peer-to-peer backup service",
        version="1.0.0"
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """
        Middleware to log all HTTP requests and responses.
        """
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        start_time = time.time()

        logger.info(
            f"Request started: {request.method} {request.url.path} [request_id={request_id}]"
        )

        response = await call_next(request)

        duration = time.time() - start_time

        logger.info(
            f"Request completed: {request.method} {request.url.path} "
            f"status={response.status_code} duration={duration:.3f}s [request_id={request_id}]"
        )

        response.headers["X-Request-ID"] = request_id

        return response

    @app.exception_handler(InvalidRequestError)
    async def invalid_request_handler(request: Request, exc: InvalidRequestError):
        return _error(request, exc, status.HTTP_400_BAD_REQUEST, "INVALID_REQUEST")

    @app.exception_handler(SourceFileNotFoundError)
    async def file_not_found_handler(request: Request, exc: SourceFileNotFoundError):
        return _error(request, exc, status.HTTP_404_NOT_FOUND, "FILE_NOT_FOUND")

    @app.exception_handler(FileNotBackedUpError)
    async def file_not_backed_up_handler(request: Request, exc: FileNotBackedUpError):
        return _error(request, exc, status.HTTP_404_NOT_FOUND, "FILE_NOT_BACKED_UP")

    @app.exception_handler(FileTooLargeError)
    async def file_too_large_handler(request: Request, exc: FileTooLargeError):
        return _error(request, exc, status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, "FILE_TOO_LARGE")

    @app.exception_handler(OperationInProgressError)
    async def operation_in_progress_handler(request: Request, exc: OperationInProgressError):
        return _error(request, exc, status.HTTP_409_CONFLICT, "OPERATION_IN_PROGRESS")

    @app.exception_handler(InsufficientReplicationError)
    async def insufficient_replication_handler(request: Request, exc: InsufficientReplicationError):
        return _error(request, exc, status.HTTP_503_SERVICE_UNAVAILABLE, "INSUFFICIENT_REPLICATION")

    @app.exception_handler(RestoreError)
    async def restore_error_handler(request: Request, exc: RestoreError):
        return _error(request, exc, status.HTTP_502_BAD_GATEWAY, "RESTORE_FAILED")

    @app.exception_handler(KeyMaterialError)
    async def key_material_handler(request: Request, exc: KeyMaterialError):
        return _error(request, exc, status.HTTP_500_INTERNAL_SERVER_ERROR, "KEY_MATERIAL", log_error=True)

    @app.exception_handler(BackupServiceError)
    async def backup_service_error_handler(request: Request, exc: BackupServiceError):
        return _error(request, exc, status.HTTP_500_INTERNAL_SERVER_ERROR, "INTERNAL_ERROR", log_error=True)

    @app.exception_handler(OSError)
    async def io_error_handler(request: Request, exc: OSError):
        return _error(request, exc, status.HTTP_500_INTERNAL_SERVER_ERROR, "IO_ERROR", log_error=True)

    app.include_router(operation_router)

    @app.get("/")
    async def root():
        """
        Root endpoint for health check.
        """
        return {"message": "Multicast Backup Peer API", "status": "running"}

    @app.get("/health")
    async def health_check():
        """
        Health check endpoint for Docker healthcheck.
        Returns 200 if service is alive.
        """
        return {"status": "healthy", "service": "peer"}

    return app


app = create_app()
