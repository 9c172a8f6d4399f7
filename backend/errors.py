"""Custom exceptions and centralized FastAPI error handlers."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class TokenServiceError(Exception):
    """Base exception with HTTP status code."""

    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.status_code = status_code


class ValidationError(TokenServiceError):
    """Missing or malformed request field. Never retried."""

    def __init__(self, message: str):
        super().__init__(message, status_code=400)


class ExtractionFailure(TokenServiceError):
    """Extractor could not produce a token within the retry budget.

    Carries the cumulative failure count for the stream and an advisory
    ``retry_after`` (ms) the caller may honor.
    """

    def __init__(self, message: str, failures: int, retry_after: int):
        super().__init__(message, status_code=503)
        self.failures = failures
        self.retry_after = retry_after

    def to_dict(self) -> dict:
        return {
            "success": False,
            "error": str(self),
            "failures": self.failures,
            "retryAfter": self.retry_after,
        }


class BackoffActive(ExtractionFailure):
    """Request rejected before extraction because the stream is still backing off."""

    def __init__(self, stream_key: str, failures: int, retry_after: int):
        super().__init__(
            f"Stream {stream_key} is backing off after {failures} failures",
            failures=failures,
            retry_after=retry_after,
        )


def register_error_handlers(app: FastAPI) -> None:
    """Register centralized exception handlers on the FastAPI app."""

    @app.exception_handler(ExtractionFailure)
    async def handle_extraction_failure(_request: Request, exc: ExtractionFailure):
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

    @app.exception_handler(TokenServiceError)
    async def handle_token_service_error(_request: Request, exc: TokenServiceError):
        return JSONResponse({"error": str(exc)}, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(_request: Request, exc: RequestValidationError):
        details = "; ".join(
            f"{'.'.join(str(part) for part in err.get('loc', ()) if part != 'body')}: {err.get('msg')}"
            for err in exc.errors()
        )
        return JSONResponse({"error": f"Invalid request body: {details}"}, status_code=400)

    @app.exception_handler(ValueError)
    async def handle_value_error(_request: Request, exc: ValueError):
        return JSONResponse({"error": str(exc)}, status_code=400)

    @app.exception_handler(Exception)
    async def handle_unexpected(_request: Request, exc: Exception):
        logger.exception("Unhandled error: %s", exc)
        return JSONResponse(
            {"error": "Internal server error"},
            status_code=500,
        )
