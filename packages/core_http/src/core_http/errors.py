from __future__ import annotations
import uuid
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from fastapi.responses import JSONResponse
from fastapi import HTTPException as FastAPIHTTPException
from core_logging import get_logger, log_stage
from core_logging.error_codes import ErrorCode
from core_utils import jsonx

def _request_id(request: Request) -> str:
    return request.headers.get("x-request-id") or uuid.uuid4().hex[:16]

def raise_http_error(
    status_code: int,
    code: ErrorCode,
    message: str,
    request_id: str,
    *,
    details: object | None = None,
) -> FastAPIHTTPException:
    """
    Construct a FastAPI HTTPException with the canonical error envelope.
    attach_standard_error_handlers() will pass this JSON through unchanged.
    """
    payload = {
        "error": {
            "code": code,
            "message": message,
            "request_id": request_id,
        },
        "request_id": request_id,
    }
    if details is not None:
        payload["error"]["details"] = jsonx.sanitize(details)
    return FastAPIHTTPException(status_code=status_code, detail=payload)

def attach_standard_error_handlers(app: FastAPI, *, service: str) -> None:
    """
    Uniform error shaping:
      - 422: Pydantic validation
      - Starlette HTTP errors (JSON passthrough)
      - 500: Catch-all with {code, message, details, request_id}
    """
    logger = get_logger(service)

    @app.exception_handler(RequestValidationError)
    async def _validation_exc_handler(request: Request, exc: RequestValidationError):
        req_id = _request_id(request)
        log_stage(logger, "validation", "failed",
                  request_id=req_id, errors=jsonx.sanitize(exc.errors()),
                  url=str(request.url), method=request.method)
        return JSONResponse(
            status_code=422,
            content={
                "error": {
                    "code": ErrorCode.validation_failed,
                    "message": "Request validation failed",
                    "details": {"errors": jsonx.sanitize(exc.errors())},
                    "request_id": req_id,
                },
                "request_id": req_id,
            },
        )

    @app.exception_handler(StarletteHTTPException)
    async def _http_exc_handler(_: Request, exc: StarletteHTTPException):
        # Keep Starlette semantics but JSON-first body
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.exception_handler(Exception)
    async def _unhandled_exc_handler(request: Request, exc: Exception):
        req_id = _request_id(request)
        log_stage(logger, "request", "unhandled_exception", level="ERROR",
                  request_id=req_id, error=str(exc), error_type=exc.__class__.__name__)
        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "code": ErrorCode.internal,
                    "message": "Unexpected error",
                    "details": jsonx.sanitize({"type": exc.__class__.__name__, "message": str(exc)}),
                    "request_id": req_id,
                },
                "request_id": req_id,
            },
        )
