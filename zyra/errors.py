from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from zyra.schemas import ErrorCode, ErrorDetail, ErrorResponse

logger = logging.getLogger(__name__)


class ZyraError(Exception):
    """Base for every error that leaves the API as an error envelope."""

    code = ErrorCode.INTERNAL_ERROR
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, *, hint: str | None = None):
        super().__init__(message)
        self.message = message
        self.hint = hint

    def to_detail(self) -> ErrorDetail:
        return ErrorDetail(code=self.code, message=self.message, hint=self.hint)


class FetchError(ZyraError):
    """An upstream data call failed (HTTP status, network, timeout or bad JSON)."""

    code = ErrorCode.UPSTREAM_UNAVAILABLE
    http_status = status.HTTP_502_BAD_GATEWAY

    def __init__(
        self,
        resource: str,
        message: str,
        *,
        status_code: int | None = None,
        timeout: bool = False,
        hint: str | None = None,
    ):
        super().__init__(message, hint=hint)
        self.resource = resource
        self.status_code = status_code
        self.timeout = timeout
        if timeout:
            self.code = ErrorCode.UPSTREAM_TIMEOUT
            self.http_status = status.HTTP_504_GATEWAY_TIMEOUT


class InvalidInputError(ZyraError, ValueError):
    code = ErrorCode.INVALID_INPUT
    http_status = status.HTTP_400_BAD_REQUEST


class NotFoundError(ZyraError):
    code = ErrorCode.NOT_FOUND
    http_status = status.HTTP_404_NOT_FOUND


class NotConfiguredError(ZyraError):
    code = ErrorCode.NOT_CONFIGURED
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE


class LLMError(ZyraError):
    code = ErrorCode.LLM_ERROR
    http_status = status.HTTP_502_BAD_GATEWAY


class RateLimitError(ZyraError):
    code = ErrorCode.RATE_LIMIT
    http_status = status.HTTP_429_TOO_MANY_REQUESTS


class DeliveryError(ZyraError):
    code = ErrorCode.DELIVERY_FAILED
    http_status = status.HTTP_502_BAD_GATEWAY


def envelope_from_http_exception(exc: StarletteHTTPException) -> ErrorResponse:
    d = exc.detail
    code = ErrorCode.NOT_FOUND if exc.status_code == 404 else ErrorCode.INTERNAL_ERROR
    if 400 <= exc.status_code < 500 and exc.status_code != 404:
        code = ErrorCode.INVALID_INPUT
    return ErrorResponse(error=ErrorDetail(code=code, message=str(d), hint=None))


def _envelope(http_status: int, body: ErrorResponse) -> JSONResponse:
    return JSONResponse(status_code=http_status, content=body.model_dump(mode="json"))


async def _zyra_error_handler(request: Request, exc: ZyraError) -> JSONResponse:
    level = logging.WARNING if exc.http_status < 500 else logging.ERROR
    logger.log(level, "%s %s -> %s: %s", request.method, request.url.path, exc.code.value, exc)
    return _envelope(exc.http_status, ErrorResponse(error=exc.to_detail()))


async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _envelope(exc.status_code, envelope_from_http_exception(exc))


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{where}: {first.get('msg', 'invalid input')}" if where else "invalid input"
    detail = ErrorDetail(code=ErrorCode.INVALID_INPUT, message=message, hint=None)
    return _envelope(422, ErrorResponse(error=detail))


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    detail = ErrorDetail(code=ErrorCode.INTERNAL_ERROR, message="internal server error")
    return _envelope(500, ErrorResponse(error=detail))


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ZyraError, _zyra_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
