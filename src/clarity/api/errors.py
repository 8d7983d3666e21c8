"""Exception handlers mapping service errors to JSON responses."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from clarity.schemas.common import ErrorResponse
from clarity.services.errors import AuthError, RateLimited, TokenError

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    """Install the handler for ``AuthError`` and its subclasses."""

    @app.exception_handler(AuthError)
    async def handle_auth_error(request: Request, exc: AuthError) -> JSONResponse:
        log = logger.error if exc.status_code >= 500 else logger.info
        log(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}")

        headers: dict[str, str] = {}
        if isinstance(exc, TokenError):
            headers["WWW-Authenticate"] = "Bearer"
        if isinstance(exc, RateLimited):
            headers["Retry-After"] = str(exc.retry_after)

        body = ErrorResponse(detail=exc.message, code=exc.code)
        return JSONResponse(status_code=exc.status_code, content=body.model_dump(), headers=headers)
