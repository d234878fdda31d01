"""Exception handlers turning domain exceptions into HTTP responses.

Hey future me - every domain exception maps to ONE status code here, routers never
catch domain exceptions themselves. The mapping:

| exception             | status | note                                        |
|-----------------------|--------|---------------------------------------------|
| NotFoundError         | 404    | includes AccountNotFound                    |
| AuthenticationError   | 401    |                                             |
| AuthError             | 403    | someone else's private data                 |
| RefreshTokenInvalid   | 409    | client shows "reconnect Spotify"            |
| BusinessRuleViolation | 400    |                                             |
| ValidationError       | 422    |                                             |
| ProviderUnreachable   | 503    | Retry-After: 30                             |
| ConfigurationError    | 503    |                                             |
| DecryptionError       | 500    | generic body, details only in the logs      |
| OperationalError      | 503    | DB locked / unavailable                     |
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from earshot.domain.exceptions import (
    AuthenticationError,
    AuthError,
    BusinessRuleViolation,
    ConfigurationError,
    DecryptionError,
    DomainException,
    NotFoundError,
    ProviderUnreachable,
    RefreshTokenInvalid,
    ValidationError,
)

logger = logging.getLogger(__name__)

_STATUS_BY_EXCEPTION: list[tuple[type[DomainException], int]] = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (AuthenticationError, status.HTTP_401_UNAUTHORIZED),
    (AuthError, status.HTTP_403_FORBIDDEN),
    (RefreshTokenInvalid, status.HTTP_409_CONFLICT),
    (BusinessRuleViolation, status.HTTP_400_BAD_REQUEST),
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ConfigurationError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def status_for(exc: DomainException) -> int:
    for exc_type, status_code in _STATUS_BY_EXCEPTION:
        if isinstance(exc, exc_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def register_exception_handlers(app: FastAPI) -> None:
    """Register handlers for domain and database exceptions."""

    @app.exception_handler(DecryptionError)
    async def decryption_error_handler(request: Request, exc: DecryptionError) -> JSONResponse:
        # Operator problem (key rotated/missing). Never echo details to the client.
        logger.error(
            "Credential decryption failed at %s: %s",
            request.url.path,
            exc.message,
            extra={"path": request.url.path},
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Stored credentials could not be read"},
        )

    @app.exception_handler(ProviderUnreachable)
    async def provider_unreachable_handler(
        request: Request, exc: ProviderUnreachable
    ) -> JSONResponse:
        logger.warning(
            "Provider unreachable at %s: %s",
            request.url.path,
            exc.message,
            extra={"path": request.url.path, "http_status": exc.http_status},
        )
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Streaming provider is unavailable, try again later"},
            headers={"Retry-After": "30"},
        )

    @app.exception_handler(DomainException)
    async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
        status_code = status_for(exc)
        log = logger.error if status_code >= 500 else logger.info
        log(
            "%s at %s: %s",
            type(exc).__name__,
            request.url.path,
            exc.message,
            extra={"path": request.url.path, "status_code": status_code},
        )
        content: dict[str, object] = {"detail": exc.message}
        if isinstance(exc, RefreshTokenInvalid):
            content["relink_required"] = True
        return JSONResponse(status_code=status_code, content=content)

    # Hey future me - SQLite "database is locked" that survived with_db_retry ends up here.
    # 503 tells the client to retry instead of showing a scary 500.
    @app.exception_handler(OperationalError)
    async def operational_error_handler(
        request: Request, exc: OperationalError
    ) -> JSONResponse:
        logger.warning(
            "Database unavailable at %s: %s",
            request.url.path,
            str(exc.orig),
            extra={"path": request.url.path},
        )
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Database is busy, try again shortly"},
            headers={"Retry-After": "5"},
        )
