"""API exceptions and FastAPI error handler registration."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from jobline.api.schemas import ErrorResponse
from jobline.orchestrator.errors import JobNotFoundError

logger = logging.getLogger(__name__)


class BadRequestError(Exception):
    """Request is missing a required field."""


class UnknownJobKindError(Exception):
    def __init__(self, kind: str) -> None:
        super().__init__(f"Unknown job kind: {kind}")
        self.kind = kind


def _error(status_code: int, error: str, details: object = None) -> JSONResponse:
    body = ErrorResponse(error=error, details=details)
    return JSONResponse(status_code=status_code, content=body.model_dump())


def _validation_details(errors: list[dict]) -> list[str]:
    details: list[str] = []
    for item in errors:
        location = ".".join(str(part) for part in item.get("loc", ()) if part != "body")
        details.append(f"{location or 'body'}: {item.get('msg', 'invalid')}")
    return details


def register_error_handlers(app: FastAPI) -> None:
    """Map domain, validation and infrastructure errors to JSON responses."""

    @app.exception_handler(BadRequestError)
    async def _bad_request(_: Request, exc: BadRequestError) -> JSONResponse:
        return _error(400, str(exc))

    @app.exception_handler(RequestValidationError)
    async def _request_validation(_: Request, exc: RequestValidationError) -> JSONResponse:
        return _error(400, "Missing or invalid fields", _validation_details(list(exc.errors())))

    @app.exception_handler(ValidationError)
    async def _payload_validation(_: Request, exc: ValidationError) -> JSONResponse:
        return _error(400, "Missing or invalid fields", _validation_details(list(exc.errors())))

    @app.exception_handler(UnknownJobKindError)
    async def _unknown_kind(_: Request, exc: UnknownJobKindError) -> JSONResponse:
        return _error(404, str(exc))

    @app.exception_handler(JobNotFoundError)
    async def _not_found(_: Request, exc: JobNotFoundError) -> JSONResponse:
        return _error(404, str(exc))

    @app.exception_handler(SQLAlchemyError)
    async def _infrastructure(_: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error("Job store or queue failure: %s", exc, exc_info=exc)
        return _error(500, "Job store or queue unavailable", str(exc))
