"""Translate sandbox error categories into HTTP responses."""

from __future__ import annotations

import logging

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from sql_sandbox.errors import ErrorCategory, SandboxError

logger = logging.getLogger(__name__)

STATUS_BY_CATEGORY: dict[ErrorCategory, int] = {
    ErrorCategory.EMPTY_SCRIPT: 400,
    ErrorCategory.MISSING_CREATE_STATEMENT: 400,
    ErrorCategory.INVALID_DATABASE_NAME: 400,
    ErrorCategory.FORBIDDEN_COMMAND: 400,
    ErrorCategory.UNRECOGNIZED_COMMAND: 400,
    ErrorCategory.MULTIPLE_STATEMENTS: 400,
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.DATABASE_ALREADY_EXISTS: 409,
    ErrorCategory.TIMEOUT: 408,
    ErrorCategory.STATEMENT_FAILED: 422,
    ErrorCategory.UNDEFINED_TABLE: 422,
    ErrorCategory.UNDEFINED_COLUMN: 422,
    ErrorCategory.SYNTAX_ERROR: 422,
    ErrorCategory.UNIQUE_VIOLATION: 422,
    ErrorCategory.FOREIGN_KEY_VIOLATION: 422,
    ErrorCategory.NOT_NULL_VIOLATION: 422,
    ErrorCategory.UNCLASSIFIED_DATABASE_ERROR: 500,
    ErrorCategory.PROVISIONING_FAILED: 503,
    ErrorCategory.ORACLE_UNAVAILABLE: 503,
}


async def sandbox_error_handler(request: Request, exc: SandboxError) -> JSONResponse:
    status_code = STATUS_BY_CATEGORY.get(exc.category, 500)
    if status_code >= 500:
        logger.error("%s on %s: %s", exc.category.value, request.url.path, exc.message)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


async def oracle_error_handler(request: Request, exc: httpx.HTTPError) -> JSONResponse:
    logger.error("Feedback oracle request failed: %s", exc)
    return JSONResponse(
        status_code=502,
        content={
            "category": ErrorCategory.ORACLE_UNAVAILABLE.value,
            "message": "The feedback service is unavailable.",
        },
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SandboxError, sandbox_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(httpx.HTTPError, oracle_error_handler)  # type: ignore[arg-type]
