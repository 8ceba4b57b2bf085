"""Query, manipulation, import and database administration endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Header, HTTPException, Query, Request, Response, UploadFile
from pydantic import BaseModel, Field

from sql_sandbox.models.database import LogicalDatabase
from sql_sandbox.models.result import (
    DatabaseSchema,
    ExecutionResult,
    ImportResult,
    ManipulationResult,
    QueryCheck,
)
from sql_sandbox.service import SqlSandbox

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sql", tags=["sql"])


# ---------------------------------------------------------------------------
# Request / response schemas
# ---------------------------------------------------------------------------


class QueryRequest(BaseModel):
    """Request body for ``POST /v1/sql/execute``."""

    query: str = Field(min_length=1, description="A single read-only SQL statement.")
    database: str = Field(description="Logical database to query.")


class ManipulationRequest(BaseModel):
    """Request body for ``POST /v1/sql/manipulate``."""

    query: str = Field(min_length=1, description="A single SQL statement.")
    database: str = Field(description="Logical database whose private copy is used.")
    reset_database: bool = Field(
        default=False,
        description="Discard the caller's copy before executing.",
    )


class CreateDatabaseRequest(BaseModel):
    """Request body for ``POST /v1/sql/create-database``."""

    db_name: str = Field(description="Name of the new database.")
    description: str | None = Field(default=None, description="Optional description.")
    sql_script: str = Field(min_length=1, description="Script populating the database.")


class CheckQueryRequest(BaseModel):
    """Request body for ``POST /v1/sql/check-query``."""

    task_description: str = Field(min_length=1)
    sql_query: str = Field(min_length=1)


class GenerateTaskRequest(BaseModel):
    """Request body for ``POST /v1/sql/generate-task``."""

    topic: str = Field(min_length=1, description="e.g. 'joins', 'group by'.")
    difficulty: str = Field(min_length=1, description="e.g. 'easy', 'medium', 'hard'.")
    database: str = Field(description="Database the task should be written for.")


class ResetResponse(BaseModel):
    database: str
    reset: bool


class WorksheetReferences(BaseModel):
    database: str
    references: int = Field(description="Worksheets currently using the database.")


class SweepResponse(BaseModel):
    deleted: int


class GeneratedTask(BaseModel):
    task: str


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _sandbox(request: Request) -> SqlSandbox:
    return request.app.state.sandbox


def _check_script_size(request: Request, script: str) -> None:
    limit = request.app.state.settings.max_script_size_bytes
    size = len(script.encode("utf-8"))
    if size > limit:
        raise HTTPException(
            status_code=413,
            detail=f"SQL script exceeds maximum allowed size ({size:,} bytes > {limit:,} bytes).",
        )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("/execute", response_model=ExecutionResult)
async def execute_query(
    body: QueryRequest,
    request: Request,
    x_user_id: int = Header(),
) -> ExecutionResult:
    """Run a read-only query directly against a logical database."""
    return await _sandbox(request).run_query(body.query, body.database, x_user_id)


@router.post("/manipulate", response_model=ManipulationResult)
async def execute_manipulation(
    body: ManipulationRequest,
    request: Request,
    x_user_id: int = Header(),
) -> ManipulationResult:
    """Run a statement inside the caller's private copy of a database."""
    return await _sandbox(request).run_manipulation(
        body.query,
        body.database,
        x_user_id,
        reset=body.reset_database,
    )


@router.post("/upload", response_model=ImportResult, status_code=201)
async def upload_script(
    file: UploadFile,
    request: Request,
    x_user_id: int = Header(),
) -> ImportResult:
    """Import an uploaded script that starts with ``CREATE DATABASE``."""
    raw = await file.read()
    try:
        script = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise HTTPException(status_code=400, detail="The script must be UTF-8 encoded.") from exc
    _check_script_size(request, script)

    result = await _sandbox(request).import_script(script, x_user_id)
    logger.info("Script %s imported as %s by %s", file.filename, result.database, x_user_id)
    return result


@router.post("/create-database", response_model=ImportResult, status_code=201)
async def create_database(
    body: CreateDatabaseRequest,
    request: Request,
    x_user_id: int = Header(),
) -> ImportResult:
    """Create a named database and populate it from a script."""
    _check_script_size(request, body.sql_script)
    return await _sandbox(request).create_database(
        body.db_name,
        body.sql_script,
        x_user_id,
        description=body.description,
    )


@router.get("/databases", response_model=list[LogicalDatabase])
async def list_databases(
    request: Request,
    x_user_id: int = Header(),
    mine: bool = Query(default=False, description="Only databases owned by the caller."),
) -> list[LogicalDatabase]:
    """List registered logical databases ordered by name."""
    return await _sandbox(request).list_databases(x_user_id if mine else None)


@router.delete("/databases/{name}", status_code=204)
async def delete_database(name: str, request: Request, x_user_id: int = Header()) -> Response:
    """Delete a database and every copy of it.  Owner only."""
    await _sandbox(request).delete_database(name, x_user_id)
    return Response(status_code=204)


@router.get("/databases/{name}/schema", response_model=DatabaseSchema)
async def inspect_database(
    name: str,
    request: Request,
    x_user_id: int = Header(),
) -> DatabaseSchema:
    """Tables, columns and row counts of a database."""
    return await _sandbox(request).inspect_database(name, x_user_id)


@router.post("/databases/{name}/reset", response_model=ResetResponse)
async def reset_copy(name: str, request: Request, x_user_id: int = Header()) -> ResetResponse:
    """Discard the caller's private copy of *name*."""
    sandbox = _sandbox(request)
    database = await sandbox.gate.require_access(name, x_user_id)
    reset = await sandbox.reset_copy(database.name, x_user_id)
    return ResetResponse(database=database.name, reset=reset)


@router.post("/databases/{name}/worksheet-references", response_model=WorksheetReferences)
async def publish_to_worksheet(
    name: str,
    request: Request,
    x_user_id: int = Header(),
) -> WorksheetReferences:
    """Record that a worksheet uses *name*, opening it to every caller.  Owner only."""
    references = await _sandbox(request).publish_to_worksheet(name, x_user_id)
    return WorksheetReferences(database=name, references=references)


@router.delete("/databases/{name}/worksheet-references", response_model=WorksheetReferences)
async def withdraw_from_worksheet(
    name: str,
    request: Request,
    x_user_id: int = Header(),
) -> WorksheetReferences:
    """Drop one worksheet reference to *name*.  Owner only."""
    references = await _sandbox(request).withdraw_from_worksheet(name, x_user_id)
    return WorksheetReferences(database=name, references=references)


@router.post("/copies/sweep", response_model=SweepResponse)
async def sweep_copies(request: Request) -> SweepResponse:
    """Remove all expired copies now instead of waiting for the sweeper."""
    return SweepResponse(deleted=await _sandbox(request).sweep_expired_copies())


@router.post("/check-query", response_model=QueryCheck)
async def check_query(body: CheckQueryRequest, request: Request) -> QueryCheck:
    """Ask the feedback oracle whether a query solves a task."""
    return await _sandbox(request).check_query_matches_task(
        body.task_description,
        body.sql_query,
    )


@router.post("/generate-task", response_model=GeneratedTask)
async def generate_task(
    body: GenerateTaskRequest,
    request: Request,
    x_user_id: int = Header(),
) -> GeneratedTask:
    """Draft an exercise task for a database with the feedback oracle."""
    task = await _sandbox(request).generate_task(
        body.topic,
        body.difficulty,
        body.database,
        x_user_id,
    )
    return GeneratedTask(task=task)
