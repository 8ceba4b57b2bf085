"""FastAPI application entry point.

Creates the app with a lifespan that initialises Redis, the repository,
the PostgreSQL driver, the sandbox facade, the feedback oracle client,
and the background copy sweeper.  Everything is stored in ``app.state``
and torn down cleanly on shutdown.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncIterator

import redis.asyncio as aioredis
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sql_sandbox.api.errors import install_error_handlers
from sql_sandbox.api.router import api_router
from sql_sandbox.config import Settings
from sql_sandbox.driver import PostgresDriver
from sql_sandbox.oracle import FeedbackClient
from sql_sandbox.repository import RedisRepository
from sql_sandbox.service import SqlSandbox
from sql_sandbox.worker import run_sweeper

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan -- set up and tear down shared resources.

    On startup:
        1. Load :class:`Settings` from the environment.
        2. Connect to Redis and wrap it in a :class:`RedisRepository`.
        3. Create :class:`PostgresDriver`, :class:`SqlSandbox` and
           :class:`FeedbackClient`.
        4. Start the background copy sweeper.
        5. Store all objects in ``app.state``.

    On shutdown:
        1. Cancel the sweeper.
        2. Close the oracle client.
        3. Close the Redis connection.
    """
    settings = Settings()

    # Configure root logging level.
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    logger.info("Starting sql-sandbox (log_level=%s)", settings.log_level)

    # ---- Repository ------------------------------------------------------
    redis_client = aioredis.from_url(settings.redis_url, decode_responses=False)
    repository = RedisRepository(redis_client)

    # ---- Driver ----------------------------------------------------------
    driver = PostgresDriver(
        host=settings.pg_host,
        port=settings.pg_port,
        user=settings.pg_user,
        password=settings.pg_password,
        admin_database=settings.pg_admin_database,
    )

    # ---- Feedback oracle -------------------------------------------------
    oracle: FeedbackClient | None = None
    if settings.oracle_api_key:
        oracle = FeedbackClient(
            base_url=settings.oracle_api_url,
            api_key=settings.oracle_api_key,
            model=settings.oracle_model,
        )
    else:
        logger.warning("No oracle API key configured, query checks and task generation are off")

    # ---- Sandbox ---------------------------------------------------------
    sandbox = SqlSandbox(
        repository,
        driver,
        read_timeout=settings.read_timeout_seconds,
        manipulation_timeout=settings.manipulation_timeout_seconds,
        script_timeout=settings.script_timeout_seconds,
        copy_ttl=timedelta(hours=settings.copy_ttl_hours),
        max_rows=settings.max_result_rows,
        oracle=oracle,
    )

    # ---- Store in app.state ----------------------------------------------
    app.state.settings = settings
    app.state.repository = repository
    app.state.driver = driver
    app.state.sandbox = sandbox

    # ---- Background sweeper ----------------------------------------------
    sweeper_task = asyncio.create_task(
        run_sweeper(sandbox.copies, interval_seconds=settings.sweep_interval_seconds),
        name="copy-sweeper",
    )

    logger.info("Application startup complete")

    try:
        yield
    finally:
        # ---- Shutdown ----------------------------------------------------
        logger.info("Shutting down sql-sandbox")

        sweeper_task.cancel()
        try:
            await sweeper_task
        except asyncio.CancelledError:
            pass

        if oracle is not None:
            await oracle.close()
        await repository.close()

        logger.info("Shutdown complete")


# ---------------------------------------------------------------------------
# Application instance
# ---------------------------------------------------------------------------

app = FastAPI(
    title="sql-sandbox",
    description="Sandboxed SQL execution for database exercises.",
    version="0.1.0",
    lifespan=lifespan,
)

# ---- Middleware ----------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=Settings().cors_allowed_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Authorization", "Content-Type", "X-User-Id"],
)

# ---- Error handling ------------------------------------------------------

install_error_handlers(app)

# ---- Routes --------------------------------------------------------------

app.include_router(api_router)
