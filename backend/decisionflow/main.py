"""FastAPI application entry point."""

import logging
import os
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from decisionflow.db.database import close_database, init_database

# Configure logging
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup and shutdown."""
    db_path = os.getenv("DATABASE_PATH", "./data/flows.db")
    await init_database(db_path)
    logger.info(f"Database ready at {db_path}")

    yield

    await execution.close_connectors()
    await close_database()


app = FastAPI(
    title="Decision Flow Studio",
    description="Guided decision flows that branch on issue fields and answers",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware - allow any localhost port for local admin UIs
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"^http://localhost(:\d+)?$",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


# Import and include routers after app is created to avoid circular imports
from decisionflow.api import execution, flows  # noqa: E402

app.include_router(flows.router, prefix="/api/v1", tags=["flows"])
app.include_router(execution.router, prefix="/api/v1", tags=["execution"])
