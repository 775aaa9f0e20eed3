"""NoteSync FastAPI Backend — main application entry point."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from notesync import __version__, config
from notesync.db import connection, migrations
from notesync.observability import initialize as initialize_observability, shutdown as shutdown_observability
from notesync.routers.sync import notes_router, sync_router
from notesync.services.sync_job import SyncJobDirectory

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("notesync")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("NoteSync backend starting up")
    initialize_observability(app)

    # 1. Initialize DB connection
    db = await connection.get_connection()

    # 2. Run migrations
    await migrations.run_migrations(db)

    # 3. Actor directory for per-repository sync jobs
    directory = SyncJobDirectory.for_db(db)
    app.state.sync_directory = directory

    # 4. Pick up jobs interrupted by the previous shutdown
    if config.RESUME_JOBS_ON_STARTUP:
        await directory.resume_unfinished()

    yield

    logger.info("NoteSync backend shutting down")

    # Running pipelines are cancelled; their persisted state resumes on next startup.
    await directory.shutdown()
    shutdown_observability(app)
    await connection.close_connection()


app = FastAPI(
    title="NoteSync API",
    description="Repository sync jobs for searchable repository notes",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        config.FRONTEND_ORIGIN,
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sync_router)
app.include_router(notes_router)


@app.get("/api/health")
def health():
    """Health check endpoint."""
    directory = getattr(app.state, "sync_directory", None)
    return {
        "status": "ok",
        "db": "connected" if connection.is_connected() else "disconnected",
        "runningSyncJobs": directory.running_count if directory else 0,
    }
