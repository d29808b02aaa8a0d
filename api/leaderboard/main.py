from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse

from leaderboard import __version__
from leaderboard.routers import health, repositories
from leaderboard.services.pipeline import build_pipeline

load_dotenv(Path(__file__).resolve().parents[1] / ".env")

app = FastAPI(title="Contributor Leaderboard API", version=__version__)

root_logger = logging.getLogger("leaderboard")
if not root_logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    root_logger.addHandler(handler)
root_logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())

allowed_origins_str = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000")
allowed_origins = [origin.strip() for origin in allowed_origins_str.split(",") if origin.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Engines connect lazily; the schema is created on startup.
app.state.pipeline = build_pipeline()


@app.on_event("startup")
async def _create_schema() -> None:
    app.state.pipeline.create_schema()


@app.get("/", include_in_schema=False)
async def root():
    """Redirect to API documentation."""
    return RedirectResponse(url="/docs")


app.include_router(repositories.router, prefix="/api", tags=["repositories"])
app.include_router(health.router, prefix="/api", tags=["health"])
