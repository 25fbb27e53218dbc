"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from rulegate.api import router as rules_router
from rulegate.core.config import configure_logging, get_settings
from rulegate.core.errors import CompilationError
from rulegate.pipeline import RulePipeline

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    settings = get_settings()
    configure_logging(settings)
    logger.info("Starting %s...", settings.app_name)

    base_dir = Path(app.state.base_dir)
    try:
        result = RulePipeline(settings).build_from_settings(base_dir, publish=True)
        logger.info("Rule set ready: %d rules", len(result.rule_set or []))
    except CompilationError as e:
        # Serve the last good rule set (none on a cold start) rather than crash
        logger.error("Rule build failed: %s", e)

    yield

    logger.info("Shutting down...")


def create_app(base_dir: str | Path = ".") -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        base_dir: Directory holding schema files, features and metadata.yaml
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Schema-bound business rules compiled from SQL and a rule DSL",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.base_dir = str(base_dir)
    app.include_router(rules_router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
