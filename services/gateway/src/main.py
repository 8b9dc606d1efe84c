"""Review Automations Gateway - FastAPI Application.

Main entry point for the review automation service.
Provides endpoints for:
- Automation rule management
- Delivery history
- Review-sync event intake
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from pathlib import Path

# Load .env file BEFORE any other imports that might need env vars
from dotenv import load_dotenv

# Find and load .env from project root
_project_root = Path(__file__).parent.parent.parent.parent
_env_file = _project_root / ".env"
if _env_file.exists():
    load_dotenv(_env_file)
else:
    # Try current working directory
    load_dotenv()

# These imports must come AFTER load_dotenv() to ensure env vars are available
from typing import Any  # noqa: E402

import httpx  # noqa: E402
import structlog  # noqa: E402
from fastapi import FastAPI  # noqa: E402
from fastapi.middleware.cors import CORSMiddleware  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402

from packages.automation.src.engine import AutomationEngine  # noqa: E402
from packages.automation.src.ingestion import EventIngestionAdapter  # noqa: E402
from packages.core.src.config import AutomationConfig, get_config  # noqa: E402
from packages.core.src.protocols import MailSender  # noqa: E402
from packages.database.src.session import close_db, get_session_factory, init_db  # noqa: E402
from packages.integrations.sendgrid.src import SendGridClient  # noqa: E402

from .errors import register_error_handlers  # noqa: E402
from .routers import automations, events, health  # noqa: E402

logger = structlog.get_logger()

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info("review_automations_starting", version=VERSION)
    config: AutomationConfig = app.state.config
    logger.info(
        "config_loaded",
        environment=config.environment.value,
        scanner_enabled=config.scanner_enabled,
        retry_sweep_enabled=config.retry_sweep_enabled,
    )

    # Validate production requirements
    production_errors = config.validate_production_requirements()
    if production_errors:
        for error in production_errors:
            logger.error("production_config_error", error=error)
        if config.is_production:
            raise RuntimeError(f"Production configuration errors: {'; '.join(production_errors)}")

    # Initialize database tables unless a session factory was injected
    owns_db = app.state.session_factory is None
    if owns_db:
        try:
            await init_db()
            app.state.session_factory = get_session_factory()
            logger.info("database_initialized")
        except Exception as e:
            logger.error("database_initialization_failed", error=str(e))
            raise

    # Outbound email
    owned_mail_client: SendGridClient | None = None
    mail_sender = app.state.mail_sender
    if mail_sender is None and config.sendgrid_api_key:
        owned_mail_client = SendGridClient.from_config(config)
        mail_sender = owned_mail_client
    if mail_sender is None:
        logger.warning("email_alerts_disabled", reason="SENDGRID_API_KEY not set")

    engine = AutomationEngine.from_config(
        config,
        app.state.session_factory,
        http_client=app.state.http_client,
        mail_sender=mail_sender,
    )
    ingestion = EventIngestionAdapter(
        engine,
        max_attempts=config.ingest_max_attempts,
        backoff_seconds=config.ingest_backoff_seconds,
    )
    app.state.engine = engine
    app.state.ingestion = ingestion
    await engine.start()

    yield

    # Shutdown
    logger.info("review_automations_stopping")
    await ingestion.close()
    await engine.stop()
    app.state.engine = None
    app.state.ingestion = None

    if owned_mail_client is not None:
        await owned_mail_client.close()
    if owns_db:
        await close_db()
        app.state.session_factory = None
        logger.info("database_connections_closed")


def create_app(
    config: AutomationConfig | None = None,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    mail_sender: MailSender | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> FastAPI:
    """Build the gateway application.

    Args:
        config: Settings to use instead of the environment
        session_factory: Database sessions to use instead of the configured database
        mail_sender: Email transport to use instead of SendGrid
        http_client: Client for outbound webhooks and chat notifications
    """
    config = config or get_config()

    app = FastAPI(
        title="Review Automations API",
        description=(
            "Automation rules for review management. Runs notification, webhook "
            "and review-update actions when synced reviews match a rule."
        ),
        version=VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.config = config
    app.state.session_factory = session_factory
    app.state.mail_sender = mail_sender
    app.state.http_client = http_client
    app.state.engine = None
    app.state.ingestion = None

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register all error handlers for consistent error responses
    register_error_handlers(app)

    # Include routers
    app.include_router(health.router, tags=["Health"])
    app.include_router(automations.router, prefix="/api/v1/tenants", tags=["Automations"])
    app.include_router(events.router, prefix="/api/v1/tenants", tags=["Events"])

    @app.get("/")
    async def root() -> dict[str, Any]:
        """Root endpoint with API information."""
        return {
            "name": "Review Automations API",
            "version": VERSION,
            "description": "Rule engine for review alerts, webhooks and triage",
            "docs": "/docs",
            "health": "/health",
        }

    return app


app = create_app()


def run() -> None:
    """Run the gateway service."""
    import uvicorn

    host = os.getenv("GATEWAY_HOST", "0.0.0.0")
    port = int(os.getenv("GATEWAY_PORT", "8000"))

    uvicorn.run(
        "services.gateway.src.main:app",
        host=host,
        port=port,
        reload=get_config().is_development,
    )


if __name__ == "__main__":
    run()
