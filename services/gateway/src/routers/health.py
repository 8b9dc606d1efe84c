"""Health check endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request

router = APIRouter()

SERVICE_NAME = "review-automations-gateway"
VERSION = "0.1.0"


@router.get("/health")
async def health_check() -> dict[str, Any]:
    """Basic health check."""
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": VERSION,
    }


@router.get("/health/detailed")
async def detailed_health_check(request: Request) -> dict[str, Any]:
    """Detailed health check including engine state."""
    config = request.app.state.config
    engine = getattr(request.app.state, "engine", None)
    ingestion = getattr(request.app.state, "ingestion", None)

    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": VERSION,
        "environment": config.environment.value,
        "engine": engine.status() if engine else None,
        "pending_redeliveries": ingestion.pending_redeliveries if ingestion else 0,
        "dependencies": {
            "email_configured": bool(config.sendgrid_api_key),
            "scanner_enabled": config.scanner_enabled,
            "retry_sweep_enabled": config.retry_sweep_enabled,
        },
    }


@router.get("/health/ready")
async def readiness_check(request: Request) -> dict[str, Any]:
    """Readiness check for Kubernetes."""
    engine = getattr(request.app.state, "engine", None)

    if engine is None or not engine.is_running:
        return {
            "status": "not_ready",
            "reason": "Automation engine not running",
        }

    return {
        "status": "ready",
        "queue_depth": engine.queue_depth,
    }
