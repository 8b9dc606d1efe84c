"""FastAPI dependencies backed by application state set in the lifespan."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from packages.automation.src.engine import AutomationEngine
from packages.automation.src.ingestion import EventIngestionAdapter
from packages.database.src.repositories import AutomationRepository, DeliveryLedger


def get_engine(request: Request) -> AutomationEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Engine not started")
    return engine


def get_ingestion(request: Request) -> EventIngestionAdapter:
    ingestion = getattr(request.app.state, "ingestion", None)
    if ingestion is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Engine not started")
    return ingestion


def get_automation_repository(request: Request) -> AutomationRepository:
    return AutomationRepository(request.app.state.session_factory)


def get_delivery_ledger(request: Request) -> DeliveryLedger:
    return DeliveryLedger(request.app.state.session_factory)
