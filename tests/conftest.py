"""Pytest configuration and fixtures for Review Automations tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Any
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from packages.core.src.config import clear_config_cache
from packages.core.src.errors import SendGridError
from packages.core.src.types import (
    AutomationRule,
    Event,
    EventKind,
    ReviewSnapshot,
    utcnow,
)
from packages.database.src.models import Automation, Base, Review, TenantMember
from packages.database.src.repositories import (
    AutomationRepository,
    DeliveryLedger,
    ReviewRepository,
)


@pytest.fixture(autouse=True)
def fresh_config(monkeypatch):
    """Isolate tests from the developer's environment and cached settings."""
    monkeypatch.delenv("RA_POSTGRES_URL", raising=False)
    monkeypatch.delenv("SENDGRID_API_KEY", raising=False)
    clear_config_cache()
    yield
    clear_config_cache()


@pytest_asyncio.fixture(scope="function")
async def async_engine(tmp_path):
    """File-backed SQLite engine; repositories open many concurrent sessions."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'automations.db'}",
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def automation_repo(session_factory) -> AutomationRepository:
    return AutomationRepository(session_factory)


@pytest.fixture
def review_repo(session_factory) -> ReviewRepository:
    return ReviewRepository(session_factory)


@pytest.fixture
def ledger(session_factory) -> DeliveryLedger:
    return DeliveryLedger(session_factory)


@pytest.fixture
def tenant_id() -> UUID:
    return uuid4()


@pytest.fixture
def make_review(session_factory, tenant_id):
    """Factory inserting a review row."""

    async def _make(**overrides: Any) -> Review:
        fields: dict[str, Any] = {
            "id": uuid4(),
            "tenant_id": tenant_id,
            "platform": "google",
            "rating": 2,
            "sentiment": "negative",
            "body": "Cold food and the waiter ignored us.",
            "author_name": "Jordan",
            "needs_action": True,
            "tags": [],
            "created_at": utcnow(),
        }
        fields.update(overrides)
        review = Review(**fields)
        async with session_factory() as session:
            session.add(review)
            await session.commit()
            await session.refresh(review)
        return review

    return _make


@pytest_asyncio.fixture
async def test_review(make_review) -> Review:
    return await make_review()


@pytest_asyncio.fixture
async def tenant_member(session_factory, tenant_id) -> TenantMember:
    member = TenantMember(id=uuid4(), tenant_id=tenant_id, user_id=uuid4(), role="member")
    async with session_factory() as session:
        session.add(member)
        await session.commit()
        await session.refresh(member)
    return member


@pytest.fixture
def make_automation(automation_repo, tenant_id):
    """Factory persisting an automation through the repository."""

    async def _make(
        trigger_type: str = "rating_below",
        action_type: str = "tag_review",
        trigger_conditions: dict[str, Any] | None = None,
        action_config: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> Automation:
        if trigger_conditions is None and trigger_type in ("rating_below", "rating_above"):
            trigger_conditions = {"threshold": 3}
        if action_config is None:
            action_config = DEFAULT_ACTION_CONFIGS[action_type]
        return await automation_repo.create(
            kwargs.pop("tenant_id", tenant_id),
            name=kwargs.pop("name", f"{trigger_type} -> {action_type}"),
            trigger_type=trigger_type,
            action_type=action_type,
            trigger_conditions=trigger_conditions,
            action_config=action_config,
            **kwargs,
        )

    return _make


DEFAULT_ACTION_CONFIGS: dict[str, dict[str, Any]] = {
    "email_alert": {"recipients": ["owner@example.com"]},
    "slack_notification": {"webhook_url": "https://hooks.slack.com/services/T000/B000/XXX"},
    "teams_notification": {"webhook_url": "https://example.webhook.office.com/webhookb2/abc"},
    "webhook": {"url": "https://hooks.example.com/reviews"},
    "tag_review": {"tag": "urgent"},
    "assign_review": {"assignee_id": "00000000-0000-0000-0000-000000000001"},
}


def make_rule(
    trigger_type: str = "rating_below",
    action_type: str = "tag_review",
    trigger_conditions: dict[str, Any] | None = None,
    action_config: dict[str, Any] | None = None,
    **kwargs: Any,
) -> AutomationRule:
    """In-memory automation rule for tests that do not touch the database."""
    if trigger_conditions is None and trigger_type in ("rating_below", "rating_above"):
        trigger_conditions = {"threshold": 3}
    return AutomationRule.build(
        id=kwargs.pop("id", uuid4()),
        tenant_id=kwargs.pop("tenant_id", uuid4()),
        name=kwargs.pop("name", f"{trigger_type} -> {action_type}"),
        trigger_type=trigger_type,
        trigger_conditions=trigger_conditions,
        action_type=action_type,
        action_config=action_config if action_config is not None else DEFAULT_ACTION_CONFIGS[action_type],
        **kwargs,
    )


def make_event(
    tenant_id: UUID | None = None,
    review_id: UUID | None = None,
    kind: EventKind = EventKind.CREATED,
    version: str = "created",
    **snapshot: Any,
) -> Event:
    """Event with a review snapshot built from keyword arguments."""
    fields: dict[str, Any] = {"rating": 2, "platform": "google", "body": "Slow service"}
    fields.update(snapshot)
    return Event(
        tenant_id=tenant_id or uuid4(),
        review_id=review_id or uuid4(),
        kind=kind,
        version=version,
        snapshot=ReviewSnapshot(**fields),
    )


def event_for(review: Review, kind: EventKind = EventKind.CREATED, version: str = "created") -> Event:
    """Event describing a stored review."""
    return make_event(
        tenant_id=review.tenant_id,
        review_id=review.id,
        kind=kind,
        version=version,
        rating=review.rating,
        sentiment=review.sentiment,
        body=review.body,
        platform=review.platform,
        needs_action=review.needs_action,
        created_at=review.created_at,
    )


class RecordingMailSender:
    """MailSender that records messages and rejects chosen recipients."""

    def __init__(self, reject: set[str] | None = None):
        self.sent: list[dict[str, Any]] = []
        self._reject = reject or set()

    async def send_email(self, to: str, subject: str, text: str, html: str | None = None) -> str:
        if to in self._reject:
            raise SendGridError(f"recipient {to} rejected", status_code=400)
        self.sent.append({"to": to, "subject": subject, "text": text, "html": html})
        return f"msg-{len(self.sent)}"


@pytest.fixture
def rule_factory():
    return make_rule


@pytest.fixture
def event_factory():
    return make_event


@pytest.fixture
def review_event():
    return event_for


@pytest.fixture
def mail_sender() -> RecordingMailSender:
    return RecordingMailSender()


@pytest.fixture
def rejecting_mail_sender():
    def _make(*rejected: str) -> RecordingMailSender:
        return RecordingMailSender(reject=set(rejected))

    return _make
