"""Unit tests for the action executors."""

from __future__ import annotations

import json
from uuid import uuid4

import httpx
import pytest

from packages.automation.src.actions import (
    SIGNATURE_HEADER,
    AssignReviewExecutor,
    EmailAlertExecutor,
    SlackNotificationExecutor,
    TagReviewExecutor,
    TeamsNotificationExecutor,
    WebhookExecutor,
    build_action_registry,
    render_email,
    verify_signature,
)
from packages.core.src.types import ActionType, DeliveryOutcome, EventKind, TagReviewConfig


class CapturingTransport:
    """httpx MockTransport handler that records requests."""

    def __init__(self, status_code: int = 200):
        self.status_code = status_code
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json={"ok": True})


def client_for(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestWebhookExecutor:
    """Tests for the signed webhook executor."""

    @pytest.mark.asyncio
    async def test_signed_delivery(self, rule_factory, event_factory):
        """Receiver can verify the X-Signature header against the raw body."""
        transport = CapturingTransport()
        secret = "s3cr3t"
        rule = rule_factory(
            "rating_below",
            "webhook",
            action_config={"url": "https://hooks.example.com/in", "secret": secret},
        )
        event = event_factory(tenant_id=rule.tenant_id)

        async with client_for(transport) as client:
            result = await WebhookExecutor(client).execute(rule.action_config, event, rule)

        assert result.outcome is DeliveryOutcome.SUCCESS
        request = transport.requests[0]
        assert str(request.url) == "https://hooks.example.com/in"
        assert verify_signature(secret, request.content, request.headers[SIGNATURE_HEADER])
        assert request.headers["X-Automation-Id"] == str(rule.id)
        assert request.headers["X-Event-Id"] == str(event.event_id)

        payload = json.loads(request.content)
        assert payload["automation"] == {"id": str(rule.id), "name": rule.name}
        assert payload["event"]["review_id"] == str(event.review_id)

    @pytest.mark.asyncio
    async def test_unsigned_when_no_secret(self, rule_factory, event_factory):
        transport = CapturingTransport()
        rule = rule_factory("rating_below", "webhook")

        async with client_for(transport) as client:
            await WebhookExecutor(client).execute(rule.action_config, event_factory(), rule)

        assert SIGNATURE_HEADER not in transport.requests[0].headers

    def test_tampered_body_fails_verification(self):
        from packages.automation.src.actions import sign_payload

        signature = sign_payload("k", b'{"a":1}')
        assert verify_signature("k", b'{"a":1}', signature)
        assert not verify_signature("k", b'{"a":2}', signature)

    @pytest.mark.asyncio
    async def test_server_error_is_transient_failure(self, rule_factory, event_factory):
        rule = rule_factory("rating_below", "webhook")

        async with client_for(CapturingTransport(status_code=503)) as client:
            result = await WebhookExecutor(client).execute(rule.action_config, event_factory(), rule)

        assert result.outcome is DeliveryOutcome.FAILED
        assert result.transient is True
        assert "503" in result.detail

    @pytest.mark.asyncio
    async def test_client_error_is_permanent_failure(self, rule_factory, event_factory):
        rule = rule_factory("rating_below", "webhook")

        async with client_for(CapturingTransport(status_code=404)) as client:
            result = await WebhookExecutor(client).execute(rule.action_config, event_factory(), rule)

        assert result.outcome is DeliveryOutcome.FAILED
        assert result.transient is False

    @pytest.mark.asyncio
    async def test_connection_error_is_failure(self, rule_factory, event_factory):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        rule = rule_factory("rating_below", "webhook")

        async with client_for(refuse) as client:
            result = await WebhookExecutor(client).execute(rule.action_config, event_factory(), rule)

        assert result.outcome is DeliveryOutcome.FAILED
        assert result.transient is True


class TestChatExecutors:
    """Tests for the Slack and Teams executors."""

    @pytest.mark.asyncio
    async def test_slack_payload(self, rule_factory, event_factory):
        transport = CapturingTransport()
        rule = rule_factory("rating_below", "slack_notification")
        event = event_factory(rating=1, platform="yelp", body="Never again")

        async with client_for(transport) as client:
            result = await SlackNotificationExecutor(client).execute(rule.action_config, event, rule)

        assert result.succeeded
        payload = json.loads(transport.requests[0].content)
        assert payload["text"] == "New 1★ review on Yelp"
        assert payload["blocks"][0]["type"] == "header"
        assert payload["event"]["snapshot"]["body"] == "Never again"

    @pytest.mark.asyncio
    async def test_teams_message_card(self, rule_factory, event_factory):
        transport = CapturingTransport()
        rule = rule_factory("rating_below", "teams_notification")

        async with client_for(transport) as client:
            await TeamsNotificationExecutor(client).execute(
                rule.action_config, event_factory(rating=2), rule
            )

        payload = json.loads(transport.requests[0].content)
        assert payload["@type"] == "MessageCard"
        assert payload["themeColor"] == "D32F2F"
        assert payload["automation"]["id"] == str(rule.id)


class TestEmailAlertExecutor:
    """Tests for the email alert executor."""

    @pytest.mark.asyncio
    async def test_sends_to_every_recipient(self, rule_factory, event_factory, mail_sender):
        rule = rule_factory(
            "rating_below",
            "email_alert",
            action_config={"recipients": ["a@example.com", "b@example.com"]},
        )
        executor = EmailAlertExecutor(mail_sender, app_url="https://app.example.com")

        result = await executor.execute(rule.action_config, event_factory(rating=1), rule)

        assert result.succeeded
        assert [m["to"] for m in mail_sender.sent] == ["a@example.com", "b@example.com"]
        assert mail_sender.sent[0]["subject"] == "⚠️ 1★ Review Needs Attention"
        assert "https://app.example.com/reviews" in mail_sender.sent[0]["text"]

    @pytest.mark.asyncio
    async def test_partial_rejection_still_succeeds(
        self, rule_factory, event_factory, rejecting_mail_sender
    ):
        sender = rejecting_mail_sender("bad@example.com")
        rule = rule_factory(
            "rating_below",
            "email_alert",
            action_config={"recipients": ["bad@example.com", "good@example.com"]},
        )

        result = await EmailAlertExecutor(sender).execute(rule.action_config, event_factory(), rule)

        assert result.outcome is DeliveryOutcome.SUCCESS
        assert result.detail == "1 of 2 recipients rejected"
        assert result.metadata == {"delivered": 1, "rejected": 1}

    @pytest.mark.asyncio
    async def test_all_rejected_fails(self, rule_factory, event_factory, rejecting_mail_sender):
        sender = rejecting_mail_sender("owner@example.com")
        rule = rule_factory("rating_below", "email_alert")

        result = await EmailAlertExecutor(sender).execute(rule.action_config, event_factory(), rule)

        assert result.outcome is DeliveryOutcome.FAILED
        assert "all recipients rejected" in result.detail

    @pytest.mark.asyncio
    async def test_no_mail_sender_fails(self, rule_factory, event_factory):
        rule = rule_factory("rating_below", "email_alert")

        result = await EmailAlertExecutor(None).execute(rule.action_config, event_factory(), rule)

        assert result.outcome is DeliveryOutcome.FAILED

    def test_reminder_subject_for_no_reply(self, rule_factory, event_factory):
        rule = rule_factory("no_reply_24h", "email_alert")
        event = event_factory(
            kind=EventKind.NO_REPLY_ELAPSED, version="2026-10-18T09:00:00", rating=4
        )

        subject, text, html = render_email(event, rule, "https://app.example.com/")

        assert subject == "Reminder: 4★ review on Google is awaiting a reply"
        assert "still has no reply" in text
        assert 'href="https://app.example.com/reviews"' in html

    def test_body_is_html_escaped(self, rule_factory, event_factory):
        rule = rule_factory("rating_below", "email_alert")
        _, _, html = render_email(event_factory(body="<script>x</script>"), rule, "http://x")
        assert "<script>" not in html


class TestReviewExecutors:
    """Tests for the tag and assign executors."""

    @pytest.mark.asyncio
    async def test_tag_appended_once(self, review_repo, test_review, rule_factory, review_event):
        rule = rule_factory(tenant_id=test_review.tenant_id)
        executor = TagReviewExecutor(review_repo)
        event = review_event(test_review)

        first = await executor.execute(rule.action_config, event, rule)
        second = await executor.execute(rule.action_config, event, rule)

        assert first.succeeded and first.detail is None
        assert second.succeeded and "already present" in second.detail

    @pytest.mark.asyncio
    async def test_tag_missing_review_is_skipped(self, review_repo, rule_factory, event_factory):
        rule = rule_factory()

        result = await TagReviewExecutor(review_repo).execute(
            rule.action_config, event_factory(), rule
        )

        assert result.outcome is DeliveryOutcome.SKIPPED

    @pytest.mark.asyncio
    async def test_assign_to_member(
        self, review_repo, session_factory, test_review, tenant_member, rule_factory, review_event
    ):
        from packages.database.src.models import Review

        rule = rule_factory(
            "rating_below",
            "assign_review",
            tenant_id=test_review.tenant_id,
            action_config={"assignee_id": str(tenant_member.user_id)},
        )

        result = await AssignReviewExecutor(review_repo).execute(
            rule.action_config, review_event(test_review), rule
        )

        assert result.succeeded
        async with session_factory() as session:
            review = await session.get(Review, test_review.id)
            assert review.assigned_to == tenant_member.user_id

    @pytest.mark.asyncio
    async def test_assign_to_non_member_fails(
        self, review_repo, test_review, rule_factory, review_event
    ):
        rule = rule_factory(
            "rating_below",
            "assign_review",
            tenant_id=test_review.tenant_id,
            action_config={"assignee_id": str(uuid4())},
        )

        result = await AssignReviewExecutor(review_repo).execute(
            rule.action_config, review_event(test_review), rule
        )

        assert result.outcome is DeliveryOutcome.FAILED
        assert "not a member" in result.detail

    @pytest.mark.asyncio
    async def test_tag_other_tenants_review_is_skipped(
        self, review_repo, session_factory, make_review, tenant_id, rule_factory, event_factory
    ):
        """Should not tag a review owned by a different tenant than the event's."""
        from packages.database.src.models import Review

        foreign = await make_review(tenant_id=uuid4())
        rule = rule_factory(tenant_id=tenant_id)
        event = event_factory(tenant_id=tenant_id, review_id=foreign.id)

        result = await TagReviewExecutor(review_repo).execute(rule.action_config, event, rule)

        assert result.outcome is DeliveryOutcome.SKIPPED
        async with session_factory() as session:
            review = await session.get(Review, foreign.id)
            assert review.tags == []

    @pytest.mark.asyncio
    async def test_assign_other_tenants_review_is_skipped(
        self, review_repo, session_factory, make_review, tenant_member, rule_factory, event_factory
    ):
        """Should not assign a review owned by a different tenant than the event's."""
        from packages.database.src.models import Review

        foreign = await make_review(tenant_id=uuid4())
        rule = rule_factory(
            "rating_below",
            "assign_review",
            tenant_id=tenant_member.tenant_id,
            action_config={"assignee_id": str(tenant_member.user_id)},
        )
        event = event_factory(tenant_id=tenant_member.tenant_id, review_id=foreign.id)

        result = await AssignReviewExecutor(review_repo).execute(rule.action_config, event, rule)

        assert result.outcome is DeliveryOutcome.SKIPPED
        async with session_factory() as session:
            review = await session.get(Review, foreign.id)
            assert review.assigned_to is None

    @pytest.mark.asyncio
    async def test_wrong_config_type_fails(self, review_repo, rule_factory, event_factory):
        rule = rule_factory("rating_below", "webhook")

        result = await TagReviewExecutor(review_repo).execute(rule.action_config, event_factory(), rule)

        assert result.outcome is DeliveryOutcome.FAILED
        assert TagReviewConfig.__name__ in result.detail


class TestActionRegistry:
    """Tests for ActionRegistry."""

    @pytest.mark.asyncio
    async def test_registry_covers_every_action_type(self, review_repo, mail_sender):
        async with httpx.AsyncClient() as client:
            registry = build_action_registry(
                http_client=client, reviews=review_repo, mail_sender=mail_sender
            )

        assert registry.missing() == []
        assert len(registry) == len(ActionType)
        assert ActionType.WEBHOOK in registry
