"""Integration tests for the automation and event API endpoints."""

from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from packages.core.src.config import AutomationConfig
from services.gateway.src.main import create_app


@pytest_asyncio.fixture
async def app(session_factory, mail_sender):
    app = create_app(
        AutomationConfig(scanner_enabled=False, retry_sweep_enabled=False),
        session_factory=session_factory,
        mail_sender=mail_sender,
    )
    async with app.router.lifespan_context(app):
        yield app


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


def tag_rule(threshold: int = 3) -> dict:
    return {
        "name": "Tag low ratings",
        "triggerType": "rating_below",
        "triggerConditions": {"threshold": threshold},
        "actionType": "tag_review",
        "actionConfig": {"tag": "urgent"},
    }


def event_body(review, kind: str = "created") -> dict:
    return {
        "reviewId": str(review.id),
        "kind": kind,
        "snapshot": {
            "rating": review.rating,
            "sentiment": review.sentiment,
            "text": review.body,
            "platform": review.platform,
            "needsAction": review.needs_action,
        },
    }


class TestAutomationEndpoints:
    """Tests for /api/v1/tenants/{tenant_id}/automations."""

    @pytest.mark.asyncio
    async def test_create_automation(self, client, tenant_id):
        """Should create an automation from camelCase fields."""
        response = await client.post(f"/api/v1/tenants/{tenant_id}/automations", json=tag_rule())

        assert response.status_code == 201
        data = response.json()
        assert data["tenant_id"] == str(tenant_id)
        assert data["trigger_type"] == "rating_below"
        assert data["trigger_conditions"] == {"threshold": 3}
        assert data["is_active"] is True
        assert data["trigger_count"] == 0

    @pytest.mark.asyncio
    async def test_create_rejects_mismatched_conditions(self, client, tenant_id):
        """Should reject conditions that do not fit the trigger type."""
        body = tag_rule()
        body["triggerConditions"] = {"threshold": "high"}

        response = await client.post(f"/api/v1/tenants/{tenant_id}/automations", json=body)

        assert response.status_code == 422
        assert response.json()["error"] == "INVALID_AUTOMATION"

    @pytest.mark.asyncio
    async def test_create_rejects_unknown_action(self, client, tenant_id):
        """Should reject an unknown action type at the schema layer."""
        body = tag_rule()
        body["actionType"] = "send_fax"

        response = await client.post(f"/api/v1/tenants/{tenant_id}/automations", json=body)

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_list_automations(self, client, tenant_id):
        """Should list a tenant's automations with active count."""
        await client.post(f"/api/v1/tenants/{tenant_id}/automations", json=tag_rule())
        inactive = tag_rule()
        inactive["isActive"] = False
        await client.post(f"/api/v1/tenants/{tenant_id}/automations", json=inactive)

        response = await client.get(f"/api/v1/tenants/{tenant_id}/automations")
        data = response.json()
        assert (data["total"], data["active"]) == (2, 1)

        response = await client.get(
            f"/api/v1/tenants/{tenant_id}/automations", params={"active_only": "true"}
        )
        assert response.json()["total"] == 1

    @pytest.mark.asyncio
    async def test_other_tenant_cannot_read(self, client, tenant_id):
        """Should hide automations from other tenants."""
        created = await client.post(f"/api/v1/tenants/{tenant_id}/automations", json=tag_rule())
        automation_id = created.json()["id"]

        response = await client.get(f"/api/v1/tenants/{uuid4()}/automations/{automation_id}")

        assert response.status_code == 404
        assert response.json()["error"] == "RESOURCE_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_partial_update(self, client, tenant_id):
        """Should change only the supplied fields."""
        created = await client.post(f"/api/v1/tenants/{tenant_id}/automations", json=tag_rule())
        automation_id = created.json()["id"]

        response = await client.put(
            f"/api/v1/tenants/{tenant_id}/automations/{automation_id}",
            json={"isActive": False},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["is_active"] is False
        assert data["name"] == "Tag low ratings"
        assert data["action_config"] == {"tag": "urgent"}

    @pytest.mark.asyncio
    async def test_update_validates_merged_rule(self, client, tenant_id):
        """Should reject an action change that leaves the old config invalid."""
        created = await client.post(f"/api/v1/tenants/{tenant_id}/automations", json=tag_rule())
        automation_id = created.json()["id"]

        response = await client.put(
            f"/api/v1/tenants/{tenant_id}/automations/{automation_id}",
            json={"actionType": "webhook"},
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_delete_automation(self, client, tenant_id):
        """Should delete and then report not found."""
        created = await client.post(f"/api/v1/tenants/{tenant_id}/automations", json=tag_rule())
        automation_id = created.json()["id"]
        url = f"/api/v1/tenants/{tenant_id}/automations/{automation_id}"

        assert (await client.delete(url)).status_code == 204
        assert (await client.get(url)).status_code == 404
        assert (await client.delete(url)).status_code == 404


class TestEventEndpoint:
    """Tests for POST /api/v1/tenants/{tenant_id}/events."""

    @pytest.mark.asyncio
    async def test_event_runs_matching_automation(self, client, app, tenant_id, test_review):
        """Should accept the event and record one successful delivery."""
        created = await client.post(f"/api/v1/tenants/{tenant_id}/automations", json=tag_rule())
        automation_id = created.json()["id"]

        response = await client.post(f"/api/v1/tenants/{tenant_id}/events", json=event_body(test_review))
        assert response.status_code == 202
        data = response.json()
        assert data["status"] == "accepted"
        assert data["version"] == "created"

        await app.state.engine.join()

        deliveries = await client.get(
            f"/api/v1/tenants/{tenant_id}/automations/{automation_id}/deliveries"
        )
        body = deliveries.json()
        assert body["total"] == 1
        assert body["deliveries"][0]["outcome"] == "success"
        assert body["counts"]["success"] == 1

        automation = await client.get(f"/api/v1/tenants/{tenant_id}/automations/{automation_id}")
        assert automation.json()["trigger_count"] == 1

    @pytest.mark.asyncio
    async def test_redelivered_event_runs_once(self, client, app, tenant_id, test_review):
        """Should not repeat an action for the same occurrence."""
        created = await client.post(f"/api/v1/tenants/{tenant_id}/automations", json=tag_rule())
        automation_id = created.json()["id"]

        for _ in range(3):
            await client.post(f"/api/v1/tenants/{tenant_id}/events", json=event_body(test_review))
        await app.state.engine.join()

        deliveries = await client.get(
            f"/api/v1/tenants/{tenant_id}/automations/{automation_id}/deliveries"
        )
        assert deliveries.json()["total"] == 1

    @pytest.mark.asyncio
    async def test_rule_edit_applies_to_next_event(self, client, app, tenant_id, make_review):
        """Should pick up an edited threshold without waiting for the cache to expire."""
        created = await client.post(
            f"/api/v1/tenants/{tenant_id}/automations", json=tag_rule(threshold=2)
        )
        automation_id = created.json()["id"]
        url = f"/api/v1/tenants/{tenant_id}/automations/{automation_id}"

        first = await make_review(rating=2)
        await client.post(f"/api/v1/tenants/{tenant_id}/events", json=event_body(first))
        await app.state.engine.join()
        assert (await client.get(f"{url}/deliveries")).json()["total"] == 0

        await client.put(url, json={"triggerConditions": {"threshold": 3}})

        second = await make_review(rating=2)
        await client.post(f"/api/v1/tenants/{tenant_id}/events", json=event_body(second))
        await app.state.engine.join()
        assert (await client.get(f"{url}/deliveries")).json()["total"] == 1

    @pytest.mark.asyncio
    async def test_unknown_kind_rejected(self, client, tenant_id, test_review):
        """Should reject event kinds review sync does not emit."""
        response = await client.post(
            f"/api/v1/tenants/{tenant_id}/events", json=event_body(test_review, kind="deleted")
        )

        assert response.status_code == 422
        assert response.json()["error"] == "INVALID_EVENT"

    @pytest.mark.asyncio
    async def test_deliveries_for_unknown_automation(self, client, tenant_id):
        response = await client.get(f"/api/v1/tenants/{tenant_id}/automations/{uuid4()}/deliveries")
        assert response.status_code == 404


class TestHealthEndpoints:
    """Tests for the health endpoints."""

    @pytest.mark.asyncio
    async def test_ready_while_engine_runs(self, client):
        response = await client.get("/health/ready")
        assert response.json()["status"] == "ready"

    @pytest.mark.asyncio
    async def test_detailed(self, client):
        data = (await client.get("/health/detailed")).json()
        assert data["engine"]["state"] == "running"
        assert data["dependencies"]["scanner_enabled"] is False
