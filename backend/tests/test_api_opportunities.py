"""Tests for the revenue opportunity API endpoints."""

from decimal import Decimal

import pytest
from httpx import AsyncClient

from app.schemas.base import OpportunityType, Priority
from app.services.opportunity_ledger import OpportunityInput, OpportunityLedger


def _item(entity_id: str, value: str, title: str) -> OpportunityInput:
    return OpportunityInput(
        category="renegotiate",
        title=title,
        description="Rates trail the regional market",
        estimated_value=Decimal(value),
        priority=Priority.MEDIUM,
        confidence=75,
        entity_type="payer",
        entity_id=entity_id,
    )


@pytest.fixture
def opportunity_ids(db_session) -> dict[str, str]:
    """Two contract opportunities and one coding opportunity for org-1."""
    ledger = OpportunityLedger(db_session, organization_id="org-1")
    contracts = ledger.record_opportunities(
        OpportunityType.CONTRACT,
        [_item("payer-a", "4000", "Renegotiate Acme"), _item("payer-b", "2500", "Renegotiate Beta")],
    )
    coding = ledger.record_opportunities(
        OpportunityType.CODING,
        [_item("provider-a", "1200", "Review E&M levels")],
    )
    return {
        "acme": contracts.ids[0],
        "beta": contracts.ids[1],
        "coding": coding.ids[0],
    }


class TestListOpportunities:
    """Test GET /revenue/opportunities."""

    @pytest.mark.asyncio
    async def test_sorted_by_value(self, client: AsyncClient, opportunity_ids) -> None:
        response = await client.get("/revenue/opportunities")
        data = response.json()

        assert data["total"] == 3
        assert [item["estimated_value"] for item in data["items"]] == ["4000.00", "2500.00", "1200.00"]
        assert all(item["status"] == "identified" for item in data["items"])

    @pytest.mark.asyncio
    async def test_filter_by_type(self, client: AsyncClient, opportunity_ids) -> None:
        response = await client.get("/revenue/opportunities", params={"type": "coding"})
        data = response.json()

        assert data["total"] == 1
        assert data["items"][0]["title"] == "Review E&M levels"

    @pytest.mark.asyncio
    async def test_filter_by_status(self, client: AsyncClient, opportunity_ids) -> None:
        await client.post(f"/revenue/opportunities/{opportunity_ids['beta']}/start")

        response = await client.get("/revenue/opportunities", params={"status": "in_progress"})

        assert [item["id"] for item in response.json()["items"]] == [opportunity_ids["beta"]]

    @pytest.mark.asyncio
    async def test_paging(self, client: AsyncClient, opportunity_ids) -> None:
        response = await client.get("/revenue/opportunities", params={"limit": 2, "offset": 2})
        data = response.json()

        assert len(data["items"]) == 1
        assert data["has_more"] is False

    @pytest.mark.asyncio
    async def test_rejects_unknown_type(self, client: AsyncClient) -> None:
        response = await client.get("/revenue/opportunities", params={"type": "marketing"})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_other_organization_sees_nothing(self, client: AsyncClient, opportunity_ids) -> None:
        response = await client.get("/revenue/opportunities", headers={"X-Organization-ID": "org-2"})
        assert response.json()["total"] == 0


class TestTransitionOpportunity:
    """Test POST /revenue/opportunities/{id}/{action}."""

    @pytest.mark.asyncio
    async def test_start_then_complete(self, client: AsyncClient, opportunity_ids) -> None:
        acme = opportunity_ids["acme"]

        started = await client.post(f"/revenue/opportunities/{acme}/start")
        assert started.json()["status"] == "in_progress"

        response = await client.post(
            f"/revenue/opportunities/{acme}/complete",
            json={"captured_value": "3200", "notes": "Signed new rate sheet"},
        )
        data = response.json()

        assert response.status_code == 200
        assert data["status"] == "captured"
        assert data["captured_value"] == "3200.00"
        assert data["notes"] == "Signed new rate sheet"
        assert data["completed_by"] == "user-1"
        assert data["completed_at"] is not None

    @pytest.mark.asyncio
    async def test_complete_without_starting(self, client: AsyncClient, opportunity_ids) -> None:
        response = await client.post(f"/revenue/opportunities/{opportunity_ids['coding']}/complete")

        assert response.status_code == 200
        assert response.json()["status"] == "captured"
        assert response.json()["captured_value"] is None

    @pytest.mark.asyncio
    async def test_decline(self, client: AsyncClient, opportunity_ids) -> None:
        response = await client.post(
            f"/revenue/opportunities/{opportunity_ids['beta']}/decline",
            json={"notes": "Payer refused to negotiate"},
        )

        assert response.json()["status"] == "declined"

    @pytest.mark.asyncio
    async def test_terminal_status_returns_400(self, client: AsyncClient, opportunity_ids) -> None:
        beta = opportunity_ids["beta"]
        await client.post(f"/revenue/opportunities/{beta}/decline")

        response = await client.post(f"/revenue/opportunities/{beta}/start")

        assert response.status_code == 400
        assert "Cannot start" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_rejects_negative_capture(self, client: AsyncClient, opportunity_ids) -> None:
        response = await client.post(
            f"/revenue/opportunities/{opportunity_ids['acme']}/complete",
            json={"captured_value": "-5"},
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_action_returns_422(self, client: AsyncClient, opportunity_ids) -> None:
        response = await client.post(f"/revenue/opportunities/{opportunity_ids['acme']}/reopen")
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_missing_opportunity_returns_404(self, client: AsyncClient) -> None:
        response = await client.post("/revenue/opportunities/00000000-0000-0000-0000-000000000000/start")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_other_organization_gets_404(self, client: AsyncClient, opportunity_ids) -> None:
        response = await client.post(
            f"/revenue/opportunities/{opportunity_ids['acme']}/start",
            headers={"X-Organization-ID": "org-2"},
        )
        assert response.status_code == 404
