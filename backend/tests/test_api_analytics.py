"""Tests for the service mix, coding and contract API endpoints."""

from datetime import date, timedelta

import pytest
from httpx import AsyncClient

WINDOW = {"as_of": "2024-06-30"}


@pytest.fixture
def poorly_paid_payer(billing):
    """Ten 98941 visits billed at $100 and paid $30 by one payer."""
    provider = billing.provider()
    payer = billing.payer("Acme Health")
    for i in range(10):
        service_date = date(2024, 6, 1) + timedelta(days=i)
        charge = billing.charge("98941", service_date, "100", provider=provider)
        billing.claim(payer, service_date, [charge], paid_per_line="30", paid_date=service_date + timedelta(days=30))
    return payer


class TestServiceMix:
    """Test POST /revenue/service-mix/analyze."""

    @pytest.mark.asyncio
    async def test_summary_totals(self, client: AsyncClient, poorly_paid_payer) -> None:
        response = await client.post("/revenue/service-mix/analyze", json=WINDOW)
        data = response.json()

        assert response.status_code == 200
        assert data["summary"]["total_revenue"] == "1000.00"
        assert data["summary"]["total_reimbursement"] == "300.00"
        assert data["summary"]["reimbursement_rate"] == "30.00"
        assert data["summary"]["payer_count"] == 1
        assert data["payers"][0]["payer_name"] == "Acme Health"

    @pytest.mark.asyncio
    async def test_empty_practice(self, client: AsyncClient) -> None:
        response = await client.post("/revenue/service-mix/analyze", json=WINDOW)
        data = response.json()

        assert data["summary"]["total_revenue"] == "0.00"
        assert data["recommendations"] == []
        assert data["persistence"]["persisted"] == 0

    @pytest.mark.asyncio
    async def test_rejects_zero_min_volume(self, client: AsyncClient) -> None:
        response = await client.post("/revenue/service-mix/analyze", json={"min_volume": 0})
        assert response.status_code == 422


class TestCoding:
    """Test POST /revenue/coding/analyze."""

    @pytest.mark.asyncio
    async def test_window_defaults_to_six_months(self, client: AsyncClient) -> None:
        response = await client.post("/revenue/coding/analyze", json=WINDOW)
        data = response.json()

        assert response.status_code == 200
        assert data["end_date"] == "2024-06-30"
        assert data["start_date"] == "2024-01-03"
        assert data["summary"]["em_visits"] == 0
        assert data["opportunities"] == []

    @pytest.mark.asyncio
    async def test_rejects_inverted_window(self, client: AsyncClient) -> None:
        response = await client.post(
            "/revenue/coding/analyze",
            json={"start_date": "2024-06-01", "end_date": "2024-01-01"},
        )
        assert response.status_code == 422


class TestContracts:
    """Test contract scoring and rate modeling."""

    @pytest.mark.asyncio
    async def test_poor_contract_becomes_opportunity(self, client: AsyncClient, poorly_paid_payer) -> None:
        response = await client.post("/revenue/contracts/analyze", json=WINDOW)
        data = response.json()

        assert response.status_code == 200
        card, = data["scorecards"]
        assert card["payer_id"] == poorly_paid_payer.id
        assert card["reimbursement_rate"] == "30.00"
        assert card["rating"] == "poor"
        assert card["needs_renegotiation"] is True
        assert data["persistence"]["persisted"] == 1

        opportunities = (await client.get("/revenue/opportunities", params={"type": "contract"})).json()
        assert opportunities["total"] == 1
        assert opportunities["items"][0]["title"] == "Renegotiate Acme Health contract"

    @pytest.mark.asyncio
    async def test_repeat_analysis_skips_open_opportunity(self, client: AsyncClient, poorly_paid_payer) -> None:
        await client.post("/revenue/contracts/analyze", json=WINDOW)

        response = await client.post("/revenue/contracts/analyze", json=WINDOW)

        assert response.json()["persistence"] == {"persisted": 0, "failed": 0, "skipped": 1}

    @pytest.mark.asyncio
    async def test_min_claims_excludes_small_payers(self, client: AsyncClient, poorly_paid_payer) -> None:
        response = await client.post("/revenue/contracts/analyze", json={**WINDOW, "min_claims": 11})

        assert response.json()["scorecards"] == []

    @pytest.mark.asyncio
    async def test_model_rate_change(self, client: AsyncClient, poorly_paid_payer) -> None:
        response = await client.post(
            "/revenue/contracts/model",
            json={**WINDOW, "payer_id": poorly_paid_payer.id, "proposed_rates": {"98941": "50"}},
        )
        data = response.json()

        assert response.status_code == 200
        assert data["payer_name"] == "Acme Health"
        change, = data["changes"]
        assert change["current_rate"] == "30.00"
        assert change["proposed_rate"] == "50.00"
        assert float(data["total_annual_delta"]) > 0

        # Modeling never touches the ledger
        assert (await client.get("/revenue/opportunities")).json()["total"] == 0

    @pytest.mark.asyncio
    async def test_model_unknown_payer(self, client: AsyncClient) -> None:
        response = await client.post(
            "/revenue/contracts/model",
            json={"payer_id": "00000000-0000-0000-0000-000000000000", "proposed_rates": {"98941": "50"}},
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_model_requires_rates(self, client: AsyncClient, poorly_paid_payer) -> None:
        response = await client.post(
            "/revenue/contracts/model",
            json={"payer_id": poorly_paid_payer.id, "proposed_rates": {}},
        )
        assert response.status_code == 422
