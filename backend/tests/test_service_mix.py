"""Tests for the Service Mix Analyzer."""

from datetime import date, timedelta
from decimal import Decimal

from app.schemas.base import ClaimStatus, Priority
from app.services.aggregation import (
    ChargeRecord,
    ClaimRecord,
    PayerRecord,
    ProviderRecord,
    RevenueSnapshot,
)
from app.services.service_mix import (
    HIGH_MARGIN,
    NEUTRAL,
    UNPROFITABLE,
    ServiceMixAnalyzer,
    get_service_mix_analyzer,
    reset_service_mix_analyzer,
)

START = date(2024, 6, 1)
END = date(2024, 6, 30)


def _charges(prefix: str, code: str, count: int, fee: str, paid: str, provider_id: str = "dr-a") -> list:
    return [
        ChargeRecord(
            id=f"{prefix}{i}",
            code=code,
            service_date=START + timedelta(days=i % 28),
            fee=Decimal(fee),
            paid_amount=Decimal(paid),
            provider_id=provider_id,
            encounter_id=f"{prefix}-enc{i}",
        )
        for i in range(count)
    ]


def _claim(claim_id: str, payer_id: str, paid: str, status=ClaimStatus.PAID, days: int | None = 30) -> ClaimRecord:
    return ClaimRecord(
        id=claim_id,
        payer_id=payer_id,
        status=status,
        submitted_date=START,
        total_charged=Decimal("100"),
        total_allowed=Decimal(paid),
        total_paid=Decimal(paid),
        paid_date=START + timedelta(days=days) if days is not None else None,
    )


def _snapshot(**overrides) -> RevenueSnapshot:
    charges = (
        _charges("np", "99203", 10, "200", "150")
        + _charges("es", "97014", 10, "10", "2")
        + _charges("cm", "98941", 5, "60", "40")
    )
    claims = (
        [_claim(f"a{i}", "p1", "30") for i in range(6)]
        + [_claim(f"d{i}", "p1", "0", status=ClaimStatus.DENIED, days=None) for i in range(2)]
        + [_claim(f"b{i}", "p2", "80", days=90) for i in range(2)]
    )
    fields = {
        "organization_id": "org-1",
        "start_date": START,
        "end_date": END,
        "as_of": END,
        "charges": tuple(charges),
        "claims": tuple(claims),
        "providers": {"dr-a": ProviderRecord("dr-a", "Dr. Adams")},
        "payers": {"p1": PayerRecord("p1", "Acme Health"), "p2": PayerRecord("p2", "Cash Co")},
    }
    fields.update(overrides)
    return RevenueSnapshot(**fields)


class TestAnalyzerInit:
    """Test analyzer initialization."""

    def test_singleton_pattern(self):
        assert get_service_mix_analyzer() is get_service_mix_analyzer()

    def test_singleton_reset(self):
        first = get_service_mix_analyzer()
        reset_service_mix_analyzer()
        assert get_service_mix_analyzer() is not first

    def test_get_stats(self):
        stats = ServiceMixAnalyzer().get_stats()

        assert stats["overhead_rate"] == "0.40"
        assert stats["service_categories"] == 13


class TestCategoryProfitability:
    """Test the category view."""

    def setup_method(self):
        self.analyzer = ServiceMixAnalyzer()

    def test_categories_classified(self):
        categories = self.analyzer.analyze_categories(_snapshot())

        by_key = {c.key: c for c in categories}
        # Manipulation has 5 units, under the volume floor
        assert set(by_key) == {"new_patient_em", "unattended_modalities"}

        new_patient = by_key["new_patient_em"]
        assert new_patient.revenue == Decimal("2000.00")
        assert new_patient.minutes == 450
        assert new_patient.revenue_per_minute == Decimal("4.44")
        assert new_patient.reimbursement_rate == Decimal("75.00")
        assert new_patient.profit_margin == Decimal("45.00")
        assert new_patient.classification == HIGH_MARGIN
        assert new_patient.priority == Priority.MEDIUM

        modalities = by_key["unattended_modalities"]
        assert modalities.classification == UNPROFITABLE
        assert modalities.priority == Priority.HIGH

    def test_sorted_by_revenue(self):
        categories = self.analyzer.analyze_categories(_snapshot(), min_volume=1)

        assert [c.key for c in categories] == ["new_patient_em", "manipulation", "unattended_modalities"]

    def test_neutral_category(self):
        # $2.67/minute at 50% reimbursement
        snapshot = _snapshot(charges=tuple(_charges("t", "97110", 10, "40", "20")))

        category = self.analyzer.analyze_categories(snapshot)[0]

        assert category.key == "therapeutic_exercise"
        assert category.classification == NEUTRAL
        assert category.priority == Priority.LOW

    def test_zero_minute_category_uses_reimbursement_only(self):
        snapshot = _snapshot(charges=tuple(_charges("s", "99070", 10, "15", "12")))

        categories = self.analyzer.analyze_categories(snapshot)

        assert categories[0].key == "supplies"
        assert categories[0].minutes == 0
        assert categories[0].classification == HIGH_MARGIN

    def test_unknown_codes_grouped_as_other(self):
        snapshot = _snapshot(charges=tuple(_charges("x", "ZZ999", 10, "50", "25")))

        categories = self.analyzer.analyze_categories(snapshot)

        assert categories[0].key == "other"
        assert categories[0].label == "Other Services"


class TestPayerMix:
    """Test the payer view."""

    def setup_method(self):
        self.analyzer = ServiceMixAnalyzer()

    def test_payer_metrics_and_signals(self):
        payers = self.analyzer.analyze_payers(_snapshot())

        acme, cash = payers
        assert acme.payer_name == "Acme Health"
        assert acme.claim_count == 8
        assert acme.reimbursement_rate == Decimal("22.50")
        assert acme.denial_rate == Decimal("25.00")
        assert acme.avg_days_to_payment == Decimal("30.00")
        assert acme.volume_share == Decimal("80.00")
        assert acme.priority == Priority.CRITICAL
        assert len(acme.signals) == 2

        assert cash.avg_days_to_payment == Decimal("90.00")
        assert [s.priority for s in cash.signals] == [Priority.MEDIUM]

    def test_small_well_paying_payer_flagged_for_growth(self):
        claims = tuple(
            [_claim(f"a{i}", "p1", "50") for i in range(19)] + [_claim("b0", "p2", "90")]
        )

        payers = self.analyzer.analyze_payers(_snapshot(claims=claims))

        cash = next(p for p in payers if p.payer_id == "p2")
        assert any("Grow Cash Co" in s.message for s in cash.signals)

    def test_payer_without_signals_is_low(self):
        payers = self.analyzer.analyze_payers(_snapshot(claims=(_claim("a", "p1", "60"),)))

        assert payers[0].signals == []
        assert payers[0].priority == Priority.LOW


class TestProviderProductivity:
    """Test the provider view."""

    def setup_method(self):
        self.analyzer = ServiceMixAnalyzer()

    def test_provider_metrics(self):
        providers = self.analyzer.analyze_providers(_snapshot())

        assert len(providers) == 1
        provider = providers[0]
        assert provider.provider_name == "Dr. Adams"
        assert provider.encounter_count == 25
        assert provider.minutes == 575
        assert provider.revenue == Decimal("2400.00")
        assert provider.revenue_per_hour == Decimal("250.43")
        # 575 of 9600 capacity minutes in a 30 day window
        assert provider.utilization == Decimal("5.99")
        assert provider.priority == Priority.MEDIUM

    def test_low_revenue_per_hour(self):
        snapshot = _snapshot(charges=tuple(_charges("t", "97110", 40, "20", "15")))

        provider = self.analyzer.analyze_providers(snapshot)[0]

        assert provider.revenue_per_hour == Decimal("80.00")
        assert provider.priority == Priority.HIGH


class TestAnalyze:
    """Test the full analysis and capacity recommendations."""

    def setup_method(self):
        self.analyzer = ServiceMixAnalyzer()

    def test_recommendations_sized_and_sorted(self):
        result = self.analyzer.analyze(_snapshot())

        kinds = [r.kind for r in result.recommendations]
        assert kinds == ["raise_utilization", "expand_category", "rebalance_payers", "review_category"]

        by_kind = {r.kind: r for r in result.recommendations}
        assert by_kind["raise_utilization"].estimated_impact == Decimal("1536.24")
        assert by_kind["raise_utilization"].is_material
        assert by_kind["expand_category"].estimated_impact == Decimal("375.00")
        assert by_kind["expand_category"].entity_id == "new_patient_em"
        assert by_kind["rebalance_payers"].estimated_impact == Decimal("186.00")
        assert by_kind["rebalance_payers"].details["payers"] == ["p1"]
        assert by_kind["review_category"].estimated_impact == Decimal("40.00")
        assert not by_kind["review_category"].is_material

    def test_summary(self):
        summary = self.analyzer.analyze(_snapshot()).summary

        assert summary.total_revenue == Decimal("2400.00")
        assert summary.total_reimbursement == Decimal("1720.00")
        assert summary.total_minutes == 575
        assert summary.high_margin_categories == 1
        assert summary.unprofitable_categories == 1
        assert summary.payer_count == 2
        assert summary.provider_count == 1
        assert summary.total_opportunity == Decimal("1536.24")

    def test_provider_filter(self):
        result = self.analyzer.analyze(_snapshot(), provider_id="dr-b")

        assert result.categories == []
        assert result.providers == []

    def test_deterministic(self):
        first = self.analyzer.analyze(_snapshot())
        second = self.analyzer.analyze(_snapshot())

        assert first == second
