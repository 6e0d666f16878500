"""Tests for the Opportunity Ledger.

Tests batch writes, lifecycle transitions, summaries and goals against
the SQLite test database.
"""

from datetime import UTC, date, datetime
from decimal import Decimal

import pytest
from sqlalchemy import select

from app.models.billing import FeeScheduleItem
from app.models.ledger import OptimizationAction, RevenueLeakage
from app.schemas.base import (
    ActionType,
    EffortLevel,
    FeeAnalysisStatus,
    Frequency,
    GoalPeriod,
    LeakageStatus,
    LeakageType,
    OpportunityStatus,
    OpportunityType,
    Priority,
)
from app.services.errors import (
    InvalidTransitionError,
    NothingToImplementError,
    RecordNotFoundError,
)
from app.services.fee_optimizer import FeeScheduleOptimizer
from app.services.leakage_detector import LeakageFinding
from app.services.opportunity_ledger import (
    LEAKAGE_LIFECYCLE,
    OPPORTUNITY_LIFECYCLE,
    OpportunityInput,
    OpportunityLedger,
)

ORG_ID = "org-1"
USER_ID = "user-1"
NOW = datetime(2024, 7, 1, 12, 0, tzinfo=UTC)


def _finding(
    leakage_type: LeakageType = LeakageType.UNBILLED_SERVICE,
    amount: str = "100",
    annual_impact: str = "1200",
    priority: Priority = Priority.MEDIUM,
    description: str | None = "Unbilled visit",
) -> LeakageFinding:
    return LeakageFinding(
        leakage_type=leakage_type,
        source="encounters",
        description=description,
        amount=Decimal(amount),
        frequency=Frequency.MONTHLY,
        annual_impact=Decimal(annual_impact),
        priority=priority,
        effort_level=EffortLevel.EASY,
        recommendation="Bill the visit",
        entity_type="encounter",
        entity_id="enc-1",
    )


def _opportunity(entity_id: str | None, value: str = "500", title: str = "Raise utilization") -> OpportunityInput:
    return OpportunityInput(
        category="capacity",
        title=title,
        description="Fill open schedule slots",
        estimated_value=Decimal(value),
        priority=Priority.MEDIUM,
        confidence=70,
        entity_type="provider",
        entity_id=entity_id,
    )


@pytest.fixture
def ledger(db_session):
    return OpportunityLedger(db_session, organization_id=ORG_ID, user_id=USER_ID, clock=lambda: NOW)


@pytest.fixture
def other_ledger(db_session):
    return OpportunityLedger(db_session, organization_id="org-2", clock=lambda: NOW)


class TestLifecycles:
    """Test the lifecycle tables."""

    def test_leakage_actions_from_identified(self):
        assert LEAKAGE_LIFECYCLE.allowed_actions(LeakageStatus.IDENTIFIED) == [
            "investigate", "start_fix", "resolve", "ignore",
        ]

    def test_terminal_statuses_have_no_actions(self):
        assert LEAKAGE_LIFECYCLE.allowed_actions(LeakageStatus.RESOLVED) == []
        assert OPPORTUNITY_LIFECYCLE.allowed_actions(OpportunityStatus.DECLINED) == []

    def test_skip_ahead_allowed(self):
        assert LEAKAGE_LIFECYCLE.next_status(LeakageStatus.IDENTIFIED, "start_fix") == LeakageStatus.FIXING
        assert OPPORTUNITY_LIFECYCLE.next_status(
            OpportunityStatus.IDENTIFIED, "complete"
        ) == OpportunityStatus.CAPTURED

    def test_unknown_action(self):
        with pytest.raises(InvalidTransitionError, match="Cannot reopen leakage"):
            LEAKAGE_LIFECYCLE.next_status(LeakageStatus.IDENTIFIED, "reopen")


# ============================================================================
# Leakage Tests
# ============================================================================


class TestLeakageLedger:
    """Test leakage persistence and transitions."""

    def test_record_leakages(self, ledger):
        result = ledger.record_leakages([_finding(), _finding(amount="50.555", annual_impact="606.66")])

        assert result.persisted == 2
        assert result.failed == 0
        assert len(result.ids) == 2

        second = ledger.get_leakage(result.ids[1])
        assert second.status == LeakageStatus.IDENTIFIED
        assert second.amount == Decimal("50.56")
        assert second.organization_id == ORG_ID

    def test_bad_row_counted_as_failed(self, ledger):
        result = ledger.record_leakages([_finding(), _finding(description=None), _finding()])

        assert result.persisted == 2
        assert result.failed == 1
        assert ledger.list_leakages().total == 2

    def test_list_sorted_and_filtered(self, ledger):
        ledger.record_leakages([
            _finding(annual_impact="100"),
            _finding(LeakageType.UNDERCODING, annual_impact="900"),
            _finding(annual_impact="500"),
        ])

        page = ledger.list_leakages()
        assert [row.annual_impact for row in page.items] == [
            Decimal("900.00"), Decimal("500.00"), Decimal("100.00"),
        ]

        undercoding = ledger.list_leakages(leakage_type=LeakageType.UNDERCODING)
        assert undercoding.total == 1

        first_page = ledger.list_leakages(limit=2)
        assert first_page.total == 3
        assert first_page.has_more
        assert not ledger.list_leakages(limit=2, offset=2).has_more

    def test_other_organization_cannot_see_rows(self, ledger, other_ledger):
        result = ledger.record_leakages([_finding()])

        with pytest.raises(RecordNotFoundError):
            other_ledger.get_leakage(result.ids[0])
        assert other_ledger.list_leakages().total == 0

    def test_resolve_with_capture_records_action(self, ledger, db_session):
        leakage_id = ledger.record_leakages([_finding()]).ids[0]

        ledger.transition_leakage(leakage_id, "investigate")
        ledger.transition_leakage(leakage_id, "start_fix")
        leakage = ledger.transition_leakage(
            leakage_id, "resolve", resolution="Billed", captured_amount=Decimal("95"),
        )

        assert leakage.status == LeakageStatus.RESOLVED
        assert leakage.resolution == "Billed"
        assert leakage.resolved_by == USER_ID
        assert leakage.resolved_at is not None

        action = db_session.scalars(select(OptimizationAction)).one()
        assert action.action_type == ActionType.LEAKAGE_RESOLUTION
        assert action.source_id == leakage_id
        assert action.projected_impact == Decimal("100.00")
        assert action.actual_impact == Decimal("95.00")

    def test_ignore_without_action(self, ledger, db_session):
        leakage_id = ledger.record_leakages([_finding()]).ids[0]

        leakage = ledger.transition_leakage(leakage_id, "ignore", resolution="Write-off approved")

        assert leakage.status == LeakageStatus.IGNORED
        assert db_session.scalars(select(OptimizationAction)).all() == []

    def test_terminal_status_rejects_actions(self, ledger):
        leakage_id = ledger.record_leakages([_finding()]).ids[0]
        ledger.transition_leakage(leakage_id, "resolve")

        with pytest.raises(InvalidTransitionError):
            ledger.transition_leakage(leakage_id, "investigate")

    def test_missing_leakage(self, ledger):
        with pytest.raises(RecordNotFoundError):
            ledger.transition_leakage("00000000-0000-0000-0000-000000000000", "investigate")

    def test_summary(self, ledger):
        ids = ledger.record_leakages([
            _finding(amount="100", annual_impact="1200", priority=Priority.MEDIUM),
            _finding(LeakageType.UNDERCODING, amount="40", annual_impact="480", priority=Priority.HIGH),
            _finding(amount="60", annual_impact="720", priority=Priority.LOW),
        ]).ids
        ledger.transition_leakage(ids[1], "investigate")
        ledger.transition_leakage(ids[2], "resolve", captured_amount=Decimal("60"))

        summary = ledger.leakage_summary()

        assert summary.open_count == 2
        assert summary.total_amount == Decimal("140.00")
        assert summary.total_annual_impact == Decimal("1680.00")
        assert summary.by_type["unbilled_service"].count == 1
        assert summary.by_status["investigating"].amount == Decimal("40.00")
        assert list(summary.by_priority) == ["high", "medium"]
        assert summary.resolved_recently == 1
        assert summary.recovered_recently == Decimal("60.00")


# ============================================================================
# Fee Analysis Tests
# ============================================================================


class TestFeeLedger:
    """Test the fee review workflow."""

    def setup_method(self):
        self.optimizer = FeeScheduleOptimizer()

    def _record(self, ledger, schedule_id=None):
        recommendations = [
            self.optimizer.recommend("99213", Decimal("80"), utilization=100),
            self.optimizer.recommend("98941", Decimal("40"), utilization=40),
        ]
        return ledger.record_fee_analyses(recommendations, schedule_id).ids

    def test_record_pending(self, ledger):
        ids = self._record(ledger)

        analysis = ledger.get_fee_analysis(ids[0])
        assert analysis.status == FeeAnalysisStatus.PENDING
        assert analysis.recommended_fee == Decimal("141.49")
        assert analysis.projected_annual_impact == Decimal("1844.70")
        assert "regional" in analysis.reasoning.lower()

    def test_approve_and_reject(self, ledger):
        ids = self._record(ledger)

        approved = ledger.review_fee_analysis(ids[0], "approve", effective_date=date(2024, 8, 1), notes="OK")
        rejected = ledger.review_fee_analysis(ids[1], "reject")

        assert approved.status == FeeAnalysisStatus.APPROVED
        assert approved.effective_date == date(2024, 8, 1)
        assert approved.reviewed_by == USER_ID
        assert approved.notes == "OK"
        assert rejected.status == FeeAnalysisStatus.REJECTED
        assert rejected.effective_date is None

    def test_review_only_once(self, ledger):
        analysis_id = self._record(ledger)[0]
        ledger.review_fee_analysis(analysis_id, "approve")

        with pytest.raises(InvalidTransitionError):
            ledger.review_fee_analysis(analysis_id, "reject")

    def test_review_rejects_other_decisions(self, ledger):
        analysis_id = self._record(ledger)[0]

        with pytest.raises(InvalidTransitionError):
            ledger.review_fee_analysis(analysis_id, "implement")

    def test_implement_updates_schedule(self, ledger, billing, db_session):
        schedule = billing.fee_schedule({"99213": "80"})
        ids = self._record(ledger, schedule.id)
        ledger.review_fee_analysis(ids[0], "approve", effective_date=date(2024, 8, 1))
        ledger.review_fee_analysis(ids[1], "approve")

        result = ledger.implement_fee_changes(ids, schedule.id)

        assert result.implemented == 2
        assert result.failed == 0
        assert result.action_id is not None
        by_code = {c.cpt_code: c for c in result.changes}
        # Rounded to cents, not the raw schedule value
        assert str(by_code["99213"].previous_fee) == "80.00"
        assert by_code["99213"].new_fee == Decimal("141.49")
        assert by_code["99213"].effective_date == date(2024, 8, 1)
        # No review date falls back to the implementation day
        assert by_code["98941"].effective_date == date(2024, 7, 1)

        items = {
            item.cpt_code: item.fee
            for item in db_session.scalars(
                select(FeeScheduleItem).where(FeeScheduleItem.fee_schedule_id == schedule.id)
            )
        }
        assert items["99213"] == Decimal("141.49")
        # Codes missing from the schedule are added
        assert "98941" in items

        assert ledger.get_fee_analysis(ids[0]).status == FeeAnalysisStatus.IMPLEMENTED
        action = db_session.get(OptimizationAction, result.action_id)
        assert action.action_type == ActionType.FEE_UPDATE

    def test_implement_skips_unapproved(self, ledger, billing):
        schedule = billing.fee_schedule({"99213": "80"})
        ids = self._record(ledger, schedule.id)
        ledger.review_fee_analysis(ids[0], "approve")

        result = ledger.implement_fee_changes(ids, schedule.id)

        assert result.implemented == 1
        assert ledger.get_fee_analysis(ids[1]).status == FeeAnalysisStatus.PENDING

    def test_nothing_approved(self, ledger, billing):
        schedule = billing.fee_schedule({"99213": "80"})
        ids = self._record(ledger, schedule.id)

        with pytest.raises(NothingToImplementError):
            ledger.implement_fee_changes(ids, schedule.id)

    def test_missing_schedule(self, ledger):
        ids = self._record(ledger)

        with pytest.raises(RecordNotFoundError):
            ledger.implement_fee_changes(ids, "00000000-0000-0000-0000-000000000000")

    def test_implemented_changes_and_summary(self, ledger, billing):
        schedule = billing.fee_schedule({"99213": "80"})
        ids = self._record(ledger, schedule.id)
        ledger.review_fee_analysis(ids[0], "approve", effective_date=date(2024, 8, 1))
        ledger.implement_fee_changes([ids[0]], schedule.id)

        changes = ledger.implemented_fee_changes()
        assert [c.analysis_id for c in changes] == [ids[0]]

        summary = ledger.fee_summary()
        assert summary.pending_count == 1
        assert summary.implemented_count == 1
        assert summary.implemented_impact == Decimal("1844.70")
        assert summary.fee_actions == 1
        assert [a.id for a in summary.top_pending] == [ids[1]]

    def test_implement_effective_date_overrides_review(self, ledger, billing):
        schedule = billing.fee_schedule({"99213": "80"})
        ids = self._record(ledger, schedule.id)
        ledger.review_fee_analysis(ids[0], "approve", effective_date=date(2024, 8, 1))

        result = ledger.implement_fee_changes([ids[0]], schedule.id, effective_date=date(2024, 9, 1))

        assert result.changes[0].effective_date == date(2024, 9, 1)
        assert ledger.get_fee_analysis(ids[0]).effective_date == date(2024, 9, 1)

    def test_implemented_changes_filters(self, ledger, billing):
        schedule = billing.fee_schedule({"99213": "80"})
        ids = self._record(ledger, schedule.id)
        ledger.review_fee_analysis(ids[0], "approve", effective_date=date(2024, 8, 1))
        ledger.review_fee_analysis(ids[1], "approve", effective_date=date(2024, 9, 1))
        ledger.implement_fee_changes(ids, schedule.id)

        assert [c.cpt_code for c in ledger.implemented_fee_changes(cpt_code="98941")] == ["98941"]
        assert len(ledger.implemented_fee_changes(date_from=date(2024, 8, 1), date_to=date(2024, 9, 1))) == 2
        assert [c.analysis_id for c in ledger.implemented_fee_changes(date_to=date(2024, 8, 31))] == [ids[0]]
        assert ledger.implemented_fee_changes(date_from=date(2024, 9, 2)) == []

    def test_list_min_impact(self, ledger):
        self._record(ledger)

        page = ledger.list_fee_analyses(min_impact=Decimal("1000"))

        assert [a.cpt_code for a in page.items] == ["99213"]


# ============================================================================
# Opportunity Tests
# ============================================================================


class TestOpportunityLedger:
    """Test opportunity persistence and transitions."""

    def test_deduplicate_open_entities(self, ledger):
        first = ledger.record_opportunities(
            OpportunityType.SERVICE_MIX, [_opportunity("dr-a"), _opportunity("dr-b")], deduplicate=True,
        )
        second = ledger.record_opportunities(
            OpportunityType.SERVICE_MIX,
            [_opportunity("dr-a"), _opportunity("dr-c"), _opportunity("dr-c"), _opportunity(None)],
            deduplicate=True,
        )

        assert first.persisted == 2
        assert second.persisted == 2
        assert second.skipped == 2
        assert ledger.list_opportunities().total == 4

    def test_closed_entities_not_duplicates(self, ledger):
        opportunity_id = ledger.record_opportunities(
            OpportunityType.CONTRACT, [_opportunity("p1")], deduplicate=True,
        ).ids[0]
        ledger.transition_opportunity(opportunity_id, "decline")

        result = ledger.record_opportunities(OpportunityType.CONTRACT, [_opportunity("p1")], deduplicate=True)

        assert result.persisted == 1
        assert result.skipped == 0

    def test_without_deduplication(self, ledger):
        ledger.record_opportunities(OpportunityType.CODING, [_opportunity("dr-a")])
        result = ledger.record_opportunities(OpportunityType.CODING, [_opportunity("dr-a")])

        assert result.persisted == 1
        assert result.skipped == 0

    def test_list_filters(self, ledger):
        ledger.record_opportunities(OpportunityType.CODING, [_opportunity("a", "100")])
        ledger.record_opportunities(OpportunityType.CONTRACT, [_opportunity("b", "900"), _opportunity("c", "300")])

        page = ledger.list_opportunities(opportunity_type=OpportunityType.CONTRACT)

        assert [o.estimated_value for o in page.items] == [Decimal("900.00"), Decimal("300.00")]

    def test_complete_records_capture(self, ledger, db_session):
        opportunity_id = ledger.record_opportunities(OpportunityType.CODING, [_opportunity("dr-a")]).ids[0]

        ledger.transition_opportunity(opportunity_id, "start")
        opportunity = ledger.transition_opportunity(
            opportunity_id, "complete", captured_value=Decimal("420"), notes="Retrained",
        )

        assert opportunity.status == OpportunityStatus.CAPTURED
        assert opportunity.captured_value == Decimal("420.00")
        assert opportunity.completed_by == USER_ID
        assert opportunity.notes == "Retrained"

        action = db_session.scalars(select(OptimizationAction)).one()
        assert action.action_type == ActionType.OPPORTUNITY_CAPTURE
        assert action.projected_impact == Decimal("500.00")
        assert action.actual_impact == Decimal("420.00")

    def test_declined_is_terminal(self, ledger):
        opportunity_id = ledger.record_opportunities(OpportunityType.CODING, [_opportunity("dr-a")]).ids[0]
        ledger.transition_opportunity(opportunity_id, "decline")

        with pytest.raises(InvalidTransitionError):
            ledger.transition_opportunity(opportunity_id, "complete")


# ============================================================================
# Goal Tests
# ============================================================================


class TestGoals:
    """Test revenue goals."""

    def test_create_and_update(self, ledger):
        goal = ledger.save_goal(
            "Q3", GoalPeriod.QUARTERLY, date(2024, 7, 1), date(2024, 9, 30), Decimal("30000"),
        )
        assert goal.target_amount == Decimal("30000.00")

        updated = ledger.save_goal(
            "Q3 stretch", GoalPeriod.QUARTERLY, date(2024, 7, 1), date(2024, 9, 30), Decimal("35000"),
            is_active=False, goal_id=goal.id,
        )

        assert updated.id == goal.id
        assert updated.name == "Q3 stretch"
        assert ledger.list_goals() == [updated]
        assert ledger.list_goals(active_only=True) == []

    def test_period_must_be_ordered(self, ledger):
        with pytest.raises(ValueError):
            ledger.save_goal("Bad", GoalPeriod.MONTHLY, date(2024, 7, 31), date(2024, 7, 1), Decimal("100"))

    def test_update_missing_goal(self, ledger):
        with pytest.raises(RecordNotFoundError):
            ledger.save_goal(
                "Q3", GoalPeriod.QUARTERLY, date(2024, 7, 1), date(2024, 9, 30), Decimal("100"),
                goal_id="00000000-0000-0000-0000-000000000000",
            )

    def test_goals_sorted_by_period(self, ledger):
        ledger.save_goal("Aug", GoalPeriod.MONTHLY, date(2024, 8, 1), date(2024, 8, 31), Decimal("100"))
        ledger.save_goal("Jul", GoalPeriod.MONTHLY, date(2024, 7, 1), date(2024, 7, 31), Decimal("100"))

        assert [g.name for g in ledger.list_goals()] == ["Jul", "Aug"]
