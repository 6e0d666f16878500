"""Create billing source tables and revenue ledger tables.

Revision ID: 001
Revises: None
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

MONEY = sa.Numeric(12, 2)


def _enum(name: str, *values: str) -> sa.Enum:
    # Stored as VARCHAR with a check constraint, matching app.models.columns.enum_column
    return sa.Enum(*values, name=name, native_enum=False, create_constraint=True, length=32)


def _base_columns() -> list[sa.Column]:
    return [
        sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
    ]


def _fk(column: str, target: str, ondelete: str, nullable: bool = True) -> sa.Column:
    return sa.Column(
        column,
        postgresql.UUID(as_uuid=False),
        sa.ForeignKey(target, ondelete=ondelete),
        nullable=nullable,
    )


PRIORITY_VALUES = ("critical", "high", "medium", "low")


def upgrade() -> None:
    # ------------------------------------------------------------------
    # Billing source tables
    # ------------------------------------------------------------------
    op.create_table(
        "providers",
        *_base_columns(),
        sa.Column("organization_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("npi", sa.String(20), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index("ix_providers_organization_id", "providers", ["organization_id"])

    op.create_table(
        "payers",
        *_base_columns(),
        sa.Column("organization_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column(
            "payer_type",
            _enum(
                "payer_type",
                "medicare",
                "medicaid",
                "commercial",
                "workers_comp",
                "personal_injury",
                "self_pay",
                "other",
            ),
            nullable=False,
            server_default="commercial",
        ),
    )
    op.create_index("ix_payers_organization_id", "payers", ["organization_id"])

    op.create_table(
        "encounters",
        *_base_columns(),
        sa.Column("organization_id", sa.String(64), nullable=False),
        sa.Column("patient_id", sa.String(255), nullable=False),
        _fk("provider_id", "providers.id", "SET NULL"),
        _fk("payer_id", "payers.id", "SET NULL"),
        sa.Column("encounter_date", sa.Date(), nullable=False),
        sa.Column(
            "encounter_type",
            _enum("encounter_type", "initial_eval", "re_eval", "follow_up", "treatment", "other"),
            nullable=False,
            server_default="treatment",
        ),
        sa.Column(
            "status",
            _enum("encounter_status", "scheduled", "in_progress", "completed", "cancelled"),
            nullable=False,
            server_default="scheduled",
        ),
        sa.Column("diagnosis_codes", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("has_note", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index("ix_encounters_organization_id", "encounters", ["organization_id"])
    op.create_index("ix_encounters_patient_id", "encounters", ["patient_id"])
    op.create_index("ix_encounters_provider_id", "encounters", ["provider_id"])
    op.create_index("ix_encounters_encounter_date", "encounters", ["encounter_date"])
    op.create_index("ix_encounters_status", "encounters", ["status"])

    op.create_table(
        "charges",
        *_base_columns(),
        sa.Column("organization_id", sa.String(64), nullable=False),
        sa.Column("patient_id", sa.String(255), nullable=False),
        _fk("encounter_id", "encounters.id", "SET NULL"),
        _fk("provider_id", "providers.id", "SET NULL"),
        sa.Column("cpt_code", sa.String(10), nullable=False),
        sa.Column("service_date", sa.Date(), nullable=False),
        sa.Column("fee", MONEY, nullable=False),
        sa.Column("units", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("modifiers", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("adjustments", MONEY, nullable=False, server_default="0"),
        sa.Column("balance", MONEY, nullable=False, server_default="0"),
        sa.Column(
            "status",
            _enum("charge_status", "pending", "billed", "paid", "void"),
            nullable=False,
            server_default="pending",
        ),
    )
    op.create_index("ix_charges_organization_id", "charges", ["organization_id"])
    op.create_index("ix_charges_patient_id", "charges", ["patient_id"])
    op.create_index("ix_charges_encounter_id", "charges", ["encounter_id"])
    op.create_index("ix_charges_provider_id", "charges", ["provider_id"])
    op.create_index("ix_charges_cpt_code", "charges", ["cpt_code"])
    op.create_index("ix_charges_service_date", "charges", ["service_date"])
    op.create_index("ix_charges_status", "charges", ["status"])

    op.create_table(
        "claims",
        *_base_columns(),
        sa.Column("organization_id", sa.String(64), nullable=False),
        _fk("payer_id", "payers.id", "CASCADE", nullable=False),
        sa.Column(
            "status",
            _enum("claim_status", "submitted", "paid", "denied"),
            nullable=False,
            server_default="submitted",
        ),
        sa.Column("submitted_date", sa.Date(), nullable=False),
        sa.Column("paid_date", sa.Date(), nullable=True),
        sa.Column("total_charged", MONEY, nullable=False, server_default="0"),
        sa.Column("total_allowed", MONEY, nullable=False, server_default="0"),
        sa.Column("total_paid", MONEY, nullable=False, server_default="0"),
    )
    op.create_index("ix_claims_organization_id", "claims", ["organization_id"])
    op.create_index("ix_claims_payer_id", "claims", ["payer_id"])
    op.create_index("ix_claims_status", "claims", ["status"])
    op.create_index("ix_claims_submitted_date", "claims", ["submitted_date"])

    op.create_table(
        "claim_lines",
        *_base_columns(),
        _fk("claim_id", "claims.id", "CASCADE", nullable=False),
        _fk("charge_id", "charges.id", "SET NULL"),
        sa.Column("cpt_code", sa.String(10), nullable=False),
        sa.Column("units", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("modifiers", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("charged_amount", MONEY, nullable=False, server_default="0"),
        sa.Column("allowed_amount", MONEY, nullable=False, server_default="0"),
        sa.Column("paid_amount", MONEY, nullable=False, server_default="0"),
    )
    op.create_index("ix_claim_lines_claim_id", "claim_lines", ["claim_id"])
    op.create_index("ix_claim_lines_charge_id", "claim_lines", ["charge_id"])
    op.create_index("ix_claim_lines_cpt_code", "claim_lines", ["cpt_code"])

    op.create_table(
        "fee_schedules",
        *_base_columns(),
        sa.Column("organization_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index("ix_fee_schedules_organization_id", "fee_schedules", ["organization_id"])

    op.create_table(
        "fee_schedule_items",
        *_base_columns(),
        _fk("fee_schedule_id", "fee_schedules.id", "CASCADE", nullable=False),
        sa.Column("cpt_code", sa.String(10), nullable=False),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("fee", MONEY, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("fee_schedule_id", "cpt_code", name="uq_fee_schedule_items_code"),
    )
    op.create_index("ix_fee_schedule_items_fee_schedule_id", "fee_schedule_items", ["fee_schedule_id"])

    op.create_table(
        "appointments",
        *_base_columns(),
        sa.Column("organization_id", sa.String(64), nullable=False),
        sa.Column("patient_id", sa.String(255), nullable=False),
        _fk("provider_id", "providers.id", "SET NULL"),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "status",
            _enum(
                "appointment_status", "scheduled", "confirmed", "completed", "cancelled", "no_show"
            ),
            nullable=False,
            server_default="scheduled",
        ),
    )
    op.create_index("ix_appointments_organization_id", "appointments", ["organization_id"])
    op.create_index("ix_appointments_start_time", "appointments", ["start_time"])

    # ------------------------------------------------------------------
    # Revenue ledger tables
    # ------------------------------------------------------------------
    op.create_table(
        "revenue_leakages",
        *_base_columns(),
        sa.Column("organization_id", sa.String(64), nullable=False),
        sa.Column(
            "leakage_type",
            _enum(
                "leakage_type",
                "unbilled_service",
                "undercoding",
                "missed_modifier",
                "unbilled_supplies",
                "write_off",
                "collection_issue",
            ),
            nullable=False,
        ),
        sa.Column("source", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column(
            "frequency",
            _enum("leakage_frequency", "one_time", "daily", "weekly", "monthly", "quarterly"),
            nullable=False,
        ),
        sa.Column("annual_impact", MONEY, nullable=False),
        sa.Column("priority", _enum("leakage_priority", *PRIORITY_VALUES), nullable=False),
        sa.Column(
            "effort_level",
            _enum("leakage_effort", "easy", "moderate", "complex"),
            nullable=False,
        ),
        sa.Column("entity_type", sa.String(50), nullable=True),
        sa.Column("entity_id", sa.String(255), nullable=True),
        sa.Column("cpt_code", sa.String(10), nullable=True),
        sa.Column("payer_name", sa.String(255), nullable=True),
        sa.Column("provider_id", postgresql.UUID(as_uuid=False), nullable=True),
        sa.Column("recommendation", sa.Text(), nullable=False),
        sa.Column("details", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column(
            "status",
            _enum(
                "leakage_status", "identified", "investigating", "fixing", "resolved", "ignored"
            ),
            nullable=False,
            server_default="identified",
        ),
        sa.Column("resolution", sa.Text(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_by", sa.String(255), nullable=True),
    )
    op.create_index("ix_revenue_leakages_organization_id", "revenue_leakages", ["organization_id"])
    op.create_index("ix_revenue_leakages_leakage_type", "revenue_leakages", ["leakage_type"])
    op.create_index("ix_revenue_leakages_priority", "revenue_leakages", ["priority"])
    op.create_index("ix_revenue_leakages_status", "revenue_leakages", ["status"])

    op.create_table(
        "fee_schedule_analyses",
        *_base_columns(),
        sa.Column("organization_id", sa.String(64), nullable=False),
        sa.Column("fee_schedule_id", postgresql.UUID(as_uuid=False), nullable=True),
        sa.Column("cpt_code", sa.String(10), nullable=False),
        sa.Column("code_name", sa.String(255), nullable=False),
        sa.Column("current_fee", MONEY, nullable=False),
        sa.Column("recommended_fee", MONEY, nullable=False),
        sa.Column("fee_change", MONEY, nullable=False),
        sa.Column("change_percent", MONEY, nullable=False),
        sa.Column("reasoning", sa.Text(), nullable=False),
        sa.Column("benchmark_rate", MONEY, nullable=True),
        sa.Column("regional_rate", MONEY, nullable=True),
        sa.Column("top_payer_rate", MONEY, nullable=True),
        sa.Column("avg_reimbursement", MONEY, nullable=True),
        sa.Column("utilization", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("projected_annual_impact", MONEY, nullable=False),
        sa.Column("confidence", sa.Integer(), nullable=False),
        sa.Column("priority", _enum("fee_priority", *PRIORITY_VALUES), nullable=False),
        sa.Column(
            "status",
            _enum("fee_analysis_status", "pending", "approved", "rejected", "implemented"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("reviewed_by", sa.String(255), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("effective_date", sa.Date(), nullable=True),
        sa.Column("implemented_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
    )
    op.create_index(
        "ix_fee_schedule_analyses_organization_id", "fee_schedule_analyses", ["organization_id"]
    )
    op.create_index("ix_fee_schedule_analyses_cpt_code", "fee_schedule_analyses", ["cpt_code"])
    op.create_index("ix_fee_schedule_analyses_status", "fee_schedule_analyses", ["status"])

    op.create_table(
        "revenue_opportunities",
        *_base_columns(),
        sa.Column("organization_id", sa.String(64), nullable=False),
        sa.Column(
            "opportunity_type",
            _enum("opportunity_type", "service_mix", "coding", "contract"),
            nullable=False,
        ),
        sa.Column("category", sa.String(100), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("estimated_value", MONEY, nullable=False),
        sa.Column("confidence", sa.Integer(), nullable=False, server_default="50"),
        sa.Column("priority", _enum("opportunity_priority", *PRIORITY_VALUES), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=True),
        sa.Column("entity_id", sa.String(255), nullable=True),
        sa.Column("details", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column(
            "status",
            _enum("opportunity_status", "identified", "in_progress", "captured", "declined"),
            nullable=False,
            server_default="identified",
        ),
        sa.Column("captured_value", MONEY, nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_by", sa.String(255), nullable=True),
    )
    op.create_index(
        "ix_revenue_opportunities_organization_id", "revenue_opportunities", ["organization_id"]
    )
    op.create_index(
        "ix_revenue_opportunities_opportunity_type", "revenue_opportunities", ["opportunity_type"]
    )
    op.create_index("ix_revenue_opportunities_entity_id", "revenue_opportunities", ["entity_id"])
    op.create_index("ix_revenue_opportunities_status", "revenue_opportunities", ["status"])

    op.create_table(
        "optimization_actions",
        *_base_columns(),
        sa.Column("organization_id", sa.String(64), nullable=False),
        sa.Column(
            "action_type",
            _enum("action_type", "leakage_resolution", "fee_update", "opportunity_capture"),
            nullable=False,
        ),
        sa.Column("action", sa.Text(), nullable=False),
        sa.Column("source_type", sa.String(50), nullable=True),
        sa.Column("source_id", sa.String(255), nullable=True),
        sa.Column("projected_impact", MONEY, nullable=False, server_default="0"),
        sa.Column("actual_impact", MONEY, nullable=True),
        sa.Column(
            "status",
            _enum("action_status", "pending", "completed"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_by", sa.String(255), nullable=True),
    )
    op.create_index(
        "ix_optimization_actions_organization_id", "optimization_actions", ["organization_id"]
    )
    op.create_index("ix_optimization_actions_action_type", "optimization_actions", ["action_type"])

    op.create_table(
        "revenue_goals",
        *_base_columns(),
        sa.Column("organization_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column(
            "period_type",
            _enum("goal_period", "monthly", "quarterly", "annual"),
            nullable=False,
        ),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_end", sa.Date(), nullable=False),
        sa.Column("target_amount", MONEY, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index("ix_revenue_goals_organization_id", "revenue_goals", ["organization_id"])


def downgrade() -> None:
    for table in (
        "revenue_goals",
        "optimization_actions",
        "revenue_opportunities",
        "fee_schedule_analyses",
        "revenue_leakages",
        "appointments",
        "fee_schedule_items",
        "fee_schedules",
        "claim_lines",
        "claims",
        "charges",
        "encounters",
        "payers",
        "providers",
    ):
        op.drop_table(table)
