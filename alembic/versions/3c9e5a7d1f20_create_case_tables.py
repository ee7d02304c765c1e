"""create case tables

Revision ID: 3c9e5a7d1f20
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "3c9e5a7d1f20"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _case_fk() -> sa.Column:
    return sa.Column("case_id", sa.String(length=36), sa.ForeignKey("cases.id", ondelete="CASCADE"), nullable=False)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=True),
        sa.Column("role", sa.String(length=40), nullable=True),
        sa.Column("department", sa.String(length=40), nullable=True),
        sa.Column("supervisor_id", sa.String(length=36), nullable=True),
        sa.Column("banned", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_index("ix_users_department", "users", ["department"], unique=False)
    op.create_index("ix_users_supervisor_id", "users", ["supervisor_id"], unique=False)

    amount = sa.Numeric(14, 2)
    op.create_table(
        "cases",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("case_type", sa.String(length=30), nullable=False),
        sa.Column("case_level", sa.String(length=4), nullable=False),
        sa.Column("case_category", sa.String(length=30), nullable=False, server_default="work_injury"),
        sa.Column("province", sa.String(length=60), nullable=True),
        sa.Column("city", sa.String(length=60), nullable=True),
        sa.Column("target_amount", amount, nullable=True),
        sa.Column("agency_fee_estimate", amount, nullable=True),
        sa.Column("estimated_collection", amount, nullable=True),
        sa.Column("monthly_salary", amount, nullable=True),
        sa.Column("sales_commission", amount, nullable=True),
        sa.Column("handling_fee", amount, nullable=True),
        sa.Column("data_source", sa.String(length=120), nullable=True),
        sa.Column("has_contract", sa.Boolean(), nullable=True),
        sa.Column("contract_date", sa.Date(), nullable=True),
        sa.Column("clue_date", sa.Date(), nullable=True),
        sa.Column("has_social_security", sa.Boolean(), nullable=True),
        sa.Column("entry_date", sa.Date(), nullable=True),
        sa.Column("injury_location", sa.String(length=200), nullable=True),
        sa.Column("injury_severity", sa.String(length=200), nullable=True),
        sa.Column("injury_cause", sa.Text(), nullable=True),
        sa.Column("work_injury_certified", sa.Boolean(), nullable=True),
        sa.Column("appraisal_level", sa.String(length=60), nullable=True),
        sa.Column("appraisal_estimate", sa.String(length=60), nullable=True),
        sa.Column("existing_evidence", sa.Text(), nullable=True),
        sa.Column("customer_cooperative", sa.Boolean(), nullable=True),
        sa.Column("witness_cooperative", sa.Boolean(), nullable=True),
        sa.Column("remark", sa.Text(), nullable=True),
        sa.Column("contract_form", sa.String(length=20), nullable=True),
        sa.Column("insurance_types", sa.JSON(), nullable=True),
        sa.Column("department", sa.String(length=40), nullable=True),
        sa.Column("assigned_sale_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("assigned_lawyer_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("assigned_assistant_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("case_status", sa.String(length=20), nullable=False, server_default="open"),
        sa.Column("closed_reason", sa.Text(), nullable=True),
        sa.Column("void_reason", sa.Text(), nullable=True),
        sa.Column("creator_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("updater_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_cases_department", "cases", ["department"], unique=False)
    op.create_index("ix_cases_assigned_lawyer_id", "cases", ["assigned_lawyer_id"], unique=False)
    op.create_index("ix_cases_assigned_assistant_id", "cases", ["assigned_assistant_id"], unique=False)
    op.create_index("ix_cases_assigned_sale_id", "cases", ["assigned_sale_id"], unique=False)
    op.create_index("ix_cases_updated_at", "cases", ["updated_at"], unique=False)

    op.create_table(
        "case_participants",
        sa.Column("id", sa.String(length=36), nullable=False),
        _case_fk(),
        sa.Column("role", sa.String(length=20), nullable=False),
        sa.Column("entity_type", sa.String(length=20), nullable=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("id_number", sa.String(length=60), nullable=True),
        sa.Column("phone", sa.String(length=40), nullable=True),
        sa.Column("address", sa.String(length=300), nullable=True),
        sa.Column("is_dishonest", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_case_participants_case_id", "case_participants", ["case_id"], unique=False)

    op.create_table(
        "case_collections",
        sa.Column("id", sa.String(length=36), nullable=False),
        _case_fk(),
        sa.Column("amount", amount, nullable=False),
        sa.Column("received_at", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_case_collections_case_id", "case_collections", ["case_id"], unique=False)

    op.create_table(
        "case_timeline",
        sa.Column("id", sa.String(length=36), nullable=False),
        _case_fk(),
        sa.Column("occurred_on", sa.Date(), nullable=False),
        sa.Column("follower_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("note", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_case_timeline_case_id", "case_timeline", ["case_id"], unique=False)

    op.create_table(
        "case_time_nodes",
        sa.Column("id", sa.String(length=36), nullable=False),
        _case_fk(),
        sa.Column("node_type", sa.String(length=60), nullable=False),
        sa.Column("occurred_on", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_case_time_nodes_case_id", "case_time_nodes", ["case_id"], unique=False)

    op.create_table(
        "case_hearings",
        sa.Column("id", sa.String(length=36), nullable=False),
        _case_fk(),
        sa.Column("trial_lawyer_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("hearing_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("hearing_location", sa.String(length=200), nullable=True),
        sa.Column("tribunal", sa.String(length=200), nullable=True),
        sa.Column("judge", sa.String(length=120), nullable=True),
        sa.Column("case_number", sa.String(length=120), nullable=True),
        sa.Column("contact_phone", sa.String(length=40), nullable=True),
        sa.Column("trial_stage", sa.String(length=30), nullable=True),
        sa.Column("hearing_result", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_case_hearings_case_id", "case_hearings", ["case_id"], unique=False)
    op.create_index("ix_case_hearings_trial_lawyer_id", "case_hearings", ["trial_lawyer_id"], unique=False)

    op.create_table(
        "case_change_logs",
        sa.Column("id", sa.String(length=36), nullable=False),
        _case_fk(),
        sa.Column("actor_id", sa.String(length=36), nullable=True),
        sa.Column("actor_name", sa.String(length=120), nullable=True),
        sa.Column("actor_role", sa.String(length=40), nullable=True),
        sa.Column("action", sa.String(length=40), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("changes", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_case_change_logs_case_created", "case_change_logs", ["case_id", "created_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_case_change_logs_case_created", table_name="case_change_logs")
    op.drop_table("case_change_logs")
    op.drop_index("ix_case_hearings_trial_lawyer_id", table_name="case_hearings")
    op.drop_index("ix_case_hearings_case_id", table_name="case_hearings")
    op.drop_table("case_hearings")
    op.drop_index("ix_case_time_nodes_case_id", table_name="case_time_nodes")
    op.drop_table("case_time_nodes")
    op.drop_index("ix_case_timeline_case_id", table_name="case_timeline")
    op.drop_table("case_timeline")
    op.drop_index("ix_case_collections_case_id", table_name="case_collections")
    op.drop_table("case_collections")
    op.drop_index("ix_case_participants_case_id", table_name="case_participants")
    op.drop_table("case_participants")
    for index_name in (
        "ix_cases_updated_at",
        "ix_cases_assigned_sale_id",
        "ix_cases_assigned_assistant_id",
        "ix_cases_assigned_lawyer_id",
        "ix_cases_department",
    ):
        op.drop_index(index_name, table_name="cases")
    op.drop_table("cases")
    op.drop_index("ix_users_supervisor_id", table_name="users")
    op.drop_index("ix_users_department", table_name="users")
    op.drop_table("users")
