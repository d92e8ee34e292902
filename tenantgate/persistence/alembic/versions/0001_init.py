"""init tenancy, licensing, audit and transcription tables

Revision ID: 0001_init
Revises:
Create Date: 2026-10-17
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Tenant registry and principals live in the shared public schema.
    op.create_table(
        "tenants",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("slug", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="active"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("timezone", sa.String(), nullable=False, server_default="UTC"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_tenants_slug", "tenants", ["slug"], unique=True)

    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.BigInteger(), sa.ForeignKey("tenants.id"), nullable=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("role", sa.String(), nullable=False, server_default="operations"),
        sa.Column("user_type", sa.String(), nullable=True),
        sa.Column("platform_role", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_users_tenant_id", "users", ["tenant_id"], unique=False)
    op.create_index("ix_users_email", "users", ["email"], unique=False)

    op.create_table(
        "applications",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("slug", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index("ix_applications_slug", "applications", ["slug"], unique=True)

    # Tenant licenses with seat accounting.
    op.create_table(
        "tenant_applications",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.BigInteger(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("application_id", sa.BigInteger(), sa.ForeignKey("applications.id"), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="active"),
        sa.Column("seats_purchased", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("seats_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("trial_used", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("activated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("tenant_id", "application_id", name="uq_tenant_applications_tenant_app"),
        sa.CheckConstraint("seats_used >= 0", name="ck_tenant_applications_seats_used_nonneg"),
    )
    op.create_index("ix_tenant_applications_tenant_id", "tenant_applications", ["tenant_id"], unique=False)
    op.create_index(
        "ix_tenant_applications_application_id", "tenant_applications", ["application_id"], unique=False
    )

    # Per-user entitlements inside a licensed application.
    op.create_table(
        "user_application_access",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.BigInteger(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("application_id", sa.BigInteger(), sa.ForeignKey("applications.id"), nullable=False),
        sa.Column("role_in_app", sa.String(), nullable=False, server_default="operations"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("granted_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "tenant_id", "user_id", "application_id", name="uq_user_application_access_user_app"
        ),
    )
    op.create_index(
        "ix_user_application_access_tenant_id", "user_application_access", ["tenant_id"], unique=False
    )
    op.create_index("ix_user_application_access_user_id", "user_application_access", ["user_id"], unique=False)
    op.create_index(
        "ix_user_application_access_application_id",
        "user_application_access",
        ["application_id"],
        unique=False,
    )

    op.create_table(
        "audit_events",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("tenant_id", sa.BigInteger(), nullable=True),
        sa.Column("actor_type", sa.String(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("actor_role", sa.String(), nullable=True),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("outcome", sa.String(), nullable=False),
        sa.Column("resource_type", sa.String(), nullable=True),
        sa.Column("resource_id", sa.String(), nullable=True),
        sa.Column("request_id", sa.String(), nullable=True),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("user_agent", sa.String(), nullable=True),
        sa.Column("metadata_json", postgresql.JSONB(), nullable=True),
        sa.Column("error_code", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_audit_events_occurred_at", "audit_events", ["occurred_at"], unique=False)
    op.create_index("ix_audit_events_event_type", "audit_events", ["event_type"], unique=False)
    op.create_index("ix_audit_events_tenant_id", "audit_events", ["tenant_id"], unique=False)
    op.create_index("ix_audit_events_request_id", "audit_events", ["request_id"], unique=False)
    op.create_index(
        "ix_audit_events_tenant_occurred_at",
        "audit_events",
        ["tenant_id", sa.text("occurred_at DESC")],
        unique=False,
    )

    op.create_table(
        "transcription_plans",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("slug", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("monthly_minutes_limit", sa.Integer(), nullable=False),
        sa.Column("allows_custom_limits", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("allows_overage", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("cost_per_minute", sa.Numeric(10, 6), nullable=False, server_default="0.0043"),
        sa.Column("is_trial", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("trial_days", sa.Integer(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index("ix_transcription_plans_slug", "transcription_plans", ["slug"], unique=True)

    op.create_table(
        "tenant_transcription_config",
        sa.Column("tenant_id", sa.BigInteger(), sa.ForeignKey("tenants.id"), primary_key=True, nullable=False),
        sa.Column("plan_id", sa.BigInteger(), sa.ForeignKey("transcription_plans.id"), nullable=False),
        sa.Column("custom_monthly_limit", sa.Integer(), nullable=True),
        sa.Column("overage_allowed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("plan_activated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_tenant_transcription_config_plan_id", "tenant_transcription_config", ["plan_id"], unique=False
    )

    # Usage ledger; provider_request_id is the idempotency key for callbacks.
    op.create_table(
        "tenant_transcription_usage",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.BigInteger(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("operation_id", sa.String(), nullable=True),
        sa.Column("audio_duration_seconds", sa.Integer(), nullable=False),
        sa.Column("stt_model", sa.String(), nullable=False, server_default="nova-3"),
        sa.Column("cost_usd", sa.Numeric(12, 4), nullable=False, server_default="0"),
        sa.Column("usage_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("provider_request_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("provider_request_id", name="uq_tenant_transcription_usage_provider_request_id"),
    )
    op.create_index(
        "ix_tenant_transcription_usage_tenant_id", "tenant_transcription_usage", ["tenant_id"], unique=False
    )
    op.create_index(
        "ix_tenant_transcription_usage_usage_date", "tenant_transcription_usage", ["usage_date"], unique=False
    )
    op.create_index(
        "ix_tenant_transcription_usage_tenant_date",
        "tenant_transcription_usage",
        ["tenant_id", "usage_date"],
        unique=False,
    )

    op.create_table(
        "job_executions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("job_name", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("stats_json", postgresql.JSONB(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
    )
    op.create_index("ix_job_executions_job_name", "job_executions", ["job_name"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_job_executions_job_name", table_name="job_executions")
    op.drop_table("job_executions")
    op.drop_index("ix_tenant_transcription_usage_tenant_date", table_name="tenant_transcription_usage")
    op.drop_index("ix_tenant_transcription_usage_usage_date", table_name="tenant_transcription_usage")
    op.drop_index("ix_tenant_transcription_usage_tenant_id", table_name="tenant_transcription_usage")
    op.drop_table("tenant_transcription_usage")
    op.drop_index("ix_tenant_transcription_config_plan_id", table_name="tenant_transcription_config")
    op.drop_table("tenant_transcription_config")
    op.drop_index("ix_transcription_plans_slug", table_name="transcription_plans")
    op.drop_table("transcription_plans")
    op.drop_index("ix_audit_events_tenant_occurred_at", table_name="audit_events")
    op.drop_index("ix_audit_events_request_id", table_name="audit_events")
    op.drop_index("ix_audit_events_tenant_id", table_name="audit_events")
    op.drop_index("ix_audit_events_event_type", table_name="audit_events")
    op.drop_index("ix_audit_events_occurred_at", table_name="audit_events")
    op.drop_table("audit_events")
    op.drop_index("ix_user_application_access_application_id", table_name="user_application_access")
    op.drop_index("ix_user_application_access_user_id", table_name="user_application_access")
    op.drop_index("ix_user_application_access_tenant_id", table_name="user_application_access")
    op.drop_table("user_application_access")
    op.drop_index("ix_tenant_applications_application_id", table_name="tenant_applications")
    op.drop_index("ix_tenant_applications_tenant_id", table_name="tenant_applications")
    op.drop_table("tenant_applications")
    op.drop_index("ix_applications_slug", table_name="applications")
    op.drop_table("applications")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_index("ix_users_tenant_id", table_name="users")
    op.drop_table("users")
    op.drop_index("ix_tenants_slug", table_name="tenants")
    op.drop_table("tenants")
