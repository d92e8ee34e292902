from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# SQLite only autoincrements INTEGER primary keys; Postgres keeps BIGINT.
BigId = BigInteger().with_variant(Integer, "sqlite")
JsonDoc = JSON().with_variant(JSONB, "postgresql")


class Base(DeclarativeBase):
    pass


class Tenant(Base):
    __tablename__ = "tenants"

    # Canonical numeric id; every downstream component keys on this, never on slug.
    id: Mapped[int] = mapped_column(BigId, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    name: Mapped[str] = mapped_column(String)
    # active|cancelled; `active` mirrors soft-delete for quick filtering.
    status: Mapped[str] = mapped_column(String, default="active")
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    timezone: Mapped[str] = mapped_column(String, default="UTC")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigId, primary_key=True, autoincrement=True)
    # Null tenant marks a platform admin (global, not tenant-bound).
    tenant_id: Mapped[int | None] = mapped_column(ForeignKey("tenants.id"), nullable=True, index=True)
    email: Mapped[str] = mapped_column(String, index=True)
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    # Tenant role: operations|manager|admin.
    role: Mapped[str] = mapped_column(String, default="operations")
    user_type: Mapped[str | None] = mapped_column(String, nullable=True)
    platform_role: Mapped[str | None] = mapped_column(String, nullable=True)
    # active|inactive|suspended; re-read on every authentication.
    status: Mapped[str] = mapped_column(String, default="active")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Application(Base):
    __tablename__ = "applications"

    id: Mapped[int] = mapped_column(BigId, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String, unique=True, index=True)
    name: Mapped[str] = mapped_column(String)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class TenantApplication(Base):
    __tablename__ = "tenant_applications"
    __table_args__ = (
        UniqueConstraint("tenant_id", "application_id", name="uq_tenant_applications_tenant_app"),
    )

    # Tenant-level license for one application with seat accounting.
    id: Mapped[int] = mapped_column(BigId, primary_key=True, autoincrement=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id"), index=True)
    application_id: Mapped[int] = mapped_column(ForeignKey("applications.id"), index=True)
    # active|suspended|past_due|expired|cancelled
    status: Mapped[str] = mapped_column(String, default="active")
    seats_purchased: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    seats_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    trial_used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    activated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class UserApplicationAccess(Base):
    __tablename__ = "user_application_access"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "user_id", "application_id", name="uq_user_application_access_user_app"
        ),
    )

    # User-level entitlement inside an already-licensed application.
    id: Mapped[int] = mapped_column(BigId, primary_key=True, autoincrement=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id"), index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    application_id: Mapped[int] = mapped_column(ForeignKey("applications.id"), index=True)
    role_in_app: Mapped[str] = mapped_column(String, default="operations")
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    granted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class AuditEvent(Base):
    __tablename__ = "audit_events"

    # Use a monotonic numeric id for efficient pagination and ordering.
    id: Mapped[int] = mapped_column(BigId, primary_key=True, autoincrement=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    # Allow null tenant_id for pre-resolution or platform events.
    tenant_id: Mapped[int | None] = mapped_column(BigInteger, index=True, nullable=True)
    actor_type: Mapped[str] = mapped_column(String)
    actor_id: Mapped[str | None] = mapped_column(String, nullable=True)
    actor_role: Mapped[str | None] = mapped_column(String, nullable=True)
    # Stable taxonomy such as access.decision or usage.recorded.
    event_type: Mapped[str] = mapped_column(String, index=True)
    outcome: Mapped[str] = mapped_column(String)
    resource_type: Mapped[str | None] = mapped_column(String, nullable=True)
    resource_id: Mapped[str | None] = mapped_column(String, nullable=True)
    request_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    ip_address: Mapped[str | None] = mapped_column(String, nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String, nullable=True)
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column(JsonDoc, default=dict)
    # Reason code from the closed error vocabulary when the outcome is a denial.
    error_code: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class TranscriptionPlan(Base):
    __tablename__ = "transcription_plans"

    id: Mapped[int] = mapped_column(BigId, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String, unique=True, index=True)
    name: Mapped[str] = mapped_column(String)
    monthly_minutes_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    allows_custom_limits: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    allows_overage: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    cost_per_minute: Mapped[Decimal] = mapped_column(Numeric(10, 6), default=Decimal("0.0043"))
    is_trial: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    trial_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class TenantTranscriptionConfig(Base):
    __tablename__ = "tenant_transcription_config"

    # One row per tenant; plan_activated_at resets whenever plan_id changes.
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id"), primary_key=True)
    plan_id: Mapped[int] = mapped_column(ForeignKey("transcription_plans.id"), index=True)
    custom_monthly_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    overage_allowed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    plan_activated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class TranscriptionUsage(Base):
    __tablename__ = "tenant_transcription_usage"
    __table_args__ = (
        Index("ix_tenant_transcription_usage_tenant_date", "tenant_id", "usage_date"),
    )

    # Append-only usage ledger aggregated per calendar month.
    id: Mapped[int] = mapped_column(BigId, primary_key=True, autoincrement=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id"), index=True)
    operation_id: Mapped[str | None] = mapped_column(String, nullable=True)
    audio_duration_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    stt_model: Mapped[str] = mapped_column(String, default="nova-3")
    cost_usd: Mapped[Decimal] = mapped_column(Numeric(12, 4), default=Decimal("0"))
    usage_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    # Unique so redelivered provider callbacks cannot double-count.
    provider_request_id: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class JobExecution(Base):
    __tablename__ = "job_executions"

    # Track scheduled job runs for operator visibility.
    id: Mapped[int] = mapped_column(BigId, primary_key=True, autoincrement=True)
    job_name: Mapped[str] = mapped_column(String, index=True)
    status: Mapped[str] = mapped_column(String)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    stats_json: Mapped[dict[str, Any] | None] = mapped_column(JsonDoc, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
