"""Create SHA claims, invoices, batches, submissions, audit and workflow tables.

Revision ID: 20251102_001
Revises:
Create Date: 2025-11-02
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# Revision identifiers
revision = "20251102_001"
down_revision = None
branch_labels = None
depends_on = None


def _id() -> sa.Column:
    return sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
    ]


def _fk(name: str, target: str, ondelete: str, nullable: bool = False, **kwargs) -> sa.Column:
    return sa.Column(
        name,
        postgresql.UUID(as_uuid=True),
        sa.ForeignKey(target, ondelete=ondelete),
        nullable=nullable,
        **kwargs,
    )


def upgrade() -> None:
    """Create all SHA workflow tables in foreign-key order."""

    # NOTE: Status columns are plain strings; the Python models validate
    # them as non-native enums.

    op.create_table(
        "sha_claim_batches",
        _id(),
        sa.Column("batch_number", sa.String(50), nullable=False, unique=True, index=True),
        sa.Column("batch_date", sa.Date, nullable=False, index=True),
        sa.Column("batch_type", sa.String(32), nullable=False),
        sa.Column("total_claims", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_amount", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("status", sa.String(32), nullable=False, server_default="draft", index=True),
        sa.Column("sha_batch_reference", sa.String(100), nullable=True),
        sa.Column("submission_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("invoices_printed", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("printed_by", sa.String(100), nullable=True),
        sa.Column("printed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(100), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "claims",
        _id(),
        sa.Column("claim_number", sa.String(50), nullable=False, unique=True, index=True),
        # Encounter references
        sa.Column("patient_id", postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("visit_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("op_number", sa.String(50), nullable=False, index=True),
        sa.Column("member_number", sa.String(50), nullable=True),
        sa.Column("patient_name", sa.String(255), nullable=True),
        sa.Column("visit_date", sa.Date, nullable=False),
        # Diagnosis
        sa.Column("primary_diagnosis_code", sa.String(20), nullable=False),
        sa.Column("primary_diagnosis_description", sa.String(500), nullable=False),
        sa.Column(
            "secondary_diagnosis_codes",
            postgresql.JSONB,
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column(
            "secondary_diagnosis_descriptions",
            postgresql.JSONB,
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("provider_code", sa.String(50), nullable=False),
        # Financials
        sa.Column("claim_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("approved_amount", sa.Numeric(12, 2), nullable=True),
        # Status
        sa.Column(
            "status", sa.String(32), nullable=False, server_default="ready_to_submit", index=True
        ),
        sa.Column("compliance_status", sa.String(32), nullable=False, server_default="pending"),
        sa.Column("submission_round", sa.Integer, nullable=False, server_default="1"),
        _fk("batch_id", "sha_claim_batches.id", "SET NULL", nullable=True, index=True),
        # Insurer outcome
        sa.Column("sha_reference", sa.String(100), nullable=True, index=True),
        sa.Column("submission_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approval_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text, nullable=True),
        sa.Column("created_by", sa.String(100), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_claims_status_batch", "claims", ["status", "batch_id"])
    op.create_index("ix_claims_status_created", "claims", ["status", "created_at"])

    op.create_table(
        "claim_items",
        _id(),
        _fk("claim_id", "claims.id", "CASCADE", index=True),
        sa.Column("line_number", sa.Integer, nullable=False),
        sa.Column("service_type", sa.String(32), nullable=False, server_default="other"),
        sa.Column("service_code", sa.String(50), nullable=False),
        sa.Column("description", sa.String(500), nullable=False),
        sa.Column("quantity", sa.Integer, nullable=False, server_default="1"),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("provided_by", sa.String(100), nullable=True),
        sa.Column("department", sa.String(100), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "sha_invoices",
        _id(),
        sa.Column("invoice_number", sa.String(50), nullable=False, unique=True, index=True),
        _fk("claim_id", "claims.id", "RESTRICT", index=True),
        sa.Column("submission_round", sa.Integer, nullable=False, server_default="1"),
        sa.Column("patient_id", postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("invoice_date", sa.Date, nullable=False, index=True),
        sa.Column("due_date", sa.Date, nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column(
            "status", sa.String(32), nullable=False, server_default="generated", index=True
        ),
        sa.Column("compliance_status", sa.String(32), nullable=False, server_default="pending"),
        sa.Column("generated_by", sa.String(100), nullable=False),
        sa.Column("generated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("printed_by", sa.String(100), nullable=True),
        sa.Column("printed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("print_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("submitted_by", sa.String(100), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sha_reference", sa.String(100), nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("claim_id", "submission_round", name="uq_sha_invoices_claim_round"),
    )

    op.create_table(
        "sha_submission_logs",
        _id(),
        _fk("claim_id", "claims.id", "RESTRICT", nullable=True, index=True),
        _fk("batch_id", "sha_claim_batches.id", "SET NULL", nullable=True, index=True),
        _fk("invoice_id", "sha_invoices.id", "RESTRICT", nullable=True),
        sa.Column("submission_type", sa.String(32), nullable=False),
        sa.Column("request_payload", postgresql.JSONB, nullable=False),
        sa.Column("response_payload", postgresql.JSONB, nullable=True),
        sa.Column("response_status_code", sa.Integer, nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="pending", index=True),
        sa.Column("retry_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "ix_sha_submission_logs_status_created",
        "sha_submission_logs",
        ["status", "created_at"],
    )

    op.create_table(
        "sha_audit_trail",
        _id(),
        _fk("claim_id", "claims.id", "RESTRICT", index=True),
        _fk("invoice_id", "sha_invoices.id", "RESTRICT", nullable=True, index=True),
        sa.Column("action", sa.String(64), nullable=False, index=True),
        sa.Column("performed_by", sa.String(100), nullable=False),
        sa.Column(
            "performed_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            index=True,
        ),
        sa.Column(
            "details", postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")
        ),
        sa.Column("compliance_check", sa.Boolean, nullable=False, server_default="false"),
    )
    op.create_index(
        "ix_sha_audit_trail_claim_performed", "sha_audit_trail", ["claim_id", "performed_at"]
    )

    op.create_table(
        "sha_document_attachments",
        _id(),
        _fk("claim_id", "claims.id", "CASCADE", index=True),
        sa.Column("document_type", sa.String(50), nullable=False),
        sa.Column("file_name", sa.String(255), nullable=False),
        sa.Column("is_required", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("compliance_verified", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("verified_by", sa.String(100), nullable=True),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("uploaded_by", sa.String(100), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "sha_workflow_instances",
        _id(),
        _fk("claim_id", "claims.id", "RESTRICT", unique=True, index=True),
        _fk("invoice_id", "sha_invoices.id", "SET NULL", nullable=True),
        sa.Column(
            "workflow_type", sa.String(50), nullable=False, server_default="SHA_CLAIM_PROCESSING"
        ),
        sa.Column("current_step", sa.String(50), nullable=True),
        sa.Column(
            "overall_status",
            sa.String(32),
            nullable=False,
            server_default="not_started",
            index=True,
        ),
        sa.Column("initiated_by", sa.String(100), nullable=False),
        sa.Column("completed_by", sa.String(100), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "sha_workflow_steps",
        _id(),
        _fk("workflow_id", "sha_workflow_instances.id", "CASCADE", index=True),
        sa.Column("step_name", sa.String(50), nullable=False),
        sa.Column("step_order", sa.Integer, nullable=False),
        sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
        sa.Column("required", sa.Boolean, nullable=False, server_default="true"),
        sa.Column("automated", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("estimated_duration_minutes", sa.Integer, nullable=True),
        sa.Column("actual_duration_minutes", sa.Integer, nullable=True),
        sa.Column("assigned_to", sa.String(100), nullable=True),
        sa.Column("completed_by", sa.String(100), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "prerequisites", postgresql.JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")
        ),
        sa.Column(
            "next_steps", postgresql.JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")
        ),
        sa.Column("notes", sa.Text, nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("workflow_id", "step_name", name="uq_sha_workflow_steps_name"),
    )

    op.create_table(
        "sha_workflow_activity_log",
        _id(),
        _fk("workflow_id", "sha_workflow_instances.id", "CASCADE", index=True),
        sa.Column("step_name", sa.String(50), nullable=True),
        sa.Column("action", sa.String(32), nullable=False),
        sa.Column("performed_by", sa.String(100), nullable=False),
        sa.Column(
            "performed_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            index=True,
        ),
        sa.Column(
            "details", postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")
        ),
    )

    op.create_table(
        "sha_payment_tracking",
        _id(),
        _fk("claim_id", "claims.id", "RESTRICT", unique=True),
        _fk("invoice_id", "sha_invoices.id", "SET NULL", nullable=True),
        sa.Column("tracking_started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("auto_check_enabled", sa.Boolean, nullable=False, server_default="true"),
        sa.Column("next_check_at", sa.DateTime(timezone=True), nullable=True, index=True),
        sa.Column("last_checked_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )


def downgrade() -> None:
    """Drop all SHA workflow tables in reverse foreign-key order."""
    op.drop_table("sha_payment_tracking")
    op.drop_table("sha_workflow_activity_log")
    op.drop_table("sha_workflow_steps")
    op.drop_table("sha_workflow_instances")
    op.drop_table("sha_document_attachments")
    op.drop_index("ix_sha_audit_trail_claim_performed", table_name="sha_audit_trail")
    op.drop_table("sha_audit_trail")
    op.drop_index("ix_sha_submission_logs_status_created", table_name="sha_submission_logs")
    op.drop_table("sha_submission_logs")
    op.drop_table("sha_invoices")
    op.drop_table("claim_items")
    op.drop_index("ix_claims_status_created", table_name="claims")
    op.drop_index("ix_claims_status_batch", table_name="claims")
    op.drop_table("claims")
    op.drop_table("sha_claim_batches")
