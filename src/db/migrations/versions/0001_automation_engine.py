"""automation engine schema

Revision ID: 0001_automation_engine
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_automation_engine"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(updated: bool = False) -> list:
    columns = [sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False)]
    if updated:
        columns.append(
            sa.Column("updated_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False)
        )
    return columns


def upgrade() -> None:
    automation_status_enum = sa.Enum("active", "paused", name="automation_status")
    run_status_enum = sa.Enum("running", "success", "failed", name="automation_run_status")
    node_log_status_enum = sa.Enum("success", "failed", name="automation_node_log_status")
    sent_status_enum = sa.Enum("pending", "sent", "delivered", "read", "failed", name="sent_message_status")

    op.create_table(
        "profiles",
        *_timestamps(updated=True),
        sa.Column("id", sa.UUID(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(), nullable=False),
        sa.Column("company_name", sa.String(), nullable=True),
        sa.Column("company_description", sa.Text(), nullable=True),
        sa.Column("meta_access_token", sa.Text(), nullable=True),
        sa.Column("meta_waba_id", sa.String(), nullable=True),
        sa.Column("meta_phone_number_id", sa.String(), nullable=True),
        sa.Column("webhook_path_prefix", sa.String(), nullable=True, unique=True),
    )
    op.create_index("ix_profiles_meta_phone_number_id", "profiles", ["meta_phone_number_id"])

    op.create_table(
        "contacts",
        *_timestamps(),
        sa.Column("id", sa.UUID(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.UUID(), sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("phone", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("company", sa.String(), nullable=True),
        sa.Column("tags", postgresql.ARRAY(sa.String()), nullable=False, server_default="{}"),
        sa.Column("custom_fields", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default="{}"),
        sa.UniqueConstraint("user_id", "phone", name="uq_contact_phone"),
    )

    op.create_table(
        "message_templates",
        *_timestamps(),
        sa.Column("id", sa.UUID(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.UUID(), sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("template_name", sa.String(), nullable=False),
        sa.Column("language", sa.String(), nullable=False, server_default="pt_BR"),
        sa.Column("category", sa.String(), nullable=False, server_default="MARKETING"),
        sa.Column("status", sa.String(), nullable=False, server_default="LOCAL"),
        sa.Column("meta_id", sa.String(), nullable=True),
        sa.Column("components", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default="[]"),
    )

    op.create_table(
        "automations",
        *_timestamps(updated=True),
        sa.Column("id", sa.UUID(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.UUID(), sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("status", automation_status_enum, nullable=False, server_default="active"),
        sa.Column("nodes", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default="[]"),
        sa.Column("edges", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default="[]"),
    )
    op.create_index("ix_automations_user_status", "automations", ["user_id", "status"])

    op.create_table(
        "automation_triggers",
        *_timestamps(),
        sa.Column("id", sa.UUID(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.UUID(), sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("automation_id", sa.UUID(), sa.ForeignKey("automations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("node_id", sa.String(), nullable=False),
        sa.Column("trigger_type", sa.String(), nullable=False),
        sa.Column("trigger_key", sa.String(), nullable=True),
        sa.UniqueConstraint("automation_id", "node_id", name="uq_automation_trigger_node"),
    )
    op.create_index(
        "ix_automation_triggers_lookup", "automation_triggers", ["user_id", "trigger_type", "trigger_key"]
    )

    op.create_table(
        "automation_runs",
        *_timestamps(),
        sa.Column("id", sa.UUID(), primary_key=True, nullable=False),
        sa.Column("automation_id", sa.UUID(), sa.ForeignKey("automations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("contact_id", sa.UUID(), sa.ForeignKey("contacts.id", ondelete="SET NULL"), nullable=True),
        sa.Column("status", run_status_enum, nullable=False),
        sa.Column("details", sa.Text(), nullable=True),
        sa.Column("run_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_automation_runs_automation_run_at", "automation_runs", ["automation_id", "run_at"])

    op.create_table(
        "automation_node_stats",
        *_timestamps(),
        sa.Column("automation_id", sa.UUID(), sa.ForeignKey("automations.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("node_id", sa.String(), primary_key=True),
        sa.Column("success_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_run_at", sa.TIMESTAMP(timezone=True), nullable=True),
    )

    op.create_table(
        "automation_node_logs",
        *_timestamps(),
        sa.Column("id", sa.UUID(), primary_key=True, nullable=False),
        sa.Column("run_id", sa.UUID(), sa.ForeignKey("automation_runs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("automation_id", sa.UUID(), sa.ForeignKey("automations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("node_id", sa.String(), nullable=False),
        sa.Column("status", node_log_status_enum, nullable=False),
        sa.Column("details", sa.Text(), nullable=True),
    )
    op.create_index("ix_automation_node_logs_run", "automation_node_logs", ["run_id"])

    op.create_table(
        "received_messages",
        *_timestamps(),
        sa.Column("id", sa.UUID(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.UUID(), sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("contact_id", sa.UUID(), sa.ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("meta_message_id", sa.String(), nullable=True, unique=True),
        sa.Column("message_body", sa.Text(), nullable=False),
    )

    op.create_table(
        "sent_messages",
        *_timestamps(),
        sa.Column("id", sa.UUID(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.UUID(), sa.ForeignKey("profiles.id"), nullable=False),
        sa.Column("contact_id", sa.UUID(), sa.ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "automation_run_id", sa.UUID(), sa.ForeignKey("automation_runs.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("meta_message_id", sa.String(), nullable=True),
        sa.Column("message_body", sa.Text(), nullable=False),
        sa.Column("status", sent_status_enum, nullable=False, server_default="sent"),
        sa.Column("delivered_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("read_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
    )
    op.create_index("ix_sent_messages_meta_message_id", "sent_messages", ["meta_message_id"])


def downgrade() -> None:
    op.drop_index("ix_sent_messages_meta_message_id", table_name="sent_messages")
    op.drop_table("sent_messages")
    op.drop_table("received_messages")
    op.drop_index("ix_automation_node_logs_run", table_name="automation_node_logs")
    op.drop_table("automation_node_logs")
    op.drop_table("automation_node_stats")
    op.drop_index("ix_automation_runs_automation_run_at", table_name="automation_runs")
    op.drop_table("automation_runs")
    op.drop_index("ix_automation_triggers_lookup", table_name="automation_triggers")
    op.drop_table("automation_triggers")
    op.drop_index("ix_automations_user_status", table_name="automations")
    op.drop_table("automations")
    op.drop_table("message_templates")
    op.drop_table("contacts")
    op.drop_index("ix_profiles_meta_phone_number_id", table_name="profiles")
    op.drop_table("profiles")
    for enum_name in (
        "sent_message_status",
        "automation_node_log_status",
        "automation_run_status",
        "automation_status",
    ):
        op.execute(f"DROP TYPE IF EXISTS {enum_name}")
