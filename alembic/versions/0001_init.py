"""init

Revision ID: 0001_init
Revises: 
Create Date: 2026-10-18 00:00:00
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None

staff_role = postgresql.ENUM("agent", "admin", name="staff_role", create_type=False)
ticket_category = postgresql.ENUM(
    "account",
    "technical",
    "payment",
    "content",
    "trust_safety",
    "feature_request",
    "bug_report",
    "other",
    name="ticket_category",
    create_type=False,
)
ticket_status = postgresql.ENUM(
    "open",
    "in_progress",
    "waiting_customer",
    "resolved",
    "closed",
    name="ticket_status",
    create_type=False,
)
ticket_priority = postgresql.ENUM(
    "low", "medium", "high", "urgent", name="ticket_priority", create_type=False
)
agent_department = postgresql.ENUM(
    "general",
    "technical",
    "billing",
    "trust_safety",
    "content",
    "vip",
    name="agent_department",
    create_type=False,
)
assignment_type = postgresql.ENUM(
    "auto", "manual", "escalation", "transfer", name="assignment_type", create_type=False
)

ENUMS = (
    staff_role,
    ticket_category,
    ticket_status,
    ticket_priority,
    agent_department,
    assignment_type,
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for enum in ENUMS:
        enum.create(bind, checkfirst=True)

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(length=150), nullable=False),
        sa.Column("display_name", sa.String(length=255)),
        sa.Column("email", sa.String(length=255)),
        sa.Column("staff_role", staff_role),
        *_timestamps(),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)

    op.create_table(
        "support_tickets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("ticket_number", sa.String(length=32), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("name", sa.String(length=100)),
        sa.Column("email", sa.String(length=255)),
        sa.Column("category", ticket_category, nullable=False),
        sa.Column("subject", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("status", ticket_status, nullable=False, server_default="open"),
        sa.Column("priority", ticket_priority, nullable=False, server_default="medium"),
        sa.Column("attachments", postgresql.JSONB()),
        sa.Column("metadata", postgresql.JSONB()),
        sa.Column("resolved_at", sa.DateTime(timezone=True)),
        sa.Column("closed_at", sa.DateTime(timezone=True)),
        sa.Column("response_time_minutes", sa.Integer()),
        sa.Column("resolution_time_minutes", sa.Integer()),
        sa.Column("satisfaction", sa.Integer()),
        *_timestamps(),
        sa.CheckConstraint(
            "satisfaction IS NULL OR satisfaction BETWEEN 1 AND 5",
            name="ck_support_tickets_satisfaction",
        ),
    )
    op.create_index(
        "ix_support_tickets_ticket_number", "support_tickets", ["ticket_number"], unique=True
    )
    op.create_index("ix_support_tickets_user_id", "support_tickets", ["user_id"])
    op.create_index("ix_support_tickets_category", "support_tickets", ["category"])
    op.create_index("ix_support_tickets_status", "support_tickets", ["status"])
    op.create_index("ix_support_tickets_priority", "support_tickets", ["priority"])
    op.create_index(
        "ix_support_tickets_admin_filter",
        "support_tickets",
        ["status", "priority", "created_at"],
    )

    op.create_table(
        "ticket_responses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "ticket_id", sa.Integer(), sa.ForeignKey("support_tickets.id"), nullable=False
        ),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("is_internal", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("attachments", postgresql.JSONB()),
        sa.Column("metadata", postgresql.JSONB()),
        sa.Column(
            "notification_sent", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("notification_sent_at", sa.DateTime(timezone=True)),
        *_timestamps(),
    )
    op.create_index("ix_ticket_responses_ticket_id", "ticket_responses", ["ticket_id"])
    op.create_index("ix_ticket_responses_user_id", "ticket_responses", ["user_id"])
    op.create_index("ix_ticket_responses_is_internal", "ticket_responses", ["is_internal"])

    op.create_table(
        "agent_profiles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("department", agent_department, nullable=False, server_default="general"),
        sa.Column("specialties", postgresql.JSONB()),
        sa.Column("max_active_tickets", sa.Integer(), nullable=False, server_default="20"),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_assigned_at", sa.DateTime(timezone=True)),
        sa.Column("total_tickets_handled", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("avg_response_time", sa.Float(), nullable=False, server_default="0"),
        sa.Column("avg_resolution_time", sa.Float(), nullable=False, server_default="0"),
        sa.Column("rated_tickets", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("avg_satisfaction", sa.Float(), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
    )
    op.create_index("ix_agent_profiles_user_id", "agent_profiles", ["user_id"], unique=True)
    op.create_index("ix_agent_profiles_department", "agent_profiles", ["department"])
    op.create_index("ix_agent_profiles_is_available", "agent_profiles", ["is_available"])
    op.create_index(
        "ix_agent_profiles_last_assigned_at", "agent_profiles", ["last_assigned_at"]
    )

    op.create_table(
        "ticket_assignments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "ticket_id", sa.Integer(), sa.ForeignKey("support_tickets.id"), nullable=False
        ),
        sa.Column("assigned_to_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("assigned_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("assignment_type", assignment_type, nullable=False, server_default="manual"),
        sa.Column("previous_assignee_id", sa.Integer(), sa.ForeignKey("users.id")),
        sa.Column("reason", sa.Text()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        *_timestamps(),
    )
    op.create_index("ix_ticket_assignments_ticket_id", "ticket_assignments", ["ticket_id"])
    op.create_index(
        "uq_ticket_assignments_active",
        "ticket_assignments",
        ["ticket_id"],
        unique=True,
        postgresql_where=sa.text("is_active"),
    )
    op.create_index(
        "ix_ticket_assignments_assignee_active",
        "ticket_assignments",
        ["assigned_to_id", "is_active"],
    )

    op.create_table(
        "ticket_sequences",
        sa.Column("day", sa.Date(), primary_key=True),
        sa.Column("last_value", sa.Integer(), nullable=False, server_default="0"),
    )

    op.create_table(
        "app_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("level", sa.String(length=20)),
        sa.Column("event_type", sa.String(length=100)),
        sa.Column("message", sa.Text()),
        sa.Column("data", postgresql.JSONB()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_app_logs_level", "app_logs", ["level"])
    op.create_index("ix_app_logs_event_type", "app_logs", ["event_type"])
    op.create_index("ix_app_logs_created_at", "app_logs", ["created_at"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("actor_id", sa.Integer(), sa.ForeignKey("users.id")),
        sa.Column("entity", sa.String(length=100)),
        sa.Column("entity_id", sa.Integer()),
        sa.Column("action", sa.String(length=20)),
        sa.Column("before_json", postgresql.JSONB()),
        sa.Column("after_json", postgresql.JSONB()),
        sa.Column("ip", sa.String(length=64)),
        sa.Column("user_agent", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("app_logs")
    op.drop_table("ticket_sequences")
    op.drop_table("ticket_assignments")
    op.drop_table("agent_profiles")
    op.drop_table("ticket_responses")
    op.drop_table("support_tickets")
    op.drop_table("users")
    bind = op.get_bind()
    for enum in reversed(ENUMS):
        enum.drop(bind, checkfirst=True)
