"""initial foodshare schema

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610190001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "events",
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("table_name", sa.String(), nullable=False),
        sa.Column("op", sa.String(), nullable=False),
        sa.Column("entity_id", sa.String(), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("event_id"),
    )
    op.create_index("ix_events_table_name", "events", ["table_name"])
    op.create_index("ix_events_op", "events", ["op"])
    op.create_index("ix_events_entity_id", "events", ["entity_id"])
    op.create_index("ix_events_ts", "events", ["ts"])
    op.create_index("ix_events_actor_id", "events", ["actor_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("role", sa.String(), nullable=True),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("resource", sa.String(), nullable=False),
        sa.Column("method", sa.String(), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("detail", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"])
    op.create_index("ix_audit_logs_role", "audit_logs", ["role"])
    op.create_index("ix_audit_logs_ts", "audit_logs", ["ts"])

    op.create_table(
        "users",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("password_hash", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"])
    op.create_index("ix_users_created_at", "users", ["created_at"])

    op.create_table(
        "hotels",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("street", sa.String(), nullable=False),
        sa.Column("city", sa.String(), nullable=False),
        sa.Column("landmark", sa.String(), nullable=True),
        sa.Column("contact", sa.String(), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("image_url", sa.String(), nullable=True),
        sa.Column("rating", sa.Float(), nullable=True),
        sa.Column("total_food_saved", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_hotels_user_id", "hotels", ["user_id"], unique=True)
    op.create_index("ix_hotels_name", "hotels", ["name"])
    op.create_index("ix_hotels_city", "hotels", ["city"])
    op.create_index("ix_hotels_created_at", "hotels", ["created_at"])

    op.create_table(
        "delivery_agents",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("unique_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("contact", sa.String(), nullable=False),
        sa.Column("zone", sa.String(), nullable=False),
        sa.Column("area", sa.String(), nullable=False),
        sa.Column("date_of_birth", sa.Date(), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("total_deliveries", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rating", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_delivery_agents_user_id", "delivery_agents", ["user_id"], unique=True)
    op.create_index("ix_delivery_agents_unique_id", "delivery_agents", ["unique_id"], unique=True)
    op.create_index("ix_delivery_agents_zone", "delivery_agents", ["zone"])
    op.create_index("ix_delivery_agents_is_active", "delivery_agents", ["is_active"])
    op.create_index("ix_delivery_agents_created_at", "delivery_agents", ["created_at"])

    op.create_table(
        "needy_persons",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("contact", sa.String(), nullable=True),
        sa.Column("street", sa.String(), nullable=False),
        sa.Column("city", sa.String(), nullable=False),
        sa.Column("landmark", sa.String(), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("preferred_food_time", sa.String(), nullable=True),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("registered_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_needy_persons_city", "needy_persons", ["city"])
    op.create_index("ix_needy_persons_registered_by", "needy_persons", ["registered_by"])
    op.create_index("ix_needy_persons_created_at", "needy_persons", ["created_at"])

    op.create_table(
        "food_reports",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("hotel_id", sa.String(), nullable=False),
        sa.Column("food_name", sa.String(), nullable=False),
        sa.Column("food_type", sa.String(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("pickup_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expiry_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("image_url", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("assigned_agent_id", sa.String(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["hotel_id"], ["hotels.id"]),
        sa.ForeignKeyConstraint(["assigned_agent_id"], ["delivery_agents.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_food_reports_hotel_id", "food_reports", ["hotel_id"])
    op.create_index("ix_food_reports_pickup_time", "food_reports", ["pickup_time"])
    op.create_index("ix_food_reports_expiry_time", "food_reports", ["expiry_time"])
    op.create_index("ix_food_reports_status", "food_reports", ["status"])
    op.create_index("ix_food_reports_assigned_agent_id", "food_reports", ["assigned_agent_id"])
    op.create_index("ix_food_reports_created_at", "food_reports", ["created_at"])
    op.create_index("ix_food_reports_updated_at", "food_reports", ["updated_at"])
    op.create_index("ix_food_reports_status_agent", "food_reports", ["status", "assigned_agent_id"])

    op.create_table(
        "distribution_records",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("food_report_id", sa.String(), nullable=False),
        sa.Column("agent_id", sa.String(), nullable=False),
        sa.Column("needy_person_id", sa.String(), nullable=False),
        sa.Column("quantity_distributed", sa.Integer(), nullable=False),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("distributed_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["food_report_id"], ["food_reports.id"]),
        sa.ForeignKeyConstraint(["agent_id"], ["delivery_agents.id"]),
        sa.ForeignKeyConstraint(["needy_person_id"], ["needy_persons.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_distribution_records_food_report_id", "distribution_records", ["food_report_id"])
    op.create_index("ix_distribution_records_agent_id", "distribution_records", ["agent_id"])
    op.create_index("ix_distribution_records_needy_person_id", "distribution_records", ["needy_person_id"])
    op.create_index("ix_distribution_records_distributed_at", "distribution_records", ["distributed_at"])


def downgrade() -> None:
    op.drop_table("distribution_records")
    op.drop_table("food_reports")
    op.drop_table("needy_persons")
    op.drop_table("delivery_agents")
    op.drop_table("hotels")
    op.drop_table("users")
    op.drop_table("audit_logs")
    op.drop_table("events")
