"""initial_crm_schema

Create users, custom field definitions/values, chain rules with their
value maps, and integration packages.

Revision ID: 5f1c2a9d7e10
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "5f1c2a9d7e10"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("username", sa.String(length=50), nullable=False),
            sa.Column("email", sa.String(length=100), nullable=False),
            sa.Column("password_hash", sa.String(length=255), nullable=False),
            sa.Column("first_name", sa.String(length=50), nullable=True),
            sa.Column("last_name", sa.String(length=50), nullable=True),
            sa.Column("role", sa.String(length=20), nullable=False, server_default="user"),
            sa.Column("is_active", sa.Boolean(), nullable=True, server_default=sa.true()),
            sa.Column("language", sa.String(length=5), nullable=True, server_default="en"),
            sa.Column("last_login", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("username"),
            sa.UniqueConstraint("email"),
        )
        op.create_index("ix_users_is_active", "users", ["is_active"])

    if "custom_field_definitions" not in existing_tables:
        op.create_table(
            "custom_field_definitions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("module", sa.String(length=20), nullable=False),
            sa.Column("field_name", sa.String(length=100), nullable=False),
            sa.Column("field_label", sa.String(length=255), nullable=False),
            sa.Column("field_type", sa.String(length=20), nullable=False, server_default="TEXT"),
            sa.Column("placeholder", sa.Text(), nullable=True),
            sa.Column("is_required", sa.Boolean(), nullable=True, server_default=sa.false()),
            sa.Column("is_read_only", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("options", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("module", "field_name", name="uq_cfd_module_field_name"),
        )
        op.create_index("ix_cfd_module", "custom_field_definitions", ["module"])

    if "custom_field_values" not in existing_tables:
        op.create_table(
            "custom_field_values",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("definition_id", sa.Integer(), nullable=False),
            sa.Column("record_id", sa.Integer(), nullable=False),
            sa.Column("module", sa.String(length=20), nullable=False),
            sa.Column("value", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(
                ["definition_id"], ["custom_field_definitions.id"], ondelete="CASCADE"
            ),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint(
                "definition_id", "record_id", "module", name="uq_cfv_definition_record"
            ),
        )
        op.create_index("ix_cfv_record_module", "custom_field_values", ["record_id", "module"])

    if "chain_rules" not in existing_tables:
        op.create_table(
            "chain_rules",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("rule_name", sa.String(length=255), nullable=False),
            sa.Column("module", sa.String(length=20), nullable=False),
            sa.Column("source_field_id", sa.Integer(), nullable=False),
            sa.Column("target_field_id", sa.Integer(), nullable=False),
            sa.Column(
                "comparison_operator", sa.String(length=20), nullable=False, server_default="equals"
            ),
            sa.Column("rule_type", sa.String(length=20), nullable=False, server_default="simple"),
            sa.Column("trigger_value", sa.Text(), nullable=True),
            sa.Column("target_value", sa.Text(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(
                ["source_field_id"], ["custom_field_definitions.id"], ondelete="CASCADE"
            ),
            sa.ForeignKeyConstraint(
                ["target_field_id"], ["custom_field_definitions.id"], ondelete="CASCADE"
            ),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("rule_name", "module", name="uq_chain_rule_name_module"),
        )
        op.create_index("ix_chain_rules_module_active", "chain_rules", ["module", "is_active"])
        op.create_index("ix_chain_rules_source_field", "chain_rules", ["source_field_id"])
        op.create_index("ix_chain_rules_target_field", "chain_rules", ["target_field_id"])

    if "chain_rule_value_maps" not in existing_tables:
        op.create_table(
            "chain_rule_value_maps",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("rule_id", sa.Integer(), nullable=False),
            sa.Column("trigger_value", sa.String(length=255), nullable=False),
            sa.Column("target_value", sa.String(length=255), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["rule_id"], ["chain_rules.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("rule_id", "trigger_value", name="uq_value_map_rule_trigger"),
        )
        op.create_index(
            "ix_chain_rule_value_maps_rule_id", "chain_rule_value_maps", ["rule_id"]
        )

    if "packages" not in existing_tables:
        op.create_table(
            "packages",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=50), nullable=False),
            sa.Column("display_name", sa.String(length=100), nullable=False),
            sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="inactive"),
            sa.Column("config", sa.JSON(), nullable=True),
            sa.Column("api_config", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("name"),
        )


def downgrade():
    op.drop_table("packages")
    op.drop_table("chain_rule_value_maps")
    op.drop_table("chain_rules")
    op.drop_table("custom_field_values")
    op.drop_table("custom_field_definitions")
    op.drop_table("users")
