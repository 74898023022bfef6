"""Metadata store tables: sobjects, fields, validation_rules, relationships.

Revision ID: 001_metadata_tables
Revises:
Create Date: 2026-10-18

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_metadata_tables"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _updated_at() -> sa.Column:
    return sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True)


def upgrade() -> None:
    op.create_table(
        "sobjects",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), unique=True, nullable=False),
        sa.Column("label", sa.String(255), nullable=False),
        sa.Column("label_plural", sa.String(255), nullable=True),
        sa.Column("key_prefix", sa.String(3), nullable=True),
        sa.Column("is_custom", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("is_queryable", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("is_createable", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("is_updateable", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("is_deletable", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("is_searchable", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "fields",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "sobject_id",
            sa.Integer(),
            sa.ForeignKey("sobjects.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("label", sa.String(255), nullable=False),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("length", sa.Integer(), nullable=True),
        sa.Column("precision", sa.Integer(), nullable=True),
        sa.Column("scale", sa.Integer(), nullable=True),
        sa.Column("is_nillable", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("is_unique", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("is_external_id", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("is_auto_number", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("is_calculated", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("default_value", sa.Text(), nullable=True),
        sa.Column("picklist_values", sa.JSON(), nullable=True),
        sa.Column("reference_to", sa.JSON(), nullable=True),
        sa.Column("relationship_name", sa.String(255), nullable=True),
        sa.Column("help_text", sa.Text(), nullable=True),
        _updated_at(),
        sa.UniqueConstraint("sobject_id", "name", name="uq_field_sobject_name"),
    )
    op.create_index("ix_fields_sobject_id", "fields", ["sobject_id"])

    op.create_table(
        "validation_rules",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "sobject_id",
            sa.Integer(),
            sa.ForeignKey("sobjects.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("active", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=False),
        sa.Column("error_display_field", sa.String(255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        _updated_at(),
        sa.UniqueConstraint("sobject_id", "name", name="uq_validation_rule_sobject_name"),
    )
    op.create_index("ix_validation_rules_sobject_id", "validation_rules", ["sobject_id"])
    op.create_index("ix_validation_rules_active", "validation_rules", ["active"])

    op.create_table(
        "relationships",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "from_sobject_id",
            sa.Integer(),
            sa.ForeignKey("sobjects.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("to_sobject", sa.String(255), nullable=False),
        sa.Column("field_name", sa.String(255), nullable=False),
        sa.Column("relationship_name", sa.String(255), nullable=False),
        sa.Column("relationship_type", sa.String(50), server_default="lookup", nullable=False),
        sa.Column("is_cascade_delete", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("is_restricted_delete", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("is_required", sa.Boolean(), server_default=sa.false(), nullable=False),
        _updated_at(),
        sa.UniqueConstraint("from_sobject_id", "field_name", name="uq_relationship_from_field"),
    )
    op.create_index("ix_relationships_from_sobject_id", "relationships", ["from_sobject_id"])
    op.create_index("ix_relationships_to_sobject", "relationships", ["to_sobject"])


def downgrade() -> None:
    op.drop_table("relationships")
    op.drop_table("validation_rules")
    op.drop_table("fields")
    op.drop_table("sobjects")
