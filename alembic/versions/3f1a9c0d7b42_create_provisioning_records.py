"""create provisioning_records

Revision ID: 3f1a9c0d7b42
Revises: 
Create Date: 2026-10-18 09:12:44.102318

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '3f1a9c0d7b42'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "provisioning_records",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("component", sa.String(32), nullable=False),
        sa.Column("tenant_id", sa.String(255), nullable=False),
        sa.Column("data", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("component", "tenant_id", name="uq_component_tenant"),
    )
    op.create_index("ix_provisioning_records_component", "provisioning_records", ["component"])
    op.create_index("ix_provisioning_records_tenant_id", "provisioning_records", ["tenant_id"])


def downgrade() -> None:
    op.drop_index("ix_provisioning_records_tenant_id", table_name="provisioning_records")
    op.drop_index("ix_provisioning_records_component", table_name="provisioning_records")
    op.drop_table("provisioning_records")
