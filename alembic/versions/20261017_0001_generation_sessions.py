"""Generation sessions - one snapshot row per conversation

Revision ID: 0001
Revises:
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    conn = op.get_bind()
    inspector = inspect(conn)

    if "generation_sessions" not in inspector.get_table_names():
        op.create_table(
            "generation_sessions",
            sa.Column("conversation_id", sa.String(length=128), primary_key=True),
            sa.Column("snapshot", sa.JSON(), nullable=False),
            sa.Column("phase", sa.String(length=32), nullable=False, server_default="initial"),
            sa.Column("active_artifact_id", sa.String(length=128), nullable=True),
            sa.Column("schema_version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        )
        op.create_index(
            "ix_generation_sessions_phase_updated",
            "generation_sessions",
            ["phase", "updated_at"],
        )


def downgrade() -> None:
    op.drop_index(
        "ix_generation_sessions_phase_updated",
        table_name="generation_sessions",
    )
    op.drop_table("generation_sessions")
