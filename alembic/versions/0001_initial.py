"""Initial schema: check stores, archived images and terminal outcome claims

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19

"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "0001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_CHECK_TABLES = ("audited_checks", "parsed_checks", "rejected_checks", "processed_checks")


def _check_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("file_name", sa.String(length=1024), nullable=False),
        sa.Column("email", sa.String(length=512), nullable=False),
        sa.Column("to_account", sa.String(length=64), nullable=False),
        sa.Column("from_account", sa.String(length=64), nullable=True),
        sa.Column("routing_number", sa.String(length=16), nullable=True),
        sa.Column("amount", sa.String(length=32), nullable=False),
        sa.Column("timestamp", sa.BigInteger(), nullable=False),
        sa.Column("content_type", sa.String(length=128), nullable=True),
        sa.Column("attachment_name", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    for table in _CHECK_TABLES:
        extra = [sa.Column("attachment", sa.LargeBinary(), nullable=False)] if table == "audited_checks" else []
        op.create_table(
            table,
            *_check_columns(),
            *extra,
            sa.PrimaryKeyConstraint("id"),
        )

    op.create_table(
        "archived_images",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("record_id", sa.String(length=36), nullable=False),
        sa.Column("file_name", sa.String(length=1024), nullable=False),
        sa.Column("attachment_name", sa.String(length=64), nullable=False),
        sa.Column("content_type", sa.String(length=128), nullable=True),
        sa.Column("width", sa.Integer(), nullable=False),
        sa.Column("data", sa.LargeBinary(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_archived_images_record_id", "archived_images", ["record_id"])

    op.create_table(
        "terminal_checks",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("store", sa.String(length=16), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )


def downgrade() -> None:
    op.drop_table("terminal_checks")
    op.drop_index("ix_archived_images_record_id", table_name="archived_images")
    op.drop_table("archived_images")
    for table in reversed(_CHECK_TABLES):
        op.drop_table(table)
