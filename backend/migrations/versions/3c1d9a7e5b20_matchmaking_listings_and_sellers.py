"""matchmaking listings and sellers

Revision ID: 3c1d9a7e5b20
Revises:
Create Date: 2026-03-02 09:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "3c1d9a7e5b20"
down_revision = None
branch_labels = None
depends_on = None


def _table_exists(bind, table_name: str) -> bool:
    try:
        return sa.inspect(bind).has_table(table_name)
    except Exception:
        return False


def _index_exists(bind, table_name: str, index_name: str) -> bool:
    try:
        indexes = sa.inspect(bind).get_indexes(table_name)
        return any((idx.get("name") or "") == index_name for idx in indexes)
    except Exception:
        return False


def upgrade():
    bind = op.get_bind()

    if not _table_exists(bind, "users"):
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=120), nullable=False, server_default=""),
            sa.Column("email", sa.String(length=255), nullable=True),
            sa.Column("verified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("account_status", sa.String(length=16), nullable=False, server_default="pending"),
            sa.Column("join_date", sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
    if not _index_exists(bind, "users", "ix_users_email"):
        op.create_index("ix_users_email", "users", ["email"], unique=True)

    if not _table_exists(bind, "listings"):
        op.create_table(
            "listings",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("seller_id", sa.Integer(), nullable=True),
            sa.Column("title", sa.String(length=160), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("category", sa.String(length=64), nullable=True),
            sa.Column("hub", sa.String(length=32), nullable=False, server_default="marketplace"),
            sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
            sa.Column("county", sa.String(length=64), nullable=True),
            sa.Column("town", sa.String(length=64), nullable=True),
            sa.Column("price", sa.Float(), nullable=False, server_default="0"),
            sa.Column("views", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(["seller_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    for column in ("seller_id", "category", "hub", "status", "county", "created_at"):
        index_name = f"ix_listings_{column}"
        if not _index_exists(bind, "listings", index_name):
            op.create_index(index_name, "listings", [column], unique=False)


def downgrade():
    bind = op.get_bind()
    if _table_exists(bind, "listings"):
        op.drop_table("listings")
    if _table_exists(bind, "users"):
        op.drop_table("users")
