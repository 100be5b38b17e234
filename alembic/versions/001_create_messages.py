"""Create messages table.

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "messages",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("origin_id", sa.String(255), nullable=False),
        sa.Column("body", sa.String(5000), nullable=False),
        sa.Column(
            "kind",
            sa.Enum("USER", "SYSTEM", "JOIN", "LEAVE", name="eventkind"),
            nullable=False,
            server_default="USER",
        ),
        sa.Column("stream_id", sa.String(100), nullable=False, server_default="global"),
        sa.Column("attributes", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_messages_origin_id", "messages", ["origin_id"])
    op.create_index("ix_messages_stream_id", "messages", ["stream_id"])
    op.create_index("ix_messages_created_at", "messages", ["created_at"])
    op.create_index("ix_messages_stream_created", "messages", ["stream_id", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_messages_stream_created", table_name="messages")
    op.drop_index("ix_messages_created_at", table_name="messages")
    op.drop_index("ix_messages_stream_id", table_name="messages")
    op.drop_index("ix_messages_origin_id", table_name="messages")
    op.drop_table("messages")
    sa.Enum(name="eventkind").drop(op.get_bind(), checkfirst=True)
