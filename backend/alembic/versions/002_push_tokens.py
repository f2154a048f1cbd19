"""Add push_tokens: device tokens for insight pop-ups, with the permission each device reported."""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "push_tokens",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("device_token", sa.String(256), nullable=False, unique=True),
        sa.Column("platform", sa.String(16), nullable=False, server_default="ios"),
        sa.Column("permission", sa.String(16), nullable=False, server_default="default"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False),
    )
    op.create_index("ix_push_tokens_device_token", "push_tokens", ["device_token"], unique=True)
    op.create_index("ix_push_tokens_user_id", "push_tokens", ["user_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_push_tokens_user_id", table_name="push_tokens")
    op.drop_index("ix_push_tokens_device_token", table_name="push_tokens")
    op.drop_table("push_tokens")
