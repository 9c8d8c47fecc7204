"""Initial schema: recipients

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


def upgrade() -> None:
    op.create_table(
        "recipients",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=256), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("number", sa.String(length=32), nullable=True),
        sa.Column("avatar", sa.String(length=1024), nullable=True),
        sa.Column("username", sa.String(length=128), nullable=False),
        sa.Column("amount", sa.Float(), server_default=sa.text("0"), nullable=False),
        sa.Column("quiz_status", sa.String(length=32), server_default=sa.text("'notAttempted'"), nullable=False),
        sa.Column("has_seen_tour", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("letter_state", sa.String(length=32), server_default=sa.text("'NotGenerated'"), nullable=False),
        sa.Column("artifact_path", sa.String(length=1024), nullable=True),
        sa.Column("artifact_pdf", sa.LargeBinary(), nullable=True),
        sa.Column("generated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("offer_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", name="uq_recipients_email"),
        sa.UniqueConstraint("username", name="uq_recipients_username"),
    )
    op.create_index("ix_recipients_letter_state", "recipients", ["letter_state"])


def downgrade() -> None:
    op.drop_index("ix_recipients_letter_state", table_name="recipients")
    op.drop_table("recipients")
