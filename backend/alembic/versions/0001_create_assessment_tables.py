"""create users, badges and test results

Revision ID: 0001
Revises: 
Create Date: 2026-10-18

"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("level", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("contribution_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_users_name", "users", ["name"], unique=True)

    op.create_table(
        "user_badges",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("badge_id", sa.String(length=64), nullable=False),
        sa.Column("awarded_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "badge_id", name="uq_user_badges_user_badge"),
    )
    op.create_index("ix_user_badges_user_id", "user_badges", ["user_id"], unique=False)

    op.create_table(
        "test_results",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("mode", sa.Enum("topic", "mock", "game", name="exammode"), nullable=False),
        sa.Column("level", sa.Integer(), nullable=False),
        sa.Column("topic", sa.String(length=200), nullable=True),
        sa.Column("score", sa.Integer(), nullable=False),
        sa.Column("correct_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_questions", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("score >= 0 AND score <= 100", name="ck_test_results_score_range"),
    )
    op.create_index("ix_test_results_user_id", "test_results", ["user_id"], unique=False)
    op.create_index("ix_test_results_mode", "test_results", ["mode"], unique=False)
    op.create_index("ix_test_results_created_at", "test_results", ["created_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_test_results_created_at", table_name="test_results")
    op.drop_index("ix_test_results_mode", table_name="test_results")
    op.drop_index("ix_test_results_user_id", table_name="test_results")
    op.drop_table("test_results")
    if op.get_bind().dialect.name == "postgresql":
        op.execute("DROP TYPE IF EXISTS exammode")

    op.drop_index("ix_user_badges_user_id", table_name="user_badges")
    op.drop_table("user_badges")

    op.drop_index("ix_users_name", table_name="users")
    op.drop_table("users")
