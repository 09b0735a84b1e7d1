"""create catalog: modules, chapters, contents, quizzes

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-18

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0002"
down_revision = "0001"
branch_labels = None
depends_on = None


content_type_enum = sa.Enum("video", "audio", name="contenttype")


def upgrade() -> None:
    op.create_table(
        "modules",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("description", sa.String(length=5000), nullable=True),
        sa.Column("thumbnail", sa.String(length=1000), nullable=True),
        sa.Column("order", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("order", name="uq_module_order"),
    )
    op.create_index("ix_modules_title", "modules", ["title"], unique=False)
    op.create_index("ix_modules_order", "modules", ["order"], unique=False)

    op.create_table(
        "chapters",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column(
            "module_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("modules.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("description", sa.String(length=5000), nullable=True),
        sa.Column("order", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.UniqueConstraint("module_id", "order", name="uq_chapter_module_order"),
    )
    op.create_index("ix_chapters_module_id", "chapters", ["module_id"], unique=False)

    op.create_table(
        "contents",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column(
            "chapter_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("chapters.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("description", sa.String(length=5000), nullable=True),
        sa.Column("type", content_type_enum, nullable=False),
        sa.Column("url", sa.String(length=2000), nullable=False),
        sa.Column("duration", sa.Integer(), nullable=False),
        sa.Column("order", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    )
    op.create_index("ix_contents_chapter_id", "contents", ["chapter_id"], unique=False)

    op.create_table(
        "quizzes",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column(
            "chapter_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("chapters.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("passing_score", sa.Integer(), nullable=False, server_default="70"),
        sa.Column("questions", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_quizzes_chapter_id", "quizzes", ["chapter_id"], unique=True)

    op.create_table(
        "quiz_results",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column(
            "quiz_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("quizzes.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("score", sa.Integer(), nullable=False),
        sa.Column("passed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("answers", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_quiz_results_quiz_id", "quiz_results", ["quiz_id"], unique=False)
    op.create_index("ix_quiz_results_user_id", "quiz_results", ["user_id"], unique=False)
    op.create_index("ix_quiz_results_passed", "quiz_results", ["passed"], unique=False)
    op.create_index("ix_quiz_results_created_at", "quiz_results", ["created_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_quiz_results_created_at", table_name="quiz_results")
    op.drop_index("ix_quiz_results_passed", table_name="quiz_results")
    op.drop_index("ix_quiz_results_user_id", table_name="quiz_results")
    op.drop_index("ix_quiz_results_quiz_id", table_name="quiz_results")
    op.drop_table("quiz_results")
    op.drop_index("ix_quizzes_chapter_id", table_name="quizzes")
    op.drop_table("quizzes")
    op.drop_index("ix_contents_chapter_id", table_name="contents")
    op.drop_table("contents")
    op.drop_index("ix_chapters_module_id", table_name="chapters")
    op.drop_table("chapters")
    op.drop_index("ix_modules_order", table_name="modules")
    op.drop_index("ix_modules_title", table_name="modules")
    op.drop_table("modules")
    op.execute("DROP TYPE IF EXISTS contenttype")
