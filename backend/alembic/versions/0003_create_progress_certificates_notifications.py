"""progress tables, certificates, notifications

Revision ID: 0003
Revises: 0002
Create Date: 2026-10-18

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0003"
down_revision = "0002"
branch_labels = None
depends_on = None


certificate_type_enum = sa.Enum("bronze", "silver", "gold", name="certificatetype")
notification_type_enum = sa.Enum("info", "warning", "success", "announcement", name="notificationtype")


def _user_fk() -> sa.Column:
    return sa.Column(
        "user_id",
        postgresql.UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )


def upgrade() -> None:
    op.create_table(
        "content_progress",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        _user_fk(),
        sa.Column(
            "content_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("contents.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("watch_time", sa.Float(), nullable=False, server_default="0"),
        sa.Column("is_completed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("user_id", "content_id", name="uq_content_progress_user_content"),
    )
    op.create_index("ix_content_progress_user_id", "content_progress", ["user_id"], unique=False)
    op.create_index("ix_content_progress_content_id", "content_progress", ["content_id"], unique=False)

    op.create_table(
        "chapter_progress",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        _user_fk(),
        sa.Column(
            "chapter_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("chapters.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("is_completed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("user_id", "chapter_id", name="uq_chapter_progress_user_chapter"),
    )
    op.create_index("ix_chapter_progress_user_id", "chapter_progress", ["user_id"], unique=False)
    op.create_index("ix_chapter_progress_chapter_id", "chapter_progress", ["chapter_id"], unique=False)

    op.create_table(
        "module_progress",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        _user_fk(),
        sa.Column(
            "module_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("modules.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("is_completed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("user_id", "module_id", name="uq_module_progress_user_module"),
    )
    op.create_index("ix_module_progress_user_id", "module_progress", ["user_id"], unique=False)
    op.create_index("ix_module_progress_module_id", "module_progress", ["module_id"], unique=False)

    op.create_table(
        "certificates",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        _user_fk(),
        sa.Column(
            "module_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("modules.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("type", certificate_type_enum, nullable=False),
        sa.Column("certificate_number", sa.String(length=100), nullable=False),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("user_id", "type", name="uq_certificate_user_type"),
    )
    op.create_index("ix_certificates_user_id", "certificates", ["user_id"], unique=False)
    op.create_index("ix_certificates_module_id", "certificates", ["module_id"], unique=False)
    op.create_index("ix_certificates_certificate_number", "certificates", ["certificate_number"], unique=True)

    op.create_table(
        "notifications",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("content", sa.String(length=5000), nullable=False),
        sa.Column("type", notification_type_enum, nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"], unique=False)
    op.create_index("ix_notifications_created_at", "notifications", ["created_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_notifications_created_at", table_name="notifications")
    op.drop_index("ix_notifications_user_id", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_certificates_certificate_number", table_name="certificates")
    op.drop_index("ix_certificates_module_id", table_name="certificates")
    op.drop_index("ix_certificates_user_id", table_name="certificates")
    op.drop_table("certificates")
    op.drop_index("ix_module_progress_module_id", table_name="module_progress")
    op.drop_index("ix_module_progress_user_id", table_name="module_progress")
    op.drop_table("module_progress")
    op.drop_index("ix_chapter_progress_chapter_id", table_name="chapter_progress")
    op.drop_index("ix_chapter_progress_user_id", table_name="chapter_progress")
    op.drop_table("chapter_progress")
    op.drop_index("ix_content_progress_content_id", table_name="content_progress")
    op.drop_index("ix_content_progress_user_id", table_name="content_progress")
    op.drop_table("content_progress")
    op.execute("DROP TYPE IF EXISTS notificationtype")
    op.execute("DROP TYPE IF EXISTS certificatetype")
