"""Create frames and doubts tables.

Revision ID: 20261019_0900_initial
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "20261019_0900_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Enum columns store member names
frame_source_type = sa.Enum("IMAGE", "DOCUMENT", "DOCUMENT_PAGE", "CROP", name="framesourcetype")
frame_status = sa.Enum("QUEUED", "PROCESSING", "COMPLETED", "FAILED", name="framestatus")
difficulty = sa.Enum("EASY", "MEDIUM", "HARD", "UNKNOWN", name="difficulty")
doubt_status = sa.Enum("ANSWERED", "PENDING", "FAILED", name="doubtstatus")


def upgrade() -> None:
    """Create frames and doubts."""
    op.create_table(
        "frames",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("source_type", frame_source_type, nullable=False),
        sa.Column("source_url", sa.Text(), nullable=False),
        sa.Column("public_id", sa.String(length=512), nullable=True),
        sa.Column("filename", sa.String(length=512), nullable=True),
        sa.Column("crop_url", sa.Text(), nullable=True),
        sa.Column("crop_public_id", sa.String(length=512), nullable=True),
        sa.Column("crop_rect", postgresql.JSONB(), nullable=True),
        sa.Column("parent_id", postgresql.UUID(as_uuid=False), nullable=True),
        sa.Column("page_number", sa.Integer(), nullable=True),
        sa.Column("ocr_text", sa.Text(), nullable=True),
        sa.Column("ocr_raw", postgresql.JSONB(), nullable=True),
        sa.Column("ocr_confidence", sa.Float(), nullable=True),
        sa.Column("has_handwriting", sa.Boolean(), nullable=True),
        sa.Column("concept_tags", postgresql.JSONB(), nullable=True),
        sa.Column("difficulty", difficulty, nullable=True),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("topics", postgresql.JSONB(), nullable=True),
        sa.Column("status", frame_status, nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("file_size", sa.Integer(), nullable=True),
        sa.Column("mime_type", sa.String(length=100), nullable=True),
        sa.Column("width", sa.Integer(), nullable=True),
        sa.Column("height", sa.Integer(), nullable=True),
        sa.Column("page_count", sa.Integer(), nullable=True),
        sa.Column("document_metadata", postgresql.JSONB(), nullable=True),
        sa.Column("chunk_ids", postgresql.JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["parent_id"], ["frames.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_frames_user_id", "frames", ["user_id"])
    op.create_index("ix_frames_parent_id", "frames", ["parent_id"])
    op.create_index("ix_frames_user_created", "frames", ["user_id", "created_at"])

    op.create_table(
        "doubts",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("question", sa.Text(), nullable=False),
        sa.Column("frame_id", postgresql.UUID(as_uuid=False), nullable=True),
        sa.Column("explanation", sa.Text(), nullable=True),
        sa.Column("steps", postgresql.JSONB(), nullable=True),
        sa.Column("final_answer", sa.Text(), nullable=True),
        sa.Column("confidence", sa.Float(), nullable=True),
        sa.Column("meta", postgresql.JSONB(), nullable=True),
        sa.Column("follow_up_questions", postgresql.JSONB(), nullable=True),
        sa.Column("mermaid_code", sa.Text(), nullable=True),
        sa.Column("code", postgresql.JSONB(), nullable=True),
        sa.Column("retrieved_context", postgresql.JSONB(), nullable=True),
        sa.Column("subject", sa.String(length=64), nullable=True),
        sa.Column("tags", postgresql.JSONB(), nullable=True),
        sa.Column("status", doubt_status, nullable=True),
        sa.Column("processing_time_ms", sa.Integer(), nullable=True),
        sa.Column("model_used", sa.String(length=255), nullable=True),
        sa.Column("is_bookmarked", sa.Boolean(), nullable=True),
        sa.Column("rating", sa.Integer(), nullable=True),
        sa.Column("feedback", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=True),
        sa.ForeignKeyConstraint(["frame_id"], ["frames.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_doubts_user_created", "doubts", ["user_id", "created_at"])
    op.create_index("ix_doubts_user_subject", "doubts", ["user_id", "subject"])


def downgrade() -> None:
    """Drop doubts and frames, then their enum types."""
    op.drop_index("ix_doubts_user_subject", table_name="doubts")
    op.drop_index("ix_doubts_user_created", table_name="doubts")
    op.drop_table("doubts")
    op.drop_index("ix_frames_user_created", table_name="frames")
    op.drop_index("ix_frames_parent_id", table_name="frames")
    op.drop_index("ix_frames_user_id", table_name="frames")
    op.drop_table("frames")

    bind = op.get_bind()
    for enum_type in (doubt_status, difficulty, frame_status, frame_source_type):
        enum_type.drop(bind, checkfirst=True)
