"""SQLAlchemy database models.

Defines the two persisted entities: frames (uploaded visual content moving
through OCR) and doubts (answer records).
"""

from datetime import datetime
from enum import Enum as PyEnum
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# ============================================
# Enums
# ============================================

class FrameSourceType(str, PyEnum):
    """What a frame was created from."""
    IMAGE = "image"
    DOCUMENT = "document"
    DOCUMENT_PAGE = "document_page"
    CROP = "crop"


class FrameStatus(str, PyEnum):
    """Frame processing status. queued -> processing -> completed | failed."""
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Difficulty(str, PyEnum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    UNKNOWN = "unknown"


class DoubtStatus(str, PyEnum):
    """Answer record status."""
    ANSWERED = "answered"
    PENDING = "pending"
    FAILED = "failed"


# ============================================
# Core Models
# ============================================

class Frame(Base):
    """A unit of visual content: an image, a PDF (parent), a PDF page or a crop.

    Pages and crops point at their parent through ``parent_id``.
    """
    __tablename__ = "frames"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid4()))
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)

    source_type: Mapped[FrameSourceType] = mapped_column(Enum(FrameSourceType), nullable=False)
    source_url: Mapped[str] = mapped_column(Text, nullable=False)
    public_id: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    filename: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)

    # Crops
    crop_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    crop_public_id: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    crop_rect: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)

    # Parent document (pages) or source frame (crops)
    parent_id: Mapped[Optional[str]] = mapped_column(
        UUID(as_uuid=False), ForeignKey("frames.id", ondelete="CASCADE"), nullable=True
    )
    page_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # OCR output; ocr_raw holds {"words": [...], "lines": [...]}
    ocr_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ocr_raw: Mapped[dict] = mapped_column(JSONB, default=dict)
    ocr_confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    has_handwriting: Mapped[bool] = mapped_column(Boolean, default=False)

    # Concepts
    concept_tags: Mapped[list] = mapped_column(JSONB, default=list)
    difficulty: Mapped[Difficulty] = mapped_column(Enum(Difficulty), default=Difficulty.UNKNOWN)
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    topics: Mapped[list] = mapped_column(JSONB, default=list)

    # Processing
    status: Mapped[FrameStatus] = mapped_column(Enum(FrameStatus), default=FrameStatus.QUEUED)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # File info
    file_size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    mime_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    width: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    height: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Document parents
    page_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    document_metadata: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)

    # Vector index chunk IDs for this frame's text
    chunk_ids: Mapped[list] = mapped_column(JSONB, default=list)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __mapper_args__ = {"eager_defaults": True}

    __table_args__ = (
        Index("ix_frames_user_id", "user_id"),
        Index("ix_frames_parent_id", "parent_id"),
        Index("ix_frames_user_created", "user_id", "created_at"),
    )


class Doubt(Base):
    """One question and its generated answer."""
    __tablename__ = "doubts"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid4()))
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    question: Mapped[str] = mapped_column(Text, nullable=False)
    frame_id: Mapped[Optional[str]] = mapped_column(
        UUID(as_uuid=False), ForeignKey("frames.id", ondelete="SET NULL"), nullable=True
    )

    # Answer
    explanation: Mapped[str] = mapped_column(Text, default="")
    steps: Mapped[list] = mapped_column(JSONB, default=list)
    final_answer: Mapped[str] = mapped_column(Text, default="")
    confidence: Mapped[float] = mapped_column(Float, default=0.0)
    meta: Mapped[dict] = mapped_column(JSONB, default=dict)
    follow_up_questions: Mapped[dict] = mapped_column(JSONB, default=dict)
    mermaid_code: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    code: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    retrieved_context: Mapped[list] = mapped_column(JSONB, default=list)

    subject: Mapped[str] = mapped_column(String(64), default="general")
    tags: Mapped[list] = mapped_column(JSONB, default=list)

    status: Mapped[DoubtStatus] = mapped_column(Enum(DoubtStatus), default=DoubtStatus.PENDING)
    processing_time_ms: Mapped[int] = mapped_column(Integer, default=0)
    model_used: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # User feedback
    is_bookmarked: Mapped[bool] = mapped_column(Boolean, default=False)
    rating: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    feedback: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __mapper_args__ = {"eager_defaults": True}

    __table_args__ = (
        Index("ix_doubts_user_created", "user_id", "created_at"),
        Index("ix_doubts_user_subject", "user_id", "subject"),
    )
