"""Database repositories for frames and answer records.

Provides async CRUD operations. Writes ``flush()``; the request-scoped
session from ``get_db`` commits. Orchestrators call ``commit()``
explicitly where a record must survive a later error.
"""

from datetime import datetime, timezone
from uuid import UUID, uuid4

from sqlalchemy import case, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from edusense.db.models import (
    Difficulty,
    Doubt,
    DoubtStatus,
    Frame,
    FrameSourceType,
    FrameStatus,
)


def _is_uuid(value: str) -> bool:
    try:
        UUID(str(value))
    except ValueError:
        return False
    return True


class FrameRepository:
    """Repository for frame operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def build(**fields) -> Frame:
        """Create an unsaved Frame with column defaults applied."""
        now = datetime.now(timezone.utc)
        defaults = {
            "id": str(uuid4()),
            "status": FrameStatus.QUEUED,
            "ocr_raw": {},
            "concept_tags": [],
            "topics": [],
            "chunk_ids": [],
            "difficulty": Difficulty.UNKNOWN,
            "has_handwriting": False,
            "created_at": now,
            "updated_at": now,
        }
        return Frame(**{**defaults, **fields})

    async def create(self, **fields) -> Frame:
        """Create a new frame."""
        frame = self.build(**fields)
        self.db.add(frame)
        await self.db.flush()
        return frame

    async def get(self, frame_id: str, user_id: str | None = None) -> Frame | None:
        """Get a frame by ID, optionally scoped to its owner."""
        if not _is_uuid(frame_id):
            return None
        query = select(Frame).where(Frame.id == frame_id)
        if user_id is not None:
            query = query.where(Frame.user_id == user_id)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def save(self, frame: Frame) -> Frame:
        frame.updated_at = datetime.now(timezone.utc)
        self.db.add(frame)
        await self.db.flush()
        return frame

    async def commit(self) -> None:
        await self.db.commit()

    async def delete(self, frame: Frame) -> None:
        await self.db.execute(delete(Frame).where(Frame.id == frame.id))
        await self.db.flush()

    async def list_children(self, parent_id: str) -> list[Frame]:
        """Pages and crops whose parent is ``parent_id``."""
        result = await self.db.execute(select(Frame).where(Frame.parent_id == parent_id))
        return list(result.scalars().all())

    async def list_pages(self, parent_id: str, user_id: str) -> list[Frame]:
        """Page frames of a document, in page order."""
        query = (
            select(Frame)
            .where(
                Frame.parent_id == parent_id,
                Frame.user_id == user_id,
                Frame.source_type == FrameSourceType.DOCUMENT_PAGE,
            )
            .order_by(Frame.page_number.asc())
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def list_uploads(
        self,
        user_id: str,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Frame], int]:
        """A user's uploads, newest first. Excludes pages and failed frames.

        Returns (frames, total).
        """
        conditions = (
            Frame.user_id == user_id,
            Frame.source_type != FrameSourceType.DOCUMENT_PAGE,
            Frame.status != FrameStatus.FAILED,
        )
        query = (
            select(Frame)
            .where(*conditions)
            .order_by(Frame.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.db.execute(query)
        frames = list(result.scalars().all())

        total = await self.db.execute(select(func.count(Frame.id)).where(*conditions))
        return frames, total.scalar() or 0


class DoubtRepository:
    """Repository for answer record operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def build(**fields) -> Doubt:
        """Create an unsaved Doubt with column defaults applied."""
        now = datetime.now(timezone.utc)
        defaults = {
            "id": str(uuid4()),
            "explanation": "",
            "steps": [],
            "final_answer": "",
            "confidence": 0.0,
            "meta": {},
            "follow_up_questions": {},
            "retrieved_context": [],
            "subject": "general",
            "tags": [],
            "status": DoubtStatus.PENDING,
            "processing_time_ms": 0,
            "is_bookmarked": False,
            "created_at": now,
            "updated_at": now,
        }
        return Doubt(**{**defaults, **fields})

    async def create(self, **fields) -> Doubt:
        """Create a new answer record."""
        doubt = self.build(**fields)
        self.db.add(doubt)
        await self.db.flush()
        return doubt

    async def get(self, doubt_id: str, user_id: str | None = None) -> Doubt | None:
        """Get a record by ID, optionally scoped to its owner."""
        if not _is_uuid(doubt_id):
            return None
        query = select(Doubt).where(Doubt.id == doubt_id)
        if user_id is not None:
            query = query.where(Doubt.user_id == user_id)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def save(self, doubt: Doubt) -> Doubt:
        doubt.updated_at = datetime.now(timezone.utc)
        self.db.add(doubt)
        await self.db.flush()
        return doubt

    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()

    async def delete(self, doubt: Doubt) -> None:
        await self.db.execute(delete(Doubt).where(Doubt.id == doubt.id))
        await self.db.flush()

    async def list_for_user(
        self,
        user_id: str,
        limit: int = 20,
        offset: int = 0,
        subject: str | None = None,
        bookmarked: bool | None = None,
    ) -> tuple[list[Doubt], int]:
        """A user's records, newest first. Returns (records, total)."""
        conditions = [Doubt.user_id == user_id]
        if subject:
            conditions.append(Doubt.subject == subject)
        if bookmarked is not None:
            conditions.append(Doubt.is_bookmarked == bookmarked)

        query = (
            select(Doubt)
            .where(*conditions)
            .order_by(Doubt.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.db.execute(query)
        doubts = list(result.scalars().all())

        total = await self.db.execute(select(func.count(Doubt.id)).where(*conditions))
        return doubts, total.scalar() or 0

    async def stats(self, user_id: str) -> dict:
        """Aggregate counts and average confidence for a user."""
        query = select(
            func.count(Doubt.id).label("total"),
            func.sum(case((Doubt.is_bookmarked, 1), else_=0)).label("bookmarked"),
            func.avg(Doubt.confidence).label("avg_confidence"),
        ).where(Doubt.user_id == user_id)

        result = await self.db.execute(query)
        row = result.one()

        return {
            "total": row.total or 0,
            "bookmarked": int(row.bookmarked or 0),
            "avg_confidence": round(float(row.avg_confidence or 0.0), 3),
        }
