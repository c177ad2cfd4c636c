"""
NoticeService -- student notice feed.

Implements the ``NoticeStore`` protocol used by the notification
dispatcher, plus the feed reads the student console needs.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from permit_kernel.domain.clock import Clock, SystemClock
from permit_kernel.logging_config import get_logger
from permit_kernel.models.notice import NoticeModel
from permit_kernel.services.base import BaseService

logger = get_logger("services.notice")


@dataclass(frozen=True)
class Notice:
    notice_id: UUID
    student_id: UUID
    request_id: UUID | None
    title: str
    message: str
    category: str
    is_read: bool
    created_at: datetime


def _to_notice(model: NoticeModel) -> Notice:
    return Notice(
        notice_id=model.id,
        student_id=model.student_id,
        request_id=model.request_id,
        title=model.title,
        message=model.message,
        category=model.category,
        is_read=model.is_read,
        created_at=model.created_at,
    )


class NoticeService(BaseService[NoticeModel]):
    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def record(
        self,
        *,
        student_id: UUID,
        request_id: UUID,
        title: str,
        message: str,
        category: str,
    ) -> UUID:
        model = NoticeModel(
            student_id=student_id,
            request_id=request_id,
            title=title,
            message=message,
            category=category,
            created_at=self._clock.now(),
        )
        self.session.add(model)
        self.session.flush()
        logger.debug(
            "notice_recorded",
            extra={"notice_id": str(model.id), "category": category},
        )
        return model.id

    def list_for_student(self, student_id: UUID, unread_only: bool = False) -> list[Notice]:
        stmt = select(NoticeModel).where(NoticeModel.student_id == student_id)
        if unread_only:
            stmt = stmt.where(NoticeModel.is_read.is_(False))
        models = self.session.execute(
            stmt.order_by(NoticeModel.created_at.desc())
        ).scalars().all()
        return [_to_notice(m) for m in models]

    def mark_read(self, student_id: UUID, notice_ids: list[UUID]) -> int:
        result = self.session.execute(
            update(NoticeModel)
            .where(
                NoticeModel.student_id == student_id,
                NoticeModel.id.in_(notice_ids),
            )
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        self.session.flush()
        return result.rowcount
