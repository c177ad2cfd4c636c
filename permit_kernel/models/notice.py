"""
Module: permit_kernel.models.notice
Responsibility: ORM persistence for student-facing notices written by the
    notification dispatcher on every request state change.

Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from permit_kernel.db.base import Base, UUIDString


class NoticeModel(Base):
    """A message shown to a student in their notice feed."""

    __tablename__ = "notices"

    __table_args__ = (
        Index("ix_notices_student_created", "student_id", "created_at"),
    )

    student_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("students.id"), nullable=False,
    )
    request_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("permission_requests.id"), nullable=True,
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(30), nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<Notice {self.id} student={self.student_id} {self.category}>"
