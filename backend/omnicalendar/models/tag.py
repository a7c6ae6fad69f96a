"""Tag model."""

import uuid
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from omnicalendar.core.database import Base

if TYPE_CHECKING:
    from omnicalendar.models.task import TaskTag
    from omnicalendar.models.user import User


class Tag(Base):
    """User-owned label attached to tasks through task_tags."""

    __tablename__ = "tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
    )
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    color_hex: Mapped[str] = mapped_column(String(7), default="#3B82F6")

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="tags")
    task_tags: Mapped[list["TaskTag"]] = relationship(
        "TaskTag",
        back_populates="tag",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Tag(id={self.id}, name={self.name})>"
