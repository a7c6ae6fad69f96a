"""Task, task note and task-tag association models."""

import uuid
from datetime import date, datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from omnicalendar.core.database import Base
from omnicalendar.models.base import BaseModel, utcnow

if TYPE_CHECKING:
    from omnicalendar.models.category import Category
    from omnicalendar.models.tag import Tag
    from omnicalendar.models.user import User


DEFAULT_PRIORITY = 4


class TaskStatus(str, Enum):
    """Task workflow status."""

    PENDING = "Pending"


class TaskItem(BaseModel):
    """A task or calendar event owned by a user."""

    __tablename__ = "tasks"
    __table_args__ = (
        Index("idx_tasks_user_starttime", "user_id", "start_time"),
        Index("idx_tasks_user_duedate", "user_id", "due_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    category_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("categories.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Scheduling
    start_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    is_all_day: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Lower number = more urgent
    priority: Mapped[int] = mapped_column(Integer, default=DEFAULT_PRIORITY, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        default=TaskStatus.PENDING.value,
        nullable=False,
    )

    # Recurrence (RRULE string) and recurring/sub-task parent
    recurrence_rule: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    parent_task_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("tasks.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Completion; completed_at should be set whenever is_completed is true
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="tasks")
    category: Mapped[Optional["Category"]] = relationship("Category", back_populates="tasks")
    parent_task: Mapped[Optional["TaskItem"]] = relationship(
        "TaskItem",
        back_populates="child_tasks",
        remote_side=[id],
    )
    child_tasks: Mapped[list["TaskItem"]] = relationship(
        "TaskItem",
        back_populates="parent_task",
        passive_deletes=True,
    )
    notes: Mapped[list["TaskNote"]] = relationship(
        "TaskNote",
        back_populates="task",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    task_tags: Mapped[list["TaskTag"]] = relationship(
        "TaskTag",
        back_populates="task",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<TaskItem(id={self.id}, title={self.title}, due_date={self.due_date})>"


class TaskNote(Base):
    """Free-text note attached to a task (soft-deletable)."""

    __tablename__ = "task_notes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    task_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("tasks.id", ondelete="CASCADE"),
        index=True,
    )
    note: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        onupdate=utcnow,
        nullable=True,
    )
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    task: Mapped["TaskItem"] = relationship("TaskItem", back_populates="notes")

    def __repr__(self) -> str:
        return f"<TaskNote(id={self.id}, task_id={self.task_id})>"


class TaskTag(Base):
    """Association between a task and a tag."""

    __tablename__ = "task_tags"

    task_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("tasks.id", ondelete="CASCADE"),
        primary_key=True,
    )
    tag_id: Mapped[int] = mapped_column(
        ForeignKey("tags.id", ondelete="CASCADE"),
        primary_key=True,
    )

    task: Mapped["TaskItem"] = relationship("TaskItem", back_populates="task_tags")
    tag: Mapped["Tag"] = relationship("Tag", back_populates="task_tags")
