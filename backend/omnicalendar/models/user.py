"""User model."""

import uuid
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from omnicalendar.models.base import BaseModel

if TYPE_CHECKING:
    from omnicalendar.models.category import Category
    from omnicalendar.models.tag import Tag
    from omnicalendar.models.task import TaskItem


DEFAULT_RANK = "Junior"


class User(BaseModel):
    """Application user mapped 1:1 to a Clerk identity."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    clerk_id: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        index=True,
        nullable=False,
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    nickname: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    avatar_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    experience_points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    # Cached label; the dashboard derives the live value from experience_points
    current_rank: Mapped[str] = mapped_column(String(50), default=DEFAULT_RANK, nullable=False)

    # Relationships
    categories: Mapped[list["Category"]] = relationship(
        "Category",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    tags: Mapped[list["Tag"]] = relationship(
        "Tag",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    tasks: Mapped[list["TaskItem"]] = relationship(
        "TaskItem",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, clerk_id={self.clerk_id})>"
