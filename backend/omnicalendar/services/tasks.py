"""Task creation and due-date queries."""

import logging
import uuid
from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from omnicalendar.core.exceptions import InvalidReference
from omnicalendar.models.base import utcnow
from omnicalendar.models.category import Category
from omnicalendar.models.schemas import TaskCreateRequest, TaskResponse
from omnicalendar.models.tag import Tag
from omnicalendar.models.task import TaskItem, TaskStatus, TaskTag
from omnicalendar.models.user import User
from omnicalendar.services.dashboard import utc_today

logger = logging.getLogger(__name__)


class TaskService:
    """Creates and lists tasks for a single user."""

    def __init__(self, db: AsyncSession, user: User):
        """Initialize the task service.

        Args:
            db: Database session.
            user: Resolved current user; owns everything this service touches.
        """
        self.db = db
        self.user = user

    async def create(self, request: TaskCreateRequest) -> TaskResponse:
        """Create a pending task and its tag associations in one commit.

        Raises:
            InvalidReference: A tag or the category is not owned by the user.
        """
        tag_ids = list(dict.fromkeys(request.tag_ids or []))
        await self._ensure_owned_tags(tag_ids)
        if request.category_id is not None:
            await self._ensure_owned_category(request.category_id)

        now = utcnow()
        task = TaskItem(
            id=uuid.uuid4(),
            user_id=self.user.id,
            category_id=request.category_id,
            title=request.title,
            description=request.description,
            due_date=request.due_date,
            priority=request.priority,
            recurrence_rule=request.recurrence_rule,
            is_all_day=request.is_all_day,
            status=TaskStatus.PENDING.value,
            is_completed=False,
            created_at=now,
            updated_at=now,
        )
        self.db.add(task)
        for tag_id in tag_ids:
            self.db.add(TaskTag(task_id=task.id, tag_id=tag_id))

        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Created task {task.id} for user {self.user.id} with {len(tag_ids)} tag(s)")
        return TaskResponse.model_validate(task)

    async def list_by_due_date_range(self, from_date: date, to_date: date) -> list[TaskResponse]:
        """Tasks due within [from_date, to_date], by due date, priority, title."""
        query = (
            select(TaskItem)
            .where(
                TaskItem.user_id == self.user.id,
                TaskItem.due_date.is_not(None),
                TaskItem.due_date >= from_date,
                TaskItem.due_date <= to_date,
            )
            .order_by(TaskItem.due_date, TaskItem.priority, TaskItem.title)
        )
        return await self._fetch(query)

    async def list_today(self, today: Optional[date] = None) -> list[TaskResponse]:
        """Tasks due today (UTC), by priority then title."""
        today = today or utc_today()
        query = (
            select(TaskItem)
            .where(TaskItem.user_id == self.user.id, TaskItem.due_date == today)
            .order_by(TaskItem.priority, TaskItem.title)
        )
        return await self._fetch(query)

    async def _fetch(self, query) -> list[TaskResponse]:
        result = await self.db.execute(query)
        return [TaskResponse.model_validate(task) for task in result.scalars().all()]

    async def _ensure_owned_tags(self, tag_ids: list[int]) -> None:
        if not tag_ids:
            return
        result = await self.db.execute(
            select(Tag.id).where(Tag.id.in_(tag_ids), Tag.user_id == self.user.id)
        )
        owned = set(result.scalars().all())
        missing = [tag_id for tag_id in tag_ids if tag_id not in owned]
        if missing:
            logger.warning(f"User {self.user.id} referenced foreign or unknown tags: {missing}")
            raise InvalidReference(f"Unknown tag id(s): {', '.join(map(str, missing))}")

    async def _ensure_owned_category(self, category_id: int) -> None:
        result = await self.db.execute(
            select(Category.id).where(
                Category.id == category_id,
                Category.user_id == self.user.id,
            )
        )
        if result.scalar_one_or_none() is None:
            logger.warning(f"User {self.user.id} referenced foreign or unknown category {category_id}")
            raise InvalidReference(f"Unknown category id: {category_id}")
