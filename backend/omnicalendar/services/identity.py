"""Current-user resolution.

Maps a verified Clerk principal onto a row in ``users``, creating the row
the first time a given Clerk identity is seen.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from omnicalendar.core.exceptions import MissingIdentity, Unauthenticated
from omnicalendar.models.base import utcnow
from omnicalendar.models.user import DEFAULT_RANK, User
from omnicalendar.observability import MetricsBackend, get_metrics_backend

logger = logging.getLogger(__name__)

PLACEHOLDER_EMAIL = "unknown@example.com"


@dataclass(frozen=True)
class Principal:
    """Authenticated caller as described by verified token claims."""

    subject: Optional[str]
    email: Optional[str] = None
    name: Optional[str] = None
    picture: Optional[str] = None
    is_authenticated: bool = True
    claims: dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> "Principal":
        return cls(
            subject=claims.get("sub") or None,
            email=claims.get("email"),
            name=claims.get("name"),
            picture=claims.get("picture"),
            claims=dict(claims),
        )


class CurrentUserService:
    """Looks up or lazily creates the User for a principal."""

    def __init__(self, db: AsyncSession, metrics: Optional[MetricsBackend] = None):
        self.db = db
        self.metrics = metrics or get_metrics_backend()

    async def get_or_create_user(self, principal: Optional[Principal]) -> User:
        """Return the User for ``principal``.

        Existing rows are returned unchanged; claims are not re-synced on
        later logins.

        Raises:
            Unauthenticated: No principal, or principal not authenticated.
            MissingIdentity: Principal has no subject claim.
        """
        if principal is None or not principal.is_authenticated:
            self.metrics.observe_auth_failure("missing_token")
            raise Unauthenticated("User is not authenticated")

        clerk_id = principal.subject
        if not clerk_id:
            logger.error("JWT payload missing 'sub' claim")
            self.metrics.observe_auth_failure("missing_subject")
            raise MissingIdentity("Clerk user id (sub) not found in token")

        existing = await self._find_by_clerk_id(clerk_id)
        if existing:
            return existing

        now = utcnow()
        user = User(
            id=uuid.uuid4(),
            clerk_id=clerk_id,
            email=principal.email or PLACEHOLDER_EMAIL,
            nickname=principal.name,
            avatar_url=principal.picture,
            experience_points=0,
            current_rank=DEFAULT_RANK,
            created_at=now,
            updated_at=now,
        )
        self.db.add(user)
        try:
            await self.db.commit()
        except IntegrityError:
            # Another request created the same identity first
            await self.db.rollback()
            winner = await self._find_by_clerk_id(clerk_id)
            if winner is None:
                raise
            return winner

        logger.info(f"Created new user: id={user.id}, clerk_id={clerk_id}")
        return user

    async def _find_by_clerk_id(self, clerk_id: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.clerk_id == clerk_id))
        return result.scalar_one_or_none()
