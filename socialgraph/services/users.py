"""
Profile directory for the users service: the identity store every other
component resolves user ids and usernames against.
"""
import logging
from typing import Iterable, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from socialgraph.errors import AlreadyExists, NotFound
from socialgraph.models.users import User
from socialgraph.services.friendships import clamp_page

logger = logging.getLogger(__name__)


class UserDirectory:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get(self, user_id: int) -> User:
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFound(f"User {user_id} not found")
        return user

    async def find_by_username(self, username: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.username == username))
        return result.scalars().first()

    async def get_by_username(self, username: str) -> User:
        user = await self.find_by_username(username)
        if user is None:
            raise NotFound(f"User '{username}' not found")
        return user

    async def find_many(self, user_ids: Iterable[int]) -> list[User]:
        ids = sorted(set(user_ids))
        if not ids:
            return []
        rows = await self.db.scalars(select(User).where(User.id.in_(ids)).order_by(User.id))
        return list(rows.all())

    async def create_profile(
        self,
        username: str,
        email: str = "",
        full_name: str = "",
        user_id: Optional[int] = None,
    ) -> User:
        """
        Register the profile for a freshly signed-up account. The auth service
        passes its own account id so both services agree on the user id.
        """
        if user_id is not None and await self.db.get(User, user_id) is not None:
            raise AlreadyExists(f"User {user_id} already has a profile")
        if await self.find_by_username(username) is not None:
            raise AlreadyExists(f"Username '{username}' is taken")

        user = User(username=username, email=email, full_name=full_name or username)
        if user_id is not None:
            user.id = user_id
        self.db.add(user)
        try:
            await self.db.flush()
        except IntegrityError as exc:
            raise AlreadyExists(f"Username '{username}' is taken") from exc
        logger.info("Profile created for user %s (%s)", user.id, username)
        return user

    async def update_profile(self, user_id: int, **fields) -> User:
        user = await self.get(user_id)
        for name, value in fields.items():
            if value is not None:
                setattr(user, name, value)
        await self.db.flush()
        await self.db.refresh(user)
        logger.info("Profile updated for user %s", user_id)
        return user

    async def list_users(
        self, query: Optional[str] = None, page: int = 1, page_size: int = 10
    ) -> tuple[list[User], int]:
        page, page_size = clamp_page(page, page_size)
        stmt = select(User).where(User.is_active.is_(True))
        if query:
            pattern = f"%{query}%"
            stmt = stmt.where(or_(User.username.ilike(pattern), User.full_name.ilike(pattern)))

        total = await self.db.scalar(select(func.count()).select_from(stmt.subquery()))
        rows = await self.db.scalars(
            stmt.order_by(User.id).offset((page - 1) * page_size).limit(page_size)
        )
        return list(rows.all()), total or 0
