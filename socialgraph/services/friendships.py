"""
Friendship ledger.

One edge per unordered pair of users, tagged with a status:

    (none) ──request──▶ pending ──accept──▶ accepted ──unfriend──▶ (none)
                          │  ├──reject──▶ rejected ──request──▶ pending
                          │  └──cancel──▶ (none)
    any / (none) ──block──▶ blocked ──unblock──▶ (none)

The initiator of a pending edge may cancel it; only its recipient may accept
or reject. Either side may block; the blocker becomes the edge's initiator and
is the only one who can unblock.

All methods run inside the caller's session and never commit — the request's
session scope commits or rolls back the whole operation.
"""
import logging
import random
from typing import Iterable, Optional

from opentelemetry import trace
from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from socialgraph.config import settings
from socialgraph.errors import (
    AlreadyExists,
    BlockedRelationship,
    InvalidInput,
    InvalidState,
    NotBlocker,
    NotFound,
    NotFriends,
    NotInitiator,
    NotRecipient,
    RequestAlreadyExists,
    SelfRelationship,
    ServiceError,
)
from socialgraph.models.users import Friendship, FriendshipStatus, User, utcnow
from socialgraph.telemetry import FRIENDSHIP_ACTIONS_TOTAL

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

ACTIONS = ("request", "accept", "reject", "cancel", "unfriend", "block", "unblock")

# Edges that keep a user out of someone's suggestions
_CONNECTED = (
    FriendshipStatus.ACCEPTED,
    FriendshipStatus.PENDING,
    FriendshipStatus.BLOCKED,
)

STATUS_NONE = "none"


def clamp_page(page: int, page_size: int) -> tuple[int, int]:
    page = page if page >= 1 else 1
    if page_size < 1 or page_size > settings.max_page_size:
        page_size = settings.default_page_size
    return page, page_size


def total_pages(total: int, page_size: int) -> int:
    return (total + page_size - 1) // page_size if page_size else 0


class FriendshipLedger:
    def __init__(self, db: AsyncSession, rng: Optional[random.Random] = None) -> None:
        self.db = db
        self.rng = rng or random.Random()

    # ── lookups ───────────────────────────────────────────────────────────

    async def find_edge(self, user_a: int, user_b: int) -> Optional[Friendship]:
        """The edge between two users, whichever of them initiated it."""
        result = await self.db.execute(
            select(Friendship).where(
                Friendship.user_low_id == min(user_a, user_b),
                Friendship.user_high_id == max(user_a, user_b),
            )
        )
        return result.scalars().first()

    async def _require_user(self, user_id: int) -> User:
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFound(f"User {user_id} not found")
        return user

    # ── actions ───────────────────────────────────────────────────────────

    async def perform_action(self, actor_id: int, target_id: int, action: str) -> str:
        """
        Apply `action` from `actor_id` towards `target_id`.

        Returns the resulting edge status ('none' if the edge was deleted).
        """
        handler = getattr(self, f"_{action}", None) if action in ACTIONS else None
        if handler is None:
            raise InvalidInput(f"Unknown friendship action '{action}'")

        with tracer.start_as_current_span(f"friendship.{action}") as span:
            span.set_attribute("friendship.actor_id", actor_id)
            span.set_attribute("friendship.target_id", target_id)
            try:
                result = await handler(actor_id, target_id)
            except ServiceError as exc:
                FRIENDSHIP_ACTIONS_TOTAL.labels(action=action, outcome=exc.kind.value).inc()
                raise
            FRIENDSHIP_ACTIONS_TOTAL.labels(action=action, outcome="ok").inc()
            logger.info("Friendship %s: %s → %s (%s)", action, actor_id, target_id, result)
            return result

    async def _request(self, actor_id: int, target_id: int) -> str:
        if actor_id == target_id:
            raise SelfRelationship("Cannot send a friend request to yourself")
        await self._require_user(target_id)

        edge = await self.find_edge(actor_id, target_id)
        if edge is not None:
            if edge.status == FriendshipStatus.ACCEPTED:
                raise AlreadyExists("Already friends")
            if edge.status == FriendshipStatus.PENDING:
                raise RequestAlreadyExists("A friend request is already pending")
            if edge.status == FriendshipStatus.BLOCKED:
                raise BlockedRelationship("Cannot send a friend request to this user")
            # rejected is terminal: re-open the pair as a fresh request
            now = utcnow()
            edge.set_parties(actor_id, target_id)
            edge.status = FriendshipStatus.PENDING
            edge.created_at = now
            edge.updated_at = now
            await self.db.flush()
            return edge.status.value

        edge = Friendship(status=FriendshipStatus.PENDING)
        edge.set_parties(actor_id, target_id)
        self.db.add(edge)
        try:
            await self.db.flush()
        except IntegrityError as exc:
            # Lost a race with a concurrent request for the same pair
            raise RequestAlreadyExists("A friend request is already pending") from exc
        return edge.status.value

    async def _respond(self, actor_id: int, target_id: int, status: FriendshipStatus) -> str:
        edge = await self.find_edge(actor_id, target_id)
        if edge is None:
            raise NotFound("Friend request not found")
        if edge.recipient_id != actor_id:
            raise NotRecipient("Only the recipient can respond to this request")
        if edge.status != FriendshipStatus.PENDING:
            raise InvalidState(f"Friend request is {edge.status.value}, not pending")
        edge.status = status
        edge.updated_at = utcnow()
        await self.db.flush()
        return edge.status.value

    async def _accept(self, actor_id: int, target_id: int) -> str:
        return await self._respond(actor_id, target_id, FriendshipStatus.ACCEPTED)

    async def _reject(self, actor_id: int, target_id: int) -> str:
        return await self._respond(actor_id, target_id, FriendshipStatus.REJECTED)

    async def _cancel(self, actor_id: int, target_id: int) -> str:
        edge = await self.find_edge(actor_id, target_id)
        if edge is None:
            raise NotFound("Friend request not found")
        if edge.initiator_id != actor_id or edge.status != FriendshipStatus.PENDING:
            raise NotInitiator("Only the sender can cancel a pending request")
        await self.db.delete(edge)
        await self.db.flush()
        return STATUS_NONE

    async def _unfriend(self, actor_id: int, target_id: int) -> str:
        edge = await self.find_edge(actor_id, target_id)
        if edge is None:
            raise NotFound("Not friends")
        if edge.status != FriendshipStatus.ACCEPTED:
            raise NotFriends("Not friends")
        await self.db.delete(edge)
        await self.db.flush()
        return STATUS_NONE

    async def _block(self, actor_id: int, target_id: int) -> str:
        if actor_id == target_id:
            raise SelfRelationship("Cannot block yourself")
        await self._require_user(target_id)

        edge = await self.find_edge(actor_id, target_id)
        if edge is None:
            edge = Friendship(status=FriendshipStatus.BLOCKED)
            edge.set_parties(actor_id, target_id)
            self.db.add(edge)
            try:
                await self.db.flush()
            except IntegrityError as exc:
                raise RequestAlreadyExists("Relationship changed concurrently") from exc
            return edge.status.value

        # The blocker owns the edge from now on, whoever created it
        edge.set_parties(actor_id, target_id)
        edge.status = FriendshipStatus.BLOCKED
        edge.updated_at = utcnow()
        await self.db.flush()
        return edge.status.value

    async def _unblock(self, actor_id: int, target_id: int) -> str:
        edge = await self.find_edge(actor_id, target_id)
        if edge is None:
            raise NotFound("User is not blocked")
        if edge.initiator_id != actor_id or edge.status != FriendshipStatus.BLOCKED:
            raise NotBlocker("User is not blocked by you")
        await self.db.delete(edge)
        await self.db.flush()
        return STATUS_NONE

    # ── queries ───────────────────────────────────────────────────────────

    async def status_between(self, viewer_id: int, other_id: int) -> str:
        """Status as seen by `viewer_id`; being blocked reads as 'none'."""
        if viewer_id == other_id:
            return STATUS_NONE
        edge = await self.find_edge(viewer_id, other_id)
        if edge is None:
            return STATUS_NONE
        if edge.status == FriendshipStatus.BLOCKED and edge.initiator_id != viewer_id:
            return STATUS_NONE
        return edge.status.value

    async def list_accepted(
        self, user_id: int, page: int = 1, page_size: int = 10
    ) -> tuple[list[Friendship], int]:
        page, page_size = clamp_page(page, page_size)
        where = and_(
            or_(Friendship.initiator_id == user_id, Friendship.recipient_id == user_id),
            Friendship.status == FriendshipStatus.ACCEPTED,
        )
        # Count and page are separate reads; they may disagree under concurrent writes.
        total = await self.db.scalar(select(func.count()).select_from(Friendship).where(where))
        result = await self.db.execute(
            select(Friendship)
            .where(where)
            .order_by(Friendship.updated_at.desc(), Friendship.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().unique()), total or 0

    async def list_pending(
        self,
        user_id: int,
        direction: str = "incoming",
        page: int = 1,
        page_size: int = 10,
    ) -> tuple[list[Friendship], int]:
        page, page_size = clamp_page(page, page_size)
        column = Friendship.initiator_id if direction == "outgoing" else Friendship.recipient_id
        where = and_(column == user_id, Friendship.status == FriendshipStatus.PENDING)
        total = await self.db.scalar(select(func.count()).select_from(Friendship).where(where))
        result = await self.db.execute(
            select(Friendship)
            .where(where)
            .order_by(Friendship.created_at.desc(), Friendship.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().unique()), total or 0

    async def friend_ids(self, user_id: int) -> set[int]:
        result = await self.db.execute(
            select(Friendship.initiator_id, Friendship.recipient_id).where(
                or_(Friendship.initiator_id == user_id, Friendship.recipient_id == user_id),
                Friendship.status == FriendshipStatus.ACCEPTED,
            )
        )
        return {b if a == user_id else a for a, b in result.all()}

    async def mutual_count(self, user_a: int, user_b: int) -> int:
        return (await self.mutual_counts(user_a, [user_b]))[user_b]

    async def mutual_counts(self, user_id: int, others: Iterable[int]) -> dict[int, int]:
        """Mutual friend count between `user_id` and each of `others`, in two queries."""
        others = set(others)
        if not others:
            return {}
        mine = await self.friend_ids(user_id)
        result = await self.db.execute(
            select(Friendship.initiator_id, Friendship.recipient_id).where(
                or_(Friendship.initiator_id.in_(others), Friendship.recipient_id.in_(others)),
                Friendship.status == FriendshipStatus.ACCEPTED,
            )
        )
        counts = dict.fromkeys(others, 0)
        for a, b in result.all():
            if a in others and b in mine:
                counts[a] += 1
            if b in others and a in mine:
                counts[b] += 1
        return counts

    async def suggest(self, user_id: int, limit: int = 10) -> list[User]:
        """
        A uniform random sample of active users `user_id` has no
        accepted / pending / blocked edge with. Order is unspecified.
        """
        if limit < 1 or limit > settings.suggestion_limit_max:
            limit = settings.default_page_size

        edges = await self.db.execute(
            select(Friendship.initiator_id, Friendship.recipient_id).where(
                or_(Friendship.initiator_id == user_id, Friendship.recipient_id == user_id),
                Friendship.status.in_(_CONNECTED),
            )
        )
        excluded = {user_id}
        for a, b in edges.all():
            excluded.add(b if a == user_id else a)

        active = await self.db.scalars(
            select(User.id).where(User.is_active.is_(True)).order_by(User.id)
        )
        candidates = [c for c in active.all() if c not in excluded]
        if not candidates:
            return []

        picked = self.rng.sample(candidates, min(limit, len(candidates)))
        users = await self.db.scalars(select(User).where(User.id.in_(picked)))
        by_id = {u.id: u for u in users.all()}
        return [by_id[i] for i in picked if i in by_id]
