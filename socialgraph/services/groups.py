"""
Group membership ledger.

A membership edge links a user to a group with a role (member / admin), a
mute flag and an approval status (pending / approved / rejected). Joining a
public group approves immediately; a private group queues the request for an
admin. The creator always holds an approved admin membership and can only go
away by deleting the group.

`UserGroup.member_count` mirrors the number of approved memberships. It is
never recomputed: every transition that changes the approved set issues a ±1
UPDATE in the same session, so the counter and the membership rows commit or
roll back together.
"""
import logging
from typing import Optional

from opentelemetry import trace
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from socialgraph.errors import (
    AlreadyMember,
    CreatorCannotBeRemoved,
    CreatorCannotLeave,
    Forbidden,
    InvalidState,
    NotFound,
    NotGroupAdmin,
    NotMember,
)
from socialgraph.models.users import (
    GroupMember,
    GroupPrivacy,
    MemberRole,
    MemberStatus,
    User,
    UserGroup,
    utcnow,
)
from socialgraph.services.friendships import clamp_page
from socialgraph.telemetry import GROUP_MEMBERSHIP_CHANGES_TOTAL

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class GroupLedger:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    # ── helpers ───────────────────────────────────────────────────────────

    async def _require_group(self, group_id: int) -> UserGroup:
        group = await self.db.get(UserGroup, group_id)
        if group is None:
            raise NotFound(f"Group {group_id} not found")
        return group

    async def find_membership(self, user_id: int, group_id: int) -> Optional[GroupMember]:
        result = await self.db.execute(
            select(GroupMember).where(
                GroupMember.user_id == user_id, GroupMember.group_id == group_id
            )
        )
        return result.scalars().first()

    async def _require_admin(self, user_id: int, group_id: int, what: str) -> GroupMember:
        member = await self.find_membership(user_id, group_id)
        if member is None or not member.is_approved_admin:
            raise NotGroupAdmin(f"You do not have permission to {what}")
        return member

    async def _adjust_member_count(self, group_id: int, delta: int) -> None:
        stmt = (
            update(UserGroup)
            .where(UserGroup.id == group_id)
            .values(member_count=UserGroup.member_count + delta)
        )
        if delta < 0:
            stmt = stmt.where(UserGroup.member_count > 0)
        await self.db.execute(stmt.execution_options(synchronize_session="fetch"))

    async def reload_group(self, group_id: int) -> UserGroup:
        """Fresh copy of the group with its creator eagerly loaded."""
        group = await self.db.get(UserGroup, group_id, populate_existing=True)
        if group is None:
            raise NotFound(f"Group {group_id} not found")
        return group

    async def reload_member(self, member_id: int) -> GroupMember:
        member = await self.db.get(GroupMember, member_id, populate_existing=True)
        if member is None:
            raise NotFound("Member not found")
        return member

    async def _add_member(
        self,
        group_id: int,
        user_id: int,
        status: MemberStatus,
        role: MemberRole = MemberRole.MEMBER,
        nickname: Optional[str] = None,
    ) -> GroupMember:
        member = GroupMember(
            group_id=group_id,
            user_id=user_id,
            role=role,
            status=status,
            nickname=nickname,
            joined_at=utcnow(),
        )
        self.db.add(member)
        try:
            await self.db.flush()
        except IntegrityError as exc:
            raise AlreadyMember("Already a member or request already sent") from exc
        if status == MemberStatus.APPROVED:
            await self._adjust_member_count(group_id, +1)
        return member

    # ── groups ────────────────────────────────────────────────────────────

    async def create_group(
        self,
        creator_id: int,
        name: str,
        description: str = "",
        privacy: str = GroupPrivacy.PUBLIC.value,
        cover_image: Optional[str] = None,
    ) -> UserGroup:
        with tracer.start_as_current_span("group.create") as span:
            if await self.db.get(User, creator_id) is None:
                raise NotFound(f"User {creator_id} not found")

            group = UserGroup(
                name=name,
                description=description,
                privacy=GroupPrivacy(privacy),
                cover_image=cover_image,
                created_by=creator_id,
                member_count=0,
            )
            self.db.add(group)
            await self.db.flush()
            span.set_attribute("group.id", group.id)

            await self._add_member(
                group.id, creator_id, MemberStatus.APPROVED, role=MemberRole.ADMIN
            )
            GROUP_MEMBERSHIP_CHANGES_TOTAL.labels(action="create").inc()
            logger.info("Group %s created by user %s", group.id, creator_id)
            return await self.reload_group(group.id)

    async def get_group(
        self, viewer_id: Optional[int], group_id: int
    ) -> tuple[UserGroup, Optional[GroupMember]]:
        """The group plus the viewer's own membership (if any)."""
        group = await self._require_group(group_id)
        member = await self.find_membership(viewer_id, group_id) if viewer_id else None
        if group.privacy == GroupPrivacy.PRIVATE:
            if member is None or member.status != MemberStatus.APPROVED:
                raise Forbidden("You do not have permission to view this group")
        return group, member

    async def update_group(
        self,
        actor_id: int,
        group_id: int,
        name: Optional[str] = None,
        description: Optional[str] = None,
        privacy: Optional[str] = None,
        cover_image: Optional[str] = None,
    ) -> UserGroup:
        group = await self._require_group(group_id)
        await self._require_admin(actor_id, group_id, "edit this group")

        if name:
            group.name = name
        if description is not None:
            group.description = description
        if cover_image:
            group.cover_image = cover_image
        if privacy:
            group.privacy = GroupPrivacy(privacy)
        group.updated_at = utcnow()
        await self.db.flush()
        logger.info("Group %s updated by user %s", group_id, actor_id)
        return await self.reload_group(group_id)

    async def delete_group(self, actor_id: int, group_id: int) -> None:
        group = await self._require_group(group_id)
        if group.created_by != actor_id:
            await self._require_admin(actor_id, group_id, "delete this group")

        await self.db.execute(delete(GroupMember).where(GroupMember.group_id == group_id))
        await self.db.delete(group)
        await self.db.flush()
        GROUP_MEMBERSHIP_CHANGES_TOTAL.labels(action="delete").inc()
        logger.info("Group %s deleted by user %s", group_id, actor_id)

    async def list_groups(
        self,
        query: Optional[str] = None,
        privacy: Optional[str] = None,
        page: int = 1,
        page_size: int = 10,
    ) -> tuple[list[UserGroup], int]:
        page, page_size = clamp_page(page, page_size)
        stmt = select(UserGroup)
        if query:
            stmt = stmt.where(UserGroup.name.ilike(f"%{query}%"))
        if privacy:
            stmt = stmt.where(UserGroup.privacy == GroupPrivacy(privacy))

        total = await self.db.scalar(select(func.count()).select_from(stmt.subquery()))
        result = await self.db.execute(
            stmt.order_by(UserGroup.created_at.desc(), UserGroup.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().unique()), total or 0

    async def list_user_groups(
        self, user_id: int, page: int = 1, page_size: int = 10
    ) -> tuple[list[UserGroup], int]:
        page, page_size = clamp_page(page, page_size)
        stmt = (
            select(UserGroup)
            .join(GroupMember, GroupMember.group_id == UserGroup.id)
            .where(
                GroupMember.user_id == user_id,
                GroupMember.status == MemberStatus.APPROVED,
            )
        )
        total = await self.db.scalar(select(func.count()).select_from(stmt.subquery()))
        result = await self.db.execute(
            stmt.order_by(GroupMember.joined_at.desc(), UserGroup.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().unique()), total or 0

    # ── membership ────────────────────────────────────────────────────────

    async def join(
        self, user_id: int, group_id: int, nickname: Optional[str] = None
    ) -> GroupMember:
        group = await self._require_group(group_id)
        if await self.find_membership(user_id, group_id) is not None:
            raise AlreadyMember("Already a member or request already sent")

        status = (
            MemberStatus.APPROVED
            if group.privacy == GroupPrivacy.PUBLIC
            else MemberStatus.PENDING
        )
        member = await self._add_member(group_id, user_id, status, nickname=nickname)
        GROUP_MEMBERSHIP_CHANGES_TOTAL.labels(action="join").inc()
        logger.info("User %s joined group %s (%s)", user_id, group_id, status.value)
        return member

    async def leave(self, user_id: int, group_id: int) -> None:
        group = await self._require_group(group_id)
        member = await self.find_membership(user_id, group_id)
        if member is None or member.status != MemberStatus.APPROVED:
            raise NotMember("You are not a member of this group")
        if group.created_by == user_id:
            raise CreatorCannotLeave("The group creator cannot leave; delete the group instead")

        await self.db.delete(member)
        await self.db.flush()
        await self._adjust_member_count(group_id, -1)
        GROUP_MEMBERSHIP_CHANGES_TOTAL.labels(action="leave").inc()
        logger.info("User %s left group %s", user_id, group_id)

    async def invite(self, actor_id: int, group_id: int, user_id: int) -> GroupMember:
        await self._require_group(group_id)
        await self._require_admin(actor_id, group_id, "invite members")
        if await self.db.get(User, user_id) is None:
            raise NotFound(f"User {user_id} not found")
        if await self.find_membership(user_id, group_id) is not None:
            raise AlreadyMember("User is already a member or has been invited")

        member = await self._add_member(group_id, user_id, MemberStatus.PENDING)
        GROUP_MEMBERSHIP_CHANGES_TOTAL.labels(action="invite").inc()
        logger.info("User %s invited %s to group %s", actor_id, user_id, group_id)
        return member

    async def _pending_request(self, user_id: int, group_id: int) -> GroupMember:
        member = await self.find_membership(user_id, group_id)
        if member is None:
            raise NotFound("Join request not found")
        if member.status != MemberStatus.PENDING:
            raise InvalidState(f"Join request is {member.status.value}, not pending")
        return member

    async def approve_join(self, actor_id: int, group_id: int, user_id: int) -> GroupMember:
        await self._require_group(group_id)
        await self._require_admin(actor_id, group_id, "approve join requests")
        member = await self._pending_request(user_id, group_id)

        member.status = MemberStatus.APPROVED
        member.joined_at = utcnow()
        await self.db.flush()
        await self._adjust_member_count(group_id, +1)
        GROUP_MEMBERSHIP_CHANGES_TOTAL.labels(action="approve").inc()
        logger.info("User %s approved %s into group %s", actor_id, user_id, group_id)
        return member

    async def reject_join(self, actor_id: int, group_id: int, user_id: int) -> GroupMember:
        await self._require_group(group_id)
        await self._require_admin(actor_id, group_id, "reject join requests")
        member = await self._pending_request(user_id, group_id)

        member.status = MemberStatus.REJECTED
        await self.db.flush()
        GROUP_MEMBERSHIP_CHANGES_TOTAL.labels(action="reject").inc()
        logger.info("User %s rejected %s from group %s", actor_id, user_id, group_id)
        return member

    async def remove_member(self, actor_id: int, group_id: int, user_id: int) -> None:
        group = await self._require_group(group_id)
        await self._require_admin(actor_id, group_id, "remove members")
        member = await self.find_membership(user_id, group_id)
        if member is None:
            raise NotFound("Member not found")
        if member.status != MemberStatus.APPROVED:
            raise InvalidState(f"Membership is {member.status.value}, not approved")
        if group.created_by == user_id:
            raise CreatorCannotBeRemoved("The group creator cannot be removed")

        await self.db.delete(member)
        await self.db.flush()
        await self._adjust_member_count(group_id, -1)
        GROUP_MEMBERSHIP_CHANGES_TOTAL.labels(action="remove").inc()
        logger.info("User %s removed %s from group %s", actor_id, user_id, group_id)

    async def update_member(
        self,
        actor_id: int,
        group_id: int,
        member_id: int,
        nickname: Optional[str] = None,
        role: Optional[str] = None,
        is_muted: Optional[bool] = None,
    ) -> GroupMember:
        """
        Admins may change nickname, role and mute on any membership; everyone
        else may only change the nickname on their own.
        """
        group = await self._require_group(group_id)
        actor = await self.find_membership(actor_id, group_id)
        if actor is None or actor.status != MemberStatus.APPROVED:
            raise Forbidden("You do not have permission to update members of this group")

        is_admin = actor.role == MemberRole.ADMIN
        if not is_admin:
            if actor.id != member_id:
                raise Forbidden("You cannot update another member")
            if role is not None or is_muted is not None:
                raise Forbidden("Only admins can change roles or mute members")

        member = await self.get_member(group_id, member_id)

        if nickname:
            member.nickname = nickname
        if role is not None:
            new_role = MemberRole(role)
            if member.user_id == group.created_by and new_role != MemberRole.ADMIN:
                raise Forbidden("The group creator must remain an admin")
            member.role = new_role
        if is_muted is not None:
            member.is_muted = is_muted
        await self.db.flush()
        logger.info("User %s updated member %s in group %s", actor_id, member_id, group_id)
        return await self.reload_member(member_id)

    async def get_member(self, group_id: int, member_id: int) -> GroupMember:
        member = await self.db.get(GroupMember, member_id)
        if member is None or member.group_id != group_id:
            raise NotFound("Member not found")
        return member

    async def list_members(
        self,
        viewer_id: Optional[int],
        group_id: int,
        role: Optional[str] = None,
        status: Optional[str] = None,
        page: int = 1,
        page_size: int = 10,
    ) -> tuple[list[GroupMember], int]:
        await self.get_group(viewer_id, group_id)
        page, page_size = clamp_page(page, page_size)

        stmt = select(GroupMember).where(GroupMember.group_id == group_id)
        if role:
            stmt = stmt.where(GroupMember.role == MemberRole(role))
        if status:
            stmt = stmt.where(GroupMember.status == MemberStatus(status))

        total = await self.db.scalar(select(func.count()).select_from(stmt.subquery()))
        result = await self.db.execute(
            stmt.order_by(GroupMember.joined_at.asc(), GroupMember.id.asc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().unique()), total or 0

    async def approved_count(self, group_id: int) -> int:
        return await self.db.scalar(
            select(func.count())
            .select_from(GroupMember)
            .where(
                GroupMember.group_id == group_id,
                GroupMember.status == MemberStatus.APPROVED,
            )
        ) or 0
