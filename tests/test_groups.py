import random

import pytest
from sqlalchemy import func, select

from socialgraph.database import session_scope
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
from socialgraph.models import (
    GroupMember,
    MemberRole,
    MemberStatus,
    User,
    UserGroup,
)
from socialgraph.services.groups import GroupLedger


@pytest.fixture
async def people(make_user):
    return [await make_user(f"g{i}") for i in range(1, 6)]


@pytest.fixture
def groups(db):
    return GroupLedger(db)


async def member_count(groups, group_id):
    group = await groups.reload_group(group_id)
    return group.member_count


class TestCreate:
    async def test_creator_is_approved_admin(self, groups, people):
        group = await groups.create_group(people[0].id, "Hikers")
        assert group.member_count == 1
        member = await groups.find_membership(people[0].id, group.id)
        assert member.role == MemberRole.ADMIN
        assert member.status == MemberStatus.APPROVED

    async def test_unknown_creator(self, groups):
        with pytest.raises(NotFound):
            await groups.create_group(12345, "Ghosts")


class TestJoin:
    async def test_public_join_is_approved_and_counted(self, groups, people):
        group = await groups.create_group(people[0].id, "Open", privacy="public")
        member = await groups.join(people[1].id, group.id)
        assert member.status == MemberStatus.APPROVED
        assert await member_count(groups, group.id) == 2

    async def test_private_join_is_pending_and_not_counted(self, groups, people):
        group = await groups.create_group(people[0].id, "Closed", privacy="private")
        member = await groups.join(people[1].id, group.id)
        assert member.status == MemberStatus.PENDING
        assert await member_count(groups, group.id) == 1

    async def test_join_twice(self, groups, people):
        group = await groups.create_group(people[0].id, "Open")
        await groups.join(people[1].id, group.id)
        with pytest.raises(AlreadyMember):
            await groups.join(people[1].id, group.id)

    async def test_join_missing_group(self, groups, people):
        with pytest.raises(NotFound):
            await groups.join(people[1].id, 999)

    async def test_approve_and_reject(self, groups, people):
        a, b, c = people[:3]
        group = await groups.create_group(a.id, "Closed", privacy="private")
        await groups.join(b.id, group.id)
        await groups.join(c.id, group.id)

        with pytest.raises(NotGroupAdmin):
            await groups.approve_join(b.id, group.id, c.id)

        approved = await groups.approve_join(a.id, group.id, b.id)
        rejected = await groups.reject_join(a.id, group.id, c.id)
        assert approved.status == MemberStatus.APPROVED
        assert rejected.status == MemberStatus.REJECTED
        assert await member_count(groups, group.id) == 2

        with pytest.raises(InvalidState):
            await groups.approve_join(a.id, group.id, b.id)

    async def test_invite_creates_pending_membership(self, groups, people):
        a, b, c = people[:3]
        group = await groups.create_group(a.id, "Club")
        member = await groups.invite(a.id, group.id, b.id)
        assert member.status == MemberStatus.PENDING
        assert await member_count(groups, group.id) == 1
        with pytest.raises(AlreadyMember):
            await groups.invite(a.id, group.id, b.id)
        with pytest.raises(NotGroupAdmin):
            await groups.invite(c.id, group.id, people[3].id)


class TestLeaveAndRemove:
    async def test_creator_cannot_leave(self, groups, people):
        group = await groups.create_group(people[0].id, "Mine")
        with pytest.raises(CreatorCannotLeave):
            await groups.leave(people[0].id, group.id)
        assert await member_count(groups, group.id) == 1

    async def test_creator_cannot_be_removed(self, groups, people):
        a, b = people[:2]
        group = await groups.create_group(a.id, "Mine")
        await groups.join(b.id, group.id)
        member = await groups.find_membership(b.id, group.id)
        await groups.update_member(a.id, group.id, member.id, role="admin")
        with pytest.raises(CreatorCannotBeRemoved):
            await groups.remove_member(b.id, group.id, a.id)

    async def test_leave_decrements(self, groups, people):
        a, b = people[:2]
        group = await groups.create_group(a.id, "Open")
        await groups.join(b.id, group.id)
        await groups.leave(b.id, group.id)
        assert await member_count(groups, group.id) == 1
        assert await groups.find_membership(b.id, group.id) is None

    async def test_leave_when_not_member(self, groups, people):
        group = await groups.create_group(people[0].id, "Open")
        with pytest.raises(NotMember):
            await groups.leave(people[1].id, group.id)

    async def test_pending_member_cannot_leave(self, groups, people):
        group = await groups.create_group(people[0].id, "Closed", privacy="private")
        await groups.join(people[1].id, group.id)
        with pytest.raises(NotMember):
            await groups.leave(people[1].id, group.id)

    async def test_remove_requires_admin(self, groups, people):
        a, b, c = people[:3]
        group = await groups.create_group(a.id, "Open")
        await groups.join(b.id, group.id)
        await groups.join(c.id, group.id)
        with pytest.raises(NotGroupAdmin):
            await groups.remove_member(b.id, group.id, c.id)
        await groups.remove_member(a.id, group.id, c.id)
        assert await member_count(groups, group.id) == 2


class TestMemberCountInvariant:
    @pytest.mark.parametrize("privacy", ["private", "public"])
    async def test_random_transitions_keep_count_in_sync(self, groups, people, make_user, privacy):
        rng = random.Random(42)
        extra = [await make_user(f"r{i}") for i in range(10)]
        users = people[1:] + extra
        creator = people[0]
        group = await groups.create_group(creator.id, "Busy", privacy=privacy)

        for _ in range(200):
            user = rng.choice(users)
            op = rng.choice(["join", "approve", "reject", "remove", "leave"])
            try:
                if op == "join":
                    await groups.join(user.id, group.id)
                elif op == "approve":
                    await groups.approve_join(creator.id, group.id, user.id)
                elif op == "reject":
                    await groups.reject_join(creator.id, group.id, user.id)
                elif op == "remove":
                    await groups.remove_member(creator.id, group.id, user.id)
                else:
                    await groups.leave(user.id, group.id)
            except (AlreadyMember, InvalidState, NotFound, NotMember):
                # Illegal transition for the current state; nothing changed
                pass

            assert await member_count(groups, group.id) == await groups.approved_count(group.id)

        assert await member_count(groups, group.id) >= 1


class TestVisibilityAndUpdates:
    async def test_private_group_hidden_from_non_members(self, groups, people):
        a, b = people[:2]
        group = await groups.create_group(a.id, "Secret", privacy="private")
        with pytest.raises(Forbidden):
            await groups.get_group(b.id, group.id)
        with pytest.raises(Forbidden):
            await groups.list_members(b.id, group.id)
        await groups.join(b.id, group.id)
        with pytest.raises(Forbidden):
            await groups.get_group(b.id, group.id)
        await groups.approve_join(a.id, group.id, b.id)
        fetched, member = await groups.get_group(b.id, group.id)
        assert fetched.id == group.id
        assert member.status == MemberStatus.APPROVED

    async def test_update_group_requires_admin(self, groups, people):
        a, b = people[:2]
        group = await groups.create_group(a.id, "Before")
        with pytest.raises(NotGroupAdmin):
            await groups.update_group(b.id, group.id, name="Hijacked")
        updated = await groups.update_group(a.id, group.id, name="After", privacy="private")
        assert updated.name == "After"
        assert updated.privacy.value == "private"

    async def test_member_can_only_change_own_nickname(self, groups, people):
        a, b, c = people[:3]
        group = await groups.create_group(a.id, "Club")
        mb = await groups.join(b.id, group.id)
        mc = await groups.join(c.id, group.id)

        updated = await groups.update_member(b.id, group.id, mb.id, nickname="bee")
        assert updated.nickname == "bee"
        with pytest.raises(Forbidden):
            await groups.update_member(b.id, group.id, mc.id, nickname="sea")
        with pytest.raises(Forbidden):
            await groups.update_member(b.id, group.id, mb.id, role="admin")

    async def test_admin_can_mute_and_promote(self, groups, people):
        a, b = people[:2]
        group = await groups.create_group(a.id, "Club")
        mb = await groups.join(b.id, group.id)
        updated = await groups.update_member(a.id, group.id, mb.id, role="admin", is_muted=True)
        assert updated.role == MemberRole.ADMIN
        assert updated.is_muted is True

    async def test_creator_stays_admin(self, groups, people):
        a = people[0]
        group = await groups.create_group(a.id, "Club")
        creator_member = await groups.find_membership(a.id, group.id)
        with pytest.raises(Forbidden):
            await groups.update_member(a.id, group.id, creator_member.id, role="member")

    async def test_list_filters(self, groups, people):
        a, b, c = people[:3]
        group = await groups.create_group(a.id, "Closed", privacy="private")
        await groups.join(b.id, group.id)
        await groups.join(c.id, group.id)
        await groups.approve_join(a.id, group.id, b.id)

        pending, n_pending = await groups.list_members(a.id, group.id, status="pending")
        admins, n_admins = await groups.list_members(a.id, group.id, role="admin")
        assert n_pending == 1 and pending[0].user_id == c.id
        assert n_admins == 1 and admins[0].user_id == a.id

        mine, total = await groups.list_user_groups(b.id)
        assert total == 1 and mine[0].id == group.id
        assert (await groups.list_user_groups(c.id))[1] == 0

    async def test_search_groups(self, groups, people):
        await groups.create_group(people[0].id, "Chess club")
        await groups.create_group(people[0].id, "Running crew", privacy="private")
        found, total = await groups.list_groups(query="chess")
        assert total == 1 and found[0].name == "Chess club"
        private, total = await groups.list_groups(privacy="private")
        assert total == 1 and private[0].name == "Running crew"

    async def test_delete_group(self, groups, people):
        a, b = people[:2]
        group = await groups.create_group(a.id, "Doomed")
        await groups.join(b.id, group.id)
        with pytest.raises(NotGroupAdmin):
            await groups.delete_group(b.id, group.id)
        await groups.delete_group(a.id, group.id)
        assert await groups.db.get(UserGroup, group.id) is None
        remaining = await groups.db.scalar(
            select(func.count()).select_from(GroupMember).where(GroupMember.group_id == group.id)
        )
        assert remaining == 0


class TestAtomicity:
    async def seed(self, session_factory):
        async with session_scope(session_factory) as s:
            creator, joiner = User(username="owner"), User(username="joiner")
            s.add_all([creator, joiner])
            await s.flush()
            return creator.id, joiner.id

    async def test_failed_create_leaves_no_orphan_group(self, session_factory, monkeypatch):
        creator_id, _ = await self.seed(session_factory)

        async def boom(self, group_id, delta):
            raise RuntimeError("counter update failed")

        monkeypatch.setattr(GroupLedger, "_adjust_member_count", boom)
        with pytest.raises(RuntimeError):
            async with session_scope(session_factory) as s:
                await GroupLedger(s).create_group(creator_id, "Half-made")

        async with session_factory() as s:
            assert await s.scalar(select(func.count()).select_from(UserGroup)) == 0
            assert await s.scalar(select(func.count()).select_from(GroupMember)) == 0

    async def test_failed_join_does_not_drift_counter(self, session_factory, monkeypatch):
        creator_id, joiner_id = await self.seed(session_factory)
        async with session_scope(session_factory) as s:
            group_id = (await GroupLedger(s).create_group(creator_id, "Steady")).id

        original = GroupLedger._adjust_member_count

        async def fail_after_update(self, group_id, delta):
            await original(self, group_id, delta)
            raise RuntimeError("crash after counter update")

        monkeypatch.setattr(GroupLedger, "_adjust_member_count", fail_after_update)
        with pytest.raises(RuntimeError):
            async with session_scope(session_factory) as s:
                await GroupLedger(s).join(joiner_id, group_id)

        async with session_factory() as s:
            groups = GroupLedger(s)
            assert (await s.get(UserGroup, group_id)).member_count == 1
            assert await groups.approved_count(group_id) == 1
            assert await groups.find_membership(joiner_id, group_id) is None
