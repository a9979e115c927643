"""
Group endpoints (all authenticated):
  GET    /groups                              — browse / search groups
  GET    /groups/me                           — groups the caller belongs to
  POST   /groups                              — create (caller becomes admin)
  GET    /groups/{id}                         — details + caller's membership
  PUT    /groups/{id}                         — edit (admins)
  DELETE /groups/{id}                         — delete (creator or admins)
  POST   /groups/join                         — join / request to join
  POST   /groups/{id}/leave                   — leave
  POST   /groups/{id}/invite                  — invite a user (admins)
  POST   /groups/{id}/members/approve|reject  — answer a join request (admins)
  DELETE /groups/{id}/members                 — remove a member (admins)
  PUT    /groups/{id}/members/{member_id}     — nickname / role / mute
  GET    /groups/{id}/members                 — member list
"""
import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from opentelemetry import trace
from sqlalchemy.ext.asyncio import AsyncSession

from socialgraph.auth import CurrentUser, get_current_user
from socialgraph.database import get_db
from socialgraph.models.users import GroupMember, UserGroup
from socialgraph.schemas import (
    GroupCreate,
    GroupDetailResponse,
    GroupJoinRequest,
    GroupListResponse,
    GroupMemberAction,
    GroupMemberListResponse,
    GroupMemberResponse,
    GroupMemberUpdate,
    GroupResponse,
    GroupUpdate,
    UserBrief,
)
from socialgraph.services.friendships import clamp_page
from socialgraph.services.groups import GroupLedger

logger = logging.getLogger(__name__)
router = APIRouter()
tracer = trace.get_tracer(__name__)


def get_groups(db: AsyncSession = Depends(get_db)) -> GroupLedger:
    return GroupLedger(db)


def _member_response(member: GroupMember) -> GroupMemberResponse:
    return GroupMemberResponse(
        id=member.id,
        group_id=member.group_id,
        user_id=member.user_id,
        role=member.role.value,
        nickname=member.nickname,
        is_muted=member.is_muted,
        status=member.status.value,
        joined_at=member.joined_at,
        left_at=member.left_at,
        user=UserBrief.model_validate(member.user) if member.user else None,
    )


def _group_fields(group: UserGroup) -> dict:
    return dict(
        id=group.id,
        name=group.name,
        description=group.description,
        privacy=group.privacy.value,
        cover_image=group.cover_image,
        avatar=group.avatar,
        member_count=group.member_count,
        created_by=group.created_by,
        created_at=group.created_at,
        updated_at=group.updated_at,
        creator=UserBrief.model_validate(group.creator) if group.creator else None,
    )


def _group_response(group: UserGroup) -> GroupResponse:
    return GroupResponse(**_group_fields(group))


@router.get("", response_model=GroupListResponse)
async def list_groups(
    query: Optional[str] = Query(None, max_length=100),
    privacy: Optional[Literal["public", "private"]] = Query(None),
    page: int = Query(1),
    page_size: int = Query(10),
    groups: GroupLedger = Depends(get_groups),
    _: CurrentUser = Depends(get_current_user),
):
    rows, total = await groups.list_groups(query, privacy, page, page_size)
    page, page_size = clamp_page(page, page_size)
    return GroupListResponse(
        groups=[_group_response(g) for g in rows], total=total, page=page, page_size=page_size
    )


@router.get("/me", response_model=GroupListResponse)
async def my_groups(
    page: int = Query(1),
    page_size: int = Query(10),
    groups: GroupLedger = Depends(get_groups),
    me: CurrentUser = Depends(get_current_user),
):
    rows, total = await groups.list_user_groups(me.user_id, page, page_size)
    page, page_size = clamp_page(page, page_size)
    return GroupListResponse(
        groups=[_group_response(g) for g in rows], total=total, page=page, page_size=page_size
    )


@router.post("", response_model=GroupResponse, status_code=status.HTTP_201_CREATED)
async def create_group(
    body: GroupCreate,
    groups: GroupLedger = Depends(get_groups),
    me: CurrentUser = Depends(get_current_user),
):
    group = await groups.create_group(
        me.user_id,
        name=body.name,
        description=body.description,
        privacy=body.privacy,
        cover_image=body.cover_image,
    )
    return _group_response(group)


@router.post("/join", response_model=GroupMemberResponse, status_code=status.HTTP_201_CREATED)
async def join_group(
    body: GroupJoinRequest,
    groups: GroupLedger = Depends(get_groups),
    me: CurrentUser = Depends(get_current_user),
):
    with tracer.start_as_current_span("join_group") as span:
        span.set_attribute("group.id", body.group_id)
        member = await groups.join(me.user_id, body.group_id, nickname=body.nickname)
        return _member_response(await groups.reload_member(member.id))


@router.get("/{group_id}", response_model=GroupDetailResponse)
async def get_group(
    group_id: int,
    groups: GroupLedger = Depends(get_groups),
    me: CurrentUser = Depends(get_current_user),
):
    group, member = await groups.get_group(me.user_id, group_id)
    return GroupDetailResponse(
        **_group_fields(group),
        current_user_member=_member_response(member) if member else None,
    )


@router.put("/{group_id}", response_model=GroupResponse)
async def update_group(
    group_id: int,
    body: GroupUpdate,
    groups: GroupLedger = Depends(get_groups),
    me: CurrentUser = Depends(get_current_user),
):
    group = await groups.update_group(
        me.user_id,
        group_id,
        name=body.name,
        description=body.description,
        privacy=body.privacy,
        cover_image=body.cover_image,
    )
    return _group_response(group)


@router.delete("/{group_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_group(
    group_id: int,
    groups: GroupLedger = Depends(get_groups),
    me: CurrentUser = Depends(get_current_user),
):
    await groups.delete_group(me.user_id, group_id)


@router.post("/{group_id}/leave", status_code=status.HTTP_204_NO_CONTENT)
async def leave_group(
    group_id: int,
    groups: GroupLedger = Depends(get_groups),
    me: CurrentUser = Depends(get_current_user),
):
    await groups.leave(me.user_id, group_id)


@router.post(
    "/{group_id}/invite",
    response_model=GroupMemberResponse,
    status_code=status.HTTP_201_CREATED,
)
async def invite_member(
    group_id: int,
    body: GroupMemberAction,
    groups: GroupLedger = Depends(get_groups),
    me: CurrentUser = Depends(get_current_user),
):
    member = await groups.invite(me.user_id, group_id, body.user_id)
    return _member_response(await groups.reload_member(member.id))


@router.post("/{group_id}/members/{decision}", response_model=GroupMemberResponse)
async def answer_join_request(
    group_id: int,
    decision: Literal["approve", "reject"],
    body: GroupMemberAction,
    groups: GroupLedger = Depends(get_groups),
    me: CurrentUser = Depends(get_current_user),
):
    if decision == "approve":
        member = await groups.approve_join(me.user_id, group_id, body.user_id)
    else:
        member = await groups.reject_join(me.user_id, group_id, body.user_id)
    return _member_response(await groups.reload_member(member.id))


@router.delete("/{group_id}/members", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    group_id: int,
    body: GroupMemberAction,
    groups: GroupLedger = Depends(get_groups),
    me: CurrentUser = Depends(get_current_user),
):
    await groups.remove_member(me.user_id, group_id, body.user_id)


@router.put("/{group_id}/members/{member_id}", response_model=GroupMemberResponse)
async def update_member(
    group_id: int,
    member_id: int,
    body: GroupMemberUpdate,
    groups: GroupLedger = Depends(get_groups),
    me: CurrentUser = Depends(get_current_user),
):
    member = await groups.update_member(
        me.user_id,
        group_id,
        member_id,
        nickname=body.nickname,
        role=body.role,
        is_muted=body.is_muted,
    )
    return _member_response(member)


@router.get("/{group_id}/members", response_model=GroupMemberListResponse)
async def list_members(
    group_id: int,
    role: Optional[Literal["member", "admin"]] = Query(None),
    member_status: Optional[Literal["pending", "approved", "rejected"]] = Query(
        None, alias="status"
    ),
    page: int = Query(1),
    page_size: int = Query(10),
    groups: GroupLedger = Depends(get_groups),
    me: CurrentUser = Depends(get_current_user),
):
    rows, total = await groups.list_members(
        me.user_id, group_id, role, member_status, page, page_size
    )
    page, page_size = clamp_page(page, page_size)
    return GroupMemberListResponse(
        members=[_member_response(m) for m in rows],
        total=total,
        page=page,
        page_size=page_size,
    )
