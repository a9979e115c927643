"""
Friendship endpoints (all authenticated):
  GET  /friends                      — the caller's accepted friends
  GET  /friends/requests?type=       — pending requests, incoming or outgoing
  GET  /friends/suggestions?limit=   — random people the caller is not connected to
  GET  /friends/user/{username}      — someone else's friends
  GET  /friends/mutual/{username}    — mutual friend count with someone
  GET  /friends/status/{username}    — edge status as seen by the caller
  POST /friends/{action}             — request | accept | reject | cancel |
                                       unfriend | block | unblock
"""
import logging
import random
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from opentelemetry import trace
from sqlalchemy.ext.asyncio import AsyncSession

from socialgraph.auth import CurrentUser, get_current_user
from socialgraph.database import get_db
from socialgraph.models.users import Friendship
from socialgraph.schemas import (
    FriendAction,
    FriendListResponse,
    FriendResponse,
    FriendshipActionRequest,
    FriendshipActionResponse,
    FriendshipStatusResponse,
    FriendSuggestion,
    FriendSuggestionListResponse,
    MutualFriendsResponse,
    UserBrief,
)
from socialgraph.services.friendships import FriendshipLedger, clamp_page, total_pages
from socialgraph.services.users import UserDirectory

logger = logging.getLogger(__name__)
router = APIRouter()
tracer = trace.get_tracer(__name__)


def get_rng() -> Optional[random.Random]:
    """Suggestion sampler; tests override this with a seeded Random."""
    return None


def get_ledger(
    db: AsyncSession = Depends(get_db),
    rng: Optional[random.Random] = Depends(get_rng),
) -> FriendshipLedger:
    return FriendshipLedger(db, rng=rng)


async def _friend_page(
    ledger: FriendshipLedger,
    viewer_id: int,
    edges: list[Friendship],
    total: int,
    page: int,
    page_size: int,
) -> FriendListResponse:
    page, page_size = clamp_page(page, page_size)
    others = [edge.other_party(viewer_id) for edge in edges]
    mutual = await ledger.mutual_counts(viewer_id, [o.id for o in others])
    friends = [
        FriendResponse(
            id=edge.id,
            initiator_id=edge.initiator_id,
            recipient_id=edge.recipient_id,
            status=edge.status.value,
            created_at=edge.created_at,
            updated_at=edge.updated_at,
            friend=UserBrief.model_validate(other),
            mutual_friends_count=mutual[other.id],
        )
        for edge, other in zip(edges, others)
    ]
    return FriendListResponse(
        friends=friends,
        total=total,
        page=page,
        page_size=page_size,
        total_pages=total_pages(total, page_size),
    )


@router.get("", response_model=FriendListResponse)
async def list_friends(
    page: int = Query(1),
    page_size: int = Query(10),
    ledger: FriendshipLedger = Depends(get_ledger),
    me: CurrentUser = Depends(get_current_user),
):
    edges, total = await ledger.list_accepted(me.user_id, page, page_size)
    return await _friend_page(ledger, me.user_id, edges, total, page, page_size)


@router.get("/requests", response_model=FriendListResponse)
async def list_requests(
    direction: Literal["incoming", "outgoing"] = Query("incoming", alias="type"),
    page: int = Query(1),
    page_size: int = Query(10),
    ledger: FriendshipLedger = Depends(get_ledger),
    me: CurrentUser = Depends(get_current_user),
):
    edges, total = await ledger.list_pending(me.user_id, direction, page, page_size)
    return await _friend_page(ledger, me.user_id, edges, total, page, page_size)


@router.get("/suggestions", response_model=FriendSuggestionListResponse)
async def suggestions(
    limit: int = Query(10),
    ledger: FriendshipLedger = Depends(get_ledger),
    me: CurrentUser = Depends(get_current_user),
):
    users = await ledger.suggest(me.user_id, limit)
    mutual = await ledger.mutual_counts(me.user_id, [u.id for u in users])
    out = [
        FriendSuggestion(
            **UserBrief.model_validate(user).model_dump(),
            mutual_friends_count=mutual[user.id],
        )
        for user in users
    ]
    return FriendSuggestionListResponse(suggestions=out)


@router.get("/user/{username}", response_model=FriendListResponse)
async def list_user_friends(
    username: str,
    page: int = Query(1),
    page_size: int = Query(10),
    ledger: FriendshipLedger = Depends(get_ledger),
    _: CurrentUser = Depends(get_current_user),
):
    user = await UserDirectory(ledger.db).get_by_username(username)
    edges, total = await ledger.list_accepted(user.id, page, page_size)
    return await _friend_page(ledger, user.id, edges, total, page, page_size)


@router.get("/mutual/{username}", response_model=MutualFriendsResponse)
async def mutual_friends(
    username: str,
    ledger: FriendshipLedger = Depends(get_ledger),
    me: CurrentUser = Depends(get_current_user),
):
    user = await UserDirectory(ledger.db).get_by_username(username)
    return MutualFriendsResponse(
        user_id=user.id,
        mutual_friends_count=await ledger.mutual_count(me.user_id, user.id),
    )


@router.get("/status/{username}", response_model=FriendshipStatusResponse)
async def friendship_status(
    username: str,
    ledger: FriendshipLedger = Depends(get_ledger),
    me: CurrentUser = Depends(get_current_user),
):
    user = await UserDirectory(ledger.db).get_by_username(username)
    return FriendshipStatusResponse(
        user_id=user.id,
        status=await ledger.status_between(me.user_id, user.id),
    )


@router.post("/{action}", response_model=FriendshipActionResponse)
async def friendship_action(
    action: FriendAction,
    body: FriendshipActionRequest,
    ledger: FriendshipLedger = Depends(get_ledger),
    me: CurrentUser = Depends(get_current_user),
):
    result = await ledger.perform_action(me.user_id, body.friend_id, action)
    return FriendshipActionResponse(action=action, friend_id=body.friend_id, status=result)
