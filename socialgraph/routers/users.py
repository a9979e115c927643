"""
Profile endpoints:
  POST /user/createProfile — register a profile (called by the auth service)
  GET  /users              — list / search profiles
  GET  /users/me           — the caller's profile
  PUT  /users/me           — partial update of the caller's profile
  GET  /users/{username}   — a profile by username
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from opentelemetry import trace
from sqlalchemy.ext.asyncio import AsyncSession

from socialgraph.auth import CurrentUser, get_current_user
from socialgraph.database import get_db
from socialgraph.schemas import (
    UserListResponse,
    UserProfileCreate,
    UserProfileUpdate,
    UserResponse,
)
from socialgraph.services.friendships import clamp_page, total_pages
from socialgraph.services.users import UserDirectory

logger = logging.getLogger(__name__)
router = APIRouter()
tracer = trace.get_tracer(__name__)


@router.post(
    "/user/createProfile",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Users"],
)
async def create_profile(body: UserProfileCreate, db: AsyncSession = Depends(get_db)):
    with tracer.start_as_current_span("create_profile"):
        user = await UserDirectory(db).create_profile(
            username=body.username,
            email=body.email,
            full_name=body.full_name,
            user_id=body.id,
        )
        return UserResponse.model_validate(user)


@router.get("/users", response_model=UserListResponse, tags=["Users"])
async def list_users(
    query: Optional[str] = Query(None, max_length=100),
    page: int = Query(1),
    page_size: int = Query(10),
    db: AsyncSession = Depends(get_db),
    _: CurrentUser = Depends(get_current_user),
):
    users, total = await UserDirectory(db).list_users(query, page, page_size)
    page, page_size = clamp_page(page, page_size)
    return UserListResponse(
        users=[UserResponse.model_validate(u) for u in users],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=total_pages(total, page_size),
    )


@router.get("/users/me", response_model=UserResponse, tags=["Users"])
async def get_me(
    db: AsyncSession = Depends(get_db),
    me: CurrentUser = Depends(get_current_user),
):
    return UserResponse.model_validate(await UserDirectory(db).get(me.user_id))


@router.put("/users/me", response_model=UserResponse, tags=["Users"])
async def update_me(
    body: UserProfileUpdate,
    db: AsyncSession = Depends(get_db),
    me: CurrentUser = Depends(get_current_user),
):
    with tracer.start_as_current_span("update_profile"):
        user = await UserDirectory(db).update_profile(
            me.user_id, **body.model_dump(exclude_unset=True)
        )
        return UserResponse.model_validate(user)


@router.get("/users/{username}", response_model=UserResponse, tags=["Users"])
async def get_user(
    username: str,
    db: AsyncSession = Depends(get_db),
    _: CurrentUser = Depends(get_current_user),
):
    return UserResponse.model_validate(await UserDirectory(db).get_by_username(username))
