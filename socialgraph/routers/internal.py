"""
Service-to-service identity lookups, served by the users service and consumed
by socialgraph.clients.identity_client. Not exposed through the public gateway.

  POST /internal/users/batch                — display identities for many ids
  GET  /internal/users/by-username/{name}   — id for a username
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from socialgraph.database import get_db
from socialgraph.schemas import (
    UserBatchRequest,
    UserBatchResponse,
    UserBrief,
    UsernameLookupResponse,
)
from socialgraph.services.users import UserDirectory

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/users/batch", response_model=UserBatchResponse)
async def batch_users(body: UserBatchRequest, db: AsyncSession = Depends(get_db)):
    """Unknown ids are left out of the response rather than failing it."""
    users = await UserDirectory(db).find_many(body.user_ids)
    logger.debug("Resolved %d of %d requested users", len(users), len(set(body.user_ids)))
    return UserBatchResponse(users=[UserBrief.model_validate(u) for u in users])


@router.get("/users/by-username/{username}", response_model=UsernameLookupResponse)
async def user_by_username(username: str, db: AsyncSession = Depends(get_db)):
    user = await UserDirectory(db).get_by_username(username)
    return UsernameLookupResponse(id=user.id, username=user.username)
