"""
Pydantic request / response schemas for the API layer.
Kept separate from ORM models to avoid coupling transport to storage.
"""
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field


# ──────────────────────────── Users ───────────────────────────────────────

class UserProfileCreate(BaseModel):
    """Sent by the auth service right after registration."""
    id: Optional[int] = Field(None, gt=0)
    username: str = Field(..., min_length=3, max_length=50, pattern=r"^[a-zA-Z0-9_]+$")
    email: str = Field("", max_length=100)
    full_name: str = Field("", max_length=100)


class UserProfileUpdate(BaseModel):
    full_name: Optional[str] = Field(None, max_length=100)
    bio: Optional[str] = None
    profile_picture_url: Optional[str] = Field(None, max_length=255)
    cover_picture_url: Optional[str] = Field(None, max_length=255)


class UserResponse(BaseModel):
    id: int
    username: str
    email: Optional[str] = None
    full_name: str
    bio: Optional[str] = None
    profile_picture_url: Optional[str] = None
    cover_picture_url: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class UserBrief(BaseModel):
    """Display identity — what other services attach to their payloads."""
    id: int
    username: str
    full_name: str = ""
    profile_picture_url: Optional[str] = None

    class Config:
        from_attributes = True


class UserListResponse(BaseModel):
    users: list[UserResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


# ──────────────────────────── Friendships ─────────────────────────────────

FriendAction = Literal["request", "accept", "reject", "cancel", "unfriend", "block", "unblock"]


class FriendshipActionRequest(BaseModel):
    friend_id: int = Field(..., gt=0)


class FriendshipActionResponse(BaseModel):
    action: str
    friend_id: int
    status: str   # resulting status, or 'none' when the edge was removed


class FriendResponse(BaseModel):
    id: int
    initiator_id: int
    recipient_id: int
    status: str
    created_at: datetime
    updated_at: datetime
    friend: UserBrief
    mutual_friends_count: int = 0


class FriendListResponse(BaseModel):
    friends: list[FriendResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class FriendSuggestion(UserBrief):
    mutual_friends_count: int = 0


class FriendSuggestionListResponse(BaseModel):
    suggestions: list[FriendSuggestion]


class FriendshipStatusResponse(BaseModel):
    user_id: int
    status: str


class MutualFriendsResponse(BaseModel):
    user_id: int
    mutual_friends_count: int


# ──────────────────────────── Groups ──────────────────────────────────────

class GroupCreate(BaseModel):
    name: str = Field(..., min_length=3, max_length=100)
    description: str = Field("", max_length=1000)
    privacy: Literal["public", "private"] = "public"
    cover_image: Optional[str] = Field(None, max_length=255)


class GroupUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=3, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    privacy: Optional[Literal["public", "private"]] = None
    cover_image: Optional[str] = Field(None, max_length=255)


class GroupJoinRequest(BaseModel):
    group_id: int = Field(..., gt=0)
    nickname: Optional[str] = Field(None, max_length=50)


class GroupMemberAction(BaseModel):
    user_id: int = Field(..., gt=0)


class GroupMemberUpdate(BaseModel):
    role: Optional[Literal["member", "admin"]] = None
    nickname: Optional[str] = Field(None, max_length=50)
    is_muted: Optional[bool] = None


class GroupMemberResponse(BaseModel):
    id: int
    group_id: int
    user_id: int
    role: str
    nickname: Optional[str] = None
    is_muted: bool
    status: str
    joined_at: datetime
    left_at: Optional[datetime] = None
    user: Optional[UserBrief] = None

    class Config:
        from_attributes = True


class GroupResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    privacy: str
    cover_image: Optional[str] = None
    avatar: Optional[str] = None
    member_count: int
    created_by: int
    created_at: datetime
    updated_at: datetime
    creator: Optional[UserBrief] = None

    class Config:
        from_attributes = True


class GroupDetailResponse(GroupResponse):
    current_user_member: Optional[GroupMemberResponse] = None


class GroupListResponse(BaseModel):
    groups: list[GroupResponse]
    total: int
    page: int
    page_size: int


class GroupMemberListResponse(BaseModel):
    members: list[GroupMemberResponse]
    total: int
    page: int
    page_size: int


# ──────────────────────────── Identity lookup (internal) ──────────────────

class UserBatchRequest(BaseModel):
    user_ids: list[int] = Field(default_factory=list, max_length=1000)


class UserBatchResponse(BaseModel):
    users: list[UserBrief]


class UsernameLookupResponse(BaseModel):
    id: int
    username: str


# ──────────────────────────── Posts ───────────────────────────────────────

class PostCreate(BaseModel):
    content: str = Field(..., min_length=1)
    # Already-hosted media URLs (uploading is the client's job)
    media_urls: list[str] = Field(default_factory=list, max_length=10)
    visibility: Literal["PUBLIC", "FRIENDS", "PRIVATE"] = "PUBLIC"


class MediaResponse(BaseModel):
    id: int
    media_url: str
    media_type: str

    class Config:
        from_attributes = True


class PostResponse(BaseModel):
    id: int
    user_id: int
    content: str
    visibility: str
    media: list[MediaResponse] = []
    like_count: int = 0
    comment_count: int = 0
    share_count: int = 0
    score: int = 0
    created_at: datetime
    updated_at: datetime
    author: Optional[UserBrief] = None   # None when the users service could not resolve it


class PostListResponse(BaseModel):
    posts: list[PostResponse]
    total: int
    limit: int
    offset: int
    sort: str


class CommentCreate(BaseModel):
    content: str = Field(..., min_length=1)
    parent_comment_id: Optional[int] = None


class CommentResponse(BaseModel):
    id: int
    post_id: int
    user_id: int
    parent_comment_id: Optional[int] = None
    content: str
    created_at: datetime
    author: Optional[UserBrief] = None

    class Config:
        from_attributes = True


class CommentListResponse(BaseModel):
    comments: list[CommentResponse]
    total: int


class ShareCreate(BaseModel):
    shared_content: Optional[str] = None


class ShareResponse(BaseModel):
    id: int
    post_id: int
    user_id: int
    shared_content: Optional[str] = None
    created_at: datetime
    author: Optional[UserBrief] = None

    class Config:
        from_attributes = True
