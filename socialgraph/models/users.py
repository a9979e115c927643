"""
SQLAlchemy ORM models owned by the users service.

Tables:
  users          — user profiles (the identity other services resolve against)
  friendships    — directed, status-tagged edges between two users
  user_groups    — groups with a denormalised member_count
  group_members  — user → group edges with role / mute / approval status
"""
import enum
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from socialgraph.database import Base

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
BigIntPK = BigInteger().with_variant(Integer, "sqlite")


def utcnow() -> datetime:
    """Naive UTC timestamp — DATETIME columns are stored without zone."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _enum(cls, name: str) -> Enum:
    return Enum(cls, name=name, values_callable=lambda e: [m.value for m in e])


class FriendshipStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    BLOCKED = "blocked"


class GroupPrivacy(str, enum.Enum):
    PUBLIC = "public"
    PRIVATE = "private"


class MemberRole(str, enum.Enum):
    MEMBER = "member"
    ADMIN = "admin"


class MemberStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    full_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    bio: Mapped[Optional[str]] = mapped_column(Text)
    profile_picture_url: Mapped[Optional[str]] = mapped_column(String(255))
    cover_picture_url: Mapped[Optional[str]] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )


class Friendship(Base):
    __tablename__ = "friendships"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    initiator_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False
    )
    recipient_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False
    )
    # Normalised pair; the unique constraint allows one edge per unordered pair
    user_low_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    user_high_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[FriendshipStatus] = mapped_column(
        _enum(FriendshipStatus, "friendship_status"),
        default=FriendshipStatus.PENDING,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    initiator = relationship("User", foreign_keys=[initiator_id], lazy="joined")
    recipient = relationship("User", foreign_keys=[recipient_id], lazy="joined")

    __table_args__ = (
        UniqueConstraint("user_low_id", "user_high_id", name="uq_friendship_pair"),
        Index("idx_friendship_initiator", "initiator_id", "status"),
        Index("idx_friendship_recipient", "recipient_id", "status"),
    )

    def set_parties(self, initiator_id: int, recipient_id: int) -> None:
        self.initiator_id = initiator_id
        self.recipient_id = recipient_id
        self.user_low_id = min(initiator_id, recipient_id)
        self.user_high_id = max(initiator_id, recipient_id)

    def other_party(self, user_id: int) -> "User":
        return self.recipient if self.initiator_id == user_id else self.initiator


class UserGroup(Base):
    __tablename__ = "user_groups"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    privacy: Mapped[GroupPrivacy] = mapped_column(
        _enum(GroupPrivacy, "group_privacy"), default=GroupPrivacy.PUBLIC, nullable=False
    )
    cover_image: Mapped[Optional[str]] = mapped_column(String(255))
    avatar: Mapped[Optional[str]] = mapped_column(String(255))
    created_by: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False
    )
    # Derived: number of approved memberships. Only ever moved by ±1 statements
    # issued in the same transaction as the membership change.
    member_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    creator = relationship("User", lazy="joined")

    __table_args__ = (
        Index("idx_groups_privacy", "privacy"),
        Index("idx_groups_created_by", "created_by"),
    )


class GroupMember(Base):
    __tablename__ = "group_members"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    group_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("user_groups.id"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False
    )
    role: Mapped[MemberRole] = mapped_column(
        _enum(MemberRole, "member_role"), default=MemberRole.MEMBER, nullable=False
    )
    nickname: Mapped[Optional[str]] = mapped_column(String(50))
    is_muted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    status: Mapped[MemberStatus] = mapped_column(
        _enum(MemberStatus, "member_status"), default=MemberStatus.PENDING, nullable=False
    )
    joined_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    left_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    user = relationship("User", lazy="joined")

    __table_args__ = (
        UniqueConstraint("group_id", "user_id", name="uq_group_member"),
        Index("idx_members_group_status", "group_id", "status"),
        Index("idx_members_user", "user_id"),
    )

    @property
    def is_approved_admin(self) -> bool:
        return self.status == MemberStatus.APPROVED and self.role == MemberRole.ADMIN


USERS_TABLES = [
    User.__table__,
    Friendship.__table__,
    UserGroup.__table__,
    GroupMember.__table__,
]
