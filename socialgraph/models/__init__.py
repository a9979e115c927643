from socialgraph.models.posts import (  # noqa: F401
    POSTS_TABLES,
    Comment,
    MediaType,
    Post,
    PostLike,
    PostMedia,
    PostShare,
    Visibility,
)
from socialgraph.models.users import (  # noqa: F401
    USERS_TABLES,
    Friendship,
    FriendshipStatus,
    GroupMember,
    GroupPrivacy,
    MemberRole,
    MemberStatus,
    User,
    UserGroup,
    utcnow,
)
