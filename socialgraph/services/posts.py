"""
Post storage, engagement and feed queries for the posts service.

Engagement counts live in their own tables (likes, comments, shares) and are
aggregated with one GROUP BY query each. The feed is ranked and paged in SQL:

  latest     ORDER BY created_at DESC, id DESC
  popular_*  the same, after the engagement score (socialgraph.feed weights)
             computed over outer joins to the grouped counts

which is the order `socialgraph.feed.rank` gives a newest-first candidate list.
"""
import logging
from datetime import datetime
from typing import Optional, Sequence

from opentelemetry import trace
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from socialgraph import feed
from socialgraph.errors import Forbidden, InvalidInput, NotFound
from socialgraph.feed import ContentItem, RankedPage
from socialgraph.models.posts import (
    Comment,
    MediaType,
    Post,
    PostLike,
    PostMedia,
    PostShare,
    Visibility,
)
from socialgraph.models.users import utcnow
from socialgraph.telemetry import POST_INGESTION_TOTAL

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

_VIDEO_SUFFIXES = (".mp4", ".mov", ".webm", ".mkv", ".avi")


def media_type_for(url: str) -> MediaType:
    path = url.split("?", 1)[0].lower()
    return MediaType.VIDEO if path.endswith(_VIDEO_SUFFIXES) else MediaType.IMAGE


def _grouped_counts(column, *where):
    """(post_id, n) rows per post, as a joinable subquery."""
    return (
        select(column.label("post_id"), func.count().label("n"))
        .where(*where)
        .group_by(column)
        .subquery()
    )


class PostService:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    # ── posts ─────────────────────────────────────────────────────────────

    async def create_post(
        self,
        author_id: int,
        content: str,
        media_urls: Sequence[str] = (),
        visibility: str = Visibility.PUBLIC.value,
    ) -> Post:
        with tracer.start_as_current_span("post.create") as span:
            if not content.strip():
                raise InvalidInput("Post content must not be empty")

            post = Post(
                user_id=author_id,
                content=content,
                visibility=Visibility(visibility),
                media=[
                    PostMedia(media_url=url, media_type=media_type_for(url))
                    for url in media_urls
                ],
            )
            self.db.add(post)
            await self.db.flush()
            span.set_attribute("post.id", post.id)
            span.set_attribute("post.user_id", author_id)

            POST_INGESTION_TOTAL.inc()
            logger.info("Post created: %s by user %s", post.id, author_id)
            return post

    async def get_post(self, post_id: int, viewer_id: Optional[int] = None) -> Post:
        """A live post the viewer may see. Hidden posts read as missing."""
        post = await self.db.get(Post, post_id)
        if post is None or post.is_deleted:
            raise NotFound(f"Post {post_id} not found")
        if post.visibility != Visibility.PUBLIC and post.user_id != viewer_id:
            raise NotFound(f"Post {post_id} not found")
        return post

    async def delete_post(self, actor_id: int, post_id: int) -> None:
        post = await self.get_post(post_id, actor_id)
        if post.user_id != actor_id:
            raise Forbidden("Only the author can delete this post")
        post.is_deleted = True
        await self.db.flush()
        logger.info("Post %s deleted by user %s", post_id, actor_id)

    # ── counts ────────────────────────────────────────────────────────────

    async def _count_by_post(self, column, *where, post_ids: Sequence[int]) -> dict[int, int]:
        result = await self.db.execute(
            select(column, func.count())
            .where(column.in_(post_ids), *where)
            .group_by(column)
        )
        return {post_id: n for post_id, n in result.all()}

    async def content_items(self, posts: Sequence[Post]) -> list[ContentItem]:
        """Wrap posts as rankable items carrying their engagement counts."""
        ids = [p.id for p in posts]
        if not ids:
            return []
        likes = await self._count_by_post(PostLike.post_id, post_ids=ids)
        comments = await self._count_by_post(
            Comment.post_id, Comment.is_deleted.is_(False), post_ids=ids
        )
        shares = await self._count_by_post(PostShare.post_id, post_ids=ids)
        return [
            ContentItem(
                id=p.id,
                author_id=p.user_id,
                created_at=p.created_at,
                likes=likes.get(p.id, 0),
                comments=comments.get(p.id, 0),
                shares=shares.get(p.id, 0),
                payload=p,
            )
            for p in posts
        ]

    # ── feed ──────────────────────────────────────────────────────────────

    async def list_posts(
        self,
        mode: str = "latest",
        limit: int = feed.DEFAULT_LIMIT,
        offset: int = 0,
        author_id: Optional[int] = None,
        include_hidden: bool = False,
        now: Optional[datetime] = None,
    ) -> RankedPage:
        """
        One ranked page of posts.

        Without `author_id` this is the public feed. With it, the author's
        posts; `include_hidden` adds their FRIENDS / PRIVATE posts (owner view).
        """
        mode = feed.normalize_mode(mode)
        limit, offset = feed.clamp_window(limit, offset)

        stmt = select(Post).where(Post.is_deleted.is_(False))
        if author_id is not None:
            stmt = stmt.where(Post.user_id == author_id)
        if not include_hidden:
            stmt = stmt.where(Post.visibility == Visibility.PUBLIC)
        newest_first = (Post.created_at.desc(), Post.id.desc())

        with tracer.start_as_current_span("feed.load") as span:
            span.set_attribute("feed.mode", mode)

            if not feed.is_popular(mode):
                total = await self.db.scalar(
                    select(func.count()).select_from(stmt.subquery())
                )
                rows = await self.db.scalars(
                    stmt.order_by(*newest_first).offset(offset).limit(limit)
                )
                items = await self.content_items(rows.all())
                return RankedPage(items=items, total=total or 0, limit=limit, offset=offset)

            now = now or utcnow()
            start = feed.window_start(mode, now)
            if start is not None:
                stmt = stmt.where(Post.created_at >= start, Post.created_at <= now)
            total = await self.db.scalar(select(func.count()).select_from(stmt.subquery()))

            likes = _grouped_counts(PostLike.post_id)
            comments = _grouped_counts(Comment.post_id, Comment.is_deleted.is_(False))
            shares = _grouped_counts(PostShare.post_id)
            like_n = func.coalesce(likes.c.n, 0)
            comment_n = func.coalesce(comments.c.n, 0)
            share_n = func.coalesce(shares.c.n, 0)
            score = feed.engagement_score(like_n, comment_n, share_n)

            rows = await self.db.execute(
                stmt.add_columns(like_n, comment_n, share_n)
                .outerjoin(likes, likes.c.post_id == Post.id)
                .outerjoin(comments, comments.c.post_id == Post.id)
                .outerjoin(shares, shares.c.post_id == Post.id)
                .order_by(score.desc(), *newest_first)
                .offset(offset)
                .limit(limit)
            )
            items = [
                ContentItem(
                    id=post.id,
                    author_id=post.user_id,
                    created_at=post.created_at,
                    likes=n_likes,
                    comments=n_comments,
                    shares=n_shares,
                    payload=post,
                )
                for post, n_likes, n_comments, n_shares in rows.all()
            ]
            span.set_attribute("feed.total", total or 0)
            return RankedPage(items=items, total=total or 0, limit=limit, offset=offset)

    # ── likes ─────────────────────────────────────────────────────────────

    async def like(self, user_id: int, post_id: int) -> bool:
        """Like a post. Returns False when it was already liked."""
        await self.get_post(post_id, user_id)
        if await self.db.get(PostLike, (post_id, user_id)) is not None:
            return False
        self.db.add(PostLike(post_id=post_id, user_id=user_id))
        await self.db.flush()
        logger.info("User %s liked post %s", user_id, post_id)
        return True

    async def unlike(self, user_id: int, post_id: int) -> bool:
        """Remove a like. Returns False when there was none."""
        await self.get_post(post_id, user_id)
        like = await self.db.get(PostLike, (post_id, user_id))
        if like is None:
            return False
        await self.db.delete(like)
        await self.db.flush()
        logger.info("User %s unliked post %s", user_id, post_id)
        return True

    # ── comments ──────────────────────────────────────────────────────────

    async def add_comment(
        self,
        user_id: int,
        post_id: int,
        content: str,
        parent_comment_id: Optional[int] = None,
    ) -> Comment:
        await self.get_post(post_id, user_id)
        if not content.strip():
            raise InvalidInput("Comment content must not be empty")
        if parent_comment_id is not None:
            parent = await self.db.get(Comment, parent_comment_id)
            if parent is None or parent.is_deleted or parent.post_id != post_id:
                raise InvalidInput("Parent comment does not belong to this post")

        comment = Comment(
            post_id=post_id,
            user_id=user_id,
            content=content,
            parent_comment_id=parent_comment_id,
        )
        self.db.add(comment)
        await self.db.flush()
        logger.info("User %s commented on post %s", user_id, post_id)
        return comment

    async def list_comments(
        self, post_id: int, viewer_id: Optional[int] = None
    ) -> list[Comment]:
        await self.get_post(post_id, viewer_id)
        rows = await self.db.scalars(
            select(Comment)
            .where(Comment.post_id == post_id, Comment.is_deleted.is_(False))
            .order_by(Comment.created_at.asc(), Comment.id.asc())
        )
        return list(rows.all())

    # ── shares ────────────────────────────────────────────────────────────

    async def share(
        self, user_id: int, post_id: int, shared_content: Optional[str] = None
    ) -> PostShare:
        await self.get_post(post_id, user_id)
        share = PostShare(post_id=post_id, user_id=user_id, shared_content=shared_content)
        self.db.add(share)
        await self.db.flush()
        logger.info("User %s shared post %s", user_id, post_id)
        return share
