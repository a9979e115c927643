"""
Post endpoints (posts service):
  POST   /posts                     — publish a post
  GET    /posts?sort=&limit=&offset= — the public feed, ranked
  GET    /posts/user/{username}     — one author's posts, ranked
  GET    /posts/{id}                — a single post
  DELETE /posts/{id}                — soft-delete (author only)
  POST   /posts/{id}/like           — like (idempotent)
  DELETE /posts/{id}/like           — unlike (idempotent)
  GET    /posts/{id}/comments       — comments, oldest first
  POST   /posts/{id}/comments       — comment / reply
  POST   /posts/{id}/shares         — share

Read path for lists:

  1. Rank & paginate posts in the posts DB (PostService.list_posts). Scores
     use the same weights as socialgraph.feed.
  2. Decorate the page with author identities from the users service in one
     batch call. If that call fails the page is served without authors.
"""
import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from opentelemetry import trace
from sqlalchemy.ext.asyncio import AsyncSession

from socialgraph.auth import CurrentUser, get_current_user, get_optional_user
from socialgraph.clients.identity_client import (
    IdentityClient,
    decorate_authors,
    get_identity_client,
)
from socialgraph.database import get_db
from socialgraph.errors import NotFound
from socialgraph.feed import ContentItem, RankedPage
from socialgraph.models.posts import Comment, PostShare
from socialgraph.schemas import (
    CommentCreate,
    CommentListResponse,
    CommentResponse,
    MediaResponse,
    PostCreate,
    PostListResponse,
    PostResponse,
    ShareCreate,
    ShareResponse,
)
from socialgraph.services.posts import PostService
from socialgraph.telemetry import FEED_LATENCY

logger = logging.getLogger(__name__)
router = APIRouter()
tracer = trace.get_tracer(__name__)


def get_posts(db: AsyncSession = Depends(get_db)) -> PostService:
    return PostService(db)


def _post_response(item: ContentItem) -> PostResponse:
    post = item.payload
    return PostResponse(
        id=post.id,
        user_id=post.user_id,
        content=post.content,
        visibility=post.visibility.value,
        media=[
            MediaResponse(id=m.id, media_url=m.media_url, media_type=m.media_type.value)
            for m in post.media
        ],
        like_count=item.likes,
        comment_count=item.comments,
        share_count=item.shares,
        score=item.score,
        created_at=post.created_at,
        updated_at=post.updated_at,
    )


def _comment_response(comment: Comment) -> CommentResponse:
    return CommentResponse.model_validate(comment)


async def _render_page(
    page: RankedPage, sort: str, identity: IdentityClient
) -> PostListResponse:
    posts = [_post_response(i) for i in page.items]
    await decorate_authors(posts, identity)
    return PostListResponse(
        posts=posts, total=page.total, limit=page.limit, offset=page.offset, sort=sort
    )


@router.post("", response_model=PostResponse, status_code=status.HTTP_201_CREATED)
async def create_post(
    body: PostCreate,
    posts: PostService = Depends(get_posts),
    identity: IdentityClient = Depends(get_identity_client),
    me: CurrentUser = Depends(get_current_user),
):
    post = await posts.create_post(
        me.user_id, body.content, media_urls=body.media_urls, visibility=body.visibility
    )
    (item,) = await posts.content_items([post])
    response = _post_response(item)
    await decorate_authors([response], identity)
    return response


@router.get("", response_model=PostListResponse)
async def list_feed(
    sort: str = Query("latest", max_length=32),
    limit: int = Query(10),
    offset: int = Query(0),
    posts: PostService = Depends(get_posts),
    identity: IdentityClient = Depends(get_identity_client),
    _: Optional[CurrentUser] = Depends(get_optional_user),
):
    start_time = time.time()
    with tracer.start_as_current_span("get_feed") as span:
        span.set_attribute("feed.sort", sort)
        page = await posts.list_posts(sort, limit, offset)
        response = await _render_page(page, sort, identity)
        span.set_attribute("feed.returned", len(response.posts))
    FEED_LATENCY.observe(time.time() - start_time)
    return response


@router.get("/user/{username}", response_model=PostListResponse)
async def list_user_posts(
    username: str,
    sort: str = Query("latest", max_length=32),
    limit: int = Query(10),
    offset: int = Query(0),
    posts: PostService = Depends(get_posts),
    identity: IdentityClient = Depends(get_identity_client),
    viewer: Optional[CurrentUser] = Depends(get_optional_user),
):
    start_time = time.time()
    with tracer.start_as_current_span("get_user_posts") as span:
        author_id = await identity.resolve_username(username)
        if author_id is None:
            raise NotFound(f"User '{username}' not found")
        span.set_attribute("feed.author_id", author_id)

        is_owner = viewer is not None and viewer.user_id == author_id
        page = await posts.list_posts(
            sort, limit, offset, author_id=author_id, include_hidden=is_owner
        )
        response = await _render_page(page, sort, identity)
    FEED_LATENCY.observe(time.time() - start_time)
    return response


@router.get("/{post_id}", response_model=PostResponse)
async def get_post(
    post_id: int,
    posts: PostService = Depends(get_posts),
    identity: IdentityClient = Depends(get_identity_client),
    viewer: Optional[CurrentUser] = Depends(get_optional_user),
):
    post = await posts.get_post(post_id, viewer.user_id if viewer else None)
    (item,) = await posts.content_items([post])
    response = _post_response(item)
    await decorate_authors([response], identity)
    return response


@router.delete("/{post_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_post(
    post_id: int,
    posts: PostService = Depends(get_posts),
    me: CurrentUser = Depends(get_current_user),
):
    await posts.delete_post(me.user_id, post_id)


@router.post("/{post_id}/like", status_code=status.HTTP_204_NO_CONTENT)
async def like_post(
    post_id: int,
    posts: PostService = Depends(get_posts),
    me: CurrentUser = Depends(get_current_user),
):
    """Like a post — idempotent."""
    with tracer.start_as_current_span("like_post"):
        await posts.like(me.user_id, post_id)


@router.delete("/{post_id}/like", status_code=status.HTTP_204_NO_CONTENT)
async def unlike_post(
    post_id: int,
    posts: PostService = Depends(get_posts),
    me: CurrentUser = Depends(get_current_user),
):
    with tracer.start_as_current_span("unlike_post"):
        await posts.unlike(me.user_id, post_id)


@router.get("/{post_id}/comments", response_model=CommentListResponse)
async def list_comments(
    post_id: int,
    posts: PostService = Depends(get_posts),
    identity: IdentityClient = Depends(get_identity_client),
    viewer: Optional[CurrentUser] = Depends(get_optional_user),
):
    rows = await posts.list_comments(post_id, viewer.user_id if viewer else None)
    comments = [_comment_response(c) for c in rows]
    await decorate_authors(comments, identity)
    return CommentListResponse(comments=comments, total=len(comments))


@router.post(
    "/{post_id}/comments",
    response_model=CommentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_comment(
    post_id: int,
    body: CommentCreate,
    posts: PostService = Depends(get_posts),
    identity: IdentityClient = Depends(get_identity_client),
    me: CurrentUser = Depends(get_current_user),
):
    with tracer.start_as_current_span("add_comment"):
        comment = await posts.add_comment(
            me.user_id, post_id, body.content, parent_comment_id=body.parent_comment_id
        )
        response = _comment_response(comment)
        await decorate_authors([response], identity)
        return response


@router.post(
    "/{post_id}/shares",
    response_model=ShareResponse,
    status_code=status.HTTP_201_CREATED,
)
async def share_post(
    post_id: int,
    body: ShareCreate,
    posts: PostService = Depends(get_posts),
    identity: IdentityClient = Depends(get_identity_client),
    me: CurrentUser = Depends(get_current_user),
):
    share: PostShare = await posts.share(me.user_id, post_id, body.shared_content)
    response = ShareResponse.model_validate(share)
    await decorate_authors([response], identity)
    return response
