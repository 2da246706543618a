from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import or_, select

from app.campus.audit import record_event
from app.campus.constants import COMMENT_TEXT_MAX, FEED_PAGE_SIZE, POST_TEXT_MAX
from app.campus.errors import AccessDenied, ErrorCode, NotFound, ValidationError
from app.campus.modules.clubs.models import Club, ClubMember, Follow
from app.campus.modules.clubs.service import is_member
from app.campus.modules.posts.models import Comment, Post, PostLike
from app.campus.rbac import Identity, Target, require

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.campus.storage import MediaStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImageUpload:
    data: bytes
    filename: str
    content_type: str | None = None


def _clean_text(text: str | None, *, limit: int, what: str) -> str:
    text = (text or "").strip()
    if not text:
        raise ValidationError(f"{what} cannot be empty.")
    if len(text) > limit:
        raise ValidationError(f"{what} must be at most {limit} characters.")
    return text


def get_post(s: "Session", post_id: int) -> Post:
    post = s.get(Post, post_id)
    if post is None:
        raise NotFound("Post not found.")
    return post


def create_post(
    s: "Session",
    identity: Identity | None,
    club: Club,
    text: str,
    *,
    image: ImageUpload | None = None,
    media: "MediaStore | None" = None,
) -> Post:
    identity = require(identity, "post.create")
    if not is_member(s, identity.user_id, club.id):
        raise AccessDenied(ErrorCode.NOT_MEMBER, "Only members of this club can post here.")

    text = _clean_text(text, limit=POST_TEXT_MAX, what="Post")
    image_url = None
    if image is not None:
        if media is None:
            raise ValueError("media store required for image uploads")
        image_url = media.save_image(image.data, image.filename, image.content_type)

    post = Post(club_id=club.id, author_user_id=identity.user_id, text=text, image_url=image_url)
    s.add(post)
    s.flush()
    record_event(
        s,
        actor=identity,
        action="post.create",
        entity_type="Post",
        entity_id=str(post.id),
        metadata={"club_id": club.id, "has_image": image_url is not None},
    )
    return post


def delete_post(s: "Session", identity: Identity | None, post: Post) -> None:
    """Authors delete their own posts; club admins moderate their club's posts."""
    if identity is None or identity.user_id != post.author_user_id:
        identity = require(identity, "post.moderate", Target.for_club(post.club))
    post_id, club_id = post.id, post.club_id
    s.delete(post)
    s.flush()
    record_event(
        s,
        actor=identity,
        action="post.delete",
        entity_type="Post",
        entity_id=str(post_id),
        metadata={"club_id": club_id},
    )
    logger.info("Post deleted id=%s club_id=%s by=%s", post_id, club_id, identity.user_id)


def feed_for(s: "Session", user_id: int, *, limit: int = FEED_PAGE_SIZE) -> list[Post]:
    """Posts from followed or joined clubs, newest first (id breaks ties)."""
    followed = select(Follow.club_id).where(Follow.user_id == user_id)
    joined = select(ClubMember.club_id).where(ClubMember.user_id == user_id)
    return (
        s.query(Post)
        .filter(or_(Post.club_id.in_(followed), Post.club_id.in_(joined)))
        .order_by(Post.created_at.desc(), Post.id.desc())
        .limit(limit)
        .all()
    )


def club_posts(s: "Session", club_id: int, *, limit: int = FEED_PAGE_SIZE) -> list[Post]:
    return (
        s.query(Post)
        .filter(Post.club_id == club_id)
        .order_by(Post.created_at.desc(), Post.id.desc())
        .limit(limit)
        .all()
    )


def posts_by(s: "Session", user_id: int) -> list[Post]:
    return (
        s.query(Post)
        .filter(Post.author_user_id == user_id)
        .order_by(Post.created_at.desc(), Post.id.desc())
        .all()
    )


def add_comment(s: "Session", identity: Identity | None, post: Post, text: str) -> Comment:
    identity = require(identity, "post.comment")
    comment = Comment(
        post_id=post.id,
        author_user_id=identity.user_id,
        text=_clean_text(text, limit=COMMENT_TEXT_MAX, what="Comment"),
    )
    s.add(comment)
    s.flush()
    return comment


def toggle_like(s: "Session", identity: Identity | None, post: Post) -> bool:
    """Returns True if the post is liked afterwards."""
    identity = require(identity, "post.like")
    row = s.get(PostLike, (identity.user_id, post.id))
    if row is not None:
        s.delete(row)
        s.flush()
        return False
    s.add(PostLike(user_id=identity.user_id, post_id=post.id))
    s.flush()
    return True
