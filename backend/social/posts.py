"""
Post Store: writes.

Reads live in queries.py. Every write here takes the caller explicitly
and checks ownership against the stored author.
"""

import logging
from typing import Optional

from django.db import transaction

from .exceptions import Forbidden, InvalidInput, NotFound
from .identity import CallerIdentity
from .models import CommentLike, Post, PostLike

logger = logging.getLogger(__name__)


def create_post(
    caller: CallerIdentity,
    caption: Optional[str] = None,
    image_url: Optional[str] = None
) -> Post:
    """
    Create a post authored by the caller.

    The image has already been uploaded to blob storage; only its URL
    arrives here.
    """
    author_id = caller.require()
    caption = (caption or '').strip()
    image_url = (image_url or '').strip()

    if not caption and not image_url:
        raise InvalidInput("Post must have either a caption or an image.")

    post = Post.objects.create(
        author_id=author_id,
        caption=caption,
        image_url=image_url,
    )
    logger.info(f"Post {post.pk} created by {author_id}")
    return post


def _get_owned_post(caller: CallerIdentity, post_id: int, for_update: bool = False) -> Post:
    user_id = caller.require()
    queryset = Post.objects.all()
    if for_update:
        queryset = queryset.select_for_update()
    post = queryset.filter(pk=post_id).first()
    if post is None:
        raise NotFound("Post not found.")
    if post.author_id != user_id:
        raise Forbidden("Not authorized to modify this post.")
    return post


def update_post_caption(caller: CallerIdentity, post_id: int, caption: str) -> Post:
    post = _get_owned_post(caller, post_id)
    caption = (caption or '').strip()
    # Same rule as create_post: a post never ends up empty
    if not caption and not post.image_url:
        raise InvalidInput("Post must have either a caption or an image.")
    post.caption = caption
    post.save(update_fields=['caption', 'updated_at'])
    return post


def delete_post(caller: CallerIdentity, post_id: int) -> None:
    """
    Delete a post and everything hanging off it.

    Order: comment likes -> comments -> post likes -> post, all in one
    transaction, so no edge or comment is ever left pointing at a
    deleted post. The FK cascades would do the same; doing it explicitly
    keeps the order visible and the counts loggable.
    """
    with transaction.atomic():
        post = _get_owned_post(caller, post_id, for_update=True)

        comment_likes, _ = CommentLike.objects.filter(comment__post_id=post.pk).delete()
        comments, _ = post.comments.all().delete()
        likes, _ = PostLike.objects.filter(post_id=post.pk).delete()
        post.delete()

    logger.info(
        f"Post {post_id} deleted with {comments} comment(s), "
        f"{likes} like(s), {comment_likes} comment like(s)"
    )
