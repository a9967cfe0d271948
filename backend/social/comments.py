"""
Comment Store: writes.

comments_count on the parent post moves in the same transaction as the
comment row, with the post row locked, the same way the ledger moves
like counters.

Two behaviours are deliberate choices:
- Commenting on a post that no longer exists fails with NotFound
  instead of leaving an orphan comment behind.
- Deleting a comment deletes its likes too.
"""

import logging

from django.db import transaction

from .exceptions import Forbidden, InvalidInput, NotFound
from .identity import CallerIdentity
from .models import Comment, CommentLike, Post
from .services import adjust_counter

logger = logging.getLogger(__name__)


def create_comment(caller: CallerIdentity, post_id: int, text: str) -> Comment:
    author_id = caller.require()
    text = (text or '').strip()
    if not text:
        raise InvalidInput("Comment cannot be empty.")

    with transaction.atomic():
        post_exists = (
            Post.objects
            .select_for_update()
            .filter(pk=post_id)
            .values_list('pk', flat=True)
            .first()
        )
        if post_exists is None:
            raise NotFound("Post not found.")

        comment = Comment.objects.create(
            post_id=post_id,
            author_id=author_id,
            text=text,
        )
        adjust_counter(Post, post_id, 'comments_count', 1)

    return comment


def _get_owned_comment(caller: CallerIdentity, comment_id: int) -> Comment:
    user_id = caller.require()
    comment = Comment.objects.filter(pk=comment_id).first()
    if comment is None:
        raise NotFound("Comment not found.")
    if comment.author_id != user_id:
        raise Forbidden("Not authorized to delete this comment.")
    return comment


def delete_comment(caller: CallerIdentity, comment_id: int) -> None:
    """
    Delete the caller's comment and its likes, decrementing comments_count.

    The ownership read is unlocked, so a concurrent delete of the same
    comment can get past it. Only the request whose DELETE actually removed
    the row moves the counter; the other gets NotFound.
    """
    with transaction.atomic():
        comment = _get_owned_comment(caller, comment_id)

        # Lock the parent so the decrement serializes with concurrent creates
        Post.objects.select_for_update().filter(pk=comment.post_id).first()

        likes, _ = CommentLike.objects.filter(comment_id=comment.pk).delete()
        _, removed = Comment.objects.filter(pk=comment.pk).delete()
        if not removed.get(Comment._meta.label):
            raise NotFound("Comment not found.")
        adjust_counter(Post, comment.post_id, 'comments_count', -1)

    logger.info(f"Comment {comment_id} deleted with {likes} like(s)")
