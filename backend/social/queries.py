"""
Read Queries
============

Every read that shows an author joins the author's profile in the same
query (select_related('author__profile')) so rendering a page of N posts
costs 1 query, not N+1.

Reads never count edges for display. likes_count / comments_count /
followers_count come straight from the stored counters.
"""

from typing import Optional

from django.conf import settings

from .models import Comment, Post, Profile


def clamp_limit(limit, default: int) -> int:
    """Parse a client-supplied limit, falling back to default, capped at MAX_PAGE_LIMIT."""
    maximum = settings.FRAMEZ['MAX_PAGE_LIMIT']
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        return default
    return max(1, min(limit, maximum))


def profile_snapshot(profile: Profile) -> dict:
    """Public fields embedded wherever a user is shown next to content."""
    return {
        'id': profile.user_id,
        'name': profile.name,
        'handle': profile.handle,
        'avatar_url': profile.avatar_url,
    }


def author_snapshot(user) -> Optional[dict]:
    """
    Snapshot of a user's profile, or None if they never got one.

    A missing profile should not happen (signals.py creates it), but one
    bad row must not break a whole feed page.
    """
    if user is None:
        return None
    try:
        return profile_snapshot(user.profile)
    except Profile.DoesNotExist:
        return None


def get_feed(limit: Optional[int] = None) -> list[Post]:
    """
    Newest posts first, with author profiles.

    Query: 1 (post + user + profile JOIN), uses index on created_at.
    """
    limit = clamp_limit(limit, settings.FRAMEZ['DEFAULT_FEED_LIMIT'])
    return list(
        Post.objects
        .select_related('author__profile')
        .order_by('-created_at', '-id')[:limit]
    )


def get_posts_by_author(author_id: int) -> list[Post]:
    """All posts by one author, newest first. Uses (author, -created_at) index."""
    return list(
        Post.objects
        .filter(author_id=author_id)
        .select_related('author__profile')
        .order_by('-created_at', '-id')
    )


def get_post(post_id: int) -> Optional[Post]:
    """Single post with its author profile, or None."""
    return (
        Post.objects
        .select_related('author__profile')
        .filter(id=post_id)
        .first()
    )


def get_comments_by_post(post_id: int) -> list[Comment]:
    """
    All comments under a post, newest first, in a SINGLE query.

    SELECT comment.*, user.*, profile.*
    FROM comment
    INNER JOIN user ON comment.author_id = user.id
    LEFT JOIN profile ON profile.user_id = user.id
    WHERE comment.post_id = %s
    ORDER BY comment.created_at DESC
    """
    return list(
        Comment.objects
        .filter(post_id=post_id)
        .select_related('author__profile')
        .order_by('-created_at', '-id')
    )
