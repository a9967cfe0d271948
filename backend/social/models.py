"""
Data Models for Framez
======================

Design Philosophy:
------------------
1. Identity vs. profile
   - django.contrib.auth User is the account issued by the identity provider
   - Profile holds the public fields and the follow counters
   - Profile uses the user as its primary key, so profile.pk == user.pk and
     every "user id" in the API means the same number everywhere

2. One table per edge kind (PostLike, CommentLike, Follow)
   - Each has a unique constraint on its (actor, target) pair
   - The unique index doubles as the point lookup for toggles and "did I
     already like this" checks
   - Chose explicit tables over a ContentType-polymorphic Like so the
     cascade on post/comment delete is a plain FK cascade

3. Denormalized counters on Post, Comment and Profile
   - Mutated only by the ledger in services.py, inside the same transaction
     as the edge write
   - Decrements are floored at zero in the UPDATE itself
   - services.reconcile_counters() recomputes them from the edge tables

Indexes Strategy:
-----------------
- post.author + post.created_at: profile grid (posts by author, newest first)
- comment.post + comment.created_at: comments under a post
- like.post / commentlike.comment / follow.following: listing edges of a target
- unique pairs: point lookup for toggles
"""

from django.conf import settings
from django.db import models
from django.db.models import F, Q
from django.utils import timezone


class Profile(models.Model):
    """
    Public profile of an account.

    Created automatically the first time an identity User is saved
    (see signals.py), so edges can always assume a counter row exists.
    """
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        primary_key=True,
        related_name='profile'
    )
    name = models.CharField(max_length=100, blank=True)
    # NULL rather than '' so the unique constraint ignores unset values
    handle = models.CharField(max_length=50, unique=True, null=True, blank=True)
    email = models.EmailField(unique=True, null=True, blank=True)
    avatar_url = models.URLField(max_length=500, blank=True)
    bio = models.TextField(blank=True)

    followers_count = models.PositiveIntegerField(default=0)
    following_count = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.handle or f"user {self.user_id}"


class Post(models.Model):
    """
    A photo post. At least one of caption or image_url is set; enforced
    in posts.create_post rather than at the DB level.
    """
    author = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='posts'
    )
    caption = models.TextField(blank=True)
    image_url = models.URLField(max_length=500, blank=True)
    created_at = models.DateTimeField(
        default=timezone.now,
        db_index=True  # For feed ordering
    )
    updated_at = models.DateTimeField(auto_now=True)

    # Denormalized counts, maintained by the ledger
    likes_count = models.PositiveIntegerField(default=0)
    comments_count = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['author', '-created_at'], name='post_author_created_idx'),
        ]

    def __str__(self):
        return f"Post {self.pk} by {self.author_id}"


class Comment(models.Model):
    """A text reply to a post."""
    post = models.ForeignKey(
        Post,
        on_delete=models.CASCADE,
        related_name='comments'
    )
    author = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='comments'
    )
    text = models.TextField()
    created_at = models.DateTimeField(default=timezone.now)

    likes_count = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['post', '-created_at'], name='comment_post_created_idx'),
        ]

    def __str__(self):
        return f"Comment by {self.author_id} on {self.post_id}"


class PostLike(models.Model):
    """Edge: user liked post. At most one per (post, user)."""
    post = models.ForeignKey(
        Post,
        on_delete=models.CASCADE,
        related_name='likes'
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='post_likes'
    )
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ['id']
        constraints = [
            models.UniqueConstraint(
                fields=['post', 'user'],
                name='unique_like_per_user_per_post'
            )
        ]

    def __str__(self):
        return f"{self.user_id} likes post {self.post_id}"


class CommentLike(models.Model):
    """Edge: user liked comment. At most one per (comment, user)."""
    comment = models.ForeignKey(
        Comment,
        on_delete=models.CASCADE,
        related_name='likes'
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='comment_likes'
    )
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ['id']
        constraints = [
            models.UniqueConstraint(
                fields=['comment', 'user'],
                name='unique_like_per_user_per_comment'
            )
        ]

    def __str__(self):
        return f"{self.user_id} likes comment {self.comment_id}"


class Follow(models.Model):
    """Edge: follower follows following. Self-follows are rejected by the DB."""
    follower = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='following_edges'
    )
    following = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='follower_edges'
    )
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ['id']
        constraints = [
            models.UniqueConstraint(
                fields=['follower', 'following'],
                name='unique_follow'
            ),
            models.CheckConstraint(
                condition=~Q(follower=F('following')),
                name='follow_not_self'
            ),
        ]

    def __str__(self):
        return f"{self.follower_id} follows {self.following_id}"
