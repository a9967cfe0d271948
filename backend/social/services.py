"""
Engagement Ledger
=================

Post likes, comment likes and follows are all the same thing: an edge
between an actor and a target, plus a denormalized counter on the target
(and, for follows, a second counter on the actor). This module handles
all three with one toggle algorithm parameterized by an EdgeKind.

CONCURRENCY STRATEGY:
---------------------
Problem: a rapid double-tap on "like" sends two toggles at once.
Naive: read edge -> decide -> write edge -> read counter -> write counter.
Both requests see "no edge", both insert, counter drifts by one.

Solution:
    - transaction.atomic() around the whole toggle
    - SELECT ... FOR UPDATE on the counter row first, so concurrent
      toggles on the same target queue up behind each other
    - rows are locked in primary-key order, so two follows in opposite
      directions cannot deadlock on each other's profile
    - the unique constraint on the (actor, target) pair still rejects a
      duplicate insert if anything slips through

COUNTER RULES:
--------------
    - Counters move with F() expressions, never read-modify-write in Python
    - A decrement only applies where the counter is > 0, so drift from
      an earlier bug can never produce a negative value
    - reconcile_counters() recomputes everything from the edge tables
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Type

from django.db import models, transaction
from django.db.models import Count, F, OuterRef, Subquery
from django.db.models.functions import Coalesce

from .exceptions import InvalidOperation, NotFound
from .identity import CallerIdentity
from .models import Comment, CommentLike, Follow, Post, PostLike, Profile
from .queries import author_snapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EdgeKind:
    """Describes which edge table and which counters a toggle touches."""
    name: str
    edge_model: Type[models.Model]
    actor_field: str
    target_field: str
    counter_model: Type[models.Model]
    counter_field: str
    # Follows also move a counter on the actor's own profile
    actor_counter_field: Optional[str] = None
    allow_self: bool = True

    def edge_lookup(self, actor_id, target_id) -> dict:
        return {
            f'{self.actor_field}_id': actor_id,
            f'{self.target_field}_id': target_id,
        }


POST_LIKE = EdgeKind(
    name='post_like',
    edge_model=PostLike,
    actor_field='user',
    target_field='post',
    counter_model=Post,
    counter_field='likes_count',
)

COMMENT_LIKE = EdgeKind(
    name='comment_like',
    edge_model=CommentLike,
    actor_field='user',
    target_field='comment',
    counter_model=Comment,
    counter_field='likes_count',
)

FOLLOW = EdgeKind(
    name='follow',
    edge_model=Follow,
    actor_field='follower',
    target_field='following',
    counter_model=Profile,
    counter_field='followers_count',
    actor_counter_field='following_count',
    allow_self=False,
)

EDGE_KINDS = {kind.name: kind for kind in (POST_LIKE, COMMENT_LIKE, FOLLOW)}


@dataclass(frozen=True)
class ToggleResult:
    """New state of the edge after a toggle."""
    active: bool


def adjust_counter(model, pk, field: str, delta: int) -> int:
    """
    Atomically add delta to a counter column.

    Decrements are floored at zero: rows already at zero are left alone.
    Returns the number of rows updated (0 or 1).
    """
    queryset = model.objects.filter(pk=pk)
    if delta < 0:
        queryset = queryset.filter(**{f'{field}__gt': 0})
    return queryset.update(**{field: F(field) + delta})


def _lock_counter_rows(kind: EdgeKind, actor_id: int, target_id: int) -> bool:
    """
    SELECT ... FOR UPDATE the rows whose counters this toggle moves.

    Returns False if the target row does not exist. Follows move counters
    on two profiles; both are locked in one query, lowest pk first, so
    A->B and B->A toggling at the same moment queue up instead of
    deadlocking.
    """
    pks = [target_id]
    if kind.actor_counter_field and kind.counter_model is Profile:
        pks = sorted({actor_id, target_id})
    locked = set(
        kind.counter_model.objects
        .select_for_update()
        .filter(pk__in=pks)
        .order_by('pk')
        .values_list('pk', flat=True)
    )
    return target_id in locked


def toggle_edge(caller: CallerIdentity, target_id: int, kind: EdgeKind) -> ToggleResult:
    """
    Flip the caller's edge to target_id and move the counters with it.

    OPERATION:
    1. Lock the counter row(s) (NotFound if the target is gone)
    2. Delete the (actor, target) edge if it exists -> decrement
    3. Otherwise insert it -> increment

    ATOMICITY:
    Edge write and counter update(s) share one transaction; a failure
    between them rolls back both.
    """
    actor_id = caller.require()

    if not kind.allow_self and actor_id == target_id:
        raise InvalidOperation(f"Cannot {kind.name.replace('_', ' ')} yourself.")

    lookup = kind.edge_lookup(actor_id, target_id)

    with transaction.atomic():
        if not _lock_counter_rows(kind, actor_id, target_id):
            raise NotFound(f"{kind.counter_model.__name__} {target_id} not found.")

        # Point lookup on the unique pair; at most one row can match
        deleted, _ = kind.edge_model.objects.filter(**lookup).delete()

        if deleted:
            delta = -1
        else:
            kind.edge_model.objects.create(**lookup)
            delta = 1

        adjust_counter(kind.counter_model, target_id, kind.counter_field, delta)
        if kind.actor_counter_field:
            adjust_counter(Profile, actor_id, kind.actor_counter_field, delta)

    active = delta > 0
    logger.debug(f"{kind.name} {actor_id}->{target_id} active={active}")
    return ToggleResult(active=active)


def toggle_post_like(caller: CallerIdentity, post_id: int) -> ToggleResult:
    return toggle_edge(caller, post_id, POST_LIKE)


def toggle_comment_like(caller: CallerIdentity, comment_id: int) -> ToggleResult:
    return toggle_edge(caller, comment_id, COMMENT_LIKE)


def toggle_follow(caller: CallerIdentity, user_id: int) -> ToggleResult:
    return toggle_edge(caller, user_id, FOLLOW)


def has_edge(caller: CallerIdentity, target_id: int, kind: EdgeKind) -> bool:
    """Existence check. Anonymous callers simply get False."""
    if not caller.is_authenticated:
        return False
    return kind.edge_model.objects.filter(
        **kind.edge_lookup(caller.user_id, target_id)
    ).exists()


def has_liked_post(caller: CallerIdentity, post_id: int) -> bool:
    return has_edge(caller, post_id, POST_LIKE)


def has_liked_comment(caller: CallerIdentity, comment_id: int) -> bool:
    return has_edge(caller, comment_id, COMMENT_LIKE)


def is_following(caller: CallerIdentity, user_id: int) -> bool:
    return has_edge(caller, user_id, FOLLOW)


def liked_target_ids(caller: CallerIdentity, target_ids: Iterable[int], kind: EdgeKind) -> set:
    """
    Which of target_ids the caller has an edge to.

    Query: 1, regardless of how many ids are asked about. Used by the feed
    to mark liked posts without one request per card.
    """
    if not caller.is_authenticated:
        return set()
    target_ids = list(target_ids)
    if not target_ids:
        return set()
    column = f'{kind.target_field}_id'
    return set(
        kind.edge_model.objects
        .filter(**{f'{kind.actor_field}_id': caller.user_id, f'{column}__in': target_ids})
        .values_list(column, flat=True)
    )


def list_edges_for_target(target_id: int, kind: EdgeKind, limit: int) -> list[dict]:
    """
    Up to `limit` edges pointing at target_id, oldest first, each with a
    snapshot of the actor's public profile.

    Query: 1 (edge + actor + profile JOIN)
    """
    edges = (
        kind.edge_model.objects
        .filter(**{f'{kind.target_field}_id': target_id})
        .select_related(f'{kind.actor_field}__profile')
        .order_by('id')[:limit]
    )
    return [
        {
            'id': edge.pk,
            'user_id': getattr(edge, f'{kind.actor_field}_id'),
            'created_at': edge.created_at,
            'user': author_snapshot(getattr(edge, kind.actor_field)),
        }
        for edge in edges
    ]


def get_post_likes(post_id: int, limit: int) -> list[dict]:
    return list_edges_for_target(post_id, POST_LIKE, limit)


def _counterpart_profiles(edges, field: str) -> list[Profile]:
    profiles = []
    for edge in edges:
        try:
            profiles.append(getattr(edge, field).profile)
        except Profile.DoesNotExist:
            continue
    return profiles


def get_followers(user_id: int, limit: int) -> list[Profile]:
    """Profiles of users following user_id, in the order they followed."""
    edges = (
        Follow.objects
        .filter(following_id=user_id)
        .select_related('follower__profile')
        .order_by('id')[:limit]
    )
    return _counterpart_profiles(edges, 'follower')


def get_following(user_id: int, limit: int) -> list[Profile]:
    """Profiles of users that user_id follows, in the order they were followed."""
    edges = (
        Follow.objects
        .filter(follower_id=user_id)
        .select_related('following__profile')
        .order_by('id')[:limit]
    )
    return _counterpart_profiles(edges, 'following')


def get_follow_stats(user_id: int) -> dict:
    counts = (
        Profile.objects
        .filter(pk=user_id)
        .values('followers_count', 'following_count')
        .first()
    )
    return counts or {'followers_count': 0, 'following_count': 0}


# ============================================================================
# RECONCILIATION
# ============================================================================

@dataclass(frozen=True)
class CounterSource:
    """A stored counter and the table it should equal the row count of."""
    label: str
    kind: str
    model: Type[models.Model]
    field: str
    source_model: Type[models.Model]
    source_fk: str


COUNTER_SOURCES = (
    CounterSource('post.likes_count', 'post_like', Post, 'likes_count', PostLike, 'post'),
    CounterSource('post.comments_count', 'comment', Post, 'comments_count', Comment, 'post'),
    CounterSource('comment.likes_count', 'comment_like', Comment, 'likes_count', CommentLike, 'comment'),
    CounterSource('profile.followers_count', 'follow', Profile, 'followers_count', Follow, 'following'),
    CounterSource('profile.following_count', 'follow', Profile, 'following_count', Follow, 'follower'),
)

RECONCILE_KINDS = sorted({source.kind for source in COUNTER_SOURCES})


def _actual_count(source: CounterSource):
    rows = (
        source.source_model.objects
        .filter(**{source.source_fk: OuterRef('pk')})
        .order_by()
        .values(source.source_fk)
        .annotate(total=Count('pk'))
        .values('total')
    )
    return Coalesce(Subquery(rows), 0)


def reconcile_counters(kind: Optional[str] = None) -> dict[str, int]:
    """
    Recompute counters from their edge tables and repair drifted rows.

    Normal operation never needs this: the toggle path keeps counters
    exact. It exists to repair damage (manual DB edits, deleted users)
    and as an independent check in tests.

    Returns {counter label: number of rows repaired}.
    """
    repaired = {}
    for source in COUNTER_SOURCES:
        if kind is not None and source.kind != kind:
            continue

        with transaction.atomic():
            drifted = list(
                source.model.objects
                .annotate(actual=_actual_count(source))
                .exclude(**{source.field: F('actual')})
                .values_list('pk', 'actual')
            )
            fixed = 0
            for pk, actual in drifted:
                fixed += source.model.objects.filter(pk=pk).update(**{source.field: actual})

        if fixed:
            logger.info(f"Reconciled {fixed} row(s) of {source.label}")
        repaired[source.label] = fixed
    return repaired
