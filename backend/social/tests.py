"""
Tests for Framez

Focus areas:
1. Counter invariants (counter == number of edges, floored at zero)
2. Toggle semantics for likes, comment likes and follows
3. Post/comment cascades and ownership checks
4. Profile uniqueness (handle / email)
5. The HTTP surface and its error mapping
"""

import random
from io import StringIO
from unittest.mock import patch

from django.contrib.auth.models import AnonymousUser, User
from django.core.management import call_command
from django.db import IntegrityError, connection, transaction
from django.test import TestCase, TransactionTestCase
from django.test.utils import CaptureQueriesContext
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from .comments import create_comment, delete_comment
from .exceptions import (
    Conflict,
    Forbidden,
    InvalidInput,
    InvalidOperation,
    NotFound,
    Unauthenticated,
)
from .identity import CallerIdentity, fetch_profile_with_retry
from .models import Comment, CommentLike, Follow, Post, PostLike, Profile
from .posts import create_post, delete_post, update_post_caption
from .profiles import (
    check_email_available,
    check_handle_available,
    create_or_update_profile,
    get_current_user,
    get_user_by_handle,
    update_profile,
)
from .queries import get_comments_by_post, get_feed, get_post, get_posts_by_author
from .serializers import PostSerializer
from .services import (
    COMMENT_LIKE,
    POST_LIKE,
    get_follow_stats,
    get_followers,
    get_following,
    get_post_likes,
    has_liked_comment,
    has_liked_post,
    is_following,
    liked_target_ids,
    reconcile_counters,
    toggle_comment_like,
    toggle_follow,
    toggle_post_like,
)

ANONYMOUS = CallerIdentity.anonymous()


def make_user(handle):
    """Account + claimed profile, the state right after signup."""
    user = User.objects.create_user(handle, f'{handle}@test.com', 'pass')
    create_or_update_profile(
        CallerIdentity.from_user(user),
        name=handle.title(),
        handle=handle,
        email=f'{handle}@test.com',
    )
    return user


def caller(user):
    return CallerIdentity.from_user(user)


class CallerIdentityTestCase(TestCase):

    def test_anonymous_user_is_not_authenticated(self):
        identity = CallerIdentity.from_user(AnonymousUser())
        self.assertFalse(identity.is_authenticated)
        with self.assertRaises(Unauthenticated):
            identity.require()

    def test_real_user_carries_its_id(self):
        user = User.objects.create_user('u', 'u@test.com', 'pass')
        self.assertEqual(CallerIdentity.from_user(user).require(), user.pk)

    def test_new_account_gets_empty_profile(self):
        """The signal creates a profile with zeroed counters."""
        user = User.objects.create_user('fresh', 'fresh@test.com', 'pass')
        profile = Profile.objects.get(pk=user.pk)
        self.assertEqual(profile.followers_count, 0)
        self.assertEqual(profile.following_count, 0)
        self.assertIsNone(profile.handle)


class PostLikeTestCase(TestCase):
    """
    Post likes through the generic toggle.

    CRITICAL: likes_count must always equal the number of PostLike rows.
    """

    def setUp(self):
        self.alice = make_user('alice')
        self.bob = make_user('bob')
        self.post = create_post(caller(self.alice), caption='hello')

    def assertCounterMatchesEdges(self):
        self.post.refresh_from_db()
        self.assertEqual(
            self.post.likes_count,
            PostLike.objects.filter(post=self.post).count()
        )

    def test_like_then_unlike_scenario(self):
        """Bob likes Alice's post, then takes it back."""
        feed = get_feed()
        self.assertEqual([p.pk for p in feed], [self.post.pk])
        self.assertEqual(feed[0].likes_count, 0)
        self.assertEqual(feed[0].comments_count, 0)

        result = toggle_post_like(caller(self.bob), self.post.pk)
        self.assertTrue(result.active)
        self.assertEqual(get_post(self.post.pk).likes_count, 1)
        self.assertTrue(has_liked_post(caller(self.bob), self.post.pk))

        result = toggle_post_like(caller(self.bob), self.post.pk)
        self.assertFalse(result.active)
        self.assertEqual(get_post(self.post.pk).likes_count, 0)
        self.assertFalse(has_liked_post(caller(self.bob), self.post.pk))

    def test_likes_from_many_users(self):
        for i in range(5):
            toggle_post_like(caller(make_user(f'liker{i}')), self.post.pk)
        self.assertCounterMatchesEdges()
        self.assertEqual(self.post.likes_count, 5)

    def test_anonymous_cannot_like(self):
        with self.assertRaises(Unauthenticated):
            toggle_post_like(ANONYMOUS, self.post.pk)
        self.assertEqual(PostLike.objects.count(), 0)

    def test_anonymous_has_liked_is_false(self):
        toggle_post_like(caller(self.bob), self.post.pk)
        self.assertFalse(has_liked_post(ANONYMOUS, self.post.pk))

    def test_like_missing_post(self):
        with self.assertRaises(NotFound):
            toggle_post_like(caller(self.bob), 999999)
        self.assertEqual(PostLike.objects.count(), 0)

    def test_unlike_never_goes_negative(self):
        """An edge with a drifted zero counter: unliking keeps the counter at 0."""
        toggle_post_like(caller(self.bob), self.post.pk)
        Post.objects.filter(pk=self.post.pk).update(likes_count=0)

        result = toggle_post_like(caller(self.bob), self.post.pk)

        self.assertFalse(result.active)
        self.post.refresh_from_db()
        self.assertEqual(self.post.likes_count, 0)
        self.assertFalse(PostLike.objects.filter(post=self.post).exists())

    def test_duplicate_edge_rejected_by_database(self):
        PostLike.objects.create(post=self.post, user=self.bob)
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                PostLike.objects.create(post=self.post, user=self.bob)

    def test_get_post_likes_returns_snapshots_in_order(self):
        carol = make_user('carol')
        toggle_post_like(caller(self.bob), self.post.pk)
        toggle_post_like(caller(carol), self.post.pk)

        likes = get_post_likes(self.post.pk, limit=10)

        self.assertEqual([like['user_id'] for like in likes], [self.bob.pk, carol.pk])
        self.assertEqual(likes[0]['user']['handle'], 'bob')
        self.assertEqual(len(get_post_likes(self.post.pk, limit=1)), 1)

    def test_liked_target_ids(self):
        other = create_post(caller(self.alice), caption='second')
        third = create_post(caller(self.alice), caption='third')
        toggle_post_like(caller(self.bob), self.post.pk)
        toggle_post_like(caller(self.bob), third.pk)

        liked = liked_target_ids(caller(self.bob), [self.post.pk, other.pk, third.pk], POST_LIKE)

        self.assertEqual(liked, {self.post.pk, third.pk})
        self.assertEqual(liked_target_ids(ANONYMOUS, [self.post.pk], POST_LIKE), set())


class CommentLikeTestCase(TestCase):

    def setUp(self):
        self.alice = make_user('alice')
        self.bob = make_user('bob')
        self.post = create_post(caller(self.alice), caption='hello')
        self.comment = create_comment(caller(self.alice), self.post.pk, 'first')

    def test_toggle_comment_like(self):
        self.assertTrue(toggle_comment_like(caller(self.bob), self.comment.pk).active)
        self.comment.refresh_from_db()
        self.assertEqual(self.comment.likes_count, 1)
        self.assertTrue(has_liked_comment(caller(self.bob), self.comment.pk))

        self.assertFalse(toggle_comment_like(caller(self.bob), self.comment.pk).active)
        self.comment.refresh_from_db()
        self.assertEqual(self.comment.likes_count, 0)

    def test_comment_like_does_not_touch_post_counter(self):
        toggle_comment_like(caller(self.bob), self.comment.pk)
        self.post.refresh_from_db()
        self.assertEqual(self.post.likes_count, 0)

    def test_like_missing_comment(self):
        with self.assertRaises(NotFound):
            toggle_comment_like(caller(self.bob), 999999)

    def test_liked_comment_ids(self):
        second = create_comment(caller(self.bob), self.post.pk, 'second')
        toggle_comment_like(caller(self.bob), second.pk)
        self.assertEqual(
            liked_target_ids(caller(self.bob), [self.comment.pk, second.pk], COMMENT_LIKE),
            {second.pk}
        )


class FollowTestCase(TestCase):
    """
    Follows move two counters per toggle:
    target.followers_count and actor.following_count.
    """

    def setUp(self):
        self.alice = make_user('alice')
        self.bob = make_user('bob')

    def counts(self, user):
        profile = Profile.objects.get(pk=user.pk)
        return profile.followers_count, profile.following_count

    def test_follow_moves_both_counters(self):
        result = toggle_follow(caller(self.alice), self.bob.pk)

        self.assertTrue(result.active)
        self.assertEqual(self.counts(self.bob), (1, 0))
        self.assertEqual(self.counts(self.alice), (0, 1))
        self.assertTrue(is_following(caller(self.alice), self.bob.pk))
        self.assertFalse(is_following(caller(self.bob), self.alice.pk))

    def test_double_toggle_restores_state(self):
        before = (self.counts(self.alice), self.counts(self.bob))

        toggle_follow(caller(self.alice), self.bob.pk)
        result = toggle_follow(caller(self.alice), self.bob.pk)

        self.assertFalse(result.active)
        self.assertEqual((self.counts(self.alice), self.counts(self.bob)), before)
        self.assertFalse(Follow.objects.exists())

    def test_self_follow_rejected(self):
        with self.assertRaises(InvalidOperation):
            toggle_follow(caller(self.alice), self.alice.pk)
        self.assertFalse(Follow.objects.exists())
        self.assertEqual(self.counts(self.alice), (0, 0))

    def test_self_follow_is_invalid_input(self):
        """InvalidOperation is reported as an input error."""
        with self.assertRaises(InvalidInput):
            toggle_follow(caller(self.alice), self.alice.pk)

    def test_self_follow_rejected_by_database(self):
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                Follow.objects.create(follower=self.alice, following=self.alice)

    def test_follow_locks_both_profiles_lowest_pk_first(self):
        """Opposite follows must take profile locks in the same order."""
        for actor, target in ((self.alice, self.bob), (self.bob, self.alice)):
            with CaptureQueriesContext(connection) as ctx:
                toggle_follow(caller(actor), target.pk)

            statements = [q['sql'] for q in ctx.captured_queries]
            lock = next(i for i, sql in enumerate(statements) if 'FROM "social_profile"' in sql)
            first_update = next(i for i, sql in enumerate(statements) if sql.startswith('UPDATE'))
            self.assertLess(lock, first_update)
            self.assertIn('IN (', statements[lock])
            self.assertIn('ORDER BY "social_profile"."user_id" ASC', statements[lock])

        self.assertEqual(self.counts(self.alice), (1, 1))
        self.assertEqual(self.counts(self.bob), (1, 1))

    def test_follow_missing_user(self):
        with self.assertRaises(NotFound):
            toggle_follow(caller(self.alice), 999999)
        self.assertEqual(self.counts(self.alice), (0, 0))

    def test_anonymous_cannot_follow(self):
        with self.assertRaises(Unauthenticated):
            toggle_follow(ANONYMOUS, self.bob.pk)
        self.assertFalse(is_following(ANONYMOUS, self.bob.pk))

    def test_unfollow_floors_counters(self):
        toggle_follow(caller(self.alice), self.bob.pk)
        Profile.objects.update(followers_count=0, following_count=0)

        toggle_follow(caller(self.alice), self.bob.pk)

        self.assertEqual(self.counts(self.bob), (0, 0))
        self.assertEqual(self.counts(self.alice), (0, 0))

    def test_followers_and_following_lists(self):
        carol = make_user('carol')
        toggle_follow(caller(self.alice), carol.pk)
        toggle_follow(caller(self.bob), carol.pk)
        toggle_follow(caller(carol), self.alice.pk)

        followers = get_followers(carol.pk, limit=10)
        self.assertEqual([p.handle for p in followers], ['alice', 'bob'])
        self.assertEqual(followers[0].following_count, 1)

        self.assertEqual([p.handle for p in get_following(carol.pk, limit=10)], ['alice'])
        self.assertEqual(len(get_followers(carol.pk, limit=1)), 1)

    def test_follow_stats(self):
        toggle_follow(caller(self.alice), self.bob.pk)
        self.assertEqual(
            get_follow_stats(self.bob.pk),
            {'followers_count': 1, 'following_count': 0}
        )
        self.assertEqual(
            get_follow_stats(999999),
            {'followers_count': 0, 'following_count': 0}
        )


class PostStoreTestCase(TestCase):

    def setUp(self):
        self.alice = make_user('alice')
        self.bob = make_user('bob')

    def test_post_needs_caption_or_image(self):
        with self.assertRaises(InvalidInput):
            create_post(caller(self.alice))
        with self.assertRaises(InvalidInput):
            create_post(caller(self.alice), caption='   ')

        image_only = create_post(caller(self.alice), image_url='https://cdn.test/a.jpg')
        self.assertEqual(image_only.caption, '')
        self.assertEqual(image_only.likes_count, 0)
        self.assertEqual(image_only.comments_count, 0)

    def test_anonymous_cannot_post(self):
        with self.assertRaises(Unauthenticated):
            create_post(ANONYMOUS, caption='hi')

    def test_feed_is_newest_first_and_limited(self):
        posts = [create_post(caller(self.alice), caption=f'p{i}') for i in range(5)]

        feed = get_feed(limit=3)

        self.assertEqual([p.pk for p in feed], [p.pk for p in reversed(posts)][:3])

    def test_feed_has_no_n_plus_one(self):
        """Serializing the feed with authors must stay at 1 query."""
        for i in range(10):
            create_post(caller(self.alice if i % 2 else self.bob), caption=f'p{i}')

        with self.assertNumQueries(1):
            data = PostSerializer(get_feed(), many=True).data

        self.assertEqual(len(data), 10)
        self.assertIn(data[0]['author']['handle'], ('alice', 'bob'))

    def test_author_without_profile_yields_null_author(self):
        post = create_post(caller(self.alice), caption='orphaned')
        Profile.objects.filter(pk=self.alice.pk).delete()

        data = PostSerializer(get_feed(), many=True).data

        self.assertEqual(data[0]['id'], post.pk)
        self.assertIsNone(data[0]['author'])

    def test_posts_by_author(self):
        first = create_post(caller(self.alice), caption='one')
        create_post(caller(self.bob), caption='not mine')
        second = create_post(caller(self.alice), caption='two')

        self.assertEqual(
            [p.pk for p in get_posts_by_author(self.alice.pk)],
            [second.pk, first.pk]
        )

    def test_get_missing_post_is_none(self):
        self.assertIsNone(get_post(999999))

    def test_only_author_updates_caption(self):
        post = create_post(caller(self.alice), caption='old')

        with self.assertRaises(Forbidden):
            update_post_caption(caller(self.bob), post.pk, 'hacked')
        with self.assertRaises(NotFound):
            update_post_caption(caller(self.alice), 999999, 'new')

        update_post_caption(caller(self.alice), post.pk, 'new')
        self.assertEqual(get_post(post.pk).caption, 'new')

    def test_caption_cannot_be_cleared_without_image(self):
        post = create_post(caller(self.alice), caption='only text')
        with self.assertRaises(InvalidInput):
            update_post_caption(caller(self.alice), post.pk, '  ')

    def test_delete_cascades_comments_and_likes(self):
        """
        Deleting a post with N comments and M likes removes all of them.
        """
        post = create_post(caller(self.alice), caption='doomed')
        likers = [make_user(f'liker{i}') for i in range(3)]
        for liker in likers:
            toggle_post_like(caller(liker), post.pk)
            comment = create_comment(caller(liker), post.pk, 'nice')
            toggle_comment_like(caller(self.bob), comment.pk)

        delete_post(caller(self.alice), post.pk)

        self.assertIsNone(get_post(post.pk))
        self.assertEqual(get_comments_by_post(post.pk), [])
        self.assertFalse(PostLike.objects.filter(post_id=post.pk).exists())
        self.assertFalse(Comment.objects.filter(post_id=post.pk).exists())
        self.assertFalse(CommentLike.objects.exists())

    def test_only_author_deletes(self):
        post = create_post(caller(self.alice), caption='mine')
        with self.assertRaises(Forbidden):
            delete_post(caller(self.bob), post.pk)
        with self.assertRaises(Unauthenticated):
            delete_post(ANONYMOUS, post.pk)
        with self.assertRaises(NotFound):
            delete_post(caller(self.alice), 999999)
        self.assertIsNotNone(get_post(post.pk))


class CommentStoreTestCase(TestCase):

    def setUp(self):
        self.alice = make_user('alice')
        self.bob = make_user('bob')
        self.post = create_post(caller(self.alice), caption='hello')

    def test_create_increments_post_counter(self):
        comment = create_comment(caller(self.bob), self.post.pk, '  nice shot  ')

        self.assertEqual(comment.text, 'nice shot')
        self.assertEqual(comment.likes_count, 0)
        self.post.refresh_from_db()
        self.assertEqual(self.post.comments_count, 1)

    def test_empty_comment_rejected(self):
        with self.assertRaises(InvalidInput):
            create_comment(caller(self.bob), self.post.pk, '   ')
        self.post.refresh_from_db()
        self.assertEqual(self.post.comments_count, 0)

    def test_comment_on_missing_post_rejected(self):
        with self.assertRaises(NotFound):
            create_comment(caller(self.bob), 999999, 'hello?')
        self.assertFalse(Comment.objects.exists())

    def test_anonymous_cannot_comment(self):
        with self.assertRaises(Unauthenticated):
            create_comment(ANONYMOUS, self.post.pk, 'hi')

    def test_comments_newest_first_with_author(self):
        first = create_comment(caller(self.bob), self.post.pk, 'first')
        second = create_comment(caller(self.alice), self.post.pk, 'second')

        comments = get_comments_by_post(self.post.pk)

        self.assertEqual([c.pk for c in comments], [second.pk, first.pk])
        self.assertEqual(comments[1].author.profile.handle, 'bob')

    def test_only_author_deletes_comment(self):
        comment = create_comment(caller(self.bob), self.post.pk, 'mine')
        # Post owner is not the comment author either
        with self.assertRaises(Forbidden):
            delete_comment(caller(self.alice), comment.pk)
        with self.assertRaises(NotFound):
            delete_comment(caller(self.bob), 999999)
        self.assertTrue(Comment.objects.filter(pk=comment.pk).exists())

    def test_delete_decrements_and_removes_likes(self):
        comment = create_comment(caller(self.bob), self.post.pk, 'liked one')
        toggle_comment_like(caller(self.alice), comment.pk)

        delete_comment(caller(self.bob), comment.pk)

        self.post.refresh_from_db()
        self.assertEqual(self.post.comments_count, 0)
        self.assertFalse(CommentLike.objects.exists())

    def test_second_delete_of_same_comment_moves_counter_once(self):
        """A double-tapped delete: the second request read the comment before the first committed."""
        doomed = create_comment(caller(self.bob), self.post.pk, 'tap')
        create_comment(caller(self.bob), self.post.pk, 'keep')
        stale = Comment.objects.get(pk=doomed.pk)

        delete_comment(caller(self.bob), doomed.pk)
        with patch('social.comments._get_owned_comment', return_value=stale):
            with self.assertRaises(NotFound):
                delete_comment(caller(self.bob), doomed.pk)

        self.post.refresh_from_db()
        self.assertEqual(self.post.comments_count, 1)
        self.assertEqual(Comment.objects.filter(post=self.post).count(), 1)

    def test_delete_floors_comment_counter(self):
        comment = create_comment(caller(self.bob), self.post.pk, 'x')
        Post.objects.filter(pk=self.post.pk).update(comments_count=0)

        delete_comment(caller(self.bob), comment.pk)

        self.post.refresh_from_db()
        self.assertEqual(self.post.comments_count, 0)


class ProfileTestCase(TestCase):

    def setUp(self):
        self.alice = make_user('alice')
        self.bob = make_user('bob')

    def test_handle_taken_by_someone_else(self):
        with self.assertRaises(Conflict):
            create_or_update_profile(
                caller(self.bob), name='Bob', handle='alice', email='bob@test.com'
            )
        self.assertEqual(Profile.objects.get(pk=self.bob.pk).handle, 'bob')

    def test_email_taken_by_someone_else(self):
        with self.assertRaises(Conflict):
            create_or_update_profile(
                caller(self.bob), name='Bob', handle='bobby', email='alice@test.com'
            )

    def test_resaving_own_handle_succeeds(self):
        profile = create_or_update_profile(
            caller(self.alice), name='Alice A.', handle='alice', email='alice@test.com'
        )
        self.assertEqual(profile.name, 'Alice A.')

    def test_update_preserves_counters(self):
        toggle_follow(caller(self.bob), self.alice.pk)

        create_or_update_profile(
            caller(self.alice), name='Alice', handle='alice2', email='alice@test.com', bio='hi'
        )

        profile = Profile.objects.get(pk=self.alice.pk)
        self.assertEqual(profile.followers_count, 1)
        self.assertEqual(profile.handle, 'alice2')
        self.assertEqual(profile.bio, 'hi')

    def test_create_when_profile_missing(self):
        carol = User.objects.create_user('carol', 'carol@test.com', 'pass')
        Profile.objects.filter(pk=carol.pk).delete()

        profile = create_or_update_profile(
            caller(carol), name='Carol', handle='carol', email='carol@test.com'
        )

        self.assertEqual(profile.followers_count, 0)
        self.assertEqual(profile.following_count, 0)

    def test_anonymous_cannot_save_profile(self):
        with self.assertRaises(Unauthenticated):
            create_or_update_profile(ANONYMOUS, name='x', handle='xyz', email='x@test.com')
        self.assertIsNone(get_current_user(ANONYMOUS))

    def test_handle_lookup_is_case_sensitive(self):
        self.assertEqual(get_user_by_handle('alice').pk, self.alice.pk)
        self.assertIsNone(get_user_by_handle('Alice'))

    def test_availability_checks(self):
        self.assertFalse(check_handle_available('alice')['available'])
        self.assertTrue(check_handle_available('carol')['available'])
        self.assertEqual(
            check_handle_available('ab'),
            {'available': False, 'message': 'Handle must be at least 3 characters'}
        )
        self.assertFalse(check_email_available('alice@test.com')['available'])
        self.assertTrue(check_email_available('carol@test.com')['available'])

    def test_availability_check_does_not_reserve(self):
        check_handle_available('carol')
        self.assertFalse(Profile.objects.filter(handle='carol').exists())

    def test_partial_update(self):
        profile = update_profile(caller(self.alice), bio='new bio')
        self.assertEqual(profile.bio, 'new bio')
        self.assertEqual(profile.handle, 'alice')

        with self.assertRaises(Conflict):
            update_profile(caller(self.alice), handle='bob')


class ProfileLookupRetryTestCase(TestCase):
    """Read-after-write retry at the signup boundary."""

    def setUp(self):
        self.user = User.objects.create_user('new', 'new@test.com', 'pass')

    @patch('social.identity.time.sleep')
    def test_found_immediately(self, sleep):
        profile = fetch_profile_with_retry(self.user.pk)
        self.assertEqual(profile.pk, self.user.pk)
        sleep.assert_not_called()

    @patch('social.identity.time.sleep')
    def test_gives_up_after_attempts(self, sleep):
        Profile.objects.filter(pk=self.user.pk).delete()

        with self.assertRaises(NotFound):
            fetch_profile_with_retry(self.user.pk, attempts=3, delay=0.1)

        # Backoff between attempts, none after the last one
        self.assertEqual([c.args[0] for c in sleep.call_args_list], [0.1, 0.2])

    def test_appears_on_later_attempt(self):
        Profile.objects.filter(pk=self.user.pk).delete()

        def replica_catches_up(seconds):
            Profile.objects.create(user=self.user)

        with patch('social.identity.time.sleep', side_effect=replica_catches_up) as sleep:
            profile = fetch_profile_with_retry(self.user.pk, attempts=3, delay=0.1)

        self.assertEqual(profile.pk, self.user.pk)
        self.assertEqual(sleep.call_count, 1)


class ReconcileTestCase(TestCase):
    """
    reconcile_counters is both the repair tool and an independent oracle:
    after any sequence of toggles it must find nothing to repair.
    """

    def setUp(self):
        self.users = [make_user(f'user{i}') for i in range(5)]
        self.posts = [create_post(caller(u), caption='p') for u in self.users[:3]]

    def test_random_toggles_keep_counters_exact(self):
        rng = random.Random(1234)
        comments = []
        for _ in range(200):
            actor = rng.choice(self.users)
            action = rng.random()
            if action < 0.4:
                toggle_post_like(caller(actor), rng.choice(self.posts).pk)
            elif action < 0.6:
                target = rng.choice(self.users)
                if target != actor:
                    toggle_follow(caller(actor), target.pk)
            elif action < 0.8:
                comments.append(create_comment(caller(actor), rng.choice(self.posts).pk, 'c'))
            elif comments:
                toggle_comment_like(caller(actor), rng.choice(comments).pk)

        repaired = reconcile_counters()

        self.assertEqual(sum(repaired.values()), 0, repaired)
        for post in Post.objects.all():
            self.assertEqual(post.likes_count, PostLike.objects.filter(post=post).count())
            self.assertEqual(post.comments_count, Comment.objects.filter(post=post).count())
        for profile in Profile.objects.all():
            self.assertEqual(
                profile.followers_count,
                Follow.objects.filter(following_id=profile.pk).count()
            )
            self.assertEqual(
                profile.following_count,
                Follow.objects.filter(follower_id=profile.pk).count()
            )

    def test_repairs_drifted_counters(self):
        post = self.posts[0]
        toggle_post_like(caller(self.users[1]), post.pk)
        toggle_follow(caller(self.users[0]), self.users[1].pk)
        Post.objects.filter(pk=post.pk).update(likes_count=7)
        Profile.objects.filter(pk=self.users[0].pk).update(following_count=0)

        repaired = reconcile_counters()

        self.assertEqual(repaired['post.likes_count'], 1)
        self.assertEqual(repaired['profile.following_count'], 1)
        self.assertEqual(repaired['profile.followers_count'], 0)
        post.refresh_from_db()
        self.assertEqual(post.likes_count, 1)
        self.assertEqual(Profile.objects.get(pk=self.users[0].pk).following_count, 1)

    def test_kind_filter(self):
        Post.objects.filter(pk=self.posts[0].pk).update(likes_count=3, comments_count=3)

        repaired = reconcile_counters(kind='post_like')

        self.assertEqual(repaired, {'post.likes_count': 1})
        self.assertEqual(Post.objects.get(pk=self.posts[0].pk).comments_count, 3)

    def test_seed_data_leaves_no_drift(self):
        call_command('seed_data', users=4, posts=3, comments=6, stdout=StringIO())
        call_command('seed_data', users=4, posts=1, comments=1, stdout=StringIO())

        self.assertEqual(sum(reconcile_counters().values()), 0)
        self.assertTrue(User.objects.filter(username='framer4').exists())

    def test_seed_data_without_posts(self):
        call_command('seed_data', users=2, posts=0, comments=5, stdout=StringIO())
        self.assertFalse(Comment.objects.exists())
        self.assertEqual(sum(reconcile_counters().values()), 0)

    def test_management_command(self):
        Post.objects.filter(pk=self.posts[0].pk).update(comments_count=9)
        out = StringIO()

        call_command('reconcile_counters', stdout=out)

        self.assertIn('post.comments_count: 1 row(s) repaired', out.getvalue())
        self.assertEqual(Post.objects.get(pk=self.posts[0].pk).comments_count, 0)


class ToggleAtomicityTestCase(TransactionTestCase):
    """
    The edge write and the counter write commit together or not at all.
    """

    def setUp(self):
        self.alice = make_user('alice')
        self.bob = make_user('bob')
        self.post = create_post(caller(self.alice), caption='hello')

    def test_counter_failure_rolls_back_edge(self):
        with patch('social.services.adjust_counter', side_effect=RuntimeError('boom')):
            with self.assertRaises(RuntimeError):
                toggle_post_like(caller(self.bob), self.post.pk)

        self.assertFalse(PostLike.objects.exists())
        self.post.refresh_from_db()
        self.assertEqual(self.post.likes_count, 0)

    def test_follow_failure_rolls_back_both_counters(self):
        calls = []

        def fail_on_second(model, pk, field, delta):
            calls.append(field)
            if len(calls) == 2:
                raise RuntimeError('boom')
            return model.objects.filter(pk=pk).update(**{field: delta})

        with patch('social.services.adjust_counter', side_effect=fail_on_second):
            with self.assertRaises(RuntimeError):
                toggle_follow(caller(self.alice), self.bob.pk)

        self.assertFalse(Follow.objects.exists())
        self.assertEqual(Profile.objects.get(pk=self.bob.pk).followers_count, 0)


class ApiTestCase(APITestCase):
    """The HTTP surface and the error mapping of custom_exception_handler."""

    def setUp(self):
        self.alice = make_user('alice')
        self.bob = make_user('bob')

    def test_post_like_scenario_over_http(self):
        self.client.force_authenticate(self.alice)
        response = self.client.post(reverse('post-list'), {'caption': 'hello'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        post_id = response.data['id']

        feed = self.client.get(reverse('post-list')).data
        self.assertEqual(feed[0]['id'], post_id)
        self.assertEqual(feed[0]['likes_count'], 0)
        self.assertEqual(feed[0]['author']['handle'], 'alice')

        self.client.force_authenticate(self.bob)
        response = self.client.post(reverse('post-like', args=[post_id]))
        self.assertEqual(response.data, {'active': True})
        self.assertEqual(self.client.get(reverse('post-detail', args=[post_id])).data['likes_count'], 1)
        self.assertEqual(self.client.get(reverse('post-like', args=[post_id])).data, {'active': True})

        response = self.client.post(reverse('post-like', args=[post_id]))
        self.assertEqual(response.data, {'active': False})

    def test_anonymous_mutation_is_401(self):
        response = self.client.post(reverse('post-list'), {'caption': 'hi'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(response.data['code'], 'unauthenticated')

    def test_anonymous_read_of_like_state(self):
        post = create_post(caller(self.alice), caption='hi')
        response = self.client.get(reverse('post-like', args=[post.pk]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data, {'active': False})

    def test_missing_post_is_null(self):
        response = self.client.get(reverse('post-detail', args=[999999]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIsNone(response.data)

    def test_delete_other_users_post_is_403(self):
        post = create_post(caller(self.alice), caption='mine')
        self.client.force_authenticate(self.bob)
        response = self.client.delete(reverse('post-detail', args=[post.pk]))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_update_caption(self):
        post = create_post(caller(self.alice), caption='old')
        self.client.force_authenticate(self.alice)
        response = self.client.patch(reverse('post-detail', args=[post.pk]), {'caption': 'new'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertEqual(get_post(post.pk).caption, 'new')

    def test_comment_flow(self):
        post = create_post(caller(self.alice), caption='hi')
        self.client.force_authenticate(self.bob)

        response = self.client.post(reverse('post-comments', args=[post.pk]), {'text': '  '}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'invalid_input')

        response = self.client.post(reverse('post-comments', args=[post.pk]), {'text': 'cool'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        comment_id = response.data['id']

        comments = self.client.get(reverse('post-comments', args=[post.pk])).data
        self.assertEqual(comments[0]['text'], 'cool')
        self.assertEqual(comments[0]['author']['handle'], 'bob')

        self.assertEqual(self.client.post(reverse('comment-like', args=[comment_id])).data, {'active': True})
        liked = self.client.post(reverse('comment-liked-ids'), {'ids': [comment_id]}, format='json')
        self.assertEqual(liked.data, {'ids': [comment_id]})

        response = self.client.delete(reverse('comment-detail', args=[comment_id]))
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)

    def test_self_follow_is_400(self):
        self.client.force_authenticate(self.alice)
        response = self.client.post(reverse('user-follow', args=[self.alice.pk]))
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'invalid_operation')

    def test_follow_lists(self):
        self.client.force_authenticate(self.alice)
        self.assertEqual(self.client.post(reverse('user-follow', args=[self.bob.pk])).data, {'active': True})

        followers = self.client.get(reverse('user-followers', args=[self.bob.pk]), {'limit': 5}).data
        self.assertEqual([f['handle'] for f in followers], ['alice'])
        following = self.client.get(reverse('user-following', args=[self.alice.pk])).data
        self.assertEqual([f['handle'] for f in following], ['bob'])
        stats = self.client.get(reverse('user-follow-stats', args=[self.bob.pk])).data
        self.assertEqual(stats, {'followers_count': 1, 'following_count': 0})

    def test_current_user(self):
        self.assertIsNone(self.client.get(reverse('user-me')).data)

        self.client.force_authenticate(self.alice)
        data = self.client.get(reverse('user-me')).data
        self.assertEqual(data['handle'], 'alice')
        self.assertEqual(data['email'], 'alice@test.com')

    def test_handle_conflict_is_409(self):
        self.client.force_authenticate(self.bob)
        response = self.client.put(
            reverse('user-me'),
            {'name': 'Bob', 'handle': 'alice', 'email': 'bob@test.com'},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['code'], 'conflict')

    def test_lookup_by_handle_and_id(self):
        by_handle = self.client.get(reverse('user-by-handle', args=['bob'])).data
        self.assertEqual(by_handle['id'], self.bob.pk)
        by_id = self.client.get(reverse('user-detail', args=[self.bob.pk])).data
        self.assertEqual(by_id['handle'], 'bob')
        self.assertNotIn('email', by_id)

    def test_check_handle_endpoint(self):
        response = self.client.get(reverse('check-handle'), {'handle': 'alice'})
        self.assertEqual(response.data, {'available': False, 'message': 'Handle already taken'})
        response = self.client.get(reverse('check-email'), {'email': 'new@test.com'})
        self.assertEqual(response.data, {'available': True, 'message': 'Email available'})

    def test_signup(self):
        response = self.client.post(
            reverse('signup'),
            {'name': 'Carol', 'handle': 'carol', 'email': 'carol@test.com', 'password': 'long-enough'},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['handle'], 'carol')
        self.assertEqual(response.data['followers_count'], 0)

    def test_signup_with_taken_handle_creates_nothing(self):
        accounts = User.objects.count()
        response = self.client.post(
            reverse('signup'),
            {'name': 'Fake', 'handle': 'alice', 'email': 'fake@test.com', 'password': 'long-enough'},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(User.objects.count(), accounts)
