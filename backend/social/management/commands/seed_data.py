"""
Populate a dev database with accounts, posts, comments, likes and follows.

Everything goes through the service layer, so every counter matches
its edge table when the command finishes.

Usage: python manage.py seed_data [--users N] [--posts N] [--comments N] [--clear]
"""

import random
from django.core.management.base import BaseCommand
from django.contrib.auth.models import User

from social.comments import create_comment
from social.identity import CallerIdentity
from social.models import Post, Comment, PostLike, CommentLike, Follow, Profile
from social.posts import create_post
from social.profiles import create_or_update_profile
from social.services import (
    has_liked_comment,
    has_liked_post,
    is_following,
    toggle_comment_like,
    toggle_follow,
    toggle_post_like,
)


class Command(BaseCommand):
    help = 'Fill the database with demo accounts and engagement'

    def add_arguments(self, parser):
        parser.add_argument('--users', type=int, default=8, help='How many accounts to ensure exist')
        parser.add_argument('--posts', type=int, default=24, help='How many posts to publish')
        parser.add_argument('--comments', type=int, default=60, help='How many comments to leave')
        parser.add_argument(
            '--clear',
            action='store_true',
            help='Wipe posts, engagement and non-staff accounts first'
        )

    def handle(self, *args, **options):
        if options['clear']:
            self.stdout.write('Wiping existing content...')
            CommentLike.objects.all().delete()
            PostLike.objects.all().delete()
            Follow.objects.all().delete()
            Comment.objects.all().delete()
            Post.objects.all().delete()
            User.objects.filter(is_superuser=False).delete()
            Profile.objects.update(followers_count=0, following_count=0)

        users = self._create_users(options['users'])
        posts = self._create_posts(users, options['posts'])
        comments = self._create_comments(users, posts, options['comments'])
        self._create_likes(users, posts, comments)
        self._create_follows(users)

        self.stdout.write(self.style.SUCCESS(
            f'Seeded {len(users)} users, {len(posts)} posts and '
            f'{len(comments)} comments, with likes and follows'
        ))

    def _create_users(self, count):
        users = []
        for n in range(1, count + 1):
            handle = f'framer{n}'
            user = User.objects.filter(username=handle).first()
            if user is None:
                user = User.objects.create_user(
                    username=handle,
                    email=f'{handle}@example.com',
                    password='framez-demo'
                )
                create_or_update_profile(
                    CallerIdentity.from_user(user),
                    name=f'Framer {n}',
                    handle=handle,
                    email=f'{handle}@example.com',
                    bio='Just here for the photos.',
                )
            users.append(user)
        return users

    def _create_posts(self, users, count):
        if not users:
            return []

        captions = [
            "Golden hour never misses",
            "Weekend hike",
            "Coffee first",
            "New setup, who dis",
            "Throwback",
            "",
        ]

        posts = []
        for i in range(count):
            caption = random.choice(captions)
            post = create_post(
                CallerIdentity.from_user(random.choice(users)),
                caption=caption,
                # Posts without a caption need an image
                image_url=f'https://picsum.photos/seed/framez{i+1}/800/800' if not caption or i % 2 else None,
            )
            posts.append(post)
        return posts

    def _create_comments(self, users, posts, count):
        if not posts:
            return []

        comment_texts = [
            "Love this!",
            "Where is this?",
            "Great shot",
            "So jealous",
            "Need this energy today",
            "Wow",
        ]

        comments = []
        for _ in range(count):
            comment = create_comment(
                CallerIdentity.from_user(random.choice(users)),
                random.choice(posts).pk,
                random.choice(comment_texts)
            )
            comments.append(comment)
        return comments

    def _create_likes(self, users, posts, comments):
        # Toggles flip, so only like what is not liked yet
        for post in posts:
            for liker in random.sample(users, k=len(users) // 2):
                caller = CallerIdentity.from_user(liker)
                if not has_liked_post(caller, post.pk):
                    toggle_post_like(caller, post.pk)

        for comment in comments:
            if random.random() < 0.3:
                for liker in random.sample(users, k=min(3, len(users))):
                    caller = CallerIdentity.from_user(liker)
                    if not has_liked_comment(caller, comment.pk):
                        toggle_comment_like(caller, comment.pk)

    def _create_follows(self, users):
        for follower in users:
            caller = CallerIdentity.from_user(follower)
            for target in random.sample(users, k=min(4, len(users))):
                if target.pk != follower.pk and not is_following(caller, target.pk):
                    toggle_follow(caller, target.pk)
