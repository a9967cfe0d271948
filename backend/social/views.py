"""
DRF Views
=========

API endpoints for the Framez backend. Views stay thin: parse the
request, build a CallerIdentity from request.user, call one service or
query function, serialize the result. Domain errors raised by services
are turned into responses by exceptions.custom_exception_handler.

AUTHENTICATION NOTE:
--------------------
Identity comes from the external identity provider; here that is
whatever DRF authentication class populated request.user. Services never
see the request, only the CallerIdentity.
"""

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import transaction
from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from . import comments, posts, profiles, queries, services
from .exceptions import Conflict
from .identity import CallerIdentity, fetch_profile_with_retry
from .serializers import (
    CaptionUpdateSerializer,
    CommentCreateSerializer,
    CommentSerializer,
    CurrentProfileSerializer,
    EdgeSerializer,
    IdListSerializer,
    PostCreateSerializer,
    PostSerializer,
    ProfilePatchSerializer,
    ProfileSerializer,
    ProfileWriteSerializer,
    SignupSerializer,
)


def _edge_list_limit(request) -> int:
    return queries.clamp_limit(
        request.query_params.get('limit'),
        settings.FRAMEZ['DEFAULT_EDGE_LIST_LIMIT']
    )


def _toggle_response(result):
    return Response({'active': result.active})


# ============================================================================
# USER DIRECTORY
# ============================================================================

class CurrentUserView(APIView):
    """
    GET   /api/users/me/  -> caller's profile, or null when anonymous
    PUT   /api/users/me/  -> createOrUpdateUser
    PATCH /api/users/me/  -> updateProfile (partial)
    """
    permission_classes = [permissions.AllowAny]

    def get(self, request):
        profile = profiles.get_current_user(CallerIdentity.from_request(request))
        if profile is None:
            return Response(None)
        return Response(CurrentProfileSerializer(profile).data)

    def put(self, request):
        serializer = ProfileWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        profile = profiles.create_or_update_profile(
            CallerIdentity.from_request(request),
            **serializer.validated_data
        )
        return Response({'id': profile.user_id})

    def patch(self, request):
        serializer = ProfilePatchSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        profile = profiles.update_profile(
            CallerIdentity.from_request(request),
            **serializer.validated_data
        )
        return Response(CurrentProfileSerializer(profile).data)


class UserDetailView(APIView):
    """GET /api/users/<id>/"""
    permission_classes = [permissions.AllowAny]

    def get(self, request, user_id):
        profile = profiles.get_user_by_id(user_id)
        return Response(ProfileSerializer(profile).data if profile else None)


class UserByHandleView(APIView):
    """GET /api/users/by-handle/<handle>/"""
    permission_classes = [permissions.AllowAny]

    def get(self, request, handle):
        profile = profiles.get_user_by_handle(handle)
        return Response(ProfileSerializer(profile).data if profile else None)


class CheckHandleView(APIView):
    """GET /api/users/check-handle/?handle=..."""
    permission_classes = [permissions.AllowAny]

    def get(self, request):
        return Response(profiles.check_handle_available(request.query_params.get('handle', '')))


class CheckEmailView(APIView):
    """GET /api/users/check-email/?email=..."""
    permission_classes = [permissions.AllowAny]

    def get(self, request):
        return Response(profiles.check_email_available(request.query_params.get('email', '')))


class UserPostsView(APIView):
    """GET /api/users/<id>/posts/ -> every post by the user, newest first."""
    permission_classes = [permissions.AllowAny]

    def get(self, request, user_id):
        return Response(PostSerializer(queries.get_posts_by_author(user_id), many=True).data)


# ============================================================================
# FOLLOWS
# ============================================================================

class FollowView(APIView):
    """
    GET  /api/users/<id>/follow/ -> {"active": caller follows user}
    POST /api/users/<id>/follow/ -> toggle, {"active": new state}
    """
    permission_classes = [permissions.AllowAny]

    def get(self, request, user_id):
        following = services.is_following(CallerIdentity.from_request(request), user_id)
        return Response({'active': following})

    def post(self, request, user_id):
        return _toggle_response(
            services.toggle_follow(CallerIdentity.from_request(request), user_id)
        )


class FollowersView(APIView):
    """GET /api/users/<id>/followers/?limit=N"""
    permission_classes = [permissions.AllowAny]

    def get(self, request, user_id):
        followers = services.get_followers(user_id, _edge_list_limit(request))
        return Response(ProfileSerializer(followers, many=True).data)


class FollowingView(APIView):
    """GET /api/users/<id>/following/?limit=N"""
    permission_classes = [permissions.AllowAny]

    def get(self, request, user_id):
        following = services.get_following(user_id, _edge_list_limit(request))
        return Response(ProfileSerializer(following, many=True).data)


class FollowStatsView(APIView):
    """GET /api/users/<id>/follow-stats/"""
    permission_classes = [permissions.AllowAny]

    def get(self, request, user_id):
        return Response(services.get_follow_stats(user_id))


# ============================================================================
# POSTS
# ============================================================================

class PostListCreateView(APIView):
    """
    GET  /api/posts/?limit=N -> feed, newest first
    POST /api/posts/         -> create, {"id": ...}

    Query: 1 for the feed (post + author + profile JOIN)
    """
    permission_classes = [permissions.AllowAny]

    def get(self, request):
        feed = queries.get_feed(request.query_params.get('limit'))
        return Response(PostSerializer(feed, many=True).data)

    def post(self, request):
        serializer = PostCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        post = posts.create_post(
            CallerIdentity.from_request(request),
            caption=serializer.validated_data.get('caption'),
            image_url=serializer.validated_data.get('image_url'),
        )
        return Response({'id': post.pk}, status=status.HTTP_201_CREATED)


class PostDetailView(APIView):
    """
    GET    /api/posts/<id>/ -> post with author, or null
    PATCH  /api/posts/<id>/ -> update caption (author only)
    DELETE /api/posts/<id>/ -> delete with comments and likes (author only)
    """
    permission_classes = [permissions.AllowAny]

    def get(self, request, post_id):
        post = queries.get_post(post_id)
        return Response(PostSerializer(post).data if post else None)

    def patch(self, request, post_id):
        serializer = CaptionUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        posts.update_post_caption(
            CallerIdentity.from_request(request),
            post_id,
            serializer.validated_data['caption']
        )
        return Response(status=status.HTTP_204_NO_CONTENT)

    def delete(self, request, post_id):
        posts.delete_post(CallerIdentity.from_request(request), post_id)
        return Response(status=status.HTTP_204_NO_CONTENT)


class PostLikeView(APIView):
    """
    GET  /api/posts/<id>/like/ -> {"active": caller liked post}
    POST /api/posts/<id>/like/ -> toggle
    """
    permission_classes = [permissions.AllowAny]

    def get(self, request, post_id):
        liked = services.has_liked_post(CallerIdentity.from_request(request), post_id)
        return Response({'active': liked})

    def post(self, request, post_id):
        return _toggle_response(
            services.toggle_post_like(CallerIdentity.from_request(request), post_id)
        )


class PostLikesListView(APIView):
    """GET /api/posts/<id>/likes/?limit=N -> likers with profile snapshots"""
    permission_classes = [permissions.AllowAny]

    def get(self, request, post_id):
        likes = services.get_post_likes(post_id, _edge_list_limit(request))
        return Response(EdgeSerializer(likes, many=True).data)


class LikedPostIdsView(APIView):
    """
    POST /api/posts/liked/  body {"ids": [...]}

    Read-only despite POST: the id list can be long.
    """
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        serializer = IdListSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        liked = services.liked_target_ids(
            CallerIdentity.from_request(request),
            serializer.validated_data['ids'],
            services.POST_LIKE
        )
        return Response({'ids': sorted(liked)})


# ============================================================================
# COMMENTS
# ============================================================================

class PostCommentsView(APIView):
    """
    GET  /api/posts/<id>/comments/ -> comments, newest first
    POST /api/posts/<id>/comments/ -> create, {"id": ...}
    """
    permission_classes = [permissions.AllowAny]

    def get(self, request, post_id):
        return Response(CommentSerializer(queries.get_comments_by_post(post_id), many=True).data)

    def post(self, request, post_id):
        serializer = CommentCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        comment = comments.create_comment(
            CallerIdentity.from_request(request),
            post_id,
            serializer.validated_data['text']
        )
        return Response({'id': comment.pk}, status=status.HTTP_201_CREATED)


class CommentDetailView(APIView):
    """DELETE /api/comments/<id>/ (author only)"""
    permission_classes = [permissions.AllowAny]

    def delete(self, request, comment_id):
        comments.delete_comment(CallerIdentity.from_request(request), comment_id)
        return Response(status=status.HTTP_204_NO_CONTENT)


class CommentLikeView(APIView):
    """
    GET  /api/comments/<id>/like/ -> {"active": caller liked comment}
    POST /api/comments/<id>/like/ -> toggle
    """
    permission_classes = [permissions.AllowAny]

    def get(self, request, comment_id):
        liked = services.has_liked_comment(CallerIdentity.from_request(request), comment_id)
        return Response({'active': liked})

    def post(self, request, comment_id):
        return _toggle_response(
            services.toggle_comment_like(CallerIdentity.from_request(request), comment_id)
        )


class LikedCommentIdsView(APIView):
    """POST /api/comments/liked/  body {"ids": [...]}"""
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        serializer = IdListSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        liked = services.liked_target_ids(
            CallerIdentity.from_request(request),
            serializer.validated_data['ids'],
            services.COMMENT_LIKE
        )
        return Response({'ids': sorted(liked)})


# ============================================================================
# SIGNUP
# ============================================================================

class SignupView(APIView):
    """
    POST /api/auth/signup/

    Stand-in for the identity provider's signup: create the account,
    save the profile, then read the profile back with a bounded retry
    (the read may hit a replica that has not caught up yet).

    Body: {"name", "handle", "email", "password", "avatar_url"?, "bio"?}
    """
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        serializer = SignupSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        password = data.pop('password')

        User = get_user_model()
        with transaction.atomic():
            if User.objects.filter(username=data['email']).exists():
                raise Conflict("Email already registered.")
            user = User.objects.create_user(
                username=data['email'],
                email=data['email'],
                password=password
            )
            profiles.create_or_update_profile(CallerIdentity.from_user(user), **data)

        # Raises NotFound if the profile never becomes visible
        profile = fetch_profile_with_retry(user.pk)

        return Response(CurrentProfileSerializer(profile).data, status=status.HTTP_201_CREATED)
