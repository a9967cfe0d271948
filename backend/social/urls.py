"""
Social App URL Configuration
"""
from django.urls import path
from .views import (
    CurrentUserView,
    UserDetailView,
    UserByHandleView,
    CheckHandleView,
    CheckEmailView,
    UserPostsView,
    FollowView,
    FollowersView,
    FollowingView,
    FollowStatsView,
    PostListCreateView,
    PostDetailView,
    PostLikeView,
    PostLikesListView,
    LikedPostIdsView,
    PostCommentsView,
    CommentDetailView,
    CommentLikeView,
    LikedCommentIdsView,
    SignupView,
)

urlpatterns = [
    # Users
    path('users/me/', CurrentUserView.as_view(), name='user-me'),
    path('users/check-handle/', CheckHandleView.as_view(), name='check-handle'),
    path('users/check-email/', CheckEmailView.as_view(), name='check-email'),
    path('users/by-handle/<str:handle>/', UserByHandleView.as_view(), name='user-by-handle'),
    path('users/<int:user_id>/', UserDetailView.as_view(), name='user-detail'),
    path('users/<int:user_id>/posts/', UserPostsView.as_view(), name='user-posts'),

    # Follows
    path('users/<int:user_id>/follow/', FollowView.as_view(), name='user-follow'),
    path('users/<int:user_id>/followers/', FollowersView.as_view(), name='user-followers'),
    path('users/<int:user_id>/following/', FollowingView.as_view(), name='user-following'),
    path('users/<int:user_id>/follow-stats/', FollowStatsView.as_view(), name='user-follow-stats'),

    # Posts
    path('posts/', PostListCreateView.as_view(), name='post-list'),
    path('posts/liked/', LikedPostIdsView.as_view(), name='post-liked-ids'),
    path('posts/<int:post_id>/', PostDetailView.as_view(), name='post-detail'),
    path('posts/<int:post_id>/like/', PostLikeView.as_view(), name='post-like'),
    path('posts/<int:post_id>/likes/', PostLikesListView.as_view(), name='post-likes'),
    path('posts/<int:post_id>/comments/', PostCommentsView.as_view(), name='post-comments'),

    # Comments
    path('comments/liked/', LikedCommentIdsView.as_view(), name='comment-liked-ids'),
    path('comments/<int:comment_id>/', CommentDetailView.as_view(), name='comment-detail'),
    path('comments/<int:comment_id>/like/', CommentLikeView.as_view(), name='comment-like'),

    # Auth (identity provider stand-in)
    path('auth/signup/', SignupView.as_view(), name='signup'),
]
