"""
Django Admin Configuration for Social Models

Counters are read-only everywhere in the admin: editing them by hand is
exactly the drift reconcile_counters exists to repair.
"""
from django.contrib import admin
from .models import Profile, Post, Comment, PostLike, CommentLike, Follow


@admin.register(Profile)
class ProfileAdmin(admin.ModelAdmin):
    list_display = ['user', 'handle', 'name', 'followers_count', 'following_count', 'created_at']
    search_fields = ['handle', 'name', 'email']
    readonly_fields = ['followers_count', 'following_count', 'created_at', 'updated_at']


@admin.register(Post)
class PostAdmin(admin.ModelAdmin):
    list_display = ['id', 'author', 'caption', 'likes_count', 'comments_count', 'created_at']
    list_filter = ['created_at']
    search_fields = ['caption', 'author__profile__handle']
    readonly_fields = ['likes_count', 'comments_count', 'created_at', 'updated_at']


@admin.register(Comment)
class CommentAdmin(admin.ModelAdmin):
    list_display = ['id', 'post', 'author', 'likes_count', 'created_at']
    list_filter = ['created_at']
    search_fields = ['text', 'author__profile__handle']
    readonly_fields = ['likes_count', 'created_at']


class EdgeAdmin(admin.ModelAdmin):
    """
    Edges are created and removed only through the ledger, which keeps
    the counters in step. The admin can look but not touch.
    """
    list_filter = ['created_at']

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(PostLike)
class PostLikeAdmin(EdgeAdmin):
    list_display = ['user', 'post', 'created_at']


@admin.register(CommentLike)
class CommentLikeAdmin(EdgeAdmin):
    list_display = ['user', 'comment', 'created_at']


@admin.register(Follow)
class FollowAdmin(EdgeAdmin):
    list_display = ['follower', 'following', 'created_at']
