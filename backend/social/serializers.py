"""
DRF Serializers
===============

Serializers handle:
1. Validation of incoming request bodies (shape only; business rules
   such as "caption or image" and "handle not taken" live in the
   service layer so they hold for every caller, not just HTTP)
2. Transformation of model instances to JSON

Author snapshots are built from the profile joined by queries.py, so
serializing a list never triggers extra queries.
"""

from rest_framework import serializers

from .models import Comment, Post, Profile
from .queries import author_snapshot


class ProfileSerializer(serializers.ModelSerializer):
    """Full public profile, as returned by the user directory."""
    id = serializers.IntegerField(source='user_id', read_only=True)

    class Meta:
        model = Profile
        fields = [
            'id',
            'name',
            'handle',
            'avatar_url',
            'bio',
            'followers_count',
            'following_count',
            'created_at',
        ]
        read_only_fields = fields


class CurrentProfileSerializer(ProfileSerializer):
    """The caller's own profile also shows their email."""

    class Meta(ProfileSerializer.Meta):
        fields = ProfileSerializer.Meta.fields + ['email']
        read_only_fields = fields


class PostSerializer(serializers.ModelSerializer):
    """Post with author snapshot. Expects select_related('author__profile')."""
    author = serializers.SerializerMethodField()

    class Meta:
        model = Post
        fields = [
            'id',
            'author_id',
            'author',
            'caption',
            'image_url',
            'likes_count',
            'comments_count',
            'created_at',
        ]
        read_only_fields = fields

    def get_author(self, obj):
        return author_snapshot(obj.author)


class CommentSerializer(serializers.ModelSerializer):
    """Comment with author snapshot. Expects select_related('author__profile')."""
    author = serializers.SerializerMethodField()

    class Meta:
        model = Comment
        fields = [
            'id',
            'post_id',
            'author_id',
            'author',
            'text',
            'likes_count',
            'created_at',
        ]
        read_only_fields = fields

    def get_author(self, obj):
        return author_snapshot(obj.author)


class PostCreateSerializer(serializers.Serializer):
    caption = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    image_url = serializers.URLField(required=False, allow_blank=True, allow_null=True, max_length=500)


class CaptionUpdateSerializer(serializers.Serializer):
    caption = serializers.CharField(allow_blank=True)


class CommentCreateSerializer(serializers.Serializer):
    # Blank allowed here; the service rejects whitespace-only text with InvalidInput
    text = serializers.CharField(allow_blank=True, trim_whitespace=False)


class ProfileWriteSerializer(serializers.Serializer):
    """Body of createOrUpdateUser."""
    name = serializers.CharField(max_length=100, allow_blank=True)
    handle = serializers.CharField(max_length=50)
    email = serializers.EmailField()
    avatar_url = serializers.URLField(required=False, allow_null=True, allow_blank=True, max_length=500)
    bio = serializers.CharField(required=False, allow_null=True, allow_blank=True)


class ProfilePatchSerializer(serializers.Serializer):
    """Body of updateProfile: every field optional."""
    name = serializers.CharField(required=False, max_length=100, allow_blank=True)
    handle = serializers.CharField(required=False, max_length=50)
    avatar_url = serializers.URLField(required=False, allow_blank=True, max_length=500)
    bio = serializers.CharField(required=False, allow_blank=True)


class SignupSerializer(ProfileWriteSerializer):
    password = serializers.CharField(write_only=True, min_length=8)


class IdListSerializer(serializers.Serializer):
    """Body of the batch liked-ids queries."""
    ids = serializers.ListField(
        child=serializers.IntegerField(min_value=1),
        max_length=500,
        allow_empty=True
    )


class EdgeSerializer(serializers.Serializer):
    """An edge from list_edges_for_target with the actor's snapshot."""
    id = serializers.IntegerField()
    user_id = serializers.IntegerField()
    created_at = serializers.DateTimeField()
    user = serializers.DictField(allow_null=True)
