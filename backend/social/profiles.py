"""
User Directory
==============

Profiles are looked up by user id or by handle. Handles and emails are
unique; two layers guard that:

1. check_handle_available / check_email_available: advisory checks for
   live form validation. Pure reads, reserve nothing.
2. create_or_update_profile / update_profile: the real check, inside the
   write transaction and backed by the unique constraints. A signup that
   loses a race still gets Conflict, never a duplicate.

Follow counters are never touched here; only the ledger moves them.
"""

import logging
from typing import Optional

from django.conf import settings
from django.db import IntegrityError, transaction

from .exceptions import Conflict, InvalidInput, NotFound
from .identity import CallerIdentity
from .models import Profile

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ('name', 'handle', 'avatar_url', 'bio')


def get_current_user(caller: CallerIdentity) -> Optional[Profile]:
    if not caller.is_authenticated:
        return None
    return Profile.objects.filter(pk=caller.user_id).first()


def get_user_by_id(user_id: int) -> Optional[Profile]:
    return Profile.objects.filter(pk=user_id).first()


def get_user_by_handle(handle: str) -> Optional[Profile]:
    """Exact, case-sensitive match."""
    return Profile.objects.filter(handle=handle).first()


def check_handle_available(handle: str) -> dict:
    handle = (handle or '').strip()
    min_length = settings.FRAMEZ['MIN_HANDLE_LENGTH']
    if len(handle) < min_length:
        return {
            'available': False,
            'message': f"Handle must be at least {min_length} characters",
        }
    taken = Profile.objects.filter(handle=handle).exists()
    return {
        'available': not taken,
        'message': "Handle already taken" if taken else "Handle available",
    }


def check_email_available(email: str) -> dict:
    email = (email or '').strip()
    if not email:
        return {'available': False, 'message': "Email is required"}
    taken = Profile.objects.filter(email=email).exists()
    return {
        'available': not taken,
        'message': "Email already registered" if taken else "Email available",
    }


def _ensure_unique(user_id: int, handle: Optional[str] = None, email: Optional[str] = None):
    others = Profile.objects.exclude(pk=user_id)
    if handle is not None and others.filter(handle=handle).exists():
        raise Conflict("Handle already taken.")
    if email is not None and others.filter(email=email).exists():
        raise Conflict("Email already registered.")


def _clean_handle(handle) -> str:
    handle = (handle or '').strip()
    if len(handle) < settings.FRAMEZ['MIN_HANDLE_LENGTH']:
        raise InvalidInput(
            f"Handle must be at least {settings.FRAMEZ['MIN_HANDLE_LENGTH']} characters."
        )
    return handle


def create_or_update_profile(
    caller: CallerIdentity,
    name: str,
    handle: str,
    email: str,
    avatar_url: Optional[str] = None,
    bio: Optional[str] = None
) -> Profile:
    """
    Save the caller's profile, creating it if needed.

    A new profile starts with zero follow counters; an existing one keeps
    its counters. avatar_url / bio left as None keep their current value.
    """
    user_id = caller.require()
    handle = _clean_handle(handle)
    email = (email or '').strip()
    if not email:
        raise InvalidInput("Email is required.")

    try:
        with transaction.atomic():
            _ensure_unique(user_id, handle=handle, email=email)

            profile = Profile.objects.select_for_update().filter(pk=user_id).first()
            created = profile is None
            if created:
                profile = Profile(user_id=user_id)

            profile.name = (name or '').strip()
            profile.handle = handle
            profile.email = email
            if avatar_url is not None:
                profile.avatar_url = avatar_url
            if bio is not None:
                profile.bio = bio
            profile.save()
    except IntegrityError as exc:
        # Lost a race against a concurrent signup with the same handle/email
        raise Conflict("Handle or email already in use.") from exc

    logger.info(f"Profile {user_id} {'created' if created else 'updated'}")
    return profile


def update_profile(caller: CallerIdentity, **changes) -> Profile:
    """
    Partial update of name / handle / avatar_url / bio.

    Fields not passed (or passed as None) are left alone.
    """
    user_id = caller.require()
    changes = {
        field: value
        for field, value in changes.items()
        if field in EDITABLE_FIELDS and value is not None
    }
    if 'handle' in changes:
        changes['handle'] = _clean_handle(changes['handle'])

    try:
        with transaction.atomic():
            profile = Profile.objects.select_for_update().filter(pk=user_id).first()
            if profile is None:
                raise NotFound("Profile not found.")
            if 'handle' in changes:
                _ensure_unique(user_id, handle=changes['handle'])

            for field, value in changes.items():
                setattr(profile, field, value)
            profile.save()
    except IntegrityError as exc:
        raise Conflict("Handle already taken.") from exc

    return profile
