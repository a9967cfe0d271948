"""
Caller identity and the identity-provider / profile-store boundary.

Every service function takes a CallerIdentity instead of reading the
request or a session. Views build one from request.user; tests build one
directly.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

from django.conf import settings

from .exceptions import NotFound, Unauthenticated
from .models import Profile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallerIdentity:
    """The authenticated actor performing an operation, or nobody."""
    user_id: Optional[int] = None

    @classmethod
    def anonymous(cls) -> 'CallerIdentity':
        return cls(None)

    @classmethod
    def from_user(cls, user) -> 'CallerIdentity':
        if user is None or not getattr(user, 'is_authenticated', False):
            return cls.anonymous()
        return cls(user.pk)

    @classmethod
    def from_request(cls, request) -> 'CallerIdentity':
        return cls.from_user(getattr(request, 'user', None))

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    def require(self) -> int:
        """Return the caller's user id, or raise Unauthenticated."""
        if self.user_id is None:
            raise Unauthenticated()
        return self.user_id


def fetch_profile_with_retry(
    user_id: int,
    attempts: Optional[int] = None,
    delay: Optional[float] = None
) -> Profile:
    """
    Read a profile that was just written, tolerating replica lag.

    Tries `attempts` times, sleeping `delay`, then 2*delay, 4*delay ...
    between tries. Raises NotFound once the attempts are used up.
    """
    config = settings.FRAMEZ
    if attempts is None:
        attempts = config['PROFILE_LOOKUP_ATTEMPTS']
    if delay is None:
        delay = config['PROFILE_LOOKUP_DELAY']

    for attempt in range(attempts):
        profile = Profile.objects.filter(user_id=user_id).first()
        if profile is not None:
            return profile
        if attempt < attempts - 1:
            wait = delay * (2 ** attempt)
            logger.warning(
                f"Profile {user_id} not visible yet (attempt {attempt + 1}/{attempts}), "
                f"retrying in {wait:.2f}s"
            )
            time.sleep(wait)

    logger.error(f"Profile {user_id} still missing after {attempts} attempts")
    raise NotFound(f"User {user_id} not found.")
