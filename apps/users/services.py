import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from django.contrib.auth import get_user_model

from .models import Profile

User = get_user_model()
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PublicUser:
    """Minimal public profile of a user, safe to embed in chat payloads."""
    id: int
    username: str
    avatar_url: Optional[str]

    def as_dict(self) -> dict:
        return {"id": self.id, "username": self.username, "avatarUrl": self.avatar_url}


def _avatar_url(user: User, request=None) -> Optional[str]:  # type: ignore
    try:
        profile = user.profile
    except Profile.DoesNotExist:
        return None
    if not profile.avatar:
        return None
    if request:
        return request.build_absolute_uri(profile.avatar.url)
    return profile.avatar.url


def build_public_user(user: User, request=None) -> PublicUser:  # type: ignore
    return PublicUser(id=user.id, username=user.username, avatar_url=_avatar_url(user, request))


def _coerce_id(user_id) -> Optional[int]:
    if isinstance(user_id, bool):
        return None
    try:
        return int(user_id)
    except (TypeError, ValueError):
        return None


# ---------- Identity resolution ----------
def resolve_user(user_id, *, request=None) -> Optional[PublicUser]:
    """
    Confirms a user exists and returns their public fields.
    Returns None for unknown, inactive or malformed ids.
    """
    pk = _coerce_id(user_id)
    if pk is None:
        return None
    user = (
        User.objects
        .select_related("profile")
        .filter(pk=pk, is_active=True)
        .first()
    )
    if user is None:
        logger.debug("resolve_user: no active user with id=%s", user_id)
        return None
    return build_public_user(user, request)


def resolve_users(user_ids: Iterable, *, request=None) -> Dict[int, PublicUser]:
    """Batched resolve_user; ids that do not resolve are absent from the result."""
    pks = {pk for pk in (_coerce_id(u) for u in user_ids) if pk is not None}
    if not pks:
        return {}
    users = User.objects.select_related("profile").filter(pk__in=pks, is_active=True)
    return {user.id: build_public_user(user, request) for user in users}
