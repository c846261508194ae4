# apps/chat/middleware.py
import logging
from urllib.parse import parse_qs

from channels.db import database_sync_to_async

logger = logging.getLogger(__name__)


@database_sync_to_async
def get_user_from_token(token_key):
    # Imported here: the ASGI app builds this middleware before models are ready
    from django.contrib.auth import get_user_model
    from graphql_jwt.exceptions import JSONWebTokenError
    from graphql_jwt.utils import get_payload

    User = get_user_model()
    try:
        payload = get_payload(token_key)
    except JSONWebTokenError as e:
        logger.info("Rejected websocket token: %s", e)
        return None

    username = payload.get('username')
    if not username:
        return None
    return User.objects.filter(username=username, is_active=True).first()


class JwtAuthMiddleware:
    """Populates scope['user'] from a ``?token=<jwt>`` query parameter."""

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        scope = dict(scope)
        query_string = scope.get("query_string", b"").decode("utf-8")
        query_params = parse_qs(query_string)
        token = query_params.get("token", [None])[0]

        from django.contrib.auth.models import AnonymousUser
        scope['user'] = AnonymousUser()

        if token:
            user = await get_user_from_token(token)
            if user:
                scope['user'] = user

        return await self.app(scope, receive, send)
