import logging
from typing import Optional

from graphql import GraphQLError
from graphql_jwt.exceptions import JSONWebTokenError, PermissionDenied
from graphql_jwt.utils import get_payload
from strawberry.types import Info

from apps.chat.exceptions import MessagingError
from apps.users.models import User

logger = logging.getLogger(__name__)


def get_user(info: Info) -> Optional[User]:
    request = info.context.request
    auth = request.headers.get("authorization", "")
    if not auth.startswith("JWT "):
        return None
    token = auth[4:]
    try:
        payload = get_payload(token)
    except JSONWebTokenError:
        return None
    return User.objects.filter(
        **{User.USERNAME_FIELD: payload.get("username")}, is_active=True
    ).first()


def require_user(info: Info) -> User:
    user = get_user(info)
    if user is None:
        raise PermissionDenied("UNAUTHENTICATED")
    return user


def jwt_error_handler(error, context):
    # convert any JWT problem into the code the Apollo link watches for
    raise PermissionDenied("UNAUTHENTICATED")


def to_graphql_error(error: MessagingError) -> GraphQLError:
    return GraphQLError(error.message, extensions={"code": error.code, "status": error.status_code})
