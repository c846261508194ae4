from rest_framework.authentication import BaseAuthentication
from rest_framework.exceptions import AuthenticationFailed
from graphql_jwt.exceptions import JSONWebTokenError
from graphql_jwt.utils import get_payload
from django.contrib.auth import get_user_model
from django.utils.encoding import smart_str

User = get_user_model()


class GraphQLJWTAuthentication(BaseAuthentication):
    """
    DRF authentication class that validates GraphQL JWT tokens.
    Expects header: Authorization: JWT <token>
    """
    keyword = 'JWT'

    def authenticate(self, request):
        auth = request.META.get('HTTP_AUTHORIZATION', '')

        if not auth:
            return None

        auth = smart_str(auth)
        if not auth.startswith(f'{self.keyword} '):
            return None

        token = auth[len(self.keyword) + 1:]

        try:
            payload = get_payload(token)
        except JSONWebTokenError:
            raise AuthenticationFailed('Invalid or expired token')

        username = payload.get('username')
        if not username:
            raise AuthenticationFailed('Invalid token')

        try:
            user = User.objects.get(**{User.USERNAME_FIELD: username})
        except User.DoesNotExist:
            raise AuthenticationFailed('Invalid or expired token')
        if not user.is_active:
            raise AuthenticationFailed('User inactive')
        return (user, token)

    def authenticate_header(self, request):
        return self.keyword
