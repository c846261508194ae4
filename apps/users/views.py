from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework import status
from .services import resolve_user


class UserLookupView(APIView):
    """Public profile lookup used by clients to pick message recipients."""

    def get(self, request, user_id):
        public_user = resolve_user(user_id, request=request)
        if public_user is None:
            return Response(
                {"message": "User not found"},
                status=status.HTTP_404_NOT_FOUND
            )
        return Response({"user": public_user.as_dict()}, status=status.HTTP_200_OK)
