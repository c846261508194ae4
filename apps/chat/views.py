from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from .broadcaster import get_broadcaster
from .exceptions import MessagingError
from .serializers import ConversationSerializer, MessageSerializer, SendMessageSerializer
from .services import MessagingService


def messaging_error_response(exc: MessagingError) -> Response:
    return Response(
        {"message": exc.message, "code": exc.code},
        status=exc.status_code
    )


class MessagingAPIView(APIView):
    """Base view: authenticated principal + a messaging service per request."""

    def get_service(self) -> MessagingService:
        return MessagingService(broadcaster=get_broadcaster())


class ConversationListView(MessagingAPIView):

    def get(self, request):
        summaries = self.get_service().list_conversations(request.user.id, request=request)
        serializer = ConversationSerializer(summaries, many=True, context={"request": request})
        return Response({"conversations": serializer.data}, status=status.HTTP_200_OK)


class ConversationMessagesView(MessagingAPIView):

    def get(self, request, conversation_id):
        try:
            messages = self.get_service().list_messages(request.user.id, conversation_id)
        except MessagingError as e:
            return messaging_error_response(e)

        serializer = MessageSerializer(messages, many=True, context={"request": request})
        return Response({"messages": serializer.data}, status=status.HTTP_200_OK)


class MessageCreateView(MessagingAPIView):

    def post(self, request):
        body = SendMessageSerializer(data=request.data)
        if not body.is_valid():
            errors = body.errors
            detail = errors.get("non_field_errors", ["Invalid message parameters."])[0]
            return Response(
                {"message": str(detail), "code": "invalid", "errors": errors},
                status=status.HTTP_400_BAD_REQUEST
            )

        try:
            message, conversation = self.get_service().send_message(
                request.user.id,
                body.validated_data["text"],
                body.to_target(),
            )
        except MessagingError as e:
            return messaging_error_response(e)

        return Response({
            "message": MessageSerializer(message, context={"request": request}).data,
            "conversationId": conversation.id,
        }, status=status.HTTP_201_CREATED)
