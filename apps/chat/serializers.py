from rest_framework import serializers

from apps.users.services import build_public_user
from .exceptions import InvalidTarget
from .models import Message
from .targets import ByConversation, ByGroup, ByRecipient, MessageTarget


class PublicUserSerializer(serializers.Serializer):
    id = serializers.IntegerField(read_only=True)
    username = serializers.CharField(read_only=True)
    avatarUrl = serializers.CharField(source="avatar_url", allow_null=True, read_only=True)


class MessageSerializer(serializers.ModelSerializer):
    conversationId = serializers.IntegerField(source="conversation_id", read_only=True)
    sender = serializers.SerializerMethodField()
    createdAt = serializers.DateTimeField(source="created_at", read_only=True)

    class Meta:
        model = Message
        fields = ["id", "conversationId", "sender", "text", "createdAt"]
        read_only_fields = fields

    def get_sender(self, obj):
        public_user = build_public_user(obj.sender, self.context.get("request"))
        return PublicUserSerializer(public_user).data


class ConversationSerializer(serializers.Serializer):
    """Serializes a ConversationSummary (conversation + participant display info)."""
    id = serializers.IntegerField(source="conversation.id", read_only=True)
    isGroup = serializers.BooleanField(source="conversation.is_group", read_only=True)
    groupName = serializers.CharField(source="conversation.group_name", allow_null=True, read_only=True)
    participants = PublicUserSerializer(many=True, read_only=True)
    lastMessage = serializers.SerializerMethodField()
    createdAt = serializers.DateTimeField(source="conversation.created_at", read_only=True)
    updatedAt = serializers.DateTimeField(source="conversation.updated_at", read_only=True)

    def get_lastMessage(self, obj):
        last_message = obj.conversation.last_message
        if last_message is None:
            return None
        return MessageSerializer(last_message, context=self.context).data


class SendMessageSerializer(serializers.Serializer):
    """
    Body of POST messages: ``text`` plus exactly one target,
    ``conversationId`` | ``recipientId`` | ``participantIds`` + ``groupName``.
    Text emptiness is left to the messaging service.
    """
    text = serializers.CharField(required=False, allow_blank=True, trim_whitespace=False, default="")
    conversationId = serializers.IntegerField(required=False, min_value=1)
    recipientId = serializers.IntegerField(required=False, min_value=1)
    participantIds = serializers.ListField(
        child=serializers.IntegerField(min_value=1),
        required=False,
        allow_empty=True,
    )
    groupName = serializers.CharField(required=False, allow_blank=True)

    def validate(self, attrs):
        chosen = [
            "conversationId" in attrs,
            "recipientId" in attrs,
            "participantIds" in attrs or "groupName" in attrs,
        ]
        if sum(chosen) != 1:
            raise serializers.ValidationError(InvalidTarget.default_message)
        return attrs

    def to_target(self) -> MessageTarget:
        data = self.validated_data
        if "conversationId" in data:
            return ByConversation(conversation_id=data["conversationId"])
        if "recipientId" in data:
            return ByRecipient(recipient_id=data["recipientId"])
        return ByGroup(
            participant_ids=data.get("participantIds", []),
            group_name=data.get("groupName", ""),
        )
