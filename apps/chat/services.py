import logging
from dataclasses import dataclass, field
from functools import partial
from typing import List, Optional, Tuple

from django.conf import settings
from django.db import DatabaseError, transaction
from django.db.models import Prefetch

from apps.users.services import PublicUser, resolve_user, resolve_users
from .broadcaster import Broadcaster, get_broadcaster
from .exceptions import (
    CannotMessageSelf, ConversationNotFound, EmptyMessage, InvalidTarget,
    MessageTooLong, NotAParticipant, NotAuthorized, PersistenceError, UserNotFound,
)
from .managers import coerce_id
from .models import Conversation, ConversationParticipant, Message
from .serializers import ConversationSerializer, MessageSerializer
from .targets import ByConversation, ByGroup, ByRecipient, MessageTarget

logger = logging.getLogger(__name__)


@dataclass
class ConversationSummary:
    """A conversation plus the display info of its participants."""
    conversation: Conversation
    participants: List[PublicUser] = field(default_factory=list)


class MessagingService:
    """
    Orchestrates the conversation and message stores.

    ``send_message`` resolves (or creates) the target conversation, appends
    the message and moves the conversation's last-message pointer inside one
    transaction. The live copy is handed to the broadcaster only after that
    transaction commits.
    """

    def __init__(self, broadcaster: Optional[Broadcaster] = None):
        self.broadcaster = broadcaster if broadcaster is not None else get_broadcaster()

    # ---------- send ----------
    def send_message(self, sender_id, text, target: MessageTarget) -> Tuple[Message, Conversation]:
        cleaned = text.strip() if isinstance(text, str) else ""
        if not cleaned:
            raise EmptyMessage()
        max_length = settings.MESSAGING["MAX_MESSAGE_LENGTH"]
        if len(cleaned) > max_length:
            raise MessageTooLong(f"Message text cannot be longer than {max_length} characters.")
        if not isinstance(target, (ByConversation, ByRecipient, ByGroup)):
            raise InvalidTarget()

        try:
            with transaction.atomic():
                conversation = self._resolve_target(sender_id, target)
                # serializes sends into the same conversation
                conversation = Conversation.objects.select_for_update().get(pk=conversation.pk)
                message = Message.objects.append(conversation.pk, sender_id, cleaned)
                conversation = self._set_last_message(conversation.pk, message)
                transaction.on_commit(partial(self._fan_out, message, conversation))
        except DatabaseError as exc:
            logger.exception("Persistence failure while sending message from user %s", sender_id)
            raise PersistenceError() from exc

        logger.info(
            "User %s sent message %s to conversation %s",
            sender_id, message.pk, conversation.pk,
        )
        return message, conversation

    def _resolve_target(self, sender_id, target: MessageTarget) -> Conversation:
        if isinstance(target, ByConversation):
            conversation = Conversation.objects.get_by_id(target.conversation_id)
            if conversation is None:
                raise ConversationNotFound()
            if not conversation.has_participant(sender_id):
                raise NotAParticipant()
            return conversation

        if isinstance(target, ByRecipient):
            recipient_id = coerce_id(target.recipient_id)
            if recipient_id is not None and recipient_id == coerce_id(sender_id):
                raise CannotMessageSelf()
            if resolve_user(recipient_id) is None:
                raise UserNotFound()
            conversation, _ = Conversation.objects.get_or_create_direct(sender_id, recipient_id)
            return conversation

        return Conversation.objects.create_group(
            sender_id, target.participant_ids, target.group_name
        )

    def _set_last_message(self, conversation_id, message: Message) -> Conversation:
        # the message is already stored; a failed pointer update is re-run, never rolled back
        try:
            with transaction.atomic():
                return Conversation.objects.set_last_message(conversation_id, message)
        except DatabaseError:
            logger.warning(
                "Retrying last-message update of conversation %s (message %s)",
                conversation_id, message.pk,
            )
        with transaction.atomic():
            return Conversation.objects.set_last_message(conversation_id, message)

    def _fan_out(self, message: Message, conversation: Conversation) -> None:
        # runs after commit; the message is stored whatever happens here
        try:
            payload = dict(MessageSerializer(message).data)
            self.broadcaster.publish_sync(conversation.pk, payload)

            summary = self.summarize(conversation)
            notice = dict(ConversationSerializer(summary).data)
            for participant in summary.participants:
                self.broadcaster.notify_user_sync(participant.id, notice)
        except Exception:
            logger.exception(
                "Fan-out of message %s to conversation %s failed", message.pk, conversation.pk
            )

    # ---------- read ----------
    def summarize(self, conversation: Conversation, request=None) -> ConversationSummary:
        ids = conversation.participant_ids()
        people = resolve_users(ids, request=request)
        return ConversationSummary(
            conversation=conversation,
            participants=[people[pk] for pk in ids if pk in people],
        )

    def list_conversations(self, user_id, request=None) -> List[ConversationSummary]:
        conversations = list(
            Conversation.objects.for_user(user_id).prefetch_related(
                Prefetch(
                    "conversation_participants",
                    queryset=ConversationParticipant.objects.order_by("id"),
                )
            )
        )
        member_ids = {
            conversation.pk: [p.user_id for p in conversation.conversation_participants.all()]
            for conversation in conversations
        }
        people = resolve_users(
            {pk for ids in member_ids.values() for pk in ids}, request=request
        )
        return [
            ConversationSummary(
                conversation=conversation,
                participants=[people[pk] for pk in member_ids[conversation.pk] if pk in people],
            )
            for conversation in conversations
        ]

    def get_conversation(self, user_id, conversation_id) -> Conversation:
        conversation = Conversation.objects.get_by_id(conversation_id)
        if conversation is None:
            raise ConversationNotFound()
        if not conversation.has_participant(user_id):
            raise NotAuthorized()
        return conversation

    def list_messages(self, user_id, conversation_id) -> List[Message]:
        conversation = self.get_conversation(user_id, conversation_id)
        return list(Message.objects.for_conversation(conversation.pk))

    def is_participant(self, user_id, conversation_id) -> bool:
        pk = coerce_id(conversation_id)
        if pk is None:
            return False
        return ConversationParticipant.objects.filter(
            conversation_id=pk, user_id=user_id
        ).exists()
