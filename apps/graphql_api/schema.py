from __future__ import annotations
from typing import List, Optional

import strawberry
from strawberry.types import Info

from apps.chat.exceptions import InvalidTarget, MessagingError
from apps.chat.services import MessagingService
from apps.chat.targets import ByConversation, ByGroup, ByRecipient, MessageTarget
from apps.graphql_api.utils import require_user, to_graphql_error
from .types import ConversationType, MessageType, SendMessagePayload


# ---------- Inputs ----------
@strawberry.input
class SendMessageInput:
    text: str
    conversation_id: Optional[strawberry.ID] = None
    recipient_id: Optional[strawberry.ID] = None
    participant_ids: Optional[List[strawberry.ID]] = None
    group_name: Optional[str] = None

    def to_target(self) -> MessageTarget:
        chosen = [
            self.conversation_id is not None,
            self.recipient_id is not None,
            self.participant_ids is not None or self.group_name is not None,
        ]
        if sum(chosen) != 1:
            raise InvalidTarget()
        if self.conversation_id is not None:
            return ByConversation(conversation_id=self.conversation_id)
        if self.recipient_id is not None:
            return ByRecipient(recipient_id=self.recipient_id)
        return ByGroup(participant_ids=self.participant_ids or [], group_name=self.group_name or "")


# ---------- Mutations ----------
@strawberry.type
class Mutation:
    @strawberry.mutation
    def send_message(self, info: Info, data: SendMessageInput) -> SendMessagePayload:
        user = require_user(info)
        service = MessagingService()
        try:
            message, conversation = service.send_message(user.id, data.text, data.to_target())
        except MessagingError as e:
            raise to_graphql_error(e)

        request = info.context.request
        return SendMessagePayload(
            message=MessageType.from_instance(message, request),
            conversation=ConversationType.from_summary(service.summarize(conversation, request), request),
        )


# ---------- Queries ----------
@strawberry.type
class Query:
    @strawberry.field
    def conversations(self, info: Info) -> List[ConversationType]:
        user = require_user(info)
        request = info.context.request
        summaries = MessagingService().list_conversations(user.id, request=request)
        return [ConversationType.from_summary(s, request) for s in summaries]

    @strawberry.field
    def messages(self, info: Info, conversation_id: strawberry.ID) -> List[MessageType]:
        user = require_user(info)
        try:
            messages = MessagingService().list_messages(user.id, conversation_id)
        except MessagingError as e:
            raise to_graphql_error(e)
        request = info.context.request
        return [MessageType.from_instance(m, request) for m in messages]


schema = strawberry.Schema(query=Query, mutation=Mutation)
