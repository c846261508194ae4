from __future__ import annotations
import datetime
from typing import List, Optional

import strawberry

from apps.chat.models import Conversation, Message
from apps.chat.services import ConversationSummary
from apps.users.services import PublicUser, build_public_user


@strawberry.type
class PublicUserType:
    id: strawberry.ID
    username: str
    avatar_url: Optional[str]

    @classmethod
    def from_public_user(cls, user: PublicUser) -> "PublicUserType":
        return cls(id=strawberry.ID(str(user.id)), username=user.username, avatar_url=user.avatar_url)


@strawberry.type
class MessageType:
    id: strawberry.ID
    conversation_id: strawberry.ID
    sender: PublicUserType
    text: str
    created_at: datetime.datetime

    @classmethod
    def from_instance(cls, message: Message, request=None) -> "MessageType":
        return cls(
            id=strawberry.ID(str(message.id)),
            conversation_id=strawberry.ID(str(message.conversation_id)),
            sender=PublicUserType.from_public_user(build_public_user(message.sender, request)),
            text=message.text,
            created_at=message.created_at,
        )


@strawberry.type
class ConversationType:
    id: strawberry.ID
    is_group: bool
    group_name: Optional[str]
    participants: List[PublicUserType]
    last_message: Optional[MessageType]
    created_at: datetime.datetime
    updated_at: datetime.datetime

    @classmethod
    def from_summary(cls, summary: ConversationSummary, request=None) -> "ConversationType":
        conversation: Conversation = summary.conversation
        last_message = conversation.last_message
        return cls(
            id=strawberry.ID(str(conversation.id)),
            is_group=conversation.is_group,
            group_name=conversation.group_name,
            participants=[PublicUserType.from_public_user(p) for p in summary.participants],
            last_message=MessageType.from_instance(last_message, request) if last_message else None,
            created_at=conversation.created_at,
            updated_at=conversation.updated_at,
        )


@strawberry.type
class SendMessagePayload:
    message: MessageType
    conversation: ConversationType
