# apps/chat/targets.py
from dataclasses import dataclass, field
from typing import Tuple, Union


@dataclass(frozen=True)
class ByConversation:
    """Send into an existing conversation."""
    conversation_id: int


@dataclass(frozen=True)
class ByRecipient:
    """Direct message; the conversation is found or created."""
    recipient_id: int


@dataclass(frozen=True)
class ByGroup:
    """Start a new group conversation. Never reuses an existing group."""
    participant_ids: Tuple[int, ...] = field(default_factory=tuple)
    group_name: str = ""

    def __post_init__(self):
        # accept any iterable but keep the instance hashable
        object.__setattr__(self, "participant_ids", tuple(self.participant_ids))


MessageTarget = Union[ByConversation, ByRecipient, ByGroup]
