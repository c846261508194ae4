# apps/chat/managers.py
import logging
from typing import Iterable, List, Optional, Tuple

from django.conf import settings
from django.db import IntegrityError, models, transaction
from django.utils import timezone

from apps.users.services import resolve_users
from .exceptions import (
    ConflictError, ConversationNotFound, EmptyText, InsufficientParticipants,
    InvalidParticipant, MissingGroupName, PersistenceError, TooManyParticipants, ValidationError,
)

logger = logging.getLogger(__name__)

GROUP_NAME_MAX_LENGTH = 100


def coerce_id(value) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def direct_key(user_a: int, user_b: int) -> str:
    """Normalized key of an unordered user pair: "<low>:<high>"."""
    low, high = sorted((int(user_a), int(user_b)))
    return f"{low}:{high}"


def _dedupe(ids: Iterable[int]) -> List[int]:
    seen = set()
    ordered = []
    for pk in ids:
        if pk not in seen:
            seen.add(pk)
            ordered.append(pk)
    return ordered


class ConversationQuerySet(models.QuerySet):

    def _add_participants(self, conversation, user_ids: List[int]) -> None:
        Membership = self.model.participants.through
        Membership.objects.bulk_create(
            [Membership(user_id=pk, conversation=conversation) for pk in user_ids]
        )

    # ---------- lookups ----------
    def get_by_id(self, conversation_id):
        pk = coerce_id(conversation_id)
        if pk is None:
            return None
        return self.filter(pk=pk).first()

    def find_direct(self, user_a, user_b):
        """The unique non-group conversation between two users, or None."""
        a, b = coerce_id(user_a), coerce_id(user_b)
        if a is None or b is None or a == b:
            return None
        return self.filter(is_group=False, direct_key=direct_key(a, b)).first()

    def for_user(self, user_id):
        """Conversations the user takes part in, most recently active first."""
        return (
            self.filter(participants__id=user_id)
            .select_related("last_message", "last_message__sender", "last_message__sender__profile")
            .order_by("-updated_at", "-id")
        )

    # ---------- creation ----------
    def create_direct(self, user_a, user_b):
        a, b = coerce_id(user_a), coerce_id(user_b)
        if a is None or b is None:
            raise InvalidParticipant()
        if a == b:
            raise InsufficientParticipants("A direct conversation needs two different users.")
        if len(resolve_users([a, b])) != 2:
            raise InvalidParticipant()

        now = timezone.now()
        try:
            # savepoint: a unique violation must not poison the caller's transaction
            with transaction.atomic():
                conversation = self.create(
                    is_group=False,
                    direct_key=direct_key(a, b),
                    created_at=now,
                    updated_at=now,
                )
                self._add_participants(conversation, [a, b])
        except IntegrityError as exc:
            raise ConflictError() from exc

        logger.info("Created direct conversation %s between %s and %s", conversation.pk, a, b)
        return conversation

    def get_or_create_direct(self, user_a, user_b) -> Tuple[models.Model, bool]:
        """
        Find-or-create for direct conversations.

        Concurrent first sends between the same pair both miss the lookup;
        the unique ``direct_key`` lets exactly one insert through and the
        loser returns the winner's row instead.
        """
        existing = self.find_direct(user_a, user_b)
        if existing is not None:
            return existing, False
        try:
            return self.create_direct(user_a, user_b), True
        except ConflictError:
            winner = self.find_direct(user_a, user_b)
            if winner is None:
                raise PersistenceError("Could not resolve direct conversation.")
            logger.info(
                "Lost direct conversation race for %s/%s, reusing %s",
                user_a, user_b, winner.pk,
            )
            return winner, False

    def create_group(self, creator, participant_ids, group_name):
        """Always creates a new group; groups are never de-duplicated."""
        creator_id = coerce_id(creator)
        ids = [coerce_id(pk) for pk in participant_ids or []]
        if creator_id is None or any(pk is None for pk in ids):
            raise InvalidParticipant()

        members = _dedupe([creator_id, *ids])
        if len(members) < 2:
            raise InsufficientParticipants()
        max_size = settings.MESSAGING["MAX_GROUP_SIZE"]
        if len(members) > max_size:
            raise TooManyParticipants(
                f"Group conversation cannot have more than {max_size} participants."
            )

        name = (group_name or "").strip()
        if not name:
            raise MissingGroupName()
        if len(name) > GROUP_NAME_MAX_LENGTH:
            raise ValidationError(
                f"Group name cannot be longer than {GROUP_NAME_MAX_LENGTH} characters."
            )

        if len(resolve_users(members)) != len(members):
            raise InvalidParticipant()

        now = timezone.now()
        with transaction.atomic():
            conversation = self.create(
                is_group=True,
                group_name=name,
                created_at=now,
                updated_at=now,
            )
            self._add_participants(conversation, members)

        logger.info(
            "Created group conversation %s (%r) with %d participants",
            conversation.pk, name, len(members),
        )
        return conversation

    # ---------- mutation ----------
    def set_last_message(self, conversation_id, message):
        updated = self.filter(pk=conversation_id).update(
            last_message=message,
            updated_at=max(timezone.now(), message.created_at),
        )
        if not updated:
            raise ConversationNotFound()
        return self.get(pk=conversation_id)


class MessageQuerySet(models.QuerySet):

    def append(self, conversation_id, sender_id, text):
        """
        Persists a message. Participation is NOT checked here.
        created_at never goes backwards within a conversation.
        """
        cleaned = (text or "").strip()
        if not cleaned:
            raise EmptyText()

        now = timezone.now()
        latest = (
            self.filter(conversation_id=conversation_id)
            .order_by("-created_at")
            .values_list("created_at", flat=True)
            .first()
        )
        if latest is not None and latest > now:
            now = latest

        message = self.create(
            conversation_id=conversation_id,
            sender_id=sender_id,
            text=cleaned,
            created_at=now,
        )
        logger.debug("Appended message %s to conversation %s", message.pk, conversation_id)
        return message

    def for_conversation(self, conversation_id):
        """Chronological reading order, oldest first."""
        return (
            self.filter(conversation_id=conversation_id)
            .select_related("sender", "sender__profile")
            .order_by("created_at", "id")
        )


ConversationManager = models.Manager.from_queryset(ConversationQuerySet)
MessageManager = models.Manager.from_queryset(MessageQuerySet)
