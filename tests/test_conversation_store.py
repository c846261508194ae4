import pytest
from django.db import IntegrityError, transaction

from apps.chat.exceptions import (
    InsufficientParticipants, InvalidParticipant, MissingGroupName, TooManyParticipants,
    ValidationError,
)
from apps.chat.managers import ConversationQuerySet, direct_key
from apps.chat.models import Conversation, Message

pytestmark = pytest.mark.django_db


class TestDirectConversations:

    def test_direct_key_is_order_independent(self):
        assert direct_key(7, 3) == direct_key(3, 7) == "3:7"

    def test_find_direct_returns_none_when_absent(self, alice, bob):
        assert Conversation.objects.find_direct(alice.id, bob.id) is None

    def test_create_direct_sets_participants(self, alice, bob):
        conversation = Conversation.objects.create_direct(alice.id, bob.id)

        assert conversation.is_group is False
        assert conversation.group_name is None
        assert conversation.last_message is None
        assert conversation.participant_ids() == [alice.id, bob.id]

    def test_find_direct_matches_either_order(self, alice, bob):
        conversation = Conversation.objects.create_direct(alice.id, bob.id)

        assert Conversation.objects.find_direct(alice.id, bob.id) == conversation
        assert Conversation.objects.find_direct(bob.id, alice.id) == conversation

    def test_create_direct_rejects_unknown_user(self, alice):
        with pytest.raises(InvalidParticipant):
            Conversation.objects.create_direct(alice.id, 999_999)
        assert Conversation.objects.count() == 0

    def test_create_direct_rejects_inactive_user(self, alice, make_user):
        ghost = make_user("ghost", is_active=False)
        with pytest.raises(InvalidParticipant):
            Conversation.objects.create_direct(alice.id, ghost.id)

    def test_create_direct_with_self_is_rejected(self, alice):
        with pytest.raises(InsufficientParticipants):
            Conversation.objects.create_direct(alice.id, alice.id)

    def test_get_or_create_direct_is_idempotent(self, alice, bob):
        first, created = Conversation.objects.get_or_create_direct(alice.id, bob.id)
        second, created_again = Conversation.objects.get_or_create_direct(bob.id, alice.id)

        assert created is True
        assert created_again is False
        assert first.id == second.id
        assert Conversation.objects.count() == 1

    def test_database_rejects_duplicate_pair(self, alice, bob):
        Conversation.objects.create_direct(alice.id, bob.id)
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                Conversation.objects.create(is_group=False, direct_key=direct_key(bob.id, alice.id))

    def test_race_loser_reuses_winner(self, alice, bob, monkeypatch):
        winner = Conversation.objects.create_direct(alice.id, bob.id)

        # the loser's lookup ran before the winner committed
        real_find = ConversationQuerySet.find_direct
        lookups = []

        def stale_then_fresh(self, user_a, user_b):
            lookups.append((user_a, user_b))
            if len(lookups) == 1:
                return None
            return real_find(self, user_a, user_b)

        monkeypatch.setattr(ConversationQuerySet, "find_direct", stale_then_fresh)

        conversation, created = Conversation.objects.get_or_create_direct(bob.id, alice.id)

        assert created is False
        assert conversation.id == winner.id
        assert len(lookups) == 2
        assert Conversation.objects.filter(is_group=False).count() == 1

    def test_race_loss_keeps_outer_transaction_usable(self, alice, bob, monkeypatch):
        Conversation.objects.create_direct(alice.id, bob.id)
        monkeypatch.setattr(ConversationQuerySet, "find_direct", _miss_once(ConversationQuerySet.find_direct))

        with transaction.atomic():
            conversation, _ = Conversation.objects.get_or_create_direct(alice.id, bob.id)
            Message.objects.append(conversation.id, alice.id, "still works")

        assert Message.objects.filter(conversation=conversation).count() == 1


def _miss_once(real_find):
    state = {"missed": False}

    def find(self, user_a, user_b):
        if not state["missed"]:
            state["missed"] = True
            return None
        return real_find(self, user_a, user_b)

    return find


class TestGroupConversations:

    def test_create_group_includes_creator_first(self, alice, bob, carol):
        group = Conversation.objects.create_group(alice.id, [bob.id, carol.id], "trio")

        assert group.is_group is True
        assert group.group_name == "trio"
        assert group.direct_key is None
        assert group.participant_ids() == [alice.id, bob.id, carol.id]

    def test_participants_are_deduplicated(self, alice, bob):
        group = Conversation.objects.create_group(alice.id, [bob.id, alice.id, bob.id], "pair")

        assert group.participant_ids() == [alice.id, bob.id]

    def test_group_name_is_trimmed(self, alice, bob):
        group = Conversation.objects.create_group(alice.id, [bob.id], "  weekend plans  ")

        assert group.group_name == "weekend plans"

    def test_identical_groups_are_never_merged(self, alice, bob, carol):
        first = Conversation.objects.create_group(alice.id, [bob.id, carol.id], "trio")
        second = Conversation.objects.create_group(alice.id, [bob.id, carol.id], "trio")

        assert first.id != second.id
        assert Conversation.objects.filter(is_group=True).count() == 2

    @pytest.mark.parametrize("others", [[], "creator-only"])
    def test_needs_two_distinct_participants(self, alice, others):
        participant_ids = [alice.id] if others == "creator-only" else others
        with pytest.raises(InsufficientParticipants):
            Conversation.objects.create_group(alice.id, participant_ids, "solo")

    def test_unknown_participant_is_rejected(self, alice, bob):
        with pytest.raises(InvalidParticipant):
            Conversation.objects.create_group(alice.id, [bob.id, 424242], "nope")
        assert Conversation.objects.count() == 0

    def test_malformed_participant_id_is_rejected(self, alice, bob):
        with pytest.raises(InvalidParticipant):
            Conversation.objects.create_group(alice.id, [bob.id, "abc"], "nope")

    @pytest.mark.parametrize("name", ["", "   ", None])
    def test_missing_group_name(self, alice, bob, name):
        with pytest.raises(MissingGroupName):
            Conversation.objects.create_group(alice.id, [bob.id], name)

    def test_group_name_too_long(self, alice, bob):
        with pytest.raises(ValidationError):
            Conversation.objects.create_group(alice.id, [bob.id], "x" * 101)

    def test_group_size_limit(self, alice, bob, carol, settings):
        settings.MESSAGING = {**settings.MESSAGING, "MAX_GROUP_SIZE": 2}
        with pytest.raises(TooManyParticipants):
            Conversation.objects.create_group(alice.id, [bob.id, carol.id], "crowd")


class TestListingAndPointer:

    def test_get_by_id(self, alice, bob):
        conversation = Conversation.objects.create_direct(alice.id, bob.id)

        assert Conversation.objects.get_by_id(conversation.id) == conversation
        assert Conversation.objects.get_by_id(str(conversation.id)) == conversation
        assert Conversation.objects.get_by_id(conversation.id + 1000) is None
        assert Conversation.objects.get_by_id("not-an-id") is None

    def test_for_user_orders_by_recency(self, alice, bob, carol, clock):
        older = Conversation.objects.create_direct(alice.id, bob.id)
        newer = Conversation.objects.create_direct(alice.id, carol.id)

        assert list(Conversation.objects.for_user(alice.id)) == [newer, older]

        message = Message.objects.append(older.id, alice.id, "bump")
        Conversation.objects.set_last_message(older.id, message)

        assert list(Conversation.objects.for_user(alice.id)) == [older, newer]
        assert list(Conversation.objects.for_user(carol.id)) == [newer]

    def test_set_last_message_bumps_updated_at(self, alice, bob, clock):
        conversation = Conversation.objects.create_direct(alice.id, bob.id)
        before = conversation.updated_at
        message = Message.objects.append(conversation.id, alice.id, "hello")

        updated = Conversation.objects.set_last_message(conversation.id, message)

        assert updated.last_message_id == message.id
        assert updated.updated_at > before
        assert updated.updated_at >= message.created_at
