import pytest
from django.db import DatabaseError, OperationalError

from apps.chat.exceptions import (
    AuthorizationError, CannotMessageSelf, ConversationNotFound, EmptyMessage,
    InsufficientParticipants, InvalidParticipant, InvalidTarget, MessageTooLong,
    NotAParticipant, NotAuthorized, PersistenceError, UserNotFound, ValidationError,
)
from apps.chat.managers import ConversationQuerySet, MessageQuerySet
from apps.chat.models import Conversation, Message
from apps.chat.services import MessagingService
from apps.chat.targets import ByConversation, ByGroup, ByRecipient

pytestmark = pytest.mark.django_db


class TestDirectMessages:

    def test_first_message_creates_conversation(self, service, alice, bob):
        message, conversation = service.send_message(alice.id, "hi", ByRecipient(bob.id))

        assert conversation.is_group is False
        assert sorted(conversation.participant_ids()) == sorted([alice.id, bob.id])
        assert message.text == "hi"
        assert message.sender_id == alice.id
        assert conversation.last_message_id == message.id

    def test_reply_resolves_to_same_conversation(self, service, alice, bob):
        _, first = service.send_message(alice.id, "hi", ByRecipient(bob.id))
        _, second = service.send_message(bob.id, "yo", ByRecipient(alice.id))

        assert first.id == second.id
        assert [m.text for m in service.list_messages(alice.id, first.id)] == ["hi", "yo"]
        assert Conversation.objects.count() == 1

    def test_repeated_sends_in_either_order_share_conversation(self, service, alice, bob):
        ids = set()
        for sender, recipient in [(alice, bob), (bob, alice), (alice, bob), (bob, alice)]:
            _, conversation = service.send_message(sender.id, "ping", ByRecipient(recipient.id))
            ids.add(conversation.id)

        assert len(ids) == 1

    def test_concurrent_first_sends_produce_one_conversation(self, service, alice, bob, monkeypatch):
        # bob's send lands while alice's lookup still saw nothing
        _, winner = service.send_message(bob.id, "first!", ByRecipient(alice.id))
        real_find = ConversationQuerySet.find_direct
        state = {"stale": True}

        def find(self, user_a, user_b):
            if state["stale"]:
                state["stale"] = False
                return None
            return real_find(self, user_a, user_b)

        monkeypatch.setattr(ConversationQuerySet, "find_direct", find)

        message, conversation = service.send_message(alice.id, "no, me!", ByRecipient(bob.id))

        assert conversation.id == winner.id
        assert message.conversation_id == winner.id
        assert Conversation.objects.filter(is_group=False).count() == 1
        assert [m.text for m in service.list_messages(alice.id, winner.id)] == ["first!", "no, me!"]

    def test_unknown_recipient(self, service, alice):
        with pytest.raises(UserNotFound):
            service.send_message(alice.id, "hello?", ByRecipient(31337))
        assert Conversation.objects.count() == 0

    def test_inactive_recipient_is_not_found(self, service, alice, make_user):
        gone = make_user("gone", is_active=False)
        with pytest.raises(UserNotFound):
            service.send_message(alice.id, "hello?", ByRecipient(gone.id))

    def test_cannot_message_self(self, service, alice):
        with pytest.raises(CannotMessageSelf):
            service.send_message(alice.id, "note to self", ByRecipient(alice.id))


class TestGroupMessages:

    def test_group_send_creates_group(self, service, alice, bob, carol):
        message, conversation = service.send_message(
            alice.id, "start", ByGroup([bob.id, carol.id], "trio")
        )

        assert conversation.is_group is True
        assert conversation.group_name == "trio"
        assert set(conversation.participant_ids()) == {alice.id, bob.id, carol.id}
        assert conversation.last_message_id == message.id

    def test_groups_with_identical_members_and_name_stay_distinct(self, service, alice, bob, carol):
        _, first = service.send_message(alice.id, "a", ByGroup([bob.id, carol.id], "trio"))
        _, second = service.send_message(alice.id, "b", ByGroup([carol.id, bob.id], "trio"))

        assert first.id != second.id

    def test_empty_participant_list_is_a_validation_error(self, service, alice):
        with pytest.raises(ValidationError) as exc_info:
            service.send_message(alice.id, "anyone?", ByGroup([], ""))

        assert isinstance(exc_info.value, InsufficientParticipants)
        assert Conversation.objects.count() == 0
        assert Message.objects.count() == 0

    def test_invalid_member_creates_nothing(self, service, alice, bob):
        with pytest.raises(InvalidParticipant):
            service.send_message(alice.id, "hey all", ByGroup([bob.id, 9999], "crew"))
        assert Conversation.objects.count() == 0


class TestExistingConversation:

    def test_send_into_existing(self, service, alice, bob):
        _, conversation = service.send_message(alice.id, "hi", ByRecipient(bob.id))

        message, same = service.send_message(bob.id, "hey", ByConversation(conversation.id))

        assert same.id == conversation.id
        assert same.last_message_id == message.id

    def test_missing_conversation(self, service, alice):
        with pytest.raises(ConversationNotFound):
            service.send_message(alice.id, "hello", ByConversation(123456))

    def test_outsider_cannot_send(self, service, alice, bob, dave):
        _, conversation = service.send_message(alice.id, "hi", ByRecipient(bob.id))

        with pytest.raises(AuthorizationError) as exc_info:
            service.send_message(dave.id, "let me in", ByConversation(conversation.id))

        assert isinstance(exc_info.value, NotAParticipant)
        assert Message.objects.filter(conversation=conversation).count() == 1


class TestValidation:

    @pytest.mark.parametrize("text", ["", "   ", None, 42])
    def test_empty_text(self, service, alice, bob, text):
        with pytest.raises(EmptyMessage):
            service.send_message(alice.id, text, ByRecipient(bob.id))
        assert Conversation.objects.count() == 0

    def test_text_too_long(self, service, alice, bob, settings):
        settings.MESSAGING = {**settings.MESSAGING, "MAX_MESSAGE_LENGTH": 10}
        with pytest.raises(MessageTooLong):
            service.send_message(alice.id, "x" * 11, ByRecipient(bob.id))

    def test_unknown_target_shape(self, service, alice):
        with pytest.raises(InvalidTarget):
            service.send_message(alice.id, "hi", {"recipientId": 2})

    def test_text_is_trimmed(self, service, alice, bob):
        message, _ = service.send_message(alice.id, "  padded  ", ByRecipient(bob.id))

        assert message.text == "padded"


class TestListing:

    def test_messages_in_send_order(self, service, alice, bob, clock):
        _, conversation = service.send_message(alice.id, "1", ByRecipient(bob.id))
        for i, sender in enumerate([bob, alice, bob, alice], start=2):
            service.send_message(sender.id, str(i), ByConversation(conversation.id))

        messages = service.list_messages(bob.id, conversation.id)

        assert [m.text for m in messages] == ["1", "2", "3", "4", "5"]
        stamps = [m.created_at for m in messages]
        assert all(a <= b for a, b in zip(stamps, stamps[1:]))

    def test_outsider_cannot_list_messages(self, service, alice, bob, dave):
        _, conversation = service.send_message(alice.id, "hi", ByRecipient(bob.id))

        with pytest.raises(AuthorizationError) as exc_info:
            service.list_messages(dave.id, conversation.id)

        assert isinstance(exc_info.value, NotAuthorized)

    def test_list_messages_missing_conversation(self, service, alice):
        with pytest.raises(ConversationNotFound):
            service.list_messages(alice.id, 98765)

    def test_conversations_most_recent_first(self, service, alice, bob, carol, clock):
        _, with_bob = service.send_message(alice.id, "hi bob", ByRecipient(bob.id))
        _, with_carol = service.send_message(alice.id, "hi carol", ByRecipient(carol.id))

        listed = [s.conversation.id for s in service.list_conversations(alice.id)]
        assert listed == [with_carol.id, with_bob.id]

        service.send_message(bob.id, "back to you", ByConversation(with_bob.id))

        summaries = service.list_conversations(alice.id)
        assert [s.conversation.id for s in summaries] == [with_bob.id, with_carol.id]
        stamps = [s.conversation.updated_at for s in summaries]
        assert stamps == sorted(stamps, reverse=True)

    def test_conversations_are_enriched(self, service, alice, bob):
        message, conversation = service.send_message(alice.id, "hi", ByRecipient(bob.id))

        [summary] = service.list_conversations(bob.id)

        assert summary.conversation.id == conversation.id
        assert [p.username for p in summary.participants] == ["alice", "bob"]
        assert summary.participants[0].avatar_url is None
        assert summary.conversation.last_message.text == "hi"

    def test_conversations_for_user_without_any(self, service, dave):
        assert service.list_conversations(dave.id) == []


class TestFanOut:

    def test_publishes_after_commit(self, service, broadcaster, alice, bob, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=False) as callbacks:
            message, conversation = service.send_message(alice.id, "hi", ByRecipient(bob.id))

        # nothing goes out before the transaction commits
        assert broadcaster.published == []
        assert len(callbacks) == 1

        callbacks[0]()

        [(topic, payload)] = broadcaster.published
        assert topic == conversation.id
        assert payload["id"] == message.id
        assert payload["text"] == "hi"
        assert payload["conversationId"] == conversation.id
        assert payload["sender"]["username"] == "alice"

    def test_participants_are_notified(self, service, broadcaster, alice, bob, carol, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True):
            _, conversation = service.send_message(alice.id, "yo", ByGroup([bob.id, carol.id], "trio"))

        notified = sorted(user_id for user_id, _ in broadcaster.notified)
        assert notified == sorted([alice.id, bob.id, carol.id])
        notice = broadcaster.notified[0][1]
        assert notice["id"] == conversation.id
        assert notice["groupName"] == "trio"
        assert notice["lastMessage"]["text"] == "yo"

    def test_failed_send_publishes_nothing(self, service, broadcaster, alice, dave, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True) as callbacks:
            with pytest.raises(UserNotFound):
                service.send_message(alice.id, "hello", ByRecipient(55555))

        assert callbacks == []
        assert broadcaster.published == []


@pytest.mark.django_db(transaction=True)
class TestFanOutFailures:

    def test_broken_broadcaster_does_not_fail_the_send(self, alice, bob, caplog):
        class ExplodingBroadcaster:
            def publish_sync(self, conversation_id, payload):
                raise RuntimeError("layer unavailable")

            def notify_user_sync(self, user_id, payload):
                raise RuntimeError("layer unavailable")

        service = MessagingService(broadcaster=ExplodingBroadcaster())

        message, conversation = service.send_message(alice.id, "hi", ByRecipient(bob.id))

        assert Message.objects.filter(pk=message.pk).exists()
        assert Conversation.objects.get(pk=conversation.pk).last_message_id == message.id
        assert "Fan-out of message" in caplog.text

    def test_failed_summary_read_does_not_fail_the_send(self, service, broadcaster, alice, bob, monkeypatch):
        def broken_summarize(self, conversation, request=None):
            raise OperationalError("replica went away")

        monkeypatch.setattr(MessagingService, "summarize", broken_summarize)

        message, _ = service.send_message(alice.id, "hi", ByRecipient(bob.id))

        assert Message.objects.count() == 1
        # the conversation topic was already published before the summary read
        assert [payload["id"] for _, payload in broadcaster.published] == [message.id]
        assert broadcaster.notified == []


class TestPersistenceFailures:

    def test_store_failure_surfaces_as_persistence_error(self, service, alice, bob, monkeypatch):
        def broken_append(self, conversation_id, sender_id, text):
            raise OperationalError("database is gone")

        monkeypatch.setattr(MessageQuerySet, "append", broken_append)

        with pytest.raises(PersistenceError):
            service.send_message(alice.id, "hi", ByRecipient(bob.id))
        # the whole send rolled back, including the new conversation
        assert Conversation.objects.count() == 0

    def test_pointer_update_is_retried(self, service, alice, bob, monkeypatch):
        real_set = ConversationQuerySet.set_last_message
        attempts = []

        def flaky(self, conversation_id, message):
            attempts.append(conversation_id)
            if len(attempts) == 1:
                raise DatabaseError("deadlock detected")
            return real_set(self, conversation_id, message)

        monkeypatch.setattr(ConversationQuerySet, "set_last_message", flaky)

        message, conversation = service.send_message(alice.id, "hi", ByRecipient(bob.id))

        assert len(attempts) == 2
        assert conversation.last_message_id == message.id
        assert Message.objects.count() == 1
