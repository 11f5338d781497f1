"""
Tests for chat services.

Covers the directory, the message pipeline, threads and reactions. Every
write service is checked for what it persists and what it publishes;
publishes are observed on the in-memory bus after the test transaction's
on_commit callbacks run.
"""

import pytest
from django.db import transaction

from core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

from authentication.tests.factories import UserFactory
from chat.constants import (
    MESSAGE_CONFIG,
    REACTION_CONFIG,
    ErrorCode,
    Event,
    MemberAction,
    Topic,
)
from chat.models import Conversation, Message, Participant, Reaction
from chat.serializers import ConversationSerializer, MessageSerializer
from chat.services import (
    ConversationService,
    MessageService,
    ReactionService,
    ThreadService,
)
from chat.tests.factories import (
    MessageFactory,
    PrivateConversationFactory,
    ReactionFactory,
    ThreadReplyFactory,
)


# =============================================================================
# Conversation Directory
# =============================================================================


@pytest.mark.django_db
class TestGetOrCreatePrivate:
    def test_creates_conversation_with_exactly_two_participants(self, alice, bob):
        result = ConversationService.get_or_create_private(alice, bob)

        assert result.success
        conversation = result.data
        assert conversation.is_group is False
        assert set(conversation.participants.values_list("user_id", flat=True)) == {
            alice.id,
            bob.id,
        }

    def test_is_idempotent_from_both_sides(self, alice, bob):
        """
        Calling twice, or from the other user, returns the same conversation.

        Why it matters: two users clicking each other's name must end up in
        one conversation, not two.
        """
        first = ConversationService.get_or_create_private(alice, bob).data
        again = ConversationService.get_or_create_private(alice, bob).data
        reverse = ConversationService.get_or_create_private(bob, alice.id).data

        assert first.id == again.id == reverse.id
        assert Conversation.objects.filter(is_group=False).count() == 1

    def test_returns_existing_pair(self, alice, bob, private):
        result = ConversationService.get_or_create_private(bob, alice)
        assert result.data.id == private.id

    def test_same_user_is_rejected(self, alice):
        result = ConversationService.get_or_create_private(alice, alice)

        assert not result.success
        assert result.error_code == ErrorCode.SAME_USER
        assert result.is_error(ValidationError)
        assert result.http_status == 400

    def test_unknown_target(self, alice):
        result = ConversationService.get_or_create_private(alice, 999999)

        assert result.error_code == ErrorCode.USER_NOT_FOUND
        assert result.http_status == 404

    def test_concurrent_create_reuses_winner(self, alice, bob, monkeypatch):
        """
        Losing the create race returns the conversation the other request made.

        Why it matters: both users can open the conversation at the same
        moment. The unique pair constraint rejects the second insert and the
        loser must hand back the winner's conversation instead of an error.
        """
        find_private = ConversationService._find_private
        winner = {}

        def pair_appears_after_lookup(cls, lower_id, higher_id):
            if not winner:
                # The other request commits between our lookup and our insert
                winner["conversation"] = PrivateConversationFactory(user1=bob, user2=alice)
                return None
            return find_private(lower_id, higher_id)

        monkeypatch.setattr(
            ConversationService, "_find_private", classmethod(pair_appears_after_lookup)
        )

        result = ConversationService.get_or_create_private(alice, bob)

        assert result.success
        assert result.data.id == winner["conversation"].id
        assert Conversation.objects.filter(is_group=False).count() == 1
        assert Participant.objects.filter(conversation=result.data).count() == 2


@pytest.mark.django_db
class TestCreateGroup:
    def test_creator_always_included_and_members_deduplicated(self, alice, bob, carol):
        result = ConversationService.create_group(
            alice, "Launch", [bob.id, bob.id, carol.id, alice.id]
        )

        assert result.success
        conversation = result.data
        assert conversation.is_group
        assert conversation.name == "Launch"
        user_ids = list(conversation.participants.values_list("user_id", flat=True))
        assert sorted(user_ids) == sorted([alice.id, bob.id, carol.id])

    def test_blank_name_is_rejected(self, alice, bob):
        result = ConversationService.create_group(alice, "   ", [bob.id])

        assert result.error_code == ErrorCode.NAME_REQUIRED
        assert Conversation.objects.count() == 0

    def test_only_creator_is_rejected(self, alice):
        result = ConversationService.create_group(alice, "Solo", [alice.id])
        assert result.error_code == ErrorCode.MEMBERS_REQUIRED

    def test_unknown_member(self, alice, bob):
        result = ConversationService.create_group(alice, "Team", [bob.id, 424242])

        assert result.error_code == ErrorCode.USER_NOT_FOUND
        assert result.is_error(NotFoundError)
        assert Conversation.objects.count() == 0

    def test_publishes_new_group(
        self, alice, bob, broadcast_bus, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            result = ConversationService.create_group(alice, "Launch", [bob.id])

        events = broadcast_bus.events(Topic.GROUP_UPDATES, Event.NEW_GROUP)
        assert len(events) == 1
        payload = events[0].payload["conversation"]
        assert payload["id"] == str(result.data.id)
        assert payload["name"] == "Launch"
        assert {p["user"]["id"] for p in payload["participants"]} == {alice.id, bob.id}


@pytest.mark.django_db
class TestListConversations:
    def test_ordered_by_latest_activity(self, alice, bob, carol, group, private):
        MessageService.send_message(group.id, bob, "newest")

        conversations = ConversationService.list_conversations(alice).data

        assert [c.id for c in conversations] == [group.id, private.id]

    def test_excludes_conversations_without_viewer(self, alice, mallory, group):
        assert ConversationService.list_conversations(mallory).data == []

    def test_latest_message_ignores_thread_replies(self, alice, bob, group):
        """
        The directory preview shows the newest top-level message.

        Why it matters: thread replies live in the thread panel; surfacing
        one in the conversation list would show text the main view never
        displays.
        """
        parent = MessageService.send_message(group.id, alice, "top level").data
        ThreadService.post_reply(parent.id, "reply text", group.id, bob)

        conversation = ConversationService.list_conversations(alice).data[0]
        data = ConversationSerializer(conversation, context={"viewer": alice}).data

        assert data["latest_message"]["body"] == "top level"

    def test_private_display_name_is_other_participant(self, alice, bob, private):
        conversation = ConversationService.list_conversations(alice).data[0]
        data = ConversationSerializer(conversation, context={"viewer": alice}).data

        assert data["display_name"] == "Bob"
        assert data["is_group"] is False

    def test_unread_flag_is_per_viewer(self, alice, bob, group):
        MessageService.send_message(group.id, alice, "ping")

        for_alice = ConversationService.list_conversations(alice).data[0]
        for_bob = ConversationService.list_conversations(bob).data[0]

        assert for_alice.has_unread is False
        assert for_bob.has_unread is True


@pytest.mark.django_db
class TestMembers:
    def test_add_member_publishes_member_update(
        self, alice, group, mallory, broadcast_bus, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            result = ConversationService.add_member(group.id, alice, mallory.id)

        assert result.success
        assert Participant.objects.filter(conversation=group, user=mallory).exists()
        event = broadcast_bus.events(Topic.GROUP_UPDATES, Event.MEMBER_UPDATE)[0]
        assert event.payload["action"] == MemberAction.ADDED
        assert event.payload["user_id"] == mallory.id
        assert event.payload["conversation_id"] == str(group.id)

    def test_add_existing_member_conflicts(self, alice, bob, group):
        result = ConversationService.add_member(group.id, alice, bob.id)

        assert result.error_code == ErrorCode.ALREADY_MEMBER
        assert result.is_error(ConflictError)

    def test_non_member_actor_is_forbidden(self, mallory, carol, group):
        result = ConversationService.add_member(group.id, mallory, carol.id)

        assert result.error_code == ErrorCode.NOT_PARTICIPANT
        assert result.http_status == 403

    def test_remove_member_from_private_is_forbidden(self, alice, bob, private):
        """
        Private conversations never change membership.

        Why it matters: a private conversation is defined by its two users;
        removing one would leave a conversation the pair lookup can still
        return.
        """
        result = ConversationService.remove_member(private.id, bob, alice.id)

        assert result.error_code == ErrorCode.NOT_A_GROUP
        assert result.is_error(PermissionDeniedError)
        assert private.participants.count() == 2

    def test_remove_member(
        self, alice, carol, group, broadcast_bus, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            result = ConversationService.remove_member(group.id, alice, carol.id)

        assert result.success
        assert not Participant.objects.filter(conversation=group, user=carol).exists()
        event = broadcast_bus.events(Topic.GROUP_UPDATES, Event.MEMBER_UPDATE)[0]
        assert event.payload["action"] == MemberAction.REMOVED
        assert event.payload["user_id"] == carol.id

    def test_member_can_leave(
        self, bob, group, broadcast_bus, django_capture_on_commit_callbacks
    ):
        """
        A member removing themselves leaves the group.

        Why it matters: the leaver is no longer a participant when the
        member_update payload is built, and the remaining members still
        need the event to drop them from their member list.
        """
        with django_capture_on_commit_callbacks(execute=True):
            result = ConversationService.remove_member(group.id, bob, bob.id)

        assert result.success
        assert not Participant.objects.filter(conversation=group, user=bob).exists()
        event = broadcast_bus.events(Topic.GROUP_UPDATES, Event.MEMBER_UPDATE)[0]
        assert event.payload["action"] == MemberAction.REMOVED
        assert event.payload["user_id"] == bob.id
        assert bob.id not in {
            p["user"]["id"] for p in event.payload["conversation"]["participants"]
        }

    def test_remove_non_member(self, alice, mallory, group):
        result = ConversationService.remove_member(group.id, alice, mallory.id)
        assert result.error_code == ErrorCode.PARTICIPANT_NOT_FOUND

    def test_unknown_conversation(self, alice, bob):
        import uuid

        result = ConversationService.add_member(uuid.uuid4(), alice, bob.id)
        assert result.error_code == ErrorCode.CONVERSATION_NOT_FOUND


# =============================================================================
# Message Pipeline
# =============================================================================


@pytest.mark.django_db
class TestSendMessage:
    def test_marks_other_participants_unread(self, alice, bob, carol, group):
        """
        After a send every other participant is unread; the sender is not.
        """
        Participant.objects.filter(conversation=group).update(has_unread_messages=False)

        result = MessageService.send_message(group.id, alice, "Hello")

        assert result.success
        flags = dict(
            Participant.objects.filter(conversation=group).values_list(
                "user_id", "has_unread_messages"
            )
        )
        assert flags == {alice.id: False, bob.id: True, carol.id: True}

    def test_touches_conversation_updated_at(self, alice, group):
        before = Conversation.objects.get(pk=group.pk).updated_at

        MessageService.send_message(group.id, alice, "Hello")

        assert Conversation.objects.get(pk=group.pk).updated_at > before

    def test_strips_body_and_stores_top_level(self, alice, group):
        message = MessageService.send_message(group.id, alice, "  hi  ").data

        assert message.body == "hi"
        assert message.is_thread_reply is False
        assert message.parent_id is None

    def test_image_reference(self, alice, group):
        message = MessageService.send_message(
            group.id, alice, "look", image="uploads/cat.png"
        ).data
        assert message.image == "uploads/cat.png"

    @pytest.mark.parametrize("body", ["", "   ", None])
    def test_empty_body(self, alice, group, body):
        result = MessageService.send_message(group.id, alice, body)

        assert result.error_code == ErrorCode.EMPTY_CONTENT
        assert result.http_status == 400
        assert Message.objects.count() == 0

    def test_body_too_long(self, alice, group):
        body = "x" * (MESSAGE_CONFIG.MAX_BODY_LENGTH + 1)
        result = MessageService.send_message(group.id, alice, body)
        assert result.error_code == ErrorCode.CONTENT_TOO_LONG

    def test_missing_conversation_id(self, alice):
        result = MessageService.send_message(None, alice, "hello")
        assert result.error_code == ErrorCode.CONVERSATION_REQUIRED

    def test_non_participant_is_forbidden(self, mallory, group):
        result = MessageService.send_message(group.id, mallory, "let me in")

        assert result.error_code == ErrorCode.NOT_PARTICIPANT
        assert result.is_error(PermissionDeniedError)
        assert Message.objects.count() == 0

    def test_publishes_new_message_on_conversation_topic(
        self, alice, group, broadcast_bus, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            message = MessageService.send_message(group.id, alice, "Hello").data

        events = broadcast_bus.events(Topic.CHAT_MESSAGES, Event.NEW_MESSAGE)
        assert len(events) == 1
        assert events[0].scope == str(group.id)
        assert events[0].payload["conversation_id"] == str(group.id)
        assert events[0].payload["message"]["id"] == str(message.id)

    def test_broadcast_matches_fetched_message(
        self, alice, bob, group, broadcast_bus, django_capture_on_commit_callbacks
    ):
        """
        The broadcast carries the same body, sender and timestamp a
        re-fetch returns.

        Why it matters: clients merge broadcasts into snapshots by id; any
        drift between the two shapes shows up as flicker on reload.
        """
        with django_capture_on_commit_callbacks(execute=True):
            MessageService.send_message(group.id, alice, "Hello")

        broadcast = broadcast_bus.events(Topic.CHAT_MESSAGES, Event.NEW_MESSAGE)[0]
        fetched = MessageSerializer(MessageService.get_messages(group.id, bob).data[0]).data

        assert broadcast.payload["message"]["body"] == fetched["body"]
        assert broadcast.payload["message"]["sender"] == dict(fetched["sender"])
        assert broadcast.payload["message"]["created_at"] == fetched["created_at"]

    def test_no_broadcast_when_transaction_rolls_back(
        self, alice, group, broadcast_bus, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            with pytest.raises(RuntimeError):
                with transaction.atomic():
                    MessageService.send_message(group.id, alice, "never happened")
                    raise RuntimeError("abort")

        assert broadcast_bus.published == []
        assert Message.objects.count() == 0

    def test_publish_failure_does_not_undo_write(
        self, alice, group, monkeypatch, django_capture_on_commit_callbacks
    ):
        """
        A broken channel layer is logged and swallowed after commit.
        """
        from chat import broadcast

        def unavailable(alias):
            raise ConnectionError("redis down")

        monkeypatch.setattr(broadcast, "get_channel_layer", unavailable)
        previous = broadcast.set_broadcast_bus(broadcast.ChannelLayerBus())
        try:
            with django_capture_on_commit_callbacks(execute=True):
                result = MessageService.send_message(group.id, alice, "durable")
        finally:
            broadcast.set_broadcast_bus(previous)

        assert result.success
        assert Message.objects.filter(body="durable").exists()


@pytest.mark.django_db
class TestGetMessages:
    def test_excludes_thread_replies(self, alice, bob, group, message):
        ThreadReplyFactory(parent=message, sender=bob)

        messages = MessageService.get_messages(group.id, alice).data

        assert [m.id for m in messages] == [message.id]

    def test_oldest_first_with_reply_counts(self, alice, bob, group):
        first = MessageService.send_message(group.id, alice, "one").data
        second = MessageService.send_message(group.id, bob, "two").data
        ThreadService.post_reply(first.id, "r1", group.id, bob)
        ThreadService.post_reply(first.id, "r2", group.id, alice)

        messages = MessageService.get_messages(group.id, alice).data

        assert [m.id for m in messages] == [first.id, second.id]
        assert messages[0].reply_count == 2
        assert messages[1].reply_count == 0

    def test_includes_reactions(self, alice, bob, group, message):
        ReactionFactory(message=message, user=bob, emoji="🎉")

        messages = MessageService.get_messages(group.id, alice).data
        data = MessageSerializer(messages[0]).data

        assert [r["emoji"] for r in data["reactions"]] == ["🎉"]
        assert data["reactions"][0]["user"]["name"] == "Bob"

    def test_marks_seen_and_clears_unread(self, alice, bob, group, message):
        Participant.objects.filter(conversation=group, user=bob).update(
            has_unread_messages=True
        )

        MessageService.get_messages(group.id, bob)
        MessageService.get_messages(group.id, bob)

        assert list(message.seen_by.all()) == [bob]
        assert not Participant.objects.get(conversation=group, user=bob).has_unread_messages

    def test_non_participant_is_forbidden(self, mallory, group):
        result = MessageService.get_messages(group.id, mallory)
        assert result.error_code == ErrorCode.NOT_PARTICIPANT


@pytest.mark.django_db
class TestMarkAsRead:
    def test_clears_flag(self, alice, bob, group):
        MessageService.send_message(group.id, alice, "ping")

        result = MessageService.mark_as_read(group.id, bob)

        assert result.success
        assert not Participant.objects.get(conversation=group, user=bob).has_unread_messages

    def test_non_participant(self, mallory, group):
        assert MessageService.mark_as_read(group.id, mallory).error_code == ErrorCode.NOT_PARTICIPANT


# =============================================================================
# Threads
# =============================================================================


@pytest.mark.django_db
class TestPostReply:
    def test_reply_count_equals_reply_rows(self, alice, bob, group, message):
        for body in ("a", "b", "c"):
            ThreadService.post_reply(message.id, body, group.id, bob)

        assert ThreadService.get_reply_count(message.id) == 3
        assert Message.objects.filter(parent=message, is_thread_reply=True).count() == 3

    def test_publishes_thread_message_and_update(
        self, alice, bob, group, message, broadcast_bus, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            reply = ThreadService.post_reply(message.id, "on it", group.id, bob).data

        thread_events = broadcast_bus.events(Topic.thread(message.id), Event.THREAD_MESSAGE)
        assert len(thread_events) == 1
        assert thread_events[0].payload["message"]["id"] == str(reply.id)
        assert thread_events[0].payload["message"]["is_thread_reply"] is True

        update = broadcast_bus.events(Topic.THREAD_UPDATES, Event.THREAD_UPDATE)[0]
        assert update.scope == str(group.id)
        assert update.payload == {
            "message_id": str(message.id),
            "reply_count": 1,
            "conversation_id": str(group.id),
        }

    def test_reply_to_reply_attaches_to_root(self, alice, bob, group, message):
        first = ThreadService.post_reply(message.id, "first", group.id, bob).data

        nested = ThreadService.post_reply(first.id, "nested", group.id, alice).data

        assert nested.parent_id == message.id
        assert ThreadService.get_reply_count(message.id) == 2

    def test_does_not_touch_unread_or_main_list(self, alice, bob, group, message):
        Participant.objects.filter(conversation=group).update(has_unread_messages=False)

        ThreadService.post_reply(message.id, "quiet", group.id, bob)

        assert not Participant.objects.filter(has_unread_messages=True).exists()
        assert [m.id for m in MessageService.get_messages(group.id, alice).data] == [message.id]

    def test_conversation_mismatch(self, alice, bob, message, private):
        result = ThreadService.post_reply(message.id, "wrong room", private.id, alice)
        assert result.error_code == ErrorCode.CONVERSATION_MISMATCH

    def test_unknown_parent(self, alice, group):
        import uuid

        result = ThreadService.post_reply(uuid.uuid4(), "hello?", group.id, alice)
        assert result.error_code == ErrorCode.MESSAGE_NOT_FOUND
        assert result.http_status == 404

    def test_empty_body(self, bob, group, message):
        result = ThreadService.post_reply(message.id, " ", group.id, bob)
        assert result.error_code == ErrorCode.EMPTY_CONTENT

    def test_non_participant(self, mallory, group, message):
        result = ThreadService.post_reply(message.id, "hi", group.id, mallory)
        assert result.error_code == ErrorCode.NOT_PARTICIPANT


@pytest.mark.django_db
class TestGetThread:
    def test_returns_parent_and_ordered_replies(self, alice, bob, group, message):
        r1 = ThreadService.post_reply(message.id, "one", group.id, bob).data
        r2 = ThreadService.post_reply(message.id, "two", group.id, alice).data

        thread = ThreadService.get_thread(message.id, alice).data

        assert thread.parent.id == message.id
        assert [r.id for r in thread.replies] == [r1.id, r2.id]
        assert thread.reply_count == 2

    def test_non_participant(self, mallory, message):
        assert ThreadService.get_thread(message.id, mallory).error_code == ErrorCode.NOT_PARTICIPANT


# =============================================================================
# Reactions
# =============================================================================


@pytest.mark.django_db
class TestReactions:
    def test_add_reaction_publishes(
        self, bob, group, message, broadcast_bus, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            reaction = ReactionService.add_reaction(message.id, bob, "👍").data

        event = broadcast_bus.events(Topic.MESSAGE_REACTIONS, Event.NEW_REACTION)[0]
        assert event.scope == str(group.id)
        assert event.payload["message_id"] == str(message.id)
        assert event.payload["reaction"]["id"] == str(reaction.id)
        assert event.payload["reaction"]["user_id"] == bob.id

    def test_duplicate_is_conflict(self, bob, message):
        ReactionService.add_reaction(message.id, bob, "👍")

        result = ReactionService.add_reaction(message.id, bob, "👍")

        assert result.error_code == ErrorCode.DUPLICATE_REACTION
        assert result.is_error(ConflictError)
        assert result.http_status == 409

    def test_same_user_different_emoji(self, bob, message):
        ReactionService.add_reaction(message.id, bob, "👍")
        assert ReactionService.add_reaction(message.id, bob, "❤️").success

    def test_remove_then_re_add(self, bob, message):
        ReactionService.add_reaction(message.id, bob, "👍")
        assert ReactionService.remove_reaction(message.id, bob, "👍").success
        assert ReactionService.add_reaction(message.id, bob, "👍").success

    def test_remove_leaves_other_reactions(self, alice, bob, carol, message):
        """
        Removing your 👍 leaves everyone else's reactions untouched.
        """
        ReactionFactory(message=message, user=carol, emoji="👍")
        ReactionFactory(message=message, user=bob, emoji="🎉")
        ReactionService.add_reaction(message.id, alice, "👍")

        ReactionService.remove_reaction(message.id, alice, "👍")

        remaining = set(Reaction.objects.filter(message=message).values_list("user_id", "emoji"))
        assert remaining == {(carol.id, "👍"), (bob.id, "🎉")}

    def test_remove_publishes(
        self, bob, group, message, broadcast_bus, django_capture_on_commit_callbacks
    ):
        ReactionFactory(message=message, user=bob, emoji="👍")

        with django_capture_on_commit_callbacks(execute=True):
            ReactionService.remove_reaction(message.id, bob, "👍")

        event = broadcast_bus.events(Topic.MESSAGE_REACTIONS, Event.REMOVE_REACTION)[0]
        assert event.payload == {
            "message_id": str(message.id),
            "conversation_id": str(group.id),
            "user_id": bob.id,
            "emoji": "👍",
        }

    def test_remove_missing(self, bob, message):
        result = ReactionService.remove_reaction(message.id, bob, "👍")
        assert result.error_code == ErrorCode.REACTION_NOT_FOUND
        assert result.http_status == 404

    @pytest.mark.parametrize("emoji", ["", "   ", "x" * (REACTION_CONFIG.MAX_EMOJI_LENGTH + 1)])
    def test_invalid_emoji(self, bob, message, emoji):
        result = ReactionService.add_reaction(message.id, bob, emoji)
        assert result.error_code == ErrorCode.INVALID_EMOJI

    def test_compound_emoji(self, bob, message):
        kiss = "\U0001f9d1\U0001f3fb\u200d\u2764\ufe0f\u200d\U0001f48b\u200d\U0001f9d1\U0001f3fc"
        assert len(kiss) == 10

        result = ReactionService.add_reaction(message.id, bob, kiss)

        assert result.success
        assert Reaction.objects.get(message=message, user=bob).emoji == kiss

    def test_non_participant(self, mallory, message):
        result = ReactionService.add_reaction(message.id, mallory, "👍")
        assert result.error_code == ErrorCode.NOT_PARTICIPANT

    def test_toggle_adds_then_removes(self, bob, message):
        added = ReactionService.toggle_reaction(message.id, bob, "🔥").data
        removed = ReactionService.toggle_reaction(message.id, bob, "🔥").data

        assert added["action"] == "added"
        assert added["reaction"].emoji == "🔥"
        assert removed == {"action": "removed", "reaction": None}
        assert not Reaction.objects.exists()

    def test_get_reactions_oldest_first(self, alice, bob, carol, message):
        first = ReactionFactory(message=message, user=carol, emoji="👍")
        second = ReactionFactory(message=message, user=bob, emoji="😂")

        reactions = ReactionService.get_reactions(message.id, alice).data

        assert [r.id for r in reactions] == [first.id, second.id]

    def test_group_by_emoji(self, alice, bob, carol, message):
        ReactionFactory(message=message, user=bob, emoji="👍")
        ReactionFactory(message=message, user=carol, emoji="🎉")
        ReactionFactory(message=message, user=alice, emoji="👍")

        groups = ReactionService.group_by_emoji(message.reactions.all(), viewer_id=alice.id)

        assert [g["emoji"] for g in groups] == ["👍", "🎉"]
        assert groups[0]["count"] == 2
        assert groups[0]["reacted_by_me"] is True
        assert [u["name"] for u in groups[0]["users"]] == ["Bob", "Alice"]
        assert groups[1]["reacted_by_me"] is False

    def test_reaction_on_other_users_message_in_private(self, alice, bob, private):
        message = MessageFactory(conversation=private, sender=alice)
        assert ReactionService.add_reaction(message.id, bob, "👍").success

    def test_factory_user_outside_conversation(self, message):
        outsider = UserFactory()
        assert not ReactionService.get_reactions(message.id, outsider).success
