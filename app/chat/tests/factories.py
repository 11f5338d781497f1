"""
Factory Boy factories for chat models.

Provides realistic test data generation for:
- Conversation: Group conversations (with members) and private conversations
- Participant: User membership in conversations
- Message: Top-level messages and thread replies
- Reaction: Emoji reactions

Usage:
    from chat.tests.factories import (
        GroupConversationFactory,
        PrivateConversationFactory,
        MessageFactory,
        ThreadReplyFactory,
        ReactionFactory,
    )

    # Group with two specific members
    conversation = GroupConversationFactory(members=[alice, bob])

    # Private conversation between two users
    conversation = PrivateConversationFactory(user1=alice, user2=bob)

    # Message and a reply to it
    message = MessageFactory(conversation=conversation, sender=alice)
    reply = ThreadReplyFactory(parent=message, sender=bob)
"""

import factory

from authentication.tests.factories import UserFactory
from chat.models import (
    Conversation,
    DirectConversationPair,
    Message,
    Participant,
    Reaction,
)


class ConversationFactory(factory.django.DjangoModelFactory):
    """
    Base factory for Conversation model (a group without members).

    Use GroupConversationFactory or PrivateConversationFactory to get
    participants as well.
    """

    class Meta:
        model = Conversation
        skip_postgeneration_save = True

    name = factory.Sequence(lambda n: f"Group Chat {n}")
    is_group = True


class GroupConversationFactory(ConversationFactory):
    """
    Group conversation with members.

    Examples:
        # Two generated members
        conversation = GroupConversationFactory()

        # Specific members
        conversation = GroupConversationFactory(members=[alice, bob, carol])
    """

    @factory.post_generation
    def members(self, create, extracted, **kwargs):
        if not create:
            return
        users = extracted if extracted is not None else [UserFactory(), UserFactory()]
        for user in users:
            ParticipantFactory(conversation=self, user=user)


class PrivateConversationFactory(factory.django.DjangoModelFactory):
    """
    Private conversation between two users, with its canonical pair row.

    Examples:
        conversation = PrivateConversationFactory(user1=alice, user2=bob)
    """

    class Meta:
        model = Conversation

    name = ""
    is_group = False

    @classmethod
    def _create(cls, model_class, *args, **kwargs):
        user1 = kwargs.pop("user1", None) or UserFactory()
        user2 = kwargs.pop("user2", None) or UserFactory()
        lower_id, higher_id = DirectConversationPair.canonical(user1.pk, user2.pk)

        conversation = super()._create(model_class, *args, **kwargs)
        DirectConversationPair.objects.create(
            conversation=conversation,
            user_lower_id=lower_id,
            user_higher_id=higher_id,
        )
        ParticipantFactory(conversation=conversation, user=user1)
        ParticipantFactory(conversation=conversation, user=user2)
        return conversation


class ParticipantFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Participant

    conversation = factory.SubFactory(ConversationFactory)
    user = factory.SubFactory(UserFactory)
    has_unread_messages = False


class MessageFactory(factory.django.DjangoModelFactory):
    """
    Top-level message.

    Examples:
        message = MessageFactory(conversation=conv, sender=user)
        message = MessageFactory(body=None, image="uploads/cat.png")
    """

    class Meta:
        model = Message

    conversation = factory.SubFactory(ConversationFactory)
    sender = factory.SubFactory(UserFactory)
    body = factory.Faker("sentence")
    image = ""
    parent = None
    is_thread_reply = False


class ThreadReplyFactory(MessageFactory):
    """Reply in the thread of ``parent`` (same conversation)."""

    parent = factory.SubFactory(MessageFactory)
    conversation = factory.SelfAttribute("parent.conversation")
    is_thread_reply = True


class ReactionFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Reaction

    message = factory.SubFactory(MessageFactory)
    user = factory.SubFactory(UserFactory)
    emoji = "👍"
