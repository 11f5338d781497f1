"""
Chat app: the realtime messaging core.

This app handles:
- Conversation directory (private and group conversations, membership)
- Message pipeline (validate, authorize, persist, fan out)
- Threads and reactions
- Presence (who is online)
- Client reconciliation (merging broadcast events into local state)

Layers:
    models.py          Persistence (Django ORM)
    broadcast.py       Broadcast bus over the Channels layer
    services.py        Business rules, one service class per subsystem
    consumers.py       WebSocket edge (subscribe, heartbeat, send)
    views.py           REST edge
    reconciliation.py  Client-side state merging
    tasks.py           Periodic presence sweep

Usage:
    from chat.services import ConversationService, MessageService

    result = ConversationService.get_or_create_private(user, other_user)
    conversation = result.data

    result = MessageService.send_message(conversation.id, user, "Hello!")
    if not result:
        print(result.error_code)
"""
