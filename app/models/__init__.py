from app.models.channel import Channel, ChannelAlias
from app.models.conversation_status import ConversationStatus

__all__ = [
    "Channel",
    "ChannelAlias",
    "ConversationStatus",
]
