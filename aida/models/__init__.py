from aida.models.assistant import Assistant
from aida.models.conversation import Conversation
from aida.models.message import Message

__all__ = [
    "Assistant",
    "Conversation",
    "Message",
]
