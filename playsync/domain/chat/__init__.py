"""Chat domain exports."""

from .models import ChatEvent, ConversationKey, Message
from .sockets import ConversationBinding
from .stream import MessageStream

__all__ = [
	"ChatEvent",
	"ConversationBinding",
	"ConversationKey",
	"Message",
	"MessageStream",
]
