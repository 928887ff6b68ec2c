"""Social domain exports."""

from . import resolver, service, subscriber, sync  # noqa: F401
from .models import (  # noqa: F401
	InvitationAction,
	InvitationStatus,
	PushEvent,
	RelationshipStatus,
	normalize_id,
)
from .schemas import FriendInvitation, MutationResult, RelationshipSnapshot  # noqa: F401
