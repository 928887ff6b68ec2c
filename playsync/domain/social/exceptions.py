"""Domain-level exceptions for invitations & friendships."""

from __future__ import annotations


class SocialError(Exception):
    """Base class for social feature errors."""

    reason: str = "unknown"
    message: str = "Something went wrong"

    def __init__(self, reason: str | None = None, message: str | None = None) -> None:
        super().__init__(message or self.message)
        if reason:
            self.reason = reason
        if message:
            self.message = message


class InvalidUserId(SocialError):
    reason = "invalid_user"
    message = "No user ID"


class InviteConflict(SocialError):
    reason = "conflict"


class InviteAlreadySent(InviteConflict):
    reason = "already_sent"
    message = "Friend invitation already exists"


class InviteAlreadyFriends(InviteConflict):
    reason = "already_friends"
    message = "Already friends"


class InviteSelfError(InviteConflict):
    reason = "self_invite"
    message = "Cannot send invitation to yourself"


class InviteForbidden(SocialError):
    reason = "forbidden"
    message = "Not allowed to act on this invitation"


class InviteNotFound(SocialError):
    reason = "not_found"
    message = "Invitation not found"


class InviteGone(SocialError):
    reason = "gone"
    message = "Invitation is no longer pending"


class NotFriends(SocialError):
    reason = "not_friends"
    message = "Not friends"
