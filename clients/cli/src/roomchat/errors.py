from __future__ import annotations


class ChatError(Exception):
    """Base class for errors surfaced to the chat user."""


class AccessError(ChatError):
    """The room cannot be opened with the supplied inputs."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class SubscriptionError(ChatError):
    """The live stream failed; already received messages stay visible."""


class MutationError(ChatError):
    """A send, edit or delete-for-everyone write did not go through."""


class AuthorizationViolation(ChatError):
    """An edit or delete-for-everyone was attempted on another author's message."""
