"""Console chat client for rooms served by :mod:`roomstore`."""

from .access_gate import GateState, RoomAccessGate
from .chat_model import ChatRoomModel, RenderState
from .errors import AccessError, AuthorizationViolation, ChatError, MutationError, SubscriptionError
from .remote import InProcessRemoteStore, RemoteStore, RemoteStoreError

__all__ = [
    "AccessError",
    "AuthorizationViolation",
    "ChatError",
    "ChatRoomModel",
    "GateState",
    "InProcessRemoteStore",
    "MutationError",
    "RemoteStore",
    "RemoteStoreError",
    "RenderState",
    "RoomAccessGate",
    "SubscriptionError",
]
