from .commands_mixin import CommandsMixin
from .message_mixin import MessageMixin
from .server_mixin import ServerMixin

__all__ = [
    "CommandsMixin",
    "MessageMixin",
    "ServerMixin",
]
