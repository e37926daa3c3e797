from .executor import (
    DispatchAttempt,
    DispatchRequest,
    Fatal,
    RequestDispatcher,
    Rotate,
    Success,
)
from .chat_client import ChatClient, ChatOptions

__all__ = [
    "ChatClient",
    "ChatOptions",
    "DispatchAttempt",
    "DispatchRequest",
    "Fatal",
    "RequestDispatcher",
    "Rotate",
    "Success",
]
