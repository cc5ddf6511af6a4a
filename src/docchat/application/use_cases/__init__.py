"""Use-case layer: business logic decoupled from the HTTP transport."""

from docchat.application.use_cases.chat_stream import SessionStreamController, StreamState

__all__ = ["SessionStreamController", "StreamState"]
