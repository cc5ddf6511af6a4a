"""Python client for the chat stream endpoint."""

from docchat.client.stream_consumer import ChatStreamConsumer, generate_session_id

__all__ = ["ChatStreamConsumer", "generate_session_id"]
