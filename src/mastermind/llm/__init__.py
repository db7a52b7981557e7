"""Model access for Mastermind: credentials, transport, decoding, adapters."""

from mastermind.llm.adapters import (
    AnthropicAdapter,
    EndpointAdapter,
    GeminiAdapter,
    ModelAdapter,
    ModelRequest,
    select_adapter,
)
from mastermind.llm.credentials import CredentialBroker, ServiceAccountCredential
from mastermind.llm.fallback import FallbackDecision, FallbackPolicy
from mastermind.llm.stream import StreamDecoder, ThinkingSplitter
from mastermind.llm.transport import HttpxTransport, Transport, TransportResponse

__all__ = [
    "AnthropicAdapter",
    "CredentialBroker",
    "EndpointAdapter",
    "FallbackDecision",
    "FallbackPolicy",
    "GeminiAdapter",
    "HttpxTransport",
    "ModelAdapter",
    "ModelRequest",
    "ServiceAccountCredential",
    "StreamDecoder",
    "ThinkingSplitter",
    "Transport",
    "TransportResponse",
    "select_adapter",
]
