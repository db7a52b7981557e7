"""Mastermind: a tool-using agent loop for Vertex AI models."""

from mastermind.config import ChatConfig, MastermindConfig, PermissionSpec, load_config
from mastermind.core import AgentLoop, ConversationState
from mastermind.errors import (
    AuthError,
    EmptyResponseError,
    IterationBudgetExceededError,
    LoopDetectedError,
    MastermindError,
    ModelBlockedError,
    TransportError,
)
from mastermind.events import EventBus
from mastermind.llm import CredentialBroker, HttpxTransport
from mastermind.tools.executor import ToolExecutor
from mastermind.types import Attachment, ChatResponse, ToolAction

__version__ = "0.1.0"

__all__ = [
    "AgentLoop",
    "Attachment",
    "AuthError",
    "ChatConfig",
    "ChatResponse",
    "ConversationState",
    "CredentialBroker",
    "EmptyResponseError",
    "EventBus",
    "HttpxTransport",
    "IterationBudgetExceededError",
    "LoopDetectedError",
    "MastermindConfig",
    "MastermindError",
    "ModelBlockedError",
    "PermissionSpec",
    "ToolAction",
    "ToolExecutor",
    "TransportError",
    "load_config",
]
