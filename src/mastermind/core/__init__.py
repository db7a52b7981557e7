"""Core agent components for Mastermind."""

from mastermind.core.agent_loop import AgentLoop
from mastermind.core.conversation import (
    ConversationState,
    SystemInstruction,
    build_user_turn,
)
from mastermind.core.loop_guard import LoopGuard

__all__ = [
    "AgentLoop",
    "ConversationState",
    "LoopGuard",
    "SystemInstruction",
    "build_user_turn",
]
