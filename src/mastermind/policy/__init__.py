"""Capability policy for Mastermind tools."""

from mastermind.policy.engine import (
    TOOL_CAPABILITIES,
    CallUsage,
    PolicyEngine,
    PolicyViolation,
)

__all__ = [
    "TOOL_CAPABILITIES",
    "CallUsage",
    "PolicyEngine",
    "PolicyViolation",
]
