"""Diagnostic event bus for Mastermind."""

from mastermind.events.bus import WILDCARD, EventBus

__all__ = ["EventBus", "WILDCARD"]
