"""Conversation transcript and prompt assembly."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Sequence

from mastermind.llm.adapters import gemini_contents
from mastermind.types import Attachment, InlineData, Part, Role, TextPart, Turn

_logger = logging.getLogger(__name__)

VAULT_ADDENDUM = """\
You can use tools to search, read, list, create, and delete notes/folders in the vault.

IMPORTANT: If you need to reason through a complex problem, show your work by wrapping your thought process in a "thinking" code block, like this:
```thinking
My reasoning process...
```
Then provide your final answer."""


class ConversationState:
    """Ordered transcript of turns, owned by the caller across chats.

    The agent loop only ever appends whole cycles; callers may persist or
    discard the state between invocations.
    """

    def __init__(self, turns: Iterable[Turn] | None = None) -> None:
        self._turns: list[Turn] = list(turns or [])

    def append(self, turn: Turn) -> None:
        self._turns.append(turn)

    def extend(self, turns: Iterable[Turn]) -> None:
        self._turns.extend(turns)

    @property
    def turns(self) -> list[Turn]:
        return list(self._turns)

    def to_contents(self) -> list[dict[str, Any]]:
        """Gemini ``contents`` for the whole transcript."""
        return gemini_contents(self._turns)

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[Turn]:
        return iter(self._turns)

    def __getitem__(self, index: int) -> Turn:
        return self._turns[index]

    def __repr__(self) -> str:
        return f"ConversationState(turns={len(self._turns)})"


@dataclass
class SystemInstruction:
    """System prompt: configured base + vault addendum + custom text."""

    base: str
    custom_instructions: str = ""
    vault_addendum: str = VAULT_ADDENDUM

    def render(self) -> str:
        parts = [self.base.rstrip()]
        if self.vault_addendum:
            parts.append(self.vault_addendum)
        text = "\n".join(parts)
        if self.custom_instructions.strip():
            text += f"\n\nUSER CUSTOM INSTRUCTIONS:\n{self.custom_instructions.strip()}"
        return text


def build_user_turn(
    user_message: str,
    context_text: str = "",
    attachments: Sequence[Attachment] = (),
) -> Turn:
    """The user turn for one chat: vault context, question, and images."""
    if context_text:
        text = f"Context from vault:\n{context_text}\n\nUser Question: {user_message}"
    else:
        text = user_message
    parts: list[Part] = [TextPart(text)]
    for att in attachments:
        parts.append(InlineData(mime_type=att.mime_type, data=att.data))
    return Turn(role=Role.USER, parts=parts)
