"""Error taxonomy for the agent core.

Every error carries enough text to explain its cause (model, region,
provider diagnostic) without echoing credential material.
"""

from __future__ import annotations


class MastermindError(Exception):
    """Base class for all errors raised by the agent core."""


class AuthError(MastermindError):
    """Credential material is unusable or the token exchange was rejected."""


class TransportError(MastermindError):
    """Network or HTTP-level failure talking to the model endpoint."""

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        body: str = "",
        model: str = "",
        region: str = "",
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.model = model
        self.region = region

    def __str__(self) -> str:
        msg = super().__str__()
        where = ", ".join(
            f"{k}={v}" for k, v in (("model", self.model), ("region", self.region)) if v
        )
        return f"{msg} ({where})" if where else msg


class ModelBlockedError(MastermindError):
    """The model's safety filter blocked the prompt or the answer."""


class EmptyResponseError(MastermindError):
    """The model returned no candidates or no content."""


class LoopDetectedError(MastermindError):
    """The agent repeated an identical tool call too many times.

    Surfaced to the caller as the text of a terminal ``ChatResponse``.
    """

    def __init__(self, tool: str, repeats: int) -> None:
        super().__init__(
            f"Stopped: the tool '{tool}' was called {repeats} times in a row "
            f"with identical arguments. The agent appears to be stuck in a loop."
        )
        self.tool = tool
        self.repeats = repeats


class IterationBudgetExceededError(MastermindError):
    """The tool-execution cycle ceiling (or time budget) was exhausted."""
