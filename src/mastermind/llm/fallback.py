"""Failure classification for the one-shot model/region fallback."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from mastermind.config import DEFAULT_MODEL, DEFAULT_REGION
from mastermind.errors import TransportError

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FallbackDecision:
    """Whether to retry, and against which model/region."""

    retry: bool
    new_model: str | None = None
    new_region: str | None = None
    reason: str = ""


NO_RETRY = FallbackDecision(retry=False)


class FallbackPolicy:
    """Classify request failures into retry strategies.

    Failure classes:
      not_found        - HTTP 404 or a "not found" diagnostic; retry with
                         the default model in the default region
      bad_request      - HTTP 400 while not on the default model; retry
                         with the default model in the current region
      everything else  - auth, quota, safety block, empty or malformed
                         response; propagate

    The policy itself is stateless.  Callers enforce the one-retry limit.
    """

    def __init__(
        self,
        default_model: str = DEFAULT_MODEL,
        default_region: str = DEFAULT_REGION,
    ) -> None:
        self.default_model = default_model
        self.default_region = default_region

    def failure_class(self, error: BaseException) -> str:
        if not isinstance(error, TransportError):
            return "other"
        if error.status_code == 404 or "not found" in str(error).lower():
            return "not_found"
        if error.status_code == 400:
            return "bad_request"
        return "other"

    def classify(
        self,
        error: BaseException,
        model: str | None = None,
        region: str | None = None,
    ) -> FallbackDecision:
        """Decide whether *error* warrants a retry.

        *model* and *region* describe the failed attempt; when omitted they
        are read from the error itself.
        """
        kind = self.failure_class(error)
        if kind == "other":
            return NO_RETRY

        model = model or getattr(error, "model", "") or ""
        region = region or getattr(error, "region", "") or ""

        if kind == "not_found":
            if model == self.default_model and region == self.default_region:
                return NO_RETRY
            return FallbackDecision(
                retry=True,
                new_model=self.default_model,
                new_region=self.default_region,
                reason=kind,
            )

        # bad_request
        if model == self.default_model:
            return NO_RETRY
        return FallbackDecision(
            retry=True,
            new_model=self.default_model,
            new_region=region or self.default_region,
            reason=kind,
        )
