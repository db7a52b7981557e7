"""ToolExecutor: dispatches model tool calls to capability providers.

A provider is any callable ``(arguments) -> value``; coroutine functions
and callables returning awaitables are awaited.  Whatever happens inside
a provider, ``execute()`` returns a ``ToolResult`` so the model can read
the failure and adapt.
"""

from __future__ import annotations

import inspect
import json
import logging
from typing import Any, Callable, Mapping

from mastermind.config import PermissionSpec
from mastermind.policy.engine import PolicyEngine
from mastermind.types import ToolCall, ToolResult, ToolStatus

_logger = logging.getLogger(__name__)

Provider = Callable[[dict[str, Any]], Any]

DEFAULT_MAX_OUTPUT = 20_000  # chars per string payload


def _clip(text: str, limit: int) -> str:
    """Cut the middle out of *text* so it fits in *limit* chars.

    Keeps the first two thirds and the last third of the budget.
    """
    if len(text) <= limit:
        return text
    head = limit * 2 // 3
    tail = limit - head
    return f"{text[:head]}\n[... {len(text) - limit} chars omitted ...]\n{text[len(text) - tail:]}"


def _normalize(value: Any, max_output: int) -> Any:
    """Coerce a provider payload into JSON-safe data.

    Payloads JSON cannot express (non-string keys, cycles) are sent as
    their ``str()`` form.
    """
    if isinstance(value, str):
        return _clip(value, max_output) if max_output > 0 else value
    if value is None or isinstance(value, (bool, int, float)):
        return value
    try:
        return json.loads(json.dumps(value, default=str))
    except (TypeError, ValueError):
        _logger.debug("Payload of type %s is not JSON, sending str()", type(value).__name__)
        return _normalize(str(value), max_output)


class ToolExecutor:
    """Runs tool calls through the capability policy and the providers.

    Usage::

        executor = ToolExecutor({"read_file": vault.read}, PolicyEngine(perms))
        result = await executor.execute(ToolCall("read_file", {"path": "a.md"}))
    """

    def __init__(
        self,
        providers: Mapping[str, Provider],
        policy: PolicyEngine | PermissionSpec | None = None,
        max_output: int = DEFAULT_MAX_OUTPUT,
    ) -> None:
        self._providers = dict(providers)
        if not isinstance(policy, PolicyEngine):
            policy = PolicyEngine(policy)
        self.policy = policy
        self._max_output = max_output

    async def execute(self, call: ToolCall) -> ToolResult:
        """Execute *call*. Never raises except on task cancellation."""
        violation = self.policy.check(call.name)
        if violation:
            return ToolResult.error(violation.message, tool=call.name)

        provider = self._providers.get(call.name)
        if provider is None:
            return ToolResult.error(
                f"Tool '{call.name}' is not available in this environment.",
                tool=call.name,
            )

        self.policy.record(call.name)
        try:
            value = provider(dict(call.arguments))
            if inspect.isawaitable(value):
                value = await value
        except Exception as e:
            _logger.info("Tool %s failed: %s: %s", call.name, type(e).__name__, e)
            return ToolResult.error(
                f"Tool '{call.name}' execution failed: {type(e).__name__}: {e}",
                tool=call.name,
            )

        try:
            return self._to_result(call.name, value)
        except Exception as e:
            _logger.warning("Tool %s returned an unusable payload: %s", call.name, e)
            return ToolResult.error(
                f"Tool '{call.name}' returned an unusable result: {type(e).__name__}: {e}",
                tool=call.name,
            )

    def _to_result(self, name: str, value: Any) -> ToolResult:
        if isinstance(value, ToolResult):
            return ToolResult(
                status=value.status,
                payload=_normalize(value.payload, self._max_output),
                tool=value.tool or name,
            )
        if isinstance(value, Mapping) and value.get("status") == "error":
            return ToolResult(
                status=ToolStatus.ERROR,
                payload=_normalize(dict(value), self._max_output),
                tool=name,
            )
        return ToolResult.ok(_normalize(value, self._max_output), tool=name)
