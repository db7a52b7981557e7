"""AgentLoop: the chat state machine.

    Requesting -> Streaming -> {ExecutingTools -> Requesting} | Done | Failed

One ``chat()`` call processes one user message to completion.  The loop
owns no I/O of its own: requests go through a model adapter and the
``Transport``, tools through the ``ToolExecutor``.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Mapping, Sequence

from mastermind.config import ChatConfig, MastermindConfig, read_service_account
from mastermind.core.conversation import (
    ConversationState,
    SystemInstruction,
    build_user_turn,
)
from mastermind.core.loop_guard import LoopGuard
from mastermind.errors import (
    EmptyResponseError,
    IterationBudgetExceededError,
    LoopDetectedError,
    MastermindError,
)
from mastermind.events.bus import EventBus
from mastermind.llm.adapters import ModelRequest, select_adapter
from mastermind.llm.credentials import CredentialBroker
from mastermind.llm.fallback import FallbackPolicy
from mastermind.llm.transport import HttpxTransport, Transport
from mastermind.policy.engine import PolicyEngine
from mastermind.tools.declarations import declarations_for
from mastermind.tools.executor import Provider, ToolExecutor
from mastermind.types import (
    ActionStatus,
    AgentEvent,
    Attachment,
    ChatResponse,
    EventType,
    FunctionCall,
    ReasoningDelta,
    Role,
    StreamEvent,
    TextDelta,
    TextPart,
    ToolAction,
    ToolCall,
    ToolResult,
    Turn,
)

_logger = logging.getLogger(__name__)


@dataclass
class _ChatRun:
    """Mutable bookkeeping for one ``chat()`` invocation."""

    model: str
    region: str
    started_at: float
    text: str = ""
    reasoning: str = ""
    is_reasoning: bool = False
    usage: dict[str, int] = field(default_factory=dict)
    fallback_used: bool = False
    cycles: int = 0
    diagnostics: list[AgentEvent] = field(default_factory=list)

    def add_usage(self, usage: dict[str, int]) -> None:
        for k, v in usage.items():
            self.usage[k] = self.usage.get(k, 0) + v


class AgentLoop:
    """Drives a tool-using conversation against a Vertex AI model.

    Parameters
    ----------
    broker:
        Supplies bearer tokens; may be shared between loops.
    transport:
        HTTP stack used for model requests.
    event_bus:
        Optional bus that receives every diagnostic event as well.
    default_config:
        Used when ``chat()`` is called without a ``config``.
    clock:
        Monotonic clock for the time budget; injectable for tests.

    Usage::

        loop = AgentLoop(broker, HttpxTransport())
        async for update in loop.chat("Summarise a.md", ctx, providers, state):
            render(update)
    """

    def __init__(
        self,
        broker: CredentialBroker,
        transport: Transport,
        event_bus: EventBus | None = None,
        default_config: ChatConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._broker = broker
        self._transport = transport
        self._event_bus = event_bus
        self._default_config = default_config or ChatConfig()
        self._clock = clock

    @classmethod
    def from_config(
        cls,
        config: MastermindConfig,
        event_bus: EventBus | None = None,
    ) -> AgentLoop:
        """Wire an ``HttpxTransport`` and a broker from loaded config."""
        transport = HttpxTransport(timeout=config.request_timeout)
        broker = CredentialBroker(read_service_account(config), transport)
        return cls(broker, transport, event_bus=event_bus, default_config=config.chat)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def chat(
        self,
        user_message: str,
        context_text: str,
        providers: Mapping[str, Provider],
        state: ConversationState,
        attachments: Sequence[Attachment] = (),
        cancel: asyncio.Event | None = None,
        config: ChatConfig | None = None,
    ) -> AsyncIterator[ChatResponse]:
        """Process one user message, yielding progress updates.

        The sequence ends with a ``ChatResponse`` whose ``actions`` is
        empty, or with a raised ``MastermindError``.  ``state`` only ever
        grows by whole completed cycles; on cancellation or failure it
        keeps what the completed cycles appended.
        """
        config = copy.deepcopy(config or self._default_config)
        run = _ChatRun(
            model=config.model_id,
            region=config.location,
            started_at=self._clock(),
        )
        executor = ToolExecutor(providers, PolicyEngine(config.permissions))
        guard = LoopGuard()
        system = SystemInstruction(
            base=config.system_instruction,
            custom_instructions=config.custom_instructions,
        ).render()

        # Turns of the cycle in progress; committed to state together
        pending: list[Turn] = [build_user_turn(user_message, context_text, attachments)]

        await self._record(run, EventType.CHAT_STARTED, {
            "model": run.model,
            "region": run.region,
            "history": len(state),
        })

        try:
            while True:
                # -- Requesting --
                if self._cancelled(cancel):
                    await self._record(run, EventType.CHAT_CANCELLED, {"cycles": run.cycles})
                    return
                self._check_time_budget(run, config)

                # -- Streaming --
                turn_text = ""
                turn_reasoning = ""
                calls: list[ToolCall] = []
                events = self._model_events(run, config, state.turns + pending, system)
                async for event in events:
                    if isinstance(event, TextDelta):
                        turn_text += event.text
                        run.text += event.text
                        run.is_reasoning = False
                    elif isinstance(event, ReasoningDelta):
                        turn_reasoning += event.text
                        run.reasoning += event.text
                        run.is_reasoning = True
                    elif isinstance(event, FunctionCall):
                        calls.append(event.call)
                    yield self._response(run)

                await self._record(run, EventType.STREAM_CLOSED, {
                    "text_length": len(turn_text),
                    "reasoning_length": len(turn_reasoning),
                    "function_calls": len(calls),
                })

                if not (turn_text or turn_reasoning or calls):
                    raise EmptyResponseError(
                        f"No content returned by {run.model} ({run.region})"
                    )

                # -- Done --
                if not calls:
                    if turn_text:
                        pending.append(Turn(Role.MODEL, [TextPart(turn_text)]))
                    state.extend(pending)
                    run.is_reasoning = False
                    await self._record(run, EventType.CHAT_DONE, {
                        "cycles": run.cycles,
                        "tools": executor.policy.usage.summary(),
                        "usage": dict(run.usage),
                    })
                    yield self._response(run)
                    return

                # -- ExecutingTools --
                if run.cycles >= config.max_iterations:
                    raise IterationBudgetExceededError(
                        f"Iteration budget exhausted after {run.cycles} tool cycles "
                        f"(max_iterations={config.max_iterations})"
                    )
                run.is_reasoning = False

                results: list[ToolResult] = []
                for call in calls:
                    if self._cancelled(cancel):
                        await self._record(run, EventType.CHAT_CANCELLED, {"cycles": run.cycles})
                        return

                    if guard.observe(call):
                        error = LoopDetectedError(call.name, guard.threshold)
                        await self._record(run, EventType.LOOP_DETECTED, {
                            "tool": call.name,
                            "repeats": guard.threshold,
                        })
                        run.text = f"{run.text}\n\n{error}" if run.text else str(error)
                        yield self._response(run)
                        return

                    async for update in self._run_tool(run, executor, call, results):
                        yield update

                pending.append(Turn(Role.MODEL, self._model_parts(turn_text, calls)))
                pending.append(Turn(Role.TOOL, list(results)))
                state.extend(pending)
                pending = []
                run.cycles += 1

        except MastermindError as e:
            _logger.warning("Chat failed: %s", e)
            await self._record(run, EventType.CHAT_FAILED, {
                "error": type(e).__name__,
                "message": str(e),
            })
            raise

    # ------------------------------------------------------------------
    # Requesting / Streaming
    # ------------------------------------------------------------------

    async def _model_events(
        self,
        run: _ChatRun,
        config: ChatConfig,
        turns: list[Turn],
        system: str,
    ) -> AsyncIterator[StreamEvent]:
        """Events of one model turn, with at most one fallback per chat."""
        policy = FallbackPolicy(config.fallback_model, config.fallback_region)
        while True:
            adapter = select_adapter(run.model)
            request = ModelRequest(
                model=run.model,
                region=run.region,
                project_id=self._broker.project_id,
                turns=turns,
                system_instruction=system,
                tools=declarations_for(config.permissions) if adapter.supports_tools else [],
                temperature=config.temperature,
                max_output_tokens=config.max_output_tokens,
            )
            region = adapter.effective_region(request)

            refreshes = self._broker.refresh_count
            token = await self._broker.get_token()
            if self._broker.refresh_count != refreshes:
                await self._record(run, EventType.TOKEN_REFRESHED, {
                    "expires_at": token.expires_at,
                })

            await self._record(run, EventType.REQUEST_STARTED, {
                "model": run.model,
                "region": region,
                "adapter": adapter.name,
                "turns": len(turns),
            })

            received = False
            try:
                async for event in adapter.events(self._transport, request, token.value):
                    received = True
                    yield event
            except MastermindError as e:
                await self._record(run, EventType.REQUEST_FAILED, {
                    "model": run.model,
                    "region": region,
                    "error": type(e).__name__,
                    "message": str(e),
                })
                if received or run.fallback_used:
                    raise
                decision = policy.classify(e, run.model, region)
                if not decision.retry:
                    raise
                _logger.warning(
                    "Request to %s (%s) failed, falling back to %s (%s): %s",
                    run.model, region, decision.new_model, decision.new_region, e,
                )
                await self._record(run, EventType.FALLBACK, {
                    "from_model": run.model,
                    "from_region": region,
                    "to_model": decision.new_model,
                    "to_region": decision.new_region,
                    "reason": decision.reason,
                })
                run.fallback_used = True
                run.model = decision.new_model or run.model
                run.region = decision.new_region or run.region
                continue

            run.add_usage(adapter.usage)
            return

    # ------------------------------------------------------------------
    # ExecutingTools
    # ------------------------------------------------------------------

    async def _run_tool(
        self,
        run: _ChatRun,
        executor: ToolExecutor,
        call: ToolCall,
        results: list[ToolResult],
    ) -> AsyncIterator[ChatResponse]:
        """Pending update, execution, resolved update."""
        arguments = dict(call.arguments)
        await self._record(run, EventType.TOOL_EXECUTING, {
            "tool": call.name,
            "arguments": arguments,
        })
        yield self._response(run, [ToolAction(call.name, arguments)])

        result = await executor.execute(call)
        results.append(result)

        if result.success:
            status = ActionStatus.SUCCESS
            await self._record(run, EventType.TOOL_EXECUTED, {"tool": call.name})
        else:
            status = ActionStatus.ERROR
            await self._record(run, EventType.TOOL_ERROR, {
                "tool": call.name,
                "error": result.payload,
            })
        yield self._response(run, [
            ToolAction(call.name, arguments, status=status, output=result.payload),
        ])

    @staticmethod
    def _model_parts(text: str, calls: list[ToolCall]) -> list[Any]:
        parts: list[Any] = [TextPart(text)] if text else []
        parts.extend(calls)
        return parts

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _cancelled(cancel: asyncio.Event | None) -> bool:
        return cancel is not None and cancel.is_set()

    def _check_time_budget(self, run: _ChatRun, config: ChatConfig) -> None:
        if config.max_duration <= 0:
            return
        elapsed = self._clock() - run.started_at
        if elapsed > config.max_duration:
            raise IterationBudgetExceededError(
                f"Time budget of {config.max_duration:.0f}s exhausted "
                f"after {run.cycles} tool cycles"
            )

    def _response(
        self, run: _ChatRun, actions: list[ToolAction] | None = None,
    ) -> ChatResponse:
        diagnostics, run.diagnostics = run.diagnostics, []
        return ChatResponse(
            text=run.text,
            reasoning_text=run.reasoning,
            is_reasoning=run.is_reasoning,
            actions=actions or [],
            usage=dict(run.usage),
            diagnostics=diagnostics,
        )

    async def _record(
        self, run: _ChatRun, event_type: EventType, data: dict[str, Any],
    ) -> None:
        event = AgentEvent(type=event_type, data=data)
        run.diagnostics.append(event)
        if self._event_bus:
            await self._event_bus.emit(event)
