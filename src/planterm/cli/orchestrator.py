"""Stream orchestrator: drives indicators and the line renderer from provider events.

One ``send`` call is one turn. It attaches exactly one handler per provider
event, races the turn against an external cancel event, renders the end
state (done, error or cancelled) and always detaches its handlers before
returning, whichever way the turn ended.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, TextIO

from rich.console import Console

from ..services.event_channel import Subscription
from ..services.provider import Provider, ToolCall
from .markdown import StreamingMarkdownRenderer
from .renderer import render_cancelled, render_error
from .spinner import SpinnerFrames, ThinkingIndicator, ToolIndicator, format_tool_args, tool_display_name

logger = logging.getLogger(__name__)

_BOLD_CYAN = "\033[36m\033[1m"
_RST = "\033[0m"

DONE = "done"
ERROR = "error"
CANCELLED = "cancelled"


@dataclass
class StreamState:
    """Per-turn rendering state; a fresh one is created for every message."""

    has_output: bool = False
    after_tool_call: bool = False
    active_indicator: ToolIndicator | None = None
    cancelled: bool = False
    content: list[str] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)


@dataclass
class TurnResult:
    status: str
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.status == DONE


CompletionCallback = Callable[[str, list[ToolCall]], Any]


class StreamOrchestrator:
    def __init__(
        self,
        provider: Provider,
        *,
        stream: TextIO | None = None,
        console: Console | None = None,
        label: str = "Planner",
        spinner: SpinnerFrames | None = None,
        columns: int | None = None,
        on_complete: CompletionCallback | None = None,
        drain_timeout: float = 5.0,
    ) -> None:
        self.provider = provider
        self._stream = stream
        self._console = console or Console(file=stream, highlight=False, soft_wrap=True)
        self._renderer = StreamingMarkdownRenderer(self._console)
        self._label = label
        self._spinner = spinner
        self._columns = columns
        self._on_complete = on_complete
        self._drain_timeout = drain_timeout
        self.state: StreamState | None = None

    @property
    def renderer(self) -> StreamingMarkdownRenderer:
        return self._renderer

    @property
    def streaming(self) -> bool:
        return self.state is not None

    def _write(self, text: str) -> None:
        out = self._stream or sys.stdout
        out.write(text)
        out.flush()

    def _prefix(self) -> str:
        return f"{_BOLD_CYAN}{self._label}:{_RST} "

    async def send(
        self,
        message: str,
        history: list[dict[str, Any]],
        cancel_event: asyncio.Event | None = None,
    ) -> TurnResult:
        loop = asyncio.get_running_loop()
        cancel_event = cancel_event or asyncio.Event()
        finished: asyncio.Future[tuple[str, BaseException | None]] = loop.create_future()
        state = StreamState()
        self.state = state
        self._renderer.reset()
        thinking = ThinkingIndicator(self._spinner, self._stream)

        def finish(status: str, error: BaseException | None = None) -> None:
            if not finished.done():
                finished.set_result((status, error))

        def on_text(chunk: str) -> None:
            if finished.done() or state.cancelled:
                return
            thinking.stop()
            if not state.has_output:
                self._write(self._prefix())
            elif state.after_tool_call:
                if state.active_indicator is not None:
                    state.active_indicator.stop(success=True)
                    state.active_indicator = None
                self._write("\n" + self._prefix())
            state.has_output = True
            state.after_tool_call = False
            state.content.append(chunk)
            self._renderer.write(chunk)

        def on_tool_call(call: ToolCall) -> None:
            if finished.done() or state.cancelled:
                return
            thinking.stop()
            state.tool_calls.append(call)
            if state.active_indicator is not None:
                state.active_indicator.stop(success=True)
                state.active_indicator = None
            if state.has_output and not state.after_tool_call:
                self._renderer.flush()
                if not self._renderer.last_line_blank:
                    self._write("\n")
            state.has_output = True
            state.after_tool_call = True
            indicator = ToolIndicator(
                tool_display_name(call.name),
                format_tool_args(call.name, call.args),
                stream=self._stream,
                frames=self._spinner,
                columns=self._columns,
            )
            state.active_indicator = indicator
            indicator.start()

        def on_done(*_args: Any) -> None:
            finish(DONE)

        def on_error(error: BaseException) -> None:
            finish(ERROR, error)

        def on_send_finished(task: asyncio.Future[None]) -> None:
            if task.cancelled():
                return
            exc = task.exception()
            if exc is not None:
                logger.warning("Provider send raised", exc_info=exc)
                finish(ERROR, exc)
            else:
                # Some backends return without emitting a terminal event.
                finish(DONE)

        events = self.provider.events
        subscriptions: list[Subscription] = [
            events.on("text", on_text),
            events.on("tool_call", on_tool_call),
            events.on("done", on_done),
            events.on("error", on_error),
        ]
        send_task: asyncio.Future[None] | None = None
        cancel_wait = asyncio.ensure_future(cancel_event.wait())
        try:
            thinking.start()
            send_task = asyncio.ensure_future(self.provider.send(message, history))
            send_task.add_done_callback(on_send_finished)

            try:
                await asyncio.wait([finished, cancel_wait], return_when=asyncio.FIRST_COMPLETED)
            except asyncio.CancelledError:
                # The turn itself was cancelled; the backend must still be told to stop.
                state.cancelled = True
                logger.info("Turn task cancelled; stopping provider")
                self.provider.cancel()
                raise

            if cancel_event.is_set():
                state.cancelled = True
                logger.info("Turn cancelled")
                self.provider.cancel()
                return self._end_cancelled(thinking, state)

            status, error = finished.result()
            if status == ERROR:
                return self._end_error(thinking, state, error)
            return self._end_done(thinking, state)
        finally:
            for sub in subscriptions:
                sub.close()
            thinking.stop()
            self._stop_active(state, success=not state.cancelled)
            cancel_wait.cancel()
            self.state = None
            if send_task is not None:
                await self._drain(send_task)

    async def _drain(self, send_task: asyncio.Future[None]) -> None:
        if send_task.done():
            return
        await asyncio.wait([send_task], timeout=self._drain_timeout)
        if not send_task.done():
            logger.warning("Provider did not stop within %.1fs; abandoning", self._drain_timeout)
            send_task.cancel()

    # -- end states ------------------------------------------------------------

    def _stop_active(self, state: StreamState, success: bool) -> None:
        if state.active_indicator is not None:
            state.active_indicator.stop(success=success)
            state.active_indicator = None

    def _end_done(self, thinking: ThinkingIndicator, state: StreamState) -> TurnResult:
        thinking.stop()
        self._stop_active(state, success=True)
        self._renderer.flush()
        if state.has_output and not state.after_tool_call:
            self._write("\n")
        content = "".join(state.content)
        if self._on_complete is not None:
            self._on_complete(content, list(state.tool_calls))
        return TurnResult(DONE, content, list(state.tool_calls))

    def _end_error(
        self, thinking: ThinkingIndicator, state: StreamState, error: BaseException | None
    ) -> TurnResult:
        thinking.stop()
        self._stop_active(state, success=True)
        self._renderer.flush()
        message = (str(error) or type(error).__name__) if error is not None else "Unknown error"
        render_error(message, self._console)
        return TurnResult(ERROR, "".join(state.content), list(state.tool_calls), error)

    def _end_cancelled(self, thinking: ThinkingIndicator, state: StreamState) -> TurnResult:
        thinking.stop()
        self._stop_active(state, success=False)
        self._renderer.flush()
        render_cancelled(self._console)
        return TurnResult(CANCELLED, "".join(state.content), list(state.tool_calls))
