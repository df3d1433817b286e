"""Interactive planning REPL and one-shot mode.

Two coroutines share one SessionContext: ``_collect_input`` keeps the
prompt running and queues complete messages, ``_turn_runner`` streams them
one at a time. While a turn streams, the prompt renders through a muted
output gate so its redraws never land on top of indicator output; the
runner unmutes and redraws the prompt once the queue is empty.
"""

from __future__ import annotations

import asyncio
import logging
import os
import platform
import signal
import sys
import time
from pathlib import Path
from typing import Any

from rich.markup import escape

from .. import __version__
from ..config import AppConfig, ensure_data_dir
from ..services import chat_history
from ..services.chat_history import ChatMessage, ChatSession
from ..services.provider import Provider, ToolCall, create_provider, validate_provider
from ..services.session_naming import generate_session_name
from . import renderer
from .commands import NEW_SESSION, QUIT, SEND, SWITCH_SESSION, CommandCompleter, handle_command, is_command
from .orchestrator import StreamOrchestrator, TurnResult
from .output_gate import OutputGate
from .plan import format_prompt_label
from .renderer import CHROME, SLATE
from .session_context import ABORT_INPUT, CANCEL, SHUTDOWN, SessionContext
from .spinner import get_spinner

logger = logging.getLogger(__name__)

_IS_WINDOWS = platform.system() == "Windows"

CONTINUATION_PROMPT = "... "
_QUEUE_SIZE = 10


def _add_signal_handler(loop: asyncio.AbstractEventLoop, sig: int, callback: Any) -> bool:
    """Add a signal handler, returning False on Windows where it's unsupported."""
    if _IS_WINDOWS:
        return False
    try:
        loop.add_signal_handler(sig, callback)
        return True
    except NotImplementedError:
        return False


def _remove_signal_handler(loop: asyncio.AbstractEventLoop, sig: int) -> None:
    """Remove a signal handler, no-op on Windows."""
    if _IS_WINDOWS:
        return
    try:
        loop.remove_signal_handler(sig)
    except NotImplementedError:
        pass


async def _watch_for_escape(cancel_event: asyncio.Event) -> None:
    """Watch for a bare Escape key press while no prompt is running."""
    loop = asyncio.get_running_loop()

    if _IS_WINDOWS:
        import msvcrt

        def _poll() -> None:
            while not cancel_event.is_set():
                if msvcrt.kbhit():
                    ch = msvcrt.getch()
                    if ch == b"\x1b":
                        # Distinguish bare Escape from escape sequences (arrow keys, etc.)
                        time.sleep(0.05)
                        if not msvcrt.kbhit():
                            cancel_event.set()
                            return
                        while msvcrt.kbhit():
                            msvcrt.getch()
                time.sleep(0.05)

    else:
        import select
        import termios
        import tty

        def _poll() -> None:
            fd = sys.stdin.fileno()
            if not os.isatty(fd):
                return
            old_settings = termios.tcgetattr(fd)
            try:
                tty.setcbreak(fd)
                while not cancel_event.is_set():
                    ready, _, _ = select.select([sys.stdin], [], [], 0.1)
                    if ready:
                        ch = sys.stdin.read(1)
                        if ch == "\x1b":
                            more, _, _ = select.select([sys.stdin], [], [], 0.05)
                            if not more:
                                cancel_event.set()
                                return
                            # Consume the rest of the escape sequence
                            while True:
                                more, _, _ = select.select([sys.stdin], [], [], 0.01)
                                if not more:
                                    break
                                sys.stdin.read(1)
            finally:
                termios.tcsetattr(fd, termios.TCSADRAIN, old_settings)

    try:
        await loop.run_in_executor(None, _poll)
    except asyncio.CancelledError:
        # The executor thread notices the event on its next poll.
        cancel_event.set()
        raise


def trim_history_file(path: Path, max_lines: int) -> None:
    """Keep the newest entries of a prompt_toolkit FileHistory within ``max_lines``."""
    if not path.exists():
        return
    lines = path.read_text(encoding="utf-8", errors="replace").splitlines(keepends=True)
    if len(lines) <= max_lines:
        return
    tail = lines[-max_lines:]
    # Entries start with a blank line; never keep half an entry.
    start = next((i for i, line in enumerate(tail) if line == "\n"), len(tail))
    path.write_text("".join(tail[start:]), encoding="utf-8")


def _build_context(config: AppConfig, provider: Provider, new_session: bool, mode: str | None) -> SessionContext:
    history = chat_history.load_chat_history(config.app.data_dir)
    ctx = SessionContext(
        config=config,
        provider=provider,
        gate=OutputGate(sys.stdout),
        history=history,
        mode=mode or config.cli.default_mode,
    )
    if new_session or ctx.current_session is None:
        chat_history.create_session(history)
    return ctx


def _make_orchestrator(ctx: SessionContext, persist: bool = True) -> StreamOrchestrator:
    def _persist(content: str, tool_calls: list[ToolCall]) -> None:
        chat_history.add_message(ctx.history, ChatMessage(role="assistant", content=content, tool_calls=tool_calls))
        ctx.save_history()

    return StreamOrchestrator(
        ctx.provider,
        label=ctx.config.cli.assistant_label,
        spinner=get_spinner(ctx.config.cli.spinner),
        on_complete=_persist if persist else None,
        drain_timeout=ctx.config.provider.kill_grace_seconds + 2.0,
    )


async def _name_session(ctx: SessionContext, session: ChatSession | None) -> None:
    if session is None or not session.messages or not chat_history.is_default_name(session.name):
        return
    name = await generate_session_name(session, ctx.provider, ctx.config.provider.naming_timeout)
    chat_history.rename_session(ctx.history, session.id, name)
    logger.info("Named session %s: %s", session.id, name)


async def _run_turn(ctx: SessionContext, orchestrator: StreamOrchestrator, message: str) -> TurnResult:
    session = ctx.ensure_session()
    prior = session.history()
    chat_history.add_message(ctx.history, ChatMessage(role="user", content=message))
    ctx.save_history()

    cancel_event = ctx.begin_turn()
    try:
        return await orchestrator.send(message, prior, cancel_event)
    finally:
        ctx.end_turn()


# ---------------------------------------------------------------------------
# One-shot mode
# ---------------------------------------------------------------------------


async def _run_one_shot(ctx: SessionContext, prompt: str) -> int:
    orchestrator = _make_orchestrator(ctx, persist=False)
    loop = asyncio.get_running_loop()
    cancel_event = ctx.begin_turn()
    _add_signal_handler(loop, signal.SIGINT, cancel_event.set)
    escape_task = asyncio.create_task(_watch_for_escape(cancel_event))
    try:
        result = await orchestrator.send(prompt, [], cancel_event)
    finally:
        escape_task.cancel()
        _remove_signal_handler(loop, signal.SIGINT)
        ctx.end_turn()
    return 0 if result.ok else 1


# ---------------------------------------------------------------------------
# Interactive mode
# ---------------------------------------------------------------------------


def _create_prompt_output(gate: OutputGate) -> Any:
    from prompt_toolkit.output import create_output
    from prompt_toolkit.output.vt100 import Vt100_Output

    class _GateOutput(Vt100_Output):
        # Cursor position replies would arrive while muted and be lost.
        @property
        def responds_to_cpr(self) -> bool:
            return False

    if gate.isatty():
        return _GateOutput.from_pty(gate, term=os.environ.get("TERM"))  # type: ignore[arg-type]
    return create_output(stdout=gate)  # type: ignore[arg-type]


def _create_prompt_input() -> Any:
    if _IS_WINDOWS or not sys.stdin.isatty():
        return None
    from .input_normalizer import NormalizingInput

    return NormalizingInput(sys.stdin)


async def _run_repl(ctx: SessionContext) -> int:
    from prompt_toolkit import PromptSession
    from prompt_toolkit.filters import Condition
    from prompt_toolkit.history import FileHistory
    from prompt_toolkit.key_binding import KeyBindings

    config = ctx.config
    loop = asyncio.get_running_loop()
    orchestrator = _make_orchestrator(ctx)

    history_path = config.app.data_dir / "cli_history"
    trim_history_file(history_path, config.cli.history_max_lines)

    input_queue: asyncio.Queue[tuple[str, bool]] = asyncio.Queue(maxsize=_QUEUE_SIZE)
    exit_flag = asyncio.Event()

    kb = KeyBindings()

    @kb.add("c-c")
    def _handle_ctrl_c(event: Any) -> None:
        buf = event.current_buffer
        if not ctx.streaming and not ctx.accumulator.active and buf.text:
            buf.reset()
            return
        outcome = ctx.interrupt()
        logger.debug("Ctrl+C -> %s", outcome)
        if outcome == ABORT_INPUT:
            event.app.exit(exception=KeyboardInterrupt())
        elif outcome == SHUTDOWN:
            event.app.exit(exception=EOFError())

    # Escape cancels only while a turn is streaming.
    @kb.add("escape", filter=Condition(lambda: ctx.streaming))
    def _cancel_on_escape(event: Any) -> None:
        if ctx.cancel_event is not None:
            ctx.cancel_event.set()

    def _prompt() -> str:
        return CONTINUATION_PROMPT if ctx.accumulator.active else format_prompt_label(ctx.mode)

    session: PromptSession[str] = PromptSession(
        history=FileHistory(str(history_path)),
        key_bindings=kb,
        multiline=False,
        completer=CommandCompleter(),
        input=_create_prompt_input(),
        output=_create_prompt_output(ctx.gate),
    )

    def _redraw_prompt() -> None:
        if session.app.is_running:
            session.app.renderer.reset()
            session.app.invalidate()

    def _on_sigint() -> None:
        outcome = ctx.interrupt()
        logger.debug("SIGINT -> %s", outcome)
        if outcome == SHUTDOWN:
            exit_flag.set()
            if session.app.is_running:
                session.app.exit(exception=EOFError())

    async def _switch_to_new_session() -> None:
        await _name_session(ctx, ctx.current_session)
        created = chat_history.create_session(ctx.history)
        ctx.save_history()
        renderer.render_session_change(created.name, 0)

    async def _run_command(text: str) -> None:
        await ctx.idle.wait()
        result = await handle_command(text, ctx)
        if result.kind == QUIT:
            exit_flag.set()
        elif result.kind == SEND and result.message:
            await _submit(result.message)
        elif result.kind == NEW_SESSION:
            await _switch_to_new_session()
        elif result.kind == SWITCH_SESSION and result.session_id:
            chat_history.switch_session(ctx.history, result.session_id)
            ctx.save_history()
            current = ctx.current_session
            if current is not None:
                renderer.render_session_change(current.name, len(current.messages))

    async def _submit(message: str) -> None:
        if input_queue.full():
            renderer.console.print("[yellow]Queue full (max 10 messages)[/yellow]")
            return
        queued = not ctx.idle.is_set()
        ctx.idle.clear()
        ctx.gate.mute()
        await input_queue.put((message, queued))

    async def _collect_input() -> None:
        """Keep the prompt running and queue every complete message."""
        while not exit_flag.is_set():
            try:
                line = await session.prompt_async(_prompt)
            except EOFError:
                exit_flag.set()
                return
            except KeyboardInterrupt:
                continue

            message = ctx.accumulator.feed(line)
            if message is None:
                continue
            text = message.strip()
            if not text:
                continue

            if "\n" not in text and is_command(text):
                await _run_command(text)
                continue
            await _submit(text)

    async def _turn_runner() -> None:
        """Stream queued messages one at a time."""
        while not exit_flag.is_set():
            message, queued = await input_queue.get()
            if queued:
                label = escape(format_prompt_label(ctx.mode))
                renderer.console.print(f"[{SLATE}]{label}[/]{escape(message)}")
            try:
                await _run_turn(ctx, orchestrator, message)
            finally:
                if input_queue.empty():
                    ctx.gate.unmute()
                    ctx.idle.set()
                    _redraw_prompt()

    current = ctx.current_session
    renderer.render_welcome(
        provider=config.provider.provider,
        model=config.provider.model if config.provider.provider == "openai" else config.provider.cli_command,
        mode=ctx.mode,
        session_name=current.name if current else "",
        version=__version__,
    )

    _add_signal_handler(loop, signal.SIGINT, _on_sigint)
    input_task = asyncio.create_task(_collect_input())
    runner_task = asyncio.create_task(_turn_runner())
    exit_wait = asyncio.create_task(exit_flag.wait())
    try:
        done, pending = await asyncio.wait(
            {input_task, runner_task, exit_wait}, return_when=asyncio.FIRST_COMPLETED
        )
        exit_flag.set()
        if ctx.cancel_event is not None:
            ctx.cancel_event.set()
        if session.app.is_running:
            session.app.exit(exception=EOFError())
        for t in pending:
            t.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for t in done:
            if t is not exit_wait and not t.cancelled() and t.exception() is not None:
                raise t.exception()  # type: ignore[misc]
    finally:
        _remove_signal_handler(loop, signal.SIGINT)
        ctx.gate.unmute()
        await _shutdown(ctx)
    return 0


async def _shutdown(ctx: SessionContext) -> None:
    renderer.console.print(f"[{CHROME}]Saving session...[/{CHROME}]")
    try:
        await _name_session(ctx, ctx.current_session)
    finally:
        ctx.save_history()
        await ctx.provider.close()


async def run_cli(
    config: AppConfig,
    prompt: str | None = None,
    new_session: bool = False,
    mode: str | None = None,
) -> int:
    """Entry point for both interactive and one-shot mode; returns the exit code."""
    ok, error, hint = validate_provider(config.provider)
    if not ok:
        renderer.render_error(error)
        if hint:
            renderer.render_info(hint)
        return 1

    ensure_data_dir(config)
    provider = create_provider(config.provider, mode or config.cli.default_mode)
    ctx = _build_context(config, provider, new_session, mode)
    logger.info("Starting %s with provider=%s mode=%s", "one-shot" if prompt else "REPL", config.provider.provider, ctx.mode)

    if prompt is not None:
        try:
            return await _run_one_shot(ctx, prompt)
        finally:
            await provider.close()
    return await _run_repl(ctx)
