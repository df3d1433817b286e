"""Slash commands for the planning REPL."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable

from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.document import Document

from ..services import chat_history
from . import renderer
from .plan import MODE_DESCRIPTIONS, PLAN_MODES, is_valid_mode
from .select import EXIT_SENTINEL, SelectOption, interactive_select
from .session_context import SessionContext

logger = logging.getLogger(__name__)

CONTINUE = "continue"
QUIT = "quit"
SEND = "send"
NEW_SESSION = "new_session"
SWITCH_SESSION = "switch_session"

NEW_SESSION_VALUE = "__NEW__"

_ALIASES: dict[str, str] = {
    "help": "help",
    "h": "help",
    "?": "help",
    "mode": "mode",
    "m": "mode",
    "sessions": "sessions",
    "ss": "sessions",
    "new": "new",
    "n": "new",
    "clear": "clear",
    "c": "clear",
    "history": "history",
    "hist": "history",
    "quit": "quit",
    "q": "quit",
    "exit": "quit",
}

COMMAND_NAMES: list[str] = [f"/{name}" for name in _ALIASES]


@dataclass(frozen=True)
class CommandResult:
    kind: str = CONTINUE
    message: str | None = None
    session_id: str | None = None


def is_command(text: str) -> bool:
    return text.strip().startswith("/")


def parse_command(text: str) -> tuple[str, str]:
    """``"/Mode refine"`` -> ``("mode", "refine")``."""
    name, _, args = text.strip()[1:].partition(" ")
    return name.lower(), args.strip()


async def handle_command(text: str, ctx: SessionContext) -> CommandResult:
    name, args = parse_command(text)
    command = _ALIASES.get(name)
    logger.debug("Command /%s -> %s", name, command)

    if command == "help":
        renderer.render_help()
        return CommandResult()
    if command == "mode":
        return await _handle_mode(args, ctx)
    if command == "sessions":
        return await _handle_sessions(ctx)
    if command == "new":
        return CommandResult(NEW_SESSION)
    if command == "clear":
        chat_history.clear_messages(ctx.history)
        ctx.save_history()
        renderer.render_info("Session cleared.")
        return CommandResult()
    if command == "history":
        return _handle_history(args, ctx)
    if command == "quit":
        return CommandResult(QUIT)

    renderer.render_error(f"Unknown command: /{name}")
    renderer.render_info("Type /help to see available commands.")
    return CommandResult()


async def _handle_mode(args: str, ctx: SessionContext) -> CommandResult:
    if not args:
        options = [SelectOption(label=m, value=m, meta=MODE_DESCRIPTIONS[m]) for m in PLAN_MODES]
        current = PLAN_MODES.index(ctx.mode) if ctx.mode in PLAN_MODES else 0
        with ctx.menu():
            choice = await interactive_select("Planning Modes", options, current)
        if choice in (EXIT_SENTINEL, None):
            return CommandResult()
        mode = str(choice)
    else:
        mode = args.lower()
        if not is_valid_mode(mode):
            renderer.render_error(f"Unknown mode: {args}")
            renderer.render_modes(ctx.mode)
            return CommandResult()

    ctx.set_mode(mode)
    renderer.render_mode_change(mode)
    return CommandResult()


def _session_options(ctx: SessionContext) -> list[SelectOption]:
    options = [SelectOption(label="+ New session", value=NEW_SESSION_VALUE)]
    for session in chat_history.sessions_by_date(ctx.history):
        count = len(session.messages)
        noun = "message" if count == 1 else "messages"
        label = f"{session.name} (current)" if session.id == ctx.history.current_session_id else session.name
        meta = f"({count} {noun}, {chat_history.format_relative_time(session.updated_at)})"
        options.append(SelectOption(label=label, value=session.id, meta=meta))
    return options


async def _handle_sessions(ctx: SessionContext) -> CommandResult:
    options = _session_options(ctx)
    current = next((i for i, o in enumerate(options) if o.value == ctx.history.current_session_id), 0)
    with ctx.menu():
        choice = await interactive_select("Planning Sessions", options, current)
    if choice in (EXIT_SENTINEL, None):
        return CommandResult()
    if choice == NEW_SESSION_VALUE:
        return CommandResult(NEW_SESSION)
    if choice == ctx.history.current_session_id:
        return CommandResult()
    return CommandResult(SWITCH_SESSION, session_id=choice)


def _handle_history(args: str, ctx: SessionContext) -> CommandResult:
    session = ctx.current_session
    messages = chat_history.filter_history_messages(session.messages if session else [])
    count = chat_history.parse_history_args(args)
    renderer.render_history(chat_history.format_history(messages, count))
    return CommandResult()


class CommandCompleter(Completer):
    """Tab completion for slash command names."""

    def __init__(self, commands: Iterable[str] = COMMAND_NAMES) -> None:
        self._commands = sorted(set(commands))

    def get_completions(self, document: Document, complete_event: Any) -> Any:
        text = document.text_before_cursor
        if not text.lstrip().startswith("/") or " " in text.strip():
            return
        word = document.get_word_before_cursor(WORD=True)
        for cmd in self._commands:
            if cmd.startswith(word):
                yield Completion(cmd, start_position=-len(word))
