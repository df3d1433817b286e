"""Tests for slash command handling."""

from __future__ import annotations

import io
from unittest.mock import AsyncMock, patch

import pytest
from prompt_toolkit.completion import CompleteEvent
from prompt_toolkit.document import Document

from planterm.cli import commands
from planterm.cli.commands import (
    CONTINUE,
    NEW_SESSION,
    NEW_SESSION_VALUE,
    QUIT,
    SWITCH_SESSION,
    CommandCompleter,
    handle_command,
    is_command,
    parse_command,
)
from planterm.cli.select import EXIT_SENTINEL
from planterm.cli.session_context import SessionContext
from planterm.services import chat_history
from planterm.services.chat_history import ChatMessage


class TestParsing:
    def test_is_command(self) -> None:
        assert is_command("/help")
        assert is_command("  /mode refine")
        assert not is_command("plan /etc layout")

    def test_parse(self) -> None:
        assert parse_command("/Mode  refine ") == ("mode", "refine")
        assert parse_command("/quit") == ("quit", "")


class TestSimpleCommands:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["/quit", "/q", "/exit"])
    async def test_quit(self, ctx: SessionContext, text: str) -> None:
        assert (await handle_command(text, ctx)).kind == QUIT

    @pytest.mark.asyncio
    async def test_new(self, ctx: SessionContext) -> None:
        assert (await handle_command("/new", ctx)).kind == NEW_SESSION

    @pytest.mark.asyncio
    async def test_help(self, ctx: SessionContext, rendered: io.StringIO) -> None:
        result = await handle_command("/help", ctx)
        assert result.kind == CONTINUE
        assert "/sessions" in rendered.getvalue()

    @pytest.mark.asyncio
    async def test_unknown(self, ctx: SessionContext, rendered: io.StringIO) -> None:
        result = await handle_command("/frobnicate", ctx)
        assert result.kind == CONTINUE
        assert "Unknown command: /frobnicate" in rendered.getvalue()
        assert "/help" in rendered.getvalue()

    @pytest.mark.asyncio
    async def test_clear(self, ctx: SessionContext, rendered: io.StringIO) -> None:
        chat_history.add_message(ctx.history, ChatMessage("user", "hello"))
        await handle_command("/clear", ctx)
        session = ctx.current_session
        assert session is not None
        assert session.messages == []
        assert chat_history.history_path(ctx.config.app.data_dir).exists()
        assert "Session cleared." in rendered.getvalue()


class TestMode:
    @pytest.mark.asyncio
    async def test_set_by_name(self, ctx: SessionContext, rendered: io.StringIO) -> None:
        await handle_command("/mode Refine", ctx)
        assert ctx.mode == "refine"
        ctx.provider.set_mode.assert_called_with("refine")
        assert "Mode:" in rendered.getvalue()

    @pytest.mark.asyncio
    async def test_invalid_name_lists_modes(self, ctx: SessionContext, rendered: io.StringIO) -> None:
        await handle_command("/mode dance", ctx)
        assert ctx.mode == "new"
        output = rendered.getvalue()
        assert "Unknown mode: dance" in output
        assert "breakdown" in output

    @pytest.mark.asyncio
    async def test_menu_pick(self, ctx: SessionContext, rendered: io.StringIO) -> None:
        picker = AsyncMock(return_value="sweep")
        with patch.object(commands, "interactive_select", picker):
            await handle_command("/m", ctx)
        assert ctx.mode == "sweep"
        assert not ctx.gate.muted
        options = picker.await_args.args[1]
        assert [o.value for o in options][:2] == ["new", "refine"]

    @pytest.mark.asyncio
    async def test_menu_quit_keeps_mode(self, ctx: SessionContext) -> None:
        with patch.object(commands, "interactive_select", AsyncMock(return_value=EXIT_SENTINEL)):
            result = await handle_command("/mode", ctx)
        assert result.kind == CONTINUE
        assert ctx.mode == "new"

    @pytest.mark.asyncio
    async def test_menu_mutes_gate(self, ctx: SessionContext) -> None:
        seen: list[bool] = []

        async def picker(*_args: object, **_kwargs: object) -> str:
            seen.append(ctx.gate.muted)
            return "new"

        with patch.object(commands, "interactive_select", picker):
            await handle_command("/mode", ctx)
        assert seen == [True]


class TestSessions:
    def _two_sessions(self, ctx: SessionContext) -> tuple[str, str]:
        first = chat_history.create_session(ctx.history, "First")
        first.updated_at = 1
        second = chat_history.create_session(ctx.history, "Second")
        second.updated_at = 2
        return first.id, second.id

    @pytest.mark.asyncio
    async def test_switch(self, ctx: SessionContext) -> None:
        first_id, _ = self._two_sessions(ctx)
        picker = AsyncMock(return_value=first_id)
        with patch.object(commands, "interactive_select", picker):
            result = await handle_command("/sessions", ctx)
        assert result.kind == SWITCH_SESSION
        assert result.session_id == first_id
        options = picker.await_args.args[1]
        assert options[0].value == NEW_SESSION_VALUE
        assert options[1].label == "Second (current)"
        assert picker.await_args.args[2] == 1

    @pytest.mark.asyncio
    async def test_pick_current_is_noop(self, ctx: SessionContext) -> None:
        _, second_id = self._two_sessions(ctx)
        with patch.object(commands, "interactive_select", AsyncMock(return_value=second_id)):
            result = await handle_command("/ss", ctx)
        assert result.kind == CONTINUE

    @pytest.mark.asyncio
    async def test_new_from_menu(self, ctx: SessionContext) -> None:
        self._two_sessions(ctx)
        with patch.object(commands, "interactive_select", AsyncMock(return_value=NEW_SESSION_VALUE)):
            result = await handle_command("/sessions", ctx)
        assert result.kind == NEW_SESSION

    @pytest.mark.asyncio
    async def test_quit_menu(self, ctx: SessionContext) -> None:
        self._two_sessions(ctx)
        with patch.object(commands, "interactive_select", AsyncMock(return_value=EXIT_SENTINEL)):
            result = await handle_command("/sessions", ctx)
        assert result.kind == CONTINUE


class TestHistory:
    @pytest.mark.asyncio
    async def test_empty(self, ctx: SessionContext, rendered: io.StringIO) -> None:
        await handle_command("/history", ctx)
        assert "No messages" in rendered.getvalue()

    @pytest.mark.asyncio
    async def test_shows_messages(self, ctx: SessionContext, rendered: io.StringIO) -> None:
        for i in range(4):
            chat_history.add_message(ctx.history, ChatMessage("user", f"note {i}"))
        await handle_command("/history 2", ctx)
        output = rendered.getvalue()
        assert "last 2 messages" in output
        assert "note 3" in output
        assert "note 1" not in output


class TestCompleter:
    def _complete(self, text: str) -> list[str]:
        completer = CommandCompleter()
        return [c.text for c in completer.get_completions(Document(text), CompleteEvent())]

    def test_completes_prefix(self) -> None:
        found = self._complete("/se")
        assert found == ["/sessions"]

    def test_no_completion_for_plain_text(self) -> None:
        assert self._complete("hello") == []

    def test_no_completion_after_argument(self) -> None:
        assert self._complete("/mode re") == []
