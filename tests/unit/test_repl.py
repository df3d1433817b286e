"""Tests for the REPL turn plumbing and one-shot mode."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from planterm.cli import repl
from planterm.cli.session_context import SessionContext
from planterm.config import AppConfig, AppSettings, CliConfig, ProviderConfig
from planterm.services import chat_history
from planterm.services.chat_history import ChatHistoryState, ChatMessage, ChatSession
from planterm.services.provider import Provider, ProviderError


class EchoProvider(Provider):
    def __init__(self, fail: bool = False) -> None:
        super().__init__()
        self.fail = fail
        self.seen_history: list[list[dict[str, Any]]] = []
        self.generate_title = AsyncMock(return_value="Echo Chamber")  # type: ignore[method-assign]
        self.close = AsyncMock()  # type: ignore[method-assign]

    async def send(self, message: str, history: list[dict[str, Any]]) -> None:
        self.seen_history.append(list(history))
        if self.fail:
            self.events.emit("error", ProviderError("down"))
            return
        self.events.emit("text", f"echo {message}\n")
        self.events.emit("done", f"echo {message}\n", [])

    def cancel(self) -> None:
        pass


def _config(tmp_path: Path) -> AppConfig:
    return AppConfig(
        provider=ProviderConfig(provider="cli", cli_command="agent"),
        app=AppSettings(data_dir=tmp_path),
        cli=CliConfig(),
    )


class TestTrimHistoryFile:
    def _entries(self, n: int) -> str:
        return "".join(f"\n# 2024-01-01 00:00:0{i % 10}\n+entry {i}\n" for i in range(n))

    def test_missing_file(self, tmp_path: Path) -> None:
        repl.trim_history_file(tmp_path / "nope", 10)

    def test_small_file_untouched(self, tmp_path: Path) -> None:
        path = tmp_path / "history"
        path.write_text(self._entries(2))
        repl.trim_history_file(path, 100)
        assert path.read_text() == self._entries(2)

    def test_keeps_whole_newest_entries(self, tmp_path: Path) -> None:
        path = tmp_path / "history"
        path.write_text(self._entries(10))
        repl.trim_history_file(path, 7)
        text = path.read_text()
        assert text.startswith("\n# ")
        assert "+entry 9" in text
        assert "+entry 8" in text
        assert "+entry 0" not in text
        assert len(text.splitlines()) <= 7


class TestBuildContext:
    def test_creates_session_when_none(self, tmp_path: Path) -> None:
        ctx = repl._build_context(_config(tmp_path), EchoProvider(), new_session=False, mode=None)
        assert ctx.current_session is not None
        assert ctx.mode == "new"

    def test_resumes_saved_session(self, tmp_path: Path) -> None:
        state = ChatHistoryState()
        session = chat_history.create_session(state, "Saved")
        chat_history.save_chat_history(state, tmp_path)
        ctx = repl._build_context(_config(tmp_path), EchoProvider(), new_session=False, mode="refine")
        assert ctx.current_session is not None
        assert ctx.current_session.id == session.id
        assert ctx.mode == "refine"

    def test_new_session_flag(self, tmp_path: Path) -> None:
        state = ChatHistoryState()
        session = chat_history.create_session(state, "Saved")
        chat_history.save_chat_history(state, tmp_path)
        ctx = repl._build_context(_config(tmp_path), EchoProvider(), new_session=True, mode=None)
        assert ctx.current_session is not None
        assert ctx.current_session.id != session.id
        assert len(ctx.history.sessions) == 2


class TestRunTurn:
    @pytest.mark.asyncio
    async def test_persists_both_sides(self, tmp_path: Path) -> None:
        provider = EchoProvider()
        ctx = repl._build_context(_config(tmp_path), provider, new_session=False, mode=None)
        orchestrator = repl._make_orchestrator(ctx)
        await repl._run_turn(ctx, orchestrator, "one")
        await repl._run_turn(ctx, orchestrator, "two")

        session = ctx.current_session
        assert session is not None
        assert [(m.role, m.content) for m in session.messages] == [
            ("user", "one"),
            ("assistant", "echo one\n"),
            ("user", "two"),
            ("assistant", "echo two\n"),
        ]
        assert provider.seen_history[0] == []
        assert provider.seen_history[1] == [
            {"role": "user", "content": "one"},
            {"role": "assistant", "content": "echo one\n"},
        ]
        assert not ctx.streaming
        saved = chat_history.load_chat_history(tmp_path)
        assert len(saved.sessions[0].messages) == 4

    @pytest.mark.asyncio
    async def test_failed_turn_keeps_only_user_message(self, tmp_path: Path) -> None:
        provider = EchoProvider(fail=True)
        ctx = repl._build_context(_config(tmp_path), provider, new_session=False, mode=None)
        result = await repl._run_turn(ctx, repl._make_orchestrator(ctx), "hello")
        assert not result.ok
        session = ctx.current_session
        assert session is not None
        assert [m.role for m in session.messages] == ["user"]


class TestNameSession:
    @pytest.mark.asyncio
    async def test_renames_default_named_session(self, tmp_path: Path) -> None:
        provider = EchoProvider()
        ctx = repl._build_context(_config(tmp_path), provider, new_session=False, mode=None)
        session = ctx.ensure_session()
        chat_history.add_message(ctx.history, ChatMessage("user", "billing export"))
        await repl._name_session(ctx, session)
        assert session.name == "Echo Chamber"

    @pytest.mark.asyncio
    async def test_keeps_custom_name(self, tmp_path: Path) -> None:
        provider = EchoProvider()
        ctx = repl._build_context(_config(tmp_path), provider, new_session=False, mode=None)
        session = ctx.ensure_session()
        chat_history.rename_session(ctx.history, session.id, "Mine")
        chat_history.add_message(ctx.history, ChatMessage("user", "x"))
        await repl._name_session(ctx, session)
        assert session.name == "Mine"
        provider.generate_title.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_skips_empty_session(self, tmp_path: Path) -> None:
        provider = EchoProvider()
        ctx = repl._build_context(_config(tmp_path), provider, new_session=False, mode=None)
        await repl._name_session(ctx, ctx.current_session)
        provider.generate_title.assert_not_awaited()


class TestRunCli:
    @pytest.mark.asyncio
    async def test_invalid_provider_returns_one(self, tmp_path: Path, rendered: Any) -> None:
        with patch("shutil.which", return_value=None):
            code = await repl.run_cli(_config(tmp_path), prompt="hi")
        assert code == 1
        assert "agent not found" in rendered.getvalue()

    @pytest.mark.asyncio
    async def test_one_shot_does_not_persist(self, tmp_path: Path, rendered: Any) -> None:
        provider = EchoProvider()

        async def no_escape(_event: asyncio.Event) -> None:
            return None

        with (
            patch("shutil.which", return_value="/usr/bin/agent"),
            patch.object(repl, "create_provider", return_value=provider),
            patch.object(repl, "_watch_for_escape", no_escape),
            patch.object(repl, "StreamOrchestrator", wraps=repl.StreamOrchestrator) as orch_cls,
        ):
            code = await repl.run_cli(_config(tmp_path), prompt="plan it")
        assert code == 0
        assert provider.seen_history == [[]]
        assert orch_cls.call_args.kwargs["on_complete"] is None
        provider.close.assert_awaited_once()
        assert not chat_history.history_path(tmp_path).exists()

    @pytest.mark.asyncio
    async def test_one_shot_error_exit_code(self, tmp_path: Path, rendered: Any) -> None:
        provider = EchoProvider(fail=True)

        async def no_escape(_event: asyncio.Event) -> None:
            return None

        with (
            patch("shutil.which", return_value="/usr/bin/agent"),
            patch.object(repl, "create_provider", return_value=provider),
            patch.object(repl, "_watch_for_escape", no_escape),
        ):
            code = await repl.run_cli(_config(tmp_path), prompt="plan it")
        assert code == 1


class TestShutdown:
    @pytest.mark.asyncio
    async def test_names_saves_and_closes(self, tmp_path: Path, rendered: Any) -> None:
        provider = EchoProvider()
        ctx = repl._build_context(_config(tmp_path), provider, new_session=False, mode=None)
        chat_history.add_message(ctx.history, ChatMessage("user", "hello"))
        await repl._shutdown(ctx)
        provider.close.assert_awaited_once()
        saved = chat_history.load_chat_history(tmp_path)
        assert saved.sessions[0].name == "Echo Chamber"
