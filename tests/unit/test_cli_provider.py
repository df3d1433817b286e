"""Tests for the stream-json subprocess provider."""

from __future__ import annotations

import asyncio
import json
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest

from planterm.config import ProviderConfig
from planterm.services.cli_provider import (
    CliProvider,
    build_prompt,
    extract_text,
    extract_tool_calls,
    parse_stream_event,
)
from planterm.services.provider import ProviderError, ToolCall


def _assistant(*blocks: dict[str, Any]) -> str:
    return json.dumps({"type": "assistant", "message": {"content": list(blocks)}})


RESULT = json.dumps({"type": "result", "subtype": "success"})


class _Stdout:
    def __init__(self, lines: list[str], hang: asyncio.Event | None = None) -> None:
        self._lines = [line.encode() + b"\n" for line in lines]
        self._hang = hang

    def __aiter__(self) -> _Stdout:
        return self

    async def __anext__(self) -> bytes:
        if self._lines:
            return self._lines.pop(0)
        if self._hang is not None:
            await self._hang.wait()
        raise StopAsyncIteration


class _Stderr:
    def __init__(self, data: bytes = b"") -> None:
        self._data = data

    async def read(self, _n: int) -> bytes:
        data, self._data = self._data, b""
        return data


class _Proc:
    pid = 4242

    def __init__(self, lines: list[str], code: int = 0, stderr: bytes = b"", hang: bool = False) -> None:
        self._closed = asyncio.Event()
        self.stdout = _Stdout(lines, self._closed if hang else None)
        self.stderr = _Stderr(stderr)
        self._code = code
        self.returncode: int | None = None
        self.terminated = False
        self.killed = False

    async def wait(self) -> int:
        self.returncode = self._code
        return self._code

    def terminate(self) -> None:
        self.terminated = True
        self._code = -15
        self._closed.set()

    def kill(self) -> None:
        self.killed = True
        self._code = -9
        self._closed.set()


def _provider(**overrides: Any) -> CliProvider:
    config = ProviderConfig(provider="cli", cli_command="agent", **overrides)
    return CliProvider(config)


def _record(provider: CliProvider) -> list[tuple[str, Any]]:
    events: list[tuple[str, Any]] = []
    provider.events.on("text", lambda t: events.append(("text", t)))
    provider.events.on("tool_call", lambda c: events.append(("tool_call", c)))
    provider.events.on("done", lambda content, calls: events.append(("done", content)))
    provider.events.on("error", lambda e: events.append(("error", e)))
    return events


class TestParsing:
    def test_blank_and_invalid_lines(self) -> None:
        assert parse_stream_event("") is None
        assert parse_stream_event("   ") is None
        assert parse_stream_event("not json") is None
        assert parse_stream_event("[1, 2]") is None

    def test_text_blocks_joined(self) -> None:
        event = json.loads(_assistant({"type": "text", "text": "a"}, {"type": "text", "text": "b"}))
        assert extract_text(event) == "ab"

    def test_tool_use_blocks(self) -> None:
        event = json.loads(
            _assistant(
                {"type": "tool_use", "name": "Read", "input": {"file_path": "x.py"}},
                {"type": "tool_use", "name": "Bash", "input": "oops"},
                {"type": "tool_use", "input": {}},
            )
        )
        assert extract_tool_calls(event) == [ToolCall("Read", {"file_path": "x.py"}), ToolCall("Bash", {})]

    def test_non_assistant_has_no_content(self) -> None:
        assert extract_text({"type": "system", "message": {"content": [{"type": "text", "text": "x"}]}}) == ""


class TestBuildPrompt:
    def test_no_history(self) -> None:
        assert build_prompt("plan it", []) == "plan it"

    def test_history_folded(self) -> None:
        history = [
            {"role": "user", "content": "first"},
            {"role": "assistant", "content": "reply"},
            {"role": "system", "content": "ignored"},
        ]
        assert build_prompt("next", history) == "\nUser: first\n\nAssistant: reply\n\nUser: next"

    def test_args_include_mode_prompt(self) -> None:
        provider = _provider()
        provider.set_mode("critique")
        args = provider.build_args("hi", [])
        assert args[:5] == ["--print", "--output-format", "stream-json", "--verbose", "--append-system-prompt"]
        assert 'name="critique"' in args[5]
        assert args[6] == "hi"


class TestHandleLine:
    def test_text_and_tools_emitted_in_order(self) -> None:
        provider = _provider()
        events = _record(provider)
        provider.handle_line(
            _assistant({"type": "text", "text": "Looking"}, {"type": "tool_use", "name": "Grep", "input": {"pattern": "x"}})
        )
        assert events == [("text", "Looking"), ("tool_call", ToolCall("Grep", {"pattern": "x"}))]

    def test_result_emits_done_once(self) -> None:
        provider = _provider()
        events = _record(provider)
        provider.handle_line(_assistant({"type": "text", "text": "hi"}))
        provider.handle_line(RESULT)
        provider.handle_line(RESULT)
        assert events == [("text", "hi"), ("done", "hi")]

    def test_garbage_ignored(self) -> None:
        provider = _provider()
        events = _record(provider)
        provider.handle_line("{broken")
        assert events == []


class TestSend:
    @pytest.mark.asyncio
    async def test_successful_run(self) -> None:
        provider = _provider()
        events = _record(provider)
        proc = _Proc([_assistant({"type": "text", "text": "Plan:"}), RESULT])
        spawn = AsyncMock(return_value=proc)
        with patch("planterm.services.cli_provider.asyncio.create_subprocess_exec", spawn):
            await provider.send("hi", [])
        assert events == [("text", "Plan:"), ("done", "Plan:")]
        assert spawn.await_args.args[0] == "agent"
        assert spawn.await_args.kwargs["env"]["FORCE_COLOR"] == "0"
        assert not provider.is_streaming

    @pytest.mark.asyncio
    async def test_done_on_clean_exit_without_result(self) -> None:
        provider = _provider()
        events = _record(provider)
        proc = _Proc([_assistant({"type": "text", "text": "partial"})])
        with patch("planterm.services.cli_provider.asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            await provider.send("hi", [])
        assert events[-1] == ("done", "partial")

    @pytest.mark.asyncio
    async def test_nonzero_exit_is_error(self) -> None:
        provider = _provider()
        events = _record(provider)
        proc = _Proc([], code=2)
        with patch("planterm.services.cli_provider.asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            await provider.send("hi", [])
        assert len(events) == 1
        kind, error = events[0]
        assert kind == "error"
        assert "exited with code 2" in str(error)

    @pytest.mark.asyncio
    async def test_stderr_error_reported(self) -> None:
        provider = _provider()
        events = _record(provider)
        proc = _Proc([], code=1, stderr=b"Error: not logged in\n")
        with patch("planterm.services.cli_provider.asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            await provider.send("hi", [])
        assert [kind for kind, _ in events] == ["error"]
        assert "not logged in" in str(events[0][1])

    @pytest.mark.asyncio
    async def test_spawn_failure(self) -> None:
        provider = _provider()
        events = _record(provider)
        spawn = AsyncMock(side_effect=FileNotFoundError("agent"))
        with patch("planterm.services.cli_provider.asyncio.create_subprocess_exec", spawn):
            await provider.send("hi", [])
        assert events[0][0] == "error"
        assert isinstance(events[0][1], ProviderError)

    @pytest.mark.asyncio
    async def test_cancel_terminates_quietly(self) -> None:
        provider = _provider(kill_grace_seconds=5.0)
        events = _record(provider)
        proc = _Proc([_assistant({"type": "text", "text": "working"})], hang=True)
        with patch("planterm.services.cli_provider.asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            task = asyncio.create_task(provider.send("hi", []))
            while not events:
                await asyncio.sleep(0)
            provider.cancel()
            await task
        assert proc.terminated
        assert not proc.killed
        assert events == [("text", "working")]

    @pytest.mark.asyncio
    async def test_cancelled_send_kills_process(self) -> None:
        provider = _provider()
        events = _record(provider)
        proc = _Proc([_assistant({"type": "text", "text": "working"})], hang=True)
        with patch("planterm.services.cli_provider.asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            task = asyncio.create_task(provider.send("hi", []))
            while not events:
                await asyncio.sleep(0)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
        assert proc.killed
        assert proc.returncode == -9
        assert not provider.is_streaming
        assert events == [("text", "working")]

    def test_cancel_without_process_is_noop(self) -> None:
        _provider().cancel()


class TestGenerateTitle:
    @pytest.mark.asyncio
    async def test_returns_stripped_stdout(self) -> None:
        proc = AsyncMock()
        proc.communicate = AsyncMock(return_value=(b"  Billing Export \n", b""))
        proc.returncode = 0
        spawn = AsyncMock(return_value=proc)
        with patch("planterm.services.cli_provider.asyncio.create_subprocess_exec", spawn):
            title = await _provider().generate_title("User: billing")
        assert title == "Billing Export"
        assert spawn.await_args.args[1] == "--print"
        assert spawn.await_args.args[2].endswith("User: billing")

    @pytest.mark.asyncio
    async def test_failure_raises(self) -> None:
        proc = AsyncMock()
        proc.communicate = AsyncMock(return_value=(b"", b"boom"))
        proc.returncode = 1
        with patch("planterm.services.cli_provider.asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            with pytest.raises(ProviderError):
                await _provider().generate_title("ctx")
