"""Subprocess provider: drives an agent CLI that prints stream-json events.

The CLI is run once per turn as::

    <cli_command> --print --output-format stream-json --verbose \\
        --append-system-prompt <system prompt> <prompt>

Each stdout line is one JSON event. ``assistant`` events carry text and
``tool_use`` content blocks; a ``result`` event ends the turn.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Any

from ..cli.plan import build_planning_system_prompt
from ..config import ProviderConfig
from .provider import Provider, ProviderError, ToolCall

logger = logging.getLogger(__name__)

_STREAM_LIMIT = 16 * 1024 * 1024  # single stream-json lines can carry whole files
_TITLE_INSTRUCTIONS = (
    "Generate a short name (2-5 words) for this planning session. "
    "Reply with the name only, no quotes or punctuation.\n\n"
)


def parse_stream_event(line: str) -> dict[str, Any] | None:
    """Decode one stream-json line; blank or invalid lines yield None."""
    if not line.strip():
        return None
    try:
        event = json.loads(line)
    except json.JSONDecodeError:
        logger.debug("Skipping unparseable line: %.200s", line)
        return None
    return event if isinstance(event, dict) else None


def _content_blocks(event: dict[str, Any]) -> list[dict[str, Any]]:
    if event.get("type") != "assistant":
        return []
    message = event.get("message") or {}
    blocks = message.get("content") or []
    return [b for b in blocks if isinstance(b, dict)]


def extract_text(event: dict[str, Any]) -> str:
    return "".join(b["text"] for b in _content_blocks(event) if b.get("type") == "text" and b.get("text"))


def extract_tool_calls(event: dict[str, Any]) -> list[ToolCall]:
    calls = []
    for block in _content_blocks(event):
        if block.get("type") == "tool_use" and block.get("name"):
            args = block.get("input")
            calls.append(ToolCall(name=block["name"], args=args if isinstance(args, dict) else {}))
    return calls


def build_prompt(message: str, history: list[dict[str, Any]]) -> str:
    """Fold prior turns into a single prompt string."""
    context = ""
    for msg in history:
        role = msg.get("role")
        if role == "user":
            context += f"\nUser: {msg.get('content', '')}\n"
        elif role == "assistant":
            context += f"\nAssistant: {msg.get('content', '')}\n"
    return f"{context}\nUser: {message}" if context else message


class CliProvider(Provider):
    def __init__(self, config: ProviderConfig, mode: str = "new") -> None:
        super().__init__(mode)
        self.config = config
        self._proc: asyncio.subprocess.Process | None = None
        self._kill_handle: asyncio.TimerHandle | None = None
        self._content: list[str] = []
        self._finished = False
        self._cancelled = False

    def build_args(self, message: str, history: list[dict[str, Any]]) -> list[str]:
        return [
            "--print",
            "--output-format",
            "stream-json",
            "--verbose",
            "--append-system-prompt",
            build_planning_system_prompt(self.mode),
            build_prompt(message, history),
        ]

    def _emit_done(self) -> None:
        if self._finished:
            return
        self._finished = True
        self.events.emit("done", "".join(self._content), [])

    def _emit_error(self, error: Exception) -> None:
        if self._finished:
            return
        self._finished = True
        self.events.emit("error", error)

    def handle_line(self, line: str) -> None:
        event = parse_stream_event(line)
        if event is None:
            return
        kind = event.get("type")
        logger.debug("Event: %s%s", kind, f"/{event['subtype']}" if event.get("subtype") else "")
        if kind == "assistant":
            text = extract_text(event)
            if text:
                self._content.append(text)
                self.events.emit("text", text)
            for call in extract_tool_calls(event):
                self.events.emit("tool_call", call)
        elif kind == "result":
            self._emit_done()

    async def _read_stderr(self, stream: asyncio.StreamReader) -> None:
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                return
            text = chunk.decode("utf-8", errors="replace")
            logger.debug("stderr: %s", text.rstrip())
            if "Error:" in text or "error:" in text:
                self._emit_error(ProviderError(text.strip()))

    async def send(self, message: str, history: list[dict[str, Any]]) -> None:
        self._content = []
        self._finished = False
        self._cancelled = False
        self._streaming = True
        command = self.config.cli_command
        try:
            try:
                proc = await asyncio.create_subprocess_exec(
                    command,
                    *self.build_args(message, history),
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    env={**os.environ, "FORCE_COLOR": "0"},
                    limit=_STREAM_LIMIT,
                )
            except OSError as e:
                logger.error("Failed to start %s: %s", command, e)
                self._emit_error(ProviderError(f"Failed to start {command}: {e}"))
                return

            self._proc = proc
            logger.info("Spawned %s (pid %s)", command, proc.pid)
            assert proc.stdout is not None and proc.stderr is not None
            stderr_task = asyncio.ensure_future(self._read_stderr(proc.stderr))
            try:
                async for raw in proc.stdout:
                    self.handle_line(raw.decode("utf-8", errors="replace"))
                code = await proc.wait()
                await stderr_task
            except asyncio.CancelledError:
                if proc.returncode is None:
                    try:
                        proc.kill()
                    except ProcessLookupError:
                        pass
                    await proc.wait()
                logger.info("Send cancelled; killed pid %s", proc.pid)
                raise
            finally:
                if not stderr_task.done():
                    stderr_task.cancel()

            logger.info("%s exited with code %s", command, code)
            if self._cancelled:
                return
            if code != 0:
                self._emit_error(ProviderError(f"{command} exited with code {code}"))
            elif self._content:
                self._emit_done()
            else:
                logger.warning("%s finished without producing any content", command)
        finally:
            if self._kill_handle is not None:
                self._kill_handle.cancel()
                self._kill_handle = None
            self._proc = None
            self._streaming = False

    def cancel(self) -> None:
        proc = self._proc
        if proc is None or proc.returncode is not None:
            return
        self._cancelled = True
        try:
            proc.terminate()
        except ProcessLookupError:
            return
        logger.info("Sent SIGTERM to pid %s", proc.pid)
        loop = asyncio.get_running_loop()
        self._kill_handle = loop.call_later(self.config.kill_grace_seconds, self._force_kill, proc)

    @staticmethod
    def _force_kill(proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        try:
            proc.kill()
            logger.warning("Sent SIGKILL to pid %s", proc.pid)
        except ProcessLookupError:
            pass

    async def generate_title(self, context: str) -> str:
        proc = await asyncio.create_subprocess_exec(
            self.config.cli_command,
            "--print",
            _TITLE_INSTRUCTIONS + context,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env={**os.environ, "FORCE_COLOR": "0"},
        )
        try:
            stdout, _ = await proc.communicate()
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise
        if proc.returncode != 0:
            raise ProviderError(f"{self.config.cli_command} exited with code {proc.returncode}")
        return stdout.decode("utf-8", errors="replace").strip()
