"""Progress indicators: the "Thinking..." spinner and per-tool-call lines.

Indicators write straight to the terminal stream, bypassing the output gate,
so the line editor must be muted while one is on screen.
"""

from __future__ import annotations

import abc
import asyncio
import shutil
import sys
from dataclasses import dataclass
from typing import Any, TextIO

# ANSI codes (inlined; indicator output is written raw, not through Rich)
_CYAN = "\033[36m"
_GREEN = "\033[32m"
_RED = "\033[31m"
_YELLOW = "\033[33m"
_DIM = "\033[2m"
_RST = "\033[0m"
_CLEAR_LINE = "\r\033[K"

SUCCESS_GLYPH = "✓"
FAILURE_GLYPH = "✗"

_DEFAULT_COLUMNS = 120
_MIN_ARGS_WIDTH = 20


@dataclass(frozen=True)
class SpinnerFrames:
    frames: tuple[str, ...]
    interval: float  # seconds


SPINNERS: dict[str, SpinnerFrames] = {
    "dots": SpinnerFrames(("⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏"), 0.08),
    "moon": SpinnerFrames(("🌑", "🌒", "🌓", "🌔", "🌕", "🌖", "🌗", "🌘"), 0.08),
    "clock": SpinnerFrames(("🕛", "🕐", "🕑", "🕒", "🕓", "🕔", "🕕", "🕖", "🕗", "🕘", "🕙", "🕚"), 0.1),
    "earth": SpinnerFrames(("🌍", "🌎", "🌏"), 0.18),
    "arc": SpinnerFrames(("◜", "◠", "◝", "◞", "◡", "◟"), 0.1),
}


def get_spinner(name: str) -> SpinnerFrames:
    """Look up a spinner by name, falling back to ``dots``."""
    return SPINNERS.get(name, SPINNERS["dots"])


# ---------------------------------------------------------------------------
# Tool call line formatting
# ---------------------------------------------------------------------------


def _terminal_columns() -> int:
    return shutil.get_terminal_size((_DEFAULT_COLUMNS, 24)).columns or _DEFAULT_COLUMNS


def _truncate(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


def format_tool_call_line(tool_name: str, args: str, indicator: str, columns: int | None = None) -> str:
    """Format ``  [Tool] X args`` with the args fitted to the terminal width.

    The args portion never shrinks below 20 characters, however narrow the
    terminal. Unknown width is treated as 120 columns.
    """
    cols = columns or _terminal_columns()
    # "  [" + name + "] " + indicator + " "
    prefix_len = 2 + 1 + len(tool_name) + 1 + 1 + 1 + 1
    max_args = max(_MIN_ARGS_WIDTH, cols - prefix_len)
    shown = _truncate(args, max_args) if args else ""

    if indicator == SUCCESS_GLYPH:
        glyph = f"{_GREEN}{indicator}{_RST}"
    elif indicator == FAILURE_GLYPH:
        glyph = f"{_RED}{indicator}{_RST}"
    else:
        glyph = f"{_CYAN}{indicator}{_RST}"

    suffix = f" {_DIM}{shown}{_RST}" if shown else ""
    return f"  {_YELLOW}[{tool_name}]{_RST} {glyph}{suffix}"


_TOOL_ARG_KEYS: dict[str, tuple[str, ...]] = {
    "bash": ("command",),
    "read": ("filePath", "file_path", "path"),
    "write": ("filePath", "file_path", "path"),
    "edit": ("filePath", "file_path", "path"),
    "grep": ("pattern",),
    "glob": ("pattern",),
}


def tool_display_name(tool_name: str) -> str:
    """``mcp_bash`` -> ``Bash``."""
    name = tool_name.removeprefix("mcp_")
    return name[:1].upper() + name[1:]


def format_tool_args(tool_name: str, args: dict[str, Any] | None = None) -> str:
    """Pick the one argument worth showing on a tool call line."""
    if not args:
        return ""
    keys = _TOOL_ARG_KEYS.get(tool_name.removeprefix("mcp_").lower(), ())
    for key in keys:
        value = args.get(key)
        if value:
            return str(value)
    for value in args.values():
        if isinstance(value, str) and value:
            return value
    return ""


# ---------------------------------------------------------------------------
# Indicators
# ---------------------------------------------------------------------------


class _Indicator(abc.ABC):
    """Shared frame/timer state. ``stop`` is a one-way latch per instance."""

    def __init__(self, frames: SpinnerFrames, stream: TextIO | None = None) -> None:
        self._frames = frames
        self._stream = stream
        self._index = 0
        self._running = False
        self._stopped = False
        self._ticker: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def stopped(self) -> bool:
        return self._stopped

    def _write(self, text: str) -> None:
        out = self._stream or sys.stdout
        out.write(text)
        out.flush()

    def _frame(self) -> str:
        return self._frames.frames[self._index]

    @abc.abstractmethod
    def _render_frame(self) -> str:
        """The full line for the current frame, without a leading carriage return."""

    async def _tick(self) -> None:
        """Background task that advances the frame every interval."""
        try:
            while True:
                await asyncio.sleep(self._frames.interval)
                self._index = (self._index + 1) % len(self._frames.frames)
                self._write("\r" + self._render_frame())
        except asyncio.CancelledError:
            return

    def _start(self) -> bool:
        if self._running or self._stopped:
            return False
        self._running = True
        self._index = 0
        self._write(self._render_frame())
        try:
            loop = asyncio.get_running_loop()
            self._ticker = loop.create_task(self._tick())
        except RuntimeError:
            self._ticker = None
        return True

    def _halt(self) -> bool:
        if self._stopped:
            return False
        self._stopped = True
        was_running = self._running
        self._running = False
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None
        return was_running


class ThinkingIndicator(_Indicator):
    """Animated ``Thinking...`` line, cleared entirely when stopped."""

    def __init__(
        self,
        frames: SpinnerFrames | None = None,
        stream: TextIO | None = None,
        label: str = "Thinking...",
    ) -> None:
        super().__init__(frames or SPINNERS["dots"], stream)
        self._label = label

    def _render_frame(self) -> str:
        return f"{_CYAN}{self._frame()}{_RST} {self._label}"

    def start(self) -> None:
        self._start()

    def stop(self) -> None:
        if self._halt():
            self._write(_CLEAR_LINE)


class ToolIndicator(_Indicator):
    """One tool invocation: spinning while running, then a persistent ✓/✗ line."""

    def __init__(
        self,
        tool_name: str,
        args: str = "",
        stream: TextIO | None = None,
        frames: SpinnerFrames | None = None,
        columns: int | None = None,
    ) -> None:
        super().__init__(frames or SPINNERS["dots"], stream)
        self.tool_name = tool_name
        self.args = args
        self._columns = columns

    def _render_frame(self) -> str:
        return format_tool_call_line(self.tool_name, self.args, self._frame(), self._columns)

    def start(self) -> None:
        self._start()

    def stop(self, success: bool = True) -> None:
        if not self._halt():
            return
        glyph = SUCCESS_GLYPH if success else FAILURE_GLYPH
        self._write("\r" + format_tool_call_line(self.tool_name, self.args, glyph, self._columns) + "\n")
