"""Arrow-key menu read from raw keystrokes, with a numbered fallback off a TTY.

Callers must mute the prompt's output gate for the duration of the menu so
the line editor does not redraw over it.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import os
import sys
from dataclasses import dataclass
from typing import TextIO

logger = logging.getLogger(__name__)

EXIT_SENTINEL = "__EXIT__"

_BOLD = "\033[1m"
_DIM = "\033[2m"
_GREEN = "\033[32m"
_RST = "\033[0m"

CLEAR_LINE = "\033[2K"
HIDE_CURSOR = "\033[?25l"
SHOW_CURSOR = "\033[?25h"


def cursor_up(n: int) -> str:
    return f"\033[{n}A"


class SelectKey(enum.Enum):
    UP = "up"
    DOWN = "down"
    SELECT = "select"
    QUIT = "quit"
    INTERRUPT = "interrupt"
    IGNORE = "ignore"


_KEYMAP: dict[str, SelectKey] = {
    "\x1b[A": SelectKey.UP,
    "\x1bOA": SelectKey.UP,
    "k": SelectKey.UP,
    "\x1b[B": SelectKey.DOWN,
    "\x1bOB": SelectKey.DOWN,
    "j": SelectKey.DOWN,
    "\r": SelectKey.SELECT,
    "\n": SelectKey.SELECT,
    "q": SelectKey.QUIT,
    "\x1b": SelectKey.QUIT,
    "\x03": SelectKey.INTERRUPT,
}


@dataclass(frozen=True)
class SelectOption:
    label: str
    value: str | None
    meta: str = ""


def decode_key(data: str | bytes) -> SelectKey:
    if isinstance(data, bytes):
        data = data.decode("utf-8", errors="replace")
    return _KEYMAP.get(data, SelectKey.IGNORE)


def move_selection(index: int, key: SelectKey, count: int) -> int:
    """New highlighted index after ``key``; wraps at both ends."""
    if count <= 0:
        return 0
    if key is SelectKey.UP:
        return (index - 1) % count
    if key is SelectKey.DOWN:
        return (index + 1) % count
    return index


def render_menu(options: list[SelectOption], selected: int) -> list[str]:
    """Menu body lines: one per option, a blank line and the key hint."""
    lines = []
    for i, opt in enumerate(options):
        pointer = f"{_GREEN}>{_RST}" if i == selected else " "
        label = f"{_BOLD}{opt.label}{_RST}" if i == selected else opt.label
        meta = f" {_DIM}{opt.meta}{_RST}" if opt.meta else ""
        lines.append(f"{pointer} {label}{meta}")
    lines.append("")
    lines.append(f"{_DIM}  ↑/↓ to move, Enter to select, q to quit{_RST}")
    return lines


def _draw(out: TextIO, lines: list[str], redraw: bool) -> None:
    if redraw:
        out.write(cursor_up(len(lines)))
    for line in lines:
        out.write("\r" + CLEAR_LINE + line + "\n")
    out.flush()


def _read_key(fd: int) -> bytes:
    import termios
    import tty

    old_settings = termios.tcgetattr(fd)
    try:
        tty.setcbreak(fd)
        # Ctrl+C must arrive as a byte, not as SIGINT.
        attrs = termios.tcgetattr(fd)
        attrs[3] &= ~termios.ISIG
        termios.tcsetattr(fd, termios.TCSANOW, attrs)
        return os.read(fd, 16)
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, old_settings)


async def _numbered_select(
    title: str, options: list[SelectOption], default_index: int, out: TextIO
) -> str | None:
    out.write(f"\n{_BOLD}{title}{_RST}\n{'─' * 40}\n")
    for i, opt in enumerate(options):
        meta = f" {_DIM}{opt.meta}{_RST}" if opt.meta else ""
        out.write(f"  {_DIM}[{i + 1}]{_RST} {opt.label}{meta}\n")
    out.write("\n")
    out.flush()

    loop = asyncio.get_running_loop()
    try:
        answer = await loop.run_in_executor(None, input, f"Select [1-{len(options)}]: ")
    except EOFError:
        return EXIT_SENTINEL
    try:
        number = int(answer.strip())
    except ValueError:
        return options[default_index].value
    if 1 <= number <= len(options):
        return options[number - 1].value
    return options[default_index].value


async def interactive_select(
    title: str,
    options: list[SelectOption],
    default_index: int = 0,
    stream: TextIO | None = None,
    stdin: TextIO | None = None,
) -> str | None:
    """Return the chosen option's value, or ``EXIT_SENTINEL`` when the user quits.

    Raises KeyboardInterrupt on Ctrl+C.
    """
    if not options:
        return EXIT_SENTINEL
    out = stream or sys.stdout
    inp = stdin or sys.stdin
    selected = max(0, min(default_index, len(options) - 1))

    if sys.platform == "win32" or not inp.isatty():
        return await _numbered_select(title, options, selected, out)

    fd = inp.fileno()
    loop = asyncio.get_running_loop()
    out.write(f"\n{_BOLD}{title}{_RST}\n{'─' * 40}\n{HIDE_CURSOR}")
    _draw(out, render_menu(options, selected), redraw=False)
    try:
        while True:
            data = await loop.run_in_executor(None, _read_key, fd)
            key = decode_key(data)
            if key is SelectKey.SELECT:
                return options[selected].value
            if key is SelectKey.QUIT:
                return EXIT_SENTINEL
            if key is SelectKey.INTERRUPT:
                raise KeyboardInterrupt
            if key is SelectKey.IGNORE:
                continue
            selected = move_selection(selected, key, len(options))
            _draw(out, render_menu(options, selected), redraw=True)
    finally:
        out.write(SHOW_CURSOR + "\n")
        out.flush()
        logger.debug("Selection menu closed: %s", title)
