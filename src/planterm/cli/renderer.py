"""Rich-based terminal output for the planning REPL (everything except streamed text)."""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape
from rich.text import Text

from .plan import DEFAULT_MODE, MODE_DESCRIPTIONS

console = Console(highlight=False)

# ---------------------------------------------------------------------------
# Color palette, explicit values for readability on dark terminals.
# ---------------------------------------------------------------------------

GOLD = "#C5A059"  # accents, banner
SLATE = "#94A3B8"  # labels ("You:", assistant label)
MUTED = "#8b8b8b"  # secondary text (timestamps, hints, cancellation notice)
CHROME = "#6b7280"  # UI chrome (status messages)
ERROR_RED = "#CD6B6B"

_BOX_TOP = "╭" + "─" * 29 + "╮"
_BOX_BOT = "╰" + "─" * 29 + "╯"
_SEP = " · "


def render_error(message: str, target: Console | None = None) -> None:
    (target or console).print(f"\n[red bold]Error:[/red bold] {escape(message)}")


def render_info(message: str) -> None:
    console.print(f"  [{CHROME}]{escape(message)}[/{CHROME}]")


def render_cancelled(target: Console | None = None) -> None:
    (target or console).print(Text("\n[Cancelled]", style=MUTED))


def render_welcome(
    provider: str,
    model: str,
    mode: str = DEFAULT_MODE,
    session_name: str = "",
    version: str = "",
) -> None:
    console.print()
    console.print(f"[{GOLD}]  {_BOX_TOP}[/]")
    console.print(f"[{GOLD}]  │       [bold]P L A N T E R M[/bold]       │[/]")
    console.print(f"[{GOLD}]  │   [{SLATE}]plan before you build[/]     │[/]")
    console.print(f"[{GOLD}]  {_BOX_BOT}[/]")
    console.print()

    if version:
        console.print(f"  [{MUTED}]v{escape(version)}[/{MUTED}]")
    parts = [escape(provider), escape(model), f"mode: {escape(mode)}"]
    console.print(f"  [{MUTED}]{_SEP.join(parts)}[/{MUTED}]")
    if session_name:
        console.print(f"  [{SLATE}]{escape(session_name)}[/]")
    console.print()
    console.print(f"  [{MUTED}]Type /help for commands[/{MUTED}]\n")


def render_help() -> None:
    m = MUTED
    console.print()
    console.print("  /mode [name]  /sessions  /new  /clear  /history [N|all]  /help  /quit")
    console.print(
        f"  Shift+Enter or \\ [{m}]newline[/]  Esc [{m}]cancel[/]  Ctrl+C [{m}]cancel · quit[/]  Ctrl+D [{m}]exit[/]"
    )
    console.print()


def render_modes(current: str) -> None:
    console.print()
    for name, description in MODE_DESCRIPTIONS.items():
        marker = "▸" if name == current else " "
        console.print(f"  {marker} [bold]{name:<11}[/bold] [{MUTED}]{escape(description)}[/{MUTED}]")
    console.print()


def render_mode_change(mode: str) -> None:
    console.print(f"  [{GOLD}]Mode:[/] {escape(mode)} [{MUTED}]{escape(MODE_DESCRIPTIONS.get(mode, ''))}[/{MUTED}]\n")


def render_session_change(name: str, message_count: int) -> None:
    noun = "message" if message_count == 1 else "messages"
    console.print(f"  [{GOLD}]Session:[/] {escape(name)} [{MUTED}]({message_count} {noun})[/{MUTED}]\n")


def render_history(lines: list[str]) -> None:
    if not lines:
        console.print(f"  [{MUTED}]No messages in this session yet.[/{MUTED}]\n")
        return
    console.print()
    for line in lines:
        console.print(Text(line))
    console.print()
