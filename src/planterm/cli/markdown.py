"""Incremental markdown-to-terminal renderer for streamed assistant text.

Only the subset assistants actually stream is understood: headings, lists,
checklists, quotes, rules, fenced code and inline emphasis/code. Anything
else is printed as plain text; malformed markup is never an error.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable

from rich.console import Console
from rich.text import Text

CODE_SPAN_STYLE = "cyan on color(236)"

HEADING_COLORS: dict[int, str] = {
    1: "magenta",
    2: "cyan",
    3: "yellow",
    4: "green",
    5: "cyan",
    6: "dim",
}
DEFAULT_HEADING_COLOR = "cyan"

_FENCE_RE = re.compile(r"^\s*```")
_FENCE_LANG_RE = re.compile(r"^\s*```(\w+)?")
_RULE_RE = re.compile(r"^\s*([-*_])(?:\s*\1){2,}\s*$")
_HEADING_RE = re.compile(r"^(#{1,6})\s+(.+)$")
_CHECKLIST_RE = re.compile(r"^(\s*)[-*]\s+\[([ xX])\]\s+(.+)$")
_BULLET_RE = re.compile(r"^(\s*)[-*]\s+(.+)$")
_NUMBERED_RE = re.compile(r"^(\s*)(\d+)\.\s+(.+)$")
_QUOTE_RE = re.compile(r"^>\s?(.*)$")

_CODE_SPAN_RE = re.compile(r"`([^`]+)`")

# Applied in order over the whole line; code span contents are masked out.
_EMPHASIS_PASSES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\*{3}(.+?)\*{3}"), "bold italic"),
    (re.compile(r"_{3}(.+?)_{3}"), "bold italic"),
    (re.compile(r"\*{2}(.+?)\*{2}"), "bold"),
    (re.compile(r"_{2}(.+?)_{2}"), "bold"),
    (re.compile(r"\*([^*]+)\*"), "italic"),
    (re.compile(r"(?<!\w)_([^_]+)_(?!\w)"), "italic"),
)

# Stands in for code span characters while emphasis patterns run.
_MASK = "\x00"


# ---------------------------------------------------------------------------
# Inline styling
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _Cell:
    char: str
    style: str
    protected: bool = False


def _join_styles(*styles: str) -> str:
    return " ".join(s for s in styles if s)


def _split_code_spans(text: str, base_style: str) -> list[_Cell]:
    cells: list[_Cell] = []
    code_style = _join_styles(base_style, CODE_SPAN_STYLE)
    pos = 0
    for m in _CODE_SPAN_RE.finditer(text):
        cells.extend(_Cell(ch, base_style) for ch in text[pos : m.start()])
        cells.extend(_Cell(ch, code_style, protected=True) for ch in m.group(1))
        pos = m.end()
    cells.extend(_Cell(ch, base_style) for ch in text[pos:])
    return cells


def _apply_pass(cells: list[_Cell], pattern: re.Pattern[str], style: str) -> list[_Cell]:
    """Drop the markers of every match and add ``style`` to what they enclose.

    Matching runs over the whole line, so a run may enclose a code span; the
    span's own characters are masked and can never act as markers.
    """
    masked = "".join(_MASK if c.protected else c.char for c in cells)
    out: list[_Cell] = []
    pos = 0
    for m in pattern.finditer(masked):
        out.extend(cells[pos : m.start()])
        out.extend(_Cell(c.char, _join_styles(c.style, style), c.protected) for c in cells[m.start(1) : m.end(1)])
        pos = m.end()
    out.extend(cells[pos:])
    return out


def render_inline(text: str, base_style: str = "") -> Text:
    """Turn inline code and emphasis markers into styled rich ``Text``.

    Code span contents are never restyled as emphasis markers. Markers
    without a partner stay in the output as literal characters.
    """
    cells = _split_code_spans(text, base_style)
    for pattern, style in _EMPHASIS_PASSES:
        cells = _apply_pass(cells, pattern, style)
    result = Text()
    run: list[str] = []
    run_style: str | None = None
    for cell in cells:
        if run and cell.style != run_style:
            result.append("".join(run), style=run_style or None)
            run = []
        run.append(cell.char)
        run_style = cell.style
    if run:
        result.append("".join(run), style=run_style or None)
    return result


# ---------------------------------------------------------------------------
# Line renderer
# ---------------------------------------------------------------------------

_LineRule = tuple[Callable[[str], Any], Callable[[str, Any], Text]]


class StreamingMarkdownRenderer:
    """Buffers streamed chunks and prints each complete line as it arrives.

    Output depends only on the concatenated input, never on how it was
    chunked. Fence state carries across ``write`` calls until ``reset``.
    """

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console(highlight=False, soft_wrap=True)
        self._buffer = ""
        self._in_code_block = False
        self._code_lang = ""
        self._last_line_blank = False
        # First match wins; the order is significant.
        self._rules: tuple[_LineRule, ...] = (
            (_FENCE_RE.match, self._render_fence),
            (self._inside_code_block, self._render_code_line),
            (lambda line: line == "", lambda line, _m: Text("")),
            (lambda line: not line.strip(), lambda line, _m: Text(line)),
            (_RULE_RE.match, self._render_rule),
            (_HEADING_RE.match, self._render_heading),
            (_CHECKLIST_RE.match, self._render_checklist),
            (_BULLET_RE.match, self._render_bullet),
            (_NUMBERED_RE.match, self._render_numbered),
            (_QUOTE_RE.match, self._render_quote),
            (lambda line: True, lambda line, _m: render_inline(line)),
        )

    @property
    def in_code_block(self) -> bool:
        return self._in_code_block

    @property
    def code_lang(self) -> str:
        return self._code_lang

    @property
    def pending(self) -> str:
        return self._buffer

    @property
    def last_line_blank(self) -> bool:
        """True when the most recently printed line was empty or whitespace."""
        return self._last_line_blank

    def write(self, chunk: str) -> None:
        if not chunk:
            return
        self._buffer += chunk
        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            self._render_line(line.removesuffix("\r"))

    def flush(self) -> None:
        """Render whatever partial line is pending as a final line."""
        if self._buffer:
            line, self._buffer = self._buffer, ""
            self._render_line(line)

    def reset(self) -> None:
        self._buffer = ""
        self._in_code_block = False
        self._code_lang = ""
        self._last_line_blank = False

    def _render_line(self, line: str) -> None:
        self._last_line_blank = not line.strip()
        for predicate, render in self._rules:
            match = predicate(line)
            if match:
                self._console.print(render(line, match))
                return

    # -- block renderers -----------------------------------------------------

    def _inside_code_block(self, line: str) -> bool:
        return self._in_code_block

    def _render_fence(self, line: str, _match: Any) -> Text:
        if self._in_code_block:
            self._in_code_block = False
            self._code_lang = ""
            return Text("  ──────", style="dim")
        self._in_code_block = True
        lang_match = _FENCE_LANG_RE.match(line)
        self._code_lang = (lang_match.group(1) or "") if lang_match else ""
        if self._code_lang:
            return Text(f"  ── {self._code_lang} ──", style="dim")
        return Text("  ──────", style="dim")

    def _render_code_line(self, line: str, _match: Any) -> Text:
        return Text(f"    {line}", style="dim")

    def _render_rule(self, line: str, _match: Any) -> Text:
        return Text("─" * min(self._console.width, 80), style="dim")

    def _render_heading(self, line: str, match: re.Match[str]) -> Text:
        color = HEADING_COLORS.get(len(match.group(1)), DEFAULT_HEADING_COLOR)
        return Text("\n") + render_inline(match.group(2), base_style=f"bold {color}")

    def _render_checklist(self, line: str, match: re.Match[str]) -> Text:
        checked = match.group(2) != " "
        box = Text("☑", style="green") if checked else Text("☐", style="yellow")
        return Text("  ") + box + Text(" ") + render_inline(match.group(3))

    def _render_bullet(self, line: str, match: re.Match[str]) -> Text:
        return Text("  • ") + render_inline(match.group(2))

    def _render_numbered(self, line: str, match: re.Match[str]) -> Text:
        return Text(f"  {match.group(2)}. ") + render_inline(match.group(3))

    def _render_quote(self, line: str, match: re.Match[str]) -> Text:
        return Text("  │ ", style="dim") + render_inline(match.group(1), base_style="dim")
