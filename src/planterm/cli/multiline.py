"""Backslash continuation for multi-line prompt input."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class LineResult:
    complete: bool
    message: str | None = None
    accumulated: tuple[str, ...] = ()


def _continues(line: str) -> bool:
    # A doubled trailing backslash is a literal backslash, not a continuation.
    return line.endswith("\\") and not line.endswith("\\\\")


def process_input_line(line: str, previous: tuple[str, ...] | list[str] = ()) -> LineResult:
    """Decide whether *line* completes the message or keeps accumulating.

    A line ending in a single backslash has it stripped and is appended to
    the accumulated lines. Any other line, including an empty one, is
    appended and the whole lot is joined with newlines into the message.
    """
    if _continues(line):
        return LineResult(complete=False, accumulated=(*previous, line[:-1]))
    return LineResult(complete=True, message="\n".join((*previous, line)))


@dataclass
class MultilineInput:
    """Accumulator state for one logical prompt."""

    lines: list[str] = field(default_factory=list)

    @property
    def active(self) -> bool:
        return bool(self.lines)

    def feed(self, line: str) -> str | None:
        """Feed one submitted line; return the message once it is complete."""
        result = process_input_line(line, self.lines)
        if result.complete:
            self.lines = []
            return result.message
        self.lines = list(result.accumulated)
        return None

    def reset(self) -> None:
        self.lines = []
