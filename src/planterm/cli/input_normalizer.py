"""Soft-newline key normalization for terminal input.

Terminals disagree on what Shift+Enter sends. Every known encoding is
rewritten to one canonical two-character marker (backslash + carriage
return) before the line editor parses the input, so the editor sees a
trailing backslash followed by Enter and the continuation accumulator
takes over from there.
"""

from __future__ import annotations

import logging
from typing import TypeVar

from prompt_toolkit.input.vt100 import Vt100Input
from prompt_toolkit.key_binding import KeyPress

logger = logging.getLogger(__name__)

SOFT_NEWLINE_MARKER = "\\\r"

SOFT_NEWLINE_SEQUENCES: tuple[str, ...] = (
    "\x1b[27;2;13~",  # xterm modifyOtherKeys, Ghostty
    "\x1b[13;2~",  # VS Code / some xterm builds
    "\x1bOM",  # Konsole keypad Enter
)

_Data = TypeVar("_Data", str, bytes)


def normalize_soft_newlines(data: _Data) -> _Data:
    """Replace every known soft-newline sequence in *data* with the marker.

    Accepts ``str`` or ``bytes`` and returns the same type. Anything that is
    not one of the known sequences passes through untouched.
    """
    if isinstance(data, bytes):
        marker = SOFT_NEWLINE_MARKER.encode()
        for seq in SOFT_NEWLINE_SEQUENCES:
            data = data.replace(seq.encode(), marker)
        return data
    for seq in SOFT_NEWLINE_SEQUENCES:
        data = data.replace(seq, SOFT_NEWLINE_MARKER)
    return data


class NormalizingInput(Vt100Input):
    """Vt100 input that rewrites soft-newline sequences before key parsing.

    Selection menus read stdin directly while the prompt is suspended, so
    they never pass through here.
    """

    def read_keys(self) -> list[KeyPress]:
        data = self.stdin_reader.read()
        normalized = normalize_soft_newlines(data)
        if normalized != data:
            logger.debug("Normalized soft-newline input sequence")
        self.vt100_parser.feed(normalized)

        result = self._buffer
        self._buffer = []
        return result
