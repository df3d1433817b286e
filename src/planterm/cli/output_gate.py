"""Mutable write sink the line editor renders through."""

from __future__ import annotations

import logging
import sys
from typing import TextIO

logger = logging.getLogger(__name__)


class OutputGate:
    """File-like wrapper around the terminal stream with a mute switch.

    The prompt's output is created on top of this object. While muted, every
    write from the editor is dropped but reported as fully written so the
    writer never stalls. Indicators write to the real stream directly and
    are unaffected.

    Must not expose ``buffer``: prompt_toolkit writes bytes to
    ``stream.buffer`` when present, bypassing ``write``.
    """

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream or sys.stdout
        self._muted = False

    @property
    def muted(self) -> bool:
        return self._muted

    def mute(self) -> None:
        if not self._muted:
            logger.debug("Output gate muted")
        self._muted = True

    def unmute(self) -> None:
        if self._muted:
            logger.debug("Output gate unmuted")
        self._muted = False

    # -- file protocol -------------------------------------------------------

    def write(self, data: str) -> int:
        if self._muted:
            return len(data)
        return self._stream.write(data)

    def flush(self) -> None:
        if not self._muted:
            self._stream.flush()

    def fileno(self) -> int:
        return self._stream.fileno()

    def isatty(self) -> bool:
        return self._stream.isatty()

    @property
    def encoding(self) -> str:
        return getattr(self._stream, "encoding", None) or "utf-8"

    @property
    def errors(self) -> str:
        return getattr(self._stream, "errors", None) or "strict"
