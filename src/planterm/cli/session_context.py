"""Per-session state shared by the input loop, the turn runner and the interrupt handler."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from typing import Iterator

from ..config import AppConfig
from ..services import chat_history
from ..services.chat_history import ChatHistoryState, ChatSession
from ..services.provider import Provider
from .multiline import MultilineInput
from .output_gate import OutputGate

logger = logging.getLogger(__name__)

CANCEL = "cancel"
ABORT_INPUT = "abort_input"
SHUTDOWN = "shutdown"


@dataclass
class SessionContext:
    config: AppConfig
    provider: Provider
    gate: OutputGate
    history: ChatHistoryState
    mode: str
    accumulator: MultilineInput = field(default_factory=MultilineInput)
    cancel_event: asyncio.Event | None = None
    streaming: bool = False
    exit_requested: bool = False
    idle: asyncio.Event = field(default_factory=asyncio.Event)

    def __post_init__(self) -> None:
        self.idle.set()
        self.provider.set_mode(self.mode)

    @property
    def current_session(self) -> ChatSession | None:
        return chat_history.get_current_session(self.history)

    def ensure_session(self) -> ChatSession:
        return self.current_session or chat_history.create_session(self.history)

    def set_mode(self, mode: str) -> None:
        self.mode = mode
        self.provider.set_mode(mode)
        logger.info("Planning mode set to %s", mode)

    def begin_turn(self) -> asyncio.Event:
        self.cancel_event = asyncio.Event()
        self.streaming = True
        self.idle.clear()
        return self.cancel_event

    def end_turn(self) -> None:
        self.cancel_event = None
        self.streaming = False

    def interrupt(self) -> str:
        """Interpret Ctrl+C: cancel a turn, drop partial input, or shut down."""
        if self.streaming and self.cancel_event is not None:
            self.cancel_event.set()
            return CANCEL
        if self.accumulator.active:
            self.accumulator.reset()
            return ABORT_INPUT
        self.exit_requested = True
        return SHUTDOWN

    @contextlib.contextmanager
    def menu(self) -> Iterator[None]:
        """Silence the line editor while a full-screen menu owns the terminal."""
        self.gate.mute()
        try:
            yield
        finally:
            self.gate.unmute()

    def save_history(self) -> None:
        try:
            chat_history.save_chat_history(self.history, self.config.app.data_dir)
        except OSError:
            logger.exception("Failed to save chat history")
