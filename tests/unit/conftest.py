from __future__ import annotations

import io
from pathlib import Path
from typing import Iterator
from unittest.mock import MagicMock, patch

import pytest
from rich.console import Console

from planterm.cli import renderer
from planterm.cli.output_gate import OutputGate
from planterm.cli.session_context import SessionContext
from planterm.config import AppConfig, AppSettings
from planterm.services.chat_history import ChatHistoryState


@pytest.fixture()
def rendered() -> Iterator[io.StringIO]:
    """Capture everything printed through the shared renderer console."""
    out = io.StringIO()
    console = Console(file=out, force_terminal=False, color_system=None, width=100, highlight=False)
    with patch.object(renderer, "console", console):
        yield out


@pytest.fixture()
def ctx(tmp_path: Path) -> SessionContext:
    provider = MagicMock()
    config = AppConfig(app=AppSettings(data_dir=tmp_path))
    return SessionContext(
        config=config,
        provider=provider,
        gate=OutputGate(io.StringIO()),
        history=ChatHistoryState(),
        mode="new",
    )
