"""Provider contract shared by the API and subprocess backends."""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass, field
from typing import Any

from ..config import ProviderConfig
from .event_channel import EventChannel

logger = logging.getLogger(__name__)

PROVIDER_EVENTS = ("text", "tool_call", "done", "error")


@dataclass
class ToolCall:
    name: str
    args: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "args": self.args}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolCall:
        return cls(name=str(data.get("name", "")), args=dict(data.get("args") or {}))


class ProviderError(Exception):
    """Raised (or emitted) when a provider cannot produce a response."""


class Provider(abc.ABC):
    """Streams a model response as ``text`` / ``tool_call`` / ``done`` / ``error`` events.

    ``done`` receives ``(full_content, tool_calls)``; ``error`` receives the
    exception. ``send`` returns once the turn is over; ``cancel`` is best
    effort and may return before the backend has actually stopped.
    """

    def __init__(self, mode: str = "new") -> None:
        self.events = EventChannel(*PROVIDER_EVENTS)
        self.mode = mode
        self._streaming = False

    @property
    def is_streaming(self) -> bool:
        return self._streaming

    def set_mode(self, mode: str) -> None:
        self.mode = mode

    @abc.abstractmethod
    async def send(self, message: str, history: list[dict[str, Any]]) -> None: ...

    @abc.abstractmethod
    def cancel(self) -> None: ...

    async def generate_title(self, context: str) -> str:
        """One-shot short title for a conversation; empty string if unsupported."""
        return ""

    async def close(self) -> None:
        """Release backend resources."""


def create_provider(config: ProviderConfig, mode: str = "new") -> Provider:
    """Build the provider named by ``config.provider``."""
    if config.provider == "cli":
        from .cli_provider import CliProvider

        return CliProvider(config, mode)
    if config.provider == "openai":
        from .ai_service import AIService

        return AIService(config, mode)
    raise ValueError(f"Unknown provider: {config.provider}")


def validate_provider(config: ProviderConfig) -> tuple[bool, str, str]:
    """Check that the configured provider can run: ``(ok, error, hint)``."""
    import shutil

    if config.provider == "cli":
        if shutil.which(config.cli_command) is None:
            return (
                False,
                f"{config.cli_command} not found on PATH",
                "Install the agent CLI or set provider.cli_command in config.yaml",
            )
        return True, "", ""
    if config.provider == "openai":
        if not config.api_key:
            return False, "No API key configured", "Set PLANTERM_API_KEY or OPENAI_API_KEY"
        return True, "", ""
    return False, f"Unknown provider: {config.provider}", "Valid providers: openai, cli"
