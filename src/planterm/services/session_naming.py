"""Short session titles: ask the provider, fall back to the first user message."""

from __future__ import annotations

import asyncio
import logging
import re

from .chat_history import ChatMessage, ChatSession
from .provider import Provider, ProviderError

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 30
FALLBACK_NAME = "Planning Session"

_STRIP_CHARS_RE = re.compile(r"[^\w\s-]")
_WHITESPACE_RE = re.compile(r"\s+")


def heuristic_session_name(messages: list[ChatMessage]) -> str | None:
    first_user = next((m.content for m in messages if m.role == "user"), "")
    words = first_user.split()[:5]
    if not words:
        return None
    return " ".join(w[:1].upper() + w[1:].lower() for w in words)[:MAX_NAME_LENGTH]


def clean_session_name(raw: str) -> str:
    name = raw.strip()
    if len(name) >= 2 and name[0] == name[-1] and name[0] in "\"'":
        name = name[1:-1]
    name = _STRIP_CHARS_RE.sub("", name).strip()
    name = _WHITESPACE_RE.sub(" ", name)
    if len(name) > MAX_NAME_LENGTH:
        name = name[:MAX_NAME_LENGTH].strip()
    return name


def build_conversation_context(messages: list[ChatMessage]) -> str:
    """Interleave the first three user and first two assistant messages."""
    users = [f"User: {m.content[:200]}" for m in messages if m.role == "user"][:3]
    assistants = [f"Assistant: {m.content[:200]}" for m in messages if m.role == "assistant"][:2]
    context: list[str] = []
    for i in range(max(len(users), len(assistants))):
        if i < len(users):
            context.append(users[i])
        if i < len(assistants):
            context.append(assistants[i])
    return "\n".join(context)


async def generate_session_name(session: ChatSession, provider: Provider, timeout: float = 5.0) -> str:
    context = build_conversation_context(session.messages)
    if context.strip():
        try:
            raw = await asyncio.wait_for(provider.generate_title(context), timeout=timeout)
            name = clean_session_name(raw)
            if name:
                return name
        except asyncio.TimeoutError:
            logger.info("Session naming timed out after %.1fs", timeout)
        except (ProviderError, OSError) as e:
            logger.info("Session naming failed: %s", e)
    return heuristic_session_name(session.messages) or FALLBACK_NAME
