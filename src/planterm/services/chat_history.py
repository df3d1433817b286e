"""Planning chat sessions persisted as a single JSON file in the data directory."""

from __future__ import annotations

import json
import logging
import math
import os
import secrets
import stat
import string
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .provider import ToolCall

logger = logging.getLogger(__name__)

HISTORY_FILENAME = "chat-history.json"
DEFAULT_HISTORY_COUNT = 10
MAX_CONTENT_LINES = 3

_ID_ALPHABET = string.ascii_lowercase + string.digits


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class ChatMessage:
    role: str
    content: str
    timestamp: int = field(default_factory=_now_ms)
    tool_calls: list[ToolCall] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"role": self.role, "content": self.content, "timestamp": self.timestamp}
        if self.tool_calls:
            data["toolCalls"] = [tc.to_dict() for tc in self.tool_calls]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatMessage:
        return cls(
            role=str(data.get("role", "user")),
            content=str(data.get("content") or ""),
            timestamp=int(data.get("timestamp") or 0),
            tool_calls=[ToolCall.from_dict(tc) for tc in data.get("toolCalls") or [] if isinstance(tc, dict)],
        )


@dataclass
class ChatSession:
    id: str
    name: str
    messages: list[ChatMessage] = field(default_factory=list)
    created_at: int = field(default_factory=_now_ms)
    updated_at: int = field(default_factory=_now_ms)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "messages": [m.to_dict() for m in self.messages],
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatSession:
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or "Untitled"),
            messages=[ChatMessage.from_dict(m) for m in data.get("messages") or [] if isinstance(m, dict)],
            created_at=int(data.get("createdAt") or 0),
            updated_at=int(data.get("updatedAt") or 0),
        )

    def history(self) -> list[dict[str, Any]]:
        """Messages in the ``{"role", "content"}`` shape providers expect."""
        return [{"role": m.role, "content": m.content} for m in self.messages if m.role in ("user", "assistant")]


@dataclass
class ChatHistoryState:
    current_session_id: str | None = None
    sessions: list[ChatSession] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "currentSessionId": self.current_session_id,
            "sessions": [s.to_dict() for s in self.sessions],
        }

    @classmethod
    def from_dict(cls, data: Any) -> ChatHistoryState:
        # Older files stored a bare list of sessions.
        if isinstance(data, list):
            sessions = [ChatSession.from_dict(s) for s in data if isinstance(s, dict) and "id" in s]
            return cls(current_session_id=sessions[0].id if sessions else None, sessions=sessions)
        if not isinstance(data, dict):
            return cls()
        raw_sessions = data.get("sessions")
        if not isinstance(raw_sessions, list):
            raw_sessions = []
        sessions = [ChatSession.from_dict(s) for s in raw_sessions if isinstance(s, dict) and "id" in s]
        return cls(current_session_id=data.get("currentSessionId"), sessions=sessions)


# ---------------------------------------------------------------------------
# File I/O
# ---------------------------------------------------------------------------


def history_path(data_dir: Path) -> Path:
    return data_dir / HISTORY_FILENAME


def load_chat_history(data_dir: Path) -> ChatHistoryState:
    path = history_path(data_dir)
    if not path.exists():
        return ChatHistoryState()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return ChatHistoryState.from_dict(data)
    except (json.JSONDecodeError, OSError, KeyError, TypeError, ValueError):
        logger.warning("Could not read chat history at %s; starting empty", path)
        return ChatHistoryState()


def save_chat_history(state: ChatHistoryState, data_dir: Path) -> None:
    """Write the whole history atomically with 0600 permissions."""
    path = history_path(data_dir)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = json.dumps(state.to_dict(), indent=2, ensure_ascii=False)

    fd, tmp_name = tempfile.mkstemp(prefix=".chat-history-", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
        os.chmod(tmp_name, stat.S_IRUSR | stat.S_IWUSR)
        os.replace(tmp_name, path)
    except OSError:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


# ---------------------------------------------------------------------------
# Session operations (mutate the state in place)
# ---------------------------------------------------------------------------


def generate_session_id() -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(6))
    return f"session-{_now_ms()}-{suffix}"


def get_current_session(state: ChatHistoryState) -> ChatSession | None:
    for session in state.sessions:
        if session.id == state.current_session_id:
            return session
    return None


def find_session(state: ChatHistoryState, session_id: str) -> ChatSession | None:
    for session in state.sessions:
        if session.id == session_id:
            return session
    return None


def create_session(state: ChatHistoryState, name: str | None = None) -> ChatSession:
    session = ChatSession(id=generate_session_id(), name=name or f"Session {len(state.sessions) + 1}")
    state.sessions.append(session)
    state.current_session_id = session.id
    return session


def add_message(state: ChatHistoryState, message: ChatMessage) -> ChatSession:
    """Append to the current session, creating one if there is none."""
    session = get_current_session(state) or create_session(state)
    session.messages.append(message)
    session.updated_at = _now_ms()
    return session


def clear_messages(state: ChatHistoryState) -> None:
    session = get_current_session(state)
    if session is None:
        return
    session.messages = []
    session.updated_at = _now_ms()


def switch_session(state: ChatHistoryState, session_id: str) -> bool:
    if find_session(state, session_id) is None:
        return False
    state.current_session_id = session_id
    return True


def rename_session(state: ChatHistoryState, session_id: str, name: str) -> bool:
    session = find_session(state, session_id)
    if session is None:
        return False
    session.name = name
    session.updated_at = _now_ms()
    return True


def delete_session(state: ChatHistoryState, session_id: str) -> None:
    state.sessions = [s for s in state.sessions if s.id != session_id]
    if state.current_session_id == session_id:
        state.current_session_id = state.sessions[0].id if state.sessions else None


def sessions_by_date(state: ChatHistoryState) -> list[ChatSession]:
    """Most recently updated first."""
    return sorted(state.sessions, key=lambda s: s.updated_at, reverse=True)


def is_default_name(name: str) -> bool:
    prefix, _, number = name.partition(" ")
    return prefix == "Session" and number.isdigit()


# ---------------------------------------------------------------------------
# History display
# ---------------------------------------------------------------------------


def parse_history_args(args: str) -> float:
    """``""`` -> 10, ``"N"`` -> N, ``"all"`` -> inf; anything else -> 10."""
    text = args.strip()
    if not text:
        return DEFAULT_HISTORY_COUNT
    if text.lower() == "all":
        return math.inf
    try:
        count = int(text)
    except ValueError:
        return DEFAULT_HISTORY_COUNT
    return count if count > 0 else DEFAULT_HISTORY_COUNT


def filter_history_messages(messages: list[ChatMessage]) -> list[ChatMessage]:
    """Drop assistant messages that only carried tool calls."""
    return [m for m in messages if not (m.role == "assistant" and m.tool_calls and not m.content)]


def format_relative_time(timestamp_ms: int, now_ms: int | None = None) -> str:
    diff = (now_ms if now_ms is not None else _now_ms()) - timestamp_ms
    seconds = diff // 1000
    minutes = seconds // 60
    hours = minutes // 60
    days = hours // 24

    if seconds < 60:
        return "just now"
    if minutes < 60:
        return f"{minutes}m ago"
    if hours < 24:
        return f"{hours}h ago"
    if days == 1:
        return "yesterday"
    if days < 7:
        return f"{days}d ago"
    if days < 30:
        return f"{days // 7}w ago"
    return f"{days // 30}mo ago"


def _truncate_content(content: str) -> list[str]:
    lines = content.split("\n")
    if len(lines) <= MAX_CONTENT_LINES:
        return lines
    return lines[:MAX_CONTENT_LINES] + ["..."]


def format_history(messages: list[ChatMessage], count: float, now_ms: int | None = None) -> list[str]:
    """Plain lines for the last ``count`` messages, each cut to a few content lines."""
    if not messages:
        return []
    sliced = count < len(messages)
    displayed = messages[-int(count):] if sliced else messages
    label = f"last {len(displayed)} messages" if sliced else f"all {len(displayed)} messages"

    lines = [f"── History ({label}) " + "─" * 30, ""]
    for msg in displayed:
        lines.append(f"[{msg.role}] {format_relative_time(msg.timestamp, now_ms)}")
        lines.extend(f"  {line}" for line in _truncate_content(msg.content))
        lines.append("")
    return lines
