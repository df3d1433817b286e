"""OpenAI-compatible API provider: streaming chat completions as provider events."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator

import httpx
from openai import APIConnectionError, APIError, APITimeoutError, AsyncOpenAI, AuthenticationError

from ..cli.plan import build_planning_system_prompt
from ..config import ProviderConfig
from .provider import Provider, ProviderError, ToolCall

logger = logging.getLogger(__name__)

_TITLE_PROMPT = (
    "Generate a short name (2-5 words) for a planning session based on this conversation. "
    "Return only the name, no quotes or punctuation."
)


class AIService(Provider):
    def __init__(self, config: ProviderConfig, mode: str = "new") -> None:
        super().__init__(mode)
        self.config = config
        self._cancel_event = asyncio.Event()
        self._build_client()

    def _build_client(self) -> None:
        timeout = httpx.Timeout(
            connect=10.0,
            read=float(self.config.request_timeout),
            write=30.0,
            pool=10.0,
        )
        http_client = httpx.AsyncClient(verify=self.config.verify_ssl, timeout=timeout)
        self.client = AsyncOpenAI(
            base_url=self.config.base_url or None,
            api_key=self.config.api_key,
            http_client=http_client,
        )

    def _build_messages(self, message: str, history: list[dict[str, Any]]) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = [{"role": "system", "content": build_planning_system_prompt(self.mode)}]
        for msg in history:
            if msg.get("role") in ("user", "assistant") and msg.get("content"):
                messages.append({"role": msg["role"], "content": msg["content"]})
        messages.append({"role": "user", "content": message})
        return messages

    async def _iter_stream(self, stream: Any) -> AsyncIterator[Any]:
        """Iterate the completion stream, stopping as soon as cancel is requested."""
        stream_iter = stream.__aiter__()
        while True:
            next_chunk = asyncio.ensure_future(stream_iter.__anext__())
            cancel_wait = asyncio.ensure_future(self._cancel_event.wait())
            try:
                done, _pending = await asyncio.wait(
                    [next_chunk, cancel_wait],
                    return_when=asyncio.FIRST_COMPLETED,
                )
            except BaseException:
                next_chunk.cancel()
                cancel_wait.cancel()
                raise

            if cancel_wait in done:
                next_chunk.cancel()
                logger.info("Stream cancelled")
                await self._close_stream(stream)
                return

            cancel_wait.cancel()
            try:
                chunk = next_chunk.result()
            except StopAsyncIteration:
                return
            yield chunk

    @staticmethod
    async def _close_stream(stream: Any) -> None:
        close = getattr(stream, "close", None)
        if close is None:
            return
        try:
            await asyncio.wait_for(close(), timeout=2.0)
        except (asyncio.TimeoutError, httpx.HTTPError):
            logger.debug("Stream close did not finish cleanly", exc_info=True)

    async def send(self, message: str, history: list[dict[str, Any]]) -> None:
        self._cancel_event = asyncio.Event()
        self._streaming = True
        content_parts: list[str] = []
        tool_calls: dict[int, dict[str, Any]] = {}

        try:
            stream = await self.client.chat.completions.create(
                model=self.config.model,
                messages=self._build_messages(message, history),
                stream=True,
            )
            async for chunk in self._iter_stream(stream):
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                if delta.content:
                    content_parts.append(delta.content)
                    self.events.emit("text", delta.content)
                for tc in delta.tool_calls or []:
                    entry = tool_calls.setdefault(tc.index, {"name": "", "arguments": ""})
                    if tc.function and tc.function.name:
                        entry["name"] = tc.function.name
                    if tc.function and tc.function.arguments:
                        entry["arguments"] += tc.function.arguments

            if self._cancel_event.is_set():
                return

            calls = [ToolCall(name=tc["name"], args=_parse_args(tc["arguments"])) for tc in tool_calls.values()]
            for call in calls:
                self.events.emit("tool_call", call)
            self.events.emit("done", "".join(content_parts), calls)
        except AuthenticationError as e:
            logger.error("Authentication failed")
            self.events.emit("error", ProviderError(f"Authentication failed: {e.message}"))
        except APITimeoutError:
            logger.warning("Request to %s timed out", self.config.base_url or "OpenAI")
            self.events.emit("error", ProviderError("Request timed out"))
        except APIConnectionError:
            logger.warning("Cannot connect to API at %s", self.config.base_url or "OpenAI")
            self.events.emit("error", ProviderError(f"Cannot connect to API at {self.config.base_url or 'OpenAI'}"))
        except APIError as e:
            logger.exception("API stream error")
            self.events.emit("error", ProviderError(e.message))
        finally:
            self._streaming = False

    def cancel(self) -> None:
        self._cancel_event.set()

    async def generate_title(self, context: str) -> str:
        try:
            response = await self.client.chat.completions.create(
                model=self.config.model,
                messages=[
                    {"role": "system", "content": _TITLE_PROMPT},
                    {"role": "user", "content": context},
                ],
                max_completion_tokens=20,
            )
        except APIError as e:
            raise ProviderError(f"Title generation failed: {e.message}") from e
        return (response.choices[0].message.content or "").strip()

    async def close(self) -> None:
        await self.client.close()


def _parse_args(raw: str) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {"arguments": raw}
    return parsed if isinstance(parsed, dict) else {"arguments": parsed}
