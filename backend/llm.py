"""
Language-model adapter (Anthropic Messages API with tools).

Single-flight: at most one request is in flight. A new request cancels the
previous one outright, and the canceled caller gets RequestFailed before it
could apply anything.
"""
import asyncio
import json
import logging
from datetime import datetime
from typing import Optional

import anthropic
from pydantic import BaseModel, Field

from errors import RequestFailed
from prompts import SYSTEM_PROMPT, TOOLS, build_user_message

logger = logging.getLogger(__name__)


class ToolCall(BaseModel):
    name: str
    arguments: str = "{}"  # JSON object as text


class LLMReply(BaseModel):
    tool_calls: list[ToolCall] = Field(default_factory=list)
    text: str = ""


class LLMClient:
    def __init__(self, api_key: Optional[str], model: str = "claude-sonnet-4-5", max_tokens: int = 1024,
                 timeout: float = 20.0, client=None):
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.client = client or anthropic.AsyncAnthropic(api_key=api_key, timeout=timeout)
        self._active: Optional[asyncio.Task] = None

    @property
    def configured(self) -> bool:
        return bool(self.api_key) and self.api_key != "your-api-key-here"

    def cancel_active(self) -> bool:
        """Cancel the in-flight request, if any."""
        task = self._active
        if task is None or task.done():
            return False
        task.cancel()
        logger.info("Canceled in-flight model request")
        return True

    async def request(self, utterance: str, now: datetime) -> LLMReply:
        if not self.configured:
            raise RequestFailed("API key not configured")

        self.cancel_active()
        task = asyncio.create_task(asyncio.wait_for(self._call(utterance, now), self.timeout))
        self._active = task
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            raise RequestFailed("request canceled") from None
        except asyncio.TimeoutError:
            raise RequestFailed(f"request timed out after {self.timeout:g}s") from None
        except anthropic.APIError as e:
            raise RequestFailed(f"API error: {e}") from e
        finally:
            if self._active is task:
                self._active = None

    async def _call(self, utterance: str, now: datetime) -> LLMReply:
        response = await self.client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            system=SYSTEM_PROMPT,
            tools=TOOLS,
            messages=[{"role": "user", "content": build_user_message(utterance, now)}],
        )

        reply = LLMReply()
        texts = []
        for block in response.content:
            if block.type == "tool_use":
                reply.tool_calls.append(ToolCall(name=block.name, arguments=json.dumps(block.input)))
            elif block.type == "text":
                texts.append(block.text)
        reply.text = "\n".join(texts).strip()
        logger.debug("Claude response: %d tool call(s), text=%r", len(reply.tool_calls), reply.text)
        return reply
