# chatdigest/services/llm.py
from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Protocol, TypedDict

from openai import AsyncOpenAI

logger = logging.getLogger(__name__)

_HIDDEN_BLOCKS = re.compile(r"<(think|action|summary|details)>.*?</\1>", re.IGNORECASE | re.DOTALL)


class ChatMessage(TypedDict):
    role: str
    content: str


class TextGenerator(Protocol):
    """Anything that turns a system prompt plus chat messages into text."""

    async def generate(self, system: str, messages: List[ChatMessage]) -> str:
        ...


def remove_thinking(text: str) -> str:
    """Drop reasoning/tool blocks some models emit around their answer."""
    return _HIDDEN_BLOCKS.sub("", text)


class OpenAIChatGenerator:
    """Chat Completions backend for any OpenAI-compatible endpoint."""

    def __init__(self, model: str, base_url: Optional[str] = None, api_key: str = "no-need", timeout: float = 120.0):
        self.model = model
        self._client = AsyncOpenAI(base_url=base_url, api_key=api_key, timeout=timeout)

    async def generate(self, system: str, messages: List[ChatMessage]) -> str:
        payload: List[Dict[str, str]] = [{"role": "system", "content": system.strip()}]
        payload.extend({"role": m["role"], "content": m["content"].strip()} for m in messages)
        response = await self._client.chat.completions.create(model=self.model, messages=payload)
        text = response.choices[0].message.content or ""
        logger.debug(f"Model {self.model} returned {len(text)} characters")
        return remove_thinking(text)
