from __future__ import annotations

import asyncio
import json
import logging
import random
from typing import Any, Dict, List, Sequence

import aiohttp

logger = logging.getLogger("companion_bot")

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com"
RETRIABLE_STATUSES = frozenset({408, 409, 429, 500, 502, 503, 504})


class GeminiError(RuntimeError):
    """The API answered, but not with something usable."""


def normalize_model_text(content: object) -> str:
    """Collapse model content into one string.

    Gemini returns a list of parts per candidate; callers that hand us a plain
    string (fakes, cached replies) pass through unchanged.
    """
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, dict):
        text = content.get("text")
        return text if isinstance(text, str) else ""
    if isinstance(content, (list, tuple)):
        return "".join(normalize_model_text(item) for item in content)
    return ""


def _retry_delay(attempt: int) -> float:
    return min(4.0, 0.35 * attempt + random.random() * 0.2)


class GeminiClient:
    """Thin REST client for generateContent and batchEmbedContents."""

    def __init__(
        self,
        api_key: str,
        model: str,
        timeout_seconds: int,
        temperature: float,
        max_output_tokens: int,
        base_url: str = DEFAULT_BASE_URL,
        embedding_model: str = "text-embedding-004",
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.embedding_model = embedding_model
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.temperature = temperature
        token_cap = int(max_output_tokens)
        self.max_output_tokens: int | None = token_cap if token_cap > 0 else None
        self._session: aiohttp.ClientSession | None = None

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()

    def _endpoint(self, model: str, method: str = "generateContent") -> str:
        return f"{self.base_url}/v1beta/models/{model}:{method}?key={self.api_key}"

    @staticmethod
    def _map_messages(messages: List[Dict[str, str]]) -> Dict[str, Any]:
        instructions: List[str] = []
        turns: List[Dict[str, Any]] = []
        for message in messages:
            text = str(message.get("content", "")).strip()
            if not text:
                continue
            role = str(message.get("role", "")).strip().lower()
            if role == "system":
                instructions.append(text)
            else:
                turns.append({"role": "model" if role == "assistant" else "user", "parts": [{"text": text}]})

        body: Dict[str, Any] = {"contents": turns}
        if instructions:
            body["systemInstruction"] = {"parts": [{"text": "\n\n".join(instructions)}]}
        return body

    async def _request(self, url: str, payload: Dict[str, Any], retries: int = 3) -> Dict[str, Any]:
        """POST with retries on throttling, 5xx and transport errors.

        Any other status raises GeminiError straight away.
        """
        await self.start()
        assert self._session is not None

        failure: Exception | None = None
        for attempt in range(1, retries + 1):
            try:
                async with self._session.post(url, json=payload) as response:
                    body = await response.text()
                    if response.status == 200:
                        return json.loads(body)
                    if response.status not in RETRIABLE_STATUSES:
                        raise GeminiError(f"Gemini error {response.status}: {body}")
                    failure = GeminiError(f"Gemini retriable error {response.status}: {body}")
            except (aiohttp.ClientError, asyncio.TimeoutError, json.JSONDecodeError) as exc:
                failure = exc

            if attempt < retries:
                logger.warning("[gemini.retry] attempt=%s/%s error=%s", attempt, retries, failure)
                await asyncio.sleep(_retry_delay(attempt))

        raise GeminiError(f"Gemini request failed after {retries} attempts: {failure}")

    @staticmethod
    def _extract_text(data: Dict[str, Any]) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            block_reason = (data.get("promptFeedback") or {}).get("blockReason")
            if block_reason:
                raise GeminiError(f"Gemini blocked response: {block_reason}")
            raise GeminiError("Gemini returned no candidates")

        best = candidates[0]
        text = normalize_model_text((best.get("content") or {}).get("parts") or []).strip()
        if text:
            return text
        finish_reason = best.get("finishReason")
        if finish_reason:
            raise GeminiError(f"Gemini empty response (finishReason={finish_reason})")
        raise GeminiError("Gemini empty response")

    async def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ) -> str:
        payload = self._map_messages(messages)
        config: Dict[str, Any] = {"temperature": self.temperature if temperature is None else temperature}
        token_cap = self.max_output_tokens if max_output_tokens is None else max_output_tokens
        if token_cap and int(token_cap) > 0:
            config["maxOutputTokens"] = int(token_cap)
        payload["generationConfig"] = config
        return self._extract_text(await self._request(self._endpoint(self.model), payload))

    async def generate(self, prompt: str, temperature: float | None = None) -> str:
        return await self.chat([{"role": "user", "content": prompt}], temperature=temperature)

    async def embed(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []
        model_ref = f"models/{self.embedding_model}"
        payload = {
            "requests": [{"model": model_ref, "content": {"parts": [{"text": str(text)}]}} for text in texts]
        }
        data = await self._request(self._endpoint(self.embedding_model, "batchEmbedContents"), payload)
        vectors = data.get("embeddings") or []
        if len(vectors) != len(texts):
            raise GeminiError(f"Gemini returned {len(vectors)} embeddings for {len(texts)} inputs")
        return [[float(value) for value in item.get("values") or []] for item in vectors]
