from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Union

import httpx
from pydantic import BaseModel, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError

from rehearsal.catalog import QuestionItem
from rehearsal.errors import GenerationError, PersistenceError
from rehearsal.storage import KeyValueStore, generated_key

NVIDIA_API_KEY = os.getenv("NVIDIA_API_KEY")
NVIDIA_LLM_MODEL = os.getenv("NVIDIA_LLM_MODEL", "meta/llama-4-maverick-17b-128e-instruct")
NVIDIA_LLM_URL = os.getenv("NVIDIA_LLM_URL", "https://integrate.api.nvidia.com/v1/chat/completions")
NVIDIA_LLM_TIMEOUT = float(os.getenv("NVIDIA_LLM_TIMEOUT", "12"))
LOG = logging.getLogger("interview.generation")


class GeneratedItem(BaseModel):
    question: str
    expected_answer: str

    @field_validator("question", "expected_answer")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


_ITEMS = TypeAdapter(List[GeneratedItem])


@dataclass(frozen=True)
class GeneratedItems:
    items: List[QuestionItem]


@dataclass(frozen=True)
class GenerationFailure:
    reason: str


GenerationResult = Union[GeneratedItems, GenerationFailure]


def _extract_json_array(text: str) -> Optional[Any]:
    """Tolerant JSON extraction so we survive code fences or preambles."""
    cleaned = re.sub(r"```(?:json)?", "", text or "", flags=re.IGNORECASE).strip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        match = re.search(r"\[.*\]", cleaned, flags=re.DOTALL)
        if match:
            try:
                return json.loads(match.group(0))
            except json.JSONDecodeError:
                return None
    return None


def parse_generated_items(text: str, count: int) -> GenerationResult:
    data = _extract_json_array(text)
    if data is None:
        return GenerationFailure("response is not JSON")
    if not isinstance(data, list):
        return GenerationFailure("response is not a JSON array")
    if not data:
        return GenerationFailure("response array is empty")
    try:
        parsed = _ITEMS.validate_python(data)
    except PydanticValidationError as exc:
        return GenerationFailure(f"malformed item: {exc.errors()[0].get('msg', 'invalid')}")
    items = [QuestionItem(text=p.question, reference_answer=p.expected_answer) for p in parsed]
    return GeneratedItems(items=items[: max(0, count)])


def _load_cached(value: Optional[dict]) -> Optional[List[QuestionItem]]:
    if not value or not isinstance(value.get("items"), list):
        return None
    result = parse_generated_items(json.dumps(value["items"]), len(value["items"]))
    return result.items if isinstance(result, GeneratedItems) else None


class QuestionGenerator:
    def __init__(
        self,
        cache: Optional[KeyValueStore] = None,
        api_key: Optional[str] = None,
        url: str = NVIDIA_LLM_URL,
        model: str = NVIDIA_LLM_MODEL,
        timeout: float = NVIDIA_LLM_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._cache = cache
        self._api_key = api_key
        self._url = url
        self._model = model
        self._timeout = timeout
        self._transport = transport

    async def generate(
        self,
        topic: str,
        count: int,
        fallback: Sequence[QuestionItem],
        user_id: Optional[str] = None,
        topic_id: Optional[str] = None,
    ) -> List[QuestionItem]:
        """Generated questions for a topic; fallback[:count] on any failure."""
        key = generated_key(user_id, topic_id or topic, count)
        if self._cache is not None:
            try:
                cached = _load_cached(await self._cache.get(key))
            except PersistenceError as exc:
                LOG.warning("Generated-question cache unreadable (key=%s): %s", key, exc)
                cached = None
            if cached:
                return cached
        try:
            items = await self._request(topic, count)
        except GenerationError as exc:
            LOG.warning("Question generation failed, using fallback (topic=%s): %s", topic, exc)
            return list(fallback[:count])
        if self._cache is not None:
            try:
                await self._cache.set(
                    key, {"items": [{"question": i.text, "expected_answer": i.reference_answer} for i in items]}
                )
            except PersistenceError as exc:
                LOG.warning("Could not cache generated questions (key=%s): %s", key, exc)
        return items

    async def _request(self, topic: str, count: int) -> List[QuestionItem]:
        api_key = self._api_key or NVIDIA_API_KEY or os.getenv("NVIDIA_API_KEY")
        if not api_key:
            raise GenerationError("NVIDIA_API_KEY missing")
        system_prompt = (
            "You are an expert interview question generator. "
            "Return ONLY a strict JSON array of objects of the form "
            "{\"question\":\"string\",\"expected_answer\":\"string\"}. "
            "Avoid code fences or commentary."
        )
        user_prompt = (
            f"Generate {count} high-quality {topic} interview questions for a candidate. "
            "For each question, give a concise, accurate expected answer (1-2 sentences) that a strong "
            "candidate would give. Avoid duplicates and keep answers objective and non-personal."
        )
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        payload = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "max_tokens": 120 * max(1, count),
            "temperature": 0.7,
            "top_p": 1.0,
            "stream": False,
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                LOG.info("Calling NVIDIA LLM (questions): topic=%s count=%s", topic, count)
                resp = await client.post(self._url, headers=headers, json=payload)
        except Exception as exc:
            raise GenerationError(f"request failed: {exc}") from exc

        if resp.status_code != 200:
            raise GenerationError(f"LLM responded with {resp.status_code}: {resp.text[:200]}")

        try:
            data = resp.json()
            choices = data.get("choices") or []
            content = choices[0].get("message", {}).get("content", "").strip() if choices else ""
        except (ValueError, AttributeError, IndexError):
            content = ""
        if not content:
            raise GenerationError("LLM returned empty content")

        result = parse_generated_items(content, count)
        if isinstance(result, GenerationFailure):
            raise GenerationError(f"{result.reason}; raw content: {content[:200]}")
        return result.items
