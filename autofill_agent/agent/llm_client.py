from __future__ import annotations

import asyncio
import json
import re
from typing import Any, Optional

from openai import OpenAI

from ..config import settings


class OpenAIChatPipeline:
    def __init__(
        self,
        model: str,
        api_key: str,
        base_url: str | None,
        max_new_tokens: int,
        system_prompt: str | None = None,
    ):
        self.client = OpenAI(api_key=api_key, base_url=base_url)
        self.model = model
        self.max_new_tokens = max_new_tokens
        self.system_prompt = system_prompt

    def __call__(self, prompt, max_new_tokens: int | None = None, **_):
        max_tokens = max_new_tokens or self.max_new_tokens
        messages = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.append({"role": "user", "content": prompt})
        resp = self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=0,
            max_completion_tokens=max_tokens,
        )
        return [{"generated_text": resp.choices[0].message.content or ""}]


def _extract_json_object(text: str) -> Optional[dict]:
    """Extract the last JSON object from the provided text.

    The helper tolerates code fences and trailing commentary. It scans for JSON
    object boundaries and attempts to parse the last candidate.
    """

    try:
        cleaned = text.strip()
        fenced = re.findall(r"```(?:json)?\s*(.*?)```", cleaned, re.DOTALL | re.IGNORECASE)
        if fenced:
            cleaned = fenced[-1]

        spans: list[str] = []
        depth = 0
        start_idx: int | None = None
        for idx, ch in enumerate(cleaned):
            if ch == "{":
                if depth == 0:
                    start_idx = idx
                depth += 1
            elif ch == "}":
                if depth > 0:
                    depth -= 1
                    if depth == 0 and start_idx is not None:
                        spans.append(cleaned[start_idx : idx + 1])

        for candidate in reversed(spans):
            try:
                return json.loads(candidate)
            except json.JSONDecodeError:
                continue
    except Exception:
        return None

    return None


def _extract_json(raw_text: str | None) -> tuple[Any, str | None]:
    """Parse the whole (unfenced) reply first; scan for an object block only if that fails.

    A reply that parses as JSON is returned as-is even when it is not an object,
    so callers can reject arrays and scalars instead of digging inside them.
    """

    if raw_text is None or not str(raw_text).strip():
        return None, "empty_output"

    cleaned = str(raw_text).strip()
    fenced = re.findall(r"```(?:json)?\s*(.*?)```", cleaned, re.DOTALL | re.IGNORECASE)
    if fenced:
        cleaned = fenced[-1].strip()

    try:
        return json.loads(cleaned), None
    except json.JSONDecodeError as exc:
        decode_error = exc.msg

    obj = _extract_json_object(cleaned)
    if obj is None:
        return None, f"json_decode_error:{decode_error}"
    return obj, None


class StructuredLLMClient:
    """Async wrapper around a blocking text-generation pipeline."""

    def __init__(self, pipeline: Any) -> None:
        self.pipeline = pipeline

    def _generate(self, prompt: str) -> str:
        return self.pipeline(prompt, num_return_sequences=1, return_full_text=False)[0]["generated_text"]

    async def generate_text(self, prompt: str) -> str:
        return await asyncio.to_thread(self._generate, prompt)


def create_text_generation_pipeline(
    model_name: str | None = None,
    *,
    api_key: str | None = None,
    max_new_tokens: int | None = None,
    system_prompt: str | None = None,
):
    if settings.llm_provider == "openai":
        key = api_key or settings.openai_api_key
        if not key:
            raise ValueError("OPENAI_API_KEY is required when llm_provider=openai")
        return OpenAIChatPipeline(
            model=model_name or settings.openai_model,
            api_key=key,
            base_url=settings.openai_base_url,
            max_new_tokens=max_new_tokens or settings.llm_max_tokens,
            system_prompt=system_prompt,
        )
    raise ValueError(f"Unsupported llm_provider: {settings.llm_provider}")


def create_structured_llm_client(
    model_name: str | None = None,
    *,
    api_key: str | None = None,
    max_new_tokens: int | None = None,
    system_prompt: str | None = None,
) -> StructuredLLMClient:
    return StructuredLLMClient(
        create_text_generation_pipeline(
            model_name=model_name,
            api_key=api_key,
            max_new_tokens=max_new_tokens,
            system_prompt=system_prompt,
        )
    )
