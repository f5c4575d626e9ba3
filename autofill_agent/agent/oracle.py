"""Semantic mapping oracle: free-text note + field schema -> identity/value mapping.

The executor only depends on the `MappingOracle` protocol, so tests and callers can
hand in any object with a matching `generate_mapping` coroutine.
"""

import json
import logging
from typing import Optional, Protocol

from ..errors import MappingFormatError, OracleFailure
from ..models import ContextSchema, FieldMapping, validate_mapping
from .llm_client import StructuredLLMClient, _extract_json, create_structured_llm_client

MAPPING_SYSTEM_PROMPT = """
You are an expert medical data entry agent. Your goal is to map a clinician's unstructured note onto a structured EMR form.

Rules:
- Only map fields where the note gives clear, confident data.
- Use the exact field "id" as the key, or the "name" when the id is empty. Never invent keys that are not in the schema.
- For date fields use ISO format YYYY-MM-DD.
- For select fields pick one of the listed options.
- For checkboxes answer "true" or "false".
- Every value must be a JSON string.
- Do not guess or fabricate data. Leave out any field you cannot fill confidently.
- Respond with exactly one JSON object and nothing else: no markdown, no code fences, no commentary.
"""


class MappingOracle(Protocol):
    async def generate_mapping(
        self, note: str, schema: ContextSchema, context_hint: Optional[str] = None
    ) -> FieldMapping: ...


def describe_context_hint(context_hint: Optional[str]) -> str:
    if not context_hint:
        return "form"
    return context_hint.replace("_", " ").upper()


def build_mapping_prompt(note: str, schema: ContextSchema, context_hint: Optional[str] = None) -> str:
    lines: list[str] = []
    if context_hint:
        lines.append(f"You are filling the {describe_context_hint(context_hint)} of the application.")
        lines.append("")
    lines.append("Context: here is the JSON schema of the visible inputs on the page, in page order:")
    lines.append(json.dumps(schema.to_prompt_fields(), indent=2))
    lines.append("")
    lines.append(
        "Task: map the following note to the fields above. Return ONLY a JSON object whose keys are "
        "field ids (or names when the id is empty) and whose values are the text to fill."
    )
    lines.append("")
    lines.append("Note:")
    lines.append(note)
    return "\n".join(lines)


class LLMMappingOracle:
    def __init__(self, client: StructuredLLMClient) -> None:
        self.client = client

    async def generate_mapping(
        self, note: str, schema: ContextSchema, context_hint: Optional[str] = None
    ) -> FieldMapping:
        prompt = build_mapping_prompt(note, schema, context_hint)
        try:
            raw = await self.client.generate_text(prompt)
        except Exception as exc:  # noqa: BLE001
            raise OracleFailure(f"mapping request failed: {exc!r}") from exc

        if raw is None or not str(raw).strip():
            raise OracleFailure("No text response from AI")

        data, reason = _extract_json(str(raw))
        if data is None:
            raise MappingFormatError(f"Failed to parse AI response as a JSON object ({reason})")
        # Arrays and scalars are rejected here, not unwrapped.
        mapping = validate_mapping(data)

        known = set(schema.keys())
        unknown = [key for key in mapping if key not in known]
        if unknown:
            logging.warning("oracle_unknown_keys count=%s keys=%s", len(unknown), unknown[:10])
        logging.debug("oracle_mapping hint=%s keys=%s", context_hint, list(mapping))
        return mapping


def create_mapping_oracle(api_key: Optional[str] = None, model_name: Optional[str] = None) -> LLMMappingOracle:
    return LLMMappingOracle(
        create_structured_llm_client(model_name, api_key=api_key, system_prompt=MAPPING_SYSTEM_PROMPT.strip())
    )
