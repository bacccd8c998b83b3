"""Transcription, classification and embedding calls to an OpenAI-compatible endpoint."""
from __future__ import annotations

import json
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, TypedDict

from openai import APIError, AsyncOpenAI, OpenAIError

from thoughtbot.config import get_settings
from thoughtbot.models import ClassificationResult

EMBEDDING_INPUT_LIMIT = 8000


class LLMResponseError(RuntimeError):
    """Raised when the model endpoint fails or returns something unusable."""


CLASSIFIER_PROMPT_TEMPLATE = """You are a classifier for a voice capture system. Given a transcript, classify it as exactly ONE of: thought, task_create, task_update.

Rules:
- thought: Non-actionable observations, ideas, reflections. Things like "I think...", "Maybe we should...", "It would be nice if..."
- task_create: Commitments to do something specific. Has an action verb and implies obligation. Examples: "I need to...", "Remind me to...", "I have to..."
- task_update: References completing, canceling, postponing, or rescheduling an existing task. Examples: "Done with...", "Cancel the...", "Postpone... to tomorrow"

For task_create:
- Extract a concise, imperative title (e.g., "Post LinkedIn update" not "I need to post a LinkedIn update")
- Extract due_date if mentioned, otherwise set to null (backend will default to today)
- Dates like "tomorrow", "next Monday" should be converted to YYYY-MM-DD format

For task_update:
- operation: "complete" (done/finished), "cancel" (no longer needed), "postpone" (move to later date), "set_due_date" (change date)
- target_hint: key phrase to match against existing tasks
- new_due_date: the new date if rescheduling, otherwise null

Category classification (always required):
- "personal": Personal life, family, friends, hobbies, health, home, errands, personal finance, self-improvement
- "business": Work, clients, projects, meetings, professional tasks, company matters, business communications

Today's date is: {today}

Output ONLY valid JSON with no additional text. Use this exact schema:
{{
  "type": "thought" | "task_create" | "task_update",
  "category": "personal" | "business",
  "thought": {{ "text": "the original thought text" }},
  "task_create": {{ "title": "imperative task title", "due_date": "YYYY-MM-DD or null" }},
  "task_update": {{ "operation": "complete|cancel|postpone|set_due_date", "target_hint": "phrase to match task", "new_due_date": "YYYY-MM-DD or null" }}
}}

Only include the relevant field based on type (thought, task_create, or task_update). Always include category.

Transcript: "{transcript}"
"""


class _Message(TypedDict):
    role: str
    content: str


def _build_classification_messages(transcript: str, today: date) -> List[_Message]:
    prompt = CLASSIFIER_PROMPT_TEMPLATE.format(today=today.isoformat(), transcript=transcript)
    return [{"role": "user", "content": prompt}]


_CLIENT: AsyncOpenAI | None = None


def _get_client() -> AsyncOpenAI:
    global _CLIENT
    if _CLIENT is None:
        settings = get_settings()
        _CLIENT = AsyncOpenAI(
            base_url=settings.openai_base_url,
            api_key=settings.openai_api_key.get_secret_value(),
        )
    return _CLIENT


def _extract_json_text(content: str) -> str:
    """Some models wrap JSON with stray characters; try to isolate the first full object."""

    text = content.strip()
    length = len(text)
    for start in range(length):
        if text[start] != "{":
            continue
        depth = 0
        for end in range(start, length):
            char = text[end]
            if char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start : end + 1]
        # unmatched braces, try next start
    return text


def _response_text(response: Any) -> str:
    if not response.choices:
        raise LLMResponseError("LLM returned no choices")

    content = response.choices[0].message.content
    if not content:
        raise LLMResponseError("LLM response content is empty")

    if isinstance(content, list):
        # Some providers may return a list of content parts.
        return "".join(part.get("text", "") for part in content if isinstance(part, dict))
    return content


def _parse_json_object(content: str) -> Dict[str, Any]:
    try:
        payload = json.loads(_extract_json_text(content))
    except json.JSONDecodeError as exc:
        raise LLMResponseError(f"LLM returned invalid JSON: {exc}\nContent: {content}") from exc
    if not isinstance(payload, dict):
        raise LLMResponseError(f"LLM returned a non-object JSON value\nContent: {content}")
    return payload


async def _chat_json(messages: List[_Message]) -> Dict[str, Any]:
    client = _get_client()
    settings = get_settings()
    try:
        response = await client.chat.completions.create(
            model=settings.classification_model,
            messages=messages,
            temperature=0.1,
            response_format={"type": "json_object"},
        )
    except (APIError, OpenAIError, ConnectionError) as exc:
        raise LLMResponseError(f"Failed to call chat endpoint: {exc}") from exc
    return _parse_json_object(_response_text(response))


def parse_classification(payload: Dict[str, Any]) -> ClassificationResult:
    """Validate a raw classification payload, dropping explicit nulls for unused branches."""

    cleaned = {key: value for key, value in payload.items() if value is not None}
    try:
        return ClassificationResult.model_validate(cleaned)
    except Exception as exc:
        raise LLMResponseError(f"Response does not match schema: {exc}\nPayload: {payload}") from exc


async def classify_transcript(transcript: str, today: date) -> ClassificationResult:
    """Map free text to a thought, a new task or an update of an existing task."""

    payload = await _chat_json(_build_classification_messages(transcript, today))
    return parse_classification(payload)


async def complete_json(prompt: str) -> Dict[str, Any]:
    """Single-prompt JSON completion used for match adjudication."""

    return await _chat_json([{"role": "user", "content": prompt}])


async def transcribe_audio(audio_path: Path) -> str:
    client = _get_client()
    settings = get_settings()
    try:
        with Path(audio_path).open("rb") as audio_file:
            transcription = await client.audio.transcriptions.create(
                file=audio_file,
                model=settings.transcription_model,
                language=settings.transcription_language,
            )
    except (APIError, OpenAIError, ConnectionError) as exc:
        raise LLMResponseError(f"Failed to call transcription endpoint: {exc}") from exc
    return transcription.text


async def generate_embedding(text: str) -> List[float]:
    client = _get_client()
    settings = get_settings()
    try:
        response = await client.embeddings.create(
            model=settings.embedding_model,
            input=text[:EMBEDDING_INPUT_LIMIT],
        )
    except (APIError, OpenAIError, ConnectionError) as exc:
        raise LLMResponseError(f"Failed to call embeddings endpoint: {exc}") from exc
    if not response.data:
        raise LLMResponseError("Embeddings endpoint returned no data")
    return list(response.data[0].embedding)


__all__ = [
    "LLMResponseError",
    "classify_transcript",
    "parse_classification",
    "complete_json",
    "transcribe_audio",
    "generate_embedding",
]
