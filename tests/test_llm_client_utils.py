from datetime import date
from types import SimpleNamespace

import pytest

from thoughtbot import llm_client
from thoughtbot.llm_client import LLMResponseError, _extract_json_text, parse_classification


def test_extract_json_text_handles_prefix_suffix():
    data = ".\n{\n  \"a\": 1\n}\nextra"
    assert _extract_json_text(data) == '{\n  "a": 1\n}'


def test_extract_json_text_handles_nested_start():
    data = ".{\n{\"type\": \"thought\"}"
    assert _extract_json_text(data) == '{"type": "thought"}'


def test_extract_json_text_returns_original_when_no_braces():
    data = "oops"
    assert _extract_json_text(data) == "oops"


def test_parse_classification_ignores_null_branches():
    result = parse_classification(
        {
            "type": "task_create",
            "category": "business",
            "thought": None,
            "task_create": {"title": "Send invoice", "due_date": "2024-02-01"},
            "task_update": None,
        }
    )
    assert result.type == "task_create"
    assert result.category == "business"
    assert result.payload.title == "Send invoice"
    assert result.payload.due_date == date(2024, 2, 1)


def test_parse_classification_defaults_category():
    result = parse_classification({"type": "thought", "thought": {"text": "Learn Rust"}})
    assert result.category == "personal"


def test_parse_classification_ignores_null_filled_unused_branches():
    result = parse_classification(
        {
            "type": "thought",
            "category": "personal",
            "thought": {"text": "maybe learn piano"},
            "task_create": {"title": None, "due_date": None},
            "task_update": {"operation": None, "target_hint": None, "new_due_date": None},
        }
    )
    assert result.type == "thought"
    assert result.payload.text == "maybe learn piano"
    assert result.task_create is None
    assert result.task_update is None


@pytest.mark.parametrize("category, expected", [("Business", "business"), ("work", "personal"), ("", "personal")])
def test_parse_classification_coerces_unknown_category(category, expected):
    result = parse_classification(
        {"type": "task_create", "category": category, "task_create": {"title": "Send invoice"}}
    )
    assert result.category == expected


@pytest.mark.parametrize(
    "payload",
    [
        {"type": "task_create", "category": "personal"},
        {"type": "reminder", "thought": {"text": "x"}},
        {"type": "task_update", "task_update": {"operation": "archive", "target_hint": "x"}},
    ],
)
def test_parse_classification_rejects_bad_payloads(payload):
    with pytest.raises(LLMResponseError):
        parse_classification(payload)


class _FakeCompletions:
    def __init__(self, content: str):
        self.content = content
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


@pytest.mark.anyio
async def test_classify_transcript_uses_prompt_and_parses_wrapped_json(monkeypatch):
    completions = _FakeCompletions('Sure!\n{"type": "thought", "category": "business", "thought": {"text": "Hire"}}')
    fake_client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    monkeypatch.setattr(llm_client, "_get_client", lambda: fake_client)
    monkeypatch.setattr(
        llm_client,
        "get_settings",
        lambda: SimpleNamespace(classification_model="test-model"),
    )

    result = await llm_client.classify_transcript("maybe hire someone", date(2024, 1, 1))

    assert result.type == "thought"
    call = completions.calls[0]
    assert call["model"] == "test-model"
    assert call["response_format"] == {"type": "json_object"}
    prompt = call["messages"][0]["content"]
    assert "Today's date is: 2024-01-01" in prompt
    assert 'Transcript: "maybe hire someone"' in prompt


@pytest.mark.anyio
async def test_complete_json_rejects_non_json(monkeypatch):
    fake_client = SimpleNamespace(chat=SimpleNamespace(completions=_FakeCompletions("no json here")))
    monkeypatch.setattr(llm_client, "_get_client", lambda: fake_client)
    monkeypatch.setattr(llm_client, "get_settings", lambda: SimpleNamespace(classification_model="m"))

    with pytest.raises(LLMResponseError):
        await llm_client.complete_json("prompt")
