from __future__ import annotations

import json

from fakes import FakeGenerator, FakeTransport

from audit_orchestrator.app.http import HttpResponse, HttpStatusError
from audit_orchestrator.app.llm import ContentService, OpenAIChatCompletionsAdapter, build_content_generator
from audit_orchestrator.app.models import GenerationResult


def _adapter(transport: FakeTransport) -> OpenAIChatCompletionsAdapter:
    return OpenAIChatCompletionsAdapter(api_key="sk-test", transport=transport, max_retries=1, backoff_s=0.0)


def test_adapter_posts_chat_completion_and_extracts_text(fake_transport: FakeTransport) -> None:
    fake_transport.script(
        [HttpResponse(status=200, body=json.dumps({"choices": [{"message": {"content": "Report body"}}]}))]
    )

    result = _adapter(fake_transport).generate("Write a report", temperature=0.1, max_tokens=50)

    call = fake_transport.calls[0]
    assert call.url == "https://api.openai.com/v1/chat/completions"
    assert call.headers["Authorization"] == "Bearer sk-test"
    assert call.json()["temperature"] == 0.1
    assert call.json()["max_tokens"] == 50
    assert result == GenerationResult(status="generated", text="Report body")


def test_adapter_retries_then_reports_failure(fake_transport: FakeTransport) -> None:
    fake_transport.responder = lambda method, url, body: HttpStatusError(500, "down", url)

    result = _adapter(fake_transport).generate("hello")

    assert result.status == "failed"
    assert "HTTP 500" in (result.error or "")
    assert len(fake_transport.calls) == 2


def test_adapter_rejects_empty_choices(fake_transport: FakeTransport) -> None:
    fake_transport.responder = lambda method, url, body: HttpResponse(status=200, body=json.dumps({"choices": []}))

    assert _adapter(fake_transport).generate("hello").status == "failed"


def test_builder_returns_unconfigured_generator_without_key() -> None:
    generator = build_content_generator(
        provider="openai",
        api_key="",
        model="gpt-4o-mini",
        base_url="https://api.openai.com/v1",
        timeout_s=5,
        max_retries=0,
        backoff_s=0,
        temperature=0.3,
        max_tokens=100,
    )

    assert generator.available is False
    assert generator.generate("x").status == "not_configured"


def test_content_service_uses_generated_text_or_fallback() -> None:
    generated = ContentService(
        FakeGenerator(answers=[GenerationResult(status="generated", text=" ".join(["word"] * 450))])
    ).generate_document("audit", {"client": "ACME"})
    assert generated.source == "generated"
    assert generated.word_count == 450
    assert generated.estimated_read_minutes == 3

    fallback = ContentService(FakeGenerator()).generate_document(
        "closing_report", {"project_name": "Q3 Review", "findings": ["Ledger gap", "Late approvals"], "client": "ACME"}
    )
    assert fallback.source == "fallback"
    assert fallback.content.startswith("# Q3 Review")
    assert "- Ledger gap" in fallback.content
    assert "- **client**: ACME" in fallback.content
