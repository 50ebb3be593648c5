from __future__ import annotations

import json
import logging
import math
import time
from datetime import UTC, datetime
from typing import Any, Protocol

from .http import HttpConnectionError, HttpStatusError, HttpTimeout, HttpTransport, UrllibTransport
from .models import GeneratedDocument, GenerationResult

logger = logging.getLogger(__name__)

WORDS_PER_MINUTE = 200


class ContentGenerator(Protocol):
    """Interface for free-text completions. Implementations never raise."""

    @property
    def available(self) -> bool: ...

    def generate(self, prompt: str, *, temperature: float | None = None, max_tokens: int | None = None) -> GenerationResult: ...


class UnconfiguredGenerator:
    """Stand-in used when no provider key is configured."""

    available = False

    def __init__(self, reason: str = "Content generation is not configured") -> None:
        self.reason = reason

    def generate(self, prompt: str, *, temperature: float | None = None, max_tokens: int | None = None) -> GenerationResult:
        return GenerationResult(status="not_configured", error=self.reason)


class OpenAIChatCompletionsAdapter:
    """Small OpenAI adapter using the chat completions REST API."""

    available = True

    def __init__(
        self,
        *,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str = "https://api.openai.com/v1",
        timeout_s: float = 30.0,
        max_retries: int = 1,
        backoff_s: float = 0.2,
        temperature: float = 0.3,
        max_tokens: int = 4096,
        system_prompt: str = "You are an operations assistant for a forensic audit and consultancy firm.",
        transport: HttpTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.max_retries = max(0, max_retries)
        self.backoff_s = max(0.0, backoff_s)
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.system_prompt = system_prompt
        self.transport = transport or UrllibTransport()

    def generate(self, prompt: str, *, temperature: float | None = None, max_tokens: int | None = None) -> GenerationResult:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": self.system_prompt},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.temperature if temperature is None else temperature,
            "max_tokens": self.max_tokens if max_tokens is None else max_tokens,
        }
        try:
            response_json = self._request_with_retry(payload)
            text = self._extract_content(response_json)
        except (HttpStatusError, HttpTimeout, HttpConnectionError, ValueError) as exc:
            return GenerationResult(status="failed", error=str(exc))
        return GenerationResult(status="generated", text=text)

    def _request_with_retry(self, payload: dict[str, Any]) -> dict[str, Any]:
        last_error: Exception | None = None
        for attempt in range(self.max_retries + 1):
            try:
                return self._request(payload)
            except (HttpStatusError, HttpTimeout, HttpConnectionError, ValueError) as exc:
                last_error = exc
                logger.warning(
                    "OpenAI request failed attempt=%d/%d model=%s reason=%s",
                    attempt + 1,
                    self.max_retries + 1,
                    self.model,
                    exc,
                )
                if attempt < self.max_retries and self.backoff_s > 0:
                    time.sleep(self.backoff_s)
        if last_error is None:
            raise RuntimeError("LLM request failed with unknown error")
        raise last_error

    def _request(self, payload: dict[str, Any]) -> dict[str, Any]:
        response = self.transport.request(
            "POST",
            f"{self.base_url}/chat/completions",
            body=json.dumps(payload).encode("utf-8"),
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            timeout_s=self.timeout_s,
        )
        parsed = response.json()
        if not isinstance(parsed, dict):
            raise ValueError("OpenAI response body is not a JSON object")
        return parsed

    @staticmethod
    def _extract_content(response_json: dict[str, Any]) -> str:
        choices = response_json.get("choices", [])
        if not choices:
            raise ValueError("OpenAI response did not contain choices")

        message = choices[0].get("message", {})
        content = message.get("content", "")
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            text_segments: list[str] = []
            for item in content:
                if isinstance(item, dict):
                    text = item.get("text")
                    if isinstance(text, str):
                        text_segments.append(text)
            merged = "".join(text_segments).strip()
            if merged:
                return merged
        raise ValueError("OpenAI response content could not be parsed as text")


def build_content_generator(
    *,
    provider: str,
    api_key: str,
    model: str,
    base_url: str,
    timeout_s: float,
    max_retries: int,
    backoff_s: float,
    temperature: float,
    max_tokens: int,
    transport: HttpTransport | None = None,
) -> ContentGenerator:
    if provider.lower() != "openai":
        return UnconfiguredGenerator(f"Unsupported LLM provider: {provider}")
    if not api_key:
        return UnconfiguredGenerator("OPENAI_API_KEY is not set")
    return OpenAIChatCompletionsAdapter(
        api_key=api_key,
        model=model,
        base_url=base_url,
        timeout_s=timeout_s,
        max_retries=max_retries,
        backoff_s=backoff_s,
        temperature=temperature,
        max_tokens=max_tokens,
        transport=transport,
    )


_DOCUMENT_PROMPTS = {
    "audit": "Write a professional forensic audit report in markdown with an executive summary, "
    "scope, findings, risks and recommendations.",
    "report": "Write a concise professional business report in markdown with a summary, analysis "
    "and next steps.",
    "closing_report": "Write the final closing report for a completed consultancy project in markdown. "
    "Include an executive summary, delivered work, key findings and follow-up recommendations.",
    "email": "Write a short professional email. Return only the email body.",
}


class ContentService:
    """Document generation with a deterministic template when the generator is unavailable."""

    def __init__(self, generator: ContentGenerator) -> None:
        self.generator = generator

    @property
    def available(self) -> bool:
        return bool(self.generator.available)

    def generate_document(self, content_type: str, data: dict[str, Any]) -> GeneratedDocument:
        instructions = _DOCUMENT_PROMPTS.get(content_type, _DOCUMENT_PROMPTS["report"])
        prompt = f"{instructions}\n\nSource data (JSON):\n{json.dumps(data, indent=2, default=str, ensure_ascii=False)}"
        result = self.generator.generate(prompt)
        if result.status == "generated" and result.text.strip():
            return _document(content_type, "generated", result.text.strip())

        logger.warning(
            "content generation event=fallback content_type=%s status=%s reason=%s",
            content_type,
            result.status,
            result.error,
        )
        return _document(content_type, "fallback", render_fallback(content_type, data))


def render_fallback(content_type: str, data: dict[str, Any]) -> str:
    title = str(data.get("title") or data.get("project_name") or data.get("name") or content_type.replace("_", " ").title())
    lines = [f"# {title}", "", f"_Generated {datetime.now(UTC).strftime('%Y-%m-%d %H:%M UTC')} without AI assistance._", ""]
    summary = data.get("summary") or data.get("description")
    if summary:
        lines.extend(["## Summary", "", str(summary), ""])
    findings = data.get("findings")
    if isinstance(findings, list) and findings:
        lines.extend(["## Findings", ""])
        lines.extend(f"- {item}" for item in findings)
        lines.append("")
    details = {
        key: value
        for key, value in data.items()
        if key not in {"title", "project_name", "name", "summary", "description", "findings"}
        and isinstance(value, (str, int, float, bool))
    }
    if details:
        lines.extend(["## Details", ""])
        lines.extend(f"- **{key.replace('_', ' ')}**: {value}" for key, value in details.items())
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"


def _document(content_type: str, source: str, content: str) -> GeneratedDocument:
    words = len(content.split())
    return GeneratedDocument(
        content_type=content_type,
        source=source,  # type: ignore[arg-type]
        content=content,
        generated_at=datetime.now(UTC),
        word_count=words,
        estimated_read_minutes=math.ceil(words / WORDS_PER_MINUTE),
    )
