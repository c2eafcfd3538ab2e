"""Tests for the structured extraction client and its pure helpers."""

from types import SimpleNamespace
from typing import List

import pytest

import structured_llm
from conftest import FakeLLMService, llm_text
from models import PostEntry, PostRanking, TokenUsage
from structured_llm import (
    MAX_BRACKET_SCANS,
    RAW_SNAPSHOT_LIMIT,
    LLMConfigurationError,
    LLMService,
    StructuredExtractionClient,
    add_usage,
    create_llm_service,
    extract_json_from_text,
    extract_usage,
    normalize_response_text,
    short_serialize,
)


class TestNormalizeResponseText:
    """Tests for response shape probes."""

    def test_output_text_wins(self):
        """The aggregated output_text field is used first."""
        assert normalize_response_text({"output_text": " hi ", "choices": [{"message": {"content": "no"}}]}) == "hi"

    def test_output_content_blocks(self):
        """Text blocks inside output items are joined."""
        resp = {"output": [{"type": "reasoning"}, {"content": [{"type": "output_text", "text": '{"a":'}, {"text": " 1}"}]}]}
        assert normalize_response_text(resp) == '{"a":\n 1}'

    def test_string_output_item(self):
        """A plain string output item is accepted."""
        assert normalize_response_text({"output": ["[1, 2]"]}) == "[1, 2]"

    def test_chat_completion_objects(self):
        """SDK-style objects with choices[0].message.content work."""
        resp = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content="ok"))])
        assert normalize_response_text(resp) == "ok"

    def test_plain_and_answer(self):
        """Bare strings and top-level answer/text fields are last resorts."""
        assert normalize_response_text("  raw  ") == "raw"
        assert normalize_response_text({"answer": "42"}) == "42"

    def test_nothing_found(self):
        """Empty or unknown shapes give None."""
        assert normalize_response_text({}) is None
        assert normalize_response_text({"output_text": "   "}) is None
        assert normalize_response_text(None) is None


class TestExtractUsage:
    """Tests for usage normalisation."""

    def test_responses_naming(self):
        """input/output token names are read directly."""
        usage = extract_usage({"usage": {"input_tokens": 3, "output_tokens": 4, "total_tokens": 9}})
        assert usage == TokenUsage(input_tokens=3, output_tokens=4, total_tokens=9)

    def test_chat_naming_and_total_default(self):
        """prompt/completion names are mapped and total defaults to the sum."""
        usage = extract_usage(SimpleNamespace(usage=SimpleNamespace(prompt_tokens=7, completion_tokens=2)))
        assert usage == TokenUsage(input_tokens=7, output_tokens=2, total_tokens=9)

    def test_missing_usage(self):
        """No usage block gives None."""
        assert extract_usage({"output_text": "x"}) is None

    def test_add_usage(self):
        """Usage sums component-wise and tolerates None."""
        total = add_usage(None, TokenUsage(input_tokens=1, output_tokens=2, total_tokens=3))
        total = add_usage(total, None)
        total = add_usage(total, TokenUsage(input_tokens=1, output_tokens=1, total_tokens=2))
        assert total == TokenUsage(input_tokens=2, output_tokens=3, total_tokens=5)


class TestExtractJson:
    """Tests for JSON extraction from model text."""

    def test_direct(self):
        """Whole-text JSON parses directly."""
        assert extract_json_from_text('{"score": 5}') == {"score": 5}

    def test_fenced_block(self):
        """Markdown fences are unwrapped."""
        assert extract_json_from_text('Here:\n```json\n[{"a": 1}]\n```\nbye') == [{"a": 1}]

    def test_embedded_in_prose_with_braces_in_strings(self):
        """Braces inside string literals do not end the object early."""
        text = 'Sure! {"summary": "use {curly} braces", "score": 7} Hope that helps.'
        assert extract_json_from_text(text) == {"summary": "use {curly} braces", "score": 7}

    def test_skips_unparseable_candidates(self):
        """A balanced but invalid span is skipped in favour of a later valid one."""
        assert extract_json_from_text("{not json} then {\"ok\": true}") == {"ok": True}

    def test_unclosed_brackets_scan_is_bounded(self, monkeypatch):
        """Runs of unclosed brackets stop after a fixed number of scans."""
        calls = []
        real = structured_llm._closing_index

        def counting(text, start):
            calls.append(start)
            return real(text, start)

        monkeypatch.setattr(structured_llm, "_closing_index", counting)
        assert extract_json_from_text("[" * 5000) is None
        assert len(calls) == MAX_BRACKET_SCANS

    def test_none_when_absent(self):
        """No JSON gives None; scalars do not count."""
        assert extract_json_from_text("no json here") is None
        assert extract_json_from_text("42") is None
        assert extract_json_from_text("") is None


class TestShortSerialize:
    """Tests for raw snapshots."""

    def test_truncated(self):
        """Long payloads are capped with a marker."""
        out = short_serialize({"text": "x" * 5000})
        assert len(out) == 2000 + len("...[truncated]")
        assert out.endswith("...[truncated]")

    def test_none(self):
        """None stays None."""
        assert short_serialize(None) is None


class TestStructuredExtractionClient:
    """Tests for the retry state machine."""

    def test_success_after_non_json(self, no_sleep):
        """Non-JSON then valid JSON succeeds on attempt 2 with that attempt's usage."""
        sleep, delays = no_sleep
        service = FakeLLMService([
            llm_text("I think it is good", input_tokens=100, output_tokens=50),
            llm_text('{"score": 8, "summary": "Useful."}', input_tokens=11, output_tokens=6),
        ])
        client = StructuredExtractionClient(service, sleep=sleep)
        outcome = client.request("rate this", PostRanking)
        assert outcome.ok
        assert outcome.attempts == 2
        assert outcome.data == PostRanking(score=8, summary="Useful.")
        assert outcome.usage == TokenUsage(input_tokens=11, output_tokens=6, total_tokens=17)
        assert outcome.raw_text == '{"score": 8, "summary": "Useful."}'
        assert delays == [0.5]

    def test_persistent_validation_failure(self, no_sleep):
        """Schema-invalid output on every attempt returns a typed failure."""
        sleep, delays = no_sleep
        service = FakeLLMService([llm_text('{"score": 42, "summary": "x"}', input_tokens=i) for i in (1, 2, 3)])
        outcome = StructuredExtractionClient(service, sleep=sleep).request("rate", PostRanking, max_attempts=3)
        assert not outcome.ok
        assert outcome.error_kind == "validation_failed"
        assert outcome.attempts == 3
        assert outcome.last_issues and outcome.last_issues[0]["loc"] == ["score"]
        assert outcome.usage.input_tokens == 3
        assert delays == [0.5, 1.0]
        assert len(service.calls) == 3

    def test_request_errors_are_retried(self, no_sleep):
        """Exceptions from the service become request_failed after the budget."""
        sleep, delays = no_sleep
        service = FakeLLMService([RuntimeError("rate limited"), RuntimeError("rate limited")])
        outcome = StructuredExtractionClient(service, sleep=sleep).request("p", PostRanking, max_attempts=2)
        assert not outcome.ok
        assert outcome.error_kind == "request_failed"
        assert "rate limited" in outcome.message
        assert delays == [0.5]

    def test_empty_output_is_parse_failure(self, no_sleep):
        """A response without text is a parse failure with a raw snapshot."""
        sleep, _ = no_sleep
        service = FakeLLMService([{"output": [], "id": "resp_1"}])
        outcome = StructuredExtractionClient(service, sleep=sleep).request("p", PostRanking, max_attempts=1)
        assert outcome.error_kind == "parse_failed"
        assert "resp_1" in outcome.raw_text

    def test_list_schema(self, no_sleep):
        """Container types are validated through a TypeAdapter."""
        sleep, _ = no_sleep
        service = FakeLLMService([llm_text('[{"title": "A", "url": "https://a.com/1", "date": null}]')])
        outcome = StructuredExtractionClient(service, sleep=sleep).request("p", List[PostEntry])
        assert outcome.ok
        assert outcome.data == [PostEntry(title="A", url="https://a.com/1")]

    def test_options_passed_through(self, no_sleep):
        """Model and temperature reach the service."""
        sleep, _ = no_sleep
        service = FakeLLMService([llm_text('{"score": 1, "summary": "s"}')])
        StructuredExtractionClient(service, sleep=sleep).request("p", PostRanking, model="m1", temperature=0.2)
        assert service.calls[0]["model"] == "m1"
        assert service.calls[0]["temperature"] == 0.2

    def test_validation_raw_is_capped(self, no_sleep):
        """Schema failures keep the same bounded raw snapshot as parse failures."""
        sleep, _ = no_sleep
        text = '{"score": 42, "summary": "' + "x" * 5000 + '"}'
        outcome = StructuredExtractionClient(FakeLLMService([llm_text(text)]), sleep=sleep).request("p", PostRanking, max_attempts=1)
        assert outcome.error_kind == "validation_failed"
        assert outcome.raw_text == text[:RAW_SNAPSHOT_LIMIT]

    def test_explicit_zero_attempts_means_one(self, no_sleep):
        """max_attempts=0 is not replaced by the client default."""
        sleep, delays = no_sleep
        service = FakeLLMService([llm_text("nope"), llm_text("nope"), llm_text("nope")])
        outcome = StructuredExtractionClient(service, max_attempts=3, sleep=sleep).request("p", PostRanking, max_attempts=0)
        assert outcome.attempts == 1
        assert len(service.calls) == 1
        assert delays == []

    def test_backoff_capped(self):
        """Delays double from 0.5s and never exceed 5s."""
        client = StructuredExtractionClient(FakeLLMService([]))
        assert [client.backoff_delay(a) for a in (1, 2, 3, 4, 5, 6)] == [0.5, 1.0, 2.0, 4.0, 5.0, 5.0]

    def test_missing_service(self):
        """A client without a service is a configuration error."""
        with pytest.raises(LLMConfigurationError):
            StructuredExtractionClient(None)


class TestServiceConstruction:
    """Tests for provider selection and request routing."""

    def test_missing_credentials(self, monkeypatch):
        """No API key at all raises at construction."""
        monkeypatch.delenv("DEEPSEEK_API_KEY", raising=False)
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(LLMConfigurationError):
            create_llm_service()

    def test_deepseek_preferred(self, monkeypatch):
        """DEEPSEEK_API_KEY selects the chat completions API."""
        monkeypatch.setenv("DEEPSEEK_API_KEY", "ds-test")
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        service = create_llm_service()
        assert service.provider == "deepseek"
        assert service.api == "chat"

    def test_openai_responses(self, monkeypatch):
        """OPENAI_API_KEY alone selects the Responses API."""
        monkeypatch.delenv("DEEPSEEK_API_KEY", raising=False)
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        service = create_llm_service(model="gpt-test")
        assert service.provider == "openai"
        assert service.api == "responses"
        assert service.model == "gpt-test"

    def test_routing(self):
        """Chat services send messages; responses services send input."""
        seen = {}
        fake = SimpleNamespace(
            chat=SimpleNamespace(completions=SimpleNamespace(create=lambda **kw: seen.setdefault("chat", kw))),
            responses=SimpleNamespace(create=lambda **kw: seen.setdefault("responses", kw)),
        )
        LLMService(fake, "m-chat", api="chat").create("hello")
        LLMService(fake, "m-resp").create("hello", temperature=None)
        assert seen["chat"] == {"model": "m-chat", "messages": [{"role": "user", "content": "hello"}]}
        assert seen["responses"] == {"model": "m-resp", "input": "hello"}
