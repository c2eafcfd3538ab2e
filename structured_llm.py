import os
import re
import json
import time
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from openai import OpenAI
from pydantic import TypeAdapter, ValidationError

import settings
from models import TokenUsage, ExtractionSuccess, ExtractionFailure, ExtractionOutcome


RAW_SNAPSHOT_LIMIT = 2000
MIN_BACKOFF_SECONDS = 0.5
MAX_BACKOFF_SECONDS = 5.0
BACKOFF_FACTOR = 2.0
MAX_BRACKET_SCANS = 64


class LLMConfigurationError(RuntimeError):
    """Credentials for the text-generation service are missing."""


class RetryableExtractionError(Exception):
    """One failed attempt, with enough context to report it if it is the last."""

    def __init__(
        self,
        code: str,
        message: str,
        raw: Optional[str] = None,
        usage: Optional[TokenUsage] = None,
        issues: Optional[List[Dict[str, Any]]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.raw = raw
        self.usage = usage
        self.issues = issues or []


# ======================
# Service construction
# ======================

class LLMService:
    """OpenAI SDK client bound to a provider, an API flavour and a default model."""

    def __init__(self, client: Any, model: str, api: str = "responses", provider: str = "openai"):
        self.client = client
        self.model = model
        self.api = api
        self.provider = provider

    def create(self, prompt: str, model: Optional[str] = None, temperature: Optional[float] = None, **extra: Any) -> Any:
        kwargs: Dict[str, Any] = {"model": model or self.model}
        if temperature is not None:
            kwargs["temperature"] = temperature
        kwargs.update({k: v for k, v in extra.items() if v is not None})
        if self.api == "chat":
            kwargs["messages"] = [{"role": "user", "content": prompt}]
            return self.client.chat.completions.create(**kwargs)
        kwargs["input"] = prompt
        return self.client.responses.create(**kwargs)


def create_llm_service(model: Optional[str] = None, timeout: float = settings.LLM_TIMEOUT_SECONDS) -> LLMService:
    """Build the service from environment credentials.

    DEEPSEEK_API_KEY selects DeepSeek's OpenAI-compatible chat completions;
    otherwise OPENAI_API_KEY and the Responses API are used.
    """
    ds_key = os.environ.get("DEEPSEEK_API_KEY")
    if ds_key:
        client = OpenAI(api_key=ds_key, base_url=settings.DEEPSEEK_BASE_URL, timeout=timeout)
        return LLMService(client, model or settings.DEEPSEEK_MODEL, api="chat", provider="deepseek")
    oa_key = os.environ.get("OPENAI_API_KEY")
    if not oa_key:
        raise LLMConfigurationError("Set DEEPSEEK_API_KEY or OPENAI_API_KEY in environment.")
    base_url = os.environ.get("OPENAI_BASE_URL")
    if base_url:
        client = OpenAI(api_key=oa_key, base_url=base_url, timeout=timeout)
    else:
        client = OpenAI(api_key=oa_key, timeout=timeout)
    return LLMService(client, model or settings.OPENAI_MODEL, api="responses", provider="openai")


# ======================
# Response normalization
# ======================

def _field(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _clean(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _probe_output_text(resp: Any) -> Optional[str]:
    return _clean(_field(resp, "output_text"))


def _probe_output_blocks(resp: Any) -> Optional[str]:
    output = _field(resp, "output")
    if not isinstance(output, (list, tuple)):
        return None
    parts: List[str] = []
    for item in output:
        if isinstance(item, str):
            parts.append(item)
            continue
        content = _field(item, "content")
        if isinstance(content, str):
            parts.append(content)
        elif isinstance(content, (list, tuple)):
            for block in content:
                text = block if isinstance(block, str) else _field(block, "text")
                if isinstance(text, str):
                    parts.append(text)
        elif content is not None:
            text = _field(content, "text")
            if isinstance(text, str):
                parts.append(text)
        else:
            text = _field(_field(item, "data"), "text")
            if isinstance(text, str):
                parts.append(text)
    return _clean("\n".join(parts))


def _probe_chat_choices(resp: Any) -> Optional[str]:
    choices = _field(resp, "choices")
    if not isinstance(choices, (list, tuple)) or not choices:
        return None
    return _clean(_field(_field(choices[0], "message"), "content"))


def _probe_plain(resp: Any) -> Optional[str]:
    if isinstance(resp, str):
        return _clean(resp)
    for name in ("text", "answer", "content"):
        text = _clean(_field(resp, name))
        if text:
            return text
    return None


# Order matters: first probe that yields text wins
SHAPE_PROBES: Tuple[Callable[[Any], Optional[str]], ...] = (
    _probe_output_text,
    _probe_output_blocks,
    _probe_chat_choices,
    _probe_plain,
)


def normalize_response_text(resp: Any) -> Optional[str]:
    for probe in SHAPE_PROBES:
        text = probe(resp)
        if text:
            return text
    return None


def _as_count(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    return None


def extract_usage(resp: Any) -> Optional[TokenUsage]:
    """Token counts under either naming scheme (input/output or prompt/completion)."""
    raw = _field(resp, "usage")
    if raw is None:
        raw = _field(_field(_field(resp, "_response"), "body"), "usage")
    if raw is None or isinstance(raw, (str, int, float)):
        return None
    input_tokens = _as_count(_field(raw, "input_tokens"))
    if input_tokens is None:
        input_tokens = _as_count(_field(raw, "prompt_tokens")) or 0
    output_tokens = _as_count(_field(raw, "output_tokens"))
    if output_tokens is None:
        output_tokens = _as_count(_field(raw, "completion_tokens")) or 0
    total_tokens = _as_count(_field(raw, "total_tokens"))
    if total_tokens is None:
        total_tokens = input_tokens + output_tokens
    return TokenUsage(input_tokens=input_tokens, output_tokens=output_tokens, total_tokens=total_tokens)


def short_serialize(obj: Any, limit: int = RAW_SNAPSHOT_LIMIT) -> Optional[str]:
    if obj is None:
        return None
    body = _field(_field(obj, "_response"), "body") or obj
    if hasattr(body, "model_dump"):
        try:
            body = body.model_dump()
        except Exception:
            body = str(body)
    try:
        s = body if isinstance(body, str) else json.dumps(body, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        s = str(body)
    return s[:limit] + "...[truncated]" if len(s) > limit else s


# ======================
# JSON extraction
# ======================

def _closing_index(text: str, start: int) -> Optional[int]:
    """Index of the bracket closing the one at ``start``; string literals are skipped."""
    stack: List[str] = []
    in_str = False
    escaped = False
    for j in range(start, len(text)):
        c = text[j]
        if in_str:
            if escaped:
                escaped = False
            elif c == "\\":
                escaped = True
            elif c == '"':
                in_str = False
            continue
        if c == '"':
            in_str = True
        elif c in "{[":
            stack.append("}" if c == "{" else "]")
        elif c in "}]":
            if not stack or c != stack[-1]:
                return None
            stack.pop()
            if not stack:
                return j
    return None


def _balanced_candidates(text: str, limit: int = MAX_BRACKET_SCANS) -> Iterator[str]:
    scans = 0
    for i, c in enumerate(text):
        if c not in "{[":
            continue
        # Each scan may run to the end of the text
        scans += 1
        if scans > limit:
            return
        end = _closing_index(text, i)
        if end is not None:
            yield text[i : end + 1]


def extract_json_from_text(text: str) -> Optional[Any]:
    """First JSON object or array in text that may include markdown fences or prose."""
    if not text:
        return None
    s = text.strip()
    # 1) Whole text
    try:
        data = json.loads(s)
        if isinstance(data, (dict, list)):
            return data
    except ValueError:
        pass
    # 2) Fenced block ```json ... ```
    fence = re.search(r"```(?:json)?\s*([\s\S]*?)```", s, flags=re.IGNORECASE)
    if fence:
        try:
            data = json.loads(fence.group(1).strip())
            if isinstance(data, (dict, list)):
                return data
        except ValueError:
            pass
    # 3) First balanced {...} or [...] that parses
    for candidate in _balanced_candidates(s):
        try:
            return json.loads(candidate)
        except ValueError:
            continue
    return None


def validation_issues(err: ValidationError) -> List[Dict[str, Any]]:
    return [
        {"loc": list(e.get("loc", ())), "msg": str(e.get("msg", "")), "type": str(e.get("type", ""))}
        for e in err.errors()
    ]


# ======================
# Retry state machine
# ======================

class StructuredExtractionClient:
    """Prompt in, schema-validated data out, with bounded retry.

    Every attempt either produces validated data or raises a
    RetryableExtractionError (request_failed / parse_failed /
    validation_failed). After the last attempt the error is returned as an
    ExtractionFailure, so callers always get an ExtractionOutcome back.

    Usage policy: a success reports the usage of the attempt that succeeded;
    a failure reports the usage of the last attempt.
    """

    def __init__(
        self,
        service: Any,
        max_attempts: int = settings.LLM_MAX_ATTEMPTS,
        min_delay: float = MIN_BACKOFF_SECONDS,
        max_delay: float = MAX_BACKOFF_SECONDS,
        factor: float = BACKOFF_FACTOR,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if service is None:
            raise LLMConfigurationError("A text-generation service is required.")
        self.service = service
        self.max_attempts = max(1, int(max_attempts))
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.factor = factor
        self.sleep = sleep

    def backoff_delay(self, attempt: int) -> float:
        return min(self.max_delay, self.min_delay * (self.factor ** max(0, attempt - 1)))

    def _attempt(self, prompt: str, adapter: TypeAdapter, options: Dict[str, Any]) -> Tuple[Any, str, Optional[TokenUsage]]:
        try:
            resp = self.service.create(prompt, **options)
        except Exception as e:
            # Network, auth, rate limits: all worth another attempt
            raw = short_serialize(getattr(e, "response", None)) or str(e)
            raise RetryableExtractionError("request_failed", str(e) or type(e).__name__, raw=raw)

        usage = extract_usage(resp)
        text = normalize_response_text(resp)
        if not text:
            raise RetryableExtractionError("parse_failed", "no output text returned by model", raw=short_serialize(resp), usage=usage)

        candidate = extract_json_from_text(text)
        if candidate is None:
            raise RetryableExtractionError("parse_failed", "could not parse JSON from model output", raw=text[:RAW_SNAPSHOT_LIMIT], usage=usage)

        try:
            data = adapter.validate_python(candidate)
        except ValidationError as e:
            raise RetryableExtractionError("validation_failed", "schema validation failed", raw=text[:RAW_SNAPSHOT_LIMIT], usage=usage, issues=validation_issues(e))
        return data, text, usage

    def request(
        self,
        prompt: str,
        schema: Any,
        max_attempts: Optional[int] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        **extra: Any,
    ) -> ExtractionOutcome:
        attempts = max(1, int(self.max_attempts if max_attempts is None else max_attempts))
        adapter = schema if isinstance(schema, TypeAdapter) else TypeAdapter(schema)
        options: Dict[str, Any] = {"model": model, "temperature": temperature}
        options.update(extra)

        last: Optional[RetryableExtractionError] = None
        for attempt in range(1, attempts + 1):
            try:
                data, text, usage = self._attempt(prompt, adapter, options)
            except RetryableExtractionError as err:
                last = err
                left = attempts - attempt
                print(f"[llm] attempt {attempt} failed ({err.code}: {err.message}). {left} retries left.")
                if err.raw:
                    print(f"[llm] attempt raw: {err.raw[:RAW_SNAPSHOT_LIMIT]}")
                if left:
                    self.sleep(self.backoff_delay(attempt))
                continue
            return ExtractionSuccess(data=data, raw_text=text, usage=usage, attempts=attempt)

        return ExtractionFailure(
            error_kind=last.code,
            message=last.message,
            raw_text=last.raw,
            usage=last.usage,
            last_issues=last.issues,
            attempts=attempts,
        )


def add_usage(total: Optional[TokenUsage], usage: Optional[TokenUsage]) -> TokenUsage:
    """Running sum of token counts; missing usage counts as zero."""
    total = total or TokenUsage()
    if usage is None:
        return total
    return TokenUsage(
        input_tokens=total.input_tokens + usage.input_tokens,
        output_tokens=total.output_tokens + usage.output_tokens,
        total_tokens=total.total_tokens + usage.total_tokens,
    )
