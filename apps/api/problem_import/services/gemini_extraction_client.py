from __future__ import annotations

import base64
import importlib.util
import logging
import random
from enum import Enum

import httpx

from problem_import.config import GeminiSettings
from problem_import.services.deadline import Deadline
from problem_import.services.errors import ExtractionFailed, ExtractionUnavailable

logger = logging.getLogger(__name__)

_MODEL_NOT_FOUND_STATUS_CODES = {404}
_RATE_LIMITED_STATUS_CODES = {429}
_RETRY_MAX_DELAY_SECONDS = 60.0
_DEFAULT_FLASH_THINKING_BUDGET = 0
_EMPTY_RESPONSE_TEXT = "[]"


_EXTRACTION_RESPONSE_SCHEMA = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "number": {"type": "integer"},
            "questionLatex": {"type": "string"},
            "topics": {"type": "array", "items": {"type": "string"}},
            "answer": {"type": "string"},
        },
        "required": ["number", "questionLatex", "topics", "answer"],
    },
}


class GeminiErrorKind(str, Enum):
    MODEL_NOT_FOUND = "model_not_found"
    RATE_LIMITED = "rate_limited"
    OTHER = "other"


class GeminiCallError(RuntimeError):
    def __init__(
        self,
        *,
        kind: GeminiErrorKind,
        model: str,
        status_code: int | None,
        detail: str,
        retry_after: str | None = None,
    ):
        self.kind = kind
        self.model = model
        self.status_code = status_code
        self.retry_after = retry_after
        status_label = str(status_code) if status_code is not None else "request-error"
        super().__init__(f"model={model}, kind={kind.value}, status={status_label}: {detail}")


def build_system_instruction(allowed_topics: list[str]) -> str:
    topics = [topic for topic in allowed_topics if topic.strip()] or ["Arithmetic"]
    tag_list = ", ".join(f'"{topic}"' for topic in topics)
    return (
        "You are a math competition problem processor. You receive raw text from the FIRST section "
        "of a PDF only (e.g. Sprint Round). Your job is to:\n"
        "1. Extract EVERY problem from this section. Count them. Do not skip any.\n"
        "2. For each problem: convert it to LaTeX (use $...$ and $$...$$ for math only) and assign topics.\n"
        '3. Return a JSON array of objects: {"number": N, "questionLatex": "...", '
        '"topics": ["tag1", "tag2"], "answer": "numeric"}\n'
        '4. Use "number" as 1, 2, 3, ... in order. Do not include problems from other sections '
        "(Target, Countdown, Team, or a different competition).\n"
        f"5. For \"topics\" use only values from: [{tag_list}]\n"
        "6. In questionLatex, escape backslashes: write \\\\sqrt, \\\\frac (double backslash) so the JSON parses.\n"
        "7. An answer key is supplied with the text. Copy the answer for each matching problem number "
        "into \"answer\" instead of solving. Only solve a problem when the key has no entry for it.\n"
        "\n"
        "CRITICAL RULES:\n"
        "- Copy each problem word for word, character for character. Do not paraphrase, simplify, "
        "or \"fix\" the wording. Changing one word can make it a different problem.\n"
        "- No typos and no approximations. Proofread every problem against the source text.\n"
        "- A dollar sign starts LaTeX math mode. A literal dollar sign (prices) is \\\\$, so "
        "\"cost $7\" becomes \"cost \\\\$7\" in JSON. Never write \\\\7.\n"
        "- Never change variable names, labels, or circle names. If the source says \"Circle D\", "
        "do not write \"Circle B\".\n"
        "- Keep numbers, coordinates, and variables inside the sentence where they belong.\n"
        "- For \"not equal\" use \\\\ne (not \\\\neq). For repeating decimals use \\\\overline{digits}."
    )


class GeminiExtractionClient:
    """Structured problem extraction through the Gemini generateContent API.

    Models are tried in settings order. A missing model moves on immediately,
    a rate limit backs off and retries the same model up to
    ``max_attempts_per_model`` times, anything else fails the call.
    """

    def __init__(self, settings: GeminiSettings, *, http_client: httpx.Client | None = None) -> None:
        self.settings = settings
        self._http_client = http_client

    def extract(
        self,
        prompt_text: str,
        *,
        allowed_topics: list[str],
        deadline: Deadline,
        pdf_bytes: bytes | None = None,
    ) -> str:
        if not self.settings.api_key:
            raise ExtractionFailed(
                "GEMINI_API_KEY is required for AI import. Get a free key at https://aistudio.google.com/app/apikey"
            )
        deadline.check("Gemini extraction")
        if self._http_client is not None:
            return self._extract_with_client(
                client=self._http_client,
                prompt_text=prompt_text,
                allowed_topics=allowed_topics,
                deadline=deadline,
                pdf_bytes=pdf_bytes,
            )
        with _create_gemini_http_client(timeout=self.settings.request_timeout_seconds) as client:
            return self._extract_with_client(
                client=client,
                prompt_text=prompt_text,
                allowed_topics=allowed_topics,
                deadline=deadline,
                pdf_bytes=pdf_bytes,
            )

    def _extract_with_client(
        self,
        *,
        client: httpx.Client,
        prompt_text: str,
        allowed_topics: list[str],
        deadline: Deadline,
        pdf_bytes: bytes | None,
    ) -> str:
        system_instruction = build_system_instruction(allowed_topics)
        max_attempts = max(1, int(self.settings.max_attempts_per_model))
        attempted_models: list[str] = []
        last_error: GeminiCallError | None = None

        for model in _build_model_candidates(self.settings.models):
            attempted_models.append(model)
            for attempt in range(1, max_attempts + 1):
                deadline.check(f"Gemini call to {model}")
                try:
                    return _call_gemini_model(
                        client=client,
                        api_key=self.settings.api_key or "",
                        base_url=self.settings.base_url,
                        model=model,
                        system_instruction=system_instruction,
                        prompt_text=prompt_text,
                        pdf_bytes=pdf_bytes,
                        max_output_tokens=self.settings.max_output_tokens,
                        timeout=deadline.bounded_timeout(self.settings.request_timeout_seconds),
                    )
                except GeminiCallError as exc:
                    last_error = exc
                    if exc.kind is GeminiErrorKind.MODEL_NOT_FOUND:
                        logger.warning("Gemini model %s not found, trying next model", model)
                        break
                    if exc.kind is GeminiErrorKind.RATE_LIMITED:
                        if attempt >= max_attempts:
                            logger.warning("Gemini model %s still rate limited after %d attempts", model, attempt)
                            break
                        delay = _rate_limit_delay(
                            retry_after=exc.retry_after,
                            default_seconds=self.settings.rate_limit_backoff_seconds,
                        )
                        logger.info("Gemini model %s rate limited, retrying in %.1fs", model, delay)
                        deadline.sleep(delay, stage=f"rate-limit backoff for {model}")
                        continue
                    raise ExtractionFailed(f"Gemini request failed: {exc}") from exc

        raise ExtractionUnavailable(attempted_models, str(last_error) if last_error else None)


def _call_gemini_model(
    *,
    client: httpx.Client,
    api_key: str,
    base_url: str,
    model: str,
    system_instruction: str,
    prompt_text: str,
    pdf_bytes: bytes | None,
    max_output_tokens: int,
    timeout: float,
) -> str:
    parts: list[dict] = [{"text": prompt_text}]
    if pdf_bytes:
        parts.append(
            {
                "inlineData": {
                    "mimeType": "application/pdf",
                    "data": base64.b64encode(pdf_bytes).decode("ascii"),
                }
            }
        )
    url = f"{base_url.rstrip('/')}/models/{model}:generateContent"
    payload = {
        "systemInstruction": {"parts": [{"text": system_instruction}]},
        "contents": [{"role": "user", "parts": parts}],
        "generationConfig": _build_generation_config(model=model, max_output_tokens=max_output_tokens),
    }

    try:
        response = client.post(
            url,
            headers={
                "x-goog-api-key": api_key,
                "Content-Type": "application/json",
            },
            json=payload,
            timeout=timeout,
        )
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        raise _classify_http_error(exc, model=model) from exc
    except httpx.RequestError as exc:
        raise GeminiCallError(
            kind=GeminiErrorKind.OTHER,
            model=model,
            status_code=None,
            detail=str(exc) or type(exc).__name__,
        ) from exc

    try:
        data = response.json()
    except ValueError as exc:
        raise GeminiCallError(
            kind=GeminiErrorKind.OTHER,
            model=model,
            status_code=response.status_code,
            detail="response body is not JSON",
        ) from exc
    return _extract_gemini_text(data) or _EMPTY_RESPONSE_TEXT


def _classify_http_error(exc: httpx.HTTPStatusError, *, model: str) -> GeminiCallError:
    status_code = exc.response.status_code
    if status_code in _MODEL_NOT_FOUND_STATUS_CODES:
        kind = GeminiErrorKind.MODEL_NOT_FOUND
    elif status_code in _RATE_LIMITED_STATUS_CODES:
        kind = GeminiErrorKind.RATE_LIMITED
    else:
        kind = GeminiErrorKind.OTHER
    return GeminiCallError(
        kind=kind,
        model=model,
        status_code=status_code,
        detail=_error_detail(exc.response),
        retry_after=exc.response.headers.get("retry-after"),
    )


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except Exception:
        return response.text[:200] or response.reason_phrase
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict):
        message = error.get("message") or error.get("status")
        if message:
            return str(message)
    return response.reason_phrase


def _build_model_candidates(models: list[str]) -> list[str]:
    candidates: list[str] = []
    for model in models:
        normalized = str(model).strip()
        if normalized and normalized not in candidates:
            candidates.append(normalized)
    return candidates


def _create_gemini_http_client(*, timeout: float) -> httpx.Client:
    return httpx.Client(
        timeout=timeout,
        http2=importlib.util.find_spec("h2") is not None,
        limits=httpx.Limits(max_connections=4, max_keepalive_connections=2),
    )


def _build_generation_config(*, model: str, max_output_tokens: int) -> dict:
    generation_config: dict = {
        "temperature": 0,
        "responseMimeType": "application/json",
        "responseSchema": _EXTRACTION_RESPONSE_SCHEMA,
        "candidateCount": 1,
        "maxOutputTokens": _clamp_int(max_output_tokens, lower=1024, upper=65536),
    }
    if _should_include_thinking_budget(model):
        generation_config["thinkingConfig"] = {"thinkingBudget": _DEFAULT_FLASH_THINKING_BUDGET}
    return generation_config


def _should_include_thinking_budget(model: str) -> bool:
    model_name = model.strip().lower()
    return "2.5" in model_name and "flash" in model_name


def _rate_limit_delay(*, retry_after: str | None, default_seconds: float) -> float:
    delay = _parse_retry_after(retry_after)
    if delay is None:
        delay = default_seconds
    return delay + random.uniform(0, 0.25)


def _parse_retry_after(retry_after: str | None) -> float | None:
    if retry_after is None:
        return None
    stripped = retry_after.strip()
    if not stripped:
        return None
    try:
        parsed = float(stripped)
    except Exception:
        return None
    return max(0.0, min(parsed, _RETRY_MAX_DELAY_SECONDS))


def _clamp_int(value: int, *, lower: int, upper: int) -> int:
    parsed = int(value)
    if parsed < lower:
        return lower
    if parsed > upper:
        return upper
    return parsed


def _extract_gemini_text(data: dict) -> str:
    candidates = data.get("candidates") if isinstance(data, dict) else None
    if not isinstance(candidates, list):
        return ""
    for candidate in candidates:
        if not isinstance(candidate, dict):
            continue
        content = candidate.get("content")
        if not isinstance(content, dict):
            continue
        parts = content.get("parts")
        if not isinstance(parts, list):
            continue
        texts = [
            part["text"]
            for part in parts
            if isinstance(part, dict) and isinstance(part.get("text"), str) and not part.get("thought")
        ]
        joined = "".join(texts).strip()
        if joined:
            return joined
    return ""
