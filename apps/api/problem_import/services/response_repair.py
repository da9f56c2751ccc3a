from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterator

from json_repair import repair_json

from problem_import.schemas.pdf_import import ProblemCandidate
from problem_import.services.errors import UnparseableResponse

logger = logging.getLogger(__name__)

_CODE_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*|\s*```\s*$", re.IGNORECASE)

# A single backslash, one of the JSON escape letters b f n r t, then more letters
# is a LaTeX command (\frac, \notin, \textit), never a control character.
_JSON_ESCAPE_RE = re.compile(r"\\(?:(?P<latex>[bfnrt][A-Za-z]+)|(?P<valid>u[0-9a-fA-F]{4}|[\"\\/bfnrt]))?")
_NEQ_RE = re.compile(r"\\neq\b")
_BARE_PRICE_RE = re.compile(r"(\b(?:cost|costs|spent)\s+)\\(\d+)", re.IGNORECASE)
_UNPARSED = object()


def repair_response(raw_text: str) -> list[ProblemCandidate]:
    """Parse a backend response into problem candidates, repairing common JSON damage."""
    if not isinstance(raw_text, str) or not raw_text.strip():
        raise UnparseableResponse("AI returned an empty response")

    text = strip_code_fences(raw_text)
    fragments = [fix_invalid_escapes(fragment) for fragment in iter_json_fragments(text)]
    fragments = fragments or [fix_invalid_escapes(text)]

    parsed = _parse_first_fragment(fragments)
    if parsed is _UNPARSED:
        # Prose may carry stray brackets; the largest fragment is the likeliest payload.
        json_text = max(fragments, key=len)
        logger.info("Strict JSON parse failed, running best-effort repair")
        try:
            parsed = json.loads(repair_json(json_text))
        except (json.JSONDecodeError, ValueError, TypeError) as repair_exc:
            raise UnparseableResponse(f"AI returned invalid JSON: {repair_exc}") from repair_exc

    if isinstance(parsed, dict):
        parsed = [parsed]
    if not isinstance(parsed, list):
        raise UnparseableResponse(f"AI returned {type(parsed).__name__} instead of a JSON array")

    candidates: list[ProblemCandidate] = []
    for item in parsed:
        candidate = _normalize_candidate_item(item)
        if candidate is not None:
            candidates.append(candidate)
    return candidates


def strip_code_fences(text: str) -> str:
    return _CODE_FENCE_RE.sub("", text).strip()


def extract_json_fragment(text: str) -> str:
    """Return the first balanced JSON array or object in text, ignoring surrounding prose.

    An unterminated fragment (truncated output) is returned up to the end of the
    text so the repair pass can close it.
    """
    return next(iter_json_fragments(text), text)


def iter_json_fragments(text: str) -> Iterator[str]:
    """Yield every top-level bracketed fragment of text in order."""
    index = 0
    while index < len(text):
        if text[index] not in "[{":
            index += 1
            continue
        end = _find_fragment_end(text, index)
        if end is None:
            yield text[index:]
            return
        yield text[index : end + 1]
        index = end + 1


def _find_fragment_end(text: str, start: int) -> int | None:
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in "[{":
            depth += 1
        elif char in "]}":
            depth -= 1
            if depth == 0:
                return index
    return None


def _parse_first_fragment(fragments: list[str]) -> object:
    for fragment in fragments:
        try:
            return json.loads(fragment)
        except json.JSONDecodeError:
            continue
    return _UNPARSED


def fix_invalid_escapes(text: str) -> str:
    """Double backslashes that would otherwise be invalid or misread JSON escapes."""

    def _replace(match: re.Match) -> str:
        latex = match.group("latex")
        if latex:
            return "\\\\" + latex
        valid = match.group("valid")
        if valid:
            return match.group(0)
        return "\\\\"

    return _JSON_ESCAPE_RE.sub(_replace, text)


def clean_question_latex(question: str) -> str:
    question = _NEQ_RE.sub(r"\\ne", question)
    return _BARE_PRICE_RE.sub(lambda m: f"{m.group(1)}\\${m.group(2)}", question)


def _normalize_candidate_item(item: object) -> ProblemCandidate | None:
    if not isinstance(item, dict):
        return None
    question = str(item.get("questionLatex") or item.get("question_latex") or item.get("question") or "").strip()
    if not question:
        return None

    raw_topics = item.get("topics")
    if isinstance(raw_topics, list):
        topics = [str(topic).strip() for topic in raw_topics if str(topic).strip()]
    elif isinstance(raw_topics, str) and raw_topics.strip():
        topics = [raw_topics.strip()]
    elif isinstance(item.get("topic"), str) and item["topic"].strip():
        topics = [item["topic"].strip()]
    else:
        topics = []

    raw_answer = item.get("answer")
    answer = "" if raw_answer is None else str(raw_answer).strip()

    return ProblemCandidate(
        number=_to_positive_int(item.get("number")),
        question_latex=clean_question_latex(question),
        topics=topics,
        answer=answer,
    )


def _to_positive_int(value: object) -> int | None:
    try:
        parsed = int(str(value))
    except Exception:
        return None
    if parsed > 0:
        return parsed
    return None
