from __future__ import annotations

import logging
from collections.abc import Callable

from problem_import.config import DEFAULT_TOPIC_WHITELIST, GeminiSettings
from problem_import.schemas.pdf_import import ExtractedProblem, ImportResult, ProblemBlock, ProblemCandidate
from problem_import.services.answer_key import format_answer_key, parse_answer_key
from problem_import.services.answer_normalizer import normalize_answer
from problem_import.services.correction_loop import ExtractionBackend, run_correction_loop
from problem_import.services.deadline import Deadline
from problem_import.services.errors import (
    ExtractionFailed,
    ExtractionUnavailable,
    UnparseableResponse,
    ValidationError,
)
from problem_import.services.gemini_extraction_client import GeminiExtractionClient
from problem_import.services.pdf_text import extract_pdf_text
from problem_import.services.problem_segmenter import segment_problems
from problem_import.services.section_trimmer import DEFAULT_FOLDER_NAME, extract_source_name, trim_to_first_section

logger = logging.getLogger(__name__)

MIN_TEXT_LENGTH = 100


def build_extraction_prompt(text: str, answer_key: dict[int, str]) -> str:
    prompt = (
        "Extract all math problems from this raw PDF text. Handle any formatting - the document structure "
        "may be inconsistent. Copy each problem character-for-character from the source; do not introduce "
        f"any typos or changes.\n\n---\n\n{text}"
    )
    if answer_key:
        prompt += (
            "\n\nAnswer key (use these when the problem number matches):\n"
            f"{format_answer_key(answer_key)}"
        )
    return prompt


class PdfImportPipeline:
    """Turn a competition PDF plus answer key into an ImportResult.

    Holds no per-import state, so one instance can serve concurrent imports.
    """

    def __init__(
        self,
        settings: GeminiSettings,
        *,
        extraction_client: ExtractionBackend | None = None,
        text_extractor: Callable[[bytes], str] = extract_pdf_text,
    ) -> None:
        self.settings = settings
        self.extraction_client = extraction_client or GeminiExtractionClient(settings)
        self.text_extractor = text_extractor

    def import_document(
        self,
        pdf_bytes: bytes,
        answer_key_text: str | None,
        *,
        use_ai: bool,
        topic_whitelist: list[str] | None = None,
        folder_name_fallback: str = DEFAULT_FOLDER_NAME,
        deadline: Deadline | None = None,
        attach_pdf: bool = False,
    ) -> ImportResult:
        deadline = deadline or Deadline(self.settings.import_deadline_seconds)
        topics = [topic.strip() for topic in (topic_whitelist or DEFAULT_TOPIC_WHITELIST) if topic.strip()]
        topics = topics or list(DEFAULT_TOPIC_WHITELIST)
        answer_key = parse_answer_key(answer_key_text)

        text = self.text_extractor(pdf_bytes) or ""
        if len(text.strip()) < MIN_TEXT_LENGTH:
            raise ValidationError(
                "Could not extract meaningful text from PDF. The file may be scanned/image-based."
            )
        text = trim_to_first_section(text)
        folder_name = extract_source_name(text, folder_name_fallback)
        blocks = segment_problems(text)

        if use_ai:
            if not answer_key:
                raise ValidationError(
                    "Answer key is required for AI import. Paste answers in format: 1. 42, 2. 3/4, etc."
                )
            problems, errors = self._import_with_ai(
                text=text,
                blocks=blocks,
                answer_key=answer_key,
                topics=topics,
                deadline=deadline,
                pdf_bytes=pdf_bytes if attach_pdf else None,
            )
        else:
            if not blocks:
                raise ValidationError('No problems found in PDF. Expected format: "1. Question text..."')
            if not answer_key:
                raise ValidationError(
                    "Answer key is required for no-AI mode. Paste answers in format: 1. 42, 2. 3/4, etc."
                )
            missing = [block.sequence_number for block in blocks if block.sequence_number not in answer_key]
            if missing:
                listed = ", ".join(str(number) for number in missing)
                raise ValidationError(f"Answer key required for every problem in no-AI mode; missing: {listed}")
            problems, errors = _import_without_ai(blocks=blocks, answer_key=answer_key, default_topic=topics[0])

        logger.info(
            "Imported %d problems into %r (%d errors, use_ai=%s)",
            len(problems),
            folder_name,
            len(errors),
            use_ai,
        )
        return ImportResult(folder_name=folder_name, problems=tuple(problems), errors=tuple(errors))

    def _import_with_ai(
        self,
        *,
        text: str,
        blocks: list[ProblemBlock],
        answer_key: dict[int, str],
        topics: list[str],
        deadline: Deadline,
        pdf_bytes: bytes | None,
    ) -> tuple[list[ExtractedProblem], list[str]]:
        errors: list[str] = []
        # Both sides are assumed to count 1..K in document order; flag it when the counts disagree.
        if blocks and len(answer_key) != len(blocks):
            errors.append(
                f"Answer key has {len(answer_key)} entries but {len(blocks)} problems were found in the PDF. "
                "Answers are matched by problem number; check the key numbering."
            )

        try:
            outcome = run_correction_loop(
                self.extraction_client,
                base_prompt=build_extraction_prompt(text, answer_key),
                source_blocks=blocks,
                allowed_topics=topics,
                deadline=deadline,
                pdf_bytes=pdf_bytes,
                correction_pause_seconds=self.settings.correction_pause_seconds,
            )
        except (ExtractionUnavailable, ExtractionFailed, UnparseableResponse) as exc:
            logger.warning("AI extraction aborted: %s", exc)
            errors.append(str(exc) or "AI processing failed")
            return [], errors

        problems: list[ExtractedProblem] = []
        for index, candidate in enumerate(outcome.candidates):
            problem = _reconcile_candidate(
                candidate,
                fallback_number=index + 1,
                answer_key=answer_key,
                topics=topics,
                errors=errors,
            )
            if problem is not None:
                problems.append(problem)
        errors.extend(outcome.errors)
        return problems, errors


def _reconcile_candidate(
    candidate: ProblemCandidate,
    *,
    fallback_number: int,
    answer_key: dict[int, str],
    topics: list[str],
    errors: list[str],
) -> ExtractedProblem | None:
    number = candidate.number or fallback_number
    if number in answer_key:
        answer_text = answer_key[number]
    else:
        answer_text = candidate.answer

    answer_value = normalize_answer(answer_text)
    if answer_value is None:
        if answer_text:
            errors.append(f'Invalid answer for problem {number}: "{answer_text}"')
            return None
        errors.append(f"Problem {number}: no answer in key or AI output, stored as 0")
        answer_value = 0.0

    allowed = [topic for topic in candidate.topics if topic in topics]
    return ExtractedProblem(
        sequence_number=number,
        question_latex=candidate.question_latex,
        topics=allowed or [topics[0]],
        answer_numeric=answer_value,
        source_label=f"Problem {number}",
    )


def _import_without_ai(
    *,
    blocks: list[ProblemBlock],
    answer_key: dict[int, str],
    default_topic: str,
) -> tuple[list[ExtractedProblem], list[str]]:
    problems: list[ExtractedProblem] = []
    errors: list[str] = []
    for block in blocks:
        number = block.sequence_number
        answer_text = answer_key[number]
        answer_value = normalize_answer(answer_text)
        if answer_value is None:
            errors.append(f'Invalid answer for problem {number}: "{answer_text}"')
            continue
        problems.append(
            ExtractedProblem(
                sequence_number=number,
                question_latex=block.raw_text,
                topics=[default_topic],
                answer_numeric=answer_value,
                source_label=f"Problem {number}",
            )
        )
    return problems, errors
