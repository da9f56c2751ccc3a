from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from problem_import.schemas.pdf_import import FidelityWarning, ProblemBlock, ProblemCandidate
from problem_import.services.deadline import Deadline
from problem_import.services.errors import ExtractionFailed, ExtractionUnavailable, UnparseableResponse
from problem_import.services.fidelity import validate_fidelity
from problem_import.services.response_repair import repair_response

logger = logging.getLogger(__name__)

MAX_CORRECTIONS = 1


class ExtractionBackend(Protocol):
    def extract(
        self,
        prompt_text: str,
        *,
        allowed_topics: list[str],
        deadline: Deadline,
        pdf_bytes: bytes | None = None,
    ) -> str: ...


class CorrectionState(str, Enum):
    EXTRACTED = "extracted"
    VALIDATED = "validated"
    CORRECTING = "correcting"
    DONE = "done"


@dataclass
class CorrectionOutcome:
    candidates: list[ProblemCandidate] = field(default_factory=list)
    warnings: list[FidelityWarning] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    attempts: int = 0
    state: CorrectionState = CorrectionState.EXTRACTED


def build_correction_prompt(base_prompt: str, issues: list[str]) -> str:
    issue_lines = "\n".join(issues)
    return (
        f"{base_prompt}\n\n---\n\n"
        "CORRECTION NEEDED: Your output had these fidelity issues. Fix the indicated problems to match "
        "the source text exactly, and return the complete corrected JSON array. Keep all other problems "
        f"unchanged.\n\nIssues:\n{issue_lines}"
    )


def validate_candidates(
    candidates: list[ProblemCandidate],
    source_blocks: list[ProblemBlock],
) -> list[FidelityWarning]:
    """Check each candidate against the source block at the same position."""
    warnings: list[FidelityWarning] = []
    for index, candidate in enumerate(candidates):
        if index >= len(source_blocks):
            break
        number = candidate.number or index + 1
        warnings.extend(validate_fidelity(source_blocks[index].raw_text, candidate.question_latex, number))
    return warnings


def run_correction_loop(
    client: ExtractionBackend,
    *,
    base_prompt: str,
    source_blocks: list[ProblemBlock],
    allowed_topics: list[str],
    deadline: Deadline,
    pdf_bytes: bytes | None = None,
    max_corrections: int = MAX_CORRECTIONS,
    correction_pause_seconds: float = 0.0,
) -> CorrectionOutcome:
    """Extract, validate, and re-prompt at most ``max_corrections`` times.

    Warnings left when the cap is reached are returned as plain error strings
    rather than retried. If a correction round fails after candidates were
    already parsed, those candidates are kept and the failure becomes an error
    string; ImportTimeout always propagates.
    """
    outcome = CorrectionOutcome()
    prompt = base_prompt

    while True:
        outcome.attempts += 1
        corrections_used = outcome.attempts - 1

        try:
            content = client.extract(prompt, allowed_topics=allowed_topics, deadline=deadline, pdf_bytes=pdf_bytes)
            outcome.state = CorrectionState.EXTRACTED
            candidates = repair_response(content)
        except (ExtractionUnavailable, ExtractionFailed, UnparseableResponse) as exc:
            if outcome.candidates:
                # A failed correction never discards the candidates already extracted.
                logger.warning("Correction attempt %d failed, keeping previous output: %s", outcome.attempts, exc)
                outcome.errors.append(f"Correction attempt failed, kept the previous extraction: {exc}")
                break
            if not isinstance(exc, UnparseableResponse) or corrections_used >= max_corrections:
                raise
            logger.warning("Extraction attempt %d was unparseable, re-prompting: %s", outcome.attempts, exc)
            issues = [f"Your previous response was not a valid JSON array ({exc})."]
            prompt = build_correction_prompt(base_prompt, issues)
            outcome.state = CorrectionState.CORRECTING
            deadline.sleep(correction_pause_seconds, stage="correction pause")
            continue

        outcome.candidates = candidates
        outcome.warnings = validate_candidates(candidates, source_blocks)
        outcome.state = CorrectionState.VALIDATED

        if not outcome.warnings or corrections_used >= max_corrections:
            break

        logger.info(
            "Extraction attempt %d produced %d fidelity warnings, re-prompting",
            outcome.attempts,
            len(outcome.warnings),
        )
        outcome.state = CorrectionState.CORRECTING
        prompt = build_correction_prompt(base_prompt, [warning.message for warning in outcome.warnings])
        deadline.sleep(correction_pause_seconds, stage="correction pause")

    outcome.state = CorrectionState.DONE
    if len(source_blocks) > len(outcome.candidates):
        outcome.errors.append(
            f"Expected {len(source_blocks)} problems from source but AI returned {len(outcome.candidates)}. "
            "Some problems may be missing."
        )
    outcome.errors.extend(warning.message for warning in outcome.warnings)
    return outcome
