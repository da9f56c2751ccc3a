"""Heuristic checks that extracted LaTeX still says what the source block says.

These catch gross drift (renamed labels, paraphrase, dropped numbers); they do
not prove a verbatim copy. The thresholds are policy knobs.
"""

import re
from collections import Counter

from problem_import.schemas.pdf_import import FidelityWarning

MIN_WORD_OVERLAP = 0.6
MAX_MISSING_NUMBER_RATIO = 0.3
MIN_OVERLAP_WORD_LENGTH = 3

_MATH_SPAN_RE = re.compile(r"\$\$[^$]*\$\$|\$[^$]*\$")
_FRAC_RE = re.compile(r"\\frac\{([^}]*)\}\{([^}]*)\}")
_SQRT_RE = re.compile(r"\\sqrt\{([^}]*)\}")
_OVERLINE_RE = re.compile(r"\\overline\{([^}]*)\}")
_COMMAND_RE = re.compile(r"\\[a-zA-Z]+")
_BRACE_RE = re.compile(r"[{}]")
_WHITESPACE_RE = re.compile(r"\s+")
_NUMBER_RE = re.compile(r"\d+(?:\.\d+)?")
_LABELED_ENTITY_RE = re.compile(r"Circle\s+([A-Z])\b", re.IGNORECASE)
_WORD_RE = re.compile(r"\b[a-z0-9]{2,}\b")
_LEADING_LABEL_RE = re.compile(r"^\s*(?:[Pp]roblem\s+)?\d+\s*[.):]\s*")


def strip_latex_for_compare(text: str) -> str:
    if not text or not isinstance(text, str):
        return ""
    stripped = _MATH_SPAN_RE.sub(" ", text)
    stripped = _FRAC_RE.sub(r"\1/\2", stripped)
    stripped = _SQRT_RE.sub(r"sqrt(\1)", stripped)
    stripped = _OVERLINE_RE.sub(r"\1", stripped)
    stripped = _COMMAND_RE.sub(" ", stripped)
    stripped = _BRACE_RE.sub(" ", stripped)
    return _WHITESPACE_RE.sub(" ", stripped).lower().strip()


def _extract_critical(text: str) -> tuple[list[str], set[str]]:
    normalized = strip_latex_for_compare(text)
    entities: list[str] = []
    for match in _LABELED_ENTITY_RE.finditer(text):
        label = match.group(1).upper()
        if label not in entities:
            entities.append(label)
    words = set(_WORD_RE.findall(normalized))
    return entities, words


def validate_fidelity(source_block: str, candidate_latex: str, sequence_number: int) -> list[FidelityWarning]:
    warnings: list[FidelityWarning] = []
    if not source_block or not candidate_latex:
        return warnings

    # The "N." label belongs to the layout, not the problem.
    source_block = _LEADING_LABEL_RE.sub("", source_block, count=1)
    source_entities, source_words = _extract_critical(source_block)
    candidate_entities, candidate_words = _extract_critical(candidate_latex)
    candidate_normalized = strip_latex_for_compare(candidate_latex)

    for label in source_entities:
        if label in candidate_entities:
            continue
        renamed = [other for other in candidate_entities if other not in source_entities]
        if renamed:
            message = (
                f'Problem {sequence_number}: source has "Circle {label}" but output has "Circle {renamed[0]}"'
            )
        else:
            message = f'Problem {sequence_number}: source has "Circle {label}" but it\'s missing in output'
        warnings.append(FidelityWarning(sequence_number=sequence_number, message=message))

    overlap_words = [word for word in source_words if len(word) >= MIN_OVERLAP_WORD_LENGTH]
    if overlap_words:
        shared = sum(1 for word in overlap_words if word in candidate_words)
        ratio = shared / len(overlap_words)
        if ratio < MIN_WORD_OVERLAP:
            warnings.append(
                FidelityWarning(
                    sequence_number=sequence_number,
                    message=(
                        f"Problem {sequence_number}: low word overlap ({round(ratio * 100)}%) - possible paraphrase"
                    ),
                )
            )

    source_counts = Counter(_NUMBER_RE.findall(strip_latex_for_compare(source_block)))
    candidate_counts = Counter(_NUMBER_RE.findall(candidate_normalized))
    candidate_counts |= Counter(_NUMBER_RE.findall(candidate_latex))
    missing = sum(max(0, count - candidate_counts[number]) for number, count in source_counts.items())
    total = sum(source_counts.values())
    if total and missing > total * MAX_MISSING_NUMBER_RATIO:
        warnings.append(
            FidelityWarning(
                sequence_number=sequence_number,
                message=f"Problem {sequence_number}: many numbers from source missing in output",
            )
        )
    return warnings
