import re

from problem_import.schemas.pdf_import import ProblemBlock

MIN_BLOCK_LENGTH = 10

_LINE_BREAK_RE = re.compile(r"\r\n|\r|\f")
_PROBLEM_HEADER_RE = re.compile(r"(?:^|\n)[ \t]*[Pp]roblem\s+(\d+)([.):])\s*")
# "17." / "17)" / "17:" / "17 ." at line start; a following digit means a decimal, not a header.
_PROBLEM_START_RE = re.compile(r"^[ \t]*(\d+)[ \t]*[.):](?!\d)[ \t]*", re.MULTILINE)
_FOOTER_RE = re.compile(r"Copyright\s+.*?\.\s*All rights reserved.*$", re.IGNORECASE | re.DOTALL)


def segment_problems(text: str) -> list[ProblemBlock]:
    """Split section text into problem blocks numbered 1..K by order of appearance.

    Blocks of MIN_BLOCK_LENGTH characters or fewer (stray numerals, page
    artifacts) are dropped before numbering, so the source numeral is not kept.
    """
    if not text or not isinstance(text, str):
        return []

    normalized = _LINE_BREAK_RE.sub("\n", text)
    normalized = _PROBLEM_HEADER_RE.sub(lambda m: f"\n{m.group(1)}{m.group(2)} ", normalized)

    starts = [match.start() for match in _PROBLEM_START_RE.finditer(normalized)]
    if not starts:
        return []

    raw_blocks: list[str] = []
    for index, start in enumerate(starts):
        end = starts[index + 1] if index + 1 < len(starts) else len(normalized)
        raw = normalized[start:end].strip()
        if index == len(starts) - 1:
            raw = _FOOTER_RE.sub("", raw).strip()
        raw_blocks.append(raw)

    blocks: list[ProblemBlock] = []
    for raw in raw_blocks:
        if len(raw) <= MIN_BLOCK_LENGTH:
            continue
        blocks.append(ProblemBlock(sequence_number=len(blocks) + 1, raw_text=raw))
    return blocks
