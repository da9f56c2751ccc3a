import re

DEFAULT_FOLDER_NAME = "Imported from PDF"
MIN_BOUNDARY_OFFSET = 500

NEXT_SECTION_RE = re.compile(r"(?:Target Round|Countdown Round|Team Round|\n\d{4}\s*\n\s*Mock)", re.IGNORECASE)
_HEADER_SKIP_RE = re.compile(
    r"^(HONOR|I pledge|DO NOT|This section|Signature|Printed|Total Correct|LATEX|Test-solved|FOUNDING|Copyright|\d+-\d+)",
    re.IGNORECASE,
)
_YEAR_RE = re.compile(r"^\d{4}$")
_ROUND_RE = re.compile(r"^(Sprint|Target|Team|Countdown)\s", re.IGNORECASE)
_PROBLEM_RANGE_RE = re.compile(r"^Problems\s+\d", re.IGNORECASE)
_NUMBERED_LINE_RE = re.compile(r"^\d+\.")


def trim_to_first_section(text: str) -> str:
    """Keep only the first competition section of a multi-section document."""
    match = NEXT_SECTION_RE.search(text)
    if match and match.start() > MIN_BOUNDARY_OFFSET:
        return text[: match.start()]
    return text


def extract_source_name(text: str, fallback: str = DEFAULT_FOLDER_NAME) -> str:
    """Build a folder name like "2021 - Mock National Competition - Sprint Round" from the header."""
    head = text[:700]
    lines = [line.strip() for line in re.split(r"\r?\n", head)]
    year = ""
    title = ""
    round_name = ""
    for line in lines:
        if len(line) < 3 or _HEADER_SKIP_RE.match(line):
            continue
        if _YEAR_RE.match(line):
            year = line
            continue
        if _ROUND_RE.match(line):
            round_name = line
            continue
        if _PROBLEM_RANGE_RE.match(line) and not round_name:
            round_name = line
        if len(line) >= 10 and not _NUMBERED_LINE_RE.match(line) and not title:
            title = re.sub(r"\s+", " ", line)

    parts = [part for part in (year, title, round_name) if part]
    if not parts:
        return fallback.strip() or DEFAULT_FOLDER_NAME
    return " - ".join(parts)
