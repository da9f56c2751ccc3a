import re

_ANSWER_LINE_RE = re.compile(r"^\s*(\d+)[.):]\s*(.+)$")


def parse_answer_key(text: str | None) -> dict[int, str]:
    """Parse pasted "N. answer" lines; "N)" and "N:" work too, anything else is ignored."""
    if not text or not isinstance(text, str):
        return {}

    answers: dict[int, str] = {}
    for line in re.split(r"\r?\n", text):
        match = _ANSWER_LINE_RE.match(line)
        if not match:
            continue
        answer = re.sub(r"\s+", " ", match.group(2)).strip()
        if answer:
            answers[int(match.group(1))] = answer
    return answers


def format_answer_key(answers: dict[int, str]) -> str:
    return "\n".join(f"{number}. {answer}" for number, answer in sorted(answers.items()))
