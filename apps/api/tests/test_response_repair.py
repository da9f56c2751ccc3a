import pytest

from problem_import.services.errors import UnparseableResponse
from problem_import.services.response_repair import (
    extract_json_fragment,
    fix_invalid_escapes,
    iter_json_fragments,
    repair_response,
)


def test_repair_response_fixes_unescaped_latex_backslashes():
    raw = r'[{"number": 1, "questionLatex": "Find $\sqrt{16} + \frac{1}{2}$ when $x \times y$", "topics": ["Arithmetic"], "answer": "4.5"}]'

    candidates = repair_response(raw)

    assert len(candidates) == 1
    assert candidates[0].number == 1
    assert candidates[0].question_latex == r"Find $\sqrt{16} + \frac{1}{2}$ when $x \times y$"
    assert candidates[0].topics == ["Arithmetic"]
    assert candidates[0].answer == "4.5"


def test_repair_response_keeps_properly_escaped_latex():
    raw = r'[{"number": 2, "questionLatex": "Compute $\\sqrt{2}\\cdot\\sqrt{8}$.", "topics": [], "answer": "4"}]'

    candidates = repair_response(raw)

    assert candidates[0].question_latex == r"Compute $\sqrt{2}\cdot\sqrt{8}$."


def test_repair_response_doubles_backslash_before_non_hex_u():
    raw = r'{"number": 3, "questionLatex": "Let $\underline{AB}$ have length 5.", "answer": "5"}'

    candidates = repair_response(raw)

    assert candidates[0].question_latex == r"Let $\underline{AB}$ have length 5."


def test_repair_response_strips_fences_and_prose():
    raw = (
        "Here are the problems you asked for:\n"
        "```json\n"
        '[{"number": 1, "questionLatex": "What is 2 + 3?", "topics": ["Arithmetic"], "answer": "5"}]\n'
        "```\n"
        "Let me know if you need anything else [really]."
    )

    candidates = repair_response(raw)

    assert [candidate.question_latex for candidate in candidates] == ["What is 2 + 3?"]


def test_repair_response_wraps_single_object():
    candidates = repair_response('{"number": 7, "questionLatex": "How many sides does a hexagon have?", "answer": 6}')

    assert len(candidates) == 1
    assert candidates[0].number == 7
    assert candidates[0].answer == "6"


def test_repair_response_uses_best_effort_repair_for_trailing_commas():
    raw = '[{"number": 1, "questionLatex": "What is 10 - 4?", "topics": ["Arithmetic",], "answer": "6",},]'

    candidates = repair_response(raw)

    assert candidates[0].question_latex == "What is 10 - 4?"
    assert candidates[0].answer == "6"


def test_repair_response_cleans_neq_and_bare_prices():
    raw = r'[{"number": 1, "questionLatex": "If $x \\neq 2$ and a pen costs \\7, find x.", "answer": "3"}]'

    candidates = repair_response(raw)

    assert candidates[0].question_latex == r"If $x \ne 2$ and a pen costs \$7, find x."


def test_repair_response_drops_items_without_question_text():
    raw = '[{"number": 1, "questionLatex": ""}, "stray", {"number": 2, "question": "What is 1 + 1?", "topic": "Arithmetic"}]'

    candidates = repair_response(raw)

    assert len(candidates) == 1
    assert candidates[0].number == 2
    assert candidates[0].topics == ["Arithmetic"]


@pytest.mark.parametrize("raw", ["", "   ", "no structured output here", "42"])
def test_repair_response_raises_when_nothing_recoverable(raw):
    with pytest.raises(UnparseableResponse):
        repair_response(raw)


def test_extract_json_fragment_respects_brackets_inside_strings():
    text = 'prefix [{"questionLatex": "interval [0, 1] and set {2}"}] suffix ]'

    assert extract_json_fragment(text) == '[{"questionLatex": "interval [0, 1] and set {2}"}]'


def test_fix_invalid_escapes_leaves_valid_escapes():
    assert fix_invalid_escapes(r'"line\n 2 \"quoted\"\t é"') == r'"line\n 2 \"quoted\"\t é"'
    assert fix_invalid_escapes(r'"\alpha"') == r'"\\alpha"'


@pytest.mark.parametrize(
    "command",
    [r"\notin", r"\tanh", r"\textit{z}", r"\tilde{x}", r"\therefore", r"\bigl(", r"\bullet", r"\nmid", r"\rvert"],
)
def test_repair_response_keeps_latex_commands_that_start_like_json_escapes(command):
    raw = '[{"number": 1, "questionLatex": "Consider $x ' + command + ' y$ here.", "answer": "1"}]'

    candidates = repair_response(raw)

    assert candidates[0].question_latex == "Consider $x " + command + " y$ here."
    assert "\n" not in candidates[0].question_latex
    assert "\t" not in candidates[0].question_latex


def test_repair_response_skips_bracketed_prose_before_the_payload():
    raw = 'Here is [the] list: [{"number": 1, "questionLatex": "What is 2 + 3?", "answer": "5"}]'

    candidates = repair_response(raw)

    assert [candidate.question_latex for candidate in candidates] == ["What is 2 + 3?"]


def test_iter_json_fragments_yields_each_top_level_fragment():
    text = 'see [a] and {"b": [1, 2]} then [3'

    assert list(iter_json_fragments(text)) == ["[a]", '{"b": [1, 2]}', "[3"]
