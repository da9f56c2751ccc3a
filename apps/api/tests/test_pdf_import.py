import json

import pytest

from problem_import.config import GeminiSettings
from problem_import.services.answer_normalizer import normalize_answer
from problem_import.services.deadline import Deadline
from problem_import.services.errors import ExtractionUnavailable, ImportTimeout, ValidationError
from problem_import.services.fidelity import validate_fidelity
from problem_import.services.pdf_import import PdfImportPipeline, build_extraction_prompt
from problem_import.services.problem_segmenter import segment_problems

_DOCUMENT = (
    "2024 Mock Sprint Round\n"
    "1. What is the sum of 2 and 3 in this problem?\n"
    "2. What is the product of 4 and 5 in this problem?\n"
    "3. What is the square root of 16 in this problem?\n"
)
_FAITHFUL_ITEMS = [
    {"number": 1, "questionLatex": "What is the sum of $2$ and $3$ in this problem?", "topics": ["Arithmetic"], "answer": "6"},
    {"number": 2, "questionLatex": "What is the product of $4$ and $5$ in this problem?", "topics": ["Algebra", "Calculus"], "answer": "20"},
    {"number": 3, "questionLatex": "What is the square root of $16$ in this problem?", "topics": [], "answer": "4"},
]


class _ScriptedBackend:
    def __init__(self, responses: list[str] | None = None, error: Exception | None = None) -> None:
        self.responses = responses or []
        self.error = error
        self.prompts: list[str] = []

    def extract(self, prompt_text, *, allowed_topics, deadline, pdf_bytes=None):
        del allowed_topics, deadline, pdf_bytes
        self.prompts.append(prompt_text)
        if self.error is not None:
            raise self.error
        return self.responses[min(len(self.prompts), len(self.responses)) - 1]


def _pipeline(backend=None, text: str = _DOCUMENT) -> PdfImportPipeline:
    return PdfImportPipeline(
        GeminiSettings(api_key="test-key", correction_pause_seconds=0),
        extraction_client=backend or _ScriptedBackend([json.dumps(_FAITHFUL_ITEMS)]),
        text_extractor=lambda _pdf: text,
    )


def _deadline() -> Deadline:
    return Deadline(300, sleeper=lambda _s: None)


def test_import_without_ai_keeps_source_text_verbatim():
    result = _pipeline().import_document(
        b"%PDF",
        "1. 5\n2. 20\n3. √16",
        use_ai=False,
        topic_whitelist=["Arithmetic", "Algebra"],
    )

    blocks = segment_problems(_DOCUMENT)
    assert result.folder_name == "2024 Mock Sprint Round"
    assert result.errors == ()
    assert len(result.problems) == 3
    assert [problem.answer_numeric for problem in result.problems] == [
        normalize_answer("5"),
        normalize_answer("20"),
        normalize_answer("√16"),
    ]
    for problem, block in zip(result.problems, blocks):
        assert problem.question_latex == block.raw_text
        assert problem.topics == ["Arithmetic"]
        assert problem.source_label == f"Problem {block.sequence_number}"
        assert validate_fidelity(block.raw_text, problem.question_latex, block.sequence_number) == []


def test_import_without_ai_requires_answer_key():
    with pytest.raises(ValidationError, match="no-AI mode"):
        _pipeline().import_document(b"%PDF", "", use_ai=False)


def test_import_without_ai_rejects_incomplete_answer_key():
    with pytest.raises(ValidationError, match="missing: 3"):
        _pipeline().import_document(b"%PDF", "1. 5\n2. 20", use_ai=False)


def test_import_without_ai_records_unparseable_answers():
    result = _pipeline().import_document(b"%PDF", "1. 5\n2. twenty\n3. 4", use_ai=False)

    assert [problem.sequence_number for problem in result.problems] == [1, 3]
    assert result.errors == ('Invalid answer for problem 2: "twenty"',)


def test_import_rejects_image_only_pdf_before_extraction():
    backend = _ScriptedBackend([json.dumps(_FAITHFUL_ITEMS)])

    with pytest.raises(ValidationError, match="scanned/image-based"):
        _pipeline(backend, text="  \n  ").import_document(b"%PDF", "1. 5", use_ai=True)

    assert backend.prompts == []


def test_import_with_ai_requires_answer_key():
    backend = _ScriptedBackend([json.dumps(_FAITHFUL_ITEMS)])

    with pytest.raises(ValidationError, match="Answer key is required"):
        _pipeline(backend).import_document(b"%PDF", "   ", use_ai=True)

    assert backend.prompts == []


def test_import_with_ai_prefers_answer_key_and_filters_topics():
    backend = _ScriptedBackend([json.dumps(_FAITHFUL_ITEMS)])

    result = _pipeline(backend).import_document(
        b"%PDF",
        "1. 5\n2. 20\n3. 4",
        use_ai=True,
        topic_whitelist=["Arithmetic", "Algebra"],
        deadline=_deadline(),
    )

    assert len(backend.prompts) == 1
    assert "Answer key (use these when the problem number matches):\n1. 5\n2. 20\n3. 4" in backend.prompts[0]
    assert result.errors == ()
    assert [problem.answer_numeric for problem in result.problems] == [5.0, 20.0, 4.0]
    assert [problem.topics for problem in result.problems] == [["Arithmetic"], ["Algebra"], ["Arithmetic"]]
    assert result.problems[0].question_latex == "What is the sum of $2$ and $3$ in this problem?"


def test_import_with_ai_falls_back_to_backend_answer_and_flags_key_mismatch():
    result = _pipeline().import_document(b"%PDF", "1. 5\n2. 20", use_ai=True, deadline=_deadline())

    assert [problem.answer_numeric for problem in result.problems] == [5.0, 20.0, 4.0]
    assert any("Answer key has 2 entries but 3 problems" in error for error in result.errors)


def test_import_with_ai_stores_zero_when_no_answer_is_available():
    items = [dict(item) for item in _FAITHFUL_ITEMS]
    items[2]["answer"] = ""
    backend = _ScriptedBackend([json.dumps(items)])

    result = _pipeline(backend).import_document(b"%PDF", "1. 5\n2. 20", use_ai=True, deadline=_deadline())

    assert result.problems[2].answer_numeric == 0.0
    assert "Problem 3: no answer in key or AI output, stored as 0" in result.errors


def test_import_with_ai_drops_problem_with_invalid_answer():
    result = _pipeline().import_document(b"%PDF", "1. 5\n2. banana\n3. 4", use_ai=True, deadline=_deadline())

    assert [problem.sequence_number for problem in result.problems] == [1, 3]
    assert 'Invalid answer for problem 2: "banana"' in result.errors


def test_import_with_ai_reports_unavailable_backend_as_error():
    backend = _ScriptedBackend(error=ExtractionUnavailable(["gemini-a", "gemini-b"]))

    result = _pipeline(backend).import_document(b"%PDF", "1. 5\n2. 20\n3. 4", use_ai=True, deadline=_deadline())

    assert result.problems == ()
    assert len(result.errors) == 1
    assert "gemini-a, gemini-b" in result.errors[0]


def test_import_with_ai_propagates_timeout():
    backend = _ScriptedBackend(error=ImportTimeout("Import exceeded its 270s budget"))

    with pytest.raises(ImportTimeout):
        _pipeline(backend).import_document(b"%PDF", "1. 5\n2. 20\n3. 4", use_ai=True, deadline=_deadline())


def test_import_with_ai_surfaces_unresolved_fidelity_warnings():
    items = [dict(item) for item in _FAITHFUL_ITEMS]
    items[0]["questionLatex"] = "Compute a total."
    backend = _ScriptedBackend([json.dumps(items)])

    result = _pipeline(backend).import_document(b"%PDF", "1. 5\n2. 20\n3. 4", use_ai=True, deadline=_deadline())

    assert len(backend.prompts) == 2
    assert len(result.problems) == 3
    assert any(error.startswith("Problem 1: low word overlap") for error in result.errors)


def test_import_with_ai_keeps_first_pass_problems_when_correction_fails():
    items = [dict(item) for item in _FAITHFUL_ITEMS]
    items[0]["questionLatex"] = "Compute a total."
    backend = _ScriptedBackend([json.dumps(items), "sorry, no json here"])

    result = _pipeline(backend).import_document(b"%PDF", "1. 5\n2. 20\n3. 4", use_ai=True, deadline=_deadline())

    assert len(backend.prompts) == 2
    assert [problem.answer_numeric for problem in result.problems] == [5.0, 20.0, 4.0]
    assert result.problems[0].question_latex == "Compute a total."
    assert any(error.startswith("Correction attempt failed") for error in result.errors)


def test_import_trims_following_sections():
    filler = "".join(f"{n}. Problem number {n} asks about a quantity in the sprint round.\n" for n in range(1, 11))
    text = "2024 Mock Sprint Round\n" + filler + "Target Round\n1. Target problems are not part of this import.\n"
    answers = "\n".join(f"{n}. {n}" for n in range(1, 11))

    result = _pipeline(text=text).import_document(b"%PDF", answers, use_ai=False)

    assert len(result.problems) == 10
    assert all("Target" not in problem.question_latex for problem in result.problems)


def test_build_extraction_prompt_omits_empty_answer_key():
    assert "Answer key" not in build_extraction_prompt("1. text", {})
