from problem_import.services.answer_key import parse_answer_key
from problem_import.services.answer_normalizer import normalize_answer
from problem_import.services.correction_loop import CorrectionOutcome, run_correction_loop
from problem_import.services.deadline import Deadline
from problem_import.services.errors import (
    ExtractionFailed,
    ExtractionUnavailable,
    ImportPipelineError,
    ImportTimeout,
    TextExtractionError,
    UnparseableResponse,
    ValidationError,
)
from problem_import.services.fidelity import validate_fidelity
from problem_import.services.gemini_extraction_client import GeminiExtractionClient, build_system_instruction
from problem_import.services.pdf_import import PdfImportPipeline, build_extraction_prompt
from problem_import.services.pdf_text import extract_pdf_text
from problem_import.services.problem_segmenter import segment_problems
from problem_import.services.problem_store import save_import_result
from problem_import.services.response_repair import repair_response
from problem_import.services.section_trimmer import extract_source_name, trim_to_first_section

__all__ = [
    "parse_answer_key",
    "normalize_answer",
    "CorrectionOutcome",
    "run_correction_loop",
    "Deadline",
    "ExtractionFailed",
    "ExtractionUnavailable",
    "ImportPipelineError",
    "ImportTimeout",
    "TextExtractionError",
    "UnparseableResponse",
    "ValidationError",
    "validate_fidelity",
    "GeminiExtractionClient",
    "build_system_instruction",
    "PdfImportPipeline",
    "build_extraction_prompt",
    "extract_pdf_text",
    "segment_problems",
    "save_import_result",
    "repair_response",
    "extract_source_name",
    "trim_to_first_section",
]
