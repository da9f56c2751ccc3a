from __future__ import annotations

from problem_import.services.errors import TextExtractionError

try:
    import pymupdf  # type: ignore
except Exception:  # pragma: no cover - runtime fallback for older wheels
    try:
        import fitz as pymupdf  # type: ignore
    except Exception:  # pragma: no cover - optional dependency
        pymupdf = None  # type: ignore


def extract_pdf_text(pdf_bytes: bytes) -> str:
    """Return the plain text layer of a PDF, pages joined by newlines."""
    if not pymupdf:
        raise RuntimeError("PyMuPDF is unavailable in runtime environment.")
    if not pdf_bytes:
        raise TextExtractionError("Could not extract text from PDF: the file is empty.")

    try:
        doc = pymupdf.open(stream=pdf_bytes, filetype="pdf")
    except Exception as exc:
        raise TextExtractionError(f"Could not extract text from PDF: {exc}") from exc
    try:
        pages = [page.get_text("text") for page in doc]
    finally:
        doc.close()
    return "\n".join(pages)
