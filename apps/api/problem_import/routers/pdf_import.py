import logging

from fastapi import APIRouter, File, Form, HTTPException, UploadFile, status

from problem_import.config import get_topic_whitelist, load_gemini_settings
from problem_import.db import get_db_connection
from problem_import.schemas.pdf_import import PdfImportResponse
from problem_import.services.errors import ImportTimeout, ValidationError
from problem_import.services.pdf_import import PdfImportPipeline
from problem_import.services.problem_store import save_import_result
from problem_import.services.section_trimmer import DEFAULT_FOLDER_NAME

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/problems", tags=["pdf-import"])

_PDF_MIME_TYPES = {"application/pdf", "application/x-pdf"}


def build_import_pipeline() -> PdfImportPipeline:
    return PdfImportPipeline(load_gemini_settings())


@router.get("/import-pdf", status_code=status.HTTP_405_METHOD_NOT_ALLOWED)
def import_pdf_diagnostics() -> dict:
    return {"error": "Use POST to import a PDF", "ok": True}


@router.post("/import-pdf", response_model=PdfImportResponse)
def import_pdf(
    pdf: UploadFile = File(...),
    answer_key: str = Form(default=""),
    use_ai: bool = Form(default=True),
    folder_name: str | None = Form(default=None),
) -> PdfImportResponse:
    if pdf.content_type and pdf.content_type not in _PDF_MIME_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only PDF files are allowed",
        )
    pdf_bytes = pdf.file.read()
    if not pdf_bytes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No PDF file provided",
        )

    pipeline = build_import_pipeline()
    if use_ai and not pipeline.settings.api_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="gemini credentials missing: set GEMINI_API_KEY to use AI import",
        )

    topic_whitelist = get_topic_whitelist()
    try:
        result = pipeline.import_document(
            pdf_bytes,
            answer_key.strip(),
            use_ai=use_ai,
            topic_whitelist=topic_whitelist,
            folder_name_fallback=(folder_name or "").strip() or DEFAULT_FOLDER_NAME,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except ImportTimeout as exc:
        raise HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=str(exc)) from exc

    folder_id: int | None = None
    imported = 0
    if result.problems:
        with get_db_connection() as conn:
            folder_id, imported = save_import_result(conn, result, topic_whitelist=topic_whitelist)
    logger.info("PDF import stored %d problems in folder %s", imported, folder_id)

    return PdfImportResponse(
        imported=imported,
        folder_id=folder_id,
        folder_name=result.folder_name,
        errors=list(result.errors),
    )
