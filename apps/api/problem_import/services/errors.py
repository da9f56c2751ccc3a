class ImportPipelineError(RuntimeError):
    """Base class for failures raised by the PDF import pipeline."""


class ValidationError(ImportPipelineError):
    """Bad or missing input, raised before any extraction work starts."""


class TextExtractionError(ValidationError):
    """The PDF yielded no usable text."""


class ExtractionUnavailable(ImportPipelineError):
    def __init__(self, attempted_models: list[str], last_error: str | None = None):
        self.attempted_models = list(attempted_models)
        self.last_error = last_error
        attempted = ", ".join(self.attempted_models) or "none"
        message = f"AI extraction unavailable after trying all models (attempted models: {attempted})"
        if last_error:
            message = f"{message}: {last_error}"
        super().__init__(message)


class ExtractionFailed(ImportPipelineError):
    """The backend returned an error that is not worth retrying."""


class UnparseableResponse(ImportPipelineError):
    """The backend response could not be repaired into structured problems."""


class ImportTimeout(ImportPipelineError):
    """The import exceeded its wall-clock budget."""
