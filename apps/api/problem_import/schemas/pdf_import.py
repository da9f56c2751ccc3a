from pydantic import BaseModel, ConfigDict, Field, field_validator


class ProblemBlock(BaseModel):
    model_config = ConfigDict(frozen=True)

    sequence_number: int = Field(ge=1)
    raw_text: str = Field(min_length=11)


class ProblemCandidate(BaseModel):
    """One problem as returned by the generative backend, before reconciliation."""

    number: int | None = None
    question_latex: str
    topics: list[str] = Field(default_factory=list)
    answer: str = ""


class ExtractedProblem(BaseModel):
    model_config = ConfigDict(frozen=True)

    sequence_number: int = Field(ge=1)
    question_latex: str
    topics: list[str]
    answer_numeric: float
    source_label: str

    @field_validator("topics")
    @classmethod
    def dedupe_topics(cls, value: list[str]) -> list[str]:
        seen: list[str] = []
        for topic in value:
            if topic not in seen:
                seen.append(topic)
        return seen


class FidelityWarning(BaseModel):
    model_config = ConfigDict(frozen=True)

    sequence_number: int
    message: str

    def __str__(self) -> str:
        return self.message


class ImportResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    folder_name: str
    problems: tuple[ExtractedProblem, ...] = ()
    errors: tuple[str, ...] = ()


class PdfImportResponse(BaseModel):
    success: bool = True
    imported: int
    folder_id: int | None
    folder_name: str
    errors: list[str]
