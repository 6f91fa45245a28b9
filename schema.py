from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

MATCH_THRESHOLD = 0.60


class CatalogueEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    manufacturer: str = ""
    price: str = ""
    substitutes: Tuple[str, ...] = ()
    uses: Tuple[str, ...] = ()
    side_effects: Tuple[str, ...] = ()
    chemical_class: str = ""
    therapeutic_class: str = ""
    action_class: str = ""
    habit_forming: str = ""
    image_url: str = ""


class RecognitionResult(BaseModel):
    text: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    char_confidences: List[float] = Field(default_factory=list)
    engine: str = "none"

    @classmethod
    def empty(cls, engine: str = "none") -> "RecognitionResult":
        return cls(text="", confidence=0.0, char_confidences=[], engine=engine)


class MatchType(str, Enum):
    EXACT = "exact"
    PARTIAL = "partial"
    FUZZY = "fuzzy"
    SUBSTITUTE = "substitute"
    AI_EXACT = "ai-exact"
    AI_FUZZY = "ai-fuzzy"
    AI_SUBSTITUTE = "ai-substitute"
    DETECTED_ONLY = "detected-only"


class MatchCandidate(BaseModel):
    entry: Optional[CatalogueEntry] = None
    match_score: float = Field(ge=0.0, le=1.0)
    matched_token: str
    match_type: MatchType

    @model_validator(mode="after")
    def _check_threshold(self) -> "MatchCandidate":
        if self.match_type == MatchType.DETECTED_ONLY:
            if self.entry is not None:
                raise ValueError("detected-only candidates carry no catalogue entry")
        else:
            if self.entry is None:
                raise ValueError(f"{self.match_type.value} candidate requires a catalogue entry")
            if self.match_score < MATCH_THRESHOLD:
                raise ValueError(
                    f"match score {self.match_score:.3f} below threshold {MATCH_THRESHOLD}"
                )
        return self

    @property
    def is_basic_info(self) -> bool:
        return self.match_type == MatchType.DETECTED_ONLY

    @property
    def display_name(self) -> str:
        return self.entry.name if self.entry is not None else self.matched_token


class MedicineView(BaseModel):
    """One row of the response contract consumed by the presentation layer."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    manufacturer: str
    price: str
    substitutes: List[str] = Field(default_factory=list)
    uses: List[str] = Field(default_factory=list)
    side_effects: List[str] = Field(default_factory=list)
    chemical_class: str
    habit_forming: str
    therapeutic_class: str
    match_score: int = Field(alias="matchScore", ge=0, le=100)
    match_type: MatchType = Field(alias="matchType")
    detected_as: str = Field(alias="detectedAs")
    is_basic_info: bool = Field(default=False, alias="isBasicInfo")


class PrescriptionResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    explanation: str = ""
    medicines: List[MedicineView] = Field(default_factory=list)
    extracted_text: str = Field(default="", alias="extractedText")
    message: str = ""

    def to_response(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")
