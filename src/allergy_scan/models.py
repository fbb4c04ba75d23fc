"""
Allergy Scan - Data models.

Wire models tolerate unknown fields so newer store/scanner versions
don't break older clients.
"""

from enum import Enum
from typing import Annotated, Any, ClassVar

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


# =============================================================================
# Enums
# =============================================================================


class Severity(str, Enum):
    """Severity tier of an allergen."""

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class InputMode(str, Enum):
    """How the user supplies content to scan."""

    TEXT = "text"
    PHOTO = "photo"
    DOCUMENT = "document"


class WizardStage(Enum):
    """The four scan wizard steps."""

    SELECT = "select"
    INPUT = "input"
    PROCESSING = "processing"
    REPORT = "report"


class BackendStatus(str, Enum):
    """Connectivity of a backend collaborator, as shown to the user."""

    CONNECTED = "connected"
    CHECKING = "checking"
    DISCONNECTED = "disconnected"


def _coerce_severity(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().upper()
    return value


def split_keywords(value: Any) -> Any:
    """Normalize keywords from a comma-joined string or a sequence."""
    if value is None:
        return ()
    if isinstance(value, str):
        value = value.split(",")
    if isinstance(value, (list, tuple)):
        return tuple(str(k).strip() for k in value if str(k).strip())
    return value


SeverityValue = Annotated[Severity, BeforeValidator(_coerce_severity)]
Keywords = Annotated[tuple[str, ...], BeforeValidator(split_keywords)]


# =============================================================================
# Allergens
# =============================================================================


class AllergenRecord(BaseModel):
    """One allergen as stored in the allergen store."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    name: str
    keywords: Keywords = ()
    severity: SeverityValue = Severity.MEDIUM

    @model_validator(mode="before")
    @classmethod
    def accept_document_id(cls, data: Any) -> Any:
        # Store may be Mongo-backed and return `_id` instead of `id`
        if isinstance(data, dict) and not data.get("id") and data.get("_id"):
            data = {**data, "id": str(data["_id"])}
        return data

    @field_validator("id", mode="before")
    @classmethod
    def stringify_id(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value


class AllergenDraft(BaseModel):
    """Create/update body for the admin console."""

    name: str
    keywords: tuple[str, ...]
    severity: SeverityValue = Severity.MEDIUM

    @field_validator("name")
    @classmethod
    def name_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Allergy name is required")
        return value

    @field_validator("keywords", mode="before")
    @classmethod
    def keywords_required(cls, value: Any) -> Any:
        keywords = split_keywords(value)
        if not keywords:
            raise ValueError("At least one keyword is required")
        return keywords

    def to_wire(self) -> dict:
        """Body for POST/PUT /allergens (keywords comma-joined)."""
        return {
            "name": self.name,
            "keywords": ", ".join(self.keywords),
            "severity": self.severity.value,
        }


# =============================================================================
# Input payloads
# =============================================================================


class TextPayload(BaseModel):
    """Free text pasted by the user."""

    model_config = ConfigDict(frozen=True)
    mode: ClassVar[InputMode] = InputMode.TEXT

    text: str = ""

    def is_empty(self) -> bool:
        return not self.text.strip()


class _FilePayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    content: bytes = b""
    filename: str = ""
    content_type: str | None = None

    def is_empty(self) -> bool:
        return not self.content

    @property
    def size(self) -> int:
        return len(self.content)


class PhotoPayload(_FilePayload):
    """Photographed label, OCR'd by the scanning service."""

    mode: ClassVar[InputMode] = InputMode.PHOTO


class DocumentPayload(_FilePayload):
    """Uploaded PDF/Word document."""

    mode: ClassVar[InputMode] = InputMode.DOCUMENT


InputPayload = TextPayload | PhotoPayload | DocumentPayload

PAYLOAD_TYPES: dict[InputMode, type] = {
    InputMode.TEXT: TextPayload,
    InputMode.PHOTO: PhotoPayload,
    InputMode.DOCUMENT: DocumentPayload,
}


# =============================================================================
# Scan results
# =============================================================================


class MatchPosition(BaseModel):
    """Character offsets of a match in the scanned text: [start, end)."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    start: int = Field(ge=0)
    end: int = Field(ge=0)

    @model_validator(mode="after")
    def end_after_start(self) -> "MatchPosition":
        if self.end < self.start:
            raise ValueError("end must not precede start")
        return self


class MatchSpan(BaseModel):
    """A single detection reported by the scanning service."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    allergen_name: str = Field(
        validation_alias=AliasChoices("allergen", "allergen_name", "allergenName"),
    )
    keyword_found: str = Field(
        default="",
        validation_alias=AliasChoices("keyword_found", "keywordFound"),
    )
    severity: SeverityValue
    position: MatchPosition | None = None

    @field_validator("position", mode="before")
    @classmethod
    def drop_unreliable_position(cls, value: Any) -> Any:
        # OCR sources may send partial or garbage offsets; treat as unlocated
        if value is None or isinstance(value, MatchPosition):
            return value
        if not isinstance(value, dict):
            return None
        start, end = value.get("start"), value.get("end")
        if start is None or end is None:
            return None
        try:
            start, end = int(start), int(end)
        except (TypeError, ValueError):
            return None
        if start < 0 or end < start:
            return None
        return {"start": start, "end": end}


class ScanResponse(BaseModel):
    """Body returned by POST /scan."""

    model_config = ConfigDict(extra="ignore")

    matches: list[MatchSpan] = Field(default_factory=list)
    safe: bool
    timestamp: str = ""

    def to_report(self, total_allergens_selected: int) -> "ScanReport":
        return ScanReport(
            matches=tuple(self.matches),
            safe=self.safe,
            timestamp=self.timestamp,
            total_allergens_selected=total_allergens_selected,
        )


class ScanReport(BaseModel):
    """Result of one submission. `safe` is taken as returned by the service."""

    model_config = ConfigDict(frozen=True)

    matches: tuple[MatchSpan, ...] = ()
    safe: bool
    timestamp: str = ""
    total_allergens_selected: int = 0

    @property
    def detected_count(self) -> int:
        return len(self.matches)

    @property
    def located_matches(self) -> tuple[MatchSpan, ...]:
        return tuple(m for m in self.matches if m.position is not None)
