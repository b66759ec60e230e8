"""Student directory records and match candidates."""

from dataclasses import asdict, dataclass, field
from enum import Enum


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _RANKS[self]


_RANKS = {Confidence.LOW: 1, Confidence.MEDIUM: 2, Confidence.HIGH: 3}


@dataclass(frozen=True)
class StudentRecord:
    id: str
    student_id: str
    first_name: str
    last_name: str
    grade_level: str | None
    school_id: str
    school_name: str
    parent_name: str | None = None
    parent_email: str | None = None
    parent_phone: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass
class MatchCandidate:
    """A student record plus how likely it is to belong to the parent."""

    record: StudentRecord
    confidence: Confidence = Confidence.LOW
    reasons: list[str] = field(default_factory=list)

    @property
    def student_id(self) -> str:
        return self.record.id

    def to_dict(self) -> dict:
        data = asdict(self.record)
        data["match_confidence"] = self.confidence.value
        data["match_reasons"] = list(self.reasons)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "MatchCandidate":
        record = StudentRecord(
            id=str(data["id"]),
            student_id=data.get("student_id") or "",
            first_name=data.get("first_name") or "",
            last_name=data.get("last_name") or "",
            grade_level=data.get("grade_level"),
            school_id=str(data.get("school_id") or ""),
            school_name=data.get("school_name") or "",
            parent_name=data.get("parent_name"),
            parent_email=data.get("parent_email"),
            parent_phone=data.get("parent_phone"),
        )
        return cls(
            record=record,
            confidence=Confidence(data.get("match_confidence", "low")),
            reasons=list(data.get("match_reasons") or []),
        )
