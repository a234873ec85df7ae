"""
Data models for the standards lookup and Method Card workflow.

This module defines all dataclasses used for:
- Generation parameters submitted from the Method Card form
- Method Card documents and their QC audit reports
- Workflow run state and the snapshots handed to readers
- Standards search, bilingual detail and comparison results

Wire format is the camelCase JSON shape the front-end and the oracle share;
attributes are snake_case.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from methodlab.errors import InputValidationError


# Placeholder substituted for blank optional inputs before they reach the oracle
NOT_SPECIFIED = "not specified"

# The nine Method Card sections, in document order
SECTION_KEYS = (
    "overview",
    "samplePrep",
    "instrumentation",
    "performance",
    "pitfalls",
    "labNotes",
    "selection",
    "compliance",
    "disclaimer",
)

# Sections of the bilingual technical breakdown
DETAIL_SECTION_KEYS = (
    "overview",
    "samplePrep",
    "instrumentation",
    "performance",
    "pitfalls",
    "labNotes",
    "compliance",
    "selection",
)


class AppLanguage(Enum):
    EN = "en"
    VI = "vi"


class Level(Enum):
    """Three-step scale shared by issue risk and report confidence."""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class WorkflowStep(Enum):
    """
    Progress of a Method Card run.

    IDLE covers both the settled success and the settled error state; the
    run's error field tells them apart.
    """
    IDLE = "idle"
    DRAFTING = "drafting"
    REVIEWING = "reviewing"


class StandardStatus(Enum):
    ACTIVE = "Active"
    SUPERSEDED = "Superseded"
    WITHDRAWN = "Withdrawn"
    PROPOSED = "Proposed"

    @classmethod
    def parse(cls, value: Any) -> "StandardStatus":
        """
        Case-insensitive prefix match, so "superseded by ISO 17294-2" reads as
        SUPERSEDED. Blank or unrecognized values read as ACTIVE.
        """
        text = _text(value).strip().lower()
        for status in cls:
            if text.startswith(status.value.lower()):
                return status
        return cls.ACTIVE


def _text(value: Any) -> str:
    return "" if value is None else str(value)


# =============================================================================
# METHOD CARD WORKFLOW
# =============================================================================

@dataclass(frozen=True)
class GenerationParameters:
    """User input for one Method Card run. Immutable once submitted."""
    analyte: str
    matrix: str
    chemical_group: str = ""
    technique: str = ""
    reference_standards: str = ""
    language: Optional[AppLanguage] = None

    def validate(self) -> "GenerationParameters":
        """
        Check required fields.

        Raises:
            InputValidationError: If analyte or matrix is blank.
        """
        if not self.analyte or not self.analyte.strip():
            raise InputValidationError("Analyte is required", field="analyte")
        if not self.matrix or not self.matrix.strip():
            raise InputValidationError("Matrix is required", field="matrix")
        return self

    def prompt_values(self) -> Dict[str, str]:
        """Values for prompt interpolation, blanks replaced by NOT_SPECIFIED."""
        def fill(value: str) -> str:
            return value.strip() if value and value.strip() else NOT_SPECIFIED

        return {
            "analyte": self.analyte.strip(),
            "matrix": self.matrix.strip(),
            "chemical_group": fill(self.chemical_group),
            "technique": fill(self.technique),
            "reference_standards": fill(self.reference_standards),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GenerationParameters":
        language = data.get("language")
        return cls(
            analyte=_text(data.get("analyte")),
            matrix=_text(data.get("matrix")),
            chemical_group=_text(data.get("chemicalGroup")),
            technique=_text(data.get("technique")),
            reference_standards=_text(
                data.get("referenceStandards") or data.get("standards")
            ),
            language=AppLanguage(language) if language else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "analyte": self.analyte,
            "chemicalGroup": self.chemical_group,
            "matrix": self.matrix,
            "technique": self.technique,
            "referenceStandards": self.reference_standards,
            "language": self.language.value if self.language else None,
        }


@dataclass
class MethodSections:
    """The nine sections of a Method Card, all plain strings."""
    overview: str = ""            # 1. Method Overview
    sample_prep: str = ""         # 2. Sample Preparation
    instrumentation: str = ""     # 3. Instrumentation
    performance: str = ""         # 4. Typical Performance Characteristics
    pitfalls: str = ""            # 5. Common Pitfalls & Troubleshooting
    lab_notes: str = ""           # 6. Laboratory Notes
    selection: str = ""           # 7. Applicability & Method Selection
    compliance: str = ""          # 8. Quality & Compliance Check
    disclaimer: str = ""          # 9. Disclaimer

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MethodSections":
        return cls(
            overview=_text(data.get("overview")),
            sample_prep=_text(data.get("samplePrep")),
            instrumentation=_text(data.get("instrumentation")),
            performance=_text(data.get("performance")),
            pitfalls=_text(data.get("pitfalls")),
            lab_notes=_text(data.get("labNotes")),
            selection=_text(data.get("selection")),
            compliance=_text(data.get("compliance")),
            disclaimer=_text(data.get("disclaimer")),
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            "overview": self.overview,
            "samplePrep": self.sample_prep,
            "instrumentation": self.instrumentation,
            "performance": self.performance,
            "pitfalls": self.pitfalls,
            "labNotes": self.lab_notes,
            "selection": self.selection,
            "compliance": self.compliance,
            "disclaimer": self.disclaimer,
        }

    def empty_keys(self) -> List[str]:
        """Wire keys of sections that are blank."""
        return [key for key, text in self.to_dict().items() if not text.strip()]


@dataclass
class MethodDocument:
    """
    A laboratory Method Card.

    Produced once as a draft and once as the final, audited version; the
    final instance supersedes the draft entirely.
    """
    title: str
    analytes: str
    matrix: str
    technique: str
    reference_standards: str
    sections: MethodSections
    chemical_group: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MethodDocument":
        chemical_group = data.get("chemicalGroup")
        return cls(
            title=_text(data.get("title")),
            analytes=_text(data.get("analytes")),
            matrix=_text(data.get("matrix")),
            technique=_text(data.get("technique")),
            reference_standards=_text(data.get("referenceStandards")),
            sections=MethodSections.from_dict(data.get("sections") or {}),
            chemical_group=None if chemical_group is None else str(chemical_group),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "title": self.title,
            "analytes": self.analytes,
            "matrix": self.matrix,
            "technique": self.technique,
            "referenceStandards": self.reference_standards,
            "sections": self.sections.to_dict(),
        }
        if self.chemical_group is not None:
            data["chemicalGroup"] = self.chemical_group
        return data


@dataclass
class AuditIssue:
    """A single technical gap found during QC."""
    description: str
    section: str
    risk: Level

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditIssue":
        return cls(
            description=_text(data.get("description")),
            section=_text(data.get("section")),
            risk=Level(data.get("risk", Level.LOW.value)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "description": self.description,
            "section": self.section,
            "risk": self.risk.value,
        }


@dataclass
class AuditReport:
    """QC report paired 1:1 with the final document it audited."""
    issues: List[AuditIssue]
    suggestions: str
    is_ready: bool
    confidence: Level

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditReport":
        return cls(
            issues=[AuditIssue.from_dict(i) for i in data.get("issues") or []],
            suggestions=_text(data.get("suggestions")),
            is_ready=bool(data.get("isReady", False)),
            confidence=Level(data.get("confidence", Level.LOW.value)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "issues": [i.to_dict() for i in self.issues],
            "suggestions": self.suggestions,
            "isReady": self.is_ready,
            "confidence": self.confidence.value,
        }


@dataclass(frozen=True)
class WorkflowSnapshot:
    """Read-only view of a WorkflowRun handed to the presentation layer."""
    run_id: Optional[str]
    step: WorkflowStep
    parameters: Optional[GenerationParameters] = None
    draft: Optional[MethodDocument] = None
    final: Optional[MethodDocument] = None
    report: Optional[AuditReport] = None
    error: Optional[str] = None
    error_details: Optional[Dict[str, Any]] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.step in (WorkflowStep.DRAFTING, WorkflowStep.REVIEWING)

    @property
    def succeeded(self) -> bool:
        return self.step == WorkflowStep.IDLE and self.final is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "runId": self.run_id,
            "step": self.step.value,
            "parameters": self.parameters.to_dict() if self.parameters else None,
            "draft": self.draft.to_dict() if self.draft else None,
            "final": self.final.to_dict() if self.final else None,
            "report": self.report.to_dict() if self.report else None,
            "error": self.error,
            "errorDetails": self.error_details,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
        }


@dataclass
class WorkflowRun:
    """
    Mutable state of one Method Card run.

    Owned exclusively by the WorkflowCoordinator. final and report are set
    together; error excludes final.
    """
    run_id: str
    parameters: GenerationParameters
    step: WorkflowStep = WorkflowStep.IDLE
    draft: Optional[MethodDocument] = None
    final: Optional[MethodDocument] = None
    report: Optional[AuditReport] = None
    error: Optional[str] = None
    error_details: Optional[Dict[str, Any]] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    def snapshot(self) -> WorkflowSnapshot:
        return WorkflowSnapshot(
            run_id=self.run_id,
            step=self.step,
            parameters=self.parameters,
            draft=self.draft,
            final=self.final,
            report=self.report,
            error=self.error,
            error_details=self.error_details,
            started_at=self.started_at,
            finished_at=self.finished_at,
        )


IDLE_SNAPSHOT = WorkflowSnapshot(run_id=None, step=WorkflowStep.IDLE)


# =============================================================================
# LOOKUP RESULTS
# =============================================================================

@dataclass
class StandardParameters:
    analyte: str = ""
    lod: str = ""
    instrument: str = ""
    technique: str = ""
    mdl: Optional[str] = None
    mrl: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StandardParameters":
        return cls(
            analyte=_text(data.get("analyte")),
            lod=_text(data.get("lod")),
            instrument=_text(data.get("instrument")),
            technique=_text(data.get("technique")),
            mdl=data.get("mdl"),
            mrl=data.get("mrl"),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "analyte": self.analyte,
            "lod": self.lod,
            "instrument": self.instrument,
            "technique": self.technique,
        }
        if self.mdl is not None:
            data["mdl"] = self.mdl
        if self.mrl is not None:
            data["mrl"] = self.mrl
        return data


@dataclass
class AnalyticalStandard:
    """A standard returned by search (ISO, EPA, AOAC, ASTM, EU, USP, TCVN)."""
    id: str
    code: str
    title: str
    organization: str
    status: StandardStatus
    last_update: str
    matrix: str
    parameters: StandardParameters
    summary: str
    two_minute_read: str
    source_url: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalyticalStandard":
        return cls(
            id=_text(data.get("id") or data.get("code")),
            code=_text(data.get("code")),
            title=_text(data.get("title")),
            organization=_text(data.get("organization")),
            status=StandardStatus.parse(data.get("status")),
            last_update=_text(data.get("lastUpdate")),
            matrix=_text(data.get("matrix")),
            parameters=StandardParameters.from_dict(data.get("parameters") or {}),
            summary=_text(data.get("summary")),
            two_minute_read=_text(data.get("twoMinuteRead")),
            source_url=data.get("sourceUrl"),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "code": self.code,
            "title": self.title,
            "organization": self.organization,
            "status": self.status.value,
            "lastUpdate": self.last_update,
            "matrix": self.matrix,
            "parameters": self.parameters.to_dict(),
            "summary": self.summary,
            "twoMinuteRead": self.two_minute_read,
        }
        if self.source_url:
            data["sourceUrl"] = self.source_url
        return data


@dataclass
class SearchSource:
    """Citation taken from the oracle's grounding metadata."""
    uri: str
    title: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"title": self.title, "uri": self.uri}


@dataclass
class SearchResult:
    standards: List[AnalyticalStandard] = field(default_factory=list)
    sources: List[SearchSource] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "standards": [s.to_dict() for s in self.standards],
            "sources": [s.to_dict() for s in self.sources],
        }


@dataclass
class DetailedSection:
    """An opaque en/vi string pair."""
    en: str = ""
    vi: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DetailedSection":
        return cls(en=_text(data.get("en")), vi=_text(data.get("vi")))

    def to_dict(self) -> Dict[str, str]:
        return {"en": self.en, "vi": self.vi}


@dataclass
class DetailedMethod:
    """Bilingual technical breakdown of one standard, keyed by section."""
    sections: Dict[str, DetailedSection]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DetailedMethod":
        return cls(sections={
            key: DetailedSection.from_dict(data.get(key) or {})
            for key in DETAIL_SECTION_KEYS
        })

    def to_dict(self) -> Dict[str, Dict[str, str]]:
        return {key: section.to_dict() for key, section in self.sections.items()}


@dataclass
class ComparisonRow:
    attribute: str
    values: Dict[str, str]

    def to_dict(self) -> Dict[str, Any]:
        return {"attribute": self.attribute, "values": dict(self.values)}


@dataclass
class ComparisonResult:
    codes: List[str]
    comparison_table: List[ComparisonRow]
    expert_insight: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "codes": list(self.codes),
            "comparisonTable": [row.to_dict() for row in self.comparison_table],
            "expertInsight": self.expert_insight,
        }
