"""
Unit tests for domain models and the session registry.
"""

import pytest

from methodlab.errors import InputValidationError
from methodlab.models import (
    IDLE_SNAPSHOT,
    NOT_SPECIFIED,
    AnalyticalStandard,
    AppLanguage,
    AuditReport,
    GenerationParameters,
    Level,
    MethodDocument,
    StandardStatus,
    WorkflowRun,
    WorkflowStep,
)
from methodlab.services.session_registry import DEFAULT_SESSION_ID, SessionRegistry
from methodlab.tests.conftest import method_card_payload, qc_payload


# =============================================================================
# GenerationParameters
# =============================================================================


class TestGenerationParameters:
    """Tests for GenerationParameters."""

    def test_from_dict_camel_case(self):
        params = GenerationParameters.from_dict({
            "analyte": "Glyphosate",
            "chemicalGroup": "Organophosphorus",
            "matrix": "Cereal",
            "technique": "LC-MS/MS",
            "referenceStandards": "EN 15662",
            "language": "en",
        })

        assert params.chemical_group == "Organophosphorus"
        assert params.reference_standards == "EN 15662"
        assert params.language == AppLanguage.EN

    def test_from_dict_accepts_standards_alias(self):
        params = GenerationParameters.from_dict(
            {"analyte": "Lead", "matrix": "Water", "standards": "EPA 200.8"}
        )
        assert params.reference_standards == "EPA 200.8"
        assert params.language is None

    def test_prompt_values_fill_blanks(self):
        values = GenerationParameters(analyte=" Lead ", matrix="Water", technique="  ").prompt_values()

        assert values["analyte"] == "Lead"
        assert values["technique"] == NOT_SPECIFIED
        assert values["chemical_group"] == NOT_SPECIFIED
        assert values["reference_standards"] == NOT_SPECIFIED

    @pytest.mark.parametrize("analyte,matrix,field", [
        ("", "Water", "analyte"),
        ("Lead", "\t", "matrix"),
    ])
    def test_validate(self, analyte, matrix, field):
        with pytest.raises(InputValidationError) as exc_info:
            GenerationParameters(analyte=analyte, matrix=matrix).validate()
        assert exc_info.value.field == field

    def test_immutable(self):
        params = GenerationParameters(analyte="Lead", matrix="Water")
        with pytest.raises(AttributeError):
            params.analyte = "Cadmium"


# =============================================================================
# Documents and reports
# =============================================================================


class TestMethodDocument:
    """Tests for MethodDocument and AuditReport wire mapping."""

    def test_to_dict_uses_wire_keys(self):
        payload = method_card_payload()
        assert MethodDocument.from_dict(payload).to_dict() == payload

    def test_chemical_group_kept_when_present(self):
        payload = dict(method_card_payload(), chemicalGroup="Organochlorine")
        document = MethodDocument.from_dict(payload)
        assert document.chemical_group == "Organochlorine"
        assert document.to_dict()["chemicalGroup"] == "Organochlorine"

    def test_audit_report(self):
        report = AuditReport.from_dict(qc_payload()["qcReport"])

        assert report.confidence == Level.HIGH
        assert report.issues[0].section == "performance"
        assert report.to_dict()["isReady"] is True


# =============================================================================
# Snapshots
# =============================================================================


class TestWorkflowSnapshot:
    """Tests for WorkflowRun snapshots."""

    def test_idle_snapshot(self):
        assert IDLE_SNAPSHOT.step == WorkflowStep.IDLE
        assert not IDLE_SNAPSHOT.is_active
        assert not IDLE_SNAPSHOT.succeeded

    def test_snapshot_is_a_copy(self):
        run = WorkflowRun(run_id="r1", parameters=GenerationParameters("Lead", "Water"))
        run.step = WorkflowStep.DRAFTING
        snapshot = run.snapshot()

        run.step = WorkflowStep.REVIEWING

        assert snapshot.step == WorkflowStep.DRAFTING
        assert snapshot.is_active

    def test_to_dict(self):
        run = WorkflowRun(run_id="r1", parameters=GenerationParameters("Lead", "Water"))
        data = run.snapshot().to_dict()

        assert data["runId"] == "r1"
        assert data["step"] == "idle"
        assert data["parameters"]["analyte"] == "Lead"
        assert data["final"] is None
        assert data["finishedAt"] is None


# =============================================================================
# Session registry
# =============================================================================


class TestSessionRegistry:
    """Tests for SessionRegistry."""

    def _registry(self):
        return SessionRegistry(coordinator_factory=_FakeCoordinator)

    def test_same_session_same_coordinator(self):
        registry = self._registry()
        assert registry.get("a") is registry.get("a")
        assert registry.get("a") is not registry.get("b")
        assert len(registry) == 2

    def test_missing_session_uses_default(self):
        registry = self._registry()
        assert registry.get(None) is registry.get(DEFAULT_SESSION_ID)

    def test_discard_cancels(self):
        registry = self._registry()
        coordinator = registry.get("a")

        assert registry.discard("a") is True
        assert coordinator.cancelled
        assert registry.discard("a") is False
        assert len(registry) == 0

    def test_find_does_not_create(self):
        registry = self._registry()

        assert registry.find("unknown") is None
        assert registry.find(None) is None
        assert len(registry) == 0

        coordinator = registry.get("a")
        assert registry.find("a") is coordinator

    def test_idle_sessions_expire(self):
        clock = _Clock()
        registry = SessionRegistry(
            coordinator_factory=_FakeCoordinator, idle_ttl_seconds=60, clock=clock
        )
        registry.get("old")
        clock.now = 30
        registry.get("recent")
        clock.now = 70

        registry.get("new")

        assert registry.find("old") is None
        assert registry.find("recent") is not None
        assert len(registry) == 2

    def test_busy_sessions_never_expire(self):
        clock = _Clock()
        registry = SessionRegistry(
            coordinator_factory=_FakeCoordinator, idle_ttl_seconds=60, clock=clock
        )
        registry.get("running").is_busy = True
        clock.now = 1000

        registry.get("new")

        assert registry.find("running") is not None

    def test_size_limit_drops_least_recently_used(self):
        registry = SessionRegistry(coordinator_factory=_FakeCoordinator, max_sessions=3)
        registry.get("a").is_busy = True
        registry.get("b")
        registry.get("c")
        registry.find("b")

        registry.get("d")

        assert len(registry) == 3
        assert registry.find("a") is not None
        assert registry.find("b") is not None
        assert registry.find("c") is None
        assert registry.find("d") is not None


class _Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class _FakeCoordinator:
    cancelled = False
    is_busy = False

    def cancel(self):
        self.cancelled = True
        return True


# =============================================================================
# Lookup results
# =============================================================================


class TestStandardStatus:
    """Tests for StandardStatus parsing of oracle text."""

    @pytest.mark.parametrize("value,expected", [
        ("Active", StandardStatus.ACTIVE),
        ("withdrawn", StandardStatus.WITHDRAWN),
        ("Superseded by ISO 17294-2:2016", StandardStatus.SUPERSEDED),
        (" PROPOSED ", StandardStatus.PROPOSED),
        (None, StandardStatus.ACTIVE),
        ("Under review", StandardStatus.ACTIVE),
    ])
    def test_parse(self, value, expected):
        assert StandardStatus.parse(value) is expected

    def test_standard_round_trips_status(self):
        standard = AnalyticalStandard.from_dict(
            {"code": "ISO 11885:1996", "title": "ICP-OES", "status": "superseded"}
        )

        assert standard.status is StandardStatus.SUPERSEDED
        assert standard.to_dict()["status"] == "Superseded"
