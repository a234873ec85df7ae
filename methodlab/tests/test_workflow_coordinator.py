"""
Tests for WorkflowCoordinator: stage ordering, atomic settlement, failure
handling, busy rejection and cancellation.

Stages are real; the Gemini client is a stub whose generate() answers by
stage name.
"""

import asyncio
from typing import List

import pytest

from methodlab.errors import (
    InputValidationError,
    OracleRejection,
    SchemaViolation,
    TransportError,
    WorkflowBusyError,
)
from methodlab.models import (
    AppLanguage,
    GenerationParameters,
    WorkflowSnapshot,
    WorkflowStep,
)
from methodlab.services.draft_stage import DraftStage
from methodlab.services.qc_stage import QCStage
from methodlab.services.workflow_coordinator import USER_FACING_ERRORS, WorkflowCoordinator
from methodlab.tests.conftest import method_card_payload, qc_payload, result


# =============================================================================
# Test Fixtures
# =============================================================================


@pytest.fixture
def params():
    return GenerationParameters(analyte="Pesticide", matrix="Fruit")


@pytest.fixture
def responses():
    """Per-stage outcome: a payload dict or an exception to raise."""
    return {
        "draft": method_card_payload("Draft card"),
        "qc": qc_payload("Final card"),
    }


@pytest.fixture
def calls():
    return []


@pytest.fixture
def coordinator(stub_service, responses, calls):
    async def generate(prompt_body, role_instruction, schema, *, stage="generate", grounded=False):
        calls.append(stage)
        outcome = responses[stage]
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            return await outcome()
        return result(outcome)

    stub_service.generate.side_effect = generate
    return WorkflowCoordinator(
        draft_stage=DraftStage(stub_service),
        qc_stage=QCStage(stub_service),
        expose_error_details=False,
    )


def drain(queue: asyncio.Queue) -> List[WorkflowSnapshot]:
    snapshots = []
    while not queue.empty():
        snapshots.append(queue.get_nowait())
    return snapshots


def assert_settlement_atomic(snapshots: List[WorkflowSnapshot]) -> None:
    for snapshot in snapshots:
        assert (snapshot.final is None) == (snapshot.report is None)
        if snapshot.error is not None:
            assert snapshot.final is None


# =============================================================================
# Happy path
# =============================================================================


class TestSuccessfulRun:
    """Tests for a run that completes both stages."""

    @pytest.mark.asyncio
    async def test_final_and_report_set_together(self, coordinator, params, calls):
        snapshot = await coordinator.run(params)

        assert snapshot.step == WorkflowStep.IDLE
        assert snapshot.succeeded
        assert snapshot.error is None
        assert snapshot.final.title == "Final card"
        assert snapshot.report.is_ready is True
        assert snapshot.draft is None
        assert calls == ["draft", "qc"]

    @pytest.mark.asyncio
    async def test_step_sequence(self, coordinator, params):
        queue = coordinator.subscribe()

        await coordinator.run(params)

        steps = [s.step for s in drain(queue)]
        assert steps == [
            WorkflowStep.IDLE,
            WorkflowStep.DRAFTING,
            WorkflowStep.REVIEWING,
            WorkflowStep.IDLE,
        ]

    @pytest.mark.asyncio
    async def test_draft_visible_while_reviewing(self, coordinator, params):
        queue = coordinator.subscribe()

        await coordinator.run(params)

        reviewing = [s for s in drain(queue) if s.step == WorkflowStep.REVIEWING]
        assert reviewing[0].draft.title == "Draft card"
        assert reviewing[0].final is None

    @pytest.mark.asyncio
    async def test_no_snapshot_has_half_a_result(self, coordinator, params):
        queue = coordinator.subscribe()

        await coordinator.run(params)

        assert_settlement_atomic(drain(queue))

    @pytest.mark.asyncio
    async def test_qc_receives_the_draft(self, coordinator, params, stub_service):
        await coordinator.run(params)

        qc_call = stub_service.generate.call_args_list[1]
        assert '"title": "Draft card"' in qc_call.kwargs["prompt_body"]

    @pytest.mark.asyncio
    async def test_new_run_after_completion(self, coordinator, params, calls):
        first = await coordinator.run(params)
        second = await coordinator.run(params)

        assert first.run_id != second.run_id
        assert calls == ["draft", "qc", "draft", "qc"]


# =============================================================================
# Validation and busy rejection
# =============================================================================


class TestSubmitRejections:
    """Tests for inputs and states that must not start a run."""

    @pytest.mark.asyncio
    async def test_blank_analyte_no_calls_no_transition(self, coordinator, calls):
        queue = coordinator.subscribe()

        with pytest.raises(InputValidationError) as exc_info:
            coordinator.submit(GenerationParameters(analyte="", matrix="Fruit"))

        assert exc_info.value.field == "analyte"
        assert calls == []
        assert coordinator.current().run_id is None
        assert [s.step for s in drain(queue)] == [WorkflowStep.IDLE]

    @pytest.mark.asyncio
    async def test_resubmit_while_busy(self, coordinator, params, responses, calls):
        release = asyncio.Event()

        async def slow_draft():
            await release.wait()
            return result(method_card_payload("Draft card"))

        responses["draft"] = slow_draft
        first = coordinator.submit(params)
        await asyncio.sleep(0)

        with pytest.raises(WorkflowBusyError):
            coordinator.submit(params)

        release.set()
        settled = await coordinator.wait()
        assert settled.run_id == first.run_id
        assert settled.succeeded
        assert calls == ["draft", "qc"]


# =============================================================================
# Failures
# =============================================================================


class TestFailedRun:
    """Tests for runs that fail in either stage."""

    @pytest.mark.asyncio
    async def test_draft_failure_never_reviews(self, coordinator, params, responses, calls):
        responses["draft"] = TransportError("unavailable", stage="draft")
        queue = coordinator.subscribe()

        snapshot = await coordinator.run(params)

        assert calls == ["draft"]
        assert snapshot.step == WorkflowStep.IDLE
        assert snapshot.error == USER_FACING_ERRORS[AppLanguage.VI]
        assert snapshot.final is None and snapshot.report is None
        assert WorkflowStep.REVIEWING not in [s.step for s in drain(queue)]

    @pytest.mark.asyncio
    async def test_qc_failure_discards_partial_results(self, coordinator, params, responses):
        responses["qc"] = SchemaViolation("missing finalCard", stage="qc")
        queue = coordinator.subscribe()

        snapshot = await coordinator.run(params)

        assert snapshot.error is not None
        assert snapshot.final is None
        assert snapshot.report is None
        assert snapshot.draft is None
        assert not snapshot.succeeded
        assert_settlement_atomic(drain(queue))

    @pytest.mark.asyncio
    async def test_error_in_requested_language(self, coordinator, responses):
        responses["draft"] = OracleRejection("blocked", stage="draft")
        params = GenerationParameters(analyte="Lead", matrix="Water", language=AppLanguage.EN)

        snapshot = await coordinator.run(params)

        assert snapshot.error == USER_FACING_ERRORS[AppLanguage.EN]
        assert snapshot.error_details is None

    @pytest.mark.asyncio
    async def test_error_details_when_exposed(self, coordinator, params, responses):
        coordinator.expose_error_details = True
        responses["qc"] = TransportError("unavailable", stage="qc")

        snapshot = await coordinator.run(params)

        assert snapshot.error_details["type"] == "TransportError"
        assert snapshot.error_details["stage"] == "qc"

    @pytest.mark.asyncio
    async def test_unexpected_exception_settles_run(self, coordinator, params, responses):
        responses["draft"] = RuntimeError("boom")

        snapshot = await coordinator.run(params)

        assert snapshot.step == WorkflowStep.IDLE
        assert snapshot.error is not None
        assert not coordinator.is_busy


# =============================================================================
# Cancellation
# =============================================================================


class TestCancellation:
    """Tests for cancelling the in-flight run."""

    @pytest.mark.asyncio
    async def test_cancel_during_draft(self, coordinator, params, responses, calls):
        async def never():
            await asyncio.Event().wait()

        responses["draft"] = never
        coordinator.expose_error_details = True
        coordinator.submit(params)
        await asyncio.sleep(0)

        assert coordinator.cancel() is True
        snapshot = await coordinator.wait()

        assert snapshot.step == WorkflowStep.IDLE
        assert snapshot.error is not None
        assert snapshot.final is None
        assert snapshot.error_details["type"] == "GenerationCancelled"
        assert snapshot.error_details["stage"] == "drafting"
        assert calls == ["draft"]

    @pytest.mark.asyncio
    async def test_cancel_before_first_step(self, coordinator, params, calls):
        coordinator.submit(params)

        assert coordinator.cancel() is True
        snapshot = await coordinator.wait()

        assert snapshot.step == WorkflowStep.IDLE
        assert snapshot.error is not None
        assert calls == []

    @pytest.mark.asyncio
    async def test_cancel_when_idle(self, coordinator):
        assert coordinator.cancel() is False

    @pytest.mark.asyncio
    async def test_resubmit_after_cancel(self, coordinator, params, responses):
        async def never():
            await asyncio.Event().wait()

        responses["draft"] = never
        coordinator.submit(params)
        await asyncio.sleep(0)
        coordinator.cancel()
        await coordinator.wait()

        responses["draft"] = method_card_payload("Draft card")
        snapshot = await coordinator.run(params)

        assert snapshot.succeeded
